"""
Command line entry point: parse an NGINX-style config file and print its tree.

    nginx-conf-dump /etc/nginx/nginx.conf
    nginx-conf-dump --tokens site.conf
    nginx-conf-dump --render --strict site.conf
"""

import argparse
import logging
import sys
from typing import List, Optional

from config_parser import (
    ConfigLexError, Statement, Structure, UnbalancedBlockError,
    parse, render, tokenize, visualize_token_stream,
)

logger = logging.getLogger(__name__)


def dump_tree(structure: Structure, indent: int = 0) -> List[str]:
    pad = "  " * indent
    if isinstance(structure, Statement):
        return [f"{pad}Statement {list(structure.args)!r}"]

    lines = [f"{pad}Block {structure.args!r}"]
    for child in structure.children:
        lines.extend(dump_tree(child, indent + 1))
    return lines


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="nginx-conf-dump",
        description="Parse an NGINX-style configuration file and print its directive tree.",
    )
    p.add_argument("path", help="configuration file to read")
    mode = p.add_mutually_exclusive_group()
    mode.add_argument("--tokens", action="store_true", help="print the token stream instead of the tree")
    mode.add_argument("--render", action="store_true", help="print the tree flattened back into config text")
    p.add_argument("--strict", action="store_true", help="fail on unbalanced braces or unterminated statements")
    p.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s: %(message)s")

    try:
        with open(args.path, "r", encoding="utf-8") as f:
            config_text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    try:
        if args.tokens:
            output = visualize_token_stream(tokenize(config_text))
        else:
            tree = parse(config_text, strict=args.strict)
            output = [render(tree).rstrip("\n")] if args.render else dump_tree(tree)
    except (ConfigLexError, UnbalancedBlockError) as e:
        print(f"error: {args.path}: {e}", file=sys.stderr)
        return 1

    logger.debug("Parsed %s", args.path)
    print("\n".join(output))
    return 0


if __name__ == "__main__":
    sys.exit(main())
