import logging
import re
from dataclasses import dataclass, field
from typing import Iterator, List, NamedTuple, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# Characters allowed in a bare word, besides letters, digits and underscore.
# '+' is included so arguments like "1h+30m" or "backlog=+5" stay one word.
WORD_CHARS = "[]=^$:-+!*~'./"


class Token(NamedTuple):
    # kind is one of the names in ConfigLexer.TOKEN_PATTERNS
    kind: str
    value: str


class Span(NamedTuple):
    start: int
    end: int


class ConfigLexError(SyntaxError):
    """Raised when a piece of the input matches no token rule."""

    def __init__(self, text: str, span: Span):
        self.span = span
        super().__init__(f"Unexpected character at position {span.start}: {text[span.start:span.end]!r}")


class UnbalancedBlockError(SyntaxError):
    """Raised in strict mode when braces or statements are left dangling."""


class ConfigLexer:
    """
    A lexer for NGINX-style config files.
    It recognizes:
    - comments (starting with # and running to the end of the line)
    - symbols: { } ; and newlines
    - quoted strings, kept with their quotes
    - braced strings like (www\\.)?example
    - plain words: directives, numbers, paths, addresses

    Iterating over a lexer yields (Token, Span) pairs lazily and starts from
    the beginning of the text every time.
    """

    # Order is priority: a quoted string wins over anything else.
    TOKEN_PATTERNS = [
        ("STRING", r'"[^"]*"'),
        ("SEMICOLON", r";"),
        ("BRACED", r"\([^)]+\)"),
        ("COMMENT", r"#[^\n]*(?:\n|$)"),
        ("NEWLINE", r"\r?\n"),
        ("LBRACE", r"\{"),
        ("RBRACE", r"\}"),
        ("WORD", r"[\w" + re.escape(WORD_CHARS) + r"]+"),
        ("WHITESPACE", r"[ \t]+"),
    ]

    TOKEN_RE = re.compile("|".join(f"(?P<{name}>{regex})" for name, regex in TOKEN_PATTERNS))

    def __init__(self, config_text: str):
        self.config_text = config_text

    def __iter__(self) -> Iterator[Tuple[Token, Span]]:
        return self.scan()

    def scan(self) -> Iterator[Tuple[Token, Span]]:
        text = self.config_text
        pos = 0

        while pos < len(text):
            match = self.TOKEN_RE.match(text, pos)
            if not match:
                raise ConfigLexError(text, Span(pos, pos + 1))

            kind = match.lastgroup
            if kind != "WHITESPACE":
                yield Token(kind, match.group()), Span(pos, match.end())

            pos = match.end()

    @property
    def tokens(self) -> List[Token]:
        return [token for token, _ in self.scan()]


def tokenize(config_text: str) -> List[Token]:
    return ConfigLexer(config_text).tokens


def visualize_token_stream(tokens: List[Token]) -> List[str]:
    """Renders a token stream one token per line, indented by brace depth."""
    lines = []
    indent = 0
    for token_type, value in tokens:
        if token_type == "NEWLINE":
            continue
        if token_type == "RBRACE":
            indent = max(indent - 1, 0)
        lines.append("  " * indent + f"{token_type:10}: {value.rstrip()}")
        if token_type == "LBRACE":
            indent += 1
    return lines


@dataclass(frozen=True)
class Statement:
    """A single ';'-terminated directive. args[0] is the directive name."""

    args: Tuple[str, ...]

    @property
    def name(self) -> Optional[str]:
        return self.args[0] if self.args else None


@dataclass
class Block:
    """
    A directive with a { ... } body.

    args holds everything that preceded the opening brace (name first),
    children holds the nested statements and blocks in source order.
    The root block of a file has no args.
    """

    args: List[str] = field(default_factory=list)
    children: List["Structure"] = field(default_factory=list)

    @property
    def name(self) -> Optional[str]:
        return self.args[0] if self.args else None

    def statements(self, name: Optional[str] = None) -> List[Statement]:
        return [c for c in self.children if isinstance(c, Statement) and (name is None or c.name == name)]

    def blocks(self, name: Optional[str] = None) -> List["Block"]:
        return [c for c in self.children if isinstance(c, Block) and (name is None or c.name == name)]


Structure = Union[Statement, Block]

# Tokens that contribute to a directive's arguments
ARGUMENT_KINDS = ("WORD", "STRING", "BRACED")


class ConfigTreeBuilder:
    """
    Folds a token stream into a tree of Statements and Blocks.

    Blocks under construction live in an arena and are referred to by index:
    `current` is the innermost open block and `stack` holds its ancestors.
    A finished block is attached to its parent only when its closing brace
    is reached.

    By default the builder is lenient about unbalanced input, the way NGINX
    config dumps are often read:
    - an extra '}' just flushes the pending statement
    - a statement missing its ';' right before '}' is still recorded
    - at end of input, a dangling statement is merged into the returned
      block's own args, and blocks still open are dropped
    With strict=True each of these raises UnbalancedBlockError instead
    (the missing ';' before '}' is always tolerated).
    """

    def __init__(self, tokens, strict: bool = False):
        self.tokens = tokens
        self.strict = strict
        self.arena: List[Block] = [Block()]
        self.stack: List[int] = []
        self.current = 0
        self.pending: List[str] = []

    def build(self) -> Block:
        for item in self.tokens:
            # accept either bare tokens or (token, span) pairs from a lexer
            token, span = item if isinstance(item[0], Token) else (item, None)
            self._feed(token, span)
        return self._finish()

    def _feed(self, token: Token, span: Optional[Span]) -> None:
        kind, value = token

        if kind in ARGUMENT_KINDS:
            self.pending.append(value)

        elif kind == "SEMICOLON":
            # a bare ';' with nothing before it is a no-op
            self._flush_statement()

        elif kind == "LBRACE":
            self.stack.append(self.current)
            self.arena.append(Block(args=self.pending))
            self.current = len(self.arena) - 1
            self.pending = []

        elif kind == "RBRACE":
            self._flush_statement()
            if not self.stack:
                if self.strict:
                    raise UnbalancedBlockError(f"Unexpected '}}' at {_where(span)} with no open block")
                logger.warning("Ignoring unmatched '}' at %s", _where(span))
                return
            parent = self.stack.pop()
            self.arena[parent].children.append(self.arena[self.current])
            self.current = parent

        # COMMENT and NEWLINE carry no structure

    def _flush_statement(self) -> None:
        if self.pending:
            self.arena[self.current].children.append(Statement(tuple(self.pending)))
            self.pending = []

    def _finish(self) -> Block:
        result = self.arena[self.current]

        if self.pending:
            if self.strict:
                raise UnbalancedBlockError(f"Unterminated statement at end of input: {' '.join(self.pending)!r}")
            logger.warning("Unterminated statement %r merged into block args", " ".join(self.pending))
            result.args.extend(self.pending)
            self.pending = []

        if self.stack:
            if self.strict:
                raise UnbalancedBlockError(f"{len(self.stack)} block(s) not closed at end of input: {result.args!r}")
            # The enclosing blocks are only reachable from the stack and are lost here.
            logger.warning("%d unclosed block(s) at end of input, returning innermost block %r",
                           len(self.stack), result.args)

        return result


def _where(span: Optional[Span]) -> str:
    return f"position {span.start}" if span else "unknown position"


def parse(config_text: str, strict: bool = False) -> Block:
    """
    Entry point: tokenize the text and fold it into a tree.
    Returns the root Block, or raises ConfigLexError at the first
    unrecognized character (no partial tree is returned).
    """
    return ConfigTreeBuilder(ConfigLexer(config_text), strict=strict).build()


def render(structure: Structure) -> str:
    """
    Flattens a tree back into config text: each Block as `name args { ... }`
    and each Statement as `name args;`. Comments and original spacing are gone.

    A top-level Block is treated as a whole file: its children are written
    without braces, and any args it carries (a trailing statement that had no
    ';', merged in by the lenient parser) are written back as that trailing
    statement, so parse(render(tree)) == tree.
    """
    if isinstance(structure, Statement):
        return _render(structure, 0)

    text = "".join(_render(child, 0) for child in structure.children)
    if structure.args:
        text += " ".join(structure.args) + "\n"
    return text


def _render(structure: Structure, indent: int) -> str:
    pad = "    " * indent
    if isinstance(structure, Statement):
        return f"{pad}{' '.join(structure.args)};\n"

    header = " ".join(structure.args + ["{"])
    body = "".join(_render(child, indent + 1) for child in structure.children)
    return f"{pad}{header}\n{body}{pad}}}\n"
