import logging
from typing import Dict, List, Optional

from config_parser import Block, parse
from directives import Listen, LocationBlock, Root, interpret

logger = logging.getLogger(__name__)

DEFAULT_PORT = 80


class RouteMatcher:
    @staticmethod
    def match_location(locations: List[LocationBlock], uri: str) -> Optional[LocationBlock]:
        """
        Picks the location block NGINX would use for a request URI:
        1. an exact (=) match wins immediately
        2. otherwise the longest matching prefix is remembered;
           if it was declared with ^~ it wins
        3. otherwise the first matching regex, in config order, wins
        4. otherwise the longest prefix
        """
        longest = None
        longest_prefix = -1
        for block in locations:
            location = block.location
            if location.is_exact:
                if location.matches(uri):
                    return block
            elif not location.is_regex:
                if location.matches(uri) and len(location.pattern) > longest_prefix:
                    longest = block
                    longest_prefix = len(location.pattern)

        if longest is not None and longest.location.modifier == "^~":
            return longest

        for block in locations:
            if block.location.is_regex and block.location.matches(uri):
                return block

        return longest


class ServerConfig:
    """
    Wraps a parsed configuration tree with accessors for the parts a
    server cares about: server blocks, ports and location routes.
    """

    def __init__(self, tree: Block):
        self.tree = tree

    def get_servers(self) -> List[Block]:
        """
        Returns the server blocks inside every http block.
        """
        servers = []
        for http_block in self.tree.blocks("http"):
            servers.extend(http_block.blocks("server"))
        return servers

    @staticmethod
    def server_ports(server: Block) -> List[int]:
        ports = []
        for statement in server.statements("listen"):
            directive = interpret(statement)
            if isinstance(directive, Listen) and directive.address.port is not None:
                ports.append(directive.address.port)
        return ports

    @staticmethod
    def locations(server: Block) -> List[LocationBlock]:
        return [interpret(block) for block in server.blocks("location")]

    @property
    def listen_ports(self) -> List[int]:
        """
        Returns a list of all ports declared in server blocks.
        Raises DirectiveError (a ValueError) on a malformed listen directive.
        """
        ports = []
        for server in self.get_servers():
            ports.extend(self.server_ports(server))
        return ports

    @property
    def routes(self) -> Dict[int, Dict[str, str]]:
        """
        Returns a nested dictionary mapping:
        {port: {location pattern: root dir}} for each server block.
        A server without a listen directive is reported on port 80.
        """
        mapping = {}
        for server in self.get_servers():
            ports = self.server_ports(server) or [DEFAULT_PORT]
            route_map = {}
            for block in self.locations(server):
                roots = [d for d in map(interpret, block.body.statements("root")) if isinstance(d, Root)]
                if roots:
                    route_map[block.location.pattern] = str(roots[-1].path)
            for port in ports:
                mapping.setdefault(port, {}).update(route_map)
        return mapping

    def match_location(self, port: int, uri: str) -> Optional[LocationBlock]:
        """
        Finds the location block that serves `uri` on `port`, checking the
        servers listening there in config order.
        """
        for server in self.get_servers():
            if port not in (self.server_ports(server) or [DEFAULT_PORT]):
                continue
            block = RouteMatcher.match_location(self.locations(server), uri)
            if block is not None:
                logger.debug("Matched %s on port %d to %r", uri, port, block.location)
                return block
        return None


def load_config(path: str, strict: bool = False) -> ServerConfig:
    """
    Reads a config file from disk and returns a ServerConfig object.
    Internally runs lexer → tree builder → wrapper.
    OSError and UnicodeDecodeError from reading the file propagate to the caller.
    """
    with open(path, "r", encoding="utf-8") as f:
        config_text = f.read()

    logger.debug("Parsing %s (%d characters)", path, len(config_text))
    return ServerConfig(parse(config_text, strict=strict))
