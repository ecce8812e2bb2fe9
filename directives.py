"""
Typed view of parsed directives.

The parser only knows about words; this module turns a Statement (or a
location Block) into one of a closed set of directive dataclasses, e.g.

    listen 127.0.0.1:8080 default_server;   ->  Listen(address=..., is_default=True)
    proxy_read_timeout 90s;                 ->  ProxyReadTimeout(timeout=timedelta(seconds=90))

Keywords that are not known here come back as UnknownDirective so a walk
over a whole file never fails just because of an unfamiliar directive.
A known keyword with missing or malformed arguments raises DirectiveError.
"""

import ipaddress
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union
from urllib.parse import SplitResult, urlsplit

from config_parser import Block, Statement, Structure

logger = logging.getLogger(__name__)


class DirectiveError(ValueError):
    def __init__(self, name: str, message: str):
        self.name = name
        super().__init__(f"{name}: {message}")


# -------------------------
# Value parsers
# -------------------------

def unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def parse_bool(value: str) -> bool:
    value = unquote(value).lower()
    if value == "on":
        return True
    if value == "off":
        return False
    raise ValueError(f"Expected 'on' or 'off', got {value!r}")


# Same unit letters NGINX accepts for time intervals
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "M": timedelta(days=30),
    "y": timedelta(days=365),
}
_DURATION_PART = re.compile(r"(\d+)(ms|s|m|h|d|w|M|y)?")


def parse_duration(value: str) -> timedelta:
    """Parses '60', '90s', '500ms' or '1h30m' (a bare number means seconds)."""
    text = unquote(value).replace(" ", "")
    if not text:
        raise ValueError("Empty duration")

    total = timedelta()
    pos = 0
    while pos < len(text):
        match = _DURATION_PART.match(text, pos)
        if not match:
            raise ValueError(f"Invalid duration: {value!r}")
        amount, unit = match.groups()
        total += int(amount) * _DURATION_UNITS[unit or "s"]
        pos = match.end()
    return total


@dataclass(frozen=True)
class ListenAddress:
    host: Optional[str] = None
    port: Optional[int] = None
    unix_path: Optional[str] = None


def _parse_port(value: str) -> int:
    if not value.isdecimal() or not 0 < int(value) < 65536:
        raise ValueError(f"Invalid port number: {value!r}")
    return int(value)


def parse_listen_address(value: str) -> ListenAddress:
    """
    Accepts the address forms of the listen directive:
    8080, 127.0.0.1:8080, [::1]:443, localhost, *:80, unix:/run/app.sock
    A missing port means 80.
    """
    value = unquote(value)

    if value.startswith("unix:"):
        if len(value) == len("unix:"):
            raise ValueError("Empty unix socket path")
        return ListenAddress(unix_path=value[len("unix:"):])

    if value.startswith("["):
        host, sep, rest = value[1:].partition("]")
        if not sep:
            raise ValueError(f"Unterminated IPv6 address: {value!r}")
        ipaddress.IPv6Address(host)
        if not rest:
            return ListenAddress(host=host, port=80)
        if not rest.startswith(":"):
            raise ValueError(f"Invalid listen address: {value!r}")
        return ListenAddress(host=host, port=_parse_port(rest[1:]))

    if value.isdecimal():
        return ListenAddress(port=_parse_port(value))

    host, sep, port = value.rpartition(":")
    if not sep:
        return ListenAddress(host=value, port=80)
    if not host:
        raise ValueError(f"Invalid listen address: {value!r}")
    return ListenAddress(host=host, port=_parse_port(port))


def parse_url(value: str) -> SplitResult:
    url = urlsplit(unquote(value))
    if not url.scheme or not url.netloc:
        raise ValueError(f"Invalid URL: {value!r}")
    return url


# -------------------------
# Location matching
# -------------------------

class Location:
    """
    The matcher of a `location [modifier] pattern { ... }` block.
    modifier is one of '', '=', '^~', '~', '~*'.
    """

    MODIFIERS = ("=", "^~", "~", "~*")

    def __init__(self, modifier: str, pattern: str):
        self.modifier = modifier
        self.pattern = pattern
        self.regex = None
        if modifier == "~":
            self.regex = re.compile(pattern)
        elif modifier == "~*":
            self.regex = re.compile(pattern, re.IGNORECASE)

    @classmethod
    def from_args(cls, args) -> "Location":
        if not args:
            raise ValueError("Missing location pattern")
        modifier = ""
        if args[0] in cls.MODIFIERS:
            modifier, args = args[0], args[1:]
        if not args:
            raise ValueError(f"Missing pattern after {modifier!r}")
        # The lexer splits patterns such as ^/(a|b)/ into several tokens.
        return cls(modifier, "".join(unquote(a) for a in args))

    @property
    def is_exact(self) -> bool:
        return self.modifier == "="

    @property
    def is_regex(self) -> bool:
        return self.regex is not None

    def matches(self, path: str) -> bool:
        if self.is_exact:
            return path == self.pattern
        if self.is_regex:
            return self.regex.search(path) is not None
        return path.startswith(self.pattern)

    def __eq__(self, other):
        if not isinstance(other, Location):
            return NotImplemented
        return (self.modifier, self.pattern) == (other.modifier, other.pattern)

    def __hash__(self):
        return hash((self.modifier, self.pattern))

    def __repr__(self):
        return f"Location({self.modifier!r}, {self.pattern!r})"


# -------------------------
# Directive variants
# -------------------------

@dataclass(frozen=True)
class ErrorLog:
    path: Path
    level: Optional[str] = None


@dataclass(frozen=True)
class AccessLog:
    path: Optional[Path]
    log_format: Optional[str] = None
    compression_enabled: bool = False

    @property
    def enabled(self) -> bool:
        return self.path is not None


@dataclass(frozen=True)
class AddHeader:
    name: str
    value: str
    always: bool = False


@dataclass(frozen=True)
class AuthBasic:
    realm: str


@dataclass(frozen=True)
class AuthBasicUserFile:
    file: Path


@dataclass(frozen=True)
class Http2:
    enabled: bool


@dataclass(frozen=True)
class Listen:
    address: ListenAddress
    is_default: bool = False
    is_ssl: bool = False
    is_http2: bool = False
    is_http3: bool = False


@dataclass(frozen=True)
class ProxyHttpVersion:
    version: str


@dataclass(frozen=True)
class ProxyPass:
    url: SplitResult


@dataclass(frozen=True)
class ProxyReadTimeout:
    timeout: timedelta


@dataclass(frozen=True)
class ProxySetHeader:
    name: str
    value: str


@dataclass(frozen=True)
class ProxyHideHeader:
    name: str


@dataclass(frozen=True)
class Return:
    code: Optional[int] = None
    content: Optional[str] = None


@dataclass(frozen=True)
class Root:
    path: Path


@dataclass(frozen=True)
class ServerName:
    names: Tuple[str, ...]


@dataclass(frozen=True)
class ServerTokens:
    enabled: bool


@dataclass(frozen=True)
class SslCertificate:
    path: Path


@dataclass(frozen=True)
class SslCertificateKey:
    path: Path


@dataclass(frozen=True)
class SslEarlyData:
    enabled: bool


@dataclass(frozen=True)
class LocationBlock:
    location: Location
    body: Block


@dataclass(frozen=True)
class UnknownDirective:
    name: Optional[str]
    args: Tuple[str, ...]


Directive = Union[
    ErrorLog, AccessLog, AddHeader, AuthBasic, AuthBasicUserFile, Http2, Listen,
    ProxyHttpVersion, ProxyPass, ProxyReadTimeout, ProxySetHeader, ProxyHideHeader,
    Return, Root, ServerName, ServerTokens, SslCertificate, SslCertificateKey,
    SslEarlyData, LocationBlock, UnknownDirective,
]


# -------------------------
# Interpretation
# -------------------------

class _Args:
    """Positional access to a directive's arguments with readable errors."""

    def __init__(self, name: str, args):
        self.name = name
        self.args = list(args)

    def required(self, index: int, what: str) -> str:
        if index >= len(self.args):
            raise DirectiveError(self.name, f"missing {what}")
        return unquote(self.args[index])

    def optional(self, index: int) -> Optional[str]:
        return unquote(self.args[index]) if index < len(self.args) else None

    def flags(self, start: int) -> List[str]:
        return [unquote(a).lower() for a in self.args[start:]]

    def convert(self, index: int, what: str, parser):
        value = self.required(index, what)
        try:
            return parser(value)
        except ValueError as e:
            raise DirectiveError(self.name, f"invalid {what}: {e}") from e


def interpret(structure: Structure) -> Directive:
    """
    Maps one tree node to its typed directive.
    args[0] is the keyword; the rest are positional arguments.
    """
    if isinstance(structure, Block):
        if structure.name == "location":
            try:
                location = Location.from_args(structure.args[1:])
            except (ValueError, re.error) as e:
                raise DirectiveError("location", str(e)) from e
            return LocationBlock(location, structure)
        return UnknownDirective(structure.name, tuple(structure.args[1:]))

    name = structure.name
    args = _Args(name, structure.args[1:])

    if name == "error_log":
        return ErrorLog(Path(args.required(0, "path")), args.optional(1))

    elif name == "access_log":
        target = args.required(0, "path")
        if target == "off":
            return AccessLog(None)
        log_format = args.optional(1)
        if log_format is not None and "=" in log_format:
            log_format = None
        gzip = any(f == "gzip" or f.startswith("gzip=") for f in args.flags(1))
        return AccessLog(Path(target), log_format, gzip)

    elif name == "add_header":
        return AddHeader(args.required(0, "header name"), args.required(1, "header value"),
                         "always" in args.flags(2))

    elif name == "auth_basic":
        return AuthBasic(args.required(0, "realm"))

    elif name == "auth_basic_user_file":
        return AuthBasicUserFile(Path(args.required(0, "file")))

    elif name == "http2":
        return Http2(args.convert(0, "flag", parse_bool))

    elif name == "listen":
        address = args.convert(0, "address", parse_listen_address)
        flags = args.flags(1)
        return Listen(address,
                      is_default="default_server" in flags or "default" in flags,
                      is_ssl="ssl" in flags,
                      is_http2="http2" in flags,
                      is_http3="http3" in flags or "quic" in flags)

    elif name == "proxy_http_version":
        return ProxyHttpVersion(args.required(0, "version"))

    elif name == "proxy_pass":
        return ProxyPass(args.convert(0, "URL", parse_url))

    elif name == "proxy_read_timeout":
        return ProxyReadTimeout(args.convert(0, "timeout", parse_duration))

    elif name == "proxy_set_header":
        return ProxySetHeader(args.required(0, "header name"), args.required(1, "header value"))

    elif name == "proxy_hide_header":
        return ProxyHideHeader(args.required(0, "header name"))

    elif name == "return":
        first = args.required(0, "code or URL")
        if first.isdecimal():
            code = int(first)
            if code > 999:
                raise DirectiveError(name, f"invalid status code {first!r}")
            return Return(code, args.optional(1))
        return Return(None, first)

    elif name == "root":
        return Root(Path(args.required(0, "path")))

    elif name == "server_name":
        args.required(0, "name")
        return ServerName(tuple(unquote(a) for a in args.args))

    elif name == "server_tokens":
        return ServerTokens(args.convert(0, "flag", parse_bool))

    elif name == "ssl_certificate":
        return SslCertificate(Path(args.required(0, "path")))

    elif name == "ssl_certificate_key":
        return SslCertificateKey(Path(args.required(0, "path")))

    elif name == "ssl_early_data":
        return SslEarlyData(args.convert(0, "flag", parse_bool))

    return UnknownDirective(name, tuple(structure.args[1:]))


def iter_directives(block: Block, skip_invalid: bool = False) -> Iterator[Directive]:
    """
    Interprets the direct children of a block in source order.
    With skip_invalid=True a malformed directive is logged and skipped
    instead of stopping the walk.
    """
    for child in block.children:
        try:
            yield interpret(child)
        except DirectiveError as e:
            if not skip_invalid:
                raise
            logger.warning("Skipping invalid directive: %s", e)
