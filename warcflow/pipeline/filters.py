"""
Record filters: small composable predicates over Records.

Filters answer True (keep) or False (drop). URL-level filters look at the
WARC-Target-URI, HTTP-level filters at the parsed response carried by a
response record, and URI-response filters at both together; a record that
lacks the part a filter inspects is rejected.

Composition
-----------
    f = IsHttpResponse() & StatusCategory(2) & ~IsProbablyBinary()
    f = and_(HostEndsWith(".org"), or_(SchemeEquals("http"), SchemeEquals("https")))

CLI specs
---------
`parse_filter("name:arg")` builds a single filter by registry name; a leading
"!" negates it (e.g. "!is-probably-binary").
"""

from __future__ import annotations

import re
from typing import Callable, Dict, Iterable, Optional, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

from ..dto import HttpResponse, Record, UriResponse

BINARY_SCAN_LENGTH = 1000
BINARY_ZERO_THRESHOLD = 3


class Filter:
    """Base predicate. Subclasses implement `apply`."""

    def apply(self, record: Record) -> bool:
        raise NotImplementedError

    def __call__(self, record: Record) -> bool:
        return self.apply(record)

    def copy(self) -> "Filter":
        # Bundled filters hold no mutable state.
        return self

    def __and__(self, other: "Filter") -> "Filter":
        return and_(self, other)

    def __or__(self, other: "Filter") -> "Filter":
        return or_(self, other)

    def __invert__(self) -> "Filter":
        return not_(self)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


# === Combinators ===


class _Const(Filter):
    def __init__(self, value: bool) -> None:
        self.value = value

    def apply(self, record: Record) -> bool:
        return self.value

    def __repr__(self) -> str:
        return "TRUE" if self.value else "FALSE"


TRUE: Filter = _Const(True)
FALSE: Filter = _Const(False)


class _And(Filter):
    def __init__(self, parts: Tuple[Filter, ...]) -> None:
        self.parts = parts

    def apply(self, record: Record) -> bool:
        return all(p(record) for p in self.parts)

    def copy(self) -> Filter:
        return _And(tuple(p.copy() for p in self.parts))

    def __repr__(self) -> str:
        return "and(" + ", ".join(map(repr, self.parts)) + ")"


class _Or(Filter):
    def __init__(self, parts: Tuple[Filter, ...]) -> None:
        self.parts = parts

    def apply(self, record: Record) -> bool:
        return any(p(record) for p in self.parts)

    def copy(self) -> Filter:
        return _Or(tuple(p.copy() for p in self.parts))

    def __repr__(self) -> str:
        return "or(" + ", ".join(map(repr, self.parts)) + ")"


class _Not(Filter):
    def __init__(self, inner: Filter) -> None:
        self.inner = inner

    def apply(self, record: Record) -> bool:
        return not self.inner(record)

    def copy(self) -> Filter:
        return _Not(self.inner.copy())

    def __repr__(self) -> str:
        return f"not({self.inner!r})"


def and_(*filters: Filter) -> Filter:
    return _And(tuple(filters)) if filters else TRUE


def or_(*filters: Filter) -> Filter:
    return _Or(tuple(filters)) if filters else FALSE


def not_(f: Filter) -> Filter:
    return _Not(f)


# === Record-level ===


class IsHttpResponse(Filter):
    """Response records whose body parses as an HTTP response."""

    def apply(self, record: Record) -> bool:
        return record.http_response() is not None


class RecordTypeEquals(Filter):
    def __init__(self, kind: str) -> None:
        self.kind = kind.lower()

    def apply(self, record: Record) -> bool:
        return record.kind == self.kind

    def __repr__(self) -> str:
        return f"RecordTypeEquals({self.kind!r})"


class DigestEquals(Filter):
    """WARC-Payload-Digest equals `digest` (the "algo:" prefix is optional on both sides)."""

    def __init__(self, digest: str) -> None:
        self.digest = self._bare(digest)

    @staticmethod
    def _bare(value: str) -> str:
        return value.strip().rpartition(":")[2].lower()

    def apply(self, record: Record) -> bool:
        value = record.header("WARC-Payload-Digest")
        return value is not None and self._bare(value) == self.digest

    def __repr__(self) -> str:
        return f"DigestEquals({self.digest!r})"


# === HTTP-level ===


class _ResponseFilter(Filter):
    def apply(self, record: Record) -> bool:
        response = record.http_response()
        return response is not None and self.accept(response)

    def accept(self, response: HttpResponse) -> bool:
        raise NotImplementedError


class StatusCategory(_ResponseFilter):
    """Status code in the given hundred (2 -> 2xx)."""

    def __init__(self, category: int) -> None:
        self.category = int(category)

    def accept(self, response: HttpResponse) -> bool:
        return response.status // 100 == self.category

    def __repr__(self) -> str:
        return f"StatusCategory({self.category})"


class ContentTypeStartsWith(_ResponseFilter):
    def __init__(self, prefix: str) -> None:
        self.prefix = prefix

    def accept(self, response: HttpResponse) -> bool:
        ctype = response.content_type
        return ctype is not None and ctype.startswith(self.prefix)

    def __repr__(self) -> str:
        return f"ContentTypeStartsWith({self.prefix!r})"


class IsProbablyBinary(_ResponseFilter):
    """At least three zero bytes among the first thousand bytes of the entity."""

    def accept(self, response: HttpResponse) -> bool:
        return response.entity[:BINARY_SCAN_LENGTH].count(0) >= BINARY_ZERO_THRESHOLD


class ResponseMatches(_ResponseFilter):
    """The whole entity, read as ISO-8859-1, matches `pattern`."""

    def __init__(self, pattern: str) -> None:
        try:
            self.pattern = re.compile(pattern, re.DOTALL)
        except re.error as exc:
            raise ValueError(f"bad response pattern {pattern!r}: {exc}") from exc

    def accept(self, response: HttpResponse) -> bool:
        return self.pattern.fullmatch(response.entity.decode("latin-1")) is not None

    def copy(self) -> "ResponseMatches":
        return ResponseMatches(self.pattern.pattern)

    def __repr__(self) -> str:
        return f"ResponseMatches({self.pattern.pattern!r})"


# === URI + response ===


class _UriResponseFilter(Filter):
    def apply(self, record: Record) -> bool:
        pair = record.uri_response()
        return pair is not None and self.accept(pair)

    def accept(self, pair: UriResponse) -> bool:
        raise NotImplementedError


class SameHost(_UriResponseFilter):
    """A redirect whose Location (resolved against the target URI) stays on the same host."""

    def accept(self, pair: UriResponse) -> bool:
        location = pair.response.header("Location")
        if not location:
            return False
        source = urlsplit(pair.uri).hostname
        target = urlsplit(urljoin(pair.uri, location.strip())).hostname
        return source is not None and source == target


# === URL-level ===


class _UrlFilter(Filter):
    def apply(self, record: Record) -> bool:
        uri = record.target_uri
        return bool(uri) and self.accept(uri)

    def accept(self, uri: str) -> bool:
        raise NotImplementedError


_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(uri: str) -> str:
    """Lower-case scheme and host, drop the default port and the fragment, "/" for an empty path."""
    parts = urlsplit(uri.strip())
    scheme = parts.scheme.lower()
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    try:
        port = parts.port
    except ValueError:
        port = None
    netloc = host
    if parts.username is not None:
        userinfo = parts.username + (f":{parts.password}" if parts.password is not None else "")
        netloc = f"{userinfo}@{host}"
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        netloc += f":{port}"
    path = parts.path or ("/" if netloc else "")
    return urlunsplit((scheme, netloc, path, parts.query, ""))


class URLEquals(_UrlFilter):
    """The URL equals `uri` once both are normalized (see normalize_url)."""

    def __init__(self, uri: str) -> None:
        self.uri = normalize_url(uri)

    def accept(self, uri: str) -> bool:
        return normalize_url(uri) == self.uri

    def __repr__(self) -> str:
        return f"URLEquals({self.uri!r})"


class HostEquals(_UrlFilter):
    def __init__(self, host: str) -> None:
        self.host = host.lower()

    def accept(self, uri: str) -> bool:
        return urlsplit(uri).hostname == self.host

    def __repr__(self) -> str:
        return f"HostEquals({self.host!r})"


class HostEndsWith(_UrlFilter):
    def __init__(self, suffix: str) -> None:
        self.suffix = suffix.lower()

    def accept(self, uri: str) -> bool:
        host = urlsplit(uri).hostname
        return host is not None and host.endswith(self.suffix)

    def __repr__(self) -> str:
        return f"HostEndsWith({self.suffix!r})"


class SchemeEquals(_UrlFilter):
    def __init__(self, scheme: str) -> None:
        self.scheme = scheme.lower()

    def accept(self, uri: str) -> bool:
        return urlsplit(uri).scheme.lower() == self.scheme

    def __repr__(self) -> str:
        return f"SchemeEquals({self.scheme!r})"


class URLMatchesRegex(_UrlFilter):
    """The whole URL matches `pattern`."""

    def __init__(self, pattern: str) -> None:
        try:
            self.pattern = re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"bad URL pattern {pattern!r}: {exc}") from exc

    def accept(self, uri: str) -> bool:
        return self.pattern.fullmatch(uri) is not None

    def __repr__(self) -> str:
        return f"URLMatchesRegex({self.pattern.pattern!r})"


class URLShorterThan(_UrlFilter):
    def __init__(self, threshold: int) -> None:
        self.threshold = int(threshold)

    def accept(self, uri: str) -> bool:
        return len(uri) < self.threshold

    def __repr__(self) -> str:
        return f"URLShorterThan({self.threshold})"


class PathEndsWithOneOf(_UrlFilter):
    """Path ends with one of the suffixes (case-insensitive)."""

    def __init__(self, suffixes: Iterable[str]) -> None:
        self.suffixes = tuple(s.strip().lower() for s in suffixes if s.strip())

    def accept(self, uri: str) -> bool:
        return urlsplit(uri).path.lower().endswith(self.suffixes) if self.suffixes else False

    def __repr__(self) -> str:
        return f"PathEndsWithOneOf({list(self.suffixes)!r})"


# === Registry ===


def _no_arg(cls: Callable[[], Filter]) -> Callable[[Optional[str]], Filter]:
    def build(arg: Optional[str]) -> Filter:
        if arg:
            raise ValueError(f"{cls.__name__} takes no argument")
        return cls()

    return build


def _with_arg(build: Callable[[str], Filter]) -> Callable[[Optional[str]], Filter]:
    def checked(arg: Optional[str]) -> Filter:
        if not arg:
            raise ValueError("filter requires an argument")
        return build(arg)

    return checked


FILTERS: Dict[str, Callable[[Optional[str]], Filter]] = {
    "true": lambda arg: TRUE,
    "false": lambda arg: FALSE,
    "is-http-response": _no_arg(IsHttpResponse),
    "is-probably-binary": _no_arg(IsProbablyBinary),
    "record-type": _with_arg(RecordTypeEquals),
    "digest": _with_arg(DigestEquals),
    "status-category": _with_arg(lambda a: StatusCategory(int(a))),
    "content-type-starts-with": _with_arg(ContentTypeStartsWith),
    "host-equals": _with_arg(HostEquals),
    "host-ends-with": _with_arg(HostEndsWith),
    "scheme-equals": _with_arg(SchemeEquals),
    "url-matches": _with_arg(URLMatchesRegex),
    "url-equals": _with_arg(URLEquals),
    "same-host": _no_arg(SameHost),
    "response-matches": _with_arg(ResponseMatches),
    "url-shorter-than": _with_arg(lambda a: URLShorterThan(int(a))),
    "path-ends-with-one-of": _with_arg(lambda a: PathEndsWithOneOf(a.split(","))),
}


def parse_filter(spec: str) -> Filter:
    """Build a filter from "name" or "name:arg"; "!" in front negates it."""
    text = spec.strip()
    negate = text.startswith("!")
    if negate:
        text = text[1:].strip()
    name, sep, arg = text.partition(":")
    factory = FILTERS.get(name.strip().lower())
    if factory is None:
        raise ValueError(f"unknown filter {name!r}; known: {', '.join(sorted(FILTERS))}")
    built = factory(arg if sep else None)
    return not_(built) if negate else built
