# exfetch/header/link.py
"""
HTTP `Link` header (RFC 8288) parser and serializer.

    Link: <https://api.test/items?page=2>; rel="next", <https://api.test/items?page=9>; rel="last"

parses into an ordered list of (uri, parameters) entries:

    [("https://api.test/items?page=2", {"rel": "next"}),
     ("https://api.test/items?page=9", {"rel": "last"})]

Parameter keys are lowercased; `rel` and `type` values are lowercased too. Lookups
(get_by_rel / get_by_parameter) are stricter than stored data: the query must already be
lowercase.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, Sequence
from typing import Any, Union
from urllib.parse import quote

import httpx

from ..exceptions import HeaderFormatError

LinkEntry = tuple[str, dict[str, str]]
LinkSource = Union[str, Mapping[str, str], "LinkHeader", Sequence[LinkEntry], httpx.Response]

# --------------------------------------------------------------------------------------------------
# Grammar
# --------------------------------------------------------------------------------------------------

_PARAMETER_KEY = re.compile(r"[\w-]+\*?", re.ASCII)
_UNQUOTED_VALUE_END = re.compile(r"[\s;,]")
_URI_FORBIDDEN = re.compile(r"[\s\x00-\x1f\x7f]")
_LOWERCASE_VALUE_KEYS = frozenset({"rel", "type"})
# characters encodeURI leaves alone (alphanumerics and "_.-~" are always safe for quote)
_URI_SAFE = ";,/?:@&=+$!*'()#"
_PERCENT_RUN = re.compile(r"(?:%[0-9A-Fa-f]{2})+")
# decodeURI leaves escapes of these characters alone
_DECODE_RESERVED = frozenset(";/?:@&=+$,#")


def _is_lower(value: str) -> bool:
    return value == value.lower()


def _check_uri(uri: str) -> None:
    if _URI_FORBIDDEN.search(uri):
        raise HeaderFormatError(f"{uri!r} is not a valid URI")


def _decode_uri(uri: str, position: int) -> str:
    """
    Percent-decode the way decodeURI does: escapes of reserved characters stay encoded, so
    "cursor=a%26b" keeps its meaning.
    """
    out: list[str] = []
    last = 0
    for m in [*_PERCENT_RUN.finditer(uri), None]:
        plain = uri[last:] if m is None else uri[last : m.start()]
        if "%" in plain:
            raise HeaderFormatError(
                f"URI {uri!r} at position {position} has a malformed percent escape",
                position=position,
            )
        out.append(plain)
        if m is None:
            break
        escapes = [m.group(0)[i : i + 3] for i in range(0, len(m.group(0)), 3)]
        try:
            decoded = bytes(int(e[1:], 16) for e in escapes).decode("utf-8")
        except UnicodeDecodeError as err:
            raise HeaderFormatError(
                f"URI {uri!r} at position {position} is not valid percent-encoded UTF-8",
                position=position,
            ) from err
        i = 0
        for ch in decoded:
            width = len(ch.encode("utf-8"))
            out.append("".join(escapes[i : i + width]) if ch in _DECODE_RESERVED else ch)
            i += width
        last = m.end()
    return "".join(out)


def _encode_uri(uri: str) -> str:
    return quote(uri, safe=_URI_SAFE)


def _unexpected(text: str, cursor: int, expected: str) -> HeaderFormatError:
    found = text[cursor] if cursor < len(text) else "end of string"
    return HeaderFormatError(
        f"Unexpected character {found!r} at position {cursor}; expected {expected}",
        position=cursor,
    )


def _skip_whitespace(text: str, cursor: int) -> int:
    rest = text[cursor:]
    return cursor + (len(rest) - len(rest.lstrip()))


def _parse(value: str) -> list[LinkEntry]:
    """Cursor-driven parse of a raw header value into entries."""
    # BOM and no-break space never carry meaning here
    text = value.replace("\ufeff", "").replace("\u00a0", "")
    entries: list[LinkEntry] = []
    if not text.strip():
        return entries

    end = len(text)
    cursor = 0
    while cursor < end:
        cursor = _skip_whitespace(text, cursor)
        if cursor >= end or text[cursor] != "<":
            raise _unexpected(text, cursor, '"<"')
        cursor += 1

        uri_end = text.find(">", cursor)
        if uri_end == -1:
            raise HeaderFormatError(
                f'Missing end of URI delimiter ">" after position {cursor}', position=cursor
            )
        if uri_end == cursor:
            raise HeaderFormatError(f"Missing URI at position {cursor}", position=cursor)
        raw_uri = text[cursor:uri_end]
        if _URI_FORBIDDEN.search(raw_uri):
            raise HeaderFormatError(
                f"{raw_uri!r} at position {cursor} is not a valid URI", position=cursor
            )
        uri = _decode_uri(raw_uri, cursor)
        parameters: dict[str, str] = {}

        cursor = _skip_whitespace(text, uri_end + 1)
        if cursor >= end or text[cursor] == ",":
            entries.append((uri, parameters))
            cursor += 1
            continue
        if text[cursor] != ";":
            raise _unexpected(text, cursor, '";"')
        cursor += 1

        while cursor < end:
            cursor = _skip_whitespace(text, cursor)
            m = _PARAMETER_KEY.match(text, cursor)
            if m is None:
                raise _unexpected(text, cursor, "a parameter key")
            key = m.group(0).lower()
            cursor = _skip_whitespace(text, m.end())

            if cursor >= end or text[cursor] == ",":
                parameters[key] = ""
                break
            if text[cursor] == ";":
                parameters[key] = ""
                cursor += 1
                continue
            if text[cursor] != "=":
                raise _unexpected(text, cursor, '"="')
            cursor = _skip_whitespace(text, cursor + 1)

            if cursor < end and text[cursor] == '"':
                cursor += 1
                chars: list[str] = []
                # an unterminated quoted string runs to the end of the header
                while cursor < end:
                    ch = text[cursor]
                    if ch == '"':
                        cursor += 1
                        break
                    if ch == "\\":
                        cursor += 1
                        if cursor >= end:
                            break
                        ch = text[cursor]
                    chars.append(ch)
                    cursor += 1
                parameter_value = "".join(chars)
            else:
                stop = _UNQUOTED_VALUE_END.search(text, cursor)
                value_end = end if stop is None else stop.start()
                parameter_value = text[cursor:value_end]
                cursor = value_end

            parameters[key] = (
                parameter_value.lower() if key in _LOWERCASE_VALUE_KEYS else parameter_value
            )

            cursor = _skip_whitespace(text, cursor)
            if cursor >= end or text[cursor] == ",":
                break
            if text[cursor] == ";":
                cursor += 1
                continue
            raise _unexpected(text, cursor, '",", ";" or end of string')

        entries.append((uri, parameters))
        # step over the "," separating entries (no-op at end of string)
        cursor += 1
    return entries


def _validate_entries(values: Sequence[Any]) -> list[LinkEntry]:
    out: list[LinkEntry] = []
    for entry in values:
        try:
            uri, parameters = entry
        except (TypeError, ValueError) as err:
            raise HeaderFormatError(f"{entry!r} is not a (uri, parameters) pair") from err
        if not isinstance(uri, str):
            raise HeaderFormatError(f"{uri!r} is not a valid URI")
        _check_uri(uri)
        if not isinstance(parameters, Mapping):
            raise HeaderFormatError(f"Parameters of {uri!r} must be a mapping")
        for key, value in parameters.items():
            if (
                not isinstance(key, str)
                or not _is_lower(key)
                or _PARAMETER_KEY.fullmatch(key) is None
            ):
                raise HeaderFormatError(f"{key!r} is not a valid parameter key")
            if not isinstance(value, str):
                raise HeaderFormatError(f"Value of parameter {key!r} must be a string")
            if key in _LOWERCASE_VALUE_KEYS and not _is_lower(value):
                raise HeaderFormatError(f"{value!r} is not a valid {key!r} parameter value")
        out.append((uri, dict(parameters)))
    return out


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


# --------------------------------------------------------------------------------------------------
# Collection
# --------------------------------------------------------------------------------------------------


class LinkHeader:
    """
    Ordered collection of `Link` entries.

    Entries accumulate across add() calls in insertion order; duplicates (same URI or same rel)
    are kept. Order only matters for first-match lookups such as the paginator's rel="next".
    """

    def __init__(self, value: LinkSource | None = None) -> None:
        self._entries: list[LinkEntry] = []
        if value is not None:
            self.add(value)

    def add(self, value: LinkSource) -> LinkHeader:
        """Add entries from a header string, headers, response, entry list or other LinkHeader."""
        if isinstance(value, LinkHeader):
            self._entries.extend((uri, dict(params)) for uri, params in value._entries)
        elif isinstance(value, httpx.Response):
            self._entries.extend(_parse(value.headers.get("Link", "")))
        elif isinstance(value, str):
            self._entries.extend(_parse(value))
        elif isinstance(value, Mapping):
            self._entries.extend(_parse(_header_from_mapping(value)))
        elif isinstance(value, Sequence):
            self._entries.extend(_validate_entries(value))
        else:
            raise TypeError(f"Cannot read Link entries from {type(value).__name__}")
        return self

    def entries(self) -> list[LinkEntry]:
        return [(uri, dict(params)) for uri, params in self._entries]

    def get_by_parameter(self, key: str, value: str) -> list[LinkEntry]:
        if not _is_lower(key):
            raise HeaderFormatError(f"{key!r} is not a valid parameter key")
        if key == "rel":
            return self.get_by_rel(value)
        return [(uri, dict(params)) for uri, params in self._entries if params.get(key) == value]

    def get_by_rel(self, value: str) -> list[LinkEntry]:
        if not _is_lower(value):
            raise HeaderFormatError(f"{value!r} is not a valid 'rel' parameter value")
        return [
            (uri, dict(params))
            for uri, params in self._entries
            if params.get("rel", "").lower() == value
        ]

    def has_parameter(self, key: str, value: str) -> bool:
        return len(self.get_by_parameter(key, value)) > 0

    def stringify(self) -> str:
        parts: list[str] = []
        for uri, params in self._entries:
            rendered = f"<{_encode_uri(uri)}>"
            for key, value in params.items():
                rendered += f'; {key}="{_escape(value)}"' if value else f"; {key}"
            parts.append(rendered)
        return ", ".join(parts)

    @classmethod
    def parse(cls, value: LinkSource) -> LinkHeader:
        return cls(value)

    def __str__(self) -> str:
        return self.stringify()

    def __repr__(self) -> str:
        return f"LinkHeader({self._entries!r})"

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[LinkEntry]:
        return iter(self.entries())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LinkHeader):
            return NotImplemented
        return self._entries == other._entries

    __hash__ = None  # type: ignore[assignment]


def _header_from_mapping(headers: Mapping[str, str]) -> str:
    # httpx.Headers is case-insensitive already; plain dicts are searched by hand
    if isinstance(headers, httpx.Headers):
        return headers.get("Link", "")
    for key, value in headers.items():
        if key.lower() == "link":
            return value
    return ""


# --------------------------------------------------------------------------------------------------
# Module-level helpers
# --------------------------------------------------------------------------------------------------


def parse_link_header(value: LinkSource) -> LinkHeader:
    return LinkHeader(value)


def stringify_link_header(value: LinkHeader | Sequence[LinkEntry]) -> str:
    return LinkHeader(value).stringify()


__all__ = [
    "LinkEntry",
    "LinkHeader",
    "parse_link_header",
    "stringify_link_header",
]
