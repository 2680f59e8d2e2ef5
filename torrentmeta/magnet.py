"""Magnet link building and parsing for v1 and v2 info hashes."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from urllib.parse import quote_plus, urlsplit

BTIH_PREFIX = "urn:btih:"
BTMH_PREFIX = "urn:btmh:"

V1_SIZE = 20
V2_SIZE = 32
_SHA2_256 = 0x12
_ZERO_V1 = bytes(V1_SIZE)
_ZERO_V2 = bytes(V2_SIZE)
_HEX_DIGITS = b"0123456789abcdefABCDEF"

Params = dict[str, list[str]]


class MagnetError(ValueError):
    """Raised for magnet links that cannot be parsed."""


def _escape(text: str) -> str:
    return quote_plus(text, safe="", encoding="utf-8", errors="surrogateescape")


def _encode_query(values: Params) -> str:
    return "&".join(
        f"{_escape(key)}={_escape(value)}" for key in sorted(values) for value in values[key]
    )


def _unescape(text: str) -> str:
    raw = text.encode("utf-8", "surrogateescape")
    out = bytearray()
    i = 0
    while i < len(raw):
        c = raw[i]
        if c == 0x25:
            pair = raw[i + 1:i + 3]
            if len(pair) != 2 or any(ch not in _HEX_DIGITS for ch in pair):
                raise ValueError(f"invalid escape {raw[i:i + 3]!r}")
            out.append(int(pair, 16))
            i += 3
        else:
            out.append(0x20 if c == 0x2B else c)
            i += 1
    return out.decode("utf-8", "surrogateescape")


def _parse_query(raw: str) -> Params:
    """Parse a query string, dropping malformed pairs."""
    values: Params = {}
    for part in raw.split("&"):
        if not part or ";" in part:
            continue
        key, _, value = part.partition("=")
        try:
            key, value = _unescape(key), _unescape(value)
        except ValueError:
            continue
        values.setdefault(key, []).append(value)
    return values


def _magnet_query(uri: str) -> Params:
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in uri):
        raise MagnetError("error parsing uri: invalid control character in URL")
    try:
        parts = urlsplit(uri)
    except ValueError as exc:
        raise MagnetError(f"error parsing uri: {exc}") from exc
    if parts.scheme != "magnet":
        raise MagnetError(f"unexpected scheme {parts.scheme!r}")
    return _parse_query(parts.query)


def _add_param(params: Params, key: str, value: str) -> None:
    params.setdefault(key, []).append(value)


def _pop_first(values: Params, key: str) -> str:
    found = values.get(key, [])
    if not found:
        return ""
    if len(found) == 1:
        del values[key]
    else:
        values[key] = found[1:]
    return found[0]


def _outgoing_values(params: Params, trackers: list[str], display_name: str) -> Params:
    values = {key: list(vals) for key, vals in params.items()}
    for tracker in trackers:
        _add_param(values, "tr", tracker)
    if display_name:
        _add_param(values, "dn", display_name)
    return values


def _parse_v1_infohash(encoded: str) -> bytes:
    try:
        if len(encoded) == 40:
            decoded = binascii.unhexlify(encoded)
        elif len(encoded) == 32:
            decoded = base64.b32decode(encoded)
        else:
            raise MagnetError(
                f"unhandled xt parameter encoding (encoded length {len(encoded)})"
            )
    except (binascii.Error, ValueError) as exc:
        if isinstance(exc, MagnetError):
            raise
        raise MagnetError(f"error decoding xt: {exc}") from exc
    if len(decoded) != V1_SIZE:
        raise MagnetError("decoded xt length != 20")
    return decoded


def _read_uvarint(data: bytes, pos: int) -> tuple[int, int]:
    value = 0
    shift = 0
    while pos < len(data):
        byte = data[pos]
        pos += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, pos
        shift += 7
        if shift > 63:
            raise MagnetError("varint too long")
    raise MagnetError("truncated varint")


def _parse_v2_infohash(encoded: str) -> bytes:
    try:
        raw = binascii.unhexlify(encoded)
    except (binascii.Error, ValueError) as exc:
        raise MagnetError(f"error decoding xt: {exc}") from exc
    code, pos = _read_uvarint(raw, 0)
    length, pos = _read_uvarint(raw, pos)
    digest = raw[pos:]
    if len(digest) != length:
        raise MagnetError("inconsistent multihash length")
    if code != _SHA2_256 or length != V2_SIZE or len(digest) != V2_SIZE:
        raise MagnetError("bad multihash")
    return digest


@dataclass
class Magnet:
    """A magnet link carrying a v1 info hash."""

    info_hash: bytes = _ZERO_V1
    trackers: list[str] = field(default_factory=list)
    display_name: str = ""
    params: Params = field(default_factory=dict)

    def __str__(self) -> str:
        values = _outgoing_values(self.params, self.trackers, self.display_name)
        query = "xt=" + BTIH_PREFIX + bytes(self.info_hash).hex()
        if values:
            query += "&" + _encode_query(values)
        return "magnet:?" + query


@dataclass
class MagnetV2:
    """A magnet link carrying a v1 info hash, a v2 info hash, or both."""

    info_hash: bytes = _ZERO_V1
    v2_info_hash: bytes = _ZERO_V2
    trackers: list[str] = field(default_factory=list)
    display_name: str = ""
    params: Params = field(default_factory=dict)

    def __str__(self) -> str:
        values = _outgoing_values(self.params, self.trackers, self.display_name)
        parts = []
        if bytes(self.info_hash) != _ZERO_V1:
            parts.append("xt=" + BTIH_PREFIX + bytes(self.info_hash).hex())
        if bytes(self.v2_info_hash) != _ZERO_V2:
            multihash = bytes([_SHA2_256, V2_SIZE]) + bytes(self.v2_info_hash)
            parts.append("xt=" + BTMH_PREFIX + multihash.hex())
        remainder = _encode_query(values)
        if remainder:
            parts.append(remainder)
        query = "&".join(parts)
        return "magnet:?" + query if query else "magnet:"


def parse_magnet_uri(uri: str) -> Magnet:
    """Parse a magnet link that must carry a v1 info hash."""
    query = _magnet_query(uri)
    params: Params = {}
    info_hash: bytes | None = None
    for xt in query.pop("xt", []):
        if info_hash is not None or not xt.startswith(BTIH_PREFIX):
            _add_param(params, "xt", xt)
            continue
        try:
            info_hash = _parse_v1_infohash(xt[len(BTIH_PREFIX):])
        except MagnetError as exc:
            raise MagnetError(f"error parsing v1 infohash {xt!r}: {exc}") from exc
    if info_hash is None:
        raise MagnetError("missing v1 infohash")
    display_name = _pop_first(query, "dn")
    trackers = query.pop("tr", [])
    for key, values in query.items():
        for value in values:
            _add_param(params, key, value)
    return Magnet(info_hash=info_hash, trackers=trackers, display_name=display_name, params=params)


def parse_magnet_v2_uri(uri: str) -> MagnetV2:
    """Parse a magnet link with v1 and/or v2 info hashes."""
    query = _magnet_query(uri)
    magnet = MagnetV2()
    for xt in query.pop("xt", []):
        if xt.startswith(BTIH_PREFIX):
            if magnet.info_hash != _ZERO_V1:
                raise MagnetError("more than one infohash found in magnet link")
            encoded = xt[len(BTIH_PREFIX):]
            try:
                magnet.info_hash = _parse_v1_infohash(encoded)
            except MagnetError as exc:
                raise MagnetError(f"error parsing infohash {encoded!r}: {exc}") from exc
        elif xt.startswith(BTMH_PREFIX):
            if magnet.v2_info_hash != _ZERO_V2:
                raise MagnetError("more than one infohash found in magnet link")
            encoded = xt[len(BTMH_PREFIX):]
            try:
                magnet.v2_info_hash = _parse_v2_infohash(encoded)
            except MagnetError as exc:
                raise MagnetError(f"error parsing infohash {encoded!r}: {exc}") from exc
        else:
            _add_param(magnet.params, "xt", xt)
    magnet.display_name = _pop_first(query, "dn")
    magnet.trackers = query.pop("tr", [])
    for key, values in query.items():
        for value in values:
            _add_param(magnet.params, key, value)
    return magnet