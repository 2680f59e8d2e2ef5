"""Bencode encoding and decoding, plus helpers for loosely typed torrent fields."""

from __future__ import annotations

import re
from typing import Any

_INT_RE = re.compile(rb"0|-?[1-9][0-9]*")


class BencodeError(ValueError):
    """Raised for data that is not valid bencode or cannot be encoded."""


def _text(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def _raw(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def encode(value: Any) -> bytes:
    """Encode ints, strings, bytes, lists and dicts as bencode."""
    out = bytearray()
    _encode(value, out)
    return bytes(out)


def _encode(value: Any, out: bytearray) -> None:
    if isinstance(value, int):
        out += b"i%de" % value
    elif isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
        out += b"%d:" % len(data) + data
    elif isinstance(value, str):
        data = _raw(value)
        out += b"%d:" % len(data) + data
    elif isinstance(value, (list, tuple)):
        out += b"l"
        for item in value:
            _encode(item, out)
        out += b"e"
    elif isinstance(value, dict):
        items = []
        for key, item in value.items():
            if isinstance(key, str):
                key = _raw(key)
            elif isinstance(key, (bytes, bytearray)):
                key = bytes(key)
            else:
                raise BencodeError(f"dictionary key must be a string, not {type(key).__name__}")
            items.append((key, item))
        items.sort(key=lambda pair: pair[0])
        out += b"d"
        previous = None
        for key, item in items:
            if key == previous:
                raise BencodeError(f"duplicate dictionary key {key!r}")
            previous = key
            out += b"%d:" % len(key) + key
            _encode(item, out)
        out += b"e"
    else:
        raise BencodeError(f"cannot encode value of type {type(value).__name__}")


def decode(data: bytes) -> Any:
    """Decode exactly one bencoded value; trailing bytes are an error."""
    buf = bytes(data)
    value, end = decode_prefix(buf)
    if end != len(buf):
        raise BencodeError(f"trailing data after value at offset {end}")
    return value


def decode_prefix(data: bytes) -> tuple[Any, int]:
    """Decode the value at the start of ``data``; return it and the offset where it ends."""
    buf = bytes(data)
    try:
        return _decode(buf, 0)
    except RecursionError:
        raise BencodeError("value is nested too deeply") from None


def _decode(buf: bytes, pos: int) -> tuple[Any, int]:
    if pos >= len(buf):
        raise BencodeError("unexpected end of data")
    lead = buf[pos]
    if lead == ord("i"):
        end = buf.find(b"e", pos + 1)
        if end < 0:
            raise BencodeError("unterminated integer")
        body = buf[pos + 1:end]
        if not _INT_RE.fullmatch(body):
            raise BencodeError(f"invalid integer {body!r}")
        return int(body), end + 1
    if lead == ord("l"):
        items = []
        pos += 1
        while True:
            if pos >= len(buf):
                raise BencodeError("unterminated list")
            if buf[pos] == ord("e"):
                return items, pos + 1
            item, pos = _decode(buf, pos)
            items.append(item)
    if lead == ord("d"):
        result: dict[bytes, Any] = {}
        pos += 1
        while True:
            if pos >= len(buf):
                raise BencodeError("unterminated dictionary")
            if buf[pos] == ord("e"):
                return result, pos + 1
            if not 0x30 <= buf[pos] <= 0x39:
                raise BencodeError(f"dictionary key is not a string at offset {pos}")
            key, pos = _decode_string(buf, pos)
            value, pos = _decode(buf, pos)
            result[key] = value
    if 0x30 <= lead <= 0x39:
        return _decode_string(buf, pos)
    raise BencodeError(f"invalid byte {bytes([lead])!r} at offset {pos}")


def _decode_string(buf: bytes, pos: int) -> tuple[bytes, int]:
    colon = buf.find(b":", pos)
    if colon < 0:
        raise BencodeError("string length is not terminated")
    prefix = buf[pos:colon]
    if not prefix.isdigit():
        raise BencodeError(f"invalid string length {prefix!r}")
    start = colon + 1
    end = start + int(prefix)
    if end > len(buf):
        raise BencodeError("string runs past the end of data")
    return buf[start:end], end


def parse_node(value: Any) -> str:
    """Turn a DHT node entry, a string or a [host, port] pair, into ``host:port`` text."""
    if isinstance(value, (bytes, bytearray)):
        return _text(bytes(value))
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        if (
            len(value) < 2
            or not isinstance(value[0], (bytes, str))
            or not isinstance(value[1], int)
            or isinstance(value[1], bool)
        ):
            raise BencodeError("node must be a [host, port] pair")
        host = value[0] if isinstance(value[0], str) else _text(value[0])
        if ":" in host:
            host = f"[{host}]"
        return f"{host}:{value[1]}"
    raise BencodeError(f"unsupported type: {type(value).__name__}")


def parse_url_list(value: Any) -> list[str]:
    """Normalise a url-list field, given as a single string or a list, to a list."""
    if value is None:
        return []
    if isinstance(value, (bytes, str)):
        return [value if isinstance(value, str) else _text(value)]
    if isinstance(value, list):
        urls = []
        for item in value:
            if isinstance(item, str):
                urls.append(item)
            elif isinstance(item, bytes):
                urls.append(_text(item))
            else:
                raise BencodeError(f"url-list entry must be a string, not {type(item).__name__}")
        return urls
    raise BencodeError(f"url-list must be a string or a list, not {type(value).__name__}")