"""Torrent files (metainfo): loading, writing and magnet link creation."""

from __future__ import annotations

import hashlib
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, BinaryIO

from .bencoding import BencodeError, decode, decode_prefix, encode, parse_node, parse_url_list
from .info import Info
from .magnet import Magnet, MagnetV2

AnnounceList = list[list[str]]


def overrides_announce(announce_list: Iterable[Iterable[str]], announce: str) -> bool:
    """Whether the announce-list should be preferred over a single announce URL."""
    return any(url != "" or announce == "" for tier in announce_list for url in tier)


def distinct_values(announce_list: Iterable[Iterable[str]]) -> list[str]:
    """Return every URL once, in first-seen order."""
    return list(dict.fromkeys(url for tier in announce_list for url in tier))


def _text(value: Any, what: str) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", "surrogateescape")
    raise BencodeError(f"{what} must be a string, not {type(value).__name__}")


def _raw_bytes(value: Any, what: str) -> bytes:
    if isinstance(value, str):
        return value.encode("utf-8", "surrogateescape")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    raise BencodeError(f"{what} must be a string, not {type(value).__name__}")


def _split_top_level(data: bytes) -> tuple[dict[bytes, Any], bytes | None, int]:
    """Decode a top-level dict, keeping the raw bytes of its ``info`` value."""
    if not data or data[0:1] != b"d":
        raise BencodeError("metainfo must be a dictionary")
    values: dict[bytes, Any] = {}
    info_raw: bytes | None = None
    pos = 1
    while True:
        if pos >= len(data):
            raise BencodeError("unterminated dictionary")
        if data[pos:pos + 1] == b"e":
            return values, info_raw, pos + 1
        key, used = decode_prefix(data[pos:])
        if not isinstance(key, bytes):
            raise BencodeError("dictionary key is not a string")
        pos += used
        value, used = decode_prefix(data[pos:])
        if key == b"info":
            info_raw = data[pos:pos + used]
        else:
            values[key] = value
        pos += used


@dataclass
class MetaInfo:
    """A torrent file."""

    info_bytes: bytes | None = None
    announce: str = ""
    announce_list: AnnounceList = field(default_factory=list)
    nodes: list[str] = field(default_factory=list)
    creation_date: int = 0
    comment: str = ""
    created_by: str = ""
    encoding: str = ""
    url_list: list[str] = field(default_factory=list)
    piece_layers: dict[bytes, bytes] = field(default_factory=dict)

    @classmethod
    def load(cls, stream: BinaryIO) -> MetaInfo:
        """Read a metainfo from a binary stream; trailing non-whitespace is an error."""
        return cls.from_bencode(stream.read())

    @classmethod
    def load_from_file(cls, filename: str) -> MetaInfo:
        with open(filename, "rb") as handle:
            return cls.load(handle)

    @classmethod
    def from_bencode(cls, value: bytes) -> MetaInfo:
        """Parse bencoded metainfo bytes."""
        data = bytes(value)
        fields, info_raw, end = _split_top_level(data)
        if data[end:].strip(b" \t\r\n"):
            raise BencodeError(f"error after decoding metainfo: trailing data at offset {end}")
        mi = cls(info_bytes=info_raw)
        if b"announce" in fields:
            mi.announce = _text(fields[b"announce"], "announce")
        if b"announce-list" in fields:
            tiers = fields[b"announce-list"]
            if not isinstance(tiers, list) or not all(isinstance(t, list) for t in tiers):
                raise BencodeError("announce-list must be a list of lists")
            mi.announce_list = [[_text(url, "announce-list entry") for url in tier] for tier in tiers]
        if b"nodes" in fields and isinstance(fields[b"nodes"], list):
            mi.nodes = [parse_node(node) for node in fields[b"nodes"]]
        date = fields.get(b"creation date")
        if isinstance(date, int) and not isinstance(date, bool):
            mi.creation_date = date
        if b"comment" in fields:
            mi.comment = _text(fields[b"comment"], "comment")
        if b"created by" in fields:
            mi.created_by = _text(fields[b"created by"], "created by")
        if b"encoding" in fields:
            mi.encoding = _text(fields[b"encoding"], "encoding")
        if b"url-list" in fields:
            mi.url_list = parse_url_list(fields[b"url-list"])
        if b"piece layers" in fields:
            layers = fields[b"piece layers"]
            if not isinstance(layers, dict):
                raise BencodeError("piece layers must be a dictionary")
            mi.piece_layers = {
                bytes(k): _raw_bytes(v, "piece layer") for k, v in layers.items()
            }
        return mi

    def to_bencode(self) -> bytes:
        """Encode to bencoded bytes, keeping the info dictionary byte for byte."""
        parts: dict[bytes, bytes] = {}
        if self.info_bytes:
            parts[b"info"] = bytes(self.info_bytes)
        fields: dict[str, Any] = {}
        if self.announce:
            fields["announce"] = self.announce
        if self.announce_list:
            fields["announce-list"] = self.announce_list
        if self.nodes:
            fields["nodes"] = self.nodes
        if self.creation_date:
            fields["creation date"] = self.creation_date
        if self.comment:
            fields["comment"] = self.comment
        if self.created_by:
            fields["created by"] = self.created_by
        if self.encoding:
            fields["encoding"] = self.encoding
        if self.url_list:
            fields["url-list"] = self.url_list
        if self.piece_layers:
            fields["piece layers"] = self.piece_layers
        for key, value in fields.items():
            parts[key.encode()] = encode(value)
        body = b"".join(encode(key) + parts[key] for key in sorted(parts))
        return b"d" + body + b"e"

    def unmarshal_info(self) -> Info:
        return Info.from_bencode(decode(self.info_bytes or b""))

    def hash_info_bytes(self) -> bytes:
        """Return the v1 info hash: SHA-1 of the raw info dictionary."""
        return hashlib.sha1(self.info_bytes or b"").digest()

    def write(self, stream: BinaryIO) -> None:
        stream.write(self.to_bencode())

    def set_defaults(self) -> None:
        """Set creator and creation date for a new torrent."""
        self.created_by = "torrentmeta"
        self.creation_date = int(time.time())

    def magnet(self, info_hash: bytes | None = None, info: Info | None = None) -> Magnet:
        """Create a v1 magnet link."""
        params = {"ws": list(self.url_list)} if self.url_list else {}
        return Magnet(
            info_hash=info_hash if info_hash is not None else self.hash_info_bytes(),
            trackers=distinct_values(self.upverted_announce_list()),
            display_name=info.best_name() if info is not None else "",
            params=params,
        )

    def magnet_v2(self) -> MagnetV2:
        """Create a magnet link for a v1, v2 or hybrid torrent."""
        info = self.unmarshal_info()
        m = MagnetV2(
            trackers=distinct_values(self.upverted_announce_list()),
            display_name=info.best_name(),
            params={"ws": list(self.url_list)} if self.url_list else {},
        )
        if info.has_v1():
            m.info_hash = self.hash_info_bytes()
        if info.has_v2():
            m.v2_info_hash = hashlib.sha256(self.info_bytes or b"").digest()
        return m

    def upverted_announce_list(self) -> AnnounceList:
        """Return the announce-list, built from the single announce URL if needed."""
        if overrides_announce(self.announce_list, self.announce):
            return self.announce_list
        if self.announce:
            return [[self.announce]]
        return []