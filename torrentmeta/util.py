"""Metadata extraction and validation, peer ids, and the per-torrent peer queue."""

from __future__ import annotations

import hashlib
import secrets
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from ipaddress import IPv4Address, IPv6Address, ip_address, ip_network
from typing import Any

from .bencoding import BencodeError, decode
from .info import Info

PEER_ID_LENGTH = 20
"""A peer id is exactly 20 bytes long."""

PEER_PREFIX = "-UT3600-"
"""Azureus-style client prefix of generated peer ids."""

Peer = tuple[str, int]

_PRIVATE_NETWORKS = tuple(
    ip_network(net) for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "fc00::/7")
)
_BROADCAST = IPv4Address("255.255.255.255")


class MetadataError(Exception):
    """Raised for metadata that is malformed or does not match its info hash."""


@dataclass
class File:
    """A file of a torrent as persisted: its size and display path."""

    size: int
    path: str


@dataclass
class Metadata:
    """Metadata fetched from a peer and verified against its info hash."""

    info_hash: bytes
    name: str
    total_size: int
    discovered_on: int
    files: list[File] = field(default_factory=list)


def total_size(files: Sequence[File]) -> int:
    """Sum the sizes of the files; an empty list or a negative size is an error."""
    if not files:
        raise MetadataError("no files would be persisted")
    total = 0
    for file in files:
        if file.size < 0:
            raise MetadataError("file size less than zero")
        total += file.size
    return total


def unmarshal_metainfo(metadata: bytes) -> Info:
    """Decode and validate an info dictionary."""
    try:
        info = Info.from_bencode(decode(metadata))
    except BencodeError as exc:
        raise MetadataError(str(exc)) from exc
    return validate_info(info)


def validate_info(info: Info) -> Info:
    """Check the pieces of an info dictionary; return it unchanged or raise MetadataError."""
    pieces = info.pieces or b""
    if len(pieces) % 20 != 0:
        raise MetadataError("pieces has invalid length")
    if info.piece_length == 0:
        raise MetadataError("zero piece length")
    expected = (info.total_length() + info.piece_length - 1) // info.piece_length
    if expected != info.num_pieces():
        raise MetadataError("piece count and file lengths are at odds")
    return info


def extract_files(info: Info) -> list[File]:
    """List the files of a torrent, treating a single-file torrent as one file."""
    if not info.files:
        return [File(size=info.length, path=info.name)]
    return [File(size=fi.length, path=fi.display_path(info)) for fi in info.files]


def extract_metadata(meta: bytes, info_hash: bytes, discovered_on: datetime) -> Metadata:
    """Verify metadata against its info hash and extract name, size and files."""
    info_hash = bytes(info_hash)
    if hashlib.sha1(bytes(meta)).digest() != info_hash:
        raise MetadataError("infohash mismatch")
    info = unmarshal_metainfo(meta)
    files = extract_files(info)
    return Metadata(
        info_hash=info_hash,
        name=info.name,
        total_size=total_size(files),
        discovered_on=int(discovered_on.timestamp()),
        files=files,
    )


def random_digit() -> int:
    """Return the byte value of a random ASCII digit."""
    return ord("0") + secrets.randbelow(10)


def random_id() -> bytes:
    """Return a peer id made of the client prefix and random digits."""
    prefix = PEER_PREFIX.encode()
    return prefix + bytes(random_digit() for _ in range(PEER_ID_LENGTH - len(prefix)))


def to_big_endian(i: int, n: int) -> bytes:
    """Return the low ``n`` bytes of ``i`` in big-endian order; ``n`` is 1, 2 or 4."""
    if n not in (1, 2, 4):
        raise ValueError(f"n must be 1, 2 or 4, not {n}")
    return (i & ((1 << (8 * n)) - 1)).to_bytes(n, "big")


def _parse_ip(host: Any) -> IPv4Address | IPv6Address | None:
    try:
        ip = ip_address(host)
    except ValueError:
        return None
    if isinstance(ip, IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _is_global_unicast(ip: IPv4Address | IPv6Address) -> bool:
    if ip.is_unspecified or ip.is_loopback or ip.is_multicast or ip.is_link_local:
        return False
    return ip != _BROADCAST


def _is_private(ip: IPv4Address | IPv6Address) -> bool:
    return any(ip.version == net.version and ip in net for net in _PRIVATE_NETWORKS)


class PeerQueue:
    """Spare peers per info hash, to retry with when a leech fails."""

    def __init__(self, max_n_leeches: int, filter_peers: Iterable[Any] = ()) -> None:
        self._max = max_n_leeches
        self._filters = [ip_network(net) for net in filter_peers]
        self._peers: dict[bytes, list[Peer]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)

    def __contains__(self, info_hash: object) -> bool:
        with self._lock:
            return info_hash in self._peers

    def is_allowed(self, host: Any, port: int) -> bool:
        """Whether a peer may be queued: inside a filter network, or a public address."""
        ip = _parse_ip(host)
        if ip is None:
            return False
        if self._filters:
            return any(ip.version == net.version and ip in net for net in self._filters)
        if not _is_global_unicast(ip) or _is_private(ip):
            return False
        return 1024 <= port <= 65535

    def push(self, info_hash: bytes, peers: Iterable[Peer]) -> None:
        """Queue allowed, distinct peers for an info hash, up to the limit."""
        info_hash = bytes(info_hash)
        with self._lock:
            for host, port in peers:
                if not self.is_allowed(host, port):
                    continue
                queue = self._peers.get(info_hash, [])
                if len(queue) >= self._max:
                    return
                peer = (str(_parse_ip(host)), port)
                if peer in queue:
                    continue
                self._peers[info_hash] = queue + [peer]

    def pop(self, info_hash: bytes) -> Peer | None:
        """Take the next queued peer, or None; an exhausted entry is dropped."""
        info_hash = bytes(info_hash)
        with self._lock:
            queue = self._peers.get(info_hash)
            if queue is None:
                return None
            if not queue:
                del self._peers[info_hash]
                return None
            return queue.pop(0)

    def flush(self, info_hash: bytes) -> None:
        """Forget every peer queued for an info hash."""
        with self._lock:
            self._peers.pop(bytes(info_hash), None)