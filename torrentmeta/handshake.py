"""The plain BitTorrent peer handshake: building it and reading it back."""

from __future__ import annotations

import asyncio
from typing import Any

PSTR = b"\x13BitTorrent protocol"
"""Length-prefixed protocol string that opens every handshake."""

HANDSHAKE_LENGTH = 68
EXTENSIONS_SIZE = 8
INFO_HASH_SIZE = 20
PEER_ID_SIZE = 20


class HandshakeError(Exception):
    """Raised when a peer's handshake is malformed or cut short."""


def _check_size(value: bytes, size: int, what: str) -> bytes:
    data = bytes(value)
    if len(data) != size:
        raise ValueError(f"{what} must be {size} bytes, got {len(data)}")
    return data


def build_handshake(info_hash: bytes, peer_id: bytes, extensions: bytes) -> bytes:
    """Return the 68-byte handshake: protocol, extension bits, info hash and peer id."""
    return (
        PSTR
        + _check_size(extensions, EXTENSIONS_SIZE, "extensions")
        + _check_size(info_hash, INFO_HASH_SIZE, "info hash")
        + _check_size(peer_id, PEER_ID_SIZE, "peer id")
    )


async def _read(reader: Any, n: int) -> bytes:
    read_exactly = getattr(reader, "read_exactly", None) or reader.readexactly
    try:
        return bytes(await read_exactly(n))
    except asyncio.IncompleteReadError as exc:
        raise HandshakeError(
            f"unexpected end of stream: wanted {n} bytes, got {len(exc.partial)}"
        ) from exc


async def read_handshake_start(reader: Any) -> tuple[bytes, bytes]:
    """Read the protocol string, extensions and info hash; return (extensions, info_hash).

    ``reader`` offers an awaitable ``readexactly`` or ``read_exactly``.
    """
    protocol = await _read(reader, len(PSTR))
    if protocol != PSTR:
        raise HandshakeError("invalid protocol")
    extensions = await _read(reader, EXTENSIONS_SIZE)
    info_hash = await _read(reader, INFO_HASH_SIZE)
    return extensions, info_hash


async def read_peer_id(reader: Any) -> bytes:
    """Read the 20-byte peer id that ends a handshake."""
    return await _read(reader, PEER_ID_SIZE)