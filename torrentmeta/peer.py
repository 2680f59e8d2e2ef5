"""Outgoing and incoming BitTorrent peer connections with stream encryption."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .handshake import HandshakeError, build_handshake, read_handshake_start, read_peer_id
from .mse import CryptoMethod, MseStream


class _PlainStream:
    """Unencrypted stream over an asyncio reader/writer pair."""

    def __init__(self, reader: Any, writer: Any) -> None:
        self._reader = reader
        self._writer = writer

    async def read(self, n: int = -1) -> bytes:
        return bytes(await self._reader.read(n))

    async def read_exactly(self, n: int) -> bytes:
        return bytes(await self._reader.readexactly(n))

    def write(self, data: bytes) -> None:
        self._writer.write(bytes(data))

    async def drain(self) -> None:
        await self._writer.drain()

    def close(self) -> None:
        self._writer.close()


class _RecordingReader:
    """Reader that remembers every byte it hands out."""

    def __init__(self, reader: Any) -> None:
        self._reader = reader
        self.recorded = bytearray()

    async def readexactly(self, n: int) -> bytes:
        try:
            data = bytes(await self._reader.readexactly(n))
        except asyncio.IncompleteReadError as exc:
            self.recorded += exc.partial
            raise
        self.recorded += data
        return data


class _ReplayReader:
    """Reader that first returns already-consumed bytes, then continues from the source."""

    def __init__(self, prefix: bytes, reader: Any) -> None:
        self._prefix = bytes(prefix)
        self._reader = reader

    async def read(self, n: int = -1) -> bytes:
        if n == 0:
            return b""
        if self._prefix:
            data = self._prefix if n < 0 else self._prefix[:n]
            self._prefix = self._prefix[len(data):]
            return data
        return bytes(await self._reader.read(n))

    async def readexactly(self, n: int) -> bytes:
        head = self._prefix[:n]
        self._prefix = self._prefix[len(head):]
        if len(head) == n:
            return head
        try:
            rest = bytes(await self._reader.readexactly(n - len(head)))
        except asyncio.IncompleteReadError as exc:
            raise asyncio.IncompleteReadError(head + bytes(exc.partial), n) from None
        return head + rest


@dataclass
class PeerConnection:
    """A peer connection whose BitTorrent handshake has completed."""

    stream: Any = field(repr=False)
    cipher: CryptoMethod
    peer_extensions: bytes
    peer_id: bytes
    info_hash: bytes

    async def read(self, n: int = -1) -> bytes:
        """Read up to ``n`` bytes; an empty result means end of stream."""
        return await self.stream.read(n)

    async def read_exactly(self, n: int) -> bytes:
        """Read exactly ``n`` bytes or raise asyncio.IncompleteReadError."""
        return await self.stream.read_exactly(n)

    def write(self, data: bytes) -> None:
        self.stream.write(data)

    async def drain(self) -> None:
        await self.stream.drain()

    def close(self) -> None:
        self.stream.close()


async def dial(
    host: str,
    port: int,
    deadline: float,
    our_extensions: bytes,
    info_hash: bytes,
    our_id: bytes,
) -> PeerConnection:
    """Connect to a peer and complete an encrypted BitTorrent handshake.

    ``deadline`` is a wall-clock time as returned by ``time.time()``; the whole
    connection and handshake must finish before it, or TimeoutError is raised.
    """
    info_hash = bytes(info_hash)
    our_id = bytes(our_id)
    handshake = build_handshake(info_hash, our_id, our_extensions)
    remaining = deadline - time.time()
    if remaining <= 0:
        raise TimeoutError("deadline has already passed")
    async with asyncio.timeout(remaining):
        reader, writer = await asyncio.open_connection(host, port)
        try:
            stream = MseStream(reader, writer)
            cipher = await stream.handshake_outgoing(info_hash[:20], CryptoMethod.RC4, handshake)
            peer_extensions, remote_hash = await read_handshake_start(stream)
            if remote_hash != info_hash:
                raise HandshakeError("invalid infohash")
            peer_id = await read_peer_id(stream)
            if peer_id == our_id:
                raise HandshakeError("peerID matches ourID")
        except BaseException:
            writer.close()
            raise
    return PeerConnection(stream, cipher, peer_extensions, peer_id, info_hash)


async def accept(
    reader: Any,
    writer: Any,
    timeout: float,
    get_skey: Callable[[bytes], bytes | None] | None,
    has_info_hash: Callable[[bytes], bool],
    our_extensions: bytes,
    our_id: bytes,
) -> PeerConnection:
    """Answer a peer's handshake on an accepted connection, plain or encrypted.

    A plain handshake is tried first; if it is not one and ``get_skey`` is given,
    the bytes already read are replayed into an encrypted handshake.
    """
    our_id = bytes(our_id)
    cipher = CryptoMethod(0)

    def select(provided: CryptoMethod) -> CryptoMethod:
        nonlocal cipher
        if provided & CryptoMethod.RC4:
            cipher = CryptoMethod.RC4
            return CryptoMethod.RC4
        if provided & CryptoMethod.PLAIN_TEXT:
            # The connection proceeds unencrypted and the cipher stays unset.
            return CryptoMethod.PLAIN_TEXT
        return CryptoMethod(0)

    async with asyncio.timeout(timeout):
        recorder = _RecordingReader(reader)
        stream: Any
        try:
            peer_extensions, info_hash = await read_handshake_start(recorder)
            stream = _PlainStream(reader, writer)
        except HandshakeError:
            if get_skey is None:
                raise
            mse = MseStream(_ReplayReader(bytes(recorder.recorded), reader), writer)
            await mse.handshake_incoming(get_skey, select)
            stream = mse
            peer_extensions, info_hash = await read_handshake_start(stream)

        if not has_info_hash(info_hash):
            raise HandshakeError("info hash mismatch")
        stream.write(build_handshake(info_hash, our_id, our_extensions))
        await stream.drain()
        peer_id = await read_peer_id(stream)
        if peer_id == our_id:
            raise HandshakeError("peerID matches ourID")
    return PeerConnection(stream, cipher, peer_extensions, peer_id, info_hash)