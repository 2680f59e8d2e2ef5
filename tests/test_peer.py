import asyncio
import time

import pytest

from torrentmeta.handshake import PSTR, HandshakeError, build_handshake
from torrentmeta.mse import CryptoMethod, MseError, hash_skey
from torrentmeta.peer import accept, dial

EXT1 = bytes([0x0A]) + bytes(7)
EXT2 = bytes([0x0B]) + bytes(7)
ID1 = bytes([0x0C]) + bytes(19)
ID2 = bytes([0x0D]) + bytes(19)
INFO_HASH = bytes([0x0E]) + bytes(19)
SKEY_HASH = hash_skey(INFO_HASH)


def _get_skey(h):
    return INFO_HASH if h == SKEY_HASH else None


class _Writer:
    def __init__(self):
        self.data = bytearray()
        self.closed = False

    def write(self, data):
        self.data += data

    async def drain(self):
        pass

    def close(self):
        self.closed = True


def _reader_with(data, eof=True):
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


@pytest.mark.asyncio
async def test_encrypted():
    loop = asyncio.get_running_loop()
    result = loop.create_future()

    async def handler(reader, writer):
        try:
            conn = await accept(
                reader, writer, 10, _get_skey, lambda ih: ih == INFO_HASH, EXT2, ID2
            )
            received = await conn.read_exactly(9)
            conn.write(b"hello in")
            await conn.drain()
            result.set_result((conn, received))
        except Exception as exc:
            result.set_exception(exc)
            writer.close()

    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    async with server:
        client = await dial("127.0.0.1", port, time.time() + 10, EXT1, INFO_HASH, ID1)
        client.write(b"hello out")
        await client.drain()
        reply = await client.read_exactly(8)
        conn, received = await asyncio.wait_for(result, 10)
        client.close()
        conn.close()

    assert client.cipher == CryptoMethod.RC4
    assert client.peer_extensions == EXT2
    assert client.peer_id == ID2
    assert reply == b"hello in"
    assert conn.cipher == CryptoMethod.RC4
    assert conn.peer_extensions == EXT1
    assert conn.info_hash == INFO_HASH
    assert conn.peer_id == ID1
    assert received == b"hello out"


@pytest.mark.asyncio
async def test_unencrypted_accept_rejects_encrypted_dial():
    loop = asyncio.get_running_loop()
    outcome = loop.create_future()

    async def handler(reader, writer):
        try:
            await accept(reader, writer, 10, None, lambda ih: ih == INFO_HASH, EXT2, ID2)
        except Exception as exc:
            outcome.set_result(exc)
        else:
            outcome.set_result(None)
        finally:
            writer.close()

    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    async with server:
        with pytest.raises((MseError, ConnectionError)):
            await dial("127.0.0.1", port, time.time() + 10, EXT1, INFO_HASH, ID1)
        server_error = await asyncio.wait_for(outcome, 10)

    assert isinstance(server_error, HandshakeError)
    assert str(server_error) == "invalid protocol"


@pytest.mark.asyncio
async def test_dial_past_deadline():
    with pytest.raises(TimeoutError):
        await dial("127.0.0.1", 1, time.time() - 1, EXT1, INFO_HASH, ID1)


@pytest.mark.asyncio
async def test_accept_plain_handshake():
    reader = _reader_with(build_handshake(INFO_HASH, ID1, EXT1))
    writer = _Writer()
    conn = await accept(reader, writer, 5, None, lambda ih: ih == INFO_HASH, EXT2, ID2)
    assert conn.cipher == CryptoMethod(0)
    assert conn.peer_extensions == EXT1
    assert conn.peer_id == ID1
    assert conn.info_hash == INFO_HASH
    assert bytes(writer.data) == build_handshake(INFO_HASH, ID2, EXT2)


@pytest.mark.asyncio
async def test_accept_plain_stream_passes_data():
    reader = _reader_with(build_handshake(INFO_HASH, ID1, EXT1) + b"payload")
    writer = _Writer()
    conn = await accept(reader, writer, 5, None, lambda ih: True, EXT2, ID2)
    assert await conn.read_exactly(7) == b"payload"
    conn.write(b"out")
    assert bytes(writer.data).endswith(b"out")


@pytest.mark.asyncio
async def test_accept_info_hash_mismatch():
    reader = _reader_with(build_handshake(INFO_HASH, ID1, EXT1))
    with pytest.raises(HandshakeError, match="info hash mismatch"):
        await accept(reader, _Writer(), 5, None, lambda ih: False, EXT2, ID2)


@pytest.mark.asyncio
async def test_accept_rejects_own_peer_id():
    reader = _reader_with(build_handshake(INFO_HASH, ID2, EXT1))
    with pytest.raises(HandshakeError, match="peerID matches ourID"):
        await accept(reader, _Writer(), 5, None, lambda ih: True, EXT2, ID2)


@pytest.mark.asyncio
async def test_accept_truncated_handshake():
    reader = _reader_with(PSTR + b"\x00\x01")
    with pytest.raises(HandshakeError):
        await accept(reader, _Writer(), 5, None, lambda ih: True, EXT2, ID2)


@pytest.mark.asyncio
async def test_accept_times_out():
    reader = _reader_with(b"", eof=False)
    with pytest.raises(TimeoutError):
        await accept(reader, _Writer(), 0.05, None, lambda ih: True, EXT2, ID2)