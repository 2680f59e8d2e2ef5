"""Message Stream Encryption: the obfuscated BitTorrent handshake and RC4 stream."""

from __future__ import annotations

import asyncio
import enum
import hashlib
import secrets
from collections.abc import Callable
from typing import Protocol

from Crypto.Cipher import ARC4

P = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD129024E088A67CC74"
    "020BBEA63B139B22514A08798E3404DDEF9519B3CD3A431B302B0A6DF25F1437"
    "4FE1356D6D51C245E485B576625E7EC6F44C42E9A63A36210000000000090563",
    16,
)
G = 2
KEY_SIZE = 96
_VC = bytes(8)
_MAX_PAD = 512
_UINT16_MAX = 0xFFFF
_RC4_DROP = 1024


class MseError(Exception):
    """Raised when the encrypted handshake fails or the stream is misused."""


class CryptoMethod(enum.IntFlag):
    """Bit field of the stream ciphers a peer offers or selects."""

    PLAIN_TEXT = 1
    RC4 = 2

    def __str__(self) -> str:
        return {1: "PlainText", 2: "RC4"}.get(int(self), "unknown")


class _Reader(Protocol):
    async def read(self, n: int = -1) -> bytes: ...

    async def readexactly(self, n: int) -> bytes: ...


class _Writer(Protocol):
    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def close(self) -> None: ...


def _pad96(n: int) -> bytes:
    return n.to_bytes(KEY_SIZE, "big")


def _key_pair() -> tuple[int, int]:
    private = int.from_bytes(secrets.token_bytes(20), "big")
    return private, pow(G, private, P)


def _hash_int(prefix: bytes, n: int) -> bytes:
    return hashlib.sha1(prefix + _pad96(n)).digest()


def _rc4_key(prefix: bytes, secret: int, skey: bytes) -> bytes:
    return hashlib.sha1(prefix + _pad96(secret) + skey).digest()


def _xor(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))


def _pad_random() -> bytes:
    return secrets.token_bytes(secrets.randbelow(_MAX_PAD))


def _pad_zero() -> bytes:
    return bytes(secrets.randbelow(_MAX_PAD))


def _is_power_of_two(x: int) -> bool:
    return x != 0 and x & (x - 1) == 0


def _identity(data: bytes) -> bytes:
    return data


def hash_skey(key: bytes) -> bytes:
    """Return the hash under which a stream key travels in the handshake."""
    return hashlib.sha1(b"req2" + bytes(key)).digest()


class MseStream:
    """A reader/writer pair that encrypts traffic after an MSE handshake.

    One of the handshake methods must complete before reading or writing.
    """

    def __init__(self, reader: _Reader, writer: _Writer) -> None:
        self._reader = reader
        self._writer = writer
        self._encrypt: Callable[[bytes], bytes] = _identity
        self._decrypt: Callable[[bytes], bytes] = _identity
        self._buffered = b""
        self._ready = False

    async def _raw_exactly(self, n: int) -> bytes:
        try:
            return bytes(await self._reader.readexactly(n))
        except asyncio.IncompleteReadError as exc:
            raise MseError("unexpected end of stream during handshake") from exc

    async def _decrypted_exactly(self, n: int) -> bytes:
        return self._decrypt(await self._raw_exactly(n))

    async def _send(self, data: bytes) -> None:
        self._writer.write(data)
        await self._writer.drain()

    def _init_rc4(self, enc_prefix: bytes, dec_prefix: bytes, secret: int, skey: bytes) -> None:
        self._encrypt = ARC4.new(_rc4_key(enc_prefix, secret, skey), drop=_RC4_DROP).encrypt
        self._decrypt = ARC4.new(_rc4_key(dec_prefix, secret, skey), drop=_RC4_DROP).encrypt

    async def _read_sync(self, key: bytes, limit: int) -> None:
        window = await self._raw_exactly(len(key))
        limit -= len(key)
        while window != key:
            if limit <= 0:
                raise MseError("sync point is not found")
            window = window[1:] + await self._raw_exactly(1)
            limit -= 1

    @staticmethod
    def _check_selected(selected: CryptoMethod, provided: CryptoMethod, message: str) -> None:
        if not selected:
            raise MseError("none of the provided methods are accepted")
        if not _is_power_of_two(int(selected)):
            raise MseError(f"invalid crypto selected: {int(selected)}")
        if not int(selected) & int(provided):
            raise MseError(f"{message}: {int(selected)}")

    def _finish(self, selected: CryptoMethod, initial: bytes) -> None:
        if selected == CryptoMethod.PLAIN_TEXT:
            self._encrypt = _identity
            self._decrypt = _identity
        self._buffered = initial
        self._ready = True

    async def handshake_outgoing(
        self, skey: bytes, crypto_provide: CryptoMethod, initial_payload: bytes = b""
    ) -> CryptoMethod:
        """Run the initiator's side of the handshake and return the selected method."""
        provide = CryptoMethod(int(crypto_provide))
        if not provide:
            raise MseError("no crypto methods are provided")
        payload = bytes(initial_payload or b"")
        if len(payload) > _UINT16_MAX:
            raise MseError("initial payload is too big")
        skey = bytes(skey)

        private, public = _key_pair()
        await self._send(_pad96(public) + _pad_random())

        remote = int.from_bytes(await self._raw_exactly(KEY_SIZE), "big")
        secret = pow(remote, private, P)
        self._init_rc4(b"keyA", b"keyB", secret, skey)

        req1 = _hash_int(b"req1", secret)
        req23 = _xor(hash_skey(skey), _hash_int(b"req3", secret))
        pad_c = _pad_zero()
        plain = (
            _VC
            + int(provide).to_bytes(4, "big")
            + len(pad_c).to_bytes(2, "big")
            + pad_c
            + len(payload).to_bytes(2, "big")
            + payload
        )
        await self._send(req1 + req23 + self._encrypt(plain))

        await self._read_sync(self._decrypt(_VC), 616 - KEY_SIZE)
        selected = CryptoMethod(int.from_bytes(await self._decrypted_exactly(4), "big"))
        self._check_selected(selected, provide, "selected crypto was not provided")
        len_pad_d = int.from_bytes(await self._decrypted_exactly(2), "big")
        await self._decrypted_exactly(len_pad_d)
        self._finish(selected, b"")
        return selected

    async def handshake_incoming(
        self,
        get_skey: Callable[[bytes], bytes | None],
        crypto_select: Callable[[CryptoMethod], CryptoMethod | int],
    ) -> CryptoMethod:
        """Run the receiver's side of the handshake and return the selected method.

        ``get_skey`` maps a stream key hash to its key, or None if unknown.
        ``crypto_select`` picks one method from those the initiator offers.
        """
        private, public = _key_pair()
        remote = int.from_bytes(await self._raw_exactly(KEY_SIZE), "big")
        secret = pow(remote, private, P)

        await self._send(_pad96(public) + _pad_random())

        await self._read_sync(_hash_int(b"req1", secret), 628 - KEY_SIZE)
        skey_hash = _xor(await self._raw_exactly(20), _hash_int(b"req3", secret))
        skey = get_skey(skey_hash)
        if skey is None:
            raise MseError("invalid SKEY hash")
        self._init_rc4(b"keyB", b"keyA", secret, bytes(skey))

        vc = await self._decrypted_exactly(len(_VC))
        if vc != _VC:
            raise MseError(f"invalid VC: {vc.hex()}")
        provided = CryptoMethod(int.from_bytes(await self._decrypted_exactly(4), "big"))
        if not provided:
            raise MseError("no crypto methods are provided")
        selected = CryptoMethod(int(crypto_select(provided)))
        self._check_selected(selected, provided, "selected crypto is not provided")
        len_pad_c = int.from_bytes(await self._decrypted_exactly(2), "big")
        await self._decrypted_exactly(len_pad_c)
        len_ia = int.from_bytes(await self._decrypted_exactly(2), "big")
        initial = await self._decrypted_exactly(len_ia)

        pad_d = _pad_zero()
        reply = _VC + int(selected).to_bytes(4, "big") + len(pad_d).to_bytes(2, "big") + pad_d
        await self._send(self._encrypt(reply))

        self._finish(selected, initial)
        return selected

    def _require_ready(self) -> None:
        if not self._ready:
            raise MseError("handshake has not completed")

    async def read(self, n: int = -1) -> bytes:
        """Read up to ``n`` decrypted bytes; an empty result means end of stream."""
        self._require_ready()
        if n == 0:
            return b""
        if self._buffered:
            data = self._buffered if n < 0 else self._buffered[:n]
            self._buffered = self._buffered[len(data):]
            return data
        raw = await self._reader.read(n)
        return self._decrypt(bytes(raw)) if raw else b""

    async def read_exactly(self, n: int) -> bytes:
        """Read exactly ``n`` decrypted bytes or raise asyncio.IncompleteReadError."""
        self._require_ready()
        head = self._buffered[:n]
        self._buffered = self._buffered[len(head):]
        rest = n - len(head)
        if rest == 0:
            return head
        try:
            raw = await self._reader.readexactly(rest)
        except asyncio.IncompleteReadError as exc:
            raise asyncio.IncompleteReadError(head + self._decrypt(bytes(exc.partial)), n) from None
        return head + self._decrypt(bytes(raw))

    def write(self, data: bytes) -> None:
        """Encrypt ``data`` and queue it on the underlying writer."""
        self._require_ready()
        self._writer.write(self._encrypt(bytes(data)))

    async def drain(self) -> None:
        await self._writer.drain()

    def close(self) -> None:
        self._writer.close()