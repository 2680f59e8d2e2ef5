"""Piece hashing and piece length selection for v1 torrents."""

from __future__ import annotations

import hashlib
from typing import BinaryIO, Protocol

MINIMUM_PIECE_LENGTH = 16 * 1024
TARGET_PIECE_COUNT_LOG2 = 10
TARGET_PIECE_COUNT_MIN = 1 << TARGET_PIECE_COUNT_LOG2
TARGET_PIECE_COUNT_MAX = TARGET_PIECE_COUNT_MIN << 1


class _Reader(Protocol):
    def read(self, size: int = ..., /) -> bytes: ...


def _read_up_to(reader: _Reader | BinaryIO, size: int) -> bytes:
    chunks: list[bytes] = []
    remaining = size
    while remaining > 0:
        chunk = reader.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def generate_pieces(reader: _Reader | BinaryIO, piece_length: int) -> bytes:
    """Read the stream to its end and return the concatenated SHA-1 of each piece."""
    if piece_length <= 0:
        raise ValueError("piece length must be positive")
    hashes = bytearray()
    while True:
        piece = _read_up_to(reader, piece_length)
        if piece:
            hashes += hashlib.sha1(piece).digest()
        if len(piece) < piece_length:
            return bytes(hashes)


def choose_piece_length(total_length: int) -> int:
    """Pick a power-of-two piece length of at least 16 KiB giving fewer than 2048 pieces."""
    piece_length = MINIMUM_PIECE_LENGTH
    pieces = total_length // piece_length
    while pieces >= TARGET_PIECE_COUNT_MAX:
        piece_length <<= 1
        pieces >>= 1
    return piece_length