"""Merkle trees over SHA-256 leaf hashes, as used by BitTorrent v2."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence

BLOCK_SIZE = 1 << 14
"""Leaf block size of BitTorrent v2 Merkle trees (16 KiB)."""

HASH_SIZE = 32
_ZERO_HASH = bytes(HASH_SIZE)


def round_up_to_power_of_two(n: int) -> int:
    """Return the smallest power of two >= n; zero maps to zero."""
    if n < 0:
        raise ValueError("n must not be negative")
    if n == 0:
        return 0
    return 1 << (n - 1).bit_length()


def log2_rounding_up(n: int) -> int:
    """Return the smallest base-two logarithm >= log2(n); zero maps to zero."""
    if n < 0:
        raise ValueError("n must not be negative")
    if n == 0:
        return 0
    return (n - 1).bit_length()


def root(hashes: Sequence[bytes]) -> bytes:
    """Compute the Merkle root of a power-of-two number of hashes."""
    level = [bytes(h) for h in hashes]
    if not level:
        return hashlib.sha256(b"").digest()
    if len(level) != round_up_to_power_of_two(len(level)):
        raise ValueError(f"expected power of two number of hashes, got {len(level)}")
    while len(level) > 1:
        level = [
            hashlib.sha256(left + right).digest()
            for left, right in zip(level[::2], level[1::2])
        ]
    return level[0]


def root_with_pad_hash(hashes: Iterable[bytes], pad_hash: bytes) -> bytes:
    """Compute the Merkle root after padding the hashes to a power of two."""
    level = list(hashes)
    level.extend([bytes(pad_hash)] * (round_up_to_power_of_two(len(level)) - len(level)))
    return root(level)


def compact_layer_to_hashes(compact_layer: bytes | str) -> list[bytes]:
    """Split a concatenated layer into 32-byte hashes; a trailing fragment is ignored."""
    data = compact_layer.encode("latin-1") if isinstance(compact_layer, str) else bytes(compact_layer)
    count = len(data) // HASH_SIZE
    return [data[i * HASH_SIZE:(i + 1) * HASH_SIZE] for i in range(count)]


class MerkleHash:
    """Incremental hash whose digest is the Merkle root of 16 KiB block hashes."""

    def __init__(self) -> None:
        self._blocks: list[bytes] = []
        self._next = hashlib.sha256()
        self._next_written = 0

    def update(self, data: bytes) -> None:
        """Feed more data into the hash."""
        view = memoryview(data).cast("B")
        while view:
            take = min(len(view), BLOCK_SIZE - self._next_written)
            self._next.update(view[:take])
            self._next_written += take
            view = view[take:]
            if self._next_written == BLOCK_SIZE:
                self._blocks.append(self._next.digest())
                self._next = hashlib.sha256()
                self._next_written = 0

    def _current_blocks(self) -> list[bytes]:
        blocks = list(self._blocks)
        if self._next_written:
            blocks.append(self._next.digest())
        return blocks

    def digest(self) -> bytes:
        """Return the Merkle root of the data written so far."""
        return root_with_pad_hash(self._current_blocks(), _ZERO_HASH)

    def hexdigest(self) -> str:
        return self.digest().hex()

    def digest_min_length(self, length: int) -> bytes:
        """Return the root after extending with zero hashes up to ``length`` bytes of blocks."""
        blocks = self._current_blocks()
        min_blocks = (length + BLOCK_SIZE - 1) // BLOCK_SIZE
        if min_blocks < len(blocks):
            raise ValueError(
                f"length {length} is shorter than the {len(blocks)} blocks already written"
            )
        blocks.extend([_ZERO_HASH] * (min_blocks - len(blocks)))
        return root_with_pad_hash(blocks, _ZERO_HASH)

    def reset(self) -> None:
        """Return the hash to its initial state."""
        self._blocks.clear()
        self._next = hashlib.sha256()
        self._next_written = 0

    @property
    def digest_size(self) -> int:
        return HASH_SIZE

    @property
    def block_size(self) -> int:
        return self._next.block_size