import hashlib
import io

import pytest

from torrentmeta.pieces import MINIMUM_PIECE_LENGTH, choose_piece_length, generate_pieces


class _TrickleReader:
    """Returns at most three bytes per read."""

    def __init__(self, data: bytes) -> None:
        self._stream = io.BytesIO(data)

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(min(size, 3))


_LENGTHS = list(range(0, 4294967296 + 1, 1 << 20)) + [
    1023,
    1024,
    32 * 1024 * 1024 - 1024,
    32 * 1024 * 1024,
    64 * 1024 * 1024 + 1024,
]


def test_choose_piece_length_invariants():
    for total_length in _LENGTHS:
        piece_length = choose_piece_length(total_length)
        assert piece_length % MINIMUM_PIECE_LENGTH == 0
        assert piece_length & (piece_length - 1) == 0
        assert total_length // piece_length < 2048


@pytest.mark.parametrize(
    "total, expected",
    [
        (0, 16384),
        (32 * 1024 * 1024 - 1, 16384),
        (32 * 1024 * 1024, 32768),
        (4294967296, 4194304),
    ],
)
def test_choose_piece_length_values(total, expected):
    assert choose_piece_length(total) == expected


def test_generate_pieces_empty():
    assert generate_pieces(io.BytesIO(b""), 4) == b""


def test_generate_pieces_partial_last_piece():
    result = generate_pieces(io.BytesIO(b"abcdefghij"), 4)
    assert len(result) == 60
    assert result[:20] == hashlib.sha1(b"abcd").digest()
    assert result[40:] == hashlib.sha1(b"ij").digest()


def test_generate_pieces_exact_multiple():
    assert len(generate_pieces(io.BytesIO(b"abcdefgh"), 4)) == 40


def test_generate_pieces_short_reads_match_full_reads():
    data = bytes(range(100))
    assert generate_pieces(_TrickleReader(data), 7) == generate_pieces(io.BytesIO(data), 7)


def test_generate_pieces_rejects_zero_length():
    with pytest.raises(ValueError):
        generate_pieces(io.BytesIO(b"abc"), 0)