import io

import pytest

from torrentmeta.bencoding import encode
from torrentmeta.files import FileInfo, FileTree, FileTreeFile
from torrentmeta.info import NO_NAME, Info, Piece


class _Zeros(io.RawIOBase):
    def readable(self):
        return True

    def read(self, size=-1):
        return bytes(size if size > 0 else 0)


def test_marshal_info():
    info = Info(pieces=b"")
    assert encode(info.to_bencode()) == b"d4:name0:12:piece lengthi0e6:pieces0:e"


def test_total_length():
    info = Info(files=[FileInfo(length=100), FileInfo(length=200), FileInfo(length=300)])
    assert info.total_length() == 600


def test_is_dir():
    assert Info().is_dir() is False
    info = Info(files=[FileInfo(length=100), FileInfo(length=200)])
    assert info.is_dir() is True


@pytest.mark.parametrize(
    "piece_length,lengths,expected",
    [
        (256 * 1024, [1024 * 1024 - 1], 4),
        (256 * 1024, [1024 * 1024], 4),
        (256 * 1024, [1024 * 1024 + 1], 5),
        (5, [1, 12], 3),
        (5, [4, 12], 4),
    ],
)
def test_num_pieces(piece_length, lengths, expected):
    info = Info(piece_length=piece_length, files=[FileInfo(length=n) for n in lengths])
    info.generate_pieces(lambda fi: _Zeros())
    assert info.num_pieces() == expected


def test_generate_pieces_zero_length():
    with pytest.raises(ValueError):
        Info().generate_pieces(lambda fi: _Zeros())


def test_generate_pieces_short_file():
    info = Info(piece_length=4, files=[FileInfo(length=10, path=["a"])])
    with pytest.raises(OSError):
        info.generate_pieces(lambda fi: io.BytesIO(b"abc"))


def test_build_from_file_path_order(tmp_path):
    (tmp_path / "b").touch()
    (tmp_path / "a").touch()
    info = Info(piece_length=1)
    info.build_from_file_path(tmp_path)
    assert [fi.path for fi in info.files] == [["a"], ["b"]]
    assert info.pieces == b""
    assert info.name == tmp_path.name


def test_build_from_single_file(tmp_path):
    target = tmp_path / "data.bin"
    target.write_bytes(b"x" * 10)
    info = Info(piece_length=4)
    info.build_from_file_path(target)
    assert info.length == 10
    assert info.files is None
    assert info.num_pieces() == 3


def test_build_from_dot_uses_no_name(tmp_path, monkeypatch):
    (tmp_path / "f").write_bytes(b"abc")
    monkeypatch.chdir(tmp_path)
    info = Info(piece_length=16)
    info.build_from_file_path(".")
    assert info.name == NO_NAME


def test_round_trip():
    info = Info(
        piece_length=16,
        pieces=bytes(20),
        name="n",
        private=True,
        files=[FileInfo(length=5, path=["x", "y"])],
    )
    back = Info.from_bencode(info.to_bencode())
    assert back.name == "n"
    assert back.private is True
    assert back.files[0].path == ["x", "y"]
    assert back.pieces == bytes(20)


def test_best_name_and_versions():
    info = Info(name="a", name_utf8="b")
    assert info.best_name() == "b"
    assert info.has_v1() is True
    v2 = Info(meta_version=2)
    assert v2.has_v2() and not v2.has_v1()
    assert v2.files_are_piece_aligned() is True


def test_piece_length_cases():
    info = Info(piece_length=1024, files=[FileInfo(length=2048)], pieces=bytes(4096))
    assert Piece(info, 0).length() == 1024
    info.files = [FileInfo(length=3072)]
    assert Piece(info, 2).length() == 1024
    info.files = [FileInfo(length=2048), FileInfo(length=1024, torrent_offset=2048)]
    assert Piece(info, 2).length() == 1024
    info.files = [FileInfo(length=4096)]
    assert Piece(info, 1).length() == 1024


def test_last_piece_length():
    info = Info(piece_length=1024, files=[FileInfo(length=2500)], pieces=bytes(60))
    assert info.piece(2).length() == 452
    assert info.piece(3).length() == 0


def test_v2_piece_length():
    tree = FileTree(
        dir={
            "a": FileTree(file=FileTreeFile(length=1500)),
            "b": FileTree(file=FileTreeFile(length=100)),
        }
    )
    info = Info(piece_length=1024, meta_version=2, file_tree=tree)
    assert info.num_pieces() == 3
    assert info.piece(1).length() == 476
    assert info.piece(2).length() == 100


def test_piece_offset():
    info = Info(piece_length=1024, files=[FileInfo(length=2048)], pieces=bytes(4096))
    assert [info.piece(i).offset() for i in range(3)] == [0, 1024, 2048]


def test_piece_v1_hash():
    info = Info(piece_length=1024, pieces=bytes(4096))
    assert info.piece(0).v1_hash() == bytes(20)
    info.pieces = bytes(20) + b"\x01" * 20
    assert info.piece(1).v1_hash() == b"\x01" * 20