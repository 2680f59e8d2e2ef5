"""The info dictionary of a torrent (BEP 3 and BEP 52) and its pieces."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, BinaryIO

from .bencoding import BencodeError
from .files import FileInfo, FileTree, FileTreeFile
from .pieces import choose_piece_length
from .pieces import generate_pieces as _hash_pieces

NO_NAME = "-"
"""Sentinel name used when the root path has no usable base name."""

PIECE_HASH_SIZE = 20
_CHUNK = 1 << 16


def _text(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def _raw(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _get_int(entry: dict[bytes, Any], key: bytes) -> int:
    value = entry[key]
    if not isinstance(value, int) or isinstance(value, bool):
        raise BencodeError(f"{_text(key)} must be an integer, not {type(value).__name__}")
    return value


def _get_bytes(entry: dict[bytes, Any], key: bytes) -> bytes:
    value = entry[key]
    if isinstance(value, str):
        return _raw(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    raise BencodeError(f"{_text(key)} must be a string, not {type(value).__name__}")


def _get_text_list(entry: dict[bytes, Any], key: bytes) -> list[str]:
    value = entry[key]
    if not isinstance(value, list):
        raise BencodeError(f"{_text(key)} must be a list, not {type(value).__name__}")
    out = []
    for item in value:
        if isinstance(item, str):
            out.append(item)
        elif isinstance(item, (bytes, bytearray)):
            out.append(_text(bytes(item)))
        else:
            raise BencodeError(f"{_text(key)} element must be a string")
    return out


class _FilesReader:
    """Reads the concatenated contents of a torrent's files."""

    def __init__(self, files: list[FileInfo], open_file: Callable[[FileInfo], BinaryIO]) -> None:
        self._chunks = self._iter_chunks(files, open_file)
        self._buffer = b""

    @staticmethod
    def _iter_chunks(
        files: list[FileInfo], open_file: Callable[[FileInfo], BinaryIO]
    ) -> Iterator[bytes]:
        for fi in files:
            try:
                handle = open_file(fi)
            except OSError as exc:
                raise OSError(f"error opening {fi}: {exc}") from exc
            try:
                remaining = fi.length
                while remaining > 0:
                    chunk = handle.read(min(remaining, _CHUNK))
                    if not chunk:
                        raise OSError(f"error copying {fi}: unexpected end of file")
                    yield bytes(chunk)
                    remaining -= len(chunk)
            finally:
                close = getattr(handle, "close", None)
                if close is not None:
                    close()

    def read(self, size: int = -1) -> bytes:
        while size < 0 or len(self._buffer) < size:
            chunk = next(self._chunks, None)
            if chunk is None:
                break
            self._buffer += chunk
        if size < 0:
            data, self._buffer = self._buffer, b""
        else:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data


@dataclass
class Info:
    """An info dictionary, covering v1, v2 and hybrid torrents."""

    piece_length: int = 0
    pieces: bytes | None = None
    name: str = ""
    name_utf8: str = ""
    length: int = 0
    attr: str = ""
    symlink_path: list[str] = field(default_factory=list)
    sha1: bytes = b""
    private: bool | None = None
    source: str = ""
    files: list[FileInfo] | None = None
    meta_version: int = 0
    file_tree: FileTree = field(default_factory=FileTree)

    @classmethod
    def from_bencode(cls, value: Any) -> Info:
        """Build an Info from a decoded info dictionary."""
        if not isinstance(value, dict):
            raise BencodeError(f"info must be a dictionary, not {type(value).__name__}")
        entry = {(_raw(k) if isinstance(k, str) else bytes(k)): v for k, v in value.items()}
        info = cls()
        if b"piece length" in entry:
            info.piece_length = _get_int(entry, b"piece length")
        if b"pieces" in entry:
            info.pieces = _get_bytes(entry, b"pieces")
        if b"name" in entry:
            info.name = _text(_get_bytes(entry, b"name"))
        if b"name.utf-8" in entry:
            info.name_utf8 = _text(_get_bytes(entry, b"name.utf-8"))
        if b"length" in entry:
            info.length = _get_int(entry, b"length")
        if b"attr" in entry:
            info.attr = _text(_get_bytes(entry, b"attr"))
        if b"symlink path" in entry:
            info.symlink_path = _get_text_list(entry, b"symlink path")
        if b"sha1" in entry:
            info.sha1 = _get_bytes(entry, b"sha1")
        if b"private" in entry:
            info.private = bool(_get_int(entry, b"private"))
        if b"source" in entry:
            info.source = _text(_get_bytes(entry, b"source"))
        if b"files" in entry:
            files = entry[b"files"]
            if not isinstance(files, list):
                raise BencodeError("files must be a list")
            info.files = [FileInfo.from_bencode(item) for item in files]
        if b"meta version" in entry:
            info.meta_version = _get_int(entry, b"meta version")
        if b"file tree" in entry:
            info.file_tree = FileTree.from_bencode(entry[b"file tree"])
        return info

    def to_bencode(self) -> dict[str, Any]:
        """Return the info dictionary as a value ready for bencoding."""
        value: dict[str, Any] = {"piece length": self.piece_length, "name": self.name}
        if self.pieces is not None:
            value["pieces"] = bytes(self.pieces)
        if self.name_utf8:
            value["name.utf-8"] = self.name_utf8
        if self.length:
            value["length"] = self.length
        if self.attr:
            value["attr"] = self.attr
        if self.symlink_path:
            value["symlink path"] = list(self.symlink_path)
        if self.sha1:
            value["sha1"] = bytes(self.sha1)
        if self.private is not None:
            value["private"] = int(self.private)
        if self.source:
            value["source"] = self.source
        if self.files:
            value["files"] = [fi.to_bencode() for fi in self.files]
        if self.meta_version:
            value["meta version"] = self.meta_version
        if self.file_tree.dir or self.file_tree.file != FileTreeFile():
            value["file tree"] = self.file_tree.to_bencode()
        return value

    def build_from_file_path(self, root: str | os.PathLike[str]) -> None:
        """Fill name, files, length and pieces from a file or directory on disk."""
        root_path = str(root)
        base = Path(root_path).name
        self.name = NO_NAME if base in ("", ".", "..") else base
        self.files = None
        if os.path.isdir(root_path):
            found: list[FileInfo] = []
            for dirpath, _dirnames, filenames in os.walk(root_path):
                for filename in filenames:
                    full = os.path.join(dirpath, filename)
                    rel = os.path.relpath(full, root_path)
                    found.append(FileInfo(length=os.path.getsize(full), path=rel.split(os.sep)))
            found.sort(key=lambda fi: "/".join(fi.best_path()))
            self.files = found or None
        else:
            self.length = os.path.getsize(root_path)
        if self.piece_length == 0:
            self.piece_length = choose_piece_length(self.total_length())
        self.generate_pieces(lambda fi: open(os.path.join(root_path, *fi.best_path()), "rb"))

    def generate_pieces(self, open_file: Callable[[FileInfo], BinaryIO]) -> None:
        """Set ``pieces`` by hashing the files, opened through ``open_file``."""
        if self.piece_length == 0:
            raise ValueError("piece length must be non-zero")
        reader = _FilesReader(self.upverted_files(), open_file)
        self.pieces = _hash_pieces(reader, self.piece_length)

    def total_length(self) -> int:
        return sum(fi.length for fi in self.upverted_files())

    def num_pieces(self) -> int:
        if self.has_v2():
            pl = self.piece_length
            return sum((node.file.length + pl - 1) // pl for _path, node in self.file_tree.walk())
        return len(self.pieces or b"") // PIECE_HASH_SIZE

    def is_dir(self) -> bool:
        """Whether the torrent is a directory of files rather than a single file."""
        if self.has_v2():
            return self.file_tree.is_dir()
        return bool(self.files)

    def upverted_files(self) -> list[FileInfo]:
        """Return the file list, converting a single-file info when needed."""
        if self.has_v2():
            return self.file_tree.upverted_files(self.piece_length)
        return self.upverted_v1_files()

    def upverted_v1_files(self) -> list[FileInfo]:
        """Return the v1 file list with torrent offsets filled in."""
        if not self.files:
            return [FileInfo(length=self.length)]
        files = []
        offset = 0
        for fi in self.files:
            files.append(replace(fi, torrent_offset=offset))
            offset += fi.length
        return files

    def piece(self, index: int) -> Piece:
        return Piece(self, index)

    def best_name(self) -> str:
        return self.name_utf8 or self.name

    def has_v2(self) -> bool:
        return self.meta_version == 2

    def has_v1(self) -> bool:
        return (
            self.meta_version in (0, 1)
            or self.files is not None
            or self.length != 0
            or bool(self.pieces)
        )

    def files_are_piece_aligned(self) -> bool:
        return self.has_v2()


@dataclass
class Piece:
    """A piece of a torrent, identified by its index."""

    info: Info
    index: int

    def length(self) -> int:
        if self.info.has_v2():
            pl = self.info.piece_length
            offset = 0
            last_file_end = 0
            for fi in self.info.file_tree.upverted_files(pl):
                if offset // pl > self.index:
                    break
                last_file_end = offset + fi.length
                offset = (last_file_end + pl - 1) // pl * pl
            return max(min(last_file_end - self.index * pl, pl), 0)
        return self.v1_length()

    def v1_length(self) -> int:
        i = self.index
        pl = self.info.piece_length
        last = self.info.num_pieces() - 1
        if 0 <= i < last:
            return pl
        if last >= 0 and i == last:
            last_file = self.info.upverted_v1_files()[-1]
            length = last_file.torrent_offset + last_file.length - i * pl
            if length <= 0 or length > pl:
                return 0
            return length
        return 0

    def offset(self) -> int:
        return self.index * self.info.piece_length

    def v1_hash(self) -> bytes:
        if not self.info.has_v1():
            return bytes(PIECE_HASH_SIZE)
        start = self.index * PIECE_HASH_SIZE
        chunk = (self.info.pieces or b"")[start:start + PIECE_HASH_SIZE]
        return chunk.ljust(PIECE_HASH_SIZE, b"\x00")