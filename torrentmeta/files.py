"""File entries of info dictionaries: v1 file lists and v2 file trees."""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from .bencoding import BencodeError
from .merkle import BLOCK_SIZE, HASH_SIZE, compact_layer_to_hashes, root, root_with_pad_hash

FILE_TREE_PROPERTIES_KEY = ""
ZERO_ROOT = bytes(HASH_SIZE)


class _NamedInfo(Protocol):
    def is_dir(self) -> bool: ...

    def best_name(self) -> str: ...


def _key(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _text(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


def _as_dict(value: Any, what: str) -> dict[bytes, Any]:
    if not isinstance(value, dict):
        raise BencodeError(f"{what} must be a dictionary, not {type(value).__name__}")
    return {(_key(k) if isinstance(k, str) else bytes(k)): v for k, v in value.items()}


def _as_int(value: Any, what: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise BencodeError(f"{what} must be an integer, not {type(value).__name__}")
    return value


def _as_bytes(value: Any, what: str) -> bytes:
    if isinstance(value, str):
        return _key(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    raise BencodeError(f"{what} must be a string, not {type(value).__name__}")


def _as_text(value: Any, what: str) -> str:
    return _text(_as_bytes(value, what))


def _as_text_list(value: Any, what: str) -> list[str]:
    if not isinstance(value, list):
        raise BencodeError(f"{what} must be a list, not {type(value).__name__}")
    return [_as_text(item, f"{what} element") for item in value]


@dataclass
class FileInfo:
    """One file of a torrent, with BEP 47 attributes and v2 placement data."""

    length: int = 0
    path: list[str] = field(default_factory=list)
    path_utf8: list[str] = field(default_factory=list)
    attr: str = ""
    symlink_path: list[str] = field(default_factory=list)
    sha1: bytes = b""
    pieces_root: bytes = ZERO_ROOT
    torrent_offset: int = 0

    def best_path(self) -> list[str]:
        """Return the UTF-8 path when present, otherwise the plain path."""
        return self.path_utf8 if self.path_utf8 else self.path

    def display_path(self, info: _NamedInfo) -> str:
        """Return the path shown to users: joined components, or the torrent name."""
        if info.is_dir():
            return "/".join(self.best_path())
        return info.best_name()

    def to_bencode(self) -> dict[str, Any]:
        """Return the v1 ``files`` entry for this file."""
        value: dict[str, Any] = {"length": self.length, "path": list(self.path)}
        if self.path_utf8:
            value["path.utf-8"] = list(self.path_utf8)
        if self.attr:
            value["attr"] = self.attr
        if self.symlink_path:
            value["symlink path"] = list(self.symlink_path)
        if self.sha1:
            value["sha1"] = bytes(self.sha1)
        return value

    @classmethod
    def from_bencode(cls, value: Any) -> FileInfo:
        """Build a FileInfo from a decoded v1 ``files`` entry."""
        entry = _as_dict(value, "file entry")
        info = cls()
        if b"length" in entry:
            info.length = _as_int(entry[b"length"], "length")
        if b"path" in entry:
            info.path = _as_text_list(entry[b"path"], "path")
        if b"path.utf-8" in entry:
            info.path_utf8 = _as_text_list(entry[b"path.utf-8"], "path.utf-8")
        if b"attr" in entry:
            info.attr = _as_text(entry[b"attr"], "attr")
        if b"symlink path" in entry:
            info.symlink_path = _as_text_list(entry[b"symlink path"], "symlink path")
        if b"sha1" in entry:
            info.sha1 = _as_bytes(entry[b"sha1"], "sha1")
        return info


@dataclass
class FileTreeFile:
    """Properties of a file leaf in a v2 file tree."""

    length: int = 0
    pieces_root: bytes = b""


@dataclass
class FileTree:
    """A node of a BEP 52 file tree: either a file or a directory of subtrees."""

    file: FileTreeFile = field(default_factory=FileTreeFile)
    dir: dict[str, FileTree] = field(default_factory=dict)

    @classmethod
    def from_bencode(cls, value: Any) -> FileTree:
        """Build a tree from a decoded ``file tree`` dictionary."""
        entries = _as_dict(value, "file tree")
        tree = cls()
        props = entries.pop(_key(FILE_TREE_PROPERTIES_KEY), None)
        if props is not None:
            prop_dict = _as_dict(props, "file properties")
            if b"length" in prop_dict:
                tree.file.length = _as_int(prop_dict[b"length"], "length")
            if b"pieces root" in prop_dict:
                tree.file.pieces_root = _as_bytes(prop_dict[b"pieces root"], "pieces root")
        tree.dir = {_text(name): cls.from_bencode(sub) for name, sub in entries.items()}
        return tree

    def to_bencode(self) -> dict[str, Any]:
        """Return the tree as a value ready for bencoding."""
        if self.is_dir():
            return {
                name: self.dir[name].to_bencode()
                for name in self._ordered_keys()
                if name != FILE_TREE_PROPERTIES_KEY
            }
        return {
            FILE_TREE_PROPERTIES_KEY: {
                "length": self.file.length,
                "pieces root": bytes(self.file.pieces_root),
            }
        }

    def num_entries(self) -> int:
        """Return the number of children, not counting the properties key."""
        count = len(self.dir)
        if FILE_TREE_PROPERTIES_KEY in self.dir:
            count -= 1
        return count

    def is_dir(self) -> bool:
        return self.num_entries() != 0

    def _ordered_keys(self) -> list[str]:
        return sorted(self.dir, key=_key)

    def upverted_files(self, piece_length: int) -> list[FileInfo]:
        """List the files in key order, each aligned to the start of a piece."""
        if piece_length <= 0:
            raise ValueError("piece length must be positive")
        files: list[FileInfo] = []
        offset = 0
        for path, node in self._leaves([]):
            files.append(
                FileInfo(
                    length=node.file.length,
                    path=list(path),
                    path_utf8=list(path),
                    pieces_root=node.pieces_root_bytes(),
                    torrent_offset=offset,
                )
            )
            offset += (node.file.length + piece_length - 1) // piece_length * piece_length
        return files

    def _leaves(self, path: list[str]) -> Iterator[tuple[list[str], FileTree]]:
        if not self.is_dir():
            yield path, self
            return
        for name in self._ordered_keys():
            if name == FILE_TREE_PROPERTIES_KEY:
                continue
            yield from self.dir[name]._leaves(path + [name])

    def walk(self, path: Sequence[str] = ()) -> Iterator[tuple[list[str], FileTree]]:
        """Yield ``(path, node)`` for this node and every node beneath it."""
        current = list(path)
        yield current, self
        for name in self._ordered_keys():
            if name == FILE_TREE_PROPERTIES_KEY:
                continue
            yield from self.dir[name].walk(current + [name])

    def pieces_root_bytes(self) -> bytes:
        """Return the 32-byte pieces root, or zeros if absent or malformed."""
        raw = bytes(self.file.pieces_root)
        if len(raw) != HASH_SIZE:
            return ZERO_ROOT
        return raw


def _layer_key(key: bytes | str) -> bytes:
    return key.encode("latin-1") if isinstance(key, str) else bytes(key)


def validate_piece_layers(
    piece_layers: Mapping[bytes | str, bytes | str],
    file_tree: FileTree,
    piece_length: int,
) -> None:
    """Check every file's piece layer against its pieces root; raise ValueError on mismatch."""
    layers = {_layer_key(key): value for key, value in piece_layers.items()}
    for path, node in file_tree.walk():
        if node.is_dir():
            continue
        pieces_root = node.pieces_root_bytes()
        if pieces_root == ZERO_ROOT:
            continue
        layer = layers.get(pieces_root)
        if layer is None:
            # Files no larger than a piece are covered by the pieces root alone.
            if node.file.length > piece_length:
                raise ValueError(f"no piece layers for file {path!r}")
            continue
        hashes = compact_layer_to_hashes(layer)
        computed = root_with_pad_hash(hashes, hash_for_piece_pad(piece_length))
        if computed != pieces_root:
            raise ValueError(
                f"file {path!r}: expected hash {pieces_root.hex()} got {computed.hex()}"
            )


def hash_for_piece_pad(piece_length: int) -> bytes:
    """Return the padding hash for the piece layer: the root of a piece of zero blocks."""
    blocks_per_piece = piece_length // BLOCK_SIZE
    return root([ZERO_ROOT] * blocks_per_piece)