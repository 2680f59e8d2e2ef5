# torrentmeta

A library for working with BitTorrent metadata in Python.

- **Bencoding**: `torrentmeta.bencoding.encode`, `decode` and `decode_prefix`. Malformed
  input raises `BencodeError`.
- **Torrent files**: `torrentmeta.metainfo.MetaInfo` loads, writes and inspects `.torrent`
  files and keeps the info dictionary byte for byte. `torrentmeta.info.Info` models the
  info dictionary for v1, v2 and hybrid torrents. `Info.piece(index)` returns a `Piece`.
- **Files and v2 file trees**: `torrentmeta.files.FileInfo`, `FileTree` and
  `validate_piece_layers`.
- **Piece hashing**: `torrentmeta.pieces.generate_pieces` and `choose_piece_length`.
- **Magnet links**: `torrentmeta.magnet.parse_magnet_uri` and `parse_magnet_v2_uri` parse
  `magnet:` URIs. `Magnet` and `MagnetV2` turn back into URIs through `str()`.
- **BitTorrent v2 Merkle trees**: `torrentmeta.merkle.MerkleHash`, `root`,
  `root_with_pad_hash` and `compact_layer_to_hashes`.
- **Peer wire**: `torrentmeta.handshake` builds and reads the plain BitTorrent handshake.
  `torrentmeta.mse.MseStream` runs Message Stream Encryption (RC4 or plain text) over
  asyncio streams. `torrentmeta.peer.dial` connects to a peer with an encrypted handshake.
  `torrentmeta.peer.accept` answers a plain or encrypted handshake on an accepted
  connection. Both return a `PeerConnection`.
- **Metadata checks**: `torrentmeta.util.extract_metadata` checks a downloaded info
  dictionary against its info hash and validates its pieces. It returns a `Metadata`
  with the name, total size and `File` list. `random_id` makes a peer id. `PeerQueue`
  keeps a bounded queue of allowed, distinct peers for each info hash.

## Installation

```
pip install torrentmeta
```

To run the tests, install the test extra:

```
pip install "torrentmeta[test]"
pytest
```

## Examples

Reading a torrent file and building a magnet link:

```python
from torrentmeta.metainfo import MetaInfo

mi = MetaInfo.load_from_file("example.torrent")
info = mi.unmarshal_info()
print(info.best_name(), info.total_length(), info.num_pieces())
print(str(mi.magnet(None, info)))
```

Parsing a magnet link:

```python
from torrentmeta.magnet import parse_magnet_uri

m = parse_magnet_uri("magnet:?xt=urn:btih:51340689c960f0778a4387aef9b4b52fd08390cd&dn=example")
print(m.display_name, m.info_hash.hex(), m.trackers)
```

Computing a BitTorrent v2 pieces root:

```python
from torrentmeta.merkle import MerkleHash

h = MerkleHash()
h.update(b"file contents")
print(h.digest().hex())
```

Creating an info dictionary from files on disk:

```python
from torrentmeta.info import Info

info = Info()
info.build_from_file_path("some/directory")
print(len(info.pieces) // 20, "pieces")
```

Connecting to a peer (the deadline is a `time.time()` value):

```python
import asyncio, time
from torrentmeta.peer import dial
from torrentmeta.util import random_id

async def main(info_hash: bytes) -> None:
    conn = await dial("203.0.113.7", 6881, time.time() + 10,
                      bytes(8), info_hash, random_id())
    print(conn.cipher, conn.peer_id)
    conn.close()
```

Errors are raised as exceptions: `BencodeError`, `MagnetError`, `HandshakeError`,
`MseError` and `MetadataError`. Some conditions raise `ValueError` or `TimeoutError`.

## What this package does not do

It has no command-line tool, no server and no storage. It opens and handshakes peer
connections and can verify a complete info dictionary. It does not request metadata
pieces from peers over the `ut_metadata` extension. It does not run many downloads at
once or retry with other peers. It does not search the DHT for peers.