"""BitTorrent metainfo, magnet links, Merkle hashing, peer handshakes and metadata checks."""

__version__ = "0.1.0"