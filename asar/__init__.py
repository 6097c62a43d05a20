"""
asar: pack directory trees into single-file asar archives and read them back.

Features:

- Bit-exact asar container: nested length-prefixed header records carrying a
  JSON directory tree, followed by the concatenated file bodies.
- Tree builder addressed by explicit parent, plus the classic pre-order
  event-stream builder.
- Header-only decoding with lazy, bounds-checked, seekable per-entry reads.
- Optional length-preserving content encryption (XChaCha20 with an Argon2id
  password key) as a pluggable cipher.
- Unpacked entries whose content lives next to the archive in
  ``<archive>.unpacked``.
"""

from .builder import Builder, StreamBuilder
from .constants import FLAG_DIR, FLAG_EXECUTABLE, FLAG_NONE, FLAG_UNPACKED
from .encryption import ContentCipher, XChaCha20Cipher, register_cipher
from .entry import Entry, NodeView
from .errors import AsarError, DecryptError, MalformedHeader, MalformedRecord, NotStored, OutOfRange
from .reader import Archive, decode
from .writer import encode, write_archive

__version__ = "0.1"

__all__ = [
    "Archive",
    "AsarError",
    "Builder",
    "ContentCipher",
    "DecryptError",
    "Entry",
    "FLAG_DIR",
    "FLAG_EXECUTABLE",
    "FLAG_NONE",
    "FLAG_UNPACKED",
    "MalformedHeader",
    "MalformedRecord",
    "NodeView",
    "NotStored",
    "OutOfRange",
    "StreamBuilder",
    "XChaCha20Cipher",
    "decode",
    "encode",
    "register_cipher",
    "write_archive",
]
