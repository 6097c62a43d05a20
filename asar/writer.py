from __future__ import annotations

from typing import BinaryIO, Optional

from .constants import COPY_CHUNK_SIZE
from .encryption import ContentCipher
from .entry import Entry
from .header import dumps_header
from .records import pack_header


def encode(root: Entry, f: BinaryIO, cipher: Optional[ContentCipher] = None) -> int:
    """Write ``root`` as an archive to ``f``.

    The header records are written first, followed by the body of every
    stored file in pre-order. Each body must start exactly at its recorded
    offset, which holds for any tree returned by ``Builder.root()``. When
    ``cipher`` is given, bodies are encrypted and the cipher parameters are
    stored in the header.

    Returns:
        Total number of bytes written.
    """
    if not root.is_dir:
        raise ValueError("Archive root must be a directory")
    text = dumps_header(root, cipher.to_header() if cipher is not None else None)
    head = pack_header(text)
    f.write(head)
    cursor = 0
    for path, view in root.walk():
        e = view.entry
        if not e.is_stored:
            continue
        if e.offset != cursor:
            raise ValueError(f"Entry {path!r} offset {e.offset} does not follow previous data (expected {cursor})")
        if e.source is None:
            raise ValueError(f"Entry {path!r} has no content source")
        cursor += _write_body(f, e, path, cipher)
    return len(head) + cursor


def _write_body(f: BinaryIO, e: Entry, path: str, cipher: Optional[ContentCipher]) -> int:
    transform = cipher.encryptor(e.offset) if cipher is not None else None
    written = 0
    with e.source.open() as src:
        while written < e.size:
            buf = src.read(min(COPY_CHUNK_SIZE, e.size - written))
            if not buf:
                break
            written += len(buf)
            f.write(transform.update(buf) if transform is not None else buf)
        if written != e.size or src.read(1):
            raise ValueError(f"Content of {path!r} changed size while packing")
    return written


def write_archive(path: str, root: Entry, cipher: Optional[ContentCipher] = None) -> int:
    with open(path, "wb") as f:
        return encode(root, f, cipher)
