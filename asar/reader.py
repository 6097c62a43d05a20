from __future__ import annotations

import io
import os
import threading
from typing import Any, BinaryIO, Dict, Iterator, Optional, Tuple, Union

from .constants import COPY_CHUNK_SIZE
from .encryption import ContentCipher, StreamTransform, resolve_cipher
from .entry import Entry, NodeView
from .errors import AsarError, DecryptError, NotStored, OutOfRange
from .header import loads_header
from .records import read_header


class Archive:
    """A decoded archive: the header tree plus access to file bodies.

    The tree is fully materialized by ``decode`` and never mutated after,
    so entries can be read concurrently; positioned reads on the shared
    handle are serialized internally.
    """

    def __init__(
        self,
        f: BinaryIO,
        root: Entry,
        data_start: int,
        archive_size: int,
        *,
        encryption: Optional[Dict[str, Any]] = None,
        cipher: Optional[ContentCipher] = None,
        owns_file: bool = False,
    ):
        self.f: Optional[BinaryIO] = f
        self.root = root
        self.data_start = data_start
        self.archive_size = archive_size
        self.encryption = encryption
        self.cipher = cipher
        self._owns_file = owns_file
        self._lock = threading.Lock()
        self._overlap: Optional[str] = None
        self._ranges_checked = False

    @classmethod
    def open(cls, path: str, password: Optional[str] = None) -> "Archive":
        f = open(path, "rb")
        try:
            archive = decode(f, password=password)
        except (AsarError, OSError, ValueError, RuntimeError) as exc:
            # Ensure file handle is closed on failure to avoid leaks
            f.close()
            raise exc
        archive._owns_file = True
        return archive

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        if self.f is not None and self._owns_file:
            self.f.close()
        self.f = None

    @property
    def encrypted(self) -> bool:
        return self.encryption is not None

    def walk(self) -> Iterator[Tuple[str, NodeView]]:
        return self.root.walk()

    def find(self, path: str) -> Optional[Entry]:
        return self.root.find(path)

    def read(self, entry: Union[Entry, NodeView]) -> "EntryReader":
        """Open a stream over exactly ``entry.size`` bytes of the entry body."""
        if isinstance(entry, NodeView):
            entry = entry.entry
        if entry.is_dir:
            raise ValueError(f"{entry.name!r} is a directory")
        if entry.is_unpacked:
            raise NotStored(f"{entry.name!r} is unpacked; its content is stored outside the archive")
        if self.f is None:
            raise RuntimeError("Archive not open")
        end = self.data_start + entry.offset + entry.size
        if entry.offset < 0 or end > self.archive_size:
            raise OutOfRange(
                f"{entry.name!r} spans bytes {self.data_start + entry.offset}..{end} "
                f"beyond archive size {self.archive_size}"
            )
        self._check_ranges()
        transform = None
        if self.encrypted:
            if self.cipher is None:
                raise DecryptError("Archive is encrypted; password required")
            transform = self.cipher.decryptor(entry.offset)
        return EntryReader(self, self.data_start + entry.offset, entry.size, transform)

    def read_bytes(self, entry: Union[Entry, NodeView]) -> bytes:
        with self.read(entry) as r:
            return r.read()

    def write_to(self, entry: Union[Entry, NodeView], out: BinaryIO) -> int:
        """Copy an entry body into ``out``; returns the number of bytes written."""
        n = 0
        with self.read(entry) as r:
            while True:
                buf = r.read(COPY_CHUNK_SIZE)
                if not buf:
                    break
                out.write(buf)
                n += len(buf)
        return n

    def _check_ranges(self):
        """Reject headers whose stored file ranges overlap; gaps are allowed.

        Runs once, on the first read, and the verdict is cached.
        """
        with self._lock:
            if not self._ranges_checked:
                spans = sorted((e.offset, e.size, e.name) for e in self.root.iter_files() if e.is_stored and e.size > 0)
                prev_end, prev_name = 0, None
                for offset, size, name in spans:
                    if prev_name is not None and offset < prev_end:
                        self._overlap = f"{name!r} at offset {offset} overlaps {prev_name!r} ending at {prev_end}"
                        break
                    prev_end, prev_name = offset + size, name
                self._ranges_checked = True
        if self._overlap is not None:
            raise OutOfRange(f"Overlapping file ranges: {self._overlap}")

    def _pread(self, pos: int, n: int) -> bytes:
        with self._lock:
            if self.f is None:
                raise RuntimeError("Archive not open")
            self.f.seek(pos)
            data = self.f.read(n)
        if len(data) != n:
            raise OutOfRange("Unexpected end of archive data")
        return data


class EntryReader(io.RawIOBase):
    """Seekable view of one entry body inside the data section."""

    def __init__(self, archive: Archive, start: int, size: int, transform: Optional[StreamTransform]):
        super().__init__()
        self._archive = archive
        self._start = start
        self._size = size
        self._pos = 0
        self._transform = transform
        self._transform_pos = 0

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def tell(self) -> int:
        return self._pos

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence == io.SEEK_SET:
            pos = offset
        elif whence == io.SEEK_CUR:
            pos = self._pos + offset
        elif whence == io.SEEK_END:
            pos = self._size + offset
        else:
            raise ValueError(f"Invalid whence: {whence}")
        if pos < 0:
            raise ValueError("Negative seek position")
        self._pos = pos
        return pos

    def readinto(self, b) -> int:
        n = min(len(b), self._size - self._pos)
        if n <= 0:
            return 0
        data = self._archive._pread(self._start + self._pos, n)
        if self._transform is not None:
            if self._transform_pos != self._pos:
                self._transform.seek(self._pos)
            data = self._transform.update(data)
            self._transform_pos = self._pos + n
        b[:n] = data
        self._pos += n
        return n


def decode(f: BinaryIO, *, password: Optional[str] = None) -> Archive:
    """Parse the archive header from ``f``.

    Only the header is read; file bodies are checked lazily when an entry
    is opened. For encrypted archives the tree is available without a
    password; ``password`` unlocks reading and is verified here.
    """
    text, data_start = read_header(f)
    root, encryption = loads_header(text)
    cipher = resolve_cipher(encryption, password)
    try:
        size = os.fstat(f.fileno()).st_size
    except (AttributeError, OSError, io.UnsupportedOperation):
        size = f.seek(0, io.SEEK_END)
    return Archive(f, root, data_start, size, encryption=encryption, cipher=cipher)
