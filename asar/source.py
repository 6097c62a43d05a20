from __future__ import annotations

import io
import os
from typing import BinaryIO


class ContentSource:
    """Where the encoder reads a file's bytes from when packing."""

    size: int = 0

    def open(self) -> BinaryIO:
        raise NotImplementedError


class BytesSource(ContentSource):
    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.size = len(self.data)

    def open(self) -> BinaryIO:
        return io.BytesIO(self.data)


class FileSource(ContentSource):
    """File on disk; size is captured when the entry is added."""

    def __init__(self, path: str):
        self.path = os.fspath(path)
        self.size = os.path.getsize(self.path)

    def open(self) -> BinaryIO:
        return open(self.path, "rb")
