from __future__ import annotations

from typing import List, Optional, Union

from .constants import FLAG_DIR, FLAG_NONE, FLAG_UNPACKED, UNPACKED_OFFSET
from .entry import Entry
from .pathutil import check_name, split_path
from .source import BytesSource, ContentSource, FileSource

Parent = Union[Entry, str, None]
Content = Union[bytes, bytearray, memoryview, str, int, ContentSource]


class Builder:
    """Assemble an archive tree from entries addressed by their parent.

    Each ``add_*`` call names the parent explicitly, either as an ``Entry``
    previously returned by this builder or as a slash separated path from
    the root. Byte offsets follow a running cursor; ``root()`` renumbers
    stored files in pre-order so the data section stays contiguous no
    matter in which order entries were added.
    """

    def __init__(self):
        self._root = Entry.new_root()
        self._cursor = 0
        self._sealed = False

    def _check_open(self):
        if self._sealed:
            raise RuntimeError("Builder is sealed")

    def _resolve(self, parent: Parent) -> Entry:
        if parent is None:
            return self._root
        if isinstance(parent, Entry):
            if not parent.is_dir:
                raise ValueError(f"Parent {parent.name!r} is not a directory")
            return parent
        node = self._root
        for part in split_path(parent):
            child = node.children.get(part)
            if child is None:
                raise ValueError(f"Parent directory not found: {parent!r}")
            if not child.is_dir:
                raise ValueError(f"Parent {parent!r} is not a directory")
            node = child
        return node

    def add_dir(self, name: str, *, parent: Parent = None, flags: int = FLAG_DIR) -> Entry:
        """Add a directory, or return the existing one with that name."""
        self._check_open()
        check_name(name)
        node = self._resolve(parent)
        existing = node.children.get(name)
        if existing is not None:
            if not existing.is_dir:
                raise ValueError(f"Duplicate entry name: {name!r}")
            return existing
        return node.attach(Entry(name=name, flags=flags | FLAG_DIR))

    def add_file(self, name: str, content: Content, *, parent: Parent = None, flags: int = FLAG_NONE) -> Entry:
        """Add a file entry.

        Args:
            name: Entry name (no separators).
            content: bytes/str payload, a ``ContentSource``, or an int size
                marker for ``FLAG_UNPACKED`` entries.
            parent: Parent directory handle or path; ``None`` is the root.
            flags: ``FLAG_EXECUTABLE`` and/or ``FLAG_UNPACKED``.
        """
        self._check_open()
        if flags & FLAG_DIR:
            raise ValueError("Use add_dir for directories")
        node = self._resolve(parent)
        if isinstance(content, bool):
            raise TypeError("content may not be a bool")
        if isinstance(content, int):
            if not flags & FLAG_UNPACKED:
                raise ValueError("A size marker is only valid for unpacked entries")
            source, size = None, content
        else:
            if isinstance(content, str):
                source = BytesSource(content.encode("utf-8"))
            elif isinstance(content, (bytes, bytearray, memoryview)):
                source = BytesSource(content)
            elif isinstance(content, ContentSource):
                source = content
            else:
                raise TypeError(f"Unsupported content type: {type(content).__name__}")
            size = source.size
        e = node.attach(Entry(name=name, flags=flags, size=size))
        if e.is_unpacked:
            e.offset = UNPACKED_OFFSET
        else:
            e.source = source
            e.offset = self._cursor
            self._cursor += size
        return e

    def add_path(self, name: str, fs_path: str, *, parent: Parent = None, flags: int = FLAG_NONE) -> Entry:
        """Add a file whose bytes are streamed from ``fs_path`` at encode time."""
        if flags & FLAG_UNPACKED:
            return self.add_file(name, FileSource(fs_path).size, parent=parent, flags=flags)
        return self.add_file(name, FileSource(fs_path), parent=parent, flags=flags)

    def root(self) -> Entry:
        """Seal the builder and return the finished root directory."""
        if not self._sealed:
            self._sealed = True
            cursor = 0
            for e in self._root.iter_files():
                if e.is_stored:
                    e.offset = cursor
                    cursor += e.size
            self._cursor = cursor
        return self._root

    @property
    def data_size(self) -> int:
        return self._cursor


class StreamBuilder:
    """Build a tree from a pre-order event stream.

    A stack of open directories tracks the current nesting path. An event
    flagged ``is_top_level`` unwinds the stack back to the root before it is
    attached; a directory event then becomes the new top frame. Events
    that are not top level attach to the current top frame, so callers must
    emit a directory's whole subtree before its next sibling, or call
    ``close_directory`` to pop a frame. Mis-ordered streams produce a
    mis-nested tree; the builder cannot detect that.
    """

    def __init__(self):
        self._builder = Builder()
        self._stack: List[Entry] = [self._builder._root]

    def _unwind(self, is_top_level: bool):
        if is_top_level:
            del self._stack[1:]

    def open_directory(self, name: str, flags: int = FLAG_DIR, is_top_level: bool = False) -> Entry:
        self._unwind(is_top_level)
        d = self._builder.add_dir(name, parent=self._stack[-1], flags=flags)
        self._stack.append(d)
        return d

    def close_directory(self) -> Optional[Entry]:
        if len(self._stack) > 1:
            return self._stack.pop()
        return None

    def add_file(self, name: str, content: Content, flags: int = FLAG_NONE, is_top_level: bool = False) -> Entry:
        self._unwind(is_top_level)
        return self._builder.add_file(name, content, parent=self._stack[-1], flags=flags)

    def root_directory(self) -> Entry:
        return self._builder.root()
