from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterator, Optional, Tuple

from .constants import FLAG_DIR, FLAG_EXECUTABLE, FLAG_MASK, FLAG_NONE, FLAG_UNPACKED
from .pathutil import check_name, split_path

if TYPE_CHECKING:  # pragma: no cover
    from .source import ContentSource


@dataclass(eq=False)
class Entry:
    """A node of the archive tree.

    Directories carry ``FLAG_DIR`` and an insertion-ordered ``children``
    mapping. Files carry ``size`` and ``offset``; the offset is relative to
    the first byte of the data section. ``source`` is only set on trees
    produced by a builder and is what the encoder streams.
    """

    name: str
    flags: int = FLAG_NONE
    size: int = 0
    offset: int = 0
    children: Dict[str, "Entry"] = field(default_factory=dict)
    source: Optional["ContentSource"] = field(default=None, repr=False)

    def __post_init__(self):
        if self.flags & ~FLAG_MASK:
            raise ValueError(f"Unknown entry flags: {self.flags:#x}")
        if self.flags & FLAG_DIR and self.flags & ~FLAG_DIR:
            raise ValueError("Directory entries may not carry file flags")
        if not self.is_dir and self.children:
            raise ValueError("File entries may not have children")
        if self.size < 0:
            raise ValueError("Entry size may not be negative")

    @classmethod
    def new_root(cls) -> "Entry":
        return cls(name="", flags=FLAG_DIR)

    @property
    def is_dir(self) -> bool:
        return bool(self.flags & FLAG_DIR)

    @property
    def is_unpacked(self) -> bool:
        return bool(self.flags & FLAG_UNPACKED)

    @property
    def is_executable(self) -> bool:
        return bool(self.flags & FLAG_EXECUTABLE)

    @property
    def is_stored(self) -> bool:
        """True for files whose bytes live in the data section."""
        return not self.is_dir and not self.is_unpacked

    def attach(self, child: "Entry") -> "Entry":
        if not self.is_dir:
            raise ValueError(f"Cannot attach {child.name!r} under file {self.name!r}")
        check_name(child.name)
        if child.name in self.children:
            raise ValueError(f"Duplicate entry name: {child.name!r}")
        self.children[child.name] = child
        return child

    def find(self, path: str) -> Optional["Entry"]:
        node = self
        for part in split_path(path):
            if not node.is_dir:
                return None
            node = node.children.get(part)
            if node is None:
                return None
        return node

    def walk(self, prefix: str = "") -> Iterator[Tuple[str, "NodeView"]]:
        """Yield ``(path, NodeView)`` for every descendant in pre-order.

        Each call returns a fresh generator, so a walk can be restarted.
        """
        for name, child in self.children.items():
            path = f"{prefix}/{name}" if prefix else name
            yield path, NodeView.of(path, child)
            if child.is_dir:
                yield from child.walk(path)

    def iter_files(self) -> Iterator["Entry"]:
        for _path, view in self.walk():
            if not view.entry.is_dir:
                yield view.entry

    def __eq__(self, other):
        if not isinstance(other, Entry):
            return NotImplemented
        if (self.name, self.flags) != (other.name, other.flags):
            return False
        if self.is_dir:
            # Order matters: pre-order defines the data section layout.
            return list(self.children.items()) == list(other.children.items())
        if (self.size, self.is_unpacked) != (other.size, other.is_unpacked):
            return False
        return self.is_unpacked or self.offset == other.offset

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True)
class NodeView:
    """Typed snapshot of an entry handed out by tree walks."""

    name: str
    path: str
    kind: str  # "file" or "dir"
    size: int
    offset: int
    flags: int
    entry: Entry = field(repr=False, compare=False)

    @classmethod
    def of(cls, path: str, entry: Entry) -> "NodeView":
        return cls(
            name=entry.name,
            path=path,
            kind="dir" if entry.is_dir else "file",
            size=0 if entry.is_dir else entry.size,
            offset=0 if entry.is_dir else entry.offset,
            flags=entry.flags,
            entry=entry,
        )

    @property
    def is_dir(self) -> bool:
        return self.kind == "dir"

    @property
    def is_unpacked(self) -> bool:
        return bool(self.flags & FLAG_UNPACKED)

    @property
    def is_executable(self) -> bool:
        return bool(self.flags & FLAG_EXECUTABLE)
