from __future__ import annotations

"""
JSON header schema.

Document: {"files": {<name>: <entry>, ...}, "encryption": {...}?}

Entry forms
- directory:     {"files": {...}}
- stored file:   {"size": <int>, "offset": "<decimal string>", "executable": true?}
- unpacked file: {"size": <int>, "unpacked": true, "executable": true?}

Offsets are written as decimal strings so archives larger than 2**53 bytes
survive JSON readers that use doubles; either form is accepted on read.
Unknown keys are ignored.
"""

import json
from typing import Any, Dict, Optional, Tuple

from .constants import FLAG_DIR, FLAG_EXECUTABLE, FLAG_NONE, FLAG_UNPACKED, UNPACKED_OFFSET
from .entry import Entry
from .errors import MalformedHeader


def _entry_to_obj(e: Entry) -> Dict[str, Any]:
    if e.is_dir:
        return {"files": {name: _entry_to_obj(c) for name, c in e.children.items()}}
    obj: Dict[str, Any] = {"size": e.size}
    if e.is_unpacked:
        obj["unpacked"] = True
    else:
        obj["offset"] = str(e.offset)
    if e.is_executable:
        obj["executable"] = True
    return obj


def dumps_header(root: Entry, encryption: Optional[Dict[str, Any]] = None) -> str:
    doc = _entry_to_obj(root)
    if encryption is not None:
        doc["encryption"] = encryption
    return json.dumps(doc, ensure_ascii=False, separators=(",", ":"))


def _uint(value: Any, what: str) -> int:
    if isinstance(value, bool):
        raise MalformedHeader(f"{what} must be an unsigned integer")
    if isinstance(value, str):
        if not value.isdigit() or not value.isascii():
            raise MalformedHeader(f"{what} must be a decimal string: {value!r}")
        return int(value)
    if isinstance(value, int) and value >= 0:
        return value
    raise MalformedHeader(f"{what} must be an unsigned integer")


def _flag(obj: Dict[str, Any], key: str) -> bool:
    value = obj.get(key, False)
    if not isinstance(value, bool):
        raise MalformedHeader(f"'{key}' must be a boolean")
    return value


def _check_name(name: str) -> None:
    if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
        raise MalformedHeader(f"Invalid entry name: {name!r}")


def _obj_to_entry(name: str, obj: Any) -> Entry:
    if not isinstance(obj, dict):
        raise MalformedHeader(f"Entry {name!r} is not an object")
    if "files" in obj:
        if "size" in obj or "offset" in obj:
            raise MalformedHeader(f"Directory {name!r} carries size/offset")
        files = obj["files"]
        if not isinstance(files, dict):
            raise MalformedHeader(f"Directory {name!r} has a non-object 'files'")
        d = Entry(name=name, flags=FLAG_DIR)
        for child_name, child in files.items():
            _check_name(child_name)
            d.children[child_name] = _obj_to_entry(child_name, child)
        return d
    flags = FLAG_NONE
    if _flag(obj, "executable"):
        flags |= FLAG_EXECUTABLE
    if "size" not in obj:
        raise MalformedHeader(f"File {name!r} has no size")
    size = _uint(obj["size"], f"size of {name!r}")
    if _flag(obj, "unpacked"):
        return Entry(name=name, flags=flags | FLAG_UNPACKED, size=size, offset=UNPACKED_OFFSET)
    if "offset" not in obj:
        raise MalformedHeader(f"File {name!r} has neither offset nor unpacked marker")
    offset = _uint(obj["offset"], f"offset of {name!r}")
    return Entry(name=name, flags=flags, size=size, offset=offset)


def loads_header(text: str) -> Tuple[Entry, Optional[Dict[str, Any]]]:
    """Parse header text into (root, encryption params or None)."""
    try:
        doc = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise MalformedHeader(f"Header is not valid JSON: {exc}") from exc
    if not isinstance(doc, dict) or not isinstance(doc.get("files"), dict):
        raise MalformedHeader("Header root must be an object with 'files'")
    encryption = doc.get("encryption")
    if encryption is not None and not isinstance(encryption, dict):
        raise MalformedHeader("'encryption' must be an object")
    try:
        root = _obj_to_entry("", {"files": doc["files"]})
    except RecursionError as exc:
        raise MalformedHeader("Header nesting too deep") from exc
    return root, encryption
