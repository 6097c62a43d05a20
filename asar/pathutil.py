from __future__ import annotations

from typing import List


def split_path(p: str) -> List[str]:
    """Split an archive path into its name segments.

    Rules:
    - Convert backslashes to slashes
    - Drop empty and '.' segments
    - Reject '..' segments
    """
    parts = [q for q in p.replace("\\", "/").split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    return parts


def norm_path(p: str) -> str:
    """Normalize archive paths to a canonical forward-slash form."""
    return "/".join(split_path(p))


def check_name(name: str) -> str:
    """Validate a single entry name and return it unchanged."""
    if not isinstance(name, str) or not name:
        raise ValueError("Entry name must be a non-empty string")
    if name in (".", ".."):
        raise ValueError(f"Invalid entry name: {name!r}")
    if "/" in name or "\\" in name or "\x00" in name:
        raise ValueError(f"Entry name may not contain separators or NUL: {name!r}")
    return name
