from __future__ import annotations

import os
import sys
import stat
import time
import shutil
import fnmatch
import argparse
import getpass as _getpass

from typing import List, Optional, Set

from asar.builder import Builder
from asar.constants import FLAG_EXECUTABLE, FLAG_NONE, FLAG_UNPACKED, UNPACKED_DIR_SUFFIX
from asar.encryption import XChaCha20Cipher
from asar.entry import Entry
from asar.errors import AsarError, MalformedHeader, MalformedRecord
from asar.pathutil import norm_path
from asar.reader import Archive
from asar.writer import write_archive


def _safe_chmod(path: str, mode: Optional[int]) -> None:
    """Best‑effort chmod that never raises.

    Args:
        path: Destination filesystem path to update.
        mode: POSIX mode to apply (e.g., 0o755). If None, no change is made.
    """
    if mode is None:
        return
    try:
        os.chmod(path, mode)
    except OSError as exc:
        print(f"Warning: failed to set mode on {path}: {exc}", file=sys.stderr)


def _prompt_password() -> str:
    try:
        return _getpass.getpass("Archive password: ")
    except EOFError:
        raise ValueError("Password required") from None


def _matches(arc: str, name: str, patterns: List[str]) -> bool:
    return any(fnmatch.fnmatch(arc, p) or fnmatch.fnmatch(name, p) for p in patterns)


class _PackStats:
    def __init__(self):
        self.files = 0
        self.dirs = 0
        self.unpacked = 0
        self.skipped = 0
        self.bytes = 0


def _add_tree(
    builder: Builder,
    fs_dir: str,
    parent: Optional[Entry],
    rel: str,
    *,
    unpack: List[str],
    unpacked_root: str,
    exclude: Set[str],
    stats: _PackStats,
    quiet: bool,
) -> None:
    # Lexical order gives the same pre-order a sorted directory walk produces
    with os.scandir(fs_dir) as it:
        items = sorted(it, key=lambda d: d.name)
    for d in items:
        arc = f"{rel}/{d.name}" if rel else d.name
        if os.path.realpath(d.path) in exclude:
            continue
        if d.is_symlink():
            print(f"Warning: skipping symlink {arc}", file=sys.stderr)
            stats.skipped += 1
            continue
        if d.is_dir():
            sub = builder.add_dir(d.name, parent=parent)
            stats.dirs += 1
            _add_tree(
                builder,
                d.path,
                sub,
                arc,
                unpack=unpack,
                unpacked_root=unpacked_root,
                exclude=exclude,
                stats=stats,
                quiet=quiet,
            )
            continue
        if not d.is_file():
            print(f"Warning: skipping special file {arc}", file=sys.stderr)
            stats.skipped += 1
            continue
        flags = FLAG_NONE
        if d.stat().st_mode & stat.S_IXUSR:
            flags |= FLAG_EXECUTABLE
        if unpack and _matches(arc, d.name, unpack):
            flags |= FLAG_UNPACKED
            dst = os.path.join(unpacked_root, *arc.split("/"))
            os.makedirs(os.path.dirname(dst), exist_ok=True)
            shutil.copy2(d.path, dst)
            stats.unpacked += 1
        e = builder.add_path(d.name, d.path, parent=parent, flags=flags)
        stats.files += 1
        if e.is_stored:
            stats.bytes += e.size
        if not quiet:
            print(f"   packing: {arc}{' (unpacked)' if e.is_unpacked else ''}")


def cmd_pack(
    src_dir: str,
    output: str,
    *,
    encrypt: bool = False,
    password: Optional[str] = None,
    unpack: Optional[List[str]] = None,
    quiet: bool = False,
) -> bool:
    """Pack a directory tree into a new archive.

    Args:
        src_dir: Directory whose contents become the archive root.
        output: Path to the archive file to write.
        encrypt: Encrypt stored file bodies (implied by ``password``).
        password: Encryption password; prompted for when ``encrypt`` is set and it is missing.
        unpack: Glob patterns (matched against the archive path or the file name) for files
            to keep outside the data section, copied into ``<output>.unpacked``.
    """
    if not os.path.isdir(src_dir):
        raise FileNotFoundError(f"Not a directory: {src_dir}")
    cipher = None
    if encrypt or password:
        cipher = XChaCha20Cipher.create(password if password else _prompt_password())
    t0 = time.time()
    builder = Builder()
    stats = _PackStats()
    _add_tree(
        builder,
        src_dir,
        None,
        "",
        unpack=list(unpack or []),
        unpacked_root=output + UNPACKED_DIR_SUFFIX,
        # A previous run may have left the output inside the source tree
        exclude={os.path.realpath(output), os.path.realpath(output + UNPACKED_DIR_SUFFIX)},
        stats=stats,
        quiet=quiet,
    )
    total = write_archive(output, builder.root(), cipher)
    dt = max(0.000001, time.time() - t0)
    mib = stats.bytes / (1024.0 * 1024.0)
    print(
        f"Done: {stats.files} files, {stats.dirs} dirs, {stats.unpacked} unpacked, {stats.skipped} skipped; "
        f"{mib:.2f} MiB stored in {dt:.1f}s; archive {total} bytes"
        f"{'; encrypted' if cipher is not None else ''}"
    )
    return True


def _flag_str(flags: int) -> str:
    return ("x" if flags & FLAG_EXECUTABLE else "-") + ("u" if flags & FLAG_UNPACKED else "-")


def cmd_list(archive: str, *, long: bool = False) -> bool:
    """List archive entries in pre-order.

    Args:
        archive: Path to an archive file.
        long: Print kind, size and flags alongside each path.
    """
    with Archive.open(archive) as a:
        for path, v in a.walk():
            if long:
                size = "-" if v.is_dir else str(v.size)
                print(f"{v.kind}\t{size}\t{_flag_str(v.flags)}\t/{path}")
            else:
                print("/" + path)
    return True


def cmd_extract(
    archive: str,
    outdir: str,
    *,
    password: Optional[str] = None,
    paths: Optional[List[str]] = None,
    quiet: bool = False,
) -> bool:
    """Extract archive contents into ``outdir``."""
    with Archive.open(archive) as probe:
        encrypted = probe.encrypted
    if encrypted and password is None:
        password = _prompt_password()
    unpacked_root = archive + UNPACKED_DIR_SUFFIX
    wanted = [norm_path(p) for p in (paths or [])]
    t0 = time.time()
    files = dirs = missing = 0
    processed_bytes = 0
    with Archive.open(archive, password=password) as a:
        os.makedirs(outdir, exist_ok=True)
        for path, v in a.walk():
            if wanted and not any(path == w or path.startswith(w + "/") or w.startswith(path + "/") for w in wanted):
                continue
            dst = os.path.join(outdir, *path.split("/"))
            if v.is_dir:
                os.makedirs(dst, exist_ok=True)
                dirs += 1
                if not quiet:
                    print(f"   creating: {path}/")
                continue
            if wanted and not any(path == w or path.startswith(w + "/") for w in wanted):
                continue
            os.makedirs(os.path.dirname(dst) or ".", exist_ok=True)
            mode = 0o755 if v.is_executable else 0o644
            if v.is_unpacked:
                src = os.path.join(unpacked_root, *path.split("/"))
                if not os.path.isfile(src):
                    print(f"Warning: unpacked file not found, skipping: {path}", file=sys.stderr)
                    missing += 1
                    continue
                shutil.copyfile(src, dst)
            else:
                if not quiet:
                    print(f" extracting: {path}")
                with open(dst, "wb") as out:
                    processed_bytes += a.write_to(v, out)
            _safe_chmod(dst, mode)
            files += 1
    dt = max(0.000001, time.time() - t0)
    mib = processed_bytes / (1024.0 * 1024.0)
    print(f"Done: extracted {files} files, {dirs} dirs ({mib:.2f} MiB) in {dt:.1f}s; missing={missing}")
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="asar",
        description="Pack, list and extract asar archives",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_list = sub.add_parser("list", aliases=["l"], help="List archive contents")
    ap_list.add_argument("archive", help="Archive path")
    ap_list.add_argument("--long", action="store_true", help="Show kind, size and flags")

    ap_extract = sub.add_parser("extract", aliases=["x"], help="Extract archive contents to a directory")
    ap_extract.add_argument("archive", help="Archive path")
    ap_extract.add_argument("outdir", help="Output directory")
    ap_extract.add_argument("paths", nargs="*", help="Specific archive paths to extract (files or directories)")
    ap_extract.add_argument("--password", help="Archive password")
    ap_extract.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_pack = sub.add_parser("pack", aliases=["p"], help="Create an archive from a directory")
    ap_pack.add_argument("dir", help="Source directory")
    ap_pack.add_argument("output", help="Output archive path")
    ap_pack.add_argument("-e", "--encrypt", action="store_true", help="Encrypt stored file contents")
    ap_pack.add_argument("--password", help="Encryption password (implies --encrypt)")
    ap_pack.add_argument(
        "--unpack",
        action="append",
        default=[],
        metavar="GLOB",
        help="Keep matching files outside the archive in <output>.unpacked (repeatable)",
    )
    ap_pack.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    args = ap.parse_args(argv)
    try:
        if args.cmd in ("list", "l"):
            cmd_list(args.archive, long=args.long)
        elif args.cmd in ("extract", "x"):
            cmd_extract(args.archive, args.outdir, password=args.password, paths=args.paths, quiet=args.quiet)
        elif args.cmd in ("pack", "p"):
            cmd_pack(
                args.dir,
                args.output,
                encrypt=args.encrypt,
                password=args.password,
                unpack=args.unpack,
                quiet=args.quiet,
            )
        else:
            raise RuntimeError("Unknown command")
    except (MalformedRecord, MalformedHeader) as e:
        print(f"Error: archive header is corrupted: {e}", file=sys.stderr)
        sys.exit(2)
    except (AsarError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
