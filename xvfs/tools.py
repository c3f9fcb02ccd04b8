"""Small utilities over a file system: echo, ls and cat."""

from __future__ import annotations

from collections.abc import Iterable

from .filesystem import FileSystem, Inode, Stat
from .layout import BSIZE, DIRENT_SIZE, DIRSIZ, DirEntry, FileType

_PATH_MAX = 512


def echo(args: Iterable[str]) -> str:
    """Join the arguments with spaces and end with a newline."""
    args = list(args)
    return " ".join(args) + "\n" if args else ""


def fmtname(path: str) -> str:
    """Last element of ``path``, padded with blanks to DIRSIZ characters."""
    name = path.rsplit("/", 1)[-1]
    if len(name) >= DIRSIZ:
        return name
    return name.ljust(DIRSIZ)


def _lookup(fs: FileSystem, path: str, cwd: Inode | None) -> Inode | None:
    with fs.log.transaction():
        return fs.namei(path, cwd)


def _release(fs: FileSystem, ip: Inode) -> None:
    with fs.log.transaction():
        fs.put(ip)


def _stat_path(fs: FileSystem, path: str, cwd: Inode | None) -> Stat | None:
    with fs.log.transaction():
        ip = fs.namei(path, cwd)
        if ip is None:
            return None
        fs.lock(ip)
        try:
            return fs.stat(ip)
        finally:
            fs.unlock_put(ip)


def _line(path: str, st: Stat) -> str:
    return f"{fmtname(path)} {st.type} {st.ino} {st.size}"


def ls(fs: FileSystem, path: str = ".", cwd: Inode | None = None) -> list[str]:
    """List a file or the entries of a directory, one line each."""
    ip = _lookup(fs, path, cwd)
    if ip is None:
        raise FileNotFoundError(f"ls: cannot open {path}")
    try:
        fs.lock(ip)
        try:
            st = fs.stat(ip)
            entries: list[DirEntry] = []
            if st.type == FileType.DIR:
                off = 0
                while len(raw := fs.read(ip, off, DIRENT_SIZE)) == DIRENT_SIZE:
                    entries.append(DirEntry.unpack(raw))
                    off += DIRENT_SIZE
        finally:
            fs.unlock(ip)

        if st.type == FileType.FILE:
            return [_line(path, st)]
        if st.type != FileType.DIR:
            return []
        if len(path) + 1 + DIRSIZ + 1 > _PATH_MAX:
            return ["ls: path too long"]
        lines = []
        for de in entries:
            if de.inum == 0:
                continue
            full = f"{path}/{de.name}"
            entry_st = _stat_path(fs, full, cwd)
            if entry_st is None:
                lines.append(f"ls: cannot stat {full}")
            else:
                lines.append(_line(full, entry_st))
        return lines
    finally:
        _release(fs, ip)


def cat(fs: FileSystem, paths: Iterable[str], cwd: Inode | None = None) -> bytes:
    """Return the contents of the named files, one after another."""
    out = bytearray()
    for path in paths:
        ip = _lookup(fs, path, cwd)
        if ip is None:
            raise FileNotFoundError(f"cat: cannot open {path}")
        try:
            off = 0
            while True:
                fs.lock(ip)
                try:
                    chunk = fs.read(ip, off, BSIZE)
                finally:
                    fs.unlock(ip)
                if not chunk:
                    break
                out += chunk
                off += len(chunk)
        finally:
            _release(fs, ip)
    return bytes(out)