"""Open files: a fixed table of file structures over inodes and pipes."""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass

from .filesystem import FileSystem, Inode, Stat
from .journal import MAXOPBLOCKS
from .layout import BSIZE

NFILE = 100
PIPESIZE = 512


class FileError(Exception):
    """Misuse of an open file, a full file table or a broken pipe."""


class FileKind(enum.Enum):
    NONE = 0
    PIPE = 1
    INODE = 2


class Pipe:
    """A bounded byte channel between a reading end and a writing end."""

    def __init__(self, size: int = PIPESIZE) -> None:
        if size < 1:
            raise ValueError("a pipe needs room for at least one byte")
        self._size = size
        self._buf = bytearray(size)
        self._nread = 0
        self._nwrite = 0
        self.readopen = True
        self.writeopen = True
        self._cond = threading.Condition()

    def write(self, data: bytes) -> int:
        """Write all of ``data``, waiting for room; fails once no reader is left."""
        with self._cond:
            for byte in data:
                while self._nwrite == self._nread + self._size:
                    if not self.readopen:
                        raise FileError("broken pipe")
                    self._cond.notify_all()
                    self._cond.wait()
                self._buf[self._nwrite % self._size] = byte
                self._nwrite += 1
            self._cond.notify_all()
        return len(data)

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes, waiting for data while a writer is open."""
        with self._cond:
            while self._nread == self._nwrite and self.writeopen:
                self._cond.wait()
            take = min(max(n, 0), self._nwrite - self._nread)
            start = self._nread % self._size
            end = start + take
            out = bytes(self._buf[start:end] + self._buf[: max(0, end - self._size)])
            self._nread += take
            self._cond.notify_all()
        return out

    def close(self, writable: bool) -> None:
        """Close the writing end if ``writable``, the reading end otherwise."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()


@dataclass(eq=False)
class File:
    """An entry of the file table."""

    kind: FileKind = FileKind.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Pipe | None = None
    ip: Inode | None = None
    off: int = 0


class FileTable:
    """The system-wide table of open files."""

    def __init__(
        self, fs: FileSystem, nfile: int = NFILE, maxopblocks: int = MAXOPBLOCKS
    ) -> None:
        if nfile < 1:
            raise ValueError("the file table needs at least one entry")
        self.fs = fs
        self._lock = threading.Lock()
        self._files = [File() for _ in range(nfile)]
        # Room for the inode, an indirect block, allocation blocks and
        # two blocks of slop for unaligned writes.
        self.max_write = ((maxopblocks - 1 - 1 - 2) // 2) * BSIZE
        if self.max_write < 1:
            raise ValueError("operations are too small to write anything")

    def alloc(self) -> File:
        """Take a free entry, with one reference."""
        with self._lock:
            for f in self._files:
                if f.ref == 0:
                    f.ref = 1
                    f.kind = FileKind.NONE
                    f.readable = f.writable = False
                    f.pipe = None
                    f.ip = None
                    f.off = 0
                    return f
        raise FileError("file table full")

    def dup(self, f: File) -> File:
        with self._lock:
            if f.ref < 1:
                raise FileError("filedup")
            f.ref += 1
        return f

    def close(self, f: File) -> None:
        """Drop a reference; the last one closes the pipe end or the inode."""
        with self._lock:
            if f.ref < 1:
                raise FileError("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            kind, pipe, ip, writable = f.kind, f.pipe, f.ip, f.writable
            f.kind = FileKind.NONE
            f.pipe = None
            f.ip = None

        if kind is FileKind.PIPE and pipe is not None:
            pipe.close(writable)
        elif kind is FileKind.INODE and ip is not None:
            with self.fs.log.transaction():
                self.fs.put(ip)

    def stat(self, f: File) -> Stat:
        if f.kind is not FileKind.INODE or f.ip is None:
            raise FileError("stat of a file that is not an inode")
        self.fs.lock(f.ip)
        try:
            return self.fs.stat(f.ip)
        finally:
            self.fs.unlock(f.ip)

    def read(self, f: File, n: int) -> bytes:
        if not f.readable:
            raise FileError("file not open for reading")
        if f.kind is FileKind.PIPE and f.pipe is not None:
            return f.pipe.read(n)
        if f.kind is FileKind.INODE and f.ip is not None:
            self.fs.lock(f.ip)
            try:
                data = self.fs.read(f.ip, f.off, n)
                f.off += len(data)
            finally:
                self.fs.unlock(f.ip)
            return data
        raise FileError("fileread")

    def write(self, f: File, data: bytes) -> int:
        """Write all of ``data``, a few blocks per log transaction."""
        if not f.writable:
            raise FileError("file not open for writing")
        if f.kind is FileKind.PIPE and f.pipe is not None:
            return f.pipe.write(data)
        if f.kind is FileKind.INODE and f.ip is not None:
            view = memoryview(bytes(data))
            done = 0
            while done < len(view):
                chunk = view[done : done + self.max_write]
                with self.fs.log.transaction():
                    self.fs.lock(f.ip)
                    try:
                        r = self.fs.write(f.ip, f.off, bytes(chunk))
                        if r > 0:
                            f.off += r
                    finally:
                        self.fs.unlock(f.ip)
                if r != len(chunk):
                    raise FileError("short filewrite")
                done += r
            return len(view)
        raise FileError("filewrite")

    def open_inode(self, ip: Inode, readable: bool, writable: bool) -> File:
        """Open ``ip``; the new file takes over the caller's reference."""
        f = self.alloc()
        f.kind = FileKind.INODE
        f.ip = ip
        f.readable = bool(readable)
        f.writable = bool(writable)
        return f

    def pipe(self) -> tuple[File, File]:
        """Create a pipe; return its reading file and its writing file."""
        reader = self.alloc()
        try:
            writer = self.alloc()
        except FileError:
            self.close(reader)
            raise
        p = Pipe()
        reader.kind = writer.kind = FileKind.PIPE
        reader.pipe = writer.pipe = p
        reader.readable, reader.writable = True, False
        writer.readable, writer.writable = False, True
        return reader, writer