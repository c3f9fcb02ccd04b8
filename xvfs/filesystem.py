"""Inodes, directories and path names on top of the buffer cache and log.

An inode moves through these states before the rest of the file system may
use it:

* allocated: its on-disk type is non-zero;
* referenced: it has an entry in the inode cache with ``ref > 0``;
* valid: its fields were read from disk, which :meth:`FileSystem.lock` does;
* locked: only the holder of its lock may look at or change its fields.

A typical sequence is ``get_inode``, ``lock``, work, ``unlock``, ``put``.
Every call that may free an inode (``put`` and the path lookups) must run
inside a log transaction.
"""

from __future__ import annotations

import struct
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

from .bcache import BufferCache
from .journal import Log
from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DirEntry,
    DiskInode,
    FileType,
    Superblock,
    bblock,
    iblock,
)

ROOTDEV = 1
NINODE = 50

_UINT = struct.Struct("<I")


class FileSystemError(Exception):
    """Misuse of the file system or an inconsistency found on disk."""


class Device(Protocol):
    """A character device reachable through a device inode."""

    def read(self, n: int) -> bytes: ...

    def write(self, data: bytes) -> int: ...


@dataclass(frozen=True)
class Stat:
    """Metadata about an inode."""

    dev: int
    ino: int
    type: int
    nlink: int
    size: int


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode, with book-keeping not stored on disk."""

    dev: int = 0
    inum: int = 0
    ref: int = 0
    valid: bool = False
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))
    _mutex: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _owner: int | None = field(default=None, repr=False)

    @property
    def held(self) -> bool:
        """Whether the calling thread holds this inode's lock."""
        return self._owner == threading.get_ident()

    def _acquire(self) -> None:
        self._mutex.acquire()
        self._owner = threading.get_ident()

    def _release(self) -> None:
        self._owner = None
        self._mutex.release()


def _raw_name(name: str) -> bytes:
    raw = name.encode("utf-8", "surrogateescape").split(b"\0", 1)[0]
    return raw[:DIRSIZ]


def namecmp(s: str, t: str) -> int:
    """Compare two directory entry names on their first DIRSIZ bytes.

    Returns a negative number, zero or a positive number.
    """
    a, b = _raw_name(s), _raw_name(t)
    return (a > b) - (a < b)


def skipelem(path: str) -> tuple[str, str] | None:
    """Split the first element off ``path``.

    Returns the element, cut to DIRSIZ bytes, and the rest of the path with
    its leading slashes removed; ``None`` if there is no element.
    """
    path = path.lstrip("/")
    if not path:
        return None
    elem, _, rest = path.partition("/")
    raw = elem.encode("utf-8", "surrogateescape")[:DIRSIZ]
    return raw.decode("utf-8", "surrogateescape"), rest.lstrip("/")


class FileSystem:
    """The file system on one device, with its inode cache."""

    def __init__(
        self,
        cache: BufferCache,
        log: Log,
        dev: int = ROOTDEV,
        ninode: int = NINODE,
        devices: Mapping[int, Device] | None = None,
    ) -> None:
        if ninode < 1:
            raise ValueError("the inode cache needs at least one entry")
        self._cache = cache
        self._log = log
        self.dev = dev
        self.devices: dict[int, Device] = dict(devices or {})
        self._icache_lock = threading.Lock()
        self._icache = [Inode() for _ in range(ninode)]
        with cache.block(dev, 1) as bp:
            self.sb = Superblock.unpack(bytes(bp.data))

    @property
    def log(self) -> Log:
        return self._log

    # Blocks.

    def _bzero(self, bno: int) -> None:
        with self._cache.block(self.dev, bno) as bp:
            bp.data[:] = bytes(BSIZE)
            self._log.write(bp)

    def _balloc(self) -> int:
        """Allocate a zeroed disk block."""
        for base in range(0, self.sb.size, BPB):
            with self._cache.block(self.dev, bblock(base, self.sb)) as bp:
                found = None
                for bi in range(min(BPB, self.sb.size - base)):
                    mask = 1 << (bi % 8)
                    if not bp.data[bi // 8] & mask:
                        bp.data[bi // 8] |= mask
                        self._log.write(bp)
                        found = base + bi
                        break
            if found is not None:
                self._bzero(found)
                return found
        raise FileSystemError("balloc: out of blocks")

    def _bfree(self, block: int) -> None:
        with self._cache.block(self.dev, bblock(block, self.sb)) as bp:
            bi = block % BPB
            mask = 1 << (bi % 8)
            if not bp.data[bi // 8] & mask:
                raise FileSystemError("freeing free block")
            bp.data[bi // 8] &= ~mask & 0xFF
            self._log.write(bp)

    # Inodes.

    def _inode_offset(self, inum: int) -> int:
        return (inum % IPB) * DINODE_SIZE

    def alloc_inode(self, type: int) -> Inode:
        """Allocate a free inode on disk with the given type.

        Returns it referenced but not locked.
        """
        for inum in range(1, self.sb.ninodes):
            with self._cache.block(self.dev, iblock(inum, self.sb)) as bp:
                start = self._inode_offset(inum)
                din = DiskInode.unpack(bytes(bp.data[start : start + DINODE_SIZE]))
                if din.type != FileType.FREE:
                    continue
                bp.data[start : start + DINODE_SIZE] = DiskInode(type=int(type)).pack()
                self._log.write(bp)
            return self.get_inode(inum)
        raise FileSystemError("ialloc: no inodes")

    def update(self, ip: Inode) -> None:
        """Copy a modified in-memory inode to disk; the caller holds its lock."""
        if not ip.held:
            raise FileSystemError("update of an inode not locked")
        with self._cache.block(ip.dev, iblock(ip.inum, self.sb)) as bp:
            start = self._inode_offset(ip.inum)
            din = DiskInode(ip.type, ip.major, ip.minor, ip.nlink, ip.size, ip.addrs)
            bp.data[start : start + DINODE_SIZE] = din.pack()
            self._log.write(bp)

    def get_inode(self, inum: int) -> Inode:
        """Return the cached inode ``inum``, referenced; neither locked nor read."""
        with self._icache_lock:
            empty = None
            for ip in self._icache:
                if ip.ref > 0 and ip.dev == self.dev and ip.inum == inum:
                    ip.ref += 1
                    return ip
                if empty is None and ip.ref == 0:
                    empty = ip
            if empty is None:
                raise FileSystemError("iget: no inodes")
            empty.dev = self.dev
            empty.inum = inum
            empty.ref = 1
            empty.valid = False
            return empty

    def dup(self, ip: Inode) -> Inode:
        """Add a reference to ``ip`` and return it."""
        with self._icache_lock:
            ip.ref += 1
        return ip

    def lock(self, ip: Inode) -> None:
        """Lock ``ip``, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            raise FileSystemError("ilock")
        ip._acquire()
        if ip.valid:
            return
        with self._cache.block(ip.dev, iblock(ip.inum, self.sb)) as bp:
            start = self._inode_offset(ip.inum)
            din = DiskInode.unpack(bytes(bp.data[start : start + DINODE_SIZE]))
        ip.type = din.type
        ip.major = din.major
        ip.minor = din.minor
        ip.nlink = din.nlink
        ip.size = din.size
        ip.addrs = list(din.addrs)
        ip.valid = True
        if ip.type == FileType.FREE:
            ip._release()
            raise FileSystemError("ilock: no type")

    def unlock(self, ip: Inode) -> None:
        if ip is None or not ip.held or ip.ref < 1:
            raise FileSystemError("iunlock")
        ip._release()

    def put(self, ip: Inode) -> None:
        """Drop a reference; free the inode on disk if it was the last and unlinked."""
        ip._acquire()
        try:
            if ip.valid and ip.nlink == 0:
                with self._icache_lock:
                    last = ip.ref == 1
                if last:
                    self._truncate(ip)
                    ip.type = FileType.FREE
                    self.update(ip)
                    ip.valid = False
        finally:
            ip._release()
        with self._icache_lock:
            ip.ref -= 1

    def unlock_put(self, ip: Inode) -> None:
        self.unlock(ip)
        self.put(ip)

    def _bmap(self, ip: Inode, bn: int) -> int:
        """Disk block holding block ``bn`` of ``ip``, allocated if missing."""
        if bn < NDIRECT:
            if ip.addrs[bn] == 0:
                ip.addrs[bn] = self._balloc()
            return ip.addrs[bn]
        bn -= NDIRECT
        if bn >= NINDIRECT:
            raise FileSystemError("bmap: out of range")
        if ip.addrs[NDIRECT] == 0:
            ip.addrs[NDIRECT] = self._balloc()
        with self._cache.block(ip.dev, ip.addrs[NDIRECT]) as bp:
            (addr,) = _UINT.unpack_from(bp.data, bn * 4)
            if addr == 0:
                addr = self._balloc()
                _UINT.pack_into(bp.data, bn * 4, addr)
                self._log.write(bp)
        return addr

    def _truncate(self, ip: Inode) -> None:
        for i in range(NDIRECT):
            if ip.addrs[i]:
                self._bfree(ip.addrs[i])
                ip.addrs[i] = 0
        if ip.addrs[NDIRECT]:
            with self._cache.block(ip.dev, ip.addrs[NDIRECT]) as bp:
                entries = struct.unpack_from(f"<{NINDIRECT}I", bp.data)
            for addr in entries:
                if addr:
                    self._bfree(addr)
            self._bfree(ip.addrs[NDIRECT])
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.update(ip)

    def stat(self, ip: Inode) -> Stat:
        """Metadata of ``ip``; the caller holds its lock."""
        if not ip.held:
            raise FileSystemError("stat of an inode not locked")
        return Stat(ip.dev, ip.inum, ip.type, ip.nlink, ip.size)

    # Content.

    def _device(self, ip: Inode, op: str):
        device = self.devices.get(ip.major)
        handler = getattr(device, op, None)
        if handler is None:
            raise FileSystemError(f"no device {ip.major} to {op}")
        return handler

    def read(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to ``n`` bytes at ``off``; the caller holds the lock."""
        if not ip.held:
            raise FileSystemError("read of an inode not locked")
        if ip.type == FileType.DEVICE:
            handler = self._device(ip, "read")
            # The device may block; do not keep the inode locked meanwhile.
            self.unlock(ip)
            try:
                return bytes(handler(n))
            finally:
                self.lock(ip)
        if off < 0 or n < 0 or off > ip.size:
            raise FileSystemError(f"read at offset {off} outside file")
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            start = off % BSIZE
            m = min(n - len(out), BSIZE - start)
            with self._cache.block(ip.dev, self._bmap(ip, off // BSIZE)) as bp:
                out += bp.data[start : start + m]
            off += m
        return bytes(out)

    def write(self, ip: Inode, off: int, data: bytes) -> int:
        """Write ``data`` at ``off``, growing the file; the caller holds the lock."""
        if not ip.held:
            raise FileSystemError("write of an inode not locked")
        if ip.type == FileType.DEVICE:
            handler = self._device(ip, "write")
            self.unlock(ip)
            try:
                return handler(bytes(data))
            finally:
                self.lock(ip)
        n = len(data)
        if off < 0 or off > ip.size:
            raise FileSystemError(f"write at offset {off} outside file")
        if off + n > MAXFILE * BSIZE:
            raise FileSystemError("write beyond maximum file size")
        pos = 0
        while pos < n:
            start = off % BSIZE
            m = min(n - pos, BSIZE - start)
            with self._cache.block(ip.dev, self._bmap(ip, off // BSIZE)) as bp:
                bp.data[start : start + m] = data[pos : pos + m]
                self._log.write(bp)
            pos += m
            off += m
        if n > 0 and off > ip.size:
            ip.size = off
            self.update(ip)
        return n

    # Directories.

    def dir_lookup(self, dp: Inode, name: str) -> tuple[Inode, int] | None:
        """Find ``name`` in directory ``dp``; return its inode and entry offset."""
        if dp.type != FileType.DIR:
            raise FileSystemError("dirlookup not DIR")
        for off in range(0, dp.size, DIRENT_SIZE):
            raw = self.read(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise FileSystemError("dirlookup read")
            de = DirEntry.unpack(raw)
            if de.inum == 0:
                continue
            if namecmp(name, de.name) == 0:
                return self.get_inode(de.inum), off
        return None

    def dir_link(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry (``name``, ``inum``) to directory ``dp``."""
        found = self.dir_lookup(dp, name)
        if found is not None:
            self.put(found[0])
            raise FileSystemError(f"{name!r} already present")
        off = dp.size
        for candidate in range(0, dp.size, DIRENT_SIZE):
            raw = self.read(dp, candidate, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                raise FileSystemError("dirlink read")
            if DirEntry.unpack(raw).inum == 0:
                off = candidate
                break
        if self.write(dp, off, DirEntry(inum, name).pack()) != DIRENT_SIZE:
            raise FileSystemError("dirlink")

    # Paths.

    def _namex(
        self, path: str, parent: bool, cwd: Inode | None
    ) -> tuple[Inode, str] | None:
        if path.startswith("/") or cwd is None:
            ip = self.get_inode(ROOTINO)
        else:
            ip = self.dup(cwd)
        name = ""
        while (step := skipelem(path)) is not None:
            name, path = step
            self.lock(ip)
            if ip.type != FileType.DIR:
                self.unlock_put(ip)
                return None
            if parent and path == "":
                # Stop one level early.
                self.unlock(ip)
                return ip, name
            try:
                found = self.dir_lookup(ip, name)
            except BaseException:
                self.unlock_put(ip)
                raise
            self.unlock_put(ip)
            if found is None:
                return None
            ip = found[0]
        if parent:
            self.put(ip)
            return None
        return ip, name

    def namei(self, path: str, cwd: Inode | None = None) -> Inode | None:
        """Inode for ``path``, or ``None``; relative paths start at ``cwd``."""
        found = self._namex(path, False, cwd)
        return None if found is None else found[0]

    def nameiparent(self, path: str, cwd: Inode | None = None) -> tuple[Inode, str] | None:
        """Inode of the parent directory of ``path`` and the final element."""
        return self._namex(path, True, cwd)