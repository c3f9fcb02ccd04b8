"""On-disk file system format: superblock, inodes and directory entries.

Disk layout:
[ boot block | super block | log | inode blocks | free bit map | data blocks ]

All integers are stored little-endian.
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field

ROOTINO = 1
BSIZE = 512

NDIRECT = 12
NINDIRECT = BSIZE // 4
MAXFILE = NDIRECT + NINDIRECT

DIRSIZ = 14

_SUPERBLOCK = struct.Struct("<7I")
_DINODE = struct.Struct(f"<4hI{NDIRECT + 1}I")
_DIRENT = struct.Struct(f"<H{DIRSIZ}s")

SUPERBLOCK_SIZE = _SUPERBLOCK.size
DINODE_SIZE = _DINODE.size
DIRENT_SIZE = _DIRENT.size

# Inodes per block.
IPB = BSIZE // DINODE_SIZE
# Bitmap bits per block.
BPB = BSIZE * 8


class FileType(enum.IntEnum):
    """Type stored in an inode; zero marks a free inode."""

    FREE = 0
    DIR = 1
    FILE = 2
    DEVICE = 3


@dataclass
class Superblock:
    """Description of the disk layout, stored in block 1."""

    size: int = 0
    nblocks: int = 0
    ninodes: int = 0
    nlog: int = 0
    logstart: int = 0
    inodestart: int = 0
    bmapstart: int = 0

    def pack(self) -> bytes:
        try:
            return _SUPERBLOCK.pack(
                self.size,
                self.nblocks,
                self.ninodes,
                self.nlog,
                self.logstart,
                self.inodestart,
                self.bmapstart,
            )
        except struct.error as exc:
            raise ValueError(f"superblock field out of range: {exc}") from None

    @classmethod
    def unpack(cls, data: bytes) -> Superblock:
        try:
            return cls(*_SUPERBLOCK.unpack_from(data))
        except struct.error as exc:
            raise ValueError(f"bad superblock: {exc}") from None


@dataclass
class DiskInode:
    """An inode as it is stored on disk."""

    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: list[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))

    def __post_init__(self) -> None:
        self.addrs = list(self.addrs)
        if len(self.addrs) != NDIRECT + 1:
            raise ValueError(f"an inode holds exactly {NDIRECT + 1} block addresses")

    def pack(self) -> bytes:
        try:
            return _DINODE.pack(
                self.type, self.major, self.minor, self.nlink, self.size, *self.addrs
            )
        except struct.error as exc:
            raise ValueError(f"inode field out of range: {exc}") from None

    @classmethod
    def unpack(cls, data: bytes) -> DiskInode:
        try:
            type_, major, minor, nlink, size, *addrs = _DINODE.unpack_from(data)
        except struct.error as exc:
            raise ValueError(f"bad inode: {exc}") from None
        return cls(type_, major, minor, nlink, size, addrs)


@dataclass
class DirEntry:
    """A directory entry; an inum of zero marks a free slot."""

    inum: int = 0
    name: str = ""

    def pack(self) -> bytes:
        raw = self.name.encode("utf-8", "surrogateescape")[:DIRSIZ]
        try:
            return _DIRENT.pack(self.inum, raw)
        except struct.error as exc:
            raise ValueError(f"directory entry out of range: {exc}") from None

    @classmethod
    def unpack(cls, data: bytes) -> DirEntry:
        try:
            inum, raw = _DIRENT.unpack_from(data)
        except struct.error as exc:
            raise ValueError(f"bad directory entry: {exc}") from None
        name = raw.split(b"\0", 1)[0].decode("utf-8", "surrogateescape")
        return cls(inum, name)


def iblock(inum: int, sb: Superblock) -> int:
    """Block that holds inode ``inum``."""
    return inum // IPB + sb.inodestart


def bblock(block: int, sb: Superblock) -> int:
    """Block of the free map that holds the bit for ``block``."""
    return block // BPB + sb.bmapstart