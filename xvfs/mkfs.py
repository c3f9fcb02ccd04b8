"""Build a file system image holding a root directory and a set of files."""

from __future__ import annotations

import struct
import sys
from collections.abc import Iterable
from pathlib import Path

from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    ROOTINO,
    DirEntry,
    DiskInode,
    FileType,
    Superblock,
    iblock,
)

NINODES = 200
DEFAULT_SIZE = 1000
DEFAULT_NLOG = 30

_INDIRECT = struct.Struct(f"<{NINDIRECT}I")


class ImageBuilder:
    """An image under construction, one block per disk sector."""

    def __init__(
        self, size: int = DEFAULT_SIZE, nlog: int = DEFAULT_NLOG, ninodes: int = NINODES
    ) -> None:
        self.nbitmap = size // BPB + 1
        self.ninodeblocks = ninodes // IPB + 1
        self.nlog = nlog
        self.nmeta = 2 + nlog + self.ninodeblocks + self.nbitmap
        if self.nmeta >= size:
            raise ValueError(f"image of {size} blocks has no room for data")
        self.nblocks = size - self.nmeta
        self.sb = Superblock(
            size=size,
            nblocks=self.nblocks,
            ninodes=ninodes,
            nlog=nlog,
            logstart=2,
            inodestart=2 + nlog,
            bmapstart=2 + nlog + self.ninodeblocks,
        )
        self.freeblock = self.nmeta
        self._freeinode = 1
        self._image = bytearray(size * BSIZE)
        self._finished = False

        self.write_sector(1, self.sb.pack().ljust(BSIZE, b"\0"))
        root = self.alloc_inode(FileType.DIR)
        self.append(root, DirEntry(root, ".").pack())
        self.append(root, DirEntry(root, "..").pack())

    @property
    def summary(self) -> str:
        return (
            f"nmeta {self.nmeta} (boot, super, log blocks {self.nlog} "
            f"inode blocks {self.ninodeblocks}, bitmap blocks {self.nbitmap}) "
            f"blocks {self.nblocks} total {self.sb.size}"
        )

    def _check_sector(self, sec: int) -> None:
        if not 0 <= sec < self.sb.size:
            raise ValueError(f"sector {sec} outside image of {self.sb.size} blocks")

    def _check_open(self) -> None:
        if self._finished:
            raise ValueError("image already finished")

    def write_sector(self, sec: int, data: bytes) -> None:
        self._check_sector(sec)
        if len(data) != BSIZE:
            raise ValueError(f"a sector holds exactly {BSIZE} bytes")
        self._image[sec * BSIZE : (sec + 1) * BSIZE] = data

    def read_sector(self, sec: int) -> bytes:
        self._check_sector(sec)
        return bytes(self._image[sec * BSIZE : (sec + 1) * BSIZE])

    def read_inode(self, inum: int) -> DiskInode:
        block = self.read_sector(iblock(inum, self.sb))
        start = (inum % IPB) * DINODE_SIZE
        return DiskInode.unpack(block[start : start + DINODE_SIZE])

    def write_inode(self, inum: int, din: DiskInode) -> None:
        bn = iblock(inum, self.sb)
        block = bytearray(self.read_sector(bn))
        start = (inum % IPB) * DINODE_SIZE
        block[start : start + DINODE_SIZE] = din.pack()
        self.write_sector(bn, bytes(block))

    def alloc_inode(self, type: int) -> int:
        """Allocate the next inode with one link and no content."""
        self._check_open()
        inum = self._freeinode
        if inum >= self.sb.ninodes:
            raise ValueError("out of inodes")
        self._freeinode += 1
        self.write_inode(inum, DiskInode(type=int(type), nlink=1, size=0))
        return inum

    def _alloc_block(self) -> int:
        if self.freeblock >= self.sb.size:
            raise ValueError("out of data blocks")
        block = self.freeblock
        self.freeblock += 1
        return block

    def _block_for(self, din: DiskInode, fbn: int) -> int:
        if fbn < NDIRECT:
            if din.addrs[fbn] == 0:
                din.addrs[fbn] = self._alloc_block()
            return din.addrs[fbn]
        if din.addrs[NDIRECT] == 0:
            din.addrs[NDIRECT] = self._alloc_block()
        indirect = list(_INDIRECT.unpack(self.read_sector(din.addrs[NDIRECT])))
        slot = fbn - NDIRECT
        if indirect[slot] == 0:
            indirect[slot] = self._alloc_block()
            self.write_sector(din.addrs[NDIRECT], _INDIRECT.pack(*indirect))
        return indirect[slot]

    def append(self, inum: int, data: bytes) -> None:
        """Append ``data`` to the content of inode ``inum``."""
        self._check_open()
        din = self.read_inode(inum)
        off = din.size
        pos = 0
        while pos < len(data):
            fbn = off // BSIZE
            if fbn >= MAXFILE:
                raise ValueError("file too large")
            sec = self._block_for(din, fbn)
            n1 = min(len(data) - pos, (fbn + 1) * BSIZE - off)
            block = bytearray(self.read_sector(sec))
            start = off - fbn * BSIZE
            block[start : start + n1] = data[pos : pos + n1]
            self.write_sector(sec, bytes(block))
            pos += n1
            off += n1
        din.size = off
        self.write_inode(inum, din)

    def add_file(self, name: str, data: bytes) -> int:
        """Add a regular file to the root directory; a leading '_' is dropped."""
        self._check_open()
        if "/" in name:
            raise ValueError(f"file name {name!r} must not contain '/'")
        if name.startswith("_"):
            name = name[1:]
        inum = self.alloc_inode(FileType.FILE)
        self.append(ROOTINO, DirEntry(inum, name).pack())
        self.append(inum, data)
        return inum

    def finish(self) -> bytes:
        """Round up the root directory, write the free bitmap and return the image."""
        self._check_open()
        din = self.read_inode(ROOTINO)
        din.size = (din.size // BSIZE + 1) * BSIZE
        self.write_inode(ROOTINO, din)

        used = self.freeblock
        if used >= BPB:
            raise ValueError(f"{used} used blocks do not fit in one bitmap block")
        bitmap = bytearray(BSIZE)
        full, rest = divmod(used, 8)
        bitmap[:full] = b"\xff" * full
        if rest:
            bitmap[full] = (1 << rest) - 1
        self.write_sector(self.sb.bmapstart, bytes(bitmap))
        self._finished = True
        return bytes(self._image)


def build_image(
    files: Iterable[tuple[str, bytes]],
    size: int = DEFAULT_SIZE,
    nlog: int = DEFAULT_NLOG,
    ninodes: int = NINODES,
) -> bytes:
    """Build a complete image holding ``files`` as (name, content) pairs."""
    builder = ImageBuilder(size, nlog, ninodes)
    for name, data in files:
        builder.add_file(name, data)
    return builder.finish()


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("Usage: mkfs fs.img files...", file=sys.stderr)
        return 1
    image_path, *inputs = args

    builder = ImageBuilder()
    print(builder.summary)
    for path in inputs:
        try:
            data = Path(path).read_bytes()
        except OSError as exc:
            print(f"{path}: {exc.strerror}", file=sys.stderr)
            return 1
        try:
            builder.add_file(path, data)
        except ValueError as exc:
            print(f"mkfs: {exc}", file=sys.stderr)
            return 1

    try:
        image = builder.finish()
    except ValueError as exc:
        print(f"mkfs: {exc}", file=sys.stderr)
        return 1
    print(f"balloc: first {builder.freeblock} blocks have been allocated")
    print(f"balloc: write bitmap block at sector {builder.sb.bmapstart}")

    try:
        Path(image_path).write_bytes(image)
    except OSError as exc:
        print(f"{image_path}: {exc.strerror}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())