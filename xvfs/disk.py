"""A disk kept entirely in memory, addressed in file system blocks."""

from __future__ import annotations

from typing import Protocol

from .layout import BSIZE


class DiskError(Exception):
    """A request the disk cannot carry out."""


class BlockBuffer(Protocol):
    """What the disk needs from a buffer handed to :meth:`MemoryDisk.sync`."""

    dev: int | None
    blockno: int | None
    data: bytearray
    valid: bool
    dirty: bool

    @property
    def held(self) -> bool: ...


class MemoryDisk:
    """A disk image held in memory that serves requests for one device."""

    def __init__(self, image: bytes | bytearray, dev: int = 1) -> None:
        self._data = bytearray(image)
        self.dev = dev
        self.nblocks = len(self._data) // BSIZE

    def _check_block(self, blockno: int) -> None:
        if not 0 <= blockno < self.nblocks:
            raise DiskError(f"block {blockno} out of range")

    def read_block(self, blockno: int) -> bytes:
        """Return the content of block ``blockno``."""
        self._check_block(blockno)
        start = blockno * BSIZE
        return bytes(self._data[start : start + BSIZE])

    def write_block(self, blockno: int, data: bytes) -> None:
        """Replace the content of block ``blockno``."""
        self._check_block(blockno)
        if len(data) != BSIZE:
            raise DiskError(f"a block holds exactly {BSIZE} bytes")
        start = blockno * BSIZE
        self._data[start : start + BSIZE] = data

    def sync(self, buf: BlockBuffer) -> None:
        """Write a dirty buffer to disk, or read a buffer that is not yet valid.

        Either way the buffer ends up valid and clean.
        """
        if not buf.held:
            raise DiskError("buffer not locked")
        if buf.valid and not buf.dirty:
            raise DiskError("nothing to do")
        if buf.dev != self.dev:
            raise DiskError(f"request not for disk {self.dev}")
        if buf.blockno is None:
            raise DiskError("buffer has no block")
        self._check_block(buf.blockno)

        if buf.dirty:
            buf.dirty = False
            self.write_block(buf.blockno, bytes(buf.data))
        else:
            buf.data[:] = self.read_block(buf.blockno)
        buf.valid = True

    def image(self) -> bytes:
        """Return a copy of the whole disk image."""
        return bytes(self._data)