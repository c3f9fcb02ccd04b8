"""Buffer cache: cached copies of disk blocks with per-buffer locks.

Get a buffer with :meth:`BufferCache.read`, write changes with
:meth:`BufferCache.write` and hand it back with :meth:`BufferCache.release`.
Only one thread at a time holds a buffer.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Protocol

from .layout import BSIZE

# Enough buffers for three maximal file system operations.
NBUF = 30


class BufferCacheError(Exception):
    """Misuse of the buffer cache, or no free buffer left."""


@dataclass(eq=False)
class Buffer:
    """A cached disk block; ``valid`` once read, ``dirty`` while unwritten."""

    dev: int | None = None
    blockno: int | None = None
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))
    valid: bool = False
    dirty: bool = False
    refcnt: int = 0
    _mutex: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _owner: int | None = field(default=None, repr=False)

    @property
    def held(self) -> bool:
        """Whether the calling thread holds this buffer's lock."""
        return self._owner == threading.get_ident()

    def _lock(self) -> None:
        self._mutex.acquire()
        self._owner = threading.get_ident()

    def _unlock(self) -> None:
        self._owner = None
        self._mutex.release()


class Disk(Protocol):
    def sync(self, buf: Buffer) -> None: ...


class BufferCache:
    """A fixed set of buffers recycled in least-recently-used order."""

    def __init__(self, disk: Disk, nbuf: int = NBUF) -> None:
        if nbuf < 1:
            raise ValueError("the cache needs at least one buffer")
        self._disk = disk
        self._lock = threading.Lock()
        # Most recently used first.
        self._order = [Buffer() for _ in range(nbuf)][::-1]

    def _get(self, dev: int, blockno: int) -> Buffer:
        with self._lock:
            found = next(
                (b for b in self._order if b.dev == dev and b.blockno == blockno), None
            )
            if found is not None:
                if found.held:
                    raise BufferCacheError(f"block {blockno} already held by caller")
                found.refcnt += 1
            else:
                # Even with no references, a dirty buffer is pinned by the log.
                found = next(
                    (b for b in reversed(self._order) if b.refcnt == 0 and not b.dirty),
                    None,
                )
                if found is None:
                    raise BufferCacheError("no buffers")
                found.dev = dev
                found.blockno = blockno
                found.valid = False
                found.dirty = False
                found.refcnt = 1
        found._lock()
        return found

    def read(self, dev: int, blockno: int) -> Buffer:
        """Return the locked buffer for a block, reading it from disk if needed."""
        buf = self._get(dev, blockno)
        if not buf.valid:
            self._disk.sync(buf)
        return buf

    def write(self, buf: Buffer) -> None:
        """Write a locked buffer's content to disk."""
        if not buf.held:
            raise BufferCacheError("write of a buffer not held")
        buf.dirty = True
        self._disk.sync(buf)

    def release(self, buf: Buffer) -> None:
        """Release a locked buffer; once unreferenced it becomes most recently used."""
        if not buf.held:
            raise BufferCacheError("release of a buffer not held")
        buf._unlock()
        with self._lock:
            buf.refcnt -= 1
            if buf.refcnt == 0:
                self._order.remove(buf)
                self._order.insert(0, buf)

    @contextmanager
    def block(self, dev: int, blockno: int) -> Iterator[Buffer]:
        """Hold the buffer for a block for the duration of a ``with`` block."""
        buf = self.read(dev, blockno)
        try:
            yield buf
        finally:
            self.release(buf)