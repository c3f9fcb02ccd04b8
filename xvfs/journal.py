"""Write-ahead log that makes multi-block file system updates atomic.

A transaction gathers the updates of several concurrent operations and is
committed only when none of them is still running. On disk the log is a
header block holding the block numbers of the logged blocks, followed by
copies of those blocks.
"""

from __future__ import annotations

import struct
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from .bcache import Buffer, BufferCache
from .layout import BSIZE, Superblock

MAXOPBLOCKS = 10
LOGSIZE = MAXOPBLOCKS * 3

_COUNT = struct.Struct("<i")


class LogError(Exception):
    """Misuse of the log or a damaged log on disk."""


class Log:
    """The log of one device, recovered when it is opened."""

    def __init__(
        self,
        cache: BufferCache,
        dev: int,
        sb: Superblock,
        logsize: int = LOGSIZE,
        maxopblocks: int = MAXOPBLOCKS,
    ) -> None:
        if _COUNT.size * (1 + logsize) >= BSIZE:
            raise LogError("too big logheader")
        if maxopblocks > logsize:
            raise ValueError("an operation may not need more blocks than the log holds")
        self._cache = cache
        self.dev = dev
        self.start = sb.logstart
        self.size = sb.nlog
        self.logsize = logsize
        self.maxopblocks = maxopblocks
        self._cond = threading.Condition()
        self._outstanding = 0
        self._committing = False
        self._blocks: list[int] = []
        self.recover()

    @property
    def outstanding(self) -> int:
        """Number of operations currently running."""
        return self._outstanding

    @property
    def committing(self) -> bool:
        return self._committing

    @property
    def pending(self) -> tuple[int, ...]:
        """Block numbers logged by the current transaction."""
        return tuple(self._blocks)

    def _read_head(self) -> None:
        with self._cache.block(self.dev, self.start) as buf:
            (n,) = _COUNT.unpack_from(buf.data)
            if not 0 <= n <= self.logsize:
                raise LogError(f"corrupt log header: {n} blocks")
            self._blocks = list(struct.unpack_from(f"<{n}i", buf.data, _COUNT.size))

    def _write_head(self) -> None:
        """Write the in-memory header; this is the moment a transaction commits."""
        n = len(self._blocks)
        with self._cache.block(self.dev, self.start) as buf:
            _COUNT.pack_into(buf.data, 0, n)
            struct.pack_into(f"<{n}i", buf.data, _COUNT.size, *self._blocks)
            self._cache.write(buf)

    def _copy_blocks(self, to_log: bool) -> None:
        for tail, blockno in enumerate(self._blocks):
            logged = self._cache.read(self.dev, self.start + tail + 1)
            home = self._cache.read(self.dev, blockno)
            try:
                src, dst = (home, logged) if to_log else (logged, home)
                dst.data[:] = src.data
                self._cache.write(dst)
            finally:
                self._cache.release(home)
                self._cache.release(logged)

    def recover(self) -> None:
        """Install any committed transaction found on disk, then clear the log."""
        self._read_head()
        self._copy_blocks(to_log=False)
        self._blocks = []
        self._write_head()

    def _commit(self) -> None:
        if self._blocks:
            self._copy_blocks(to_log=True)
            self._write_head()
            self._copy_blocks(to_log=False)
            self._blocks = []
            self._write_head()

    def begin_op(self) -> None:
        """Start an operation, waiting while a commit runs or the log may run out."""
        with self._cond:
            while self._committing or (
                len(self._blocks) + (self._outstanding + 1) * self.maxopblocks
                > self.logsize
            ):
                self._cond.wait()
            self._outstanding += 1

    def end_op(self) -> None:
        """End an operation; the last one to end commits the transaction."""
        with self._cond:
            if self._outstanding < 1:
                raise LogError("end_op without begin_op")
            self._outstanding -= 1
            if self._committing:
                raise LogError("log.committing")
            do_commit = self._outstanding == 0
            if do_commit:
                self._committing = True
            else:
                # Less space is now reserved; a waiting begin_op may proceed.
                self._cond.notify_all()

        if do_commit:
            try:
                self._commit()
            finally:
                with self._cond:
                    self._committing = False
                    self._cond.notify_all()

    def write(self, buf: Buffer) -> None:
        """Record a modified buffer in the transaction and pin it in the cache."""
        with self._cond:
            n = len(self._blocks)
            if n >= self.logsize or n >= self.size - 1:
                raise LogError("too big a transaction")
            if self._outstanding < 1:
                raise LogError("log write outside of transaction")
            if buf.blockno not in self._blocks:
                self._blocks.append(buf.blockno)
            buf.dirty = True

    @contextmanager
    def transaction(self) -> Iterator[Log]:
        """Run the body of a ``with`` block as one operation."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()