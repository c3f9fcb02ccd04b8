from dataclasses import dataclass, field

import pytest

from xvfs.disk import DiskError, MemoryDisk
from xvfs.layout import BSIZE


@dataclass
class _Buf:
    dev: int | None = 1
    blockno: int | None = 0
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))
    valid: bool = False
    dirty: bool = False
    held: bool = True


def _image(nblocks):
    return b"".join(bytes([k]) * BSIZE for k in range(nblocks))


def test_nblocks_counts_whole_blocks():
    disk = MemoryDisk(_image(4) + b"xyz")
    assert disk.nblocks == 4


def test_read_block_returns_content():
    disk = MemoryDisk(_image(4))
    assert disk.read_block(2) == bytes([2]) * BSIZE


def test_write_block_round_trip():
    disk = MemoryDisk(_image(4))
    payload = bytes(range(256)) * 2
    disk.write_block(3, payload)
    assert disk.read_block(3) == payload
    assert disk.read_block(2) == bytes([2]) * BSIZE


def test_image_is_a_copy():
    disk = MemoryDisk(_image(2))
    before = disk.image()
    disk.write_block(0, b"\xff" * BSIZE)
    assert before == _image(2)
    assert disk.image()[:BSIZE] == b"\xff" * BSIZE


@pytest.mark.parametrize("blockno", [-1, 4, 100])
def test_block_out_of_range(blockno):
    disk = MemoryDisk(_image(4))
    with pytest.raises(DiskError, match="out of range"):
        disk.read_block(blockno)


def test_write_block_rejects_wrong_size():
    disk = MemoryDisk(_image(2))
    with pytest.raises(DiskError):
        disk.write_block(0, b"short")


def test_sync_reads_invalid_buffer():
    disk = MemoryDisk(_image(4))
    buf = _Buf(blockno=3)
    disk.sync(buf)
    assert buf.valid
    assert not buf.dirty
    assert bytes(buf.data) == bytes([3]) * BSIZE


def test_sync_writes_dirty_buffer():
    disk = MemoryDisk(_image(4))
    buf = _Buf(blockno=1, data=bytearray(b"\x7e" * BSIZE), dirty=True)
    disk.sync(buf)
    assert buf.valid
    assert not buf.dirty
    assert disk.read_block(1) == b"\x7e" * BSIZE


def test_sync_nothing_to_do():
    disk = MemoryDisk(_image(2))
    buf = _Buf(valid=True)
    with pytest.raises(DiskError, match="nothing to do"):
        disk.sync(buf)


def test_sync_requires_lock():
    disk = MemoryDisk(_image(2))
    with pytest.raises(DiskError, match="not locked"):
        disk.sync(_Buf(held=False))


def test_sync_wrong_device():
    disk = MemoryDisk(_image(2), dev=1)
    with pytest.raises(DiskError, match="not for disk"):
        disk.sync(_Buf(dev=0))


def test_sync_block_out_of_range():
    disk = MemoryDisk(_image(2))
    with pytest.raises(DiskError, match="out of range"):
        disk.sync(_Buf(blockno=2))