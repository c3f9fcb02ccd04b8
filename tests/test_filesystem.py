import pytest
from hypothesis import given, strategies as st

from xvfs.bcache import BufferCache
from xvfs.disk import MemoryDisk
from xvfs.filesystem import (
    ROOTDEV,
    FileSystem,
    FileSystemError,
    Stat,
    namecmp,
    skipelem,
)
from xvfs.journal import Log
from xvfs.layout import BSIZE, DIRSIZ, MAXFILE, NDIRECT, ROOTINO, FileType, Superblock
from xvfs.mkfs import build_image

README = b"hello file system\n"


def make_fs(files=(("README", README),), ninode=50, devices=None, image=None):
    if image is None:
        image = build_image(files)
    disk = MemoryDisk(image)
    cache = BufferCache(disk)
    sb = Superblock.unpack(disk.read_block(1))
    log = Log(cache, ROOTDEV, sb)
    fs = FileSystem(cache, log, ROOTDEV, ninode, devices)
    return disk, log, fs


def read_all(fs, ip):
    fs.lock(ip)
    try:
        return fs.read(ip, 0, ip.size)
    finally:
        fs.unlock(ip)


class FakeDevice:
    def __init__(self, reply):
        self.reply = reply
        self.written = b""

    def read(self, n):
        return self.reply[:n]

    def write(self, data):
        self.written += data
        return len(data)


@pytest.mark.parametrize(
    "path, expected",
    [
        ("a/bb/c", ("a", "bb/c")),
        ("///a//bb", ("a", "bb")),
        ("a", ("a", "")),
        ("", None),
        ("////", None),
    ],
)
def test_skipelem_examples(path, expected):
    assert skipelem(path) == expected


def test_skipelem_truncates_long_names():
    name, rest = skipelem("/" + "x" * 20 + "/y")
    assert name == "x" * DIRSIZ
    assert rest == "y"


def test_namecmp_compares_only_dirsiz_bytes():
    assert namecmp("a" * DIRSIZ + "b", "a" * DIRSIZ + "c") == 0
    assert namecmp("abc", "abd") < 0
    assert namecmp("abd", "abc") > 0


@given(st.text(alphabet="abc/", max_size=30))
def test_skipelem_element_has_no_slash(path):
    step = skipelem(path)
    if step is None:
        assert path.strip("/") == ""
    else:
        name, rest = step
        assert "/" not in name and name
        assert not rest.startswith("/")


def test_namei_reads_file_from_image():
    _, log, fs = make_fs()
    with log.transaction():
        ip = fs.namei("/README")
    assert ip is not None
    assert read_all(fs, ip) == README
    fs.lock(ip)
    st_ = fs.stat(ip)
    fs.unlock(ip)
    assert st_ == Stat(ROOTDEV, ip.inum, FileType.FILE, 1, len(README))


def test_namei_missing_and_through_file():
    _, log, fs = make_fs()
    with log.transaction():
        assert fs.namei("/nothing") is None
        assert fs.namei("/README/x") is None


def test_namei_root_and_relative():
    _, log, fs = make_fs()
    with log.transaction():
        root = fs.namei("/")
        assert root.inum == ROOTINO
        rel = fs.namei("README", root)
        assert rel is fs.namei("/./README")


def test_nameiparent():
    _, log, fs = make_fs()
    with log.transaction():
        parent, name = fs.nameiparent("/README")
        assert parent.inum == ROOTINO
        assert name == "README"
        assert fs.nameiparent("/") is None


def test_read_clamps_and_rejects_bad_offset():
    _, log, fs = make_fs()
    with log.transaction():
        ip = fs.namei("/README")
    fs.lock(ip)
    assert fs.read(ip, 6, 1000) == README[6:]
    assert fs.read(ip, len(README), 10) == b""
    with pytest.raises(FileSystemError):
        fs.read(ip, len(README) + 1, 1)
    fs.unlock(ip)


def test_read_requires_lock():
    _, log, fs = make_fs()
    with log.transaction():
        ip = fs.namei("/README")
    with pytest.raises(FileSystemError):
        fs.read(ip, 0, 1)
    with pytest.raises(FileSystemError):
        fs.unlock(ip)


def test_create_link_write_persists():
    disk, log, fs = make_fs()
    data = b"new content " * 100
    with log.transaction():
        ip = fs.alloc_inode(FileType.FILE)
        fs.lock(ip)
        ip.nlink = 1
        fs.update(ip)
        assert fs.write(ip, 0, data) == len(data)
        fs.unlock(ip)
        root = fs.namei("/")
        fs.lock(root)
        fs.dir_link(root, "notes", ip.inum)
        found, _ = fs.dir_lookup(root, "notes")
        assert found is ip
        fs.put(found)
        with pytest.raises(FileSystemError):
            fs.dir_link(root, "notes", ip.inum)
        fs.unlock_put(root)
    _, log2, fs2 = make_fs(image=disk.image())
    with log2.transaction():
        again = fs2.namei("/notes")
    assert again.inum == ip.inum
    assert read_all(fs2, again) == data


def test_write_through_indirect_block():
    _, log, fs = make_fs()
    data = bytes(range(256)) * ((NDIRECT + 3) * BSIZE // 256)
    with log.transaction():
        ip = fs.alloc_inode(FileType.FILE)
        fs.lock(ip)
        ip.nlink = 1
        fs.update(ip)
        fs.write(ip, 0, data)
        fs.unlock(ip)
    assert ip.addrs[NDIRECT] != 0
    assert read_all(fs, ip) == data


def test_write_limits():
    _, log, fs = make_fs()
    with log.transaction():
        ip = fs.namei("/README")
        fs.lock(ip)
        with pytest.raises(FileSystemError):
            fs.write(ip, 0, bytes(MAXFILE * BSIZE + 1))
        with pytest.raises(FileSystemError):
            fs.write(ip, len(README) + 1, b"x")
        fs.unlock(ip)


def test_put_frees_unlinked_inode_and_blocks():
    _, log, fs = make_fs()
    with log.transaction():
        ip = fs.alloc_inode(FileType.FILE)
        inum = ip.inum
        fs.lock(ip)
        fs.write(ip, 0, b"x" * 600)
        first_block = ip.addrs[0]
        fs.unlock(ip)
        fs.put(ip)
    with log.transaction():
        again = fs.alloc_inode(FileType.FILE)
        assert again.inum == inum
        fs.lock(again)
        fs.write(again, 0, b"y")
        assert again.addrs[0] == first_block
        fs.unlock(again)


def test_inode_cache_refs_and_exhaustion():
    _, _, fs = make_fs(ninode=2)
    a = fs.get_inode(1)
    assert fs.get_inode(1) is a
    assert a.ref == 2
    assert fs.dup(a) is a and a.ref == 3
    fs.get_inode(2)
    with pytest.raises(FileSystemError):
        fs.get_inode(3)


def test_lock_free_inode_fails():
    _, _, fs = make_fs()
    ip = fs.get_inode(150)
    with pytest.raises(FileSystemError):
        fs.lock(ip)
    assert not ip.held


def test_device_inode_read_and_write():
    device = FakeDevice(b"typed")
    _, log, fs = make_fs(devices={1: device})
    with log.transaction():
        ip = fs.alloc_inode(FileType.DEVICE)
        fs.lock(ip)
        ip.major = 1
        ip.nlink = 1
        fs.update(ip)
        assert fs.write(ip, 0, b"shown") == 5
        assert fs.read(ip, 0, 3) == b"typ"
        assert ip.held
        ip.major = 2
        with pytest.raises(FileSystemError):
            fs.read(ip, 0, 1)
        fs.unlock(ip)
    assert device.written == b"shown"


def test_dir_lookup_requires_directory():
    _, log, fs = make_fs()
    with log.transaction():
        ip = fs.namei("/README")
    fs.lock(ip)
    with pytest.raises(FileSystemError):
        fs.dir_lookup(ip, "x")
    fs.unlock(ip)