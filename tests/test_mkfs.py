import struct

import pytest
from hypothesis import given, settings, strategies as st

from xvfs.layout import (
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
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
from xvfs.mkfs import ImageBuilder, build_image, main


def _read_file(builder, inum):
    din = builder.read_inode(inum)
    blocks = [a for a in din.addrs[:NDIRECT] if a]
    if din.addrs[NDIRECT]:
        indirect = struct.unpack(f"<{NINDIRECT}I", builder.read_sector(din.addrs[NDIRECT]))
        blocks += [a for a in indirect if a]
    return b"".join(builder.read_sector(b) for b in blocks)[: din.size]


def _root_entries(builder):
    data = _read_file(builder, ROOTINO)
    return [DirEntry.unpack(data[o : o + DIRENT_SIZE]) for o in range(0, len(data), DIRENT_SIZE)]


def _image_inode(image, sb, inum):
    bn = iblock(inum, sb)
    start = bn * BSIZE + (inum % IPB) * DINODE_SIZE
    return DiskInode.unpack(image[start : start + DINODE_SIZE])


def test_superblock_layout():
    builder = ImageBuilder(size=1000, nlog=30, ninodes=200)
    sb = Superblock.unpack(builder.read_sector(1))
    assert sb == builder.sb
    assert sb.size == 1000
    assert sb.logstart == 2
    assert sb.inodestart == 2 + 30
    assert sb.bmapstart == sb.inodestart + builder.ninodeblocks
    assert sb.nblocks + builder.nmeta == sb.size
    assert "total 1000" in builder.summary


def test_root_directory():
    builder = ImageBuilder()
    assert _root_entries(builder) == [DirEntry(ROOTINO, "."), DirEntry(ROOTINO, "..")]
    root = builder.read_inode(ROOTINO)
    assert root.type == FileType.DIR
    assert root.nlink == 1


def test_add_file_strips_underscore():
    builder = ImageBuilder()
    inum = builder.add_file("_cat", b"hello")
    assert _root_entries(builder)[-1] == DirEntry(inum, "cat")
    assert _read_file(builder, inum) == b"hello"
    assert builder.read_inode(inum).type == FileType.FILE


def test_large_file_uses_indirect_block():
    builder = ImageBuilder()
    data = bytes(range(256)) * ((NDIRECT + 3) * 2)
    inum = builder.add_file("big", data)
    assert _read_file(builder, inum) == data
    assert builder.read_inode(inum).addrs[NDIRECT] >= builder.nmeta


def test_largest_file_fits():
    builder = ImageBuilder()
    data = b"z" * (MAXFILE * BSIZE)
    inum = builder.add_file("max", data)
    assert _read_file(builder, inum) == data


def test_file_too_large():
    builder = ImageBuilder()
    with pytest.raises(ValueError):
        builder.add_file("huge", bytes(MAXFILE * BSIZE + 1))


def test_slash_in_name_rejected():
    builder = ImageBuilder()
    with pytest.raises(ValueError):
        builder.add_file("dir/file", b"x")


def test_out_of_inodes():
    builder = ImageBuilder(ninodes=3)
    builder.add_file("one", b"")
    with pytest.raises(ValueError):
        builder.add_file("two", b"")


def test_out_of_blocks():
    builder = ImageBuilder(size=70, nlog=30, ninodes=200)
    free = builder.sb.size - builder.freeblock
    with pytest.raises(ValueError):
        builder.add_file("fill", bytes((free + 1) * BSIZE))


def test_image_too_small():
    with pytest.raises(ValueError):
        ImageBuilder(size=10, nlog=30, ninodes=200)


def test_sector_bounds():
    builder = ImageBuilder()
    with pytest.raises(ValueError):
        builder.read_sector(builder.sb.size)
    with pytest.raises(ValueError):
        builder.write_sector(5, b"short")


def test_finish_writes_bitmap_and_rounds_root():
    builder = ImageBuilder()
    builder.add_file("a", b"x" * 600)
    used = builder.freeblock
    image = builder.finish()
    sb = Superblock.unpack(image[BSIZE : 2 * BSIZE])
    bitmap = image[sb.bmapstart * BSIZE : (sb.bmapstart + 1) * BSIZE]

    def bit(i):
        return (bitmap[i // 8] >> (i % 8)) & 1

    assert all(bit(i) == 1 for i in range(used))
    assert bit(used) == 0
    root = _image_inode(image, sb, ROOTINO)
    assert root.size % BSIZE == 0
    assert root.size >= 3 * DIRENT_SIZE


def test_finish_twice_rejected():
    builder = ImageBuilder()
    builder.finish()
    with pytest.raises(ValueError):
        builder.finish()


def test_build_image_contains_files():
    image = build_image([("_ls", b"listing"), ("README", b"read me")])
    sb = Superblock.unpack(image[BSIZE : 2 * BSIZE])
    assert len(image) == sb.size * BSIZE
    inode = _image_inode(image, sb, 3)
    assert inode.size == len(b"read me")
    start = inode.addrs[0] * BSIZE
    assert image[start : start + inode.size] == b"read me"


@settings(max_examples=25, deadline=None)
@given(st.lists(st.binary(max_size=1500), max_size=6))
def test_appended_chunks_read_back(chunks):
    builder = ImageBuilder()
    inum = builder.alloc_inode(FileType.FILE)
    for chunk in chunks:
        builder.append(inum, chunk)
    assert _read_file(builder, inum) == b"".join(chunks)


def test_main_writes_image(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "_cat").write_bytes(b"meow")
    assert main(["fs.img", "_cat"]) == 0
    image = (tmp_path / "fs.img").read_bytes()
    sb = Superblock.unpack(image[BSIZE : 2 * BSIZE])
    assert len(image) == sb.size * BSIZE
    out = capsys.readouterr().out
    assert out.startswith("nmeta ")
    assert f"balloc: write bitmap block at sector {sb.bmapstart}" in out


def test_main_usage(capsys):
    assert main([]) == 1
    assert "Usage: mkfs fs.img files..." in capsys.readouterr().err


def test_main_missing_input(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert main(["fs.img", "absent"]) == 1
    assert "absent" in capsys.readouterr().err