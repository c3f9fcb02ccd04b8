# xvfs

`xvfs` is a compact Unix-style file system written in plain Python, with no
runtime dependencies. A disk is laid out as

    [ boot block | superblock | log | inode blocks | free bitmap | data blocks ]

with 512-byte blocks, little-endian integers, 12 direct block addresses and
one indirect block per inode, and 14-byte directory entry names.

## Modules

- `xvfs.layout`: the on-disk structures `Superblock`, `DiskInode` and
  `DirEntry`, each with `pack()` and `unpack()`; the `FileType` enum
  (`FREE`, `DIR`, `FILE`, `DEVICE`); and `iblock(inum, sb)` and
  `bblock(block, sb)`, which give the block holding an inode and the bitmap
  block holding a block's bit.
- `xvfs.mkfs`: `ImageBuilder` and `build_image(files, size, nlog, ninodes)`,
  which create an image holding a root directory and the files you add.
  The defaults are 1000 blocks, 30 log blocks and 200 inodes.
- `xvfs.disk`: `MemoryDisk`, a disk image held in memory that serves one
  device number (1 by default). `image()` returns its bytes.
- `xvfs.bcache`: `BufferCache`, a fixed set of buffers (30 by default)
  recycled in least-recently-used order, with `read`, `write`, `release` and
  the `block(dev, blockno)` context manager.
- `xvfs.journal`: `Log`, a redo log. Opening it recovers any committed
  transaction found on disk. `transaction()` wraps a group of updates, and
  the last operation to end commits them.
- `xvfs.filesystem`: `FileSystem`, which provides the inode cache, block and
  inode allocation, `read` and `write`, `dir_lookup` and `dir_link`, and
  path lookup with `namei` and `nameiparent`. Device inodes are served by
  objects with `read(n)` and `write(data)` methods, passed in `devices` and
  keyed by major number.
- `xvfs.files`: `FileTable`, `File`, `FileKind` and `Pipe`. These give open
  files with offsets and reference counts, and a bounded pipe of 512 bytes.
  Writes to an inode are split into chunks, each in its own log transaction.
- `xvfs.console`: `Console`, a line-editing input buffer. `interrupt()`
  takes typed characters and handles Control-U (kill line), Control-H and
  DEL (backspace), Control-D (end of input) and Control-P (which calls
  `on_procdump` if it is set). `read()` waits for a complete line. `write()`
  and `printf()` send text to an output stream. `printf` understands
  `%d %x %p %s %%` and prints hex in lower case.
- `xvfs.keyboard`: `KeyboardDecoder`, which turns PC scan codes into
  character codes and tracks shift, control, alt and caps, num and scroll
  lock.
- `xvfs.grep`: `match(re, text)`, a matcher for `^`, `.`, `*` and `$`, and
  `grep_lines(pattern, data)`.
- `xvfs.fmt`: `format_int` and `format_message`, a formatter for
  `%d %x %p %s %c %%` that prints hex in upper case.
- `xvfs.tools`: `echo(args)`, `fmtname(path)`, `ls(fs, path, cwd)`, which
  returns a list of lines, and `cat(fs, paths, cwd)`, which returns bytes.

Errors are raised as exceptions from the module that detects them:
`DiskError`, `BufferCacheError`, `LogError`, `FileSystemError` and
`FileError`. `ls` and `cat` raise `FileNotFoundError` for a missing path.

## Installation

    pip install .

To run the test suite:

    pip install ".[test]"
    pytest

## Command-line tools

`xvfs-mkfs` builds a disk image from host files. The first argument is the
image to create. Each further argument is a file in the current directory
that is copied into the root directory. A leading `_` is dropped from its
name, and a name containing `/` is rejected.

    xvfs-mkfs fs.img README _cat _ls

`xvfs-grep` prints the lines that match a pattern. It reads standard input
when no files are given.

    xvfs-grep '^int' notes.txt
    cat notes.txt | xvfs-grep 'a.*b$'

## Using the library

```python
from xvfs.grep import match

match("^ab*c$", "abbbc")   # True
match("x.z", "--xyz--")    # True
```

```python
from xvfs.fmt import format_message

format_message("%s has %d entries (0x%x)\n", "root", 3, 255)
# 'root has 3 entries (0xFF)\n'
```

```python
from xvfs.keyboard import KeyboardDecoder

KeyboardDecoder().decode([0x23, 0x17])   # [104, 105], that is "h" and "i"
```

The storage layers stack in this order: `MemoryDisk` holds the bytes,
`BufferCache` caches blocks from it, `Log` groups block updates into
transactions, and `FileSystem` builds inodes and directories on top.

```python
from xvfs.bcache import BufferCache
from xvfs.disk import MemoryDisk
from xvfs.filesystem import FileSystem
from xvfs.journal import Log
from xvfs.layout import FileType, Superblock
from xvfs.mkfs import build_image
from xvfs.tools import cat, ls

disk = MemoryDisk(build_image([("README", b"hello\n")]))
cache = BufferCache(disk)
with cache.block(1, 1) as bp:
    sb = Superblock.unpack(bytes(bp.data))
fs = FileSystem(cache, Log(cache, 1, sb))

cat(fs, ["README"])        # b'hello\n'

# Create a file: every change goes inside a transaction.
with fs.log.transaction():
    ip = fs.alloc_inode(FileType.FILE)
    fs.lock(ip)
    ip.nlink = 1
    fs.update(ip)
    fs.write(ip, 0, b"new file\n")
    fs.unlock(ip)
    root = fs.namei("/")
    fs.lock(root)
    fs.dir_link(root, "notes", ip.inum)
    fs.unlock_put(root)
    fs.put(ip)

ls(fs, "/")                # one line per entry: name, type, inode, size
disk.image()               # the updated image as bytes
```

## What the package does not do

- It has no system-call layer. Creating, linking or removing files is done
  with the `FileSystem` methods, as shown above. There are no `open`,
  `mkdir` or `unlink` helpers.
- It does not mount images on the host or read and write image files
  itself. Load the bytes into `MemoryDisk` and save `image()` yourself.
- `echo`, `ls` and `cat` are library functions only. The only commands are
  `xvfs-mkfs` and `xvfs-grep`.
- There are no processes, scheduling or hardware devices. `Console` and
  `KeyboardDecoder` work on characters and scan codes that you pass in.