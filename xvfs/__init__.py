"""A small Unix-style file system: image builder, in-memory disk, buffer cache,
write-ahead log, inodes and directories, open files and pipes, and a few tools."""

__version__ = "0.1.0"