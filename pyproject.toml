[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "xvfs"
version = "0.1.0"
description = "A small Unix-style file system: image builder, in-memory disk, buffer cache, write-ahead log, inodes, directories, open files, pipes and a few classic tools"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "filesystem",
    "inode",
    "journal",
    "buffer-cache",
    "disk-image",
    "mkfs",
    "grep",
    "teaching",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Education",
]

[project.optional-dependencies]
test = [
    "pytest",
    "hypothesis",
]

[project.scripts]
xvfs-mkfs = "xvfs.mkfs:main"
xvfs-grep = "xvfs.grep:main"

[tool.hatch.build.targets.wheel]
packages = ["xvfs"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
