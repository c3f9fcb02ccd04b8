"""Simple grep supporting only the ^ . * $ operators."""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path


def _match_here(re: str, text: str) -> bool:
    """Search for ``re`` at the beginning of ``text``."""
    if not re:
        return True
    if len(re) > 1 and re[1] == "*":
        return _match_star(re[0], re[2:], text)
    if re == "$":
        return text == ""
    if text and (re[0] == "." or re[0] == text[0]):
        return _match_here(re[1:], text[1:])
    return False


def _match_star(c: str, re: str, text: str) -> bool:
    """Search for ``c*re`` at the beginning of ``text``."""
    while True:
        if _match_here(re, text):
            return True
        if not text or not (text[0] == c or c == "."):
            return False
        text = text[1:]


def match(re: str, text: str) -> bool:
    """Return whether ``re`` matches anywhere in ``text``."""
    if re.startswith("^"):
        return _match_here(re[1:], text)
    return any(_match_here(re, text[start:]) for start in range(len(text) + 1))


def grep_lines(pattern: str, data: str) -> Iterator[str]:
    """Yield the newline-terminated lines of ``data`` that match ``pattern``.

    A final line without a newline is not examined.
    """
    *complete, _tail = data.split("\n")
    for line in complete:
        if match(pattern, line.split("\0", 1)[0]):
            yield line + "\n"


def _emit(lines: Iterator[str]) -> None:
    sys.stdout.flush()
    out = sys.stdout.buffer
    out.write("".join(lines).encode("utf-8", "surrogateescape"))
    out.flush()


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("usage: grep pattern [file ...]", file=sys.stderr)
        return 1
    pattern, *paths = args

    if not paths:
        data = sys.stdin.buffer.read().decode("utf-8", "surrogateescape")
        _emit(grep_lines(pattern, data))
        return 0

    for path in paths:
        try:
            raw = Path(path).read_bytes()
        except OSError:
            print(f"grep: cannot open {path}")
            return 1
        _emit(grep_lines(pattern, raw.decode("utf-8", "surrogateescape")))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())