"""Console: line-edited input from interrupts, output to a text stream."""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable, Iterable
from typing import Any, TextIO

from .fmt import LOWER_DIGITS, format_int

INPUT_BUF = 128
BACKSPACE = 0x100


def _ctl(ch: str) -> int:
    return ord(ch) - ord("@")


_CTRL_P = _ctl("P")
_CTRL_U = _ctl("U")
_CTRL_H = _ctl("H")
_CTRL_D = _ctl("D")
_DEL = 0x7F
_NL = ord("\n")


def _take(args: Iterable[Any]) -> Any:
    try:
        return next(args)  # type: ignore[call-overload]
    except StopIteration:
        raise TypeError("not enough arguments for format string") from None


class Console:
    """A console device: readers get edited lines, writers reach ``output``."""

    def __init__(self, output: TextIO | None = None) -> None:
        self._output = sys.stdout if output is None else output
        self._cond = threading.Condition()
        self._buf = [0] * INPUT_BUF
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index
        self.on_procdump: Callable[[], None] | None = None

    def _putc(self, c: int) -> None:
        if c == BACKSPACE:
            self._output.write("\b \b")
        else:
            self._output.write(chr(c & 0xFF))

    def interrupt(self, chars: str | Iterable[int]) -> None:
        """Handle typed characters: edit the current line and echo them."""
        codes = [ord(ch) for ch in chars] if isinstance(chars, str) else list(chars)
        procdump = False
        with self._cond:
            for c in codes:
                if c == _CTRL_P:
                    procdump = True
                elif c == _CTRL_U:
                    while self._e != self._w and self._buf[(self._e - 1) % INPUT_BUF] != _NL:
                        self._e -= 1
                        self._putc(BACKSPACE)
                elif c in (_CTRL_H, _DEL):
                    if self._e != self._w:
                        self._e -= 1
                        self._putc(BACKSPACE)
                elif c != 0 and self._e - self._r < INPUT_BUF:
                    if c == ord("\r"):
                        c = _NL
                    self._buf[self._e % INPUT_BUF] = c
                    self._e += 1
                    self._putc(c)
                    if c in (_NL, _CTRL_D) or self._e == self._r + INPUT_BUF:
                        self._w = self._e
                        self._cond.notify_all()
        if procdump and self.on_procdump is not None:
            self.on_procdump()

    def read(self, n: int) -> bytes:
        """Read up to ``n`` bytes of completed input, stopping after a newline.

        Waits until a line is available. Control-D marks end of input.
        """
        out = bytearray()
        with self._cond:
            while len(out) < n:
                while self._r == self._w:
                    self._cond.wait()
                c = self._buf[self._r % INPUT_BUF]
                self._r += 1
                if c == _CTRL_D:
                    if out:
                        # Keep ^D so that the next read returns nothing.
                        self._r -= 1
                    break
                out.append(c & 0xFF)
                if c == _NL:
                    break
        return bytes(out)

    def write(self, data: bytes) -> int:
        with self._cond:
            for byte in data:
                self._putc(byte)
        return len(data)

    def printf(self, fmt: str, *args: Any) -> str:
        """Print ``fmt`` understanding only %d, %x, %p, %s and %%; return the text."""
        pending = iter(args)
        chars = iter(fmt)
        out: list[str] = []
        for c in chars:
            if c != "%":
                out.append(c)
                continue
            spec = next(chars, None)
            if spec is None:
                break
            if spec == "d":
                out.append(format_int(_take(pending), 10, True, LOWER_DIGITS))
            elif spec in ("x", "p"):
                out.append(format_int(_take(pending), 16, False, LOWER_DIGITS))
            elif spec == "s":
                s = _take(pending)
                out.append("(null)" if s is None else str(s))
            elif spec == "%":
                out.append("%")
            else:
                out.append("%" + spec)
        text = "".join(out)
        with self._cond:
            self._output.write(text)
        return text