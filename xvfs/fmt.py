"""Minimal printf-style formatting: %d, %x, %p, %s, %c and %%."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

UPPER_DIGITS = "0123456789ABCDEF"
LOWER_DIGITS = "0123456789abcdef"

_MASK = 0xFFFFFFFF


def format_int(value: int, base: int, signed: bool, digits: str = UPPER_DIGITS) -> str:
    """Format a 32-bit integer in ``base``; unsigned unless ``signed``."""
    if not 2 <= base <= len(digits):
        raise ValueError(f"base must be between 2 and {len(digits)}")
    x = value & _MASK
    negative = signed and bool(x & 0x80000000)
    if negative:
        x = -x & _MASK
    out = []
    while True:
        x, rem = divmod(x, base)
        out.append(digits[rem])
        if x == 0:
            break
    if negative:
        out.append("-")
    return "".join(reversed(out))


def _take(args: Iterator[Any]) -> Any:
    try:
        return next(args)
    except StopIteration:
        raise TypeError("not enough arguments for format string") from None


def format_message(fmt: str, *args: Any) -> str:
    """Format ``fmt`` with ``args``; unknown conversions are kept verbatim."""
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
            out.append(format_int(_take(pending), 10, True))
        elif spec in "xp":
            out.append(format_int(_take(pending), 16, False))
        elif spec == "s":
            s = _take(pending)
            out.append("(null)" if s is None else str(s))
        elif spec == "c":
            ch = _take(pending)
            out.append(ch if isinstance(ch, str) else chr(ch & 0xFF))
        elif spec == "%":
            out.append("%")
        else:
            out.append("%" + spec)
    return "".join(out)