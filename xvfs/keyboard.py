"""PC keyboard scan-code decoding."""

from __future__ import annotations

from collections.abc import Iterable

NO = 0

SHIFT = 1 << 0
CTL = 1 << 1
ALT = 1 << 2

CAPSLOCK = 1 << 3
NUMLOCK = 1 << 4
SCROLLLOCK = 1 << 5

E0ESC = 1 << 6

KEY_HOME = 0xE0
KEY_END = 0xE1
KEY_UP = 0xE2
KEY_DN = 0xE3
KEY_LF = 0xE4
KEY_RT = 0xE5
KEY_PGUP = 0xE6
KEY_PGDN = 0xE7
KEY_INS = 0xE8
KEY_DEL = 0xE9


def _ctl(ch: str) -> int:
    """Code produced by Control and ``ch``."""
    return (ord(ch) - ord("@")) & 0xFF


def _seq(*parts: int | str | list[int]) -> list[int]:
    out: list[int] = []
    for part in parts:
        if isinstance(part, str):
            out.extend(map(ord, part))
        elif isinstance(part, list):
            out.extend(part)
        else:
            out.append(part)
    return out


_SPECIAL = {
    0xC8: KEY_UP,
    0xD0: KEY_DN,
    0xC9: KEY_PGUP,
    0xD1: KEY_PGDN,
    0xCB: KEY_LF,
    0xCD: KEY_RT,
    0x97: KEY_HOME,
    0xCF: KEY_END,
    0xD2: KEY_INS,
    0xD3: KEY_DEL,
}


def _table(head: list[int], kp_enter: int, kp_div: int) -> tuple[int, ...]:
    table = head + [NO] * (256 - len(head))
    for code, key in _SPECIAL.items():
        table[code] = key
    table[0x9C] = kp_enter
    table[0xB5] = kp_div
    return tuple(table)


def _sparse(entries: dict[int, int]) -> tuple[int, ...]:
    return tuple(entries.get(code, 0) for code in range(256))


_SHIFTCODE = _sparse({0x1D: CTL, 0x2A: SHIFT, 0x36: SHIFT, 0x38: ALT, 0x9D: CTL, 0xB8: ALT})
_TOGGLECODE = _sparse({0x3A: CAPSLOCK, 0x45: NUMLOCK, 0x46: SCROLLLOCK})

_KEYPAD = _seq([NO] * 13, "789-456+1230.", [NO] * 4)

_NORMALMAP = _table(
    _seq(
        NO, 0x1B, "1234567890-=\b\t",
        "qwertyuiop[]\n", NO,
        "asdfghjkl;'`", NO,
        "\\zxcvbnm,./", NO,
        "*", NO, " ", [NO] * 6,
        _KEYPAD,
    ),
    ord("\n"),
    ord("/"),
)

_SHIFTMAP = _table(
    _seq(
        NO, 0o33, "!@#$%^&*()_+\b\t",
        "QWERTYUIOP{}\n", NO,
        'ASDFGHJKL:"~', NO,
        "|ZXCVBNM<>?", NO,
        "*", NO, " ", [NO] * 6,
        _KEYPAD,
    ),
    ord("\n"),
    ord("/"),
)

_CTLMAP = _table(
    _seq(
        [NO] * 16,
        [_ctl(c) for c in "QWERTYUIOP"], NO, NO, "\r", NO,
        [_ctl(c) for c in "ASDFGHJKL"], NO,
        NO, NO, NO, _ctl("\\"),
        [_ctl(c) for c in "ZXCVBNM"], NO, NO, _ctl("/"), NO, NO,
    ),
    ord("\r"),
    _ctl("/"),
)

_CHARCODE = (_NORMALMAP, _SHIFTMAP, _CTLMAP, _CTLMAP)


class KeyboardDecoder:
    """Turns a stream of scan codes into character codes, tracking modifiers."""

    def __init__(self) -> None:
        self._shift = 0

    @property
    def modifiers(self) -> int:
        return self._shift

    def feed(self, scancode: int) -> int:
        """Process one scan code; return its character code, or 0 for none."""
        if not 0 <= scancode <= 0xFF:
            raise ValueError(f"scan code {scancode} out of range")
        data = scancode
        if data == 0xE0:
            self._shift |= E0ESC
            return 0
        if data & 0x80:
            # Key released.
            if not self._shift & E0ESC:
                data &= 0x7F
            self._shift &= ~(_SHIFTCODE[data] | E0ESC)
            return 0
        if self._shift & E0ESC:
            # Previous code was an E0 escape.
            data |= 0x80
            self._shift &= ~E0ESC

        self._shift |= _SHIFTCODE[data]
        self._shift ^= _TOGGLECODE[data]
        c = _CHARCODE[self._shift & (CTL | SHIFT)][data]
        if self._shift & CAPSLOCK:
            if ord("a") <= c <= ord("z"):
                c += ord("A") - ord("a")
            elif ord("A") <= c <= ord("Z"):
                c += ord("a") - ord("A")
        return c

    def decode(self, scancodes: Iterable[int]) -> list[int]:
        """Feed every scan code and return the character codes produced."""
        return [c for c in map(self.feed, scancodes) if c]