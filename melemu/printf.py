"""Formatted output with a restricted printf-style format language."""

from __future__ import annotations

import enum
import operator
import sys
from typing import Any, Iterable

from .numfmt import NumFlag, format_signed, format_unsigned

__all__ = ["FormatError", "vformat", "cformat", "snformat", "cprintf"]

_NUMBER_BUFFER = 65


class FormatError(ValueError):
    """Raised for format strings or arguments that cannot be formatted."""


class _Size(enum.Enum):
    DEFAULT = enum.auto()
    SHORT = enum.auto()
    CHAR = enum.auto()
    LONG = enum.auto()
    LONGLONG = enum.auto()
    SIZE = enum.auto()
    PTRDIFF = enum.auto()
    INTMAX = enum.auto()


class _State(enum.Enum):
    PRINT = enum.auto()
    FSPEC = enum.auto()
    WIDTH = enum.auto()
    AWIDTH = enum.auto()
    LMOD = enum.auto()
    PRECISION = enum.auto()
    TYPE = enum.auto()


# Argument widths follow a 32-bit ABI: int, long, size_t and ptrdiff_t are 32 bits.
_SIGNED = {
    _Size.CHAR: (8, True),
    _Size.SHORT: (16, True),
    _Size.DEFAULT: (32, True),
    _Size.LONG: (32, True),
    _Size.LONGLONG: (64, True),
    _Size.INTMAX: (64, True),
    _Size.SIZE: (32, False),
    _Size.PTRDIFF: (32, True),
}

_UNSIGNED = {
    _Size.CHAR: 8,
    _Size.SHORT: 16,
    _Size.DEFAULT: 32,
    _Size.LONG: 32,
    _Size.LONGLONG: 64,
    _Size.INTMAX: 64,
    _Size.SIZE: 32,
}

_BASES = {"o": 8, "u": 10, "x": 16, "X": 16, "p": 16}


def _wrap(value: int, bits: int, signed: bool) -> int:
    value &= (1 << bits) - 1
    if signed and value >> (bits - 1):
        value -= 1 << bits
    return value


class _Formatter:
    def __init__(self, args: Iterable[Any]) -> None:
        self._args = iter(args)
        self._out: list[str] = []
        self._state = _State.PRINT
        self._flags = NumFlag.NONE
        self._width = 0
        self._size = _Size.DEFAULT

    def run(self, fmt: str) -> str:
        for ch in fmt:
            self._step(ch)
        return "".join(self._out)

    def _next_arg(self) -> Any:
        try:
            return next(self._args)
        except StopIteration:
            raise FormatError("too few arguments for format") from None

    def _next_int(self) -> int:
        value = self._next_arg()
        try:
            return operator.index(value)
        except TypeError:
            raise FormatError(
                f"expected an integer argument, got {type(value).__name__}"
            ) from None

    def _step(self, ch: str) -> None:
        state = self._state
        if state is _State.PRINT:
            if ch == "%":
                self._state = _State.FSPEC
                self._width = 0
                self._flags = NumFlag.NONE
                self._size = _Size.DEFAULT
            else:
                self._out.append(ch)
            return
        if state is _State.PRECISION:
            if ch.isdigit() and ch.isascii():
                return
            if ch == "*":
                self._next_int()
                self._state = _State.LMOD
                return
            raise FormatError(f"invalid character {ch!r} in precision")
        if state is _State.FSPEC:
            if ch in "- #":
                return
            if ch == "+":
                self._flags |= NumFlag.SGNPLUS
                return
            if ch == "0":
                self._flags |= NumFlag.ZEROPAD
                return
            state = _State.WIDTH
        if state is _State.WIDTH:
            self._state = _State.WIDTH
            if "0" <= ch <= "9":
                self._width = self._width * 10 + int(ch)
                return
            if ch == "*":
                self._width = _wrap(self._next_int(), 32, True)
                self._state = _State.AWIDTH
                return
            state = _State.AWIDTH
        if state is _State.AWIDTH:
            self._state = _State.AWIDTH
            if ch == ".":
                self._state = _State.PRECISION
                return
            state = _State.LMOD
        if state is _State.LMOD:
            self._state = _State.LMOD
            if self._length_modifier(ch):
                return
            if ch == "L":
                raise FormatError("long double conversions are not supported")
        self._state = _State.TYPE
        self._convert(ch)
        self._state = _State.PRINT

    def _length_modifier(self, ch: str) -> bool:
        if ch == "h":
            if self._size is not _Size.SHORT:
                self._size = _Size.SHORT
            else:
                self._size = _Size.CHAR
                self._state = _State.TYPE
            return True
        if ch == "l":
            if self._size is not _Size.LONG:
                self._size = _Size.LONG
            else:
                self._size = _Size.LONGLONG
                self._state = _State.TYPE
            return True
        single = {"j": _Size.INTMAX, "z": _Size.SIZE, "t": _Size.PTRDIFF}
        if ch in single:
            self._size = single[ch]
            self._state = _State.TYPE
            return True
        return False

    def _unsigned_value(self) -> int:
        value = self._next_int()
        if self._size is _Size.PTRDIFF:
            return _wrap(_wrap(value, 32, True), 64, False)
        return _wrap(value, _UNSIGNED[self._size], False)

    def _require_default_size(self, ch: str) -> None:
        if self._size is not _Size.DEFAULT:
            raise FormatError(f"length modifier not allowed with %{ch}")

    def _convert(self, ch: str) -> None:
        try:
            if ch in "id":
                bits, signed = _SIGNED[self._size]
                value = _wrap(self._next_int(), bits, signed)
                self._out.append(format_signed(
                    value, self._flags, self._width, 10, _NUMBER_BUFFER))
            elif ch in _BASES:
                if ch == "p":
                    value = _wrap(self._next_int(), 32, False)
                else:
                    value = self._unsigned_value()
                self._out.append(format_unsigned(
                    value, self._flags, self._width, _BASES[ch], _NUMBER_BUFFER))
            elif ch == "c":
                self._require_default_size(ch)
                value = self._next_arg()
                if isinstance(value, str) and len(value) == 1:
                    self._out.append(value)
                else:
                    self._out.append(chr(self._as_int(value) & 0xFF))
            elif ch == "s":
                self._require_default_size(ch)
                value = self._next_arg()
                if not isinstance(value, str):
                    raise FormatError(
                        f"%s expects a string, got {type(value).__name__}")
                self._out.append(value)
            elif ch == "n":
                raise FormatError("unsafe %n specifier used")
            elif ch == "%":
                self._out.append("%")
            else:
                raise FormatError(f"unknown conversion {ch!r}")
        except FormatError:
            raise
        except ValueError as exc:
            raise FormatError(str(exc)) from exc

    @staticmethod
    def _as_int(value: Any) -> int:
        try:
            return operator.index(value)
        except TypeError:
            raise FormatError(
                f"expected a character, got {type(value).__name__}") from None


def vformat(fmt: str, args: Iterable[Any]) -> str:
    """Format ``args`` according to ``fmt`` and return the full text."""
    return _Formatter(args).run(fmt)


def cformat(fmt: str, *args: Any) -> str:
    """Format the positional arguments according to ``fmt``."""
    return vformat(fmt, args)


def snformat(size: int, fmt: str, *args: Any) -> str:
    """Format into a buffer of ``size`` bytes, keeping at most ``size - 1`` characters."""
    if size < 1:
        raise ValueError(f"buffer size must be at least 1, got {size}")
    return vformat(fmt, args)[: size - 1]


def cprintf(fmt: str, *args: Any) -> int:
    """Write formatted text to standard error and return its length."""
    text = vformat(fmt, args)
    sys.stderr.write(text)
    sys.stderr.flush()
    return len(text)