"""Integer to text conversion with padding and sign control."""

from __future__ import annotations

import enum

__all__ = ["NumFlag", "format_signed", "format_unsigned"]

_DIGITS = "0123456789ABCDEF"
_SIGNED_BUFFER = 65
_UNSIGNED_BUFFER = 33
_UINTMAX_MASK = (1 << 64) - 1


class NumFlag(enum.IntFlag):
    """Formatting flags."""

    NONE = 0
    ZEROPAD = 1 << 0
    SGNPLUS = 1 << 1


def _check(width: int, base: int, buffer_size: int, limit: int | None) -> None:
    if not 2 <= base <= 16:
        raise ValueError(f"base must be between 2 and 16, got {base}")
    if width >= buffer_size:
        raise ValueError(f"field width {width} is too large")
    if limit is not None and limit < 2:
        raise ValueError(f"output limit must be at least 2, got {limit}")


def _digits(num: int, base: int) -> str:
    out = []
    while True:
        num, digit = divmod(num, base)
        out.append(_DIGITS[digit])
        if num == 0:
            break
    return "".join(reversed(out))


def _finish(body: str, flags: int, width: int, limit: int | None) -> str:
    # Padding is placed in front of the whole body, sign included.
    if width > len(body):
        pad = "0" if flags & NumFlag.ZEROPAD else " "
        body = pad * (width - len(body)) + body
    if limit is not None and len(body) >= limit - 1:
        keep = limit - 2
        body = body[len(body) - keep:] if keep > 0 else ""
    return body


def format_signed(num: int, flags: int, width: int, base: int,
                  limit: int | None = None) -> str:
    """Format a signed integer; ``limit`` is the size of the output buffer."""
    _check(width, base, _SIGNED_BUFFER, limit)
    body = _digits(abs(num), base)
    if num < 0:
        body = "-" + body
    elif flags & NumFlag.SGNPLUS:
        body = "+" + body
    return _finish(body, flags, width, limit)


def format_unsigned(num: int, flags: int, width: int, base: int,
                    limit: int | None = None) -> str:
    """Format an unsigned integer; negative values wrap to 64 bits."""
    _check(width, base, _UNSIGNED_BUFFER, limit)
    body = _digits(num & _UINTMAX_MASK, base)
    if flags & NumFlag.SGNPLUS:
        body = "+" + body
    return _finish(body, flags, width, limit)