"""Integer to decimal text conversion for fixed-width integer types."""

from __future__ import annotations

import operator

_U32_MAX = (1 << 32) - 1
_I32_MIN, _I32_MAX = -(1 << 31), (1 << 31) - 1
_U64_MAX = (1 << 64) - 1
_I64_MIN, _I64_MAX = -(1 << 63), (1 << 63) - 1


def _format(value: int, low: int, high: int, kind: str) -> str:
    number = operator.index(value)
    if not low <= number <= high:
        raise ValueError(f"{number} does not fit in {kind}")
    return str(number)


def itoa_u32(value: int) -> str:
    """Decimal text of an unsigned 32-bit integer."""
    return _format(value, 0, _U32_MAX, "an unsigned 32-bit integer")


def itoa_32(value: int) -> str:
    """Decimal text of a signed 32-bit integer."""
    return _format(value, _I32_MIN, _I32_MAX, "a signed 32-bit integer")


def itoa_u64(value: int) -> str:
    """Decimal text of an unsigned 64-bit integer."""
    return _format(value, 0, _U64_MAX, "an unsigned 64-bit integer")


def itoa_64(value: int) -> str:
    """Decimal text of a signed 64-bit integer."""
    return _format(value, _I64_MIN, _I64_MAX, "a signed 64-bit integer")