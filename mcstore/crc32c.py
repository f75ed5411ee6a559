"""CRC-32C (Castagnoli) checksums, computed with slicing-by-8 tables."""

from __future__ import annotations

import struct
from functools import lru_cache

POLY = 0x82F63B78
"""The CRC-32C polynomial in reversed bit order."""

_MASK = 0xFFFFFFFF


def _check_crc(crc: int) -> int:
    if not 0 <= crc <= _MASK:
        raise ValueError(f"crc {crc} is not an unsigned 32-bit value")
    return crc


@lru_cache(maxsize=None)
def crc32c_tables() -> tuple[tuple[int, ...], ...]:
    """The eight 256-entry lookup tables used for eight bytes at a time."""
    first = []
    for n in range(256):
        crc = n
        for _ in range(8):
            crc = (crc >> 1) ^ POLY if crc & 1 else crc >> 1
        first.append(crc)
    tables = [first]
    for _ in range(1, 8):
        tables.append([first[c & 0xFF] ^ (c >> 8) for c in tables[-1]])
    return tuple(tuple(table) for table in tables)


def crc32c(data: bytes, crc: int = 0) -> int:
    """CRC-32C of ``data``, continuing from a previous result ``crc``."""
    _check_crc(crc)
    buf = bytes(data)
    t0, t1, t2, t3, t4, t5, t6, t7 = crc32c_tables()
    value = crc ^ _MASK
    whole = len(buf) - len(buf) % 8
    for (word,) in struct.iter_unpack("<Q", buf[:whole]):
        value ^= word
        value = (
            t7[value & 0xFF]
            ^ t6[(value >> 8) & 0xFF]
            ^ t5[(value >> 16) & 0xFF]
            ^ t4[(value >> 24) & 0xFF]
            ^ t3[(value >> 32) & 0xFF]
            ^ t2[(value >> 40) & 0xFF]
            ^ t1[(value >> 48) & 0xFF]
            ^ t0[value >> 56]
        )
    for byte in buf[whole:]:
        value = t0[(value ^ byte) & 0xFF] ^ (value >> 8)
    return value ^ _MASK


def _gf2_times(matrix: list[int] | tuple[int, ...], vector: int) -> int:
    total = 0
    for row in matrix:
        if not vector:
            break
        if vector & 1:
            total ^= row
        vector >>= 1
    return total


def _gf2_square(matrix: list[int]) -> list[int]:
    return [_gf2_times(matrix, row) for row in matrix]


@lru_cache(maxsize=None)
def zeros_operator(length: int) -> tuple[int, ...]:
    """GF(2) matrix that advances a raw CRC register over ``length`` zero bytes.

    ``length`` should be a power of two; otherwise the operator is the one for
    the largest power of two below it. A length of 0 acts as 1.
    """
    if length < 0:
        raise ValueError("length must not be negative")
    odd = [POLY] + [1 << n for n in range(31)]
    even = _gf2_square(odd)
    odd = _gf2_square(even)
    while True:
        even = _gf2_square(odd)
        length >>= 1
        if length == 0:
            return tuple(even)
        odd = _gf2_square(even)
        length >>= 1
        if length == 0:
            return tuple(odd)


@lru_cache(maxsize=None)
def _zeros_tables(length: int) -> tuple[tuple[int, ...], ...]:
    op = zeros_operator(length)
    return tuple(
        tuple(_gf2_times(op, n << shift) for n in range(256))
        for shift in (0, 8, 16, 24)
    )


def shift_zeros(crc: int, length: int) -> int:
    """Apply the zeros operator for ``length`` bytes to a raw CRC register."""
    _check_crc(crc)
    z0, z1, z2, z3 = _zeros_tables(length)
    return (
        z0[crc & 0xFF]
        ^ z1[(crc >> 8) & 0xFF]
        ^ z2[(crc >> 16) & 0xFF]
        ^ z3[crc >> 24]
    )