"""CRC7 and CRC16 checksums as used by SD cards in SPI mode."""

from __future__ import annotations

from collections.abc import Iterable

_CRC7_POLY = 0x12  # x^7 + x^3 + 1, aligned to the top of a byte
_CRC16_POLY = 0x1021  # CCITT / XMODEM


def _build_crc7_table() -> tuple[int, ...]:
    table = []
    for value in range(256):
        crc = value
        for _ in range(8):
            crc = ((crc << 1) ^ _CRC7_POLY) & 0xFF if crc & 0x80 else (crc << 1) & 0xFF
        table.append(crc >> 1)
    return tuple(table)


def _build_crc16_table() -> tuple[int, ...]:
    table = []
    for value in range(256):
        crc = value << 8
        for _ in range(8):
            crc = ((crc << 1) ^ _CRC16_POLY) if crc & 0x8000 else crc << 1
            crc &= 0xFFFF
        table.append(crc)
    return tuple(table)


CRC7_TABLE = _build_crc7_table()
CRC16_TABLE = _build_crc16_table()


def crc7(data: Iterable[int]) -> int:
    """Return the 7-bit CRC of ``data`` (not shifted, no end bit)."""
    crc = 0
    for byte in data:
        crc = CRC7_TABLE[((crc << 1) ^ byte) & 0xFF]
    return crc


def update_crc16(crc: int, data: Iterable[int]) -> int:
    """Continue a CRC16 computation from ``crc`` over ``data``."""
    crc &= 0xFFFF
    for byte in data:
        crc = ((crc << 8) & 0xFFFF) ^ CRC16_TABLE[((crc >> 8) ^ byte) & 0xFF]
    return crc


def crc16(data: Iterable[int]) -> int:
    """Return the CRC16-CCITT (initial value 0) of ``data``."""
    return update_crc16(0, data)