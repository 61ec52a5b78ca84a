"""Boot loader placed in the first two sectors of a virtual executable disk."""

from __future__ import annotations

SECTOR_SIZE = 128

BOOT_LOADER = bytes.fromhex(
    "46 02 00 07 77 E4 A9 00 8D E0 02 8D E1 02 8D FF"
    "06 8D 00 07 A9 01 8D FD 06 A9 71 8D FE 06 20 B1"
    "07 30 59 85 44 20 B1 07 30 52 85 45 C9 FF B0 EE"
    "20 B1 07 30 47 85 46 20 B1 07 30 40 85 47 AD E0"
    "02 0D E1 02 D0 0A A5 44 8D E0 02 A5 45 8D E1 02"
    "A9 D0 8D E2 02 A9 07 8D E3 02 20 B1 07 30 1D A0"
    "00 91 44 A4 44 A5 45 E6 44 D0 02 E6 45 C4 46 E5"
    "47 90 E7 A9 07 48 A9 1D 48 6C E2 02 A9 03 8D 0F"
    "D2 6C E0 02 AD FD 06 AC FE 06 D0 04 C9 00 F0 1E"
    "8C 0A 03 8D 0B 03 A9 00 8D FD 06 8D FE 06 8E 02"
    "03 A9 06 8D 05 03 A9 80 8D 04 03 4C 53 E4 A0 88"
    "60 AC 00 07 CC FF 06 90 0E A2 52 20 84 07 30 10"
    "AC FF 06 F0 E9 A0 00 B9 80 06 C8 8C 00 07 A0 01"
    "60 00 00 00 00 00 00 00 00 00 00 00 00 00 00 00"
    "00 00 00 00 00 00 00 00 00 00 00 00 00 00 00 00"
    "00 00 00 00 00 00 00 00 00 00 00 00 00 00 00 00"
)

# Offsets of the page bytes that move with the loader's load address.
RELOCATION_OFFSETS = (
    0x03, 0x10, 0x13, 0x18, 0x1D, 0x20, 0x27, 0x32, 0x39, 0x56, 0x5C, 0x74,
    0x86, 0x89, 0x9A, 0x9D, 0xA2, 0xB3, 0xB6, 0xBD, 0xC2, 0xC9, 0xCD,
)

# Page deltas selectable by the executable loader option, in option order.
RELOCATION_DELTAS = (-2, -1, 0, 1, 2, 3)


def relocated_boot_sector(sector_number: int, delta: int) -> bytes:
    """Return boot sector 1 or 2 with its page bytes shifted by ``delta``."""
    if sector_number not in (1, 2):
        raise ValueError(f"boot sector number must be 1 or 2, not {sector_number}")
    start = SECTOR_SIZE * (sector_number - 1)
    sector = bytearray(BOOT_LOADER[start:start + SECTOR_SIZE])
    if delta:
        for location in RELOCATION_OFFSETS:
            if start <= location < start + SECTOR_SIZE:
                sector[location - start] = (sector[location - start] + delta) & 0xFF
    return bytes(sector)