"""Disk images served to the computer: ATR images and executables as virtual disks."""

from __future__ import annotations

import enum
import os
from pathlib import Path
from typing import BinaryIO

from .boot_loader import relocated_boot_sector
from .mounts import AtrHeader

ATR_MAGIC = 0x0296
XEX_MAGIC = 0xFFFF
ATX_MAGIC = 0x58385441

SECTOR_SIZE = 128
XEX_FIRST_FILE_SECTOR = 0x171
XEX_BYTES_PER_SECTOR = 125
VTOC_SECTOR = 0x168
DIRECTORY_SECTOR = 0x169
MEDIUM_DENSITY_SIZE = 0x20800

PERCOM_TABLE = bytes([
    0x28, 0x03, 0x00, 0x12, 0x00, 0x00, 0x00, 0x80, 0x80, 0x16, 0x80, 0x00, 0,
    0x28, 0x03, 0x00, 0x1A, 0x00, 0x04, 0x00, 0x80, 0x80, 0x20, 0x80, 0x00, 0,
    0x28, 0x03, 0x00, 0x12, 0x00, 0x04, 0x01, 0x00, 0xE8, 0x2C, 0x00, 0x01, 0,
    0x28, 0x03, 0x00, 0x12, 0x01, 0x04, 0x01, 0x00, 0xE8, 0x59, 0x00, 0x01, 0,
])
_PERCOM_ENTRY = 13
_PERCOM_COUNT = 4


def sio_checksum(data: bytes) -> int:
    """Return the SIO checksum: byte sum with end-around carry."""
    cksum = 0
    for byte in data:
        total = cksum + byte
        cksum = (1 if total > 0xFF else 0) + (total & 0xFF)
    return cksum


class DiskType(enum.IntEnum):
    """Kind of disk image."""

    ATR = 1
    XEX = 2
    ATX = 3


class UnsupportedImageError(ValueError):
    """The file is not a disk image this device can serve."""


class SectorError(Exception):
    """The drive refuses the command (answered with NAK)."""


def _percom_entry(index: int) -> bytes:
    start = index * _PERCOM_ENTRY
    return PERCOM_TABLE[start:start + _PERCOM_ENTRY]


def _display_name(name: str) -> str:
    stem_len = max(len(name) - 4, 0)
    stem = name[:stem_len][:8].ljust(8)
    if stem_len > 8:
        stem = stem[:7] + "~"
    return stem + name[stem_len:]


class DiskImage:
    """An open disk image with the drive state kept in its header's temp fields."""

    def __init__(self, path: Path, file: BinaryIO, disk_type: DiskType, header: AtrHeader,
                 size: int, xex_delta: int = 0) -> None:
        self.path = path
        self.file = file
        self.disk_type = disk_type
        self.header = header
        self.size = size
        self.xex_delta = xex_delta
        self.display_name = _display_name(path.name)

    @classmethod
    def open(cls, path: str | os.PathLike[str], allow_write: bool = True,
             xex_delta: int = 0) -> DiskImage:
        """Open an ATR or executable file as a disk."""
        path = Path(path)
        with path.open("rb") as probe:
            magic = probe.read(4)
            if len(magic) != 4:
                raise UnsupportedImageError(f"{path} is too short to be a disk image")
            word = int.from_bytes(magic[:2], "little")
            if word == ATR_MAGIC:
                raw = magic + probe.read(AtrHeader.SIZE - 4)
                if len(raw) != AtrHeader.SIZE:
                    raise UnsupportedImageError(f"{path} has a truncated ATR header")
                header = AtrHeader.parse(raw)
                size = (header.pars | ((header.pars_high << 16) & 0xFF0000)) << 4
                header.temp2 = 0xFF
                if not allow_write or not os.access(path, os.W_OK):
                    header.flags |= 0x1
                header.temp3 = cls._locate_percom(header)
                disk_type = DiskType.ATR
            elif word == XEX_MAGIC:
                file_size = path.stat().st_size
                header = AtrHeader()
                header.pars = ((file_size + 124) // XEX_BYTES_PER_SECTOR) & 0xFFFF
                header.pars_high = file_size % XEX_BYTES_PER_SECTOR or XEX_BYTES_PER_SECTOR
                size = (header.pars + 3 + 0x170) * SECTOR_SIZE
                header.sec_size = SECTOR_SIZE
                header.flags = 0x1
                header.temp2 = 0xFF
                header.temp3 = 0x80
                disk_type = DiskType.XEX
            elif int.from_bytes(magic, "little") == ATX_MAGIC:
                raise UnsupportedImageError("ATX images are not supported")
            else:
                raise UnsupportedImageError(f"{path} is not a disk image")
        header.temp4 = disk_type
        mode = "rb" if header.flags & 0x1 else "r+b"
        return cls(path, path.open(mode), disk_type, header, size, xex_delta)

    @staticmethod
    def _locate_percom(header: AtrHeader) -> int:
        key = header.to_bytes()[2:7]
        for index in range(_PERCOM_COUNT):
            if _percom_entry(index)[8:13] == key:
                return index
        return 0x80

    @property
    def read_only(self) -> bool:
        return bool(self.header.flags & 0x1)

    def __enter__(self) -> DiskImage:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        """Close the image file."""
        self.file.close()

    def status(self) -> bytes:
        """Return the four drive status bytes."""
        h = self.header
        h.temp1 = 0
        first = h.temp1 | 0x10
        if self.read_only:
            first |= 0x08
        if h.sec_size == 256:
            first |= 0x20
            if h.temp3 & 0x01:
                first |= 0x40
        elif self.size == MEDIUM_DENSITY_SIZE:
            first |= 0x80
        return bytes([first, h.temp2, 0xE0, 0x00])

    def read_percom(self) -> bytes:
        """Return the 12-byte PERCOM block describing the disk geometry."""
        h = self.header
        h.temp1 = 0
        block = bytearray(12)
        if h.temp3 & 0x80:
            sec_size = h.sec_size
            sectors = 3 + (self.size - 384) // sec_size
            block[0:8] = bytes([1, 3, (sectors >> 8) & 0xFF, sectors & 0xFF, 0, 4,
                                (sec_size >> 8) & 0xFF, sec_size & 0xFF])
        else:
            block[0:8] = _percom_entry(h.temp3 & 0x3)[:8]
        block[8] = 0xFF
        return bytes(block)

    def write_percom(self, data: bytes) -> None:
        """Accept a PERCOM block if it matches the disk's own geometry."""
        h = self.header
        h.temp1 = 0
        if self.read_only or h.temp3 & 0x80:
            raise SectorError("drive does not accept PERCOM writes")
        if len(data) != 12:
            raise ValueError("PERCOM block must be 12 bytes")
        entry = _percom_entry(h.temp3 & 0x3)
        if entry[0] != data[0] or entry[2:8] != data[2:8]:
            raise SectorError("PERCOM block does not match the disk format")
        h.temp3 |= 0x04

    def _locate_sector(self, sector_number: int, write: bool = False) -> tuple[int, int]:
        h = self.header
        if write and self.read_only:
            h.temp2 &= 0xBF
            raise SectorError("disk is write protected")
        index = sector_number - 1
        if index < 3:
            offset, length = index << 7, SECTOR_SIZE
        else:
            length = h.sec_size
            offset = 384 + (index - 3) * length
        if sector_number <= 0 or offset + length > self.size:
            h.temp2 &= 0xEF
            raise SectorError(f"sector {sector_number} out of range")
        return offset, length

    def _read_at(self, offset: int, length: int) -> bytes:
        self.file.seek(offset)
        data = self.file.read(length)
        if len(data) != length:
            raise OSError(f"short read at offset {offset}")
        return data

    def read_sector(self, sector_number: int) -> bytes:
        """Return the contents of a sector."""
        h = self.header
        h.temp1 = 0
        offset, length = self._locate_sector(sector_number)
        if self.disk_type is DiskType.ATR:
            try:
                data = self._read_at(AtrHeader.SIZE + offset, length)
            except OSError:
                h.temp2 &= 0xEF
                raise
            h.temp2 = 0xFF
            return data
        return self._read_xex_sector(sector_number)

    def _read_xex_sector(self, sector_number: int) -> bytes:
        h = self.header
        sector = bytearray(SECTOR_SIZE)
        if sector_number >= XEX_FIRST_FILE_SECTOR:
            index = sector_number - XEX_FIRST_FILE_SECTOR
            if index == h.pars - 1:
                length = h.pars_high
            else:
                following = sector_number + 1
                sector[125] = (following >> 8) & 0xFF
                sector[126] = following & 0xFF
                length = XEX_BYTES_PER_SECTOR
            sector[127] = length
            try:
                data = self._read_at(index * XEX_BYTES_PER_SECTOR, length)
            except OSError:
                h.temp2 &= 0xEF
                raise
            sector[:length] = data
            h.temp2 = 0xFF
        elif sector_number <= 2:
            sector[:] = relocated_boot_sector(sector_number, self.xex_delta)
        elif sector_number == VTOC_SECTOR:
            total = self.size >> 7
            vtoc = total >> 10
            rem = total - (vtoc << 10)
            if rem > 943:
                vtoc += 2
            elif rem:
                vtoc += 1
            if vtoc % 2 == 0:
                vtoc += 1
            total = (total - (vtoc + 12)) & 0xFFFFFFFF
            sector[0] = ((vtoc + 3) // 2) & 0xFF
            sector[1] = total & 0xFF
            sector[2] = (total >> 8) & 0xFF
        elif sector_number == DIRECTORY_SECTOR:
            file_sectors = h.pars
            sector[0] = 0x46 if file_sectors > 0x28F else 0x42
            sector[1] = file_sectors & 0xFF
            sector[2] = (file_sectors >> 8) & 0xFF
            sector[3] = 0x71
            sector[4] = 0x01
            sector[5:13] = b" " * 8
            name = self.display_name
            position = 0
            i = 0
            while i < 11 and position < len(name):
                c = ord(name[position])
                if c == ord("."):
                    i = 7
                else:
                    if c == ord("a") - 1 or c > ord("z"):
                        c = ord("@")
                    sector[5 + i] = c & 0xFF
                position += 1
                i += 1
        return bytes(sector)

    def write_sector(self, sector_number: int, data: bytes, verify: bool = False) -> None:
        """Write a sector, optionally reading it back to verify."""
        h = self.header
        h.temp1 = 0
        if self.disk_type is not DiskType.ATR:
            raise SectorError("this disk cannot be written")
        offset, length = self._locate_sector(sector_number, write=True)
        if len(data) != length:
            raise ValueError(f"sector {sector_number} holds {length} bytes, got {len(data)}")
        position = AtrHeader.SIZE + offset
        try:
            self.file.seek(position)
            self.file.write(data)
            self.file.flush()
        except OSError:
            h.temp1 |= 0x4
            raise
        if verify and self._read_at(position, length) != bytes(data):
            h.temp1 |= 0x4
            raise OSError(f"verification of sector {sector_number} failed")

    def format(self, command_id: int) -> bytes:
        """Clear the disk; ``command_id`` is '!' (single/PERCOM) or '"' (enhanced)."""
        h = self.header
        h.temp1 = 0
        if isinstance(command_id, str):
            command_id = ord(command_id)
        if self.disk_type is not DiskType.ATR:
            raise SectorError("this disk cannot be formatted")
        kind = command_id - 0x21
        if self.read_only or (kind != (h.temp3 & 0x3) and not h.temp3 & 0x4):
            raise SectorError("format refused")
        self.file.seek(AtrHeader.SIZE + kind * SECTOR_SIZE)
        self.file.write(bytes(SECTOR_SIZE * (self.size >> 7)))
        self.file.flush()
        result = bytearray(h.sec_size)
        result[0:2] = b"\xff\xff"
        return bytes(result)