"""Drive slots, image file headers and cassette chunk navigation."""

from __future__ import annotations

import enum
import struct
import threading
import time
from dataclasses import dataclass, field
from typing import BinaryIO

SECTOR_BUFFER_SIZE = 2048
DRIVE_COUNT = 5

CAS_HEADER_FUJI = 0x494A5546
CAS_HEADER_BAUD = 0x64756162
CAS_HEADER_DATA = 0x61746164
CAS_HEADER_FSK = 0x206B7366
CAS_HEADER_PWMS = 0x736D7770
CAS_HEADER_PWMC = 0x636D7770
CAS_HEADER_PWMD = 0x646D7770
CAS_HEADER_PWML = 0x6C6D7770

WAV_RIFF = 0x46464952
WAV_WAVE = 0x45564157
WAV_FMT = 0x20746D66
WAV_DATA = 0x61746164
WAV_LIST = 0x5453494C

EMPTY_TEXT = "  <EMPTY>   "
STR_INT_FLASH = "Pico FLASH"
STR_SD_CARD = "SD/MMC Card"
_LABEL_PREFIXES = ("Int: ", "Ext: ")
_MAX_LABEL_LEN = 11


class FileType(enum.Enum):
    """Kind of image selected for mounting."""

    NONE = 0
    DISK = 1
    CASETTE = 2


def _require(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise ValueError(f"{what} needs {size} bytes, got {len(data)}")


@dataclass
class AtrHeader:
    """The 16-byte ATR header; the temp fields hold drive state at run time."""

    magic: int = 0
    pars: int = 0
    sec_size: int = 0
    pars_high: int = 0
    crc: int = 0
    temp1: int = 0
    temp2: int = 0
    temp3: int = 0
    temp4: int = 0
    flags: int = 0

    _FORMAT = struct.Struct("<HHHBIBBBBB")
    SIZE = _FORMAT.size

    @classmethod
    def parse(cls, data: bytes) -> AtrHeader:
        _require(data, cls.SIZE, "ATR header")
        return cls(*cls._FORMAT.unpack_from(data))

    def to_bytes(self) -> bytes:
        return self._FORMAT.pack(
            self.magic, self.pars, self.sec_size, self.pars_high, self.crc,
            self.temp1, self.temp2, self.temp3, self.temp4, self.flags,
        )


@dataclass
class CasHeader:
    """An 8-byte CAS chunk header."""

    signature: int = 0
    chunk_length: int = 0
    aux: int = 0

    _FORMAT = struct.Struct("<IHH")
    SIZE = _FORMAT.size

    @classmethod
    def parse(cls, data: bytes) -> CasHeader:
        _require(data, cls.SIZE, "CAS header")
        return cls(*cls._FORMAT.unpack_from(data))

    @property
    def aux_b(self) -> tuple[int, int]:
        return self.aux & 0xFF, (self.aux >> 8) & 0xFF


@dataclass
class WavHeader:
    """The canonical 44-byte RIFF/WAVE header."""

    chunk_id: int = 0
    chunk_size: int = 0
    format: int = 0
    subchunk1_id: int = 0
    subchunk1_size: int = 0
    audio_format: int = 0
    num_channels: int = 0
    sample_rate: int = 0
    byte_rate: int = 0
    block_align: int = 0
    bits_per_sample: int = 0
    subchunk2_id: int = 0
    subchunk2_size: int = 0

    _FORMAT = struct.Struct("<IIIIIHHIIHHII")
    SIZE = _FORMAT.size

    @classmethod
    def parse(cls, data: bytes) -> WavHeader:
        _require(data, cls.SIZE, "WAV header")
        return cls(*cls._FORMAT.unpack_from(data))

    def is_valid(self) -> bool:
        """Whether this describes plain PCM audio the tape player accepts."""
        return (
            self.chunk_id == WAV_RIFF
            and self.format == WAV_WAVE
            and self.subchunk1_id == WAV_FMT
            and self.subchunk1_size == 16
            and self.audio_format == 1
            and self.byte_rate == self.sample_rate * self.block_align
            and self.block_align == (self.bits_per_sample // 8) * self.num_channels
        )


class CasFormatError(ValueError):
    """A CAS file is truncated or holds an invalid chunk."""


@dataclass
class CasState:
    """Playback parameters gathered while walking the CAS chunks."""

    header: CasHeader = field(default_factory=CasHeader)
    pwm_bit_order: int = 0
    pwm_bit: int = 0
    pwm_sample_duration: int = 0
    cas_sample_duration: int = 0
    silence_duration: int = 0
    block_index: int = 0
    block_multiple: int = 1
    fsk_bit: int = 0
    block_turbo: bool = False


def _rounded_div(numerator: int, denominator: int) -> int:
    if denominator == 0:
        raise CasFormatError("zero rate in CAS chunk")
    return (numerator + denominator // 2) // denominator


def cas_read_forward(stream: BinaryIO, offset: int, state: CasState, base_clock: int) -> int:
    """Advance to the next playable chunk; return the offset of its payload."""
    stream.seek(offset)
    while True:
        data = stream.read(CasHeader.SIZE)
        if len(data) != CasHeader.SIZE:
            raise CasFormatError(f"truncated chunk header at offset {offset}")
        header = CasHeader.parse(data)
        state.header = header
        offset += CasHeader.SIZE
        state.block_index = 0
        aux = header.aux
        signature = header.signature
        if signature == CAS_HEADER_FUJI:
            offset += header.chunk_length
            stream.seek(offset)
        elif signature == CAS_HEADER_BAUD:
            if header.chunk_length:
                raise CasFormatError("baud chunk must be empty")
            state.cas_sample_duration = _rounded_div(base_clock, aux)
        elif signature == CAS_HEADER_DATA:
            state.block_turbo = False
            state.silence_duration = aux
            state.block_multiple = 1
            return offset
        elif signature == CAS_HEADER_FSK:
            state.block_turbo = False
            state.silence_duration = aux
            state.block_multiple = 2
            state.fsk_bit = 0
            return offset
        elif signature == CAS_HEADER_PWMS:
            if header.chunk_length != 2:
                raise CasFormatError("pwms chunk must hold two bytes")
            low = header.aux_b[0]
            state.pwm_bit_order = (low >> 2) & 0x1
            mode = low & 0x3
            if mode == 0b01:
                state.pwm_bit = 0
            elif mode == 0b10:
                state.pwm_bit = 1
            else:
                raise CasFormatError(f"invalid pwms pulse mode {mode}")
            raw = stream.read(2)
            if len(raw) != 2:
                raise CasFormatError("truncated pwms chunk")
            offset += 2
            state.pwm_sample_duration = _rounded_div(base_clock, int.from_bytes(raw, "little"))
        elif signature == CAS_HEADER_PWMC:
            state.block_turbo = True
            state.silence_duration = aux
            state.block_multiple = 3
            return offset
        elif signature == CAS_HEADER_PWMD:
            state.block_turbo = True
            state.block_multiple = 1
            return offset
        elif signature == CAS_HEADER_PWML:
            state.block_turbo = True
            state.silence_duration = aux
            state.block_multiple = 2
            state.fsk_bit = state.pwm_bit
            return offset


def format_volume_label(label: str | None, serial: int, is_sd: bool) -> str:
    """Return the display label of a volume.

    ``label`` is None when the label could not be read, and empty when the
    volume has none, in which case the serial number is shown instead.
    """
    prefix = _LABEL_PREFIXES[1 if is_sd else 0]
    if label is None:
        return prefix + (STR_SD_CARD if is_sd else STR_INT_FLASH)
    if not label:
        return prefix + f"{(serial >> 16) & 0xFFFF:04X}-{serial & 0xFFFF:04X}"
    shown = "".join("?" if ord(c) >= 0x80 else c for c in label[:_MAX_LABEL_LEN])
    return prefix + shown


@dataclass
class MountSlot:
    """One drive: its display line, image path and open file."""

    prefix: str
    label: str = ""
    path: str = ""
    mounted: bool = False
    status: int = 0
    read_only: bool = False
    file: BinaryIO | None = None

    def __post_init__(self) -> None:
        if not self.label:
            self.label = self.prefix + EMPTY_TEXT

    def close_file(self) -> None:
        if self.file is not None:
            self.file.close()
            self.file = None

    def clear(self) -> None:
        self.close_file()
        self.status = 0
        self.mounted = False
        self.path = ""
        self.label = self.prefix + EMPTY_TEXT


class Mounts:
    """The cassette slot (0) and disk drives D1: to D4: (1 to 4)."""

    def __init__(self) -> None:
        self.slots = [MountSlot("C:")] + [MountSlot(f"D{n}:") for n in range(1, DRIVE_COUNT)]
        self.lock = threading.RLock()
        self.last_drive = -1
        self.last_drive_access = 0
        self.last_access_error_drive = -1
        self.last_access_error = [False] * DRIVE_COUNT

    def _slot(self, drive_number: int) -> MountSlot:
        if not 0 <= drive_number < DRIVE_COUNT:
            raise ValueError(f"drive number must be 0..{DRIVE_COUNT - 1}, not {drive_number}")
        return self.slots[drive_number]

    def mount(self, drive_number: int, path: str, name: str, file_type: FileType) -> MountSlot:
        """Assign the image at ``path`` (shown as ``name``) to a drive."""
        slot = self._slot(drive_number)
        if len(name) < 4:
            raise ValueError(f"file name {name!r} has no three-letter extension")
        with self.lock:
            if slot.mounted:
                slot.close_file()
            read_only = False
            if drive_number:
                for number, other in enumerate(self.slots[1:], start=1):
                    if number == drive_number or other.path != path:
                        continue
                    if not other.mounted:
                        other.path = ""
                        other.label = other.prefix + EMPTY_TEXT
                    elif not other.read_only:
                        read_only = True
            slot.read_only = read_only
            slot.mounted = True
            slot.status = 0
            slot.path = path
            head = 3 if file_type is FileType.DISK else 2
            stem_len = len(name) - 4
            stem = name[:stem_len][:8].ljust(8)
            if stem_len > 8:
                stem = stem[:7] + "~"
            slot.label = slot.label[:head] + stem + name[stem_len:]
        return slot

    def unmount(self, drive_number: int) -> None:
        """Close and empty a drive."""
        slot = self._slot(drive_number)
        with self.lock:
            slot.clear()

    def set_last_access_error(self, drive_number: int) -> None:
        """Record that the drive's image failed to open or transfer."""
        self._slot(drive_number)
        self.last_access_error_drive = drive_number
        self.last_access_error[drive_number] = True

    def update_last_drive(self, drive_number: int) -> None:
        """Record the drive most recently accessed and when."""
        self._slot(drive_number)
        self.last_drive = drive_number
        self.last_drive_access = int(time.monotonic() * 1000)