"""Serial command handling: the disk drive side of the SIO bus."""

from __future__ import annotations

import argparse
import sys
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, Protocol

import serial

from .boot_loader import RELOCATION_DELTAS
from .disk import DiskImage, DiskType, SectorError, UnsupportedImageError, sio_checksum
from .mounts import FileType, Mounts
from .options import OPTION_COUNT, Option

ACK = b"A"
NAK = b"N"
COMPLETE = b"C"
ERROR = b"E"

FIRST_DISK_ID = 0x30
DISK_DRIVES = 4

# POKEY divisors selected by the high speed option, in option order.
HSIO_OPT_TO_INDEX = (0x28, 0x10, 6, 5, 4, 3, 2, 1, 0)
PAL_CLOCK = 1773447
NTSC_CLOCK = 1789790

COMMAND_RELEASE_TIMEOUT = 0.00125
_PRE_ACK_DELAY = 100e-6
_CHUNK_DELAY = 300e-6
_IDLE_POLL = 200e-6
_COMMAND_LINES = ("none", "ri", "dsr", "cts")

Receive = Callable[[bytes, int], bytes]


def _pokey_baud(divisor: int, ntsc: bool) -> int:
    clock = NTSC_CLOCK if ntsc else PAL_CLOCK
    return round(clock / (2 * (divisor + 7)))


@dataclass(frozen=True)
class CommandFrame:
    """A five-byte command frame sent by the computer."""

    device_id: int
    command_id: int
    sector_number: int
    checksum: int

    SIZE: ClassVar[int] = 5

    @classmethod
    def parse(cls, data: bytes) -> CommandFrame:
        """Decode a frame; raise ValueError if it is malformed."""
        data = bytes(data)
        if len(data) != cls.SIZE:
            raise ValueError(f"command frame needs {cls.SIZE} bytes, got {len(data)}")
        if sio_checksum(data[:4]) != data[4]:
            raise ValueError("command frame checksum mismatch")
        if data[1] < 0x21:
            raise ValueError(f"invalid command 0x{data[1]:02X}")
        return cls(data[0], data[1], data[2] | (data[3] << 8), data[4])

    @property
    def drive_number(self) -> int:
        return self.device_id - FIRST_DISK_ID


class _Port(Protocol):
    baudrate: int

    def read(self, size: int) -> bytes: ...

    def write(self, data: bytes) -> int | None: ...

    def flush(self) -> None: ...

    def reset_input_buffer(self) -> None: ...


class SerialTransport:
    """Frames on a serial port, with the command line read from a modem status pin."""

    def __init__(self, port: _Port, hsio_option: int = 0, ntsc: bool = False,
                 command_line: str = "none",
                 release_timeout: float = COMMAND_RELEASE_TIMEOUT) -> None:
        if command_line not in _COMMAND_LINES:
            raise ValueError(f"command line must be one of {', '.join(_COMMAND_LINES)}")
        if not 0 <= hsio_option < len(HSIO_OPT_TO_INDEX):
            raise ValueError(f"high speed option must be below {len(HSIO_OPT_TO_INDEX)}")
        self.port = port
        self.hsio_option = hsio_option
        self.ntsc = ntsc
        self.command_line = command_line
        self.release_timeout = release_timeout
        self._high_speed: bool | None = None
        self._freshly_changed = 0
        port.baudrate = self._baud(False)

    def _baud(self, high: bool) -> int:
        option = self.hsio_option if high else 0
        return _pokey_baud(HSIO_OPT_TO_INDEX[option], self.ntsc)

    @property
    def high_speed(self) -> bool:
        return bool(self._high_speed)

    @high_speed.setter
    def high_speed(self, value: bool) -> None:
        self._high_speed = bool(value)
        self.port.baudrate = self._baud(self._high_speed)

    def _command_asserted(self) -> bool:
        if self.command_line == "none":
            return True
        return bool(getattr(self.port, self.command_line))

    def read_command(self) -> CommandFrame | None:
        """Read one command frame; None if there is none or it was garbled."""
        if self.command_line != "none" and not self._command_asserted():
            return None
        raw = self.port.read(CommandFrame.SIZE)
        try:
            frame = CommandFrame.parse(raw)
        except ValueError:
            self.port.reset_input_buffer()
            if self.hsio_option and not self._freshly_changed and self._high_speed is not None:
                self.high_speed = not self._high_speed
                self._freshly_changed = 2
            elif self._freshly_changed:
                self._freshly_changed -= 1
            return None
        if self.command_line != "none":
            deadline = time.monotonic() + self.release_timeout
            while self._command_asserted() and time.monotonic() < deadline:
                time.sleep(0)
            if self._command_asserted():
                return None
        self._freshly_changed = 0
        return frame

    def read_data(self, length: int) -> bytes:
        """Read a data frame of ``length`` bytes followed by its checksum."""
        raw = self.port.read(length + 1)
        if len(raw) != length + 1 or sio_checksum(raw[:length]) != raw[length]:
            raise SectorError("data frame is incomplete or its checksum is wrong")
        return bytes(raw[:length])

    def write(self, data: bytes) -> None:
        """Send bytes to the computer."""
        self.port.write(bytes(data))
        self.port.flush()


def _sector_span(disk: DiskImage, sector_number: int, write: bool = False) -> int:
    """Return the length of a sector, refusing it as the drive would."""
    header = disk.header
    if write and disk.read_only:
        header.temp2 &= 0xBF
        raise SectorError("disk is write protected")
    index = sector_number - 1
    if index < 3:
        offset, length = index * 128, 128
    else:
        length = header.sec_size
        offset = 384 + (index - 3) * length
    if sector_number <= 0 or offset + length > disk.size:
        header.temp2 &= 0xEF
        raise SectorError(f"sector {sector_number} out of range")
    return length


def _complete(ok: bool, data: bytes = b"") -> list[bytes]:
    parts = [COMPLETE if ok else ERROR]
    if data:
        parts.append(bytes(data) + bytes([sio_checksum(data)]))
    return parts


class SioDevice:
    """Disk drives D1: to D4: answering commands from the computer."""

    def __init__(self, options: Sequence[int] | None = None) -> None:
        opts = bytearray(OPTION_COUNT) if options is None else bytearray(options)
        if len(opts) != OPTION_COUNT:
            raise ValueError(f"expected {OPTION_COUNT} option bytes")
        if opts[Option.XEX] >= len(RELOCATION_DELTAS):
            raise ValueError("executable loader option out of range")
        if opts[Option.HSIO] >= len(HSIO_OPT_TO_INDEX):
            raise ValueError("high speed option out of range")
        self.options = opts
        self.mounts = Mounts()
        self.disks: dict[int, DiskImage] = {}
        self.stopped = threading.Event()
        self._handlers = {
            ord("S"): self._status,
            ord("N"): self._read_percom,
            ord("R"): self._read_sector,
            ord("O"): self._write_percom,
            ord("P"): self._write_sector,
            ord("W"): self._write_sector,
            ord("!"): self._format,
            ord('"'): self._format,
            ord("?"): self._speed_index,
        }

    @staticmethod
    def _check_drive(drive_number: int) -> None:
        if not 1 <= drive_number <= DISK_DRIVES:
            raise ValueError(f"disk drive number must be 1..{DISK_DRIVES}, not {drive_number}")

    def _close(self, drive_number: int) -> None:
        disk = self.disks.pop(drive_number, None)
        if disk is not None:
            disk.close()

    def mount(self, drive_number: int, path) -> DiskImage:
        """Insert the disk image at ``path`` into a drive."""
        self._check_drive(drive_number)
        path = Path(path).resolve()
        with self.mounts.lock:
            self._close(drive_number)
            slot = self.mounts.mount(drive_number, str(path), path.name, FileType.DISK)
            allow_write = bool(self.options[Option.MOUNT]) and not slot.read_only
            delta = RELOCATION_DELTAS[self.options[Option.XEX]]
            try:
                disk = DiskImage.open(path, allow_write, delta)
            except (OSError, UnsupportedImageError):
                self.mounts.unmount(drive_number)
                raise
            slot.read_only = disk.read_only
            slot.status = disk.size
            self.disks[drive_number] = disk
            self.mounts.last_access_error[drive_number] = False
            return disk

    def unmount(self, drive_number: int) -> None:
        """Remove the disk from a drive."""
        self._check_drive(drive_number)
        with self.mounts.lock:
            self._close(drive_number)
            self.mounts.unmount(drive_number)

    def handle_command(self, frame: CommandFrame, receive: Receive) -> list[bytes]:
        """Answer a command frame; return the byte chunks to send, in order.

        ``receive(ack, length)`` sends ``ack`` and returns the data frame the
        computer sends next. An empty list means the frame is not for us.
        """
        drive = frame.drive_number
        with self.mounts.lock:
            if not 1 <= drive <= DISK_DRIVES:
                return []
            disk = self.disks.get(drive)
            if disk is None or self.mounts.last_access_error[drive]:
                return []
            self.mounts.update_last_drive(drive)
            disk.header.temp1 = 0
            handler = self._handlers.get(frame.command_id)
            if handler is None:
                return [NAK]
            return handler(disk, drive, frame, receive)

    def _status(self, disk: DiskImage, drive: int, frame: CommandFrame,
                receive: Receive) -> list[bytes]:
        return [ACK, *_complete(True, disk.status())]

    def _read_percom(self, disk: DiskImage, drive: int, frame: CommandFrame,
                     receive: Receive) -> list[bytes]:
        return [ACK, *_complete(True, disk.read_percom())]

    def _read_sector(self, disk: DiskImage, drive: int, frame: CommandFrame,
                     receive: Receive) -> list[bytes]:
        number = frame.sector_number
        try:
            data = disk.read_sector(number)
        except SectorError:
            return [NAK]
        except OSError:
            self.mounts.set_last_access_error(drive)
            length = 128 if disk.disk_type is DiskType.XEX else _sector_span(disk, number)
            return [ACK, *_complete(False, bytes(length))]
        return [ACK, *_complete(True, data)]

    def _write_percom(self, disk: DiskImage, drive: int, frame: CommandFrame,
                      receive: Receive) -> list[bytes]:
        if disk.read_only or disk.header.temp3 & 0x80:
            return [NAK]
        try:
            data = receive(ACK, 12)
        except SectorError:
            disk.header.temp1 = 0x02
            return [NAK]
        try:
            disk.write_percom(data)
        except SectorError:
            return [NAK]
        return [ACK, COMPLETE]

    def _write_sector(self, disk: DiskImage, drive: int, frame: CommandFrame,
                      receive: Receive) -> list[bytes]:
        if disk.disk_type is not DiskType.ATR:
            # Executables ignore writes: no acknowledgement, only completion.
            return [COMPLETE]
        number = frame.sector_number
        try:
            length = _sector_span(disk, number, write=True)
        except SectorError:
            return [NAK]
        try:
            data = receive(ACK, length)
        except SectorError:
            disk.header.temp1 = 0x02
            return [NAK]
        try:
            disk.write_sector(number, data, verify=frame.command_id == ord("W"))
        except OSError:
            self.mounts.set_last_access_error(drive)
            return [ACK, ERROR]
        return [ACK, COMPLETE]

    def _format(self, disk: DiskImage, drive: int, frame: CommandFrame,
                receive: Receive) -> list[bytes]:
        try:
            result = disk.format(frame.command_id)
        except SectorError:
            return [NAK]
        except OSError:
            self.mounts.set_last_access_error(drive)
            filler = b"\xff\xff" + bytes(max(disk.header.sec_size - 2, 0))
            return [ACK, *_complete(False, filler)]
        return [ACK, *_complete(True, result)]

    def _speed_index(self, disk: DiskImage, drive: int, frame: CommandFrame,
                     receive: Receive) -> list[bytes]:
        option = self.options[Option.HSIO]
        if not option or disk.disk_type is DiskType.ATX:
            return [NAK]
        return [ACK, *_complete(True, bytes([HSIO_OPT_TO_INDEX[option]]))]

    def _drop_failed_drives(self) -> None:
        with self.mounts.lock:
            if self.mounts.last_access_error_drive < 0:
                return
            for drive, failed in enumerate(self.mounts.last_access_error):
                if failed and drive:
                    self._close(drive)
                    self.mounts.unmount(drive)
            self.mounts.last_access_error = [False] * len(self.mounts.last_access_error)
            self.mounts.last_access_error_drive = -1

    def serve(self, transport: SerialTransport) -> None:
        """Answer commands from ``transport`` until ``stopped`` is set."""

        def receive(ack: bytes, length: int) -> bytes:
            transport.write(ack)
            return transport.read_data(length)

        while not self.stopped.is_set():
            self._drop_failed_drives()
            frame = transport.read_command()
            if frame is None:
                time.sleep(_IDLE_POLL)
                continue
            time.sleep(_PRE_ACK_DELAY)
            reply = self.handle_command(frame, receive)
            for chunk in reply:
                transport.write(chunk)
                time.sleep(_CHUNK_DELAY)
            if frame.command_id == ord("?") and reply and reply[0] == ACK:
                transport.high_speed = True


def main(argv: Sequence[str] | None = None) -> int:
    """Serve disk images to a computer attached to a serial port."""
    parser = argparse.ArgumentParser(prog="picosio", description="Serve disk images over SIO.")
    parser.add_argument("port", help="serial port device")
    parser.add_argument("images", nargs="*", help="images for D1: to D4:, in order")
    parser.add_argument("--writable", action="store_true", help="mount images read-write")
    parser.add_argument("--ntsc", action="store_true", help="use NTSC clock for speeds")
    parser.add_argument("--hsio", type=int, choices=range(len(HSIO_OPT_TO_INDEX)), default=0,
                        help="high speed option (0 disables)")
    parser.add_argument("--xex-loader", type=int, choices=range(len(RELOCATION_DELTAS)),
                        default=0, help="executable loader location option")
    parser.add_argument("--command-line", choices=_COMMAND_LINES, default="ri",
                        help="modem status pin carrying the command line")
    args = parser.parse_args(argv)
    if len(args.images) > DISK_DRIVES:
        parser.error(f"at most {DISK_DRIVES} images can be mounted")

    options = bytearray(OPTION_COUNT)
    options[Option.MOUNT] = int(args.writable)
    options[Option.CLOCK] = int(args.ntsc)
    options[Option.HSIO] = args.hsio
    options[Option.XEX] = args.xex_loader
    device = SioDevice(options)
    try:
        for number, image in enumerate(args.images, start=1):
            try:
                device.mount(number, image)
            except (OSError, ValueError) as exc:
                print(f"picosio: D{number}: {exc}", file=sys.stderr)
                return 1
        try:
            with serial.Serial(args.port, baudrate=19200, timeout=0.005) as port:
                transport = SerialTransport(port, args.hsio, args.ntsc, args.command_line)
                device.serve(transport)
        except KeyboardInterrupt:
            pass
        except serial.SerialException as exc:
            print(f"picosio: {exc}", file=sys.stderr)
            return 1
    finally:
        for number in list(device.disks):
            device.unmount(number)
    return 0