"""Persistent device options and last browsed path."""

from __future__ import annotations

import enum
import os
import struct
from pathlib import Path

MOTOR_ON_STATE = 1
MOTOR_OFF_DELAY = 0
MOTOR_ON_DELAY = 0
WAV_96K = True

OPTION_COUNT = 9
CONFIG_MAGIC = 0xDEADBEEF
CONFIG_SIZE = 2048 if WAV_96K else 1024
_MAGIC = struct.Struct("<I")


class Option(enum.IntEnum):
    """Index of each option in the stored option bytes."""

    MOUNT = 0
    CLOCK = 1
    HSIO = 2
    ATX = 3
    XEX = 4
    TURBO1 = 5
    TURBO2 = 6
    TURBO3 = 7
    WAV = 8


class ConfigStore:
    """Options and current path kept in one fixed-layout file.

    The layout is the path (null padded to ``max_path_len``), the option
    bytes, and a signature ``max_path_len + 64`` bytes in.
    """

    def __init__(self, path: str | os.PathLike[str], max_path_len: int = 256) -> None:
        if max_path_len + 64 + _MAGIC.size > CONFIG_SIZE:
            raise ValueError("path length too large for the configuration block")
        self.path = Path(path)
        self.max_path_len = max_path_len
        self.current_path = ""
        self.options = bytearray(OPTION_COUNT)
        self.save_config_flag = False
        self.save_path_flag = False

    @property
    def _signature_offset(self) -> int:
        return self.max_path_len + 64

    def _stored(self) -> bytes | None:
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return None
        end = self._signature_offset + _MAGIC.size
        if len(data) < end or _MAGIC.unpack_from(data, self._signature_offset)[0] != CONFIG_MAGIC:
            return None
        return data

    def load(self, reset: bool = False) -> bool:
        """Load the stored settings; return False and mark all for saving otherwise."""
        data = None if reset else self._stored()
        if data is None:
            self.save_path_flag = True
            self.save_config_flag = True
            return False
        raw_path = data[:self.max_path_len].split(b"\0", 1)[0]
        self.current_path = raw_path.decode("utf-8", errors="replace")
        offset = self.max_path_len
        self.options = bytearray(data[offset:offset + OPTION_COUNT])
        return True

    def _encoded_path(self) -> bytes:
        encoded = self.current_path.encode("utf-8")
        if len(encoded) >= self.max_path_len:
            raise ValueError(f"path longer than {self.max_path_len - 1} bytes")
        return encoded

    def save(self) -> bool:
        """Write pending changes; return whether anything was written."""
        if not self.save_path_flag and not self.save_config_flag:
            return False
        if len(self.options) != OPTION_COUNT:
            raise ValueError(f"expected {OPTION_COUNT} option bytes")
        stored = self._stored() or bytes(CONFIG_SIZE)
        block = bytearray(CONFIG_SIZE)
        if self.save_path_flag:
            path_bytes = self._encoded_path()
        else:
            path_bytes = stored[:self.max_path_len]
        block[:len(path_bytes)] = path_bytes
        offset = self.max_path_len
        options = self.options if self.save_config_flag else stored[offset:offset + OPTION_COUNT]
        block[offset:offset + OPTION_COUNT] = options
        _MAGIC.pack_into(block, self._signature_offset, CONFIG_MAGIC)
        temporary = self.path.with_name(self.path.name + ".tmp")
        temporary.write_bytes(block)
        os.replace(temporary, self.path)
        self.save_path_flag = False
        self.save_config_flag = False
        return True