"""Decoding of WAV tape recordings: Goertzel tone detection and signal filters."""

from __future__ import annotations

import math
from typing import BinaryIO, Sequence

from .mounts import WAV_DATA, WavHeader

_NUM_READS_SH = 4
_NUM_READS = 1 << _NUM_READS_SH

FSK_SPACE_HZ = 3995.0
FSK_MARK_HZ = 5327.0
PAL_SCALED_RATE = 31668
NTSC_SCALED_RATE = 31960


def _int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _int16(value: int) -> int:
    value &= 0xFFFF
    return value - 0x10000 if value & 0x8000 else value


def _cdiv(numerator: int, denominator: int) -> int:
    """Integer division truncating toward zero."""
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator >= 0) == (denominator >= 0) else -quotient


def _goertzel(values: Sequence[int], zcoeff: int, window_size: int, step: int, channels: int,
              scale) -> int:
    zprev = 0
    zprev2 = 0
    for n in range(0, window_size, step):
        z = _int32(scale(values[n * channels]) + ((zcoeff * zprev) >> 14) - zprev2)
        zprev2, zprev = zprev, z
    power = zprev2 * zprev2 + zprev * zprev - ((zcoeff * zprev) >> 14) * zprev2
    return _int32(power) >> 5


def goertzel_int8(samples: Sequence[int], zcoeff: int, window_size: int, step: int,
                  channels: int) -> int:
    """Goertzel power of 8-bit samples over one window."""
    return _goertzel(samples, zcoeff, window_size, step, channels, lambda x: x << 2)


def goertzel_int16(samples: Sequence[int], zcoeff: int, window_size: int, step: int,
                   channels: int) -> int:
    """Goertzel power of 16-bit samples over one window."""
    return _goertzel(samples, zcoeff, window_size, step, channels, lambda x: x >> 6)


def find_wav_data(stream: BinaryIO) -> tuple[WavHeader, int]:
    """Parse the WAV header and skip to the data chunk.

    Returns the header (whose ``subchunk2_size`` is the data length) and the
    offset of the first sample. Raises ValueError for unusable files.
    """
    stream.seek(0)
    raw = stream.read(WavHeader.SIZE)
    if len(raw) != WavHeader.SIZE:
        raise ValueError("truncated WAV header")
    header = WavHeader.parse(raw)
    offset = WavHeader.SIZE
    while header.subchunk2_id != WAV_DATA:
        offset += header.subchunk2_size
        stream.seek(offset)
        chunk = stream.read(8)
        if len(chunk) != 8:
            raise ValueError("WAV file has no data chunk")
        header.subchunk2_id = int.from_bytes(chunk[:4], "little")
        header.subchunk2_size = int.from_bytes(chunk[4:], "little")
        offset += 8
    if not header.is_valid():
        raise ValueError("not a PCM WAV file the tape player accepts")
    return header, offset


class WavDecoder:
    """Decoding parameters and filter state for one WAV recording."""

    def __init__(self, header: WavHeader, base_clock: int, turbo: bool = False,
                 ntsc: bool = False) -> None:
        self.header = header
        self.turbo = turbo
        self.avg_reads = 0
        self.avg_offset = 0
        self.avg_sum = 0
        self._avg_values = [0] * _NUM_READS
        self.prev_sample = 0
        self._filter1_started = False
        self._filter1_prs = 0
        self._filter1_ps = 0
        self._filter2_started = False
        self._filter2_prs = 0
        self.last_silence = 0
        self.last_count = 0
        self.last_duration = 0

        rate = header.sample_rate
        self.sample_size = 2 if header.bits_per_sample == 16 else 1
        self.sample_div = 2 if rate > 48000 else 1
        self.silence_threshold = rate // (self.sample_div * 20)
        self.zcoeff1 = self._zcoeff(FSK_SPACE_HZ)
        self.zcoeff2 = self._zcoeff(FSK_MARK_HZ)
        if turbo:
            self.filter_window_size = 0
            self.scaled_sample_rate = rate // self.sample_div
        else:
            self.filter_window_size = 12 if rate < 44100 else 20 * self.sample_div
            if rate < 44100:
                self.scaled_sample_rate = rate
            else:
                self.scaled_sample_rate = NTSC_SCALED_RATE if ntsc else PAL_SCALED_RATE
        self.cas_sample_duration = (
            base_clock + self.scaled_sample_rate // 2) // self.scaled_sample_rate
        self.pwm_bit = 0 if turbo else 1
        self.fsk_bit = self.pwm_bit
        self.last_duration_bit = self.fsk_bit

    def _zcoeff(self, frequency: float) -> int:
        coeff = 2.0 * math.cos(2.0 * math.pi * (frequency * self.sample_div / self.header.sample_rate))
        return _int16(int(coeff * (1 << 14)))

    def filter1(self, s: int) -> int:
        """High-pass style filter used for turbo signals."""
        if not self._filter1_started:
            rs = s
        else:
            rs = _int16(_cdiv(self._filter1_prs * 4, 10) + _cdiv((s - self._filter1_ps) * 4, 10))
        self._filter1_ps = s
        self._filter1_prs = rs
        self._filter1_started = True
        return rs

    def filter2(self, s: int) -> int:
        """Low-pass smoothing filter used for turbo signals."""
        if not self._filter2_started:
            rs = s
        else:
            rs = _int16(_cdiv(s, 12) + _cdiv(self._filter2_prs * 11, 12))
        self._filter2_prs = rs
        self._filter2_started = True
        return rs

    def filter_avg(self, s: int) -> int:
        """Running average over the last 16 values."""
        self.avg_reads += 1
        if self.avg_reads > _NUM_READS:
            self.avg_sum -= self._avg_values[self.avg_offset]
        self.avg_sum = _int32(self.avg_sum + s)
        self._avg_values[self.avg_offset] = s
        self.avg_offset = (self.avg_offset + 1) & (_NUM_READS - 1)
        if self.avg_reads <= _NUM_READS:
            return _cdiv(self.avg_sum, self.avg_reads)
        return self.avg_sum >> _NUM_READS_SH