"""Cassette playback: turning CAS and WAV images into timed signal pulses."""

from __future__ import annotations

import io
import struct
from collections.abc import Iterator
from typing import BinaryIO, NamedTuple

from .mounts import (
    CAS_HEADER_DATA,
    CAS_HEADER_FSK,
    CAS_HEADER_FUJI,
    CAS_HEADER_PWMC,
    CAS_HEADER_PWMD,
    CAS_HEADER_PWML,
    SECTOR_BUFFER_SIZE,
    CasFormatError,
    CasHeader,
    CasState,
    cas_read_forward,
)
from .wav_decode import WavDecoder, find_wav_data, goertzel_int8, goertzel_int16

WAV_LEADING_SILENCE_MS = 500
_WAV_QUIET_LEVEL = 3200


class Pulse(NamedTuple):
    """A signal level held for a number of base clock cycles."""

    level: int
    cycles: int


def _int16(value: int) -> int:
    value &= 0xFFFF
    return value - 0x10000 if value & 0x8000 else value


def silence_pulses(duration_ms: int, turbo: bool, base_clock: int,
                   max_clock_ms: int) -> Iterator[Pulse]:
    """Return pulses holding the idle level for ``duration_ms`` milliseconds.

    The idle level is 1 for standard signals and 0 for turbo ones; the
    silence is cut into pieces of at most ``max_clock_ms`` milliseconds.
    """
    if max_clock_ms <= 0:
        raise ValueError("max_clock_ms must be positive")
    return _silence(duration_ms, 0 if turbo else 1, base_clock // 1000, max_clock_ms)


def _silence(duration_ms: int, level: int, per_ms: int, max_clock_ms: int) -> Iterator[Pulse]:
    remaining = duration_ms
    while remaining > 0:
        block = min(remaining, max_clock_ms)
        yield Pulse(level, per_ms * block)
        remaining -= block


def _byte(data: bytes, index: int) -> int:
    return data[index] if index < len(data) else 0


def _stream_size(stream: BinaryIO) -> int:
    return stream.seek(0, io.SEEK_END)


class CasPlayer:
    """Plays a CAS tape image, chunk by chunk."""

    def __init__(self, stream: BinaryIO, base_clock: int, max_clock_ms: int) -> None:
        if max_clock_ms <= 0:
            raise ValueError("max_clock_ms must be positive")
        self.stream = stream
        self.base_clock = base_clock
        self.max_clock_ms = max_clock_ms
        self.size = _stream_size(stream)
        self._start()

    def _start(self) -> tuple[CasState, int]:
        state = CasState(cas_sample_duration=(self.base_clock + 300) // 600)
        self.stream.seek(0)
        raw = self.stream.read(CasHeader.SIZE)
        if len(raw) != CasHeader.SIZE:
            raise CasFormatError("file too short for a CAS header")
        header = CasHeader.parse(raw)
        if header.signature != CAS_HEADER_FUJI:
            raise CasFormatError("not a CAS file")
        offset = cas_read_forward(self.stream, header.chunk_length + CasHeader.SIZE,
                                  state, self.base_clock)
        return state, offset

    def pulses(self) -> Iterator[Pulse]:
        """Yield the pulses of the whole tape from its beginning."""
        state, offset = self._start()
        while offset < self.size:
            header = state.header
            limit = (128 if state.block_turbo else 256) * state.block_multiple
            to_read = min(header.chunk_length - state.block_index, limit)
            self.stream.seek(offset)
            data = self.stream.read(to_read)
            if len(data) != to_read:
                raise CasFormatError(f"truncated chunk data at offset {offset}")
            offset += to_read
            yield from silence_pulses(state.silence_duration, state.block_turbo,
                                      self.base_clock, self.max_clock_ms)
            state.silence_duration = 0
            state.block_index += to_read
            yield from self._decode(data, state)
            if state.block_index == header.chunk_length and offset < self.size:
                offset = cas_read_forward(self.stream, offset, state, self.base_clock)

    def _decode(self, data: bytes, state: CasState) -> Iterator[Pulse]:
        header = state.header
        signature = header.signature
        for i in range(0, len(data), state.block_multiple):
            if signature == CAS_HEADER_DATA:
                duration = state.cas_sample_duration
                yield Pulse(0, duration)
                value = data[i]
                for _ in range(8):
                    yield Pulse(value & 0x1, duration)
                    value >>= 1
                yield Pulse(1, duration)
            elif signature in (CAS_HEADER_FSK, CAS_HEADER_PWML):
                length = _byte(data, i) | (_byte(data, i + 1) << 8)
                if length:
                    unit = state.pwm_sample_duration if state.block_turbo else self.base_clock // 10000
                    yield Pulse(state.fsk_bit, unit * length)
                state.fsk_bit ^= 1
            elif signature == CAS_HEADER_PWMC:
                count = _byte(data, i + 1) | (_byte(data, i + 2) << 8)
                half = data[i] * state.pwm_sample_duration // 2
                for _ in range(count):
                    yield Pulse(state.pwm_bit, half)
                    yield Pulse(state.pwm_bit ^ 1, half)
            elif signature == CAS_HEADER_PWMD:
                value = data[i]
                bits = range(7, -1, -1) if state.pwm_bit_order else range(8)
                for j in bits:
                    half = header.aux_b[(value >> j) & 0x1] * state.pwm_sample_duration // 2
                    yield Pulse(state.pwm_bit, half)
                    yield Pulse(state.pwm_bit ^ 1, half)


class WavPlayer:
    """Plays a WAV recording of a tape by decoding its signal."""

    def __init__(self, stream: BinaryIO, base_clock: int, max_clock_ms: int,
                 turbo: bool = False, ntsc: bool = False) -> None:
        if max_clock_ms <= 0:
            raise ValueError("max_clock_ms must be positive")
        self.stream = stream
        self.base_clock = base_clock
        self.max_clock_ms = max_clock_ms
        self.turbo = turbo
        self.ntsc = ntsc
        self.header, self.data_offset = find_wav_data(stream)
        self.size = self.data_offset + self.header.subchunk2_size

    def pulses(self) -> Iterator[Pulse]:
        """Yield the decoded pulses of the recording from its beginning."""
        header = self.header
        decoder = WavDecoder(header, self.base_clock, self.turbo, self.ntsc)
        window_bytes = decoder.filter_window_size * header.block_align
        silence = WAV_LEADING_SILENCE_MS
        last_block_marker = True
        offset = self.data_offset
        while offset + window_bytes < self.size:
            to_read = min(SECTOR_BUFFER_SIZE, self.size - offset)
            self.stream.seek(offset)
            data = self.stream.read(to_read)
            if len(data) != to_read:
                raise ValueError(f"truncated WAV data at offset {offset}")
            offset += to_read - window_bytes
            yield from silence_pulses(silence, self.turbo, self.base_clock, self.max_clock_ms)
            silence = 0
            if not last_block_marker:
                scaled = self._scaled(decoder, decoder.last_count)
                decoder.last_count = 0
                yield Pulse(decoder.fsk_bit, scaled * decoder.cas_sample_duration)
                self._track_duration(decoder, scaled)
            last_block_marker = False
            for pulse in self._decode_block(data, decoder, window_bytes):
                last_block_marker = True
                if pulse is not None:
                    yield pulse

    def _scaled(self, decoder: WavDecoder, count: int) -> int:
        return decoder.sample_div * count * decoder.scaled_sample_rate // self.header.sample_rate

    @staticmethod
    def _track_duration(decoder: WavDecoder, scaled: int) -> None:
        if decoder.fsk_bit == decoder.last_duration_bit:
            decoder.last_duration += scaled
        else:
            decoder.last_duration_bit = decoder.fsk_bit
            decoder.last_duration = 0

    def _decode_block(self, data: bytes, decoder: WavDecoder,
                      window_bytes: int) -> Iterator[Pulse | None]:
        """Yield for every signal flip: the pulse it ends, or None if dropped."""
        header = self.header
        channels = header.num_channels
        window = decoder.filter_window_size
        wide = decoder.sample_size == 2
        if wide:
            samples = struct.unpack_from(f"<{len(data) // 2}h", data)
        else:
            samples = struct.unpack(f"{len(data)}b", data)
        step = decoder.sample_div * header.block_align
        position = 0
        while position + window_bytes < len(data):
            if wide:
                index = (position + 2 * (channels - 1)) // 2
                last_sample = samples[index]
                goertzel = goertzel_int16
            else:
                index = position + channels - 1
                last_sample = samples[index] * 256
                goertzel = goertzel_int8
            if self.turbo:
                ns = _int16(20 * decoder.filter1(decoder.filter2(last_sample)))
                if decoder.pwm_bit:
                    decoder.pwm_bit = int(ns >= decoder.prev_sample - 200)
                else:
                    decoder.pwm_bit = int(ns > decoder.prev_sample + 200)
                decoder.prev_sample = ns
            else:
                values = samples[index:index + window * channels]
                g1 = goertzel(values, decoder.zcoeff1, window, decoder.sample_div, channels)
                g2 = goertzel(values, decoder.zcoeff2, window, decoder.sample_div, channels)
                if -_WAV_QUIET_LEVEL <= last_sample <= _WAV_QUIET_LEVEL:
                    decoder.last_silence += 1
                else:
                    decoder.last_silence = 0
                if decoder.last_silence > decoder.silence_threshold:
                    decoder.pwm_bit = 1
                else:
                    decoder.pwm_bit = int(decoder.filter_avg(g2 - g1) > 0)
            position += step
            if decoder.pwm_bit == decoder.fsk_bit:
                decoder.last_count += 1
                continue
            scaled = self._scaled(decoder, decoder.last_count)
            pulse = None
            keep = (self.turbo or decoder.last_duration < 1500 or scaled > 10
                    or decoder.last_duration_bit)
            if keep and scaled:
                pulse = Pulse(decoder.fsk_bit, scaled * decoder.cas_sample_duration)
                self._track_duration(decoder, scaled)
            decoder.fsk_bit = decoder.pwm_bit
            decoder.last_count = 1
            yield pulse