# picosio

`picosio` lets a computer with a serial adapter act as Atari 8-bit disk
drives D1: to D4:. It answers SIO command frames from the Atari and serves
disk images from files, so the machine can boot and load software from
them. The package also decodes cassette images (CAS files and WAV
recordings) into timed pulse trains for use by other code.

## What it handles

- **ATR** disk images: status, sector read and write (with verify for
  the `W` command), PERCOM block read and write, formatting.
- **XEX** executables, presented as a read-only disk with a small boot
  loader in sectors 1 and 2, a VTOC and a one-entry directory, so the
  program loads on boot. The loader can be relocated by -2 to +3 pages
  (`--xex-loader` option 0 to 5).
- **High speed SIO**: with a high speed option set, the `?` command
  reports the POKEY divisor and the port switches to the matching speed
  (PAL or NTSC clock).
- **CAS** tape images, including the turbo PWM chunk types, and **WAV**
  recordings of tapes (8- or 16-bit PCM), decoded into pulses by
  `picosio.tape`.

## Installation

```
pip install picosio
```

The only runtime dependency is `pyserial`.

## Command line

```
picosio PORT [IMAGE ...] [--writable] [--ntsc] [--hsio N]
        [--xex-loader N] [--command-line {none,ri,dsr,cts}]
```

- `PORT` – the serial port device.
- `IMAGE` – up to four images, mounted as D1: to D4: in order.
- `--writable` – mount ATR images read-write (read-only by default; a
  file without write permission stays read-only).
- `--ntsc` – use the NTSC clock when computing high speeds.
- `--hsio N` – high speed option 0 to 8; 0 disables high speed.
- `--xex-loader N` – boot loader location option 0 to 5.
- `--command-line` – the modem status pin wired to the SIO command line
  (default `ri`); `none` reads frames without watching a pin.

The command serves frames until interrupted with Ctrl-C.

## Library use

Disk images (`picosio.disk`):

```python
from picosio.disk import DiskImage, SectorError

with DiskImage.open("games.atr", allow_write=False, xex_delta=0) as disk:
    try:
        boot = disk.read_sector(1)
        print(disk.status(), disk.read_percom())
    except SectorError as exc:
        print("refused:", exc)
```

`SectorError` means the drive would answer NAK; `UnsupportedImageError`
is raised for files that are not ATR or XEX images.

The SIO checksum and the SD card CRCs:

```python
from picosio.disk import sio_checksum
from picosio.crc import crc7, crc16

print(sio_checksum(bytes([0x31, 0x52, 0x01, 0x00])))
print(crc16(bytes(512)), crc7(bytes([0x40, 0, 0, 0, 0])))
```

A whole device (`picosio.sio`):

```python
from picosio.sio import CommandFrame, SioDevice

device = SioDevice()
device.mount(1, "dos.atr")
frame = CommandFrame.parse(bytes([0x31, 0x53, 0x00, 0x00, 0x84]))
print(device.handle_command(frame, receive=lambda ack, length: b""))
```

`handle_command` returns the byte chunks to send back. `SioDevice.serve`
reads frames from a `SerialTransport` (which wraps a pyserial port) and
answers them until `device.stopped` is set.

Tape playback (`picosio.tape`): `CasPlayer(stream, base_clock,
max_clock_ms)` and `WavPlayer(stream, base_clock, max_clock_ms, turbo,
ntsc)` each have a `pulses()` generator yielding `Pulse(level, cycles)`
items, the duration counted in ticks of `base_clock`.

Other pieces:

- `picosio.options.ConfigStore` keeps the nine option bytes (`Option`)
  and the last browsed path in one fixed-layout file.
- `picosio.mounts` has the ATR, CAS and WAV header parsers, the CAS chunk
  walker `cas_read_forward`, and `Mounts`, the five drive slots with
  their display labels.
- `picosio.font` holds the 8×8 Atari character set (`ATARI_FONT`) and a
  symbol set (`SYMBOL_FONT`) as `BitmapFont` column data.
- `picosio.boot_loader.relocated_boot_sector` gives the relocated boot
  loader sectors.

## What it does not do

- The `picosio` command serves disk drives only. Tape images are decoded
  into pulses, but nothing in the package sends those pulses to the
  Atari's cassette input or watches the motor line.
- ATX (copy-protected) disk images are refused.
- There is no display or button interface; the fonts are provided as
  data only. There is no SD card, flash or USB storage handling: images
  are ordinary files.

## Running the tests

```
pip install picosio[test]
pytest
```