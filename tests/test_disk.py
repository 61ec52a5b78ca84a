import pytest

from picosio.boot_loader import relocated_boot_sector
from picosio.disk import (
    DiskImage,
    DiskType,
    SectorError,
    UnsupportedImageError,
    sio_checksum,
)
from picosio.mounts import AtrHeader


def _atr(tmp_path, sectors=720, sec_size=128, name="game.atr"):
    size = 3 * 128 + (sectors - 3) * sec_size
    header = AtrHeader(magic=0x0296, pars=(size >> 4) & 0xFFFF, sec_size=sec_size,
                       pars_high=(size >> 20) & 0xFF)
    path = tmp_path / name
    path.write_bytes(header.to_bytes() + bytes(size))
    return path


def _xex(tmp_path, payload, name="demo.xex"):
    path = tmp_path / name
    path.write_bytes(payload)
    return path


def test_checksum_carry():
    assert sio_checksum(bytes([1, 2, 3])) == 6
    assert sio_checksum(bytes([0xFF, 0x01])) == 1
    assert sio_checksum(b"") == 0


def test_atr_status_and_percom(tmp_path):
    with DiskImage.open(_atr(tmp_path)) as disk:
        assert disk.disk_type is DiskType.ATR
        status = disk.status()
        assert status[0] == 0x10
        assert status[2] == 0xE0
        percom = disk.read_percom()
        assert percom[:8] == bytes([0x28, 0x03, 0x00, 0x12, 0x00, 0x00, 0x00, 0x80])
        assert percom[8] == 0xFF


def test_write_then_read_round_trip(tmp_path):
    with DiskImage.open(_atr(tmp_path)) as disk:
        data = bytes(range(128))
        disk.write_sector(5, data, verify=True)
        assert disk.read_sector(5) == data
        assert disk.header.temp2 == 0xFF


def test_sector_out_of_range(tmp_path):
    with DiskImage.open(_atr(tmp_path)) as disk:
        with pytest.raises(SectorError):
            disk.read_sector(0)
        with pytest.raises(SectorError):
            disk.read_sector(721)
        assert not disk.header.temp2 & 0x10


def test_read_only_refuses_write(tmp_path):
    with DiskImage.open(_atr(tmp_path), allow_write=False) as disk:
        assert disk.status()[0] & 0x08
        with pytest.raises(SectorError):
            disk.write_sector(4, bytes(128))
        assert not disk.header.temp2 & 0x40


def test_wrong_length_write(tmp_path):
    with DiskImage.open(_atr(tmp_path)) as disk, pytest.raises(ValueError):
        disk.write_sector(4, bytes(10))


def test_format_clears_and_percom_write(tmp_path):
    with DiskImage.open(_atr(tmp_path)) as disk:
        disk.write_sector(10, b"\x55" * 128)
        result = disk.format("!")
        assert result[:2] == b"\xff\xff"
        assert disk.read_sector(10) == bytes(128)
        disk.write_percom(disk.read_percom())
        assert disk.header.temp3 & 0x04
        with pytest.raises(SectorError):
            disk.write_percom(bytes(12))


def test_xex_boot_and_file_sectors(tmp_path):
    payload = b"\xff\xff" + bytes(range(200))
    with DiskImage.open(_xex(tmp_path, payload), xex_delta=1) as disk:
        assert disk.read_only
        assert disk.read_sector(1) == relocated_boot_sector(1, 1)
        first = disk.read_sector(0x171)
        assert first[:125] == payload[:125]
        assert first[127] == 125
        assert (first[125] << 8) | first[126] == 0x172
        last = disk.read_sector(0x172)
        assert last[127] == len(payload) - 125
        assert last[:len(payload) - 125] == payload[125:]
        with pytest.raises(SectorError):
            disk.write_sector(4, bytes(128))


def test_xex_directory_entry(tmp_path):
    with DiskImage.open(_xex(tmp_path, b"\xff\xff" + bytes(10), name="DEMO.XEX")) as disk:
        entry = disk.read_sector(0x169)
        assert entry[3:5] == bytes([0x71, 0x01])
        assert entry[5:16] == b"DEMO    XEX"
        assert entry[1] == disk.header.pars


def test_unsupported_file(tmp_path):
    path = tmp_path / "junk.bin"
    path.write_bytes(b"hello world")
    with pytest.raises(UnsupportedImageError):
        DiskImage.open(path)
    atx = tmp_path / "a.atx"
    atx.write_bytes(b"AT8X" + bytes(20))
    with pytest.raises(UnsupportedImageError):
        DiskImage.open(atx)