import threading

import pytest

from picosio.boot_loader import RELOCATION_DELTAS, relocated_boot_sector
from picosio.disk import PERCOM_TABLE, SectorError, sio_checksum
from picosio.mounts import AtrHeader
from picosio.options import OPTION_COUNT, Option
from picosio.sio import CommandFrame, SerialTransport, SioDevice, main

SECTORS = 720


def frame_bytes(device, command, sector=0):
    body = bytes([device, command, sector & 0xFF, sector >> 8])
    return body + bytes([sio_checksum(body)])


def frame(device, command, sector=0):
    return CommandFrame.parse(frame_bytes(device, ord(command) if isinstance(command, str) else command, sector))


@pytest.fixture
def atr_path(tmp_path):
    header = AtrHeader(magic=0x0296, pars=SECTORS * 128 // 16, sec_size=128)
    body = b"".join(bytes([n & 0xFF]) * 128 for n in range(1, SECTORS + 1))
    path = tmp_path / "GAME.ATR"
    path.write_bytes(header.to_bytes() + body)
    return path


def writable_options():
    options = bytearray(OPTION_COUNT)
    options[Option.MOUNT] = 1
    return options


class FakePort:
    def __init__(self, incoming=b"", on_empty=None):
        self.incoming = bytearray(incoming)
        self.written = bytearray()
        self.baudrate = 0
        self.on_empty = on_empty

    def read(self, size):
        if not self.incoming and self.on_empty is not None:
            self.on_empty()
        chunk = bytes(self.incoming[:size])
        del self.incoming[:size]
        return chunk

    def write(self, data):
        self.written += data
        return len(data)

    def flush(self):
        pass

    def reset_input_buffer(self):
        self.incoming.clear()


def no_receive(ack, length):
    raise AssertionError("no data frame expected")


def test_parse_frame_fields():
    parsed = CommandFrame.parse(frame_bytes(0x31, 0x52, 0x168))
    assert parsed.device_id == 0x31
    assert parsed.command_id == ord("R")
    assert parsed.sector_number == 0x168
    assert parsed.drive_number == 1
    assert parsed.checksum == sio_checksum(bytes([0x31, 0x52, 0x68, 0x01]))


@pytest.mark.parametrize("raw", [
    bytes([0x31, 0x52, 1, 0, 0]),
    frame_bytes(0x31, 0x10, 1),
    frame_bytes(0x31, 0x52, 1)[:4],
])
def test_parse_rejects_bad_frames(raw):
    with pytest.raises(ValueError):
        CommandFrame.parse(raw)


def test_status_reply(atr_path):
    device = SioDevice(writable_options())
    disk = device.mount(1, atr_path)
    reply = device.handle_command(frame(0x31, "S"), no_receive)
    assert reply[:2] == [b"A", b"C"]
    data = reply[2]
    assert data[:-1] == disk.status()
    assert data[-1] == sio_checksum(data[:-1])


def test_read_sector_returns_contents(atr_path):
    device = SioDevice()
    device.mount(1, atr_path)
    reply = device.handle_command(frame(0x31, "R", 5), no_receive)
    assert reply[0] == b"A" and reply[1] == b"C"
    assert reply[2][:-1] == bytes([5]) * 128
    assert device.mounts.last_drive == 1


def test_read_sector_out_of_range_is_refused(atr_path):
    device = SioDevice()
    device.mount(1, atr_path)
    assert device.handle_command(frame(0x31, "R", SECTORS + 1), no_receive) == [b"N"]
    assert device.handle_command(frame(0x31, "R", 0), no_receive) == [b"N"]


def test_unmounted_or_foreign_device_is_ignored(atr_path):
    device = SioDevice()
    assert device.handle_command(frame(0x32, "S"), no_receive) == []
    assert device.handle_command(frame(0x40, "S"), no_receive) == []


def test_write_then_read_round_trip(atr_path):
    device = SioDevice(writable_options())
    device.mount(1, atr_path)
    calls = []
    payload = bytes(range(128))

    def receive(ack, length):
        calls.append((ack, length))
        return payload

    assert device.handle_command(frame(0x31, "W", 10), receive) == [b"A", b"C"]
    assert calls == [(b"A", 128)]
    reply = device.handle_command(frame(0x31, "R", 10), no_receive)
    assert reply[2][:-1] == payload


def test_write_to_read_only_disk_is_refused(atr_path):
    device = SioDevice()
    device.mount(1, atr_path)
    assert device.handle_command(frame(0x31, "P", 10), no_receive) == [b"N"]


def test_bad_data_frame_is_refused(atr_path):
    device = SioDevice(writable_options())
    disk = device.mount(1, atr_path)

    def receive(ack, length):
        raise SectorError("bad checksum")

    assert device.handle_command(frame(0x31, "P", 10), receive) == [b"N"]
    assert disk.header.temp1 == 0x02


def test_unknown_command_is_refused(atr_path):
    device = SioDevice()
    device.mount(1, atr_path)
    assert device.handle_command(frame(0x31, "Z"), no_receive) == [b"N"]


def test_percom_read_and_write(atr_path):
    device = SioDevice(writable_options())
    device.mount(1, atr_path)
    reply = device.handle_command(frame(0x31, "N"), no_receive)
    block = reply[2][:-1]
    assert block[:8] == PERCOM_TABLE[:8]
    assert len(block) == 12

    def receive(ack, length):
        assert length == 12
        return block

    assert device.handle_command(frame(0x31, "O"), receive) == [b"A", b"C"]


def test_speed_index(atr_path):
    device = SioDevice()
    device.mount(1, atr_path)
    assert device.handle_command(frame(0x31, "?"), no_receive) == [b"N"]
    options = bytearray(OPTION_COUNT)
    options[Option.HSIO] = 1
    fast = SioDevice(options)
    fast.mount(1, atr_path)
    reply = fast.handle_command(frame(0x31, "?"), no_receive)
    assert reply[:2] == [b"A", b"C"]
    assert reply[2][0] == 0x10


def test_xex_boot_sector_uses_loader(tmp_path):
    path = tmp_path / "PROG.XEX"
    path.write_bytes(b"\xff\xff" + bytes(300))
    device = SioDevice()
    device.mount(2, path)
    reply = device.handle_command(frame(0x32, "R", 1), no_receive)
    assert reply[2][:-1] == relocated_boot_sector(1, RELOCATION_DELTAS[0])


def test_access_error_blocks_drive(atr_path):
    device = SioDevice()
    device.mount(1, atr_path)
    device.mounts.set_last_access_error(1)
    assert device.handle_command(frame(0x31, "S"), no_receive) == []


def test_mount_and_unmount_labels(atr_path):
    device = SioDevice()
    device.mount(1, atr_path)
    assert device.mounts.slots[1].label.startswith("D1: GAME")
    assert device.mounts.slots[1].mounted
    device.unmount(1)
    assert device.mounts.slots[1].label == "D1:  <EMPTY>   "
    assert 1 not in device.disks


def test_mount_rejects_bad_drive(atr_path):
    with pytest.raises(ValueError):
        SioDevice().mount(5, atr_path)


def test_transport_reads_frame_and_data():
    payload = bytes(range(12))
    raw = frame_bytes(0x31, ord("S")) + payload + bytes([sio_checksum(payload)])
    transport = SerialTransport(FakePort(raw))
    parsed = transport.read_command()
    assert parsed == CommandFrame.parse(frame_bytes(0x31, ord("S")))
    assert transport.read_data(12) == payload


def test_transport_rejects_bad_data_checksum():
    transport = SerialTransport(FakePort(bytes(4) + b"\x07"))
    with pytest.raises(SectorError):
        transport.read_data(4)


def test_transport_garbled_frame_returns_none():
    transport = SerialTransport(FakePort(b"\x31\x52\x01\x00\x00"))
    assert transport.read_command() is None


def test_transport_toggles_speed_after_failures():
    port = FakePort()
    transport = SerialTransport(port, hsio_option=1)
    standard = port.baudrate
    transport.high_speed = True
    fast = port.baudrate
    assert fast > standard
    assert transport.read_command() is None
    assert transport.high_speed is False
    assert port.baudrate == standard
    assert transport.read_command() is None
    assert transport.high_speed is False


def test_serve_answers_status(atr_path):
    device = SioDevice()
    disk = device.mount(1, atr_path)
    stop = threading.Event()
    port = FakePort(frame_bytes(0x31, ord("S")), on_empty=device.stopped.set)
    device.serve(SerialTransport(port))
    status = disk.status()
    assert bytes(port.written) == b"AC" + status + bytes([sio_checksum(status)])
    assert not stop.is_set()


def test_main_rejects_too_many_images(tmp_path):
    with pytest.raises(SystemExit):
        main(["port", "a.atr", "b.atr", "c.atr", "d.atr", "e.atr"])


def test_main_reports_missing_image(tmp_path):
    assert main(["port", str(tmp_path / "missing.atr")]) == 1