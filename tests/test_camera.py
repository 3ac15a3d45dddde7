import socket
import struct
import threading
import time

import pytest

from gigecap.camera import (
    CONTROL_CHANNEL_PRIVILEGE,
    FIRST_PACKET_ID,
    STREAM_CHANNEL_0_IP_ADDRESS,
    STREAM_CHANNEL_0_PORT,
    ControlChannel,
    StreamReceiver,
    capture,
    main,
)
from gigecap.discovery import Device
from gigecap.gvcp import DeviceInfo, GvcpCommand, GvcpHeader, GvcpPacketType


class FakeDevice:
    """A GVCP responder on localhost backed by a register dictionary."""

    def __init__(self, registers=None, refused=()):
        self.registers = dict(registers or {})
        self.refused = set(refused)
        self.ids = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.1)
        self.port = self.sock.getsockname()[1]
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, *exc):
        self._stop.set()
        self._thread.join()
        self.sock.close()

    def _serve(self):
        while not self._stop.is_set():
            try:
                data, addr = self.sock.recvfrom(512)
            except socket.timeout:
                continue
            header = GvcpHeader.unpack(data)
            self.ids.append(header.id)
            (reg,) = struct.unpack_from(">I", data, GvcpHeader.SIZE)
            status = GvcpPacketType.ERROR if reg in self.refused else GvcpPacketType.ACK
            if header.command == GvcpCommand.READ_REG_CMD:
                payload = struct.pack(">I", self.registers.get(reg, 0))
                command = GvcpCommand.READ_REG_ACK
            else:
                (value,) = struct.unpack_from(">I", data, GvcpHeader.SIZE + 4)
                if status == GvcpPacketType.ACK:
                    self.registers[reg] = value
                payload = struct.pack(">HH", 0, 1)
                command = GvcpCommand.WRITE_REG_ACK
            ack = GvcpHeader(status, 0, command, len(payload), header.id).pack()
            self.sock.sendto(ack + payload, addr)


def test_read_register_returns_device_value():
    with FakeDevice({0x0A00: 0x02}) as dev:
        with ControlChannel("127.0.0.1", dev.port, "127.0.0.1") as channel:
            assert channel.read_register(0x0A00) == 0x02
            assert channel.read_register(0x0904) == 0


def test_write_then_read_round_trip():
    with FakeDevice() as dev:
        with ControlChannel("127.0.0.1", dev.port, "127.0.0.1") as channel:
            channel.write_register(0x0D00, 12345)
            assert channel.read_register(0x0D00) == 12345
        assert dev.registers[0x0D00] == 12345


def test_packet_ids_start_at_first_id_and_stay_distinct():
    with FakeDevice() as dev:
        with ControlChannel("127.0.0.1", dev.port, "127.0.0.1") as channel:
            for _ in range(5):
                channel.read_register(0x0904)
        assert dev.ids[0] == FIRST_PACKET_ID
        assert len(set(dev.ids)) == 5
        assert all(0xF000 <= i <= 0xFFFF for i in dev.ids)


def test_refused_read_raises_value_error():
    with FakeDevice(refused={0x0904}) as dev:
        with ControlChannel("127.0.0.1", dev.port, "127.0.0.1") as channel:
            with pytest.raises(ValueError):
                channel.read_register(0x0904)


def test_refused_write_raises_value_error():
    with FakeDevice(refused={0x0A00}) as dev:
        with ControlChannel("127.0.0.1", dev.port, "127.0.0.1") as channel:
            with pytest.raises(ValueError):
                channel.write_register(0x0A00, 2)
        assert 0x0A00 not in dev.registers


def test_silent_device_times_out():
    silent = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    silent.bind(("127.0.0.1", 0))
    try:
        port = silent.getsockname()[1]
        with ControlChannel("127.0.0.1", port, "127.0.0.1", timeout=0.2) as channel:
            with pytest.raises(TimeoutError):
                channel.read_register(0x0904)
    finally:
        silent.close()


def _gvsp(frame_id, content, packet_id, payload):
    info = (content << 24) | packet_id
    return struct.pack(">HHI", 0, frame_id, info) + payload


def _leader():
    return struct.pack(">HHIIIIIII", 0, 1, 0, 0, 0x01080001, 4, 2, 0, 0)


def _wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def test_stream_receiver_saves_completed_frame(tmp_path):
    receiver = StreamReceiver("127.0.0.1", tmp_path)
    receiver.start()
    sender = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        target = receiver.address
        block = bytes(range(8))
        for packet in (
            _gvsp(1, 0x01, 0, _leader()),
            _gvsp(1, 0x03, 1, block),
            _gvsp(1, 0x02, 2, b""),
            _gvsp(2, 0x01, 0, _leader()),
        ):
            sender.sendto(packet, target)
            time.sleep(0.02)
        out = tmp_path / "out_1.raw"
        assert _wait_for(out.exists)
        assert _wait_for(lambda: out.read_bytes() == block)
    finally:
        sender.close()
        receiver.stop()
    assert receiver.saved == [tmp_path / "out_1.raw"]
    assert receiver.assembler.received_packets == 4


def test_stream_receiver_double_start_rejected(tmp_path):
    receiver = StreamReceiver("127.0.0.1", tmp_path)
    receiver.start()
    try:
        with pytest.raises(RuntimeError):
            receiver.start()
    finally:
        receiver.stop()


def test_capture_configures_stream_and_releases_control(tmp_path):
    with FakeDevice() as dev:
        device = Device(info=DeviceInfo(ip="127.0.0.1", port=dev.port))
        saved = capture(device, 0, tmp_path)
        registers = dict(dev.registers)
    assert saved == []
    assert registers[CONTROL_CHANNEL_PRIVILEGE] == 0
    assert registers[STREAM_CHANNEL_0_IP_ADDRESS] == 0x7F000001
    assert 0 < registers[STREAM_CHANNEL_0_PORT] < 65536


def test_main_with_explicit_device(tmp_path, capsys):
    with FakeDevice() as dev:
        rc = main(
            ["--device", "127.0.0.1", "--port", str(dev.port),
             "--duration", "0", "--output-dir", str(tmp_path)]
        )
    assert rc == 0
    assert "0 frame(s) saved" in capsys.readouterr().out