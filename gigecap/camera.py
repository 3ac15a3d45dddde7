"""Talking to a GigE Vision camera: register access, stream reception and acquisition."""

from __future__ import annotations

import argparse
import ipaddress
import logging
import select
import socket
import sys
import threading
import time
from pathlib import Path
from typing import Callable

from gigecap.discovery import DEFAULT_WAIT, Device, discover
from gigecap.gvcp import (
    GVCP_DEVICE_PORT,
    DeviceInfo,
    GvcpHeader,
    GvcpPacketType,
    build_read_register_packet,
    build_write_register_packet,
    next_packet_id,
    parse_register_ack,
)
from gigecap.gvsp import GVSP_PACKET_SIZE_DEFAULT, Frame, FrameAssembler, GvspPacket

log = logging.getLogger(__name__)

DEVICE_BUFFER_SIZE = 512
STREAM_INCOMING_BUFFER_SIZE = 65536
IP_HEADER_SIZE = 20
UDP_HEADER_SIZE = 8
ACK_SIZE = GvcpHeader.SIZE + 4
FIRST_PACKET_ID = 0xF000
POLL_INTERVAL = 0.5

N_STREAM_CHANNELS = 0x0904
GVCP_CAPABILITY = 0x0934
HEARTBEAT_TIMEOUT = 0x0938
TIMESTAMP_TICK_FREQUENCY_HIGH = 0x093C
TIMESTAMP_TICK_FREQUENCY_LOW = 0x0940
TIMESTAMP_CONTROL = 0x0944
STREAM_CHANNEL_0_PORT = 0x0D00
STREAM_CHANNEL_0_PACKET_SIZE = 0x0D04
STREAM_CHANNEL_0_IP_ADDRESS = 0x0D18
STREAM_CHANNEL_SOURCE_PORT = 0x0D1C
CONTROL_CHANNEL_PRIVILEGE = 0x0A00

PRIVILEGE_CONTROL = 0x02
PRIVILEGE_NONE = 0x00
ACQUISITION_TRIGGER = 0xF0F04030
ACQUISITION_STOP = 0xF0F00614

DEFAULT_DURATION = 15


class ControlChannel:
    """A connected GVCP command socket for reading and writing device registers."""

    def __init__(
        self,
        device_ip: str,
        device_port: int = GVCP_DEVICE_PORT,
        local_address: str = "0.0.0.0",
        timeout: float = 2.0,
    ) -> None:
        self.timeout = timeout
        self.packet_id = FIRST_PACKET_ID
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self._sock.bind((local_address, 0))
            self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, DEVICE_BUFFER_SIZE)
            self._sock.connect((device_ip, int(device_port)))
        except OSError:
            self._sock.close()
            raise

    @property
    def local_address(self) -> str:
        """The local IPv4 address the device is reached from."""
        return self._sock.getsockname()[0]

    def _next_id(self) -> int:
        current = self.packet_id
        self.packet_id = next_packet_id(current)
        return current

    def _exchange(self, packet: bytes, packet_id: int) -> bytes:
        self._sock.send(packet)
        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"no acknowledgement for command 0x{packet_id:04x}")
            readable, _, _ = select.select([self._sock], [], [], remaining)
            if not readable:
                continue
            ack = self._sock.recv(DEVICE_BUFFER_SIZE)
            if len(ack) < ACK_SIZE:
                log.warning("[listen_packet_ack]: short packet of %d bytes", len(ack))
                continue
            if GvcpHeader.unpack(ack).id != packet_id:
                log.debug("stale acknowledgement skipped")
                continue
            return ack

    def read_register(self, reg_addr: int) -> int:
        """Read one 32-bit register. Raises TimeoutError or ValueError."""
        packet_id = self._next_id()
        ack = self._exchange(build_read_register_packet(reg_addr, packet_id), packet_id)
        return parse_register_ack(ack)

    def write_register(self, reg_addr: int, value: int) -> None:
        """Write one 32-bit register. Raises TimeoutError or ValueError."""
        packet_id = self._next_id()
        ack = self._exchange(
            build_write_register_packet(reg_addr, value, packet_id), packet_id
        )
        header = GvcpHeader.unpack(ack)
        if header.packet_type != GvcpPacketType.ACK:
            raise ValueError(
                f"device refused write of 0x{reg_addr:08x} "
                f"with status 0x{header.packet_type:02x}"
            )

    def close(self) -> None:
        """Close the command socket."""
        self._sock.close()

    def __enter__(self) -> "ControlChannel":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class StreamReceiver:
    """Receives GVSP packets on a UDP socket and saves every completed frame."""

    def __init__(
        self,
        local_address: str = "0.0.0.0",
        output_dir: str | Path = "data",
        packet_size: int = GVSP_PACKET_SIZE_DEFAULT,
        tick_frequency: int = 0,
        on_frame: Callable[[Frame, Path], None] | None = None,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.packet_size = packet_size
        self.assembler = FrameAssembler(tick_frequency=tick_frequency)
        self.on_frame = on_frame
        self.saved: list[Path] = []
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self._sock.bind((local_address, 0))
            self._sock.setsockopt(
                socket.SOL_SOCKET, socket.SO_RCVBUF, STREAM_INCOMING_BUFFER_SIZE
            )
        except OSError:
            self._sock.close()
            raise

    @property
    def address(self) -> tuple[str, int]:
        """Local (ip, port) the device must stream to."""
        host, port = self._sock.getsockname()[:2]
        return host, port

    @property
    def receive_size(self) -> int:
        return max(self.packet_size - IP_HEADER_SIZE - UDP_HEADER_SIZE, GvcpHeader.SIZE)

    def start(self) -> None:
        """Run the receiver in a background thread."""
        if self._thread is not None:
            raise RuntimeError("stream receiver already started")
        self._thread = threading.Thread(target=self.run, name="gvsp-receiver", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the receiving thread and close the socket."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._sock.close()

    def run(self) -> None:
        """Receive packets until stopped, writing finished frames to the output directory."""
        while not self._stop.is_set():
            readable, _, _ = select.select([self._sock], [], [], POLL_INTERVAL)
            if not readable:
                continue
            try:
                data = self._sock.recv(self.receive_size)
            except OSError as exc:
                log.warning("[stream_receiver]: no data on interface: %s", exc)
                return
            try:
                finished = self.assembler.feed(GvspPacket.parse(data))
            except ValueError as exc:
                log.warning("[stream_receiver]: bad packet: %s", exc)
                self.assembler.ignored_packets += 1
                continue
            if finished is not None:
                self._save(finished)
        log.info("[stream_receiver]: stop")

    def _save(self, frame: Frame) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"out_{frame.frame_id}.raw"
        log.info("Out frame to %s as binary", path)
        path.write_bytes(bytes(frame.data))
        self.saved.append(path)
        if self.on_frame is not None:
            self.on_frame(frame, path)


def _ipv4_to_int(address: str) -> int:
    return int(ipaddress.IPv4Address(address))


def _configure_stream(channel: ControlChannel, stream_ip: str, stream_port: int) -> int:
    """Claim control and point stream channel 0 at us; return the tick frequency."""
    channel.read_register(N_STREAM_CHANNELS)
    channel.read_register(GVCP_CAPABILITY)
    high = channel.read_register(TIMESTAMP_TICK_FREQUENCY_HIGH)
    low = channel.read_register(TIMESTAMP_TICK_FREQUENCY_LOW)
    channel.write_register(CONTROL_CHANNEL_PRIVILEGE, PRIVILEGE_CONTROL)
    channel.write_register(STREAM_CHANNEL_0_IP_ADDRESS, _ipv4_to_int(stream_ip))
    channel.write_register(STREAM_CHANNEL_0_PORT, stream_port)
    return (high << 32) | low


def _start_acquisition(channel: ControlChannel, stream_port: int) -> None:
    channel.write_register(CONTROL_CHANNEL_PRIVILEGE, PRIVILEGE_CONTROL)
    channel.write_register(0xF0F00A08, 0x00000000)
    channel.write_register(0xF0F00A0C, channel.read_register(0xF0F00A0C))
    channel.write_register(0xF0F00A08, 0x00000000)
    for addr in (0xF0F00960, 0xF0F00964, 0xF0F00530, 0xF0F00830):
        channel.read_register(addr)
    channel.write_register(0xF0F00830, 0x80000000)
    channel.write_register(0xF0F0083C, channel.read_register(0xF0F0083C))
    channel.read_register(0xF0F0053C)
    channel.read_register(0xF0F0083C)
    channel.write_register(0xF0F0083C, 0xC2000610)
    channel.write_register(0xF0F00968, 0x41200000)
    for addr in (0xF0F05410, 0xF0F04050, 0xF0F04054):
        channel.read_register(addr)
    channel.write_register(STREAM_CHANNEL_0_PORT, stream_port)
    channel.read_register(STREAM_CHANNEL_SOURCE_PORT)
    channel.write_register(ACQUISITION_TRIGGER, 0x80000000)


def _keep_control(channel: ControlChannel) -> None:
    if channel.read_register(CONTROL_CHANNEL_PRIVILEGE) != PRIVILEGE_CONTROL:
        channel.write_register(CONTROL_CHANNEL_PRIVILEGE, PRIVILEGE_CONTROL)


def capture(
    device: Device, duration: int = DEFAULT_DURATION, output_dir: str | Path = "data"
) -> list[Path]:
    """Stream from ``device`` for ``duration`` seconds; return the saved frame files."""
    local = device.interface.address if device.interface is not None else "0.0.0.0"
    with ControlChannel(device.ip, device.port or GVCP_DEVICE_PORT, local) as channel:
        receiver = StreamReceiver(channel.local_address, output_dir)
        try:
            stream_ip, stream_port = receiver.address
            log.info("Local stream socket address %s:%d", stream_ip, stream_port)
            tick_frequency = _configure_stream(channel, stream_ip, stream_port)
            size = channel.read_register(STREAM_CHANNEL_0_PACKET_SIZE) & 0xFFFF
            receiver.packet_size = size or GVSP_PACKET_SIZE_DEFAULT
            receiver.assembler.tick_frequency = tick_frequency
            _start_acquisition(channel, stream_port)
            log.info("Acquisition started")
            receiver.start()
            for _ in range(max(int(duration), 0)):
                _keep_control(channel)
                channel.write_register(ACQUISITION_TRIGGER, 0x80000000)
                channel.read_register(STREAM_CHANNEL_SOURCE_PORT)
                time.sleep(1)
            _keep_control(channel)
            channel.read_register(ACQUISITION_STOP)
            channel.write_register(ACQUISITION_STOP, 0x00000000)
            log.info("Acquisition stopped")
        finally:
            receiver.stop()
            try:
                channel.write_register(CONTROL_CHANNEL_PRIVILEGE, PRIVILEGE_NONE)
            except (OSError, TimeoutError, ValueError) as exc:
                log.warning("could not release control channel: %s", exc)
    return list(receiver.saved)


def main(argv: list[str] | None = None) -> int:
    """Capture frames from a given device, or from the first one discovered."""
    parser = argparse.ArgumentParser(description="Capture frames from a GigE Vision camera.")
    parser.add_argument("--device", help="device IP address (default: discover)")
    parser.add_argument("--port", type=int, default=GVCP_DEVICE_PORT, help="device GVCP port")
    parser.add_argument("--duration", type=int, default=DEFAULT_DURATION, help="seconds")
    parser.add_argument("--output-dir", default="data", help="where frames are written")
    parser.add_argument("--wait", type=float, default=DEFAULT_WAIT, help="discovery wait")
    args = parser.parse_args(argv)

    if args.device:
        device = Device(info=DeviceInfo(ip=args.device, port=args.port))
    else:
        devices = discover(args.wait)
        if not devices:
            print("No device found", file=sys.stderr)
            return 1
        device = devices[0]
    print(device.summary())
    try:
        saved = capture(device, args.duration, args.output_dir)
    except (OSError, TimeoutError, ValueError) as exc:
        print(f"capture failed: {exc}", file=sys.stderr)
        return 1
    print(f"{len(saved)} frame(s) saved")
    return 0