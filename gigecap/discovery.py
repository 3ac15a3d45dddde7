"""Finding GigE Vision devices by broadcasting discovery commands on every interface."""

from __future__ import annotations

import argparse
import logging
import select
import socket
import sys
import time
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Iterator

import psutil

from gigecap.gvcp import (
    GVCP_DEVICE_PORT,
    DeviceInfo,
    GvcpHeader,
    build_discovery_packet,
    parse_discovery_ack,
)

log = logging.getLogger(__name__)

DISCOVERY_BUFFER_SIZE = 512
BROADCAST_ADDRESS = "255.255.255.255"
DEFAULT_WAIT = 1.0


@dataclass(frozen=True)
class Interface:
    """A network interface that is up and has an IPv4 address."""

    name: str
    address: str

    def __str__(self) -> str:
        return f"Found interface with name {self.name} ip {self.address}"


@dataclass
class Device:
    """A device that answered a discovery broadcast, and the interface it answered on."""

    info: DeviceInfo
    interface: Interface | None = None

    @property
    def ip(self) -> str:
        return self.info.ip

    @property
    def port(self) -> int:
        return self.info.port

    def summary(self) -> str:
        """Human-readable description of the device."""
        return self.info.summary()


def list_interfaces() -> list[Interface]:
    """IPv4 interfaces that are up and not point-to-point, in system order."""
    stats = psutil.net_if_stats()
    interfaces = []
    for name, addresses in psutil.net_if_addrs().items():
        stat = stats.get(name)
        if stat is None or not stat.isup:
            continue
        for addr in addresses:
            if addr.family != socket.AF_INET or not addr.address:
                continue
            if getattr(addr, "ptp", None):
                continue
            interfaces.append(Interface(name=name, address=addr.address))
    return interfaces


def open_discovery_socket(address: str) -> socket.socket:
    """Bind a UDP socket to ``address`` and broadcast a discovery command from it.

    Raises OSError when the socket cannot be created or bound. A failed
    broadcast is only logged: the socket is still returned.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.bind((address, 0))
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, DISCOVERY_BUFFER_SIZE)
    except OSError:
        sock.close()
        raise
    try:
        sock.sendto(build_discovery_packet(), (BROADCAST_ADDRESS, GVCP_DEVICE_PORT))
    except OSError as exc:
        log.warning("discovery broadcast from %s failed: %s", address, exc)
    return sock


def receive_discovery_answers(
    sock: socket.socket, interface: Interface | None
) -> Iterator[Device]:
    """Yield a device for every answer already waiting on ``sock``; never blocks."""
    while True:
        readable, _, _ = select.select([sock], [], [], 0)
        if not readable:
            return
        try:
            packet, addr = sock.recvfrom(DISCOVERY_BUFFER_SIZE)
        except OSError as exc:
            log.warning("[listen_discovery_answer]: no data on interface: %s", exc)
            return
        if len(packet) < GvcpHeader.SIZE:
            log.warning("[listen_discovery_answer]: wrong packet on interface")
            continue
        try:
            info = parse_discovery_ack(packet)
        except ValueError as exc:
            log.warning("[listen_discovery_answer]: %s", exc)
            continue
        info.ip, info.port = addr[0], int(addr[1])
        yield Device(info=info, interface=interface)


def discover(wait: float = DEFAULT_WAIT) -> list[Device]:
    """Broadcast on every interface, wait ``wait`` seconds and collect the answers."""
    devices: list[Device] = []
    with ExitStack() as stack:
        sockets = []
        for interface in list_interfaces():
            try:
                sock = open_discovery_socket(interface.address)
            except OSError as exc:
                log.warning("cannot open discovery socket on %s: %s", interface.name, exc)
                continue
            stack.enter_context(sock)
            sockets.append((interface, sock))
        if wait > 0:
            time.sleep(wait)
        for interface, sock in sockets:
            devices.extend(receive_discovery_answers(sock, interface))
    return devices


def main(argv: list[str] | None = None) -> int:
    """Discover devices on all interfaces and print what answered."""
    parser = argparse.ArgumentParser(description="Find GigE Vision devices.")
    parser.add_argument(
        "--wait",
        type=float,
        default=DEFAULT_WAIT,
        help="seconds to wait for answers (default: %(default)s)",
    )
    args = parser.parse_args(argv)
    try:
        devices = discover(args.wait)
    except OSError as exc:
        print(f"[find_devices]: can't list interfaces: {exc}", file=sys.stderr)
        return 1
    for device in devices:
        if device.interface is not None:
            print(device.interface)
        print(device.summary())
    print(f"{len(devices)} device(s) found")
    return 0