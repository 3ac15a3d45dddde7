"""GigE Vision Control Protocol (GVCP) packets: building commands and parsing acknowledgements."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum, IntFlag

log = logging.getLogger(__name__)

GVCP_DEVICE_PORT = 3956
GVCP_DISCOVERY_DATA_SIZE = 0xF8

MANUFACTURER_NAME_OFFSET = 0x48
MANUFACTURER_NAME_SIZE = 32
MODEL_NAME_OFFSET = 0x68
MODEL_NAME_SIZE = 32
DEVICE_VERSION_OFFSET = 0x88
DEVICE_VERSION_SIZE = 32
MANUFACTURER_INFORMATIONS_OFFSET = 0xA8
MANUFACTURER_INFORMATIONS_SIZE = 48
SERIAL_NUMBER_OFFSET = 0xD8
SERIAL_NUMBER_SIZE = 16
USER_DEFINED_NAME_OFFSET = 0xE8
USER_DEFINED_NAME_SIZE = 16
DEVICE_MAC_ADDRESS_HIGH_OFFSET = 0x08

DISCOVERY_ID = 0xFFFF

_HEADER = struct.Struct(">BBHHH")
_U32 = struct.Struct(">I")


class GvcpCommand(IntEnum):
    """GVCP command and acknowledgement codes."""

    DISCOVERY_CMD = 0x0002
    DISCOVERY_ACK = 0x0003
    PACKET_RESEND_CMD = 0x0040
    PACKET_RESEND_ACK = 0x0041
    READ_REG_CMD = 0x0080
    READ_REG_ACK = 0x0081
    WRITE_REG_CMD = 0x0082
    WRITE_REG_ACK = 0x0083
    READ_MEM_CMD = 0x0084
    READ_MEM_ACK = 0x0085
    WRITE_MEM_CMD = 0x0086
    WRITE_MEM_ACK = 0x0087


class GvcpPacketType(IntEnum):
    """Value of the first byte of a GVCP packet."""

    ACK = 0x00
    CMD = 0x42
    ERROR = 0x80
    UNKNOWN_ERROR = 0x8F


class GvcpFlags(IntFlag):
    """Flags carried by GVCP command packets."""

    NONE = 0x00
    ACK_REQUIRED = 0x01
    EXTENDED_IDS = 0x10


@dataclass(frozen=True)
class GvcpHeader:
    """The eight-byte header that starts every GVCP packet."""

    packet_type: int
    packet_flags: int
    command: int
    size: int
    id: int

    SIZE = _HEADER.size

    def pack(self) -> bytes:
        """Encode the header in network byte order."""
        return _HEADER.pack(
            self.packet_type & 0xFF,
            self.packet_flags & 0xFF,
            self.command & 0xFFFF,
            self.size & 0xFFFF,
            self.id & 0xFFFF,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "GvcpHeader":
        """Decode the header from the start of ``data``."""
        if len(data) < _HEADER.size:
            raise ValueError(
                f"GVCP packet too short: {len(data)} bytes, header needs {_HEADER.size}"
            )
        return cls(*_HEADER.unpack_from(data))


@dataclass
class DeviceInfo:
    """What a device tells about itself in its discovery acknowledgement."""

    vendor: str = ""
    model: str = ""
    serial: str = ""
    user_id: str = ""
    mac: str = ""
    ip: str = "0.0.0.0"
    port: int = 0

    def summary(self) -> str:
        """Human-readable multi-line description of the device."""
        return "\n".join(
            [
                "\t======= Device Summary ======",
                f"\tIP/Port:\t{self.ip}:{self.port}",
                f"\tVendor:\t{self.vendor}",
                f"\tModel:\t{self.model}",
                f"\tSerial:\t{self.serial}",
                f"\tUser_id:\t{self.user_id}",
                f"\tMac:\t{self.mac}",
            ]
        )


def _command_packet(command: GvcpCommand, packet_id: int, payload: bytes = b"") -> bytes:
    header = GvcpHeader(
        packet_type=GvcpPacketType.CMD,
        packet_flags=GvcpFlags.ACK_REQUIRED,
        command=command,
        size=len(payload),
        id=packet_id,
    )
    return header.pack() + payload


def build_discovery_packet() -> bytes:
    """Broadcast discovery command; devices answer with a discovery acknowledgement."""
    return _command_packet(GvcpCommand.DISCOVERY_CMD, DISCOVERY_ID)


def build_read_register_packet(reg_addr: int, packet_id: int) -> bytes:
    """Command that reads one 32-bit register."""
    log.debug("[readreg]: reg_addr = 0x%04x", reg_addr)
    return _command_packet(
        GvcpCommand.READ_REG_CMD, packet_id, _U32.pack(reg_addr & 0xFFFFFFFF)
    )


def build_write_register_packet(reg_addr: int, value: int, packet_id: int) -> bytes:
    """Command that writes ``value`` into one 32-bit register."""
    log.debug("[writereg]: reg_addr = 0x%04x value = 0x%04x", reg_addr, value)
    payload = _U32.pack(reg_addr & 0xFFFFFFFF) + _U32.pack(value & 0xFFFFFFFF)
    return _command_packet(GvcpCommand.WRITE_REG_CMD, packet_id, payload)


def parse_register_ack(packet: bytes) -> int:
    """Return the 32-bit value carried by a register acknowledgement.

    Raises ValueError when the packet is too short or reports an error status.
    """
    header = GvcpHeader.unpack(packet)
    needed = GvcpHeader.SIZE + _U32.size
    if len(packet) < needed:
        raise ValueError(f"register acknowledgement too short: {len(packet)} bytes")
    if header.packet_type != GvcpPacketType.ACK:
        raise ValueError(
            f"device answered command 0x{header.command:04x} "
            f"with status 0x{header.packet_type:02x}"
        )
    (value,) = _U32.unpack_from(packet, GvcpHeader.SIZE)
    log.debug("[ack]: command = 0x%04x value = 0x%04x", header.command, value)
    return value


def _c_string(data: bytes, offset: int, size: int) -> str:
    return data[offset : offset + size].split(b"\0", 1)[0].decode("latin-1")


def parse_discovery_ack(packet: bytes) -> DeviceInfo:
    """Extract the device description from a discovery acknowledgement.

    A packet that is not a discovery acknowledgement yields an empty description.
    """
    header = GvcpHeader.unpack(packet)
    info = DeviceInfo()
    if header.command != GvcpCommand.DISCOVERY_ACK or header.id != DISCOVERY_ID:
        return info
    data = packet[GvcpHeader.SIZE :]
    if len(data) < GVCP_DISCOVERY_DATA_SIZE:
        raise ValueError(
            f"discovery acknowledgement too short: {len(data)} data bytes, "
            f"need {GVCP_DISCOVERY_DATA_SIZE}"
        )
    info.vendor = _c_string(data, MANUFACTURER_NAME_OFFSET, MANUFACTURER_NAME_SIZE)
    info.model = _c_string(data, MODEL_NAME_OFFSET, MODEL_NAME_SIZE)
    info.serial = _c_string(data, SERIAL_NUMBER_OFFSET, SERIAL_NUMBER_SIZE)
    info.user_id = _c_string(data, USER_DEFINED_NAME_OFFSET, USER_DEFINED_NAME_SIZE)
    mac = data[DEVICE_MAC_ADDRESS_HIGH_OFFSET + 2 : DEVICE_MAC_ADDRESS_HIGH_OFFSET + 8]
    info.mac = ":".join(f"{b:02x}" for b in mac)
    return info


def next_packet_id(packet_id: int) -> int:
    """Next command id; ids stay in the 0xf000..0xffff range."""
    return 0xF000 | ((packet_id + 1) & 0xFFF)


def hex_dump(prefix: str, data: bytes | None) -> str:
    """One line of space-separated hex bytes preceded by ``prefix``."""
    if data is None:
        return f"{prefix}: <null>"
    return f"{prefix}: " + "".join(f"{b:02x} " for b in data)