"""GigE Vision Streaming Protocol (GVSP) packets and frame reassembly."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from enum import IntEnum

from gigecap.gvcp import GvcpPacketType

log = logging.getLogger(__name__)

GVSP_PACKET_SIZE_DEFAULT = 1500
EXTENDED_ID_MODE_MASK = 0x80
PACKET_ID_MASK = 0x00FFFFFF
CONTENT_TYPE_MASK = 0x7F000000
CONTENT_TYPE_POS = 24

MAX_FRAME_SIZE = 2048 * 2448 * 3 * 2

_HEADER = struct.Struct(">HHI")
_EXTENDED_HEADER = struct.Struct(">HHIQI")
_LEADER = struct.Struct(">HHIIIIIII")

NS_PER_SECOND = 1_000_000_000


class GvspContentType(IntEnum):
    """Kind of content a stream packet carries."""

    DATA_LEADER = 0x01
    DATA_TRAILER = 0x02
    DATA_BLOCK = 0x03
    ALL_IN = 0x04


class GvspPayloadType(IntEnum):
    """Payload announced by a data leader."""

    UNKNOWN = -1
    IMAGE = 0x0001
    RAWDATA = 0x0002
    FILE = 0x0003
    CHUNK_DATA = 0x0004
    EXTENDED_CHUNK_DATA = 0x0005
    JPEG = 0x0006
    JPEG2000 = 0x0007
    H264 = 0x0008
    MULTIZONE_IMAGE = 0x0009
    IMAGE_EXTENDED_CHUNK = 0x4001


class GvspPacketType(IntEnum):
    """Status word that starts every stream packet."""

    OK = 0x0000
    RESEND = 0x0100
    PACKET_UNAVAILABLE = 0x800C


def _content_type(value: int) -> GvspContentType | int:
    try:
        return GvspContentType(value)
    except ValueError:
        return value


@dataclass(frozen=True)
class GvspPacket:
    """A decoded stream packet: its ids, content type and payload bytes."""

    status: int
    extended_ids: bool
    content_type: GvspContentType | int
    frame_id: int
    packet_id: int
    data: bytes

    @property
    def is_error(self) -> bool:
        """True when the status word marks the packet as an error."""
        return self.status == GvcpPacketType.ERROR

    @property
    def data_size(self) -> int:
        return len(self.data)

    @classmethod
    def parse(cls, data: bytes) -> "GvspPacket":
        """Decode a stream packet in either the standard or the extended id layout."""
        if len(data) < _HEADER.size:
            raise ValueError(
                f"GVSP packet too short: {len(data)} bytes, header needs {_HEADER.size}"
            )
        extended = bool(data[4] & EXTENDED_ID_MODE_MASK)
        if extended:
            if len(data) < _EXTENDED_HEADER.size:
                raise ValueError(
                    f"extended GVSP packet too short: {len(data)} bytes, "
                    f"header needs {_EXTENDED_HEADER.size}"
                )
            status, _flags, info, frame_id, packet_id = _EXTENDED_HEADER.unpack_from(data)
            payload = bytes(data[_EXTENDED_HEADER.size :])
        else:
            status, frame_id, info = _HEADER.unpack_from(data)
            packet_id = info & PACKET_ID_MASK
            payload = bytes(data[_HEADER.size :])
        content = (info & CONTENT_TYPE_MASK) >> CONTENT_TYPE_POS
        return cls(
            status=status,
            extended_ids=extended,
            content_type=_content_type(content),
            frame_id=frame_id,
            packet_id=packet_id,
            data=payload,
        )


@dataclass(frozen=True)
class DataLeader:
    """Image description sent at the start of every frame."""

    flags: int
    raw_payload_type: int
    timestamp: int
    pixel_format: int
    width: int
    height: int
    x_offset: int
    y_offset: int

    SIZE = _LEADER.size

    @property
    def payload_type(self) -> GvspPayloadType:
        """IMAGE for image and file payloads, UNKNOWN for everything else."""
        if self.raw_payload_type in (GvspPayloadType.IMAGE, GvspPayloadType.FILE):
            return GvspPayloadType.IMAGE
        return GvspPayloadType.UNKNOWN

    @classmethod
    def parse(cls, data: bytes) -> "DataLeader":
        """Decode a leader from the payload of a DATA_LEADER packet."""
        if len(data) < _LEADER.size:
            raise ValueError(
                f"data leader too short: {len(data)} bytes, needs {_LEADER.size}"
            )
        (flags, payload_type, ts_high, ts_low, pixel_format,
         width, height, x_offset, y_offset) = _LEADER.unpack_from(data)
        return cls(
            flags=flags,
            raw_payload_type=payload_type,
            timestamp=(ts_high << 32) | ts_low,
            pixel_format=pixel_format,
            width=width,
            height=height,
            x_offset=x_offset,
            y_offset=y_offset,
        )

    def timestamp_ns(self, tick_frequency: int) -> int:
        """Device timestamp in nanoseconds; 0 when the tick frequency is unknown."""
        if tick_frequency < 1:
            return 0
        seconds, rest = divmod(self.timestamp, tick_frequency)
        return seconds * NS_PER_SECOND + (rest * NS_PER_SECOND) // tick_frequency


@dataclass
class Frame:
    """A frame being assembled from stream packets."""

    frame_id: int
    extended_ids: bool = False
    data: bytearray = field(default_factory=bytearray)
    leader: DataLeader | None = None
    error_packet_received: bool = False
    trailer_received: bool = False

    @property
    def size(self) -> int:
        return len(self.data)


class FrameAssembler:
    """Collects stream packets into frames.

    A packet whose frame id is larger than any seen so far starts a new frame;
    :meth:`feed` then hands back the frame it replaces.
    """

    def __init__(self, tick_frequency: int = 0, max_frame_size: int = MAX_FRAME_SIZE) -> None:
        self.tick_frequency = tick_frequency
        self.max_frame_size = max_frame_size
        self.frame: Frame | None = None
        self.last_frame_id = 0
        self.received_packets = 0
        self.error_packets = 0
        self.ignored_packets = 0

    def feed(self, packet: GvspPacket | bytes) -> Frame | None:
        """Take one packet; return the previous frame when a new one begins."""
        if not isinstance(packet, GvspPacket):
            packet = GvspPacket.parse(packet)
        self.received_packets += 1

        finished: Frame | None = None
        if packet.frame_id > self.last_frame_id:
            finished = self.frame
            log.info("New frame %d found", packet.frame_id)
            self.frame = Frame(frame_id=packet.frame_id, extended_ids=packet.extended_ids)
            self.last_frame_id = packet.frame_id

        frame = self.frame
        if frame is None:
            log.debug("ignore packet")
            self.ignored_packets += 1
            return finished

        if packet.is_error:
            log.warning("error packet received")
            self.error_packets += 1
            frame.error_packet_received = True
            return finished

        content = packet.content_type
        if content == GvspContentType.DATA_LEADER:
            self._leader(frame, packet)
        elif content == GvspContentType.DATA_BLOCK:
            self._block(frame, packet)
        elif content == GvspContentType.DATA_TRAILER:
            frame.trailer_received = True
            log.info("%d frame->real_size = %d", int(frame.error_packet_received), frame.size)
        else:
            self.ignored_packets += 1
        return finished

    def _leader(self, frame: Frame, packet: GvspPacket) -> None:
        leader = DataLeader.parse(packet.data)
        frame.leader = leader
        if leader.payload_type == GvspPayloadType.IMAGE:
            log.info(
                "Image data (timestamp = %d): width = %d, height = %d, "
                "offset_x = %d, offset_y = %d, pixel_format = 0x%x",
                leader.timestamp_ns(self.tick_frequency),
                leader.width,
                leader.height,
                leader.x_offset,
                leader.y_offset,
                leader.pixel_format,
            )
        else:
            log.warning("Strange payload type")

    def _block(self, frame: Frame, packet: GvspPacket) -> None:
        room = self.max_frame_size - frame.size
        if packet.data_size > room:
            log.warning("frame %d overflows %d bytes", frame.frame_id, self.max_frame_size)
            frame.error_packet_received = True
            frame.data += packet.data[:room]
            return
        frame.data += packet.data