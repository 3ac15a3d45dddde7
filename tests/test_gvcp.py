import pytest

from gigecap.gvcp import (
    DeviceInfo,
    GvcpCommand,
    GvcpFlags,
    GvcpHeader,
    GvcpPacketType,
    build_discovery_packet,
    build_read_register_packet,
    build_write_register_packet,
    next_packet_id,
    hex_dump,
    parse_discovery_ack,
    parse_register_ack,
)


def _discovery_ack(vendor=b"Acme", model=b"Cam-1", serial=b"SN0000", user=b"left",
                   mac=bytes([0x02, 0, 0, 0, 0, 0x01]), command=GvcpCommand.DISCOVERY_ACK,
                   ident=0xFFFF):
    data = bytearray(0xF8)
    data[0x48:0x48 + len(vendor)] = vendor
    data[0x68:0x68 + len(model)] = model
    data[0xD8:0xD8 + len(serial)] = serial
    data[0xE8:0xE8 + len(user)] = user
    data[8 + 2:8 + 8] = mac
    header = GvcpHeader(GvcpPacketType.ACK, 0, command, len(data), ident)
    return header.pack() + bytes(data)


def test_discovery_packet_wire_bytes():
    assert build_discovery_packet() == bytes([0x42, 0x01, 0x00, 0x02, 0x00, 0x00, 0xFF, 0xFF])


def test_header_round_trip():
    header = GvcpHeader(0x42, 0x01, 0x0080, 4, 0xF001)
    packed = header.pack()
    assert len(packed) == GvcpHeader.SIZE
    assert GvcpHeader.unpack(packed) == header


def test_header_unpack_too_short():
    with pytest.raises(ValueError):
        GvcpHeader.unpack(b"\x42\x01\x00")


def test_read_register_packet_layout():
    packet = build_read_register_packet(0x934, 0xF000)
    header = GvcpHeader.unpack(packet)
    assert header.packet_type == GvcpPacketType.CMD
    assert header.packet_flags == GvcpFlags.ACK_REQUIRED
    assert header.command == GvcpCommand.READ_REG_CMD
    assert header.size == 4
    assert header.id == 0xF000
    assert packet[GvcpHeader.SIZE:] == (0x934).to_bytes(4, "big")


def test_write_register_packet_layout():
    packet = build_write_register_packet(0xA00, 0x02, 0xF003)
    header = GvcpHeader.unpack(packet)
    assert header.command == GvcpCommand.WRITE_REG_CMD
    assert header.size == 8
    assert len(packet) == GvcpHeader.SIZE + 8
    assert packet[8:12] == (0xA00).to_bytes(4, "big")
    assert packet[12:16] == (0x02).to_bytes(4, "big")


def test_register_ack_value():
    ack = GvcpHeader(GvcpPacketType.ACK, 0, GvcpCommand.READ_REG_ACK, 4, 0xF000).pack()
    ack += (0xC2000610).to_bytes(4, "big")
    assert parse_register_ack(ack) == 0xC2000610


def test_register_ack_error_status():
    ack = GvcpHeader(GvcpPacketType.ERROR, 0, GvcpCommand.READ_REG_ACK, 4, 0xF000).pack()
    ack += bytes(4)
    with pytest.raises(ValueError):
        parse_register_ack(ack)


def test_register_ack_too_short():
    ack = GvcpHeader(GvcpPacketType.ACK, 0, GvcpCommand.READ_REG_ACK, 0, 0xF000).pack()
    with pytest.raises(ValueError):
        parse_register_ack(ack)


def test_parse_discovery_ack_fields():
    info = parse_discovery_ack(_discovery_ack())
    assert info.vendor == "Acme"
    assert info.model == "Cam-1"
    assert info.serial == "SN0000"
    assert info.user_id == "left"
    assert info.mac == "02:00:00:00:00:01"


def test_parse_discovery_ack_full_width_field_is_cut():
    info = parse_discovery_ack(_discovery_ack(serial=b"S" * 16, user=b"U" * 16))
    assert info.serial == "S" * 16
    assert info.user_id == "U" * 16


def test_parse_discovery_ack_other_command_is_empty():
    info = parse_discovery_ack(_discovery_ack(command=GvcpCommand.READ_REG_ACK))
    assert info == DeviceInfo()


def test_parse_discovery_ack_wrong_id_is_empty():
    info = parse_discovery_ack(_discovery_ack(ident=0x0001))
    assert info.vendor == ""
    assert info.mac == ""


def test_parse_discovery_ack_truncated():
    with pytest.raises(ValueError):
        parse_discovery_ack(_discovery_ack()[:40])


def test_summary_lines():
    info = DeviceInfo(vendor="Acme", model="Cam-1", serial="SN0000", user_id="left",
                      mac="02:00:00:00:00:01", ip="169.254.2.100", port=3956)
    lines = info.summary().split("\n")
    assert lines[0] == "\t======= Device Summary ======"
    assert lines[1] == "\tIP/Port:\t169.254.2.100:3956"
    assert lines[2] == "\tVendor:\tAcme"
    assert lines[6] == "\tMac:\t02:00:00:00:00:01"


@pytest.mark.parametrize("start", [0, 0xF000, 0xF123, 0xFFFE, 0xFFFF])
def test_next_packet_id_stays_in_range(start):
    nxt = next_packet_id(start)
    assert 0xF000 <= nxt <= 0xFFFF
    assert (nxt & 0xFFF) == ((start + 1) & 0xFFF)


def test_next_packet_id_wraps():
    assert next_packet_id(0xFFFF) == 0xF000


def test_hex_dump():
    assert hex_dump("data", b"\x00\xab\x10") == "data: 00 ab 10 "
    assert hex_dump("data", None) == "data: <null>"
    assert hex_dump("header", b"") == "header: "