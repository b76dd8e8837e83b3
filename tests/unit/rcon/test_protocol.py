"""Unit tests for the RCON wire format."""

import struct

import pytest


class TestEncodePacket:
    def test_auth_packet_layout(self) -> None:
        from valheim_dsm.rcon import PacketType, encode_packet

        data = encode_packet(1, PacketType.AUTH, "secret")

        assert data == struct.pack("<iii", 16, 1, 3) + b"secret\x00\x00"

    def test_empty_body_is_minimum_size(self) -> None:
        from valheim_dsm.rcon import MIN_PACKET_SIZE, PacketType, encode_packet

        data = encode_packet(7, PacketType.EXEC_COMMAND)

        assert len(data) == 4 + MIN_PACKET_SIZE
        assert struct.unpack_from("<i", data)[0] == MIN_PACKET_SIZE

    def test_body_is_utf8(self) -> None:
        from valheim_dsm.rcon import PacketType, encode_packet

        data = encode_packet(1, PacketType.EXEC_COMMAND, "kick Åsa")

        assert data[12:-2] == "kick Åsa".encode()

    def test_rejects_oversized_body(self) -> None:
        from valheim_dsm.exceptions import RconProtocolError
        from valheim_dsm.rcon import MAX_BODY_SIZE, PacketType, encode_packet

        _ = encode_packet(1, PacketType.EXEC_COMMAND, "x" * MAX_BODY_SIZE)
        with pytest.raises(RconProtocolError, match="too large"):
            _ = encode_packet(1, PacketType.EXEC_COMMAND, "x" * (MAX_BODY_SIZE + 1))


class TestDecodePacket:
    def test_decodes_complete_packet(self) -> None:
        from valheim_dsm.rcon import PacketType, RconPacket, decode_packet, encode_packet

        data = encode_packet(42, PacketType.RESPONSE_VALUE, "Players: 0") + b"trailing"

        decoded = decode_packet(data)

        assert decoded is not None
        packet, consumed = decoded
        assert packet == RconPacket(size=20, request_id=42, type=0, body="Players: 0")
        assert consumed == len(data) - len(b"trailing")

    @pytest.mark.parametrize("cut", [0, 3, 4, 12, 15])
    def test_incomplete_returns_none(self, cut: int) -> None:
        from valheim_dsm.rcon import PacketType, decode_packet, encode_packet

        data = encode_packet(1, PacketType.RESPONSE_VALUE, "hello")

        assert decode_packet(data[:cut]) is None

    @pytest.mark.parametrize("size", [9, 0, -1, 4107])
    def test_rejects_out_of_range_size(self, size: int) -> None:
        from valheim_dsm.exceptions import RconErrorCode, RconProtocolError
        from valheim_dsm.rcon import decode_packet

        with pytest.raises(RconProtocolError) as exc_info:
            _ = decode_packet(struct.pack("<i", size))

        assert exc_info.value.declared_size == size
        assert exc_info.value.code == RconErrorCode.PROTOCOL_ERROR

    def test_invalid_utf8_is_replaced(self) -> None:
        from valheim_dsm.rcon import decode_packet

        data = struct.pack("<iii", 11, 1, 0) + b"\xff\x00\x00"

        decoded = decode_packet(data)

        assert decoded is not None
        assert decoded[0].body == "�"

    def test_auth_response_alias(self) -> None:
        from valheim_dsm.rcon import PacketType

        assert PacketType.AUTH_RESPONSE == PacketType.EXEC_COMMAND == 2


class TestPacketDecoder:
    def test_byte_at_a_time(self) -> None:
        from valheim_dsm.rcon import PacketDecoder, PacketType, encode_packet

        decoder = PacketDecoder()
        data = encode_packet(5, PacketType.RESPONSE_VALUE, "abc")

        packets = []
        for i in range(len(data)):
            packets.extend(decoder.feed(data[i : i + 1]))

        assert [p.body for p in packets] == ["abc"]
        assert decoder.pending == 0

    def test_multiple_packets_in_one_chunk(self) -> None:
        from valheim_dsm.rcon import PacketDecoder, PacketType, encode_packet

        decoder = PacketDecoder()
        data = b"".join(encode_packet(i, PacketType.RESPONSE_VALUE, f"p{i}") for i in range(3))

        packets = decoder.feed(data + data[:5])

        assert [p.request_id for p in packets] == [0, 1, 2]
        assert decoder.pending == 5

    def test_protocol_error_clears_buffer(self) -> None:
        from valheim_dsm.exceptions import RconProtocolError
        from valheim_dsm.rcon import PacketDecoder

        decoder = PacketDecoder()

        with pytest.raises(RconProtocolError):
            _ = decoder.feed(struct.pack("<i", 99999) + b"junk")

        assert decoder.pending == 0

    def test_reset(self) -> None:
        from valheim_dsm.rcon import PacketDecoder

        decoder = PacketDecoder()
        _ = decoder.feed(b"\x0a\x00")

        decoder.reset()

        assert decoder.pending == 0
