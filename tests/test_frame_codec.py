"""Tests for the HID report framing (pure, no I/O)."""

import math
import struct

import pytest

from dbb.constants import (
    CONT_HEADER_SIZE,
    FILLER_BYTE,
    HWW_CID,
    HWW_CMD,
    INIT_HEADER_SIZE,
    MAX_MESSAGE_SIZE,
    USB_REPORT_SIZE,
)
from dbb.exceptions import FramingError
from dbb.frame_codec import (
    chunk_message,
    encode_continuation,
    encode_initial,
    pack_frame,
    reassemble,
    unpack_continuation,
    unpack_initial,
)

# =========================================================================
# Headers
# =========================================================================


class TestHeaders:

    def test_initial_header_bytes(self):
        assert encode_initial(0x0102) == bytes([0xFF, 0x00, 0x00, 0x00, 0xC1, 0x01, 0x02])

    def test_initial_header_length(self):
        assert len(encode_initial(5)) == INIT_HEADER_SIZE

    def test_command_byte_value(self):
        assert HWW_CMD == 0x80 | 0x40 | 0x01 == 0xC1

    def test_initial_header_accepts_full_u16(self):
        assert encode_initial(0xFFFF)[5:] == b'\xFF\xFF'

    def test_initial_length_out_of_range(self):
        with pytest.raises(ValueError):
            encode_initial(0x10000)
        with pytest.raises(ValueError):
            encode_initial(-1)

    def test_continuation_header_bytes(self):
        assert encode_continuation(7) == bytes([0xFF, 0x00, 0x00, 0x00, 0x07])
        assert len(encode_continuation(0)) == CONT_HEADER_SIZE

    def test_continuation_sequence_limit(self):
        encode_continuation(255)
        with pytest.raises(ValueError):
            encode_continuation(256)


# =========================================================================
# pack_frame
# =========================================================================


class TestPackFrame:

    def test_short_body_is_padded(self):
        frame, consumed = pack_frame(encode_initial(3), b'abc')
        assert len(frame) == USB_REPORT_SIZE
        assert consumed == 3
        assert frame[7:10] == b'abc'
        assert frame[10:] == bytes([FILLER_BYTE]) * (USB_REPORT_SIZE - 10)

    def test_padding_is_not_zero(self):
        frame, _ = pack_frame(encode_initial(0), b'')
        assert frame[INIT_HEADER_SIZE:] == b'\xEE' * 57

    def test_long_body_is_truncated(self):
        body = bytes(range(100))
        frame, consumed = pack_frame(encode_initial(100), body)
        assert consumed == 57
        assert frame[7:] == body[:57]

    def test_offset(self):
        body = bytes(range(100))
        frame, consumed = pack_frame(encode_continuation(0), body, offset=57)
        assert consumed == 43
        assert frame[5:48] == body[57:]
        assert frame[48:] == b'\xEE' * 16

    def test_custom_report_size(self):
        frame, consumed = pack_frame(encode_continuation(0), b'x' * 10, report_size=8)
        assert len(frame) == 8
        assert consumed == 3


# =========================================================================
# Chunking
# =========================================================================


class TestChunkMessage:

    def test_empty_message_is_one_frame(self):
        frames = chunk_message(b'')
        assert len(frames) == 1
        assert struct.unpack('>IBH', frames[0][:7]) == (HWW_CID, HWW_CMD, 0)

    @pytest.mark.parametrize("length", [0, 1, 56, 57, 58, 115, 116, 117, 500, 10000])
    def test_continuation_count(self, length):
        frames = chunk_message(b'\x41' * length)
        expected = math.ceil(max(0, length - 57) / 59)
        assert len(frames) - 1 == expected

    def test_continuation_count_all_small_lengths(self):
        for length in range(0, 400):
            frames = chunk_message(b'\x00' * length)
            assert len(frames) - 1 == math.ceil(max(0, length - 57) / 59)

    def test_every_frame_is_report_sized(self):
        for frame in chunk_message(b'z' * 1234):
            assert len(frame) == USB_REPORT_SIZE

    def test_last_frame_tail_is_filler(self):
        length = 57 + 59 + 10
        frames = chunk_message(b'\x01' * length)
        assert frames[-1][5:15] == b'\x01' * 10
        assert frames[-1][15:] == b'\xEE' * (USB_REPORT_SIZE - 15)

    def test_sequence_numbers_are_consecutive(self):
        frames = chunk_message(b'q' * 3000)
        seqs = [f[4] for f in frames[1:]]
        assert seqs == list(range(len(frames) - 1))

    def test_sequence_resets_per_message(self):
        first = chunk_message(b'a' * 200)
        second = chunk_message(b'b' * 200)
        assert first[1][4] == 0
        assert second[1][4] == 0

    def test_every_frame_carries_channel_id(self):
        for frame in chunk_message(b'c' * 500):
            assert frame[:4] == b'\xFF\x00\x00\x00'

    def test_declared_length_is_total(self):
        frames = chunk_message(b'd' * 777)
        assert struct.unpack('>H', frames[0][5:7])[0] == 777

    def test_message_limit_matches_sequence_space(self):
        assert MAX_MESSAGE_SIZE == 57 + 256 * 59 == 15161

    def test_oversized_rejected_before_framing(self):
        with pytest.raises(ValueError, match="too large"):
            chunk_message(b'x' * 20000)

    def test_too_long_for_sequence_space(self):
        # 57 + 256 * 59 bytes fit; one more needs sequence 256
        chunk_message(b'x' * (57 + 256 * 59))
        with pytest.raises(ValueError):
            chunk_message(b'x' * (57 + 256 * 59 + 1))


# =========================================================================
# Unpacking / reassembly
# =========================================================================


class TestUnpack:

    def test_unpack_initial(self):
        frame, _ = pack_frame(encode_initial(4), b'{"a"')
        declared, payload = unpack_initial(frame)
        assert declared == 4
        assert payload[:4] == b'{"a"'
        assert len(payload) == USB_REPORT_SIZE - INIT_HEADER_SIZE

    def test_unpack_initial_too_short(self):
        with pytest.raises(FramingError, match="too short"):
            unpack_initial(b'\xFF\x00\x00\x00\xC1\x00')

    def test_unpack_initial_wrong_channel(self):
        frame = bytearray(pack_frame(encode_initial(1), b'x')[0])
        frame[1] = 0x01
        with pytest.raises(FramingError, match="channel id"):
            unpack_initial(bytes(frame))

    def test_unpack_initial_wrong_command(self):
        frame = bytearray(pack_frame(encode_initial(1), b'x')[0])
        frame[4] = 0x81
        with pytest.raises(FramingError, match="command frame mismatch"):
            unpack_initial(bytes(frame))

    def test_unpack_continuation(self):
        frame, _ = pack_frame(encode_continuation(3), b'hello')
        assert unpack_continuation(frame)[:5] == b'hello'

    def test_unpack_continuation_too_short(self):
        with pytest.raises(FramingError):
            unpack_continuation(b'\xFF\x00\x00\x00')

    def test_unpack_continuation_wrong_channel(self):
        frame, _ = pack_frame(encode_continuation(0), b'x')
        with pytest.raises(FramingError):
            unpack_continuation(b'\x00' + frame[1:])


class TestRoundTrip:

    @pytest.mark.parametrize("length", [0, 1, 57, 58, 116, 117, 999, 4096, 10000])
    def test_reassemble_restores_message(self, length):
        message = bytes((i * 7) & 0xFF for i in range(length))
        assert reassemble(chunk_message(message)) == message

    def test_message_containing_filler_bytes(self):
        message = b'\xEE' * 130
        assert reassemble(chunk_message(message)) == message

    def test_reassemble_ignores_trailing_frames(self):
        frames = chunk_message(b'abc') + chunk_message(b'def')
        assert reassemble(frames) == b'abc'

    def test_reassemble_missing_frame(self):
        frames = chunk_message(b'x' * 200)
        with pytest.raises(FramingError, match="short message"):
            reassemble(frames[:-1])

    def test_reassemble_no_frames(self):
        with pytest.raises(FramingError):
            reassemble([])
