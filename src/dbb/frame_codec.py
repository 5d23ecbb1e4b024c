"""USB report framing for the Digital Bitbox HID channel.

Messages are split into fixed 64-byte reports::

    initial:       [CID:4 BE][CMD 0xC1][LEN:2 BE][payload ... 57 bytes]
    continuation:  [CID:4 BE][SEQ]               [payload ... 59 bytes]

SEQ starts at 0 for the first continuation report of every message.
Unused trailing bytes are filled with 0xEE.

Everything here is pure: no I/O, no state.
"""
from __future__ import annotations

import struct
from typing import Iterable

from .constants import (
    CONT_HEADER_SIZE,
    FILLER_BYTE,
    HWW_CID,
    HWW_CMD,
    INIT_HEADER_SIZE,
    MAX_DECLARED_LENGTH,
    MAX_MESSAGE_SIZE,
    MAX_SEQUENCE,
    USB_REPORT_SIZE,
)
from .exceptions import FramingError

_INIT_STRUCT = struct.Struct(">IBH")
_CONT_STRUCT = struct.Struct(">IB")


# =========================================================================
# Headers
# =========================================================================

def encode_initial(total_length: int) -> bytes:
    """Build the 7-byte initial-frame header for a message of *total_length* bytes."""
    if not 0 <= total_length <= MAX_DECLARED_LENGTH:
        raise ValueError(f"message length out of range: {total_length}")
    return _INIT_STRUCT.pack(HWW_CID, HWW_CMD, total_length)


def encode_continuation(sequence: int) -> bytes:
    """Build the 5-byte continuation-frame header.

    A sequence beyond 255 cannot be represented on the wire; callers that
    hit this are sending a message the protocol cannot carry.
    """
    if not 0 <= sequence <= MAX_SEQUENCE:
        raise ValueError(f"continuation sequence out of range: {sequence}")
    return _CONT_STRUCT.pack(HWW_CID, sequence)


# =========================================================================
# Packing
# =========================================================================

def pack_frame(header: bytes, body: bytes, offset: int = 0,
               report_size: int = USB_REPORT_SIZE) -> tuple[bytes, int]:
    """Pack *header* plus as much of ``body[offset:]`` as fits into one report.

    Returns:
        ``(frame, consumed)`` where *frame* is exactly *report_size* bytes
        and *consumed* is the number of body bytes it carries.
    """
    room = report_size - len(header)
    if room < 0:
        raise ValueError("header larger than report")
    chunk = body[offset:offset + room]
    frame = header + chunk + bytes([FILLER_BYTE]) * (room - len(chunk))
    return frame, len(chunk)


def chunk_message(data: bytes, report_size: int = USB_REPORT_SIZE) -> list[bytes]:
    """Split a whole message into initial + continuation reports."""
    if len(data) > MAX_MESSAGE_SIZE:
        raise ValueError(f"message too large: {len(data)} bytes")

    frame, offset = pack_frame(encode_initial(len(data)), data, 0, report_size)
    frames = [frame]
    sequence = 0
    while offset < len(data):
        frame, consumed = pack_frame(
            encode_continuation(sequence), data, offset, report_size,
        )
        frames.append(frame)
        offset += consumed
        sequence += 1
    return frames


# =========================================================================
# Unpacking
# =========================================================================

def _check_channel(frame: bytes) -> None:
    cid = struct.unpack_from(">I", frame, 0)[0]
    if cid != HWW_CID:
        raise FramingError(f"USB channel id mismatch: {cid:#010x}")


def unpack_initial(frame: bytes) -> tuple[int, bytes]:
    """Parse an initial response frame.

    Returns:
        ``(declared_length, payload)`` where *payload* is everything after
        the header (may include padding past *declared_length*).

    Raises:
        FramingError: frame too short, wrong channel id or command byte.
    """
    if len(frame) < INIT_HEADER_SIZE:
        raise FramingError(f"initial frame too short ({len(frame)} bytes)")
    _check_channel(frame)
    _, cmd, declared = _INIT_STRUCT.unpack_from(frame, 0)
    if cmd != HWW_CMD:
        raise FramingError(
            f"USB command frame mismatch ({cmd:#04x}, expected {HWW_CMD:#04x})"
        )
    return declared, bytes(frame[INIT_HEADER_SIZE:])


def unpack_continuation(frame: bytes) -> bytes:
    """Parse a continuation response frame and return its payload bytes."""
    if len(frame) < CONT_HEADER_SIZE:
        raise FramingError(f"continuation frame too short ({len(frame)} bytes)")
    _check_channel(frame)
    return bytes(frame[CONT_HEADER_SIZE:])


def reassemble(frames: Iterable[bytes]) -> bytes:
    """Rebuild a message from its frames (first one must be the initial frame).

    Raises:
        FramingError: frames run out before the declared length is reached.
    """
    it = iter(frames)
    try:
        first = next(it)
    except StopIteration:
        raise FramingError("no frames") from None

    declared, payload = unpack_initial(first)
    buf = bytearray(payload[:declared])
    for frame in it:
        if len(buf) >= declared:
            break
        buf += unpack_continuation(frame)[:declared - len(buf)]
    if len(buf) != declared:
        raise FramingError(f"short message: {len(buf)} of {declared} bytes")
    return bytes(buf)
