"""Shared constants for the Digital Bitbox HID protocol.

Wire layout and key-derivation parameters match the firmware's
U2F-style HID framing (``usb.c`` / ``u2f_hid.h``) and the desktop
client's crypto setup.
"""

# =========================================================================
# USB identity
# =========================================================================

DBB_VID = 0x03EB
DBB_PID = 0x2402

# Windows/macOS report the vendor usage page, Linux reports the interface
DBB_USAGE_PAGE = 0xFFFF
DBB_INTERFACE = 0

# =========================================================================
# HID framing
# =========================================================================

USB_REPORT_SIZE = 64

# Hardware-wallet channel id (big-endian on the wire)
HWW_CID = 0xFF000000

# U2FHID_TYPE_INIT | U2FHID_VENDOR_FIRST | 0x01
U2FHID_TYPE_INIT = 0x80
U2FHID_VENDOR_FIRST = U2FHID_TYPE_INIT | 0x40
HWW_CMD = U2FHID_VENDOR_FIRST | 0x01   # 0xC1

INIT_HEADER_SIZE = 7    # cid(4) + cmd(1) + len(2)
CONT_HEADER_SIZE = 5    # cid(4) + seq(1)

INIT_PAYLOAD_SIZE = USB_REPORT_SIZE - INIT_HEADER_SIZE   # 57
CONT_PAYLOAD_SIZE = USB_REPORT_SIZE - CONT_HEADER_SIZE   # 59

MAX_SEQUENCE = 0xFF
MAX_DECLARED_LENGTH = 0xFFFF   # u16 length field
# largest message the sequence space can carry: 57 + 256 * 59 = 15161
MAX_MESSAGE_SIZE = INIT_PAYLOAD_SIZE + (MAX_SEQUENCE + 1) * CONT_PAYLOAD_SIZE

# Padding byte for unused report space (not 0x00, so short payloads stand out)
FILLER_BYTE = 0xEE

# =========================================================================
# Crypto
# =========================================================================

AES_BLOCK_SIZE = 16
AES_KEY_SIZE = 32
HMAC_SIZE = 32

# Firmware >= 5.0.0 uses split encryption/authentication keys + HMAC tag
AUTHENTICATED_MIN_VERSION = (5, 0, 0)

# Wallet seed key stretching (PBKDF2)
STRETCH_SALT = b"Digital Bitbox"
STRETCH_ITERATIONS = 20480
STRETCH_KEY_SIZE = 64
STRETCH_HASH = "sha512"

# =========================================================================
# Command client
# =========================================================================

# Device and wallet names: 1-31 of [0-9A-Za-z_ -]
NAME_PATTERN = r"^[0-9A-Za-z_ -]{1,31}$"

# ping reply of a device that already has a password
PING_PASSWORD_SET = "password"

RESET_TOKEN = "__ERASE__"

BACKUP_SUFFIX = ".pdf"

# Default per-frame read timeout (ms); 0 disables the timeout
DEFAULT_READ_TIMEOUT_MS = 60000
