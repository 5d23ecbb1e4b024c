"""dbb-linux version information."""

__version__ = "0.3.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Version history:
# 0.1.0 - Initial release: HID framing, plain ping/password, legacy AES channel
# 0.2.0 - Firmware 5.0.0 support: split keys + HMAC-SHA256 authenticated channel,
#         device info/name/xpub/sign/reset/create-wallet commands
# 0.3.0 - Typed errors + CommandResult, per-frame read timeout, pyusb backend,
#         explicit Session object (no module-level device state), CLI
