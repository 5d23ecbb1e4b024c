#!/usr/bin/env python3
"""
Digital Bitbox - Command Line Interface

Entry point for the dbb-linux package.
"""

import argparse
import getpass
import json
import logging
import os
import sys

from dbb.__version__ import __version__

PASSWORD_ENV = "DBB_PASSWORD"


def _setup_logging(verbose=0):
    if verbose >= 2:
        logging.basicConfig(level=logging.DEBUG, format='[%(levelname)s] %(name)s: %(message)s')
    elif verbose == 1:
        logging.basicConfig(level=logging.INFO, format='[%(levelname)s] %(message)s')
    else:
        logging.basicConfig(level=logging.WARNING)


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="dbb",
        description="Digital Bitbox hardware wallet client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    dbb detect                     List connected devices
    dbb ping                       Check whether a password is set
    dbb -p old update-password     Change the password (prompts for the new one)
    dbb info                       Show device info (asks for password)
    dbb name "My Wallet"           Set the device name
    dbb xpub "m/44'/0'/0'"         Get an extended public key
    dbb raw '{"led":"blink"}'      Send any command
    dbb config --timeout 30000     Set the read timeout
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv)"
    )
    parser.add_argument("--password", "-p", help=f"Device password (or set {PASSWORD_ENV})")
    parser.add_argument("--backend", "-b", choices=["hidapi", "pyusb"], help="HID backend")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("detect", help="List connected devices")
    subparsers.add_parser("ping", help="Ping the device (no password)")
    subparsers.add_parser("create-password", help="Set the password of a new device")
    update_parser = subparsers.add_parser("update-password",
                                          help="Change the password of an initialized device")
    update_parser.add_argument("--new", dest="new_password",
                               help="New password (prompted if omitted)")
    subparsers.add_parser("info", help="Show device info")

    name_parser = subparsers.add_parser("name", help="Get or set the device name")
    name_parser.add_argument("name", nargs="?", help="New name (omit to read)")

    wallet_parser = subparsers.add_parser("create-wallet", help="Create a new wallet seed")
    wallet_parser.add_argument("name", help="Wallet name (also the backup file name)")

    xpub_parser = subparsers.add_parser("xpub", help="Get an extended public key")
    xpub_parser.add_argument("keypath", help="Derivation path, e.g. m/44'/0'/0'")

    sign_parser = subparsers.add_parser("sign", help="Sign a hash")
    sign_parser.add_argument("keypath", help="Derivation path of the signing key")
    sign_parser.add_argument("hash", help="Hex hash to sign")

    raw_parser = subparsers.add_parser("raw", help="Send a raw JSON command")
    raw_parser.add_argument("json", help="JSON command body")
    raw_parser.add_argument("--plain", action="store_true", help="Send unencrypted")

    reset_parser = subparsers.add_parser("reset", help="Erase the device")
    reset_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    config_parser = subparsers.add_parser("config", help="Show or change settings")
    config_parser.add_argument("--timeout", type=int, help="Read timeout in ms (0 = none)")
    config_parser.add_argument("--set-backend", choices=["hidapi", "pyusb"],
                               help="Default HID backend")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    _setup_logging(args.verbose)

    if args.command == "detect":
        return detect()
    elif args.command == "config":
        return configure(timeout=args.timeout, backend=args.set_backend)
    elif args.command == "ping":
        return ping(backend=args.backend)
    elif args.command == "create-password":
        return create_password(password=args.password, backend=args.backend)
    elif args.command == "update-password":
        return update_password(password=args.password, new_password=args.new_password,
                               backend=args.backend)
    elif args.command == "info":
        return device_info(password=args.password, backend=args.backend)
    elif args.command == "name":
        return name(args.name, password=args.password, backend=args.backend)
    elif args.command == "create-wallet":
        return create_wallet(args.name, password=args.password, backend=args.backend)
    elif args.command == "xpub":
        return xpub(args.keypath, password=args.password, backend=args.backend)
    elif args.command == "sign":
        return sign(args.keypath, args.hash, password=args.password, backend=args.backend)
    elif args.command == "raw":
        return raw(args.json, plain=args.plain, password=args.password, backend=args.backend)
    elif args.command == "reset":
        return reset_device(yes=args.yes, password=args.password, backend=args.backend)

    return 0


# =========================================================================
# Helpers
# =========================================================================

def _get_password(password=None, confirm=False):
    """Password from argument, environment, or prompt."""
    if password:
        return password
    if os.environ.get(PASSWORD_ENV):
        return os.environ[PASSWORD_ENV]
    entered = getpass.getpass("Device password: ")
    if confirm and getpass.getpass("Repeat password: ") != entered:
        raise ValueError("Passwords do not match")
    return entered


def _get_new_password(new_password=None):
    """New password from argument or a confirmed prompt."""
    if new_password:
        return new_password
    entered = getpass.getpass("New password: ")
    if getpass.getpass("Repeat new password: ") != entered:
        raise ValueError("Passwords do not match")
    return entered


def _open_client(backend=None):
    from dbb.client import DigitalBitbox, Session

    return DigitalBitbox(Session.open(backend=backend))


def _print_result(result):
    """Print a CommandResult; returns the exit code."""
    if result.ok:
        print(json.dumps(result.value, indent=2))
        return 0
    print(f"Error ({result.kind}): {result.error}")
    return 1


def _run_secure(command, password=None, backend=None):
    """Open the device, set the channel password, run ``command(client)``."""
    from dbb.exceptions import DbbError

    try:
        password = _get_password(password)
        client = _open_client(backend)
    except (DbbError, ValueError, ImportError) as e:
        print(f"Error: {e}")
        return 1
    try:
        unlocked = client.set_password(password)
        if not unlocked.ok:
            return _print_result(unlocked)
        return _print_result(command(client))
    finally:
        client.close()


# =========================================================================
# Commands
# =========================================================================

def detect():
    """List connected devices."""
    from dbb.hid_device import find_devices

    devices = find_devices()
    if not devices:
        print("No Digital Bitbox detected.")
        return 1
    for i, dev in enumerate(devices, 1):
        version = dev.firmware_version or "unknown"
        print(f"[{i}] {dev.vid:04x}:{dev.pid:04x} serial={dev.serial or '-'} "
              f"firmware={version} ({dev.backend})")
    return 0


def configure(timeout=None, backend=None):
    """Show or change persisted settings."""
    from dbb.conf import CONFIG_PATH, settings

    try:
        if timeout is not None:
            settings.set_read_timeout(timeout)
        if backend is not None:
            settings.set_backend(backend)
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    print(f"Config:       {CONFIG_PATH}")
    print(f"Backend:      {settings.backend}")
    print(f"Read timeout: {settings.read_timeout_ms} ms")
    return 0


def ping(backend=None):
    from dbb.exceptions import DbbError

    try:
        client = _open_client(backend)
    except (DbbError, ImportError) as e:
        print(f"Error: {e}")
        return 1
    try:
        result = client.ping()
        code = _print_result(result)
        if result.ok:
            print("Password set" if client.state.initialized else "Device not initialized")
        return code
    finally:
        client.close()


def create_password(password=None, backend=None):
    from dbb.exceptions import DbbError

    try:
        password = _get_password(password, confirm=True)
        client = _open_client(backend)
    except (DbbError, ValueError, ImportError) as e:
        print(f"Error: {e}")
        return 1
    try:
        return _print_result(client.create_password(password))
    finally:
        client.close()


def update_password(password=None, new_password=None, backend=None):
    """Change the device password; the current one unlocks the channel."""
    try:
        new_password = _get_new_password(new_password)
    except ValueError as e:
        print(f"Error: {e}")
        return 1
    return _run_secure(lambda c: c.update_password(new_password), password, backend)


def device_info(password=None, backend=None):
    return _run_secure(lambda c: c.device_info(), password, backend)


def name(new_name=None, password=None, backend=None):
    if new_name is None:
        return _run_secure(lambda c: c.get_name(), password, backend)
    return _run_secure(lambda c: c.set_name(new_name), password, backend)


def create_wallet(wallet_name, password=None, backend=None):
    return _run_secure(lambda c: c.create_wallet(wallet_name), password, backend)


def xpub(keypath, password=None, backend=None):
    return _run_secure(lambda c: c.get_extended_public_key(keypath), password, backend)


def sign(keypath, hash_hex, password=None, backend=None):
    print("Confirm the signature on the device (touch the button).")
    return _run_secure(lambda c: c.sign(keypath, hash_hex), password, backend)


def raw(content, plain=False, password=None, backend=None):
    if plain:
        from dbb.exceptions import DbbError

        try:
            client = _open_client(backend)
        except (DbbError, ImportError) as e:
            print(f"Error: {e}")
            return 1
        try:
            return _print_result(client.send_raw(content, use_encryption=False))
        finally:
            client.close()
    return _run_secure(lambda c: c.send_raw(content, use_encryption=True), password, backend)


def reset_device(yes=False, password=None, backend=None):
    if not yes:
        answer = input("This erases the wallet and password. Type 'yes' to continue: ")
        if answer.strip().lower() != "yes":
            print("Aborted.")
            return 1
    return _run_secure(lambda c: c.reset(), password, backend)


if __name__ == "__main__":
    sys.exit(main())
