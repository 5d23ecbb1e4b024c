"""
Tests for cli -- dbb command-line interface argument parsing and dispatch.

Tests cover:
- main() with no args (prints help, returns 0)
- --version flag
- Subcommand dispatch (detect, ping, update-password, info, name, xpub, sign, raw,
  reset, config)
- detect() with mocked find_devices
- _run_secure() password handling with a mocked client
- update_password() new-password prompt
- configure() with a mocked settings object
"""

import io
import unittest
from contextlib import redirect_stdout
from unittest.mock import MagicMock, patch

from dbb.cli import (
    _get_password,
    _print_result,
    _run_secure,
    configure,
    detect,
    main,
    ping,
    raw,
    reset_device,
    update_password,
)
from dbb.client import CommandResult
from dbb.exceptions import DeviceReportedError, DeviceUnavailable
from dbb.hid_device import DetectedDevice

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_client(result=None):
    """Client whose every operation returns *result*."""
    client = MagicMock()
    result = result or CommandResult.success({"ok": True})
    for op in ('ping', 'device_info', 'get_name', 'set_name', 'create_wallet',
               'get_extended_public_key', 'sign', 'send_raw', 'reset',
               'create_password'):
        getattr(client, op).return_value = result
    client.set_password.return_value = CommandResult.success({})
    return client


def _quiet(fn, *args, **kwargs):
    out = io.StringIO()
    with redirect_stdout(out):
        code = fn(*args, **kwargs)
    return code, out.getvalue()


class TestMainEntryPoint(unittest.TestCase):
    """Test main() CLI dispatch."""

    def test_no_args_prints_help(self):
        code, out = _quiet(main, [])
        self.assertEqual(code, 0)
        self.assertIn('usage', out)

    def test_version_flag(self):
        with self.assertRaises(SystemExit) as ctx, redirect_stdout(io.StringIO()):
            main(['--version'])
        self.assertEqual(ctx.exception.code, 0)

    def test_detect_dispatches(self):
        with patch('dbb.cli.detect', return_value=0) as mock_detect:
            self.assertEqual(main(['detect']), 0)
        mock_detect.assert_called_once_with()

    def test_ping_dispatches_backend(self):
        with patch('dbb.cli.ping', return_value=0) as mock_ping:
            main(['--backend', 'pyusb', 'ping'])
        mock_ping.assert_called_once_with(backend='pyusb')

    def test_name_read(self):
        with patch('dbb.cli.name', return_value=0) as mock_name:
            main(['-p', 'pw', 'name'])
        mock_name.assert_called_once_with(None, password='pw', backend=None)

    def test_name_set(self):
        with patch('dbb.cli.name', return_value=0) as mock_name:
            main(['name', 'My Wallet'])
        mock_name.assert_called_once_with('My Wallet', password=None, backend=None)

    def test_sign_dispatches(self):
        with patch('dbb.cli.sign', return_value=0) as mock_sign:
            main(['sign', "m/44'/0'/0'/0/0", 'ab' * 32])
        mock_sign.assert_called_once_with("m/44'/0'/0'/0/0", 'ab' * 32,
                                          password=None, backend=None)

    def test_raw_plain(self):
        with patch('dbb.cli.raw', return_value=0) as mock_raw:
            main(['raw', '{"led":"blink"}', '--plain'])
        mock_raw.assert_called_once_with('{"led":"blink"}', plain=True,
                                         password=None, backend=None)

    def test_reset_yes(self):
        with patch('dbb.cli.reset_device', return_value=0) as mock_reset:
            main(['reset', '--yes'])
        mock_reset.assert_called_once_with(yes=True, password=None, backend=None)

    def test_update_password_dispatches(self):
        with patch('dbb.cli.update_password', return_value=0) as mock_update:
            main(['-p', 'old', 'update-password', '--new', 'fresh'])
        mock_update.assert_called_once_with(password='old', new_password='fresh',
                                            backend=None)

    def test_config_dispatches(self):
        with patch('dbb.cli.configure', return_value=0) as mock_conf:
            main(['config', '--timeout', '5000'])
        mock_conf.assert_called_once_with(timeout=5000, backend=None)


class TestDetect(unittest.TestCase):
    """Test detect() command."""

    def test_no_devices(self):
        with patch('dbb.hid_device.find_devices', return_value=[]):
            code, out = _quiet(detect)
        self.assertEqual(code, 1)
        self.assertIn('No Digital Bitbox', out)

    def test_lists_devices(self):
        dev = DetectedDevice(path=b'/dev/hidraw3', serial='dbb.fw:v5.0.0',
                             firmware_version='5.0.0')
        with patch('dbb.hid_device.find_devices', return_value=[dev]):
            code, out = _quiet(detect)
        self.assertEqual(code, 0)
        self.assertIn('03eb:2402', out)
        self.assertIn('firmware=5.0.0', out)


class TestPassword(unittest.TestCase):
    """Test _get_password() sources."""

    def test_argument_wins(self):
        with patch.dict('os.environ', {'DBB_PASSWORD': 'env'}):
            self.assertEqual(_get_password('arg'), 'arg')

    def test_environment(self):
        with patch.dict('os.environ', {'DBB_PASSWORD': 'env'}):
            self.assertEqual(_get_password(), 'env')

    def test_prompt(self):
        with patch.dict('os.environ', {}, clear=True), \
             patch('dbb.cli.getpass.getpass', return_value='typed'):
            self.assertEqual(_get_password(), 'typed')

    def test_prompt_confirm_mismatch(self):
        with patch.dict('os.environ', {}, clear=True), \
             patch('dbb.cli.getpass.getpass', side_effect=['one', 'two']):
            with self.assertRaises(ValueError):
                _get_password(confirm=True)


class TestCommands(unittest.TestCase):
    """Test command functions with a mocked client."""

    def test_print_result_ok(self):
        code, out = _quiet(_print_result, CommandResult.success({"name": "x"}))
        self.assertEqual(code, 0)
        self.assertIn('"name": "x"', out)

    def test_print_result_error(self):
        err = DeviceReportedError({"error": {"code": 109, "message": "Incorrect password"}})
        code, out = _quiet(_print_result, CommandResult.failure(err))
        self.assertEqual(code, 1)
        self.assertIn('Error (device)', out)

    def test_run_secure_sets_password_and_closes(self):
        client = _mock_client()
        with patch('dbb.cli._open_client', return_value=client):
            code, _ = _quiet(_run_secure, lambda c: c.device_info(), 'pw')
        self.assertEqual(code, 0)
        client.set_password.assert_called_once_with('pw')
        client.device_info.assert_called_once_with()
        client.close.assert_called_once_with()

    def test_run_secure_no_device(self):
        with patch('dbb.cli._open_client', side_effect=DeviceUnavailable("not found")):
            code, out = _quiet(_run_secure, lambda c: c.device_info(), 'pw')
        self.assertEqual(code, 1)
        self.assertIn('not found', out)

    def test_ping_reports_state(self):
        client = _mock_client(CommandResult.success({"ping": "password"}))
        client.state.initialized = True
        with patch('dbb.cli._open_client', return_value=client):
            code, out = _quiet(ping)
        self.assertEqual(code, 0)
        self.assertIn('Password set', out)
        client.close.assert_called_once_with()

    def test_raw_plain_skips_password(self):
        client = _mock_client()
        with patch('dbb.cli._open_client', return_value=client):
            code, _ = _quiet(raw, '{"led":"blink"}', plain=True)
        self.assertEqual(code, 0)
        client.set_password.assert_not_called()
        client.send_raw.assert_called_once_with('{"led":"blink"}', use_encryption=False)

    def test_reset_aborted(self):
        with patch('builtins.input', return_value='no'), \
             patch('dbb.cli._open_client') as mock_open:
            code, out = _quiet(reset_device)
        self.assertEqual(code, 1)
        self.assertIn('Aborted', out)
        mock_open.assert_not_called()


class TestUpdatePassword(unittest.TestCase):
    """Test update_password() with a mocked client."""

    def test_unlocks_with_current_and_sends_new(self):
        client = _mock_client()
        client.update_password.return_value = CommandResult.success({"password": "success"})
        with patch('dbb.cli._open_client', return_value=client):
            code, _ = _quiet(update_password, password='old', new_password='fresh')
        self.assertEqual(code, 0)
        client.set_password.assert_called_once_with('old')
        client.update_password.assert_called_once_with('fresh')
        client.close.assert_called_once_with()

    def test_prompts_for_new_password(self):
        client = _mock_client()
        client.update_password.return_value = CommandResult.success({})
        with patch('dbb.cli._open_client', return_value=client), \
             patch('dbb.cli.getpass.getpass', side_effect=['fresh', 'fresh']):
            code, _ = _quiet(update_password, password='old')
        self.assertEqual(code, 0)
        client.update_password.assert_called_once_with('fresh')

    def test_new_password_mismatch(self):
        with patch('dbb.cli._open_client') as mock_open, \
             patch('dbb.cli.getpass.getpass', side_effect=['one', 'two']):
            code, out = _quiet(update_password, password='old')
        self.assertEqual(code, 1)
        self.assertIn('do not match', out)
        mock_open.assert_not_called()


class TestConfigure(unittest.TestCase):
    """Test configure() with a mocked settings object."""

    def test_show(self):
        mock_settings = MagicMock(backend='hidapi', read_timeout_ms=60000)
        with patch('dbb.conf.settings', mock_settings):
            code, out = _quiet(configure)
        self.assertEqual(code, 0)
        self.assertIn('60000 ms', out)
        mock_settings.set_read_timeout.assert_not_called()

    def test_set_timeout_and_backend(self):
        mock_settings = MagicMock(backend='pyusb', read_timeout_ms=500)
        with patch('dbb.conf.settings', mock_settings):
            code, _ = _quiet(configure, timeout=500, backend='pyusb')
        self.assertEqual(code, 0)
        mock_settings.set_read_timeout.assert_called_once_with(500)
        mock_settings.set_backend.assert_called_once_with('pyusb')

    def test_invalid_timeout(self):
        mock_settings = MagicMock()
        mock_settings.set_read_timeout.side_effect = ValueError("timeout must be >= 0")
        with patch('dbb.conf.settings', mock_settings):
            code, out = _quiet(configure, timeout=-1)
        self.assertEqual(code, 1)
        self.assertIn('timeout must be', out)


if __name__ == '__main__':
    unittest.main()
