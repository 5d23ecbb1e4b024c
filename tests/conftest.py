"""Shared fixtures: a scripted HID backend and sessions built on it."""
import pytest

from dbb.client import DigitalBitbox, Session
from dbb.transport import Transport
from fakes import FakeHid


@pytest.fixture
def fake_hid():
    return FakeHid()


@pytest.fixture
def make_client():
    """Factory: ``make_client(version=None, password=None) -> (client, fake)``."""
    def _make(version=None, password=None):
        fake = FakeHid()
        session = Session(Transport(fake, read_timeout_ms=100), version=version)
        client = DigitalBitbox(session)
        if password is not None:
            client.set_password(password).unwrap()
        return client, fake
    return _make
