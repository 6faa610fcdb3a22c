import pytest

from probe_monitor.models import DeviceIdentity
from probe_monitor.tracker import DeviceStateTracker


@pytest.fixture
def identity_factory():
    """A factory for DeviceIdentity objects with sensible defaults."""

    def _factory(**kwargs):
        defaults = {
            "address": "AA:BB:CC:DD:EE:01",
            "name": "cA0012345678",
            "service_uuids": frozenset(),
        }
        defaults.update(kwargs)
        return DeviceIdentity(**defaults)

    return _factory


@pytest.fixture
def meatstick_identity(identity_factory):
    return identity_factory()


@pytest.fixture
def meater_identity(identity_factory):
    return identity_factory(address="AA:BB:CC:DD:EE:02", name="MEATER")


@pytest.fixture
def tracker():
    return DeviceStateTracker()
