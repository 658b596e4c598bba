"""Shared fixtures: fake clock, mocked vCenter connections and a provider client built on them."""

import copy
from unittest.mock import MagicMock

import pytest

from provider import ProviderClient
from state import StateStore


class FakeClock:
    """Monotonic clock that only advances when sleep is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class MemoryStateStore(StateStore):
    """State store that keeps written documents in a list."""

    def __init__(self, document=None):
        super().__init__()
        self.initial = document
        self.writes = []

    def _read(self):
        return self.initial

    def _write(self, document):
        self.writes.append(copy.deepcopy(document))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vim_client():
    client = MagicMock(name="vim_client")
    client.api_version.return_value = (8, 0, 3)
    return client


@pytest.fixture
def rest():
    return MagicMock(name="rest_client")


@pytest.fixture
def client(vim_client, rest, clock):
    return ProviderClient(vim_client, rest, sleep=clock.sleep, clock=clock)


@pytest.fixture
def memory_state():
    return MemoryStateStore().load()


MANAGER_NAMES = ("clusters", "vsan", "alarms", "networks", "vms", "zones", "namespaces", "supervisors",
                 "config_profiles", "software")


@pytest.fixture
def managed(client):
    """Provider client whose managers are all MagicMocks."""
    for name in MANAGER_NAMES:
        client._managers[name] = MagicMock(name=name)
    return client
