"""Shared fixtures for the observer test suite."""

import pytest

from znodewatch.config import ObserverConfig
from znodewatch.listeners import ListenerRegistry
from znodewatch.observer import StateObserver
from znodewatch.testing import InMemoryCoordinationService, RecordingListener


@pytest.fixture
def service():
    return InMemoryCoordinationService()


@pytest.fixture
def recorder():
    return RecordingListener()


@pytest.fixture
def registry(recorder):
    return ListenerRegistry([recorder])


@pytest.fixture
def connected_client(service):
    client = service.client("zk.test:2181", 30.0)
    client.connect(1.0)
    yield client
    client.close()


@pytest.fixture
def make_observer(service, registry):
    """Build observers wired to the in-memory service; stopped on teardown."""

    observers = []

    def factory(depth=3, root_path="/", client_factory=None):
        config = ObserverConfig(hosts="zk.test:2181", depth=depth, root_path=root_path)
        observer = StateObserver(
            config,
            registry,
            client_factory=client_factory or service.client,
        )
        observers.append(observer)
        return observer

    yield factory

    for observer in observers:
        observer.stop()
