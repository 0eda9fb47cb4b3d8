"""Shared fixtures for the SecureStore tests."""
import pytest

from navigator_securestore import DomainRegistry, Storage, StorageConfig


class DictSecureStore:
    """In-memory stand-in for hardware-backed secure storage."""

    def __init__(self):
        self.data: dict[str, str] = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        if value is None:
            self.data.pop(key, None)
        else:
            self.data[key] = value


@pytest.fixture
def config(tmp_path):
    """Config rooted in a temp dir with no retry delay."""
    return StorageConfig(
        root=tmp_path / "store",
        retry_delay=0.0,
        machine_name="test-host",
        user_name="tester",
    )


@pytest.fixture
def registry():
    return DomainRegistry()


@pytest.fixture
def secure_store():
    return DictSecureStore()


@pytest.fixture
def make_storage(config, registry, secure_store):
    """Factory building Storage instances that are closed after the test."""
    created = []

    def factory(domain="app", **kwargs):
        kwargs.setdefault("config", config)
        kwargs.setdefault("registry", registry)
        if kwargs.pop("hardware", True):
            kwargs.setdefault("get_secure_value", secure_store.get)
            kwargs.setdefault("set_secure_value", secure_store.set)
        storage = Storage(domain, **kwargs)
        created.append(storage)
        return storage

    yield factory
    for storage in created:
        storage.close()


@pytest.fixture
def storage(make_storage):
    return make_storage()
