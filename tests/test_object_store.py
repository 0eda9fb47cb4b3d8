"""
Tests for the ObjectStore: naming, save/load, listing, deletion, retries
and self-healing of records written under another secret.
"""
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

import orjson
import pytest
from pydantic import BaseModel

from navigator_securestore import (
    DEFAULT_KEY,
    ConfigurationError,
    FolderNameTooLongError,
    InvalidKeyError,
    Status,
)
from navigator_securestore import codec, objects
from navigator_securestore.vault import crypto


@dataclass
class Profile:
    name: str = ""
    age: int = 0
    tags: list = field(default_factory=list)


@dataclass
class Account:
    account_id: str = ""
    balance: float = 0.0

    def storage_key(self) -> str:
        return self.account_id


@dataclass
class Target:
    name: str


class Settings(BaseModel):
    theme: str = "dark"
    retries: int = 3
    updated: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)


class Versioned:
    pass


Versioned.__module__ = "vendor.lib_v2_1.models"


def flaky(monkeypatch, target, name, failures, exc=PermissionError):
    """Make ``target.name`` raise ``exc`` for the first ``failures`` calls."""
    original = getattr(target, name)
    calls = {"count": 0}

    def wrapper(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] <= failures:
            raise exc("file is locked")
        return original(*args, **kwargs)

    monkeypatch.setattr(target, name, wrapper)
    return calls


class TestNaming:
    """Tests for keys, type identifiers and folder names."""

    @pytest.mark.parametrize("key", ["a?b", "a*b", "a/b", "a\\b", "a|b", "a<b", "a>b", "a'b", 'a"b', "a\x00b", "a\nb", "a\x7fb"])
    def test_forbidden_characters(self, key):
        with pytest.raises(InvalidKeyError):
            objects.validate_key(key)

    def test_empty_key(self):
        with pytest.raises(InvalidKeyError):
            objects.validate_key("")
        with pytest.raises(InvalidKeyError):
            objects.validate_key(None)

    def test_valid_key(self):
        assert objects.validate_key("user-42.profile") == "user-42.profile"

    def test_type_identifier(self):
        assert objects.type_identifier(Profile) == f"{__name__}.Profile"
        assert objects.type_identifier(int) == "builtins.int"

    def test_versioned_type_identifier(self):
        """Version tokens in the module path fall back to namespace+name."""
        assert objects.type_identifier(Versioned) == "vendor.models+Versioned"

    def test_folder_sanitized(self):
        assert objects.sanitize_name("a<b>c") == "a-b-c"
        assert objects.sanitize_name("a\tb") == "a-b"

    def test_folder_too_long(self):
        with pytest.raises(FolderNameTooLongError):
            objects.sanitize_name("x" * 300)

    def test_resolve_key(self):
        assert objects.resolve_key(Profile()) == DEFAULT_KEY
        assert objects.resolve_key(Account(account_id="acc-1")) == "acc-1"
        assert objects.resolve_key(Account(account_id="acc-1"), "explicit") == "explicit"
        with pytest.raises(InvalidKeyError):
            objects.resolve_key(Account(account_id="bad?id"))


class TestSaveLoad:
    """Tests for the save and load paths."""

    def test_round_trip(self, storage):
        profile = Profile(name="ana", age=31, tags=["a", "b"])
        assert storage.object_store.save(profile, "ana") == "ana"
        assert storage.object_store.load(Profile, "ana") == profile

    def test_file_layout(self, storage, config):
        storage.object_store.save(Profile(name="ana"), "ana")
        path = config.root / storage.domain / f"{__name__}.Profile" / "ana.cry"
        assert path.is_file()
        assert b"ana" not in path.read_bytes()

    def test_identifiable_key(self, storage):
        key = storage.object_store.save(Account(account_id="acc-7", balance=10.5))
        assert key == "acc-7"
        assert storage.object_store.load(Account, "acc-7").balance == 10.5

    def test_default_key(self, storage):
        assert storage.object_store.save(Profile(name="solo")) == DEFAULT_KEY
        assert storage.object_store.load(Profile).name == "solo"

    def test_pydantic_model(self, storage):
        settings = Settings(theme="light", retries=5)
        storage.object_store.save(settings, "ui")
        loaded = storage.object_store.load(Settings, "ui")
        assert isinstance(loaded, Settings)
        assert loaded.model_dump() == settings.model_dump()

    def test_overwrite_replaces_record(self, storage):
        storage.object_store.save(Profile(name="one"), "p")
        storage.object_store.save(Profile(name="two"), "p")
        assert storage.object_store.load(Profile, "p").name == "two"

    def test_missing_returns_none(self, storage):
        assert storage.object_store.load(Profile, "missing") is None
        result = storage.object_store.try_load(Profile, "missing")
        assert result.status is Status.NOT_FOUND

    def test_create_if_missing(self, storage):
        loaded = storage.object_store.load(Profile, "missing", create_if_missing=True)
        assert loaded == Profile()

    def test_invalid_key_rejected_before_io(self, storage, monkeypatch):
        """A forbidden key fails before any file is touched."""
        def no_io(*args, **kwargs):
            raise AssertionError("file I/O attempted")

        monkeypatch.setattr(storage.fs, "write_bytes", no_io)
        monkeypatch.setattr(storage.fs, "makedirs", no_io)
        with pytest.raises(InvalidKeyError):
            storage.object_store.save(Profile(), "a?b")
        with pytest.raises(InvalidKeyError):
            storage.object_store.save(Profile(), "a\x00b")
        with pytest.raises(InvalidKeyError):
            storage.object_store.save_async(Profile(), "a?b")
        with pytest.raises(InvalidKeyError):
            storage.object_store.load(Profile, "a?b")

    def test_none_arguments_rejected(self, storage):
        with pytest.raises(ConfigurationError):
            storage.object_store.save(None, "k")
        with pytest.raises(ConfigurationError):
            storage.object_store.load(None, "k")

    def test_unencrypted_layout(self, make_storage, config):
        storage = make_storage("plain", encrypted=False)
        storage.object_store.save(Profile(name="visible"), "p")
        path = config.root / storage.domain / f"{__name__}.Profile" / "p.json"
        assert b"visible" in path.read_bytes()
        assert b"py/" not in path.read_bytes()
        assert storage.object_store.load(Profile, "p").name == "visible"

    def test_save_async(self, storage):
        future = storage.object_store.save_async(Profile(name="bg"), "bg")
        result = future.result(timeout=10)
        assert result.ok
        assert result.value == "bg"
        assert storage.object_store.load(Profile, "bg").name == "bg"


class TestListing:
    """Tests for list_keys, list_all, delete and delete_all."""

    def test_list_keys_sorted(self, storage):
        for key in ("b", "a", "c"):
            storage.object_store.save(Profile(name=key), key)
        storage.object_store.save(Account(account_id="z"))
        assert storage.object_store.list_keys(Profile) == ["a", "b", "c"]
        assert storage.object_store.list_keys(Account) == ["z"]

    def test_missing_folder_is_empty(self, storage):
        assert storage.object_store.list_keys(Profile) == []
        assert storage.object_store.list_all(Profile) == []

    def test_list_all(self, storage):
        storage.object_store.save(Profile(name="x"), "1")
        storage.object_store.save(Profile(name="y"), "2")
        assert [p.name for p in storage.object_store.list_all(Profile)] == ["x", "y"]

    def test_delete(self, storage):
        storage.object_store.save(Profile(name="x"), "1")
        assert storage.object_store.delete(Profile, "1").ok
        assert storage.object_store.load(Profile, "1") is None
        # deleting again is not an error
        assert storage.object_store.delete(Profile, "1").ok

    def test_delete_all(self, storage):
        for key in ("1", "2", "3"):
            storage.object_store.save(Profile(name=key), key)
        storage.object_store.save(Account(account_id="keep"))
        result = storage.object_store.delete_all(Profile)
        assert result.ok
        assert result.value == 3
        assert storage.object_store.list_keys(Profile) == []
        assert storage.object_store.list_keys(Account) == ["keep"]


class TestRetries:
    """Tests for transient I/O contention and codec failures."""

    def test_save_survives_transient_locks(self, storage, config, monkeypatch):
        """N-1 lock failures followed by success look like a plain success."""
        calls = flaky(monkeypatch, storage.fs, "write_bytes", config.attempts - 1)
        result = storage.object_store.try_save(Profile(name="late"), "p")
        assert result.ok
        assert result.attempts == config.attempts
        assert calls["count"] == config.attempts
        assert storage.object_store.load(Profile, "p").name == "late"

    def test_save_gives_up_silently(self, make_storage, config, monkeypatch):
        """Exhausted retries return the key and surface only through the hook."""
        errors = []
        storage = make_storage("giveup", on_error=errors.append)
        flaky(monkeypatch, storage.fs, "write_bytes", config.attempts)
        assert storage.object_store.save(Profile(name="lost"), "p") == "p"
        assert storage.object_store.load(Profile, "p") is None
        assert [e.status for e in errors] == [Status.RETRY_EXHAUSTED]
        assert isinstance(errors[0].error, PermissionError)

    def test_load_survives_transient_locks(self, storage, monkeypatch):
        storage.object_store.save(Profile(name="x"), "p")
        flaky(monkeypatch, storage.fs, "read_bytes", 3)
        assert storage.object_store.load(Profile, "p").name == "x"

    def test_deserialize_failure_keeps_file(self, make_storage, config):
        """Codec failures are retried and reported without deleting the record."""
        errors = []
        storage = make_storage("plain", encrypted=False, on_error=errors.append)
        storage.object_store.save(Profile(name="x"), "p")
        path = config.root / storage.domain / f"{__name__}.Profile" / "p.json"
        path.write_bytes(b"{not json")
        result = storage.object_store.try_load(Profile, "p")
        assert result.status is Status.DESERIALIZE_FAILED
        assert result.attempts == config.attempts
        assert path.exists()
        assert errors and errors[0].status is Status.DESERIALIZE_FAILED


class TestSelfHealing:
    """Records written under another master secret are discarded."""

    def test_foreign_record_deleted(self, make_storage, secure_store, config):
        first = make_storage("healing")
        first.object_store.save(Profile(name="old device"), "p")
        path = config.root / first.domain / f"{__name__}.Profile" / "p.cry"
        assert path.exists()
        first.close()

        # account change: the secure store no longer holds the secret
        secure_store.data.clear()
        errors = []
        second = make_storage("healing", on_error=errors.append)
        result = second.object_store.try_load(Profile, "p")
        assert result.status is Status.DECRYPT_MISMATCH
        assert second.object_store.load(Profile, "p") is None
        assert not path.exists()
        assert [e.status for e in errors] == [Status.DECRYPT_MISMATCH]

    def test_same_secret_reads_back(self, make_storage):
        first = make_storage("stable")
        first.object_store.save(Profile(name="kept"), "p")
        first.close()
        second = make_storage("stable")
        assert second.object_store.load(Profile, "p").name == "kept"

    def test_non_json_plaintext_is_discarded(self, storage, config, monkeypatch):
        """A payload that decrypts to bytes that are not JSON counts as foreign."""
        storage.object_store.save(Profile(name="x"), "p")
        path = config.root / storage.domain / f"{__name__}.Profile" / "p.cry"
        monkeypatch.setattr(crypto, "decrypt", lambda data, key: b"\x8f\x03\xe1garbage")
        result = storage.object_store.try_load(Profile, "p")
        assert result.status is Status.DECRYPT_MISMATCH
        assert result.attempts == 1
        assert not path.exists()

    def test_records_under_random_keys_are_discarded(self, storage, config):
        """Every record encrypted under a foreign key is deleted, never kept."""
        path = config.root / storage.domain / f"{__name__}.Profile" / "p.cry"
        plaintext = codec.dumps(Profile(name="elsewhere", tags=["a"]))
        for _ in range(300):
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(crypto.encrypt(plaintext, os.urandom(32)))
            result = storage.object_store.try_load(Profile, "p")
            assert result.status is Status.DECRYPT_MISMATCH
            assert not path.exists()


class TestUntrustedRecords:
    """Record files are data only; nothing in them is executed."""

    def test_crafted_record_runs_nothing(self, make_storage, config, tmp_path):
        storage = make_storage("plain", encrypted=False)
        marker = tmp_path / "marker"
        folder = config.root / storage.domain / objects.folder_name(Target)
        folder.mkdir(parents=True)
        record = folder / "t.json"
        record.write_bytes(orjson.dumps({
            "py/reduce": [{"py/function": "os.mkdir"}, {"py/tuple": [str(marker)]}]
        }))
        result = storage.object_store.try_load(Target, "t")
        assert result.status is Status.DESERIALIZE_FAILED
        assert not marker.exists()
        assert record.exists()

    def test_record_of_other_shape_rejected(self, make_storage, config):
        storage = make_storage("plain", encrypted=False)
        folder = config.root / storage.domain / objects.folder_name(Target)
        folder.mkdir(parents=True)
        (folder / "t.json").write_bytes(b'{"title": 3}')
        assert storage.object_store.load(Target, "t") is None

    def test_plain_record_round_trip(self, make_storage):
        storage = make_storage("plain", encrypted=False)
        storage.object_store.save(Target(name="ok"), "t")
        assert storage.object_store.load(Target, "t") == Target(name="ok")


class TestConcurrency:
    """All operations on one storage root serialize behind its lock."""

    def test_parallel_saves_and_loads_see_whole_records(self, storage):
        """Threads writing and reading one key only ever load complete values."""
        written = {
            f"writer-{i}": Profile(name=f"writer-{i}", age=i, tags=[i] * 200)
            for i in range(8)
        }
        storage.object_store.save(written["writer-0"], "shared")
        seen = []
        failures = []

        def worker(profile):
            try:
                for n in range(20):
                    if n % 2:
                        storage.object_store.save(profile, "shared")
                    else:
                        future = storage.object_store.save_async(profile, "shared")
                        assert future.result(timeout=30).ok
                    seen.append(storage.object_store.load(Profile, "shared"))
            except Exception as err:
                failures.append(err)

        threads = [threading.Thread(target=worker, args=(p,)) for p in written.values()]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)
        assert not failures
        assert len(seen) == len(written) * 20
        for loaded in seen:
            assert loaded is not None
            assert loaded == written[loaded.name]

    def test_delete_waits_for_lock_holder(self, storage):
        """A delete issued while another thread holds the lock runs after it."""
        storage.object_store.save(Profile(name="x"), "k")
        done = threading.Event()

        def deleter():
            storage.object_store.delete(Profile, "k")
            done.set()

        thread = threading.Thread(target=deleter)
        with storage.fs.lock:
            thread.start()
            assert not done.wait(0.2)
            storage.object_store.save(Profile(name="y"), "k")
            assert storage.object_store.load(Profile, "k").name == "y"
        thread.join(timeout=10)
        assert done.is_set()
        assert storage.object_store.load(Profile, "k") is None
