"""Tests for ccs.core.store — durable sparse per-directory records."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from ccs.core.errors import InvalidField, InvalidValue, OutOfScope, RecordCorrupt, ServiceClosed, StoreCorrupt
from ccs.core.models import SettingField
from ccs.core.settings import Settings
from ccs.core.store import SettingsStore


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(project_root=tmp_path, defaults_file=tmp_path / "no-defaults.yaml")


@pytest.fixture()
def store(settings: Settings):
    s = SettingsStore.open(settings)
    yield s
    s.close()


# ── write / read ────────────────────────────────────────────
class TestWrite:
    def test_write_then_read(self, store: SettingsStore) -> None:
        written = store.write("src", {"emojis.normal": "✅"})
        assert written == [SettingField.EMOJI_NORMAL]
        record = store.read("src")
        assert record.directory == f"{store.project_root}/src"
        assert dict(record.values) == {"emojis.normal": "✅"}

    def test_partial_write_merges(self, store: SettingsStore) -> None:
        store.write("src", {"lineThresholds.midThreshold": 200})
        store.write("src", {"emojis.danger": "🔥"})
        record = store.read("src")
        assert record.get("lineThresholds.midThreshold") == 200
        assert record.get("emojis.danger") == "🔥"

    def test_overwrite_one_field(self, store: SettingsStore) -> None:
        store.write("src", {"lineThresholds.midThreshold": 200, "emojis.normal": "a"})
        store.write("src", {"lineThresholds.midThreshold": 50})
        record = store.read("src")
        assert record.get("lineThresholds.midThreshold") == 50
        assert record.get("emojis.normal") == "a"

    def test_prefixed_names_accepted(self, store: SettingsStore) -> None:
        store.write("", {"codeCounter.showNotificationOnAutoGenerate": True})
        assert store.read("").get("showNotificationOnAutoGenerate") is True

    def test_empty_write_creates_no_record(self, store: SettingsStore) -> None:
        assert store.write("src", {}) == []
        assert not store.has_record("src")

    def test_patterns_stored_as_tuple(self, store: SettingsStore) -> None:
        store.write("src", {"excludePatterns": ["/gen/**", "**/*.snap"]})
        assert store.read("src").get("excludePatterns") == ("gen/**", "**/*.snap")

    def test_empty_list_is_a_stored_value(self, store: SettingsStore) -> None:
        store.write("src", {"includePatterns": []})
        record = store.read("src")
        assert "includePatterns" in record
        assert record.get("includePatterns") == ()

    def test_unknown_field_writes_nothing(self, store: SettingsStore) -> None:
        with pytest.raises(InvalidField):
            store.write("src", {"emojis.normal": "a", "emojis.sparkly": "b"})
        assert not store.has_record("src")

    def test_bad_value_writes_nothing(self, store: SettingsStore) -> None:
        with pytest.raises(InvalidValue):
            store.write("src", {"emojis.normal": "a", "lineThresholds.midThreshold": "many"})
        assert not store.has_record("src")

    def test_out_of_scope(self, store: SettingsStore) -> None:
        with pytest.raises(OutOfScope):
            store.write("../elsewhere", {"emojis.normal": "a"})

    def test_persists_across_reopen(self, settings: Settings) -> None:
        first = SettingsStore.open(settings)
        first.write("docs", {"emojis.warning": "⚠️"})
        first.close()
        second = SettingsStore.open(settings)
        assert second.read("docs").get("emojis.warning") == "⚠️"
        second.close()


class TestRead:
    def test_missing_record_is_empty(self, store: SettingsStore) -> None:
        record = store.read("nowhere")
        assert record.is_empty

    def test_record_contains(self, store: SettingsStore) -> None:
        store.write("src", {"emojis.normal": "a"})
        record = store.read("src")
        assert "emojis.normal" in record
        assert "codeCounter.emojis.normal" in record
        assert "emojis.danger" not in record

    def test_corrupt_row(self, store: SettingsStore) -> None:
        store._conn.execute(
            "INSERT INTO directory_settings VALUES ('src', 'emojis.normal', '{not json', 'now')"
        )
        with pytest.raises(RecordCorrupt):
            store.read("src")

    def test_wrongly_typed_row(self, store: SettingsStore) -> None:
        store._conn.execute(
            "INSERT INTO directory_settings VALUES ('src', 'lineThresholds.midThreshold', '\"x\"', 'now')"
        )
        with pytest.raises(StoreCorrupt):
            store.read("src")

    def test_record_corrupt_is_a_store_corrupt(self, store: SettingsStore) -> None:
        store._conn.execute(
            "INSERT INTO directory_settings VALUES ('src', 'emojis.sparkly', '\"x\"', 'now')"
        )
        with pytest.raises(StoreCorrupt) as info:
            store.read("src")
        assert isinstance(info.value, RecordCorrupt)
        assert info.value.directory == "src"


class TestClosed:
    def test_every_operation_raises_service_closed(self, settings: Settings) -> None:
        store = SettingsStore.open(settings)
        store.write("src", {"emojis.normal": "a"})
        store.close()
        with pytest.raises(ServiceClosed):
            store.read("src")
        with pytest.raises(ServiceClosed):
            store.write("src", {"emojis.normal": "b"})
        with pytest.raises(ServiceClosed):
            store.list_directories_with_settings()
        with pytest.raises(ServiceClosed):
            store.append_to_list("src", "excludePatterns", "x/**")

    def test_close_twice(self, settings: Settings) -> None:
        store = SettingsStore.open(settings)
        store.close()
        store.close()
        with pytest.raises(ServiceClosed):
            store.read("src")


# ── reset / delete ──────────────────────────────────────────
class TestResetField:
    def test_removes_only_that_field(self, store: SettingsStore) -> None:
        store.write("src", {"emojis.normal": "a", "emojis.danger": "b"})
        assert store.reset_field("src", "emojis.normal") == [SettingField.EMOJI_NORMAL]
        assert dict(store.read("src").values) == {"emojis.danger": "b"}

    def test_record_removed_when_empty(self, store: SettingsStore) -> None:
        store.write("src", {"emojis.normal": "a"})
        store.reset_field("src", "emojis.normal")
        assert not store.has_record("src")
        assert store.list_directories_with_settings() == []

    def test_idempotent(self, store: SettingsStore) -> None:
        store.write("src", {"emojis.normal": "a"})
        store.reset_field("src", "emojis.normal")
        assert store.reset_field("src", "emojis.normal") == []
        assert store.reset_field("never/configured", "emojis.normal") == []

    def test_group(self, store: SettingsStore) -> None:
        store.write(
            "src",
            {"emojis.normal": "a", "emojis.folders.danger": "b", "lineThresholds.midThreshold": 10},
        )
        removed = store.reset_field("src", "emojis")
        assert set(removed) == {SettingField.EMOJI_NORMAL, SettingField.FOLDER_EMOJI_DANGER}
        assert dict(store.read("src").values) == {"lineThresholds.midThreshold": 10}

    def test_unknown_field(self, store: SettingsStore) -> None:
        with pytest.raises(InvalidField):
            store.reset_field("src", "emojis.sparkly")


class TestDelete:
    def test_delete_existing(self, store: SettingsStore) -> None:
        store.write("src", {"emojis.normal": "a", "emojis.danger": "b"})
        assert store.delete("src") is True
        assert store.read("src").is_empty

    def test_delete_missing(self, store: SettingsStore) -> None:
        assert store.delete("src") is False


# ── listing ─────────────────────────────────────────────────
class TestListing:
    def test_sorted_directories(self, store: SettingsStore) -> None:
        root = store.project_root
        store.write("src/api", {"emojis.normal": "a"})
        store.write("", {"emojis.normal": "b"})
        store.write("docs", {"emojis.normal": "c"})
        assert store.list_directories_with_settings() == [root, f"{root}/docs", f"{root}/src/api"]

    def test_records(self, store: SettingsStore) -> None:
        store.write("src", {"emojis.normal": "a", "excludePatterns": ["x/**"]})
        (record,) = store.records()
        assert record.directory == f"{store.project_root}/src"
        assert dict(record.values) == {"emojis.normal": "a", "excludePatterns": ("x/**",)}


# ── append_to_list ──────────────────────────────────────────
class TestAppendToList:
    def test_copies_nearest_definer(self, store: SettingsStore) -> None:
        store.write("", {"excludePatterns": ["root/**"]})
        store.write("a", {"excludePatterns": ["a/**"]})
        assert store.append_to_list("a/b", "excludePatterns", "b/**") == ("a/**", "b/**")
        assert store.read("a/b").get("excludePatterns") == ("a/**", "b/**")
        assert store.read("a").get("excludePatterns") == ("a/**",)

    def test_falls_back_to_default(self, store: SettingsStore) -> None:
        stored = store.append_to_list("a", "includePatterns", "/src/**", default=("**/*",))
        assert stored == ("**/*", "src/**")

    def test_no_duplicate(self, store: SettingsStore) -> None:
        store.write("a", {"excludePatterns": ["x/**"]})
        assert store.append_to_list("a", "excludePatterns", "x/**") == ("x/**",)

    def test_scalar_field_rejected(self, store: SettingsStore) -> None:
        with pytest.raises(InvalidField):
            store.append_to_list("a", "emojis.normal", "x")
        assert store.list_directories_with_settings() == []


# ── concurrency ─────────────────────────────────────────────
def test_concurrent_writes_to_different_fields_all_survive(store: SettingsStore) -> None:
    fields = [
        ("emojis.normal", "1"),
        ("emojis.warning", "2"),
        ("emojis.danger", "3"),
        ("emojis.folders.normal", "4"),
        ("emojis.folders.warning", "5"),
        ("emojis.folders.danger", "6"),
    ]
    barrier = threading.Barrier(len(fields))
    errors: list[BaseException] = []

    def writer(name: str, value: str) -> None:
        try:
            barrier.wait()
            store.write("src", {name: value})
        except BaseException as exc:  # surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=writer, args=f) for f in fields]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert dict(store.read("src").values) == dict(fields)


def test_two_connections_merge(settings: Settings) -> None:
    """Two stores on one database file (two windows) never drop each other's fields."""
    a = SettingsStore.open(settings)
    b = SettingsStore.open(settings)
    a.write("src", {"emojis.normal": "a"})
    b.write("src", {"emojis.danger": "b"})
    assert dict(a.read("src").values) == {"emojis.normal": "a", "emojis.danger": "b"}
    a.close()
    b.close()


def test_concurrent_appends_all_survive(store: SettingsStore) -> None:
    store.write("", {"excludePatterns": ["base/**"]})
    patterns = [f"gen{i}/**" for i in range(6)]
    barrier = threading.Barrier(len(patterns))
    errors: list[BaseException] = []

    def appender(pattern: str) -> None:
        try:
            barrier.wait()
            store.append_to_list("src", "excludePatterns", pattern)
        except BaseException as exc:  # surfaced below
            errors.append(exc)

    threads = [threading.Thread(target=appender, args=(p,)) for p in patterns]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    stored = store.read("src").get("excludePatterns")
    assert stored[0] == "base/**"
    assert sorted(stored[1:]) == patterns


def test_append_sees_other_connection_commit(settings: Settings) -> None:
    """An append through one connection builds on the other connection's latest list."""
    a = SettingsStore.open(settings)
    b = SettingsStore.open(settings)
    try:
        a.write("", {"excludePatterns": ["base/**"]})
        b.append_to_list("src", "excludePatterns", "b/**")
        assert a.append_to_list("src", "excludePatterns", "a/**") == ("base/**", "b/**", "a/**")
    finally:
        a.close()
        b.close()
