"""Tests for ccs.core.registry — one live service per project root."""

from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from ccs.core import registry as registry_module
from ccs.core.errors import ServiceClosed
from ccs.core.events import SettingsChanged
from ccs.core.registry import ServiceRegistry
from ccs.core.settings import Settings

MID = "lineThresholds.midThreshold"


@pytest.fixture()
def registry(tmp_path: Path):
    def factory(root: Path) -> Settings:
        return Settings(project_root=root, defaults_file=tmp_path / "no-defaults.yaml")

    reg = ServiceRegistry(settings_factory=factory)
    yield reg
    reg.clear_all()


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


class TestGetService:
    def test_same_instance_per_root(self, registry: ServiceRegistry, project: Path) -> None:
        assert registry.get_service(project) is registry.get_service(str(project))
        assert project in registry
        assert len(registry) == 1

    def test_roots_are_independent(self, registry: ServiceRegistry, tmp_path: Path) -> None:
        one = tmp_path / "one"
        two = tmp_path / "two"
        one.mkdir()
        two.mkdir()
        registry.get_service(one).write("", {MID: 1})
        assert registry.get_service(two).resolve("")[MID] == 300
        assert len(registry) == 2

    def test_concurrent_first_use_opens_once(self, registry: ServiceRegistry, project: Path) -> None:
        barrier = threading.Barrier(4)
        seen: list[object] = []

        def worker() -> None:
            barrier.wait()
            seen.append(registry.get_service(project))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len({id(s) for s in seen}) == 1


class TestInvalidate:
    def test_write_invalidate_resolve_sees_write(self, registry: ServiceRegistry, project: Path) -> None:
        service = registry.get_service(project)
        assert service.resolve("src")[MID] == 300
        service.write("src", {MID: 450})

        registry.invalidate(project)

        assert registry.get_service(project).resolve("src")[MID] == 450

    def test_external_change_visible_after_invalidate(self, registry: ServiceRegistry, project: Path) -> None:
        """A write through another connection (a second window) shows up once invalidated."""
        service = registry.get_service(project)
        assert service.resolve("src")[MID] == 300

        other = ServiceRegistry(settings_factory=lambda root: service.settings)
        other.get_service(project).write("src", {MID: 999})
        other.clear_all()

        assert service.resolve("src")[MID] == 300  # memoised
        registry.invalidate(project)
        assert registry.get_service(project).resolve("src")[MID] == 999

    def test_old_instance_is_closed(self, registry: ServiceRegistry, project: Path) -> None:
        old = registry.get_service(project)
        assert registry.invalidate(project) is True
        with pytest.raises(ServiceClosed):
            old.resolve("src")
        assert registry.get_service(project) is not old

    def test_invalidate_during_resolve_never_returns_defaults(
        self, registry: ServiceRegistry, project: Path
    ) -> None:
        service = registry.get_service(project)
        service.write("src", {MID: 450})
        read = service.store.read
        invalidated: list[bool] = []

        def invalidate_then_read(directory: str):
            if not invalidated:
                invalidated.append(registry.invalidate(project))
            return read(directory)

        service.store.read = invalidate_then_read  # type: ignore[method-assign]
        with pytest.raises(ServiceClosed):
            service.resolve("src")
        assert invalidated == [True]
        assert registry.get_service(project).resolve("src")[MID] == 450

    def test_invalidate_unknown_root(self, registry: ServiceRegistry, project: Path) -> None:
        assert registry.invalidate(project) is False

    def test_clear_all(self, registry: ServiceRegistry, tmp_path: Path) -> None:
        services = []
        for name in ("one", "two"):
            (tmp_path / name).mkdir()
            services.append(registry.get_service(tmp_path / name))
        registry.clear_all()
        assert len(registry) == 0
        assert all(s.closed for s in services)


def test_subscribe_sees_events_from_every_root(registry: ServiceRegistry, tmp_path: Path) -> None:
    received: list[SettingsChanged] = []
    unsubscribe = registry.subscribe(received.append)
    for name in ("one", "two"):
        (tmp_path / name).mkdir()
        registry.get_service(tmp_path / name).write("", {MID: 5})
    unsubscribe()
    registry.get_service(tmp_path / "one").write("", {MID: 6})

    assert [e.project_root for e in received] == [
        (tmp_path / "one").resolve().as_posix(),
        (tmp_path / "two").resolve().as_posix(),
    ]


def test_module_level_functions_use_default_registry(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    reg = ServiceRegistry(
        settings_factory=lambda root: Settings(project_root=root, defaults_file=tmp_path / "none.yaml")
    )
    monkeypatch.setattr(registry_module, "_registry", reg)

    service = registry_module.get_service(tmp_path)
    assert registry_module.default_registry() is reg
    assert registry_module.invalidate(tmp_path) is True
    assert service.closed
    registry_module.get_service(tmp_path)
    registry_module.clear_all()
    assert len(reg) == 0


# ── Legacy migration on open ────────────────────────────────
class TestMigrateOnOpen:
    def _legacy(self, directory: Path, payload: dict) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / ".code-counter.json"
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def test_legacy_values_visible_on_first_resolve(self, registry: ServiceRegistry, project: Path) -> None:
        legacy = self._legacy(project / "src", {"codeCounter.lineThresholds.midThreshold": 500})

        res = registry.get_service(project).resolve("src")

        assert res[MID] == 500
        assert res.source_of(MID) == f"{project.resolve().as_posix()}/src"
        assert not legacy.exists()

    def test_disabled_by_settings(self, tmp_path: Path, project: Path) -> None:
        legacy = self._legacy(project / "src", {"codeCounter.lineThresholds.midThreshold": 500})
        registry = ServiceRegistry(
            settings_factory=lambda root: Settings(
                project_root=root,
                defaults_file=tmp_path / "no-defaults.yaml",
                migrate_on_open=False,
            )
        )
        try:
            assert registry.get_service(project).resolve("src")[MID] == 300
            assert legacy.exists()
        finally:
            registry.clear_all()

    def test_bad_legacy_file_does_not_block_open(self, registry: ServiceRegistry, project: Path) -> None:
        (project / "src").mkdir()
        (project / "src" / ".code-counter.json").write_text("{ broken", encoding="utf-8")
        self._legacy(project / "lib", {"codeCounter.emojis.normal": "L"})

        service = registry.get_service(project)

        assert service.resolve("lib")["emojis.normal"] == "L"
        assert (project / "src" / ".code-counter.json").exists()
