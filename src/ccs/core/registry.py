"""Per-root service registry.

At most one live :class:`SettingsService` per project root, so every caller
in a process shares one memo of resolutions and one SQLite connection.

``invalidate`` closes the service before dropping it.  Anyone still holding
the old instance gets :class:`ServiceClosed` instead of stale answers, and
the next ``get_service`` opens a fresh one that sees the latest store.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path

import structlog

from ccs.core.events import Listener, SettingsChangeBus
from ccs.core.service import SettingsService
from ccs.core.settings import Settings

logger = structlog.get_logger()

SettingsFactory = Callable[[Path], Settings]


def _default_settings(project_root: Path) -> Settings:
    return Settings(project_root=project_root)


class ServiceRegistry:
    """Thread-safe map of project root → open :class:`SettingsService`.

    All services share the registry's change bus, so one subscription sees
    events from every root.
    """

    def __init__(
        self,
        *,
        settings_factory: SettingsFactory = _default_settings,
        bus: SettingsChangeBus | None = None,
    ) -> None:
        self._settings_factory = settings_factory
        self.bus = bus or SettingsChangeBus()
        self._services: dict[str, SettingsService] = {}
        self._lock = threading.Lock()

    def get_service(self, project_root: str | Path) -> SettingsService:
        """Return the service for *project_root*, opening it on first use.

        Opening imports legacy settings files first unless
        ``Settings.migrate_on_open`` is off.
        """
        key = _root_key(project_root)
        with self._lock:
            service = self._services.get(key)
            if service is None:
                settings = self._settings_factory(Path(key))
                service = SettingsService.open(
                    settings, bus=self.bus, migrate_legacy=settings.migrate_on_open
                )
                self._services[key] = service
                logger.debug("settings_service_registered", project_root=key)
            return service

    def invalidate(self, project_root: str | Path) -> bool:
        """Close and forget the service for *project_root*.

        Returns whether there was one.
        """
        key = _root_key(project_root)
        with self._lock:
            service = self._services.pop(key, None)
        if service is None:
            return False
        service.close()
        logger.info("settings_service_invalidated", project_root=key)
        return True

    def clear_all(self) -> None:
        """Close and forget every service (extension deactivation)."""
        with self._lock:
            services = list(self._services.values())
            self._services.clear()
        for service in services:
            service.close()
        if services:
            logger.info("settings_services_cleared", count=len(services))

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.bus.subscribe(listener)

    def __contains__(self, project_root: object) -> bool:
        if not isinstance(project_root, (str, Path)):
            return False
        with self._lock:
            return _root_key(project_root) in self._services

    def __len__(self) -> int:
        return len(self._services)


def _root_key(project_root: str | Path) -> str:
    return Path(project_root).resolve().as_posix()


# ── Process-wide registry ───────────────────────────────────
_registry = ServiceRegistry()


def default_registry() -> ServiceRegistry:
    return _registry


def get_service(project_root: str | Path) -> SettingsService:
    return _registry.get_service(project_root)


def invalidate(project_root: str | Path) -> bool:
    return _registry.invalidate(project_root)


def clear_all() -> None:
    _registry.clear_all()


def subscribe(listener: Listener) -> Callable[[], None]:
    return _registry.subscribe(listener)
