"""
Settings persistence.

Settings are loaded once, merged with partial updates and written back after
every update under the ``settings`` key.
"""

import asyncio
from typing import Any, Optional

from .audit_logger import AuditLogger
from .config import Settings
from .enums import LogLevel
from .exceptions import StoreUnavailableError
from .store import KeyValueStore


SETTINGS_KEY = "settings"


class SettingsManager:
    """Owns the current Settings and keeps the store in sync."""

    COMPONENT = "SettingsManager"

    def __init__(
        self,
        store: KeyValueStore,
        logger: Optional[AuditLogger] = None,
        timeout: float = 5.0,
    ) -> None:
        self._store = store
        self._logger = logger
        self._timeout = timeout
        self._settings = Settings()
        self._loaded = False

    @property
    def current(self) -> Settings:
        return self._settings

    @property
    def loaded(self) -> bool:
        return self._loaded

    async def load(self) -> Settings:
        """
        Load settings from the store.

        A missing key, an unreadable store or a field of the wrong type yields
        the default for that field.
        """
        try:
            stored = await asyncio.wait_for(self._store.get([SETTINGS_KEY]), timeout=self._timeout)
        except Exception as e:
            if self._logger:
                self._logger.log_error(self.COMPONENT, "Settings read failed, using defaults", error=e)
            stored = {}

        self._settings = Settings.from_dict(stored.get(SETTINGS_KEY, {}))
        self._loaded = True
        return self._settings

    async def update(self, partial: Any) -> Settings:
        """
        Merge a partial update and persist the result.

        Raises:
            StoreUnavailableError: If the store write fails; current settings are kept
        """
        if not self._loaded:
            await self.load()

        merged = self._settings.merged(partial)
        await self._persist(merged)
        self._settings = merged
        if self._logger:
            self._logger.log(LogLevel.INFO, self.COMPONENT, "Settings updated", merged.to_dict())
        return merged

    async def replace(self, settings: Settings) -> Settings:
        """Persist and install a complete settings object."""
        await self._persist(settings)
        self._settings = settings
        self._loaded = True
        return settings

    async def _persist(self, settings: Settings) -> None:
        try:
            await asyncio.wait_for(
                self._store.set({SETTINGS_KEY: settings.to_dict()}), timeout=self._timeout
            )
        except StoreUnavailableError:
            raise
        except Exception as e:
            raise StoreUnavailableError(
                code="write_failed",
                message=f"Failed to persist settings: {e}",
                details={"error_type": type(e).__name__},
            ) from e
