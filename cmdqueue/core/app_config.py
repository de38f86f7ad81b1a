"""
Runtime configuration provider.

Values resolve in order: in-process cache, the persistent config table, then
the compiled-in defaults from Settings. Reads populate the cache lazily;
set() writes through to both the store and the cache.
"""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from cmdqueue.config import Settings, get_settings
from cmdqueue.constants import (
    CONFIG_BACKOFF_BASE,
    CONFIG_COMMAND_TIMEOUT,
    CONFIG_DRAIN_TIMEOUT,
    CONFIG_LOCK_TIMEOUT,
    CONFIG_MAX_RETRIES,
    CONFIG_POLL_INTERVAL,
)
from cmdqueue.db.connection import get_session_context
from cmdqueue.db.repository import ConfigRepository

logger = logging.getLogger(__name__)


def compiled_defaults(settings: Settings) -> dict[str, int | float]:
    """Compiled-in default for every recognized config key."""
    return {
        CONFIG_MAX_RETRIES: settings.default_max_retries,
        CONFIG_BACKOFF_BASE: settings.default_backoff_base,
        CONFIG_LOCK_TIMEOUT: settings.default_lock_timeout_ms,
        CONFIG_POLL_INTERVAL: settings.default_worker_poll_interval_ms,
        CONFIG_COMMAND_TIMEOUT: settings.default_command_timeout_ms,
        CONFIG_DRAIN_TIMEOUT: settings.default_drain_timeout_ms,
    }


class AppConfig:
    """
    Key/value configuration with a lazily populated cache.

    Recognized keys are coerced to the type of their compiled-in default;
    a stored value that cannot be coerced is logged and replaced by the
    default. Store failures never propagate out of get().
    """

    def __init__(self, settings: Settings | None = None):
        self._defaults = compiled_defaults(settings or get_settings())
        self._cache: dict[str, Any] = {}

    @property
    def defaults(self) -> dict[str, int | float]:
        return dict(self._defaults)

    async def get(self, key: str, default: Any = None) -> Any:
        """
        Resolve a config value.

        Args:
            key: Config key.
            default: Fallback for keys without a compiled-in default.

        Returns:
            The cached, stored or default value.
        """
        if key in self._cache:
            return self._cache[key]

        value = self._defaults.get(key, default)
        try:
            async with get_session_context() as session:
                entry = await ConfigRepository(session).get(key)
            if entry is not None:
                value = self._coerce(key, entry.value)
        except SQLAlchemyError as e:
            # Not cached, so the next read retries the store
            logger.warning(
                f"Config lookup failed, using default: {e}",
                extra={"key": key},
            )
            return value

        self._cache[key] = value
        return value

    async def set(self, key: str, value: Any) -> bool:
        """
        Persist a config value and refresh its cache entry.

        Returns:
            True on success, False if the store rejected the write.
        """
        try:
            async with get_session_context() as session:
                await ConfigRepository(session).upsert(key, value)
        except SQLAlchemyError as e:
            logger.error(f"Failed to set config: {e}", extra={"key": key})
            self._cache.pop(key, None)
            return False

        self._cache[key] = self._coerce(key, value)
        logger.info("Config updated", extra={"key": key, "value": value})
        return True

    async def get_all(self) -> dict[str, Any]:
        """
        All config values: compiled-in defaults overlaid with stored values.
        """
        values: dict[str, Any] = dict(self._defaults)
        try:
            async with get_session_context() as session:
                stored = await ConfigRepository(session).all()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to read config table: {e}")
            return values

        for key, value in stored.items():
            values[key] = self._coerce(key, value)
        return values

    def clear_cache(self) -> None:
        """Drop every cached value so the next get() re-resolves from the store."""
        self._cache.clear()

    # Typed accessors for the engine

    async def max_retries(self) -> int:
        return int(await self.get(CONFIG_MAX_RETRIES))

    async def backoff_base(self) -> float:
        return await self.get(CONFIG_BACKOFF_BASE)

    async def lock_timeout_ms(self) -> int:
        return int(await self.get(CONFIG_LOCK_TIMEOUT))

    async def poll_interval_seconds(self) -> float:
        return await self.get(CONFIG_POLL_INTERVAL) / 1000

    async def command_timeout_seconds(self) -> float:
        return await self.get(CONFIG_COMMAND_TIMEOUT) / 1000

    async def drain_timeout_seconds(self) -> float:
        return await self.get(CONFIG_DRAIN_TIMEOUT) / 1000

    def _coerce(self, key: str, value: Any) -> Any:
        default = self._defaults.get(key)
        if default is None:
            return value

        try:
            number = float(value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid config value, using default",
                extra={"key": key, "value": value, "default": default},
            )
            return default

        if isinstance(default, int) and number.is_integer():
            return int(number)
        return number
