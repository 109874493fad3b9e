from __future__ import annotations

import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from vidtube.config import get_settings, reset_settings_cache
from vidtube.logging import get_logger
from vidtube.service.auth import AuthService
from vidtube.service.media import MediaService
from vidtube.service.profile import ProfileService
from vidtube.service.tokens import TokenIssuer
from vidtube.storage.memory import MemoryStore
from vidtube.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password in a DSN with '***' for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore(
                    fs_root=self.settings.shared_fs_root,
                    persist=not self.settings.test_mode,
                )
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.tokens = TokenIssuer.from_settings(self.settings)
        self.media = MediaService.from_settings(self.settings)
        if not self.media.is_configured:
            logger.warning("media_placeholder_mode", fs_root=self.settings.shared_fs_root)
        self.auth = AuthService(self.store, self.tokens, self.media)
        self.profile = ProfileService(self.store, self.media)

    async def close(self) -> None:
        await self.media.close()
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton (double-checked locking)."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Rebuild the runtime from a freshly read environment."""
    global runtime
    with _runtime_lock:
        if runtime is not None and isinstance(runtime.store, PostgresStore):
            runtime.store.close()
        reset_settings_cache()
        runtime = Runtime()
        return runtime
