from __future__ import annotations

import threading
from typing import Optional

from springsso.config import get_settings, reset_settings_cache
from springsso.logging import get_logger
from springsso.service.auth import AuthService
from springsso.storage.memory import MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        self.store = MemoryStore()
        self.auth = AuthService(self.store, self.settings)
        logger.info(
            "runtime_init_complete",
            environment=self.settings.environment.value,
            scalekit_configured=self.settings.scalekit_configured,
        )


runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton, creating it at most once."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs.

    Settings are re-read from the environment so tests can monkeypatch it.
    """
    global runtime
    with _runtime_lock:
        reset_settings_cache()
        runtime = Runtime()
        return runtime
