from functools import lru_cache

from smartpaste.config import settings
from smartpaste.services.engine import SmartPasteEngine
from smartpaste.utils.storage import JsonFileStore


@lru_cache
def get_engine() -> SmartPasteEngine:
    """
    Return the process-wide engine backed by files under STORAGE_DIR.
    Routers take it as a dependency so tests can swap in an in-memory engine.
    """
    return SmartPasteEngine(JsonFileStore(settings.STORAGE_DIR), settings.DEFAULT_CURRENCY)
