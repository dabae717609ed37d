"""
Storage factory: switch storage backend from config
===================================================

Centralizes selection of the storage backend so the rest of the app stays
ignorant of where data lives. The backend is chosen once, at startup.

- Reads configuration **at call time** (via `load_settings()`) to avoid
  stale values in tests.
- Imports the DB backend **only if** the selected backend is "postgres".

Environment variables
---------------------
- SHORTY_STORAGE_BACKEND:   "memory" (default), "file" or "postgres"
- SHORTY_FILE_STORAGE_PATH: log path if backend == "file"
- SHORTY_FILE_FSYNC:        fsync every append if backend == "file"
- SHORTY_DB_DSN:            DSN string if backend == "postgres"
"""

import logging
from enum import Enum
from typing import Optional

from shorty.config import load_settings
from shorty.manager.strategies import get_strategy_from_config

# In-memory and file storage are always available/lightweight
from shorty.storage.base import BaseStorage
from shorty.storage.file_storage import FileStorage
from shorty.storage.storage import Storage

log = logging.getLogger("shorty.storage")


class StorageBackend(str, Enum):
    MEMORY = "memory"
    FILE = "file"
    POSTGRES = "postgres"

    @classmethod
    def parse(cls, name: str) -> "StorageBackend":
        key = (name or "").strip().lower()
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown storage backend: {name!r}") from None


_ALIASES = {
    "": "memory",
    "map": "memory",
    "table": "memory",
    "log": "file",
    "db": "postgres",
    "postgresql": "postgres",
}


def get_storage(backend: Optional[str] = None, **kwargs) -> BaseStorage:
    """
    Return a storage backend based on configuration.

    Parameters
    ----------
    backend : str, optional
        "memory", "file" or "postgres" (aliases: table, log, db). If omitted,
        reads SHORTY_STORAGE_BACKEND.
    kwargs : dict
        Extra args passed to the backend constructor: path=/fsync= for file,
        dsn=/auto_migrate= for postgres, generator=/max_attempts= for any.

    Returns
    -------
    BaseStorage-compatible instance
    """
    cfg = load_settings()
    be = StorageBackend.parse(backend or cfg.STORAGE_BACKEND)
    kwargs.setdefault("generator", get_strategy_from_config(cfg.CODE_LENGTH))
    kwargs.setdefault("max_attempts", cfg.CODE_MAX_ATTEMPTS)

    log.info("selected storage backend: %s", be.value)

    if be is StorageBackend.MEMORY:
        return Storage(**kwargs)

    if be is StorageBackend.FILE:
        path = kwargs.pop("path", None) or cfg.FILE_STORAGE_PATH
        if not path:
            raise ValueError("FILE_STORAGE_PATH is required for file backend (env SHORTY_FILE_STORAGE_PATH)")
        kwargs.setdefault("fsync", cfg.FILE_FSYNC)
        return FileStorage(path=path, **kwargs)

    dsn = kwargs.pop("dsn", None) or cfg.DB_DSN
    if not dsn:
        raise ValueError("DB_DSN is required for postgres backend (env SHORTY_DB_DSN)")
    # Local import to avoid hard dependency when not using postgres
    from shorty.storage.db_storage import DBStorage

    return DBStorage(dsn=dsn, **kwargs)
