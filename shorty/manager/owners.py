"""
Owner registry for shorty.

Responsibilities:
    - Allocate owner ids: monotonically increasing, never reused, also
      across restarts
    - Issue opaque session tokens and map them back to owner ids for the
      lifetime of the process

Design notes:
    - The owner counter is its own counter. It is seeded once, at
      construction, from the storage backend: the highest owner id that
      owns a persisted record, or the highest record sequence if larger.
      Owners that never persisted anything have no records to collide
      with, and their tokens die with the process anyway.
    - Tokens live only in memory. Losing a token loses access to the
      owner's records; there is no recovery path.
    - Unknown tokens raise UnknownSessionError instead of silently mapping
      to an anonymous owner 0.
"""

import itertools
import logging
import threading
import uuid
from typing import Dict, Optional, Tuple

from shorty.storage.base import ANONYMOUS_OWNER, BaseStorage
from shorty.storage.errors import UnknownSessionError

log = logging.getLogger("shorty.owners")


class OwnerRegistry:
    """Allocates owner ids and tracks session tokens in memory."""

    def __init__(self, storage: BaseStorage):
        self.storage = storage
        self.recovered_seed = max(storage.recover_last_owner(), storage.recover_last_sequence(), ANONYMOUS_OWNER)
        self._counter = itertools.count(self.recovered_seed + 1)
        self._last_owner_id = self.recovered_seed
        self._sessions: Dict[str, int] = {}
        self._lock = threading.Lock()
        log.info("owner registry seeded at %d", self.recovered_seed)

    def allocate_session(self) -> Tuple[str, int]:
        """Allocate a new owner id and return (token, owner_id)."""
        token = str(uuid.uuid4())
        with self._lock:
            owner_id = next(self._counter)
            self._last_owner_id = owner_id
            self._sessions[token] = owner_id
        log.debug("allocated owner %d", owner_id)
        return token, owner_id

    def lookup(self, token: str) -> int:
        """Return the owner id of a token issued by this registry.

        Raises:
            UnknownSessionError: for tokens this process never issued.
        """
        with self._lock:
            try:
                return self._sessions[token]
            except KeyError:
                raise UnknownSessionError(token) from None

    def get(self, token: Optional[str], default: Optional[int] = None) -> Optional[int]:
        if not token:
            return default
        with self._lock:
            return self._sessions.get(token, default)

    @property
    def last_owner_id(self) -> int:
        with self._lock:
            return self._last_owner_id

    @property
    def owner_count(self) -> int:
        """Sessions issued by this process."""
        with self._lock:
            return len(self._sessions)
