"""
Storage module for shorty (in-memory table implementation).

Responsibilities:
    - Map short codes to URL records
    - Keep a secondary index long URL -> active short code for O(1) dedupe
    - Tombstone records on soft delete without ever dropping them
    - Hand out monotonically increasing record sequence ids

Design:
    - Every read-modify-write and every scan runs under one re-entrant lock,
      so concurrent get_or_create_short_code calls for the same long URL
      cannot both win.
    - `_append` is the persistence hook, called under the lock after a record
      is accepted and before it becomes visible. It is a no-op here; the
      append-only log backend overrides it.

LLM Prompt Example:
    "Explain how a secondary index and a single re-entrant lock turn a
     check-then-insert sequence on a dict into an atomic operation."
"""

import threading
from typing import Dict, List, Mapping, Optional

from .base import ANONYMOUS_OWNER, BaseStorage, log, render_short_url, validate_short_code, validate_url
from .errors import ConflictError, ExhaustedError, GoneError, NotFoundError
from .models import OwnedURL, ShortenResult, URLRecord


class Storage(BaseStorage):
    def __init__(self, **kwargs):
        """
        Initialize empty storage.

        Internal schema:
            self.urls = {short_code: URLRecord}
            self._by_long_url = {original_url: short_code}   # active records only
        """
        super().__init__(**kwargs)
        self.urls: Dict[str, URLRecord] = {}
        self._by_long_url: Dict[str, str] = {}
        self._last_sequence = 0
        self._lock = threading.RLock()

    # ---- Internal helpers -------------------------------------------------

    def _next_sequence(self) -> int:
        self._last_sequence += 1
        return self._last_sequence

    def _append(self, record: URLRecord) -> None:
        """Persist a record before it is applied. Nothing to do in memory."""
        return None

    def _apply(self, record: URLRecord) -> None:
        """Make a record visible in the table and keep the long-URL index in sync."""
        self.urls[record.short_url] = record
        if record.deleted:
            if self._by_long_url.get(record.original_url) == record.short_url:
                del self._by_long_url[record.original_url]
        else:
            self._by_long_url[record.original_url] = record.short_url
        if record.sequence_id > self._last_sequence:
            self._last_sequence = record.sequence_id

    def _insert(self, owner_id: int, short_code: str, long_url: str) -> URLRecord:
        record = URLRecord(
            sequence_id=self._next_sequence(),
            short_url=short_code,
            original_url=long_url,
            user_id=owner_id,
        )
        self._append(record)
        self._apply(record)
        return record

    # ---- Contract methods -------------------------------------------------

    def save(self, owner_id: int, short_code: str, long_url: str) -> None:
        validate_short_code(short_code)
        long_url = validate_url(long_url)
        with self._lock:
            if short_code in self.urls:
                raise ConflictError(short_code=short_code)
            existing = self._by_long_url.get(long_url)
            if existing is not None:
                raise ConflictError(short_code=existing)
            self._insert(owner_id, short_code, long_url)

    def get_or_create_short_code(self, owner_id: int, long_url: str) -> ShortenResult:
        long_url = validate_url(long_url)
        with self._lock:
            existing = self._by_long_url.get(long_url)
            if existing is not None:
                return ShortenResult(short_code=existing, conflict=True)
            for candidate in self._candidates():
                if candidate in self.urls:
                    log.debug("short code collision on %s, retrying", candidate)
                    continue
                self._insert(owner_id, candidate, long_url)
                return ShortenResult(short_code=candidate)
        raise ExhaustedError(self.max_attempts)

    def get_record(self, short_code: str) -> Optional[URLRecord]:
        """Return the raw record (tombstones included) or None."""
        with self._lock:
            return self.urls.get(short_code)

    def resolve(self, short_code: str) -> str:
        record = self.get_record(short_code)
        if record is None:
            raise NotFoundError(short_code)
        if record.deleted:
            raise GoneError(short_code)
        return record.original_url

    def list_owned(self, owner_id: int, base_addr: str) -> List[OwnedURL]:
        with self._lock:
            records = sorted(
                (r for r in self.urls.values() if r.user_id == owner_id and not r.deleted),
                key=lambda r: r.sequence_id,
            )
        return [OwnedURL(short_url=render_short_url(base_addr, r.short_url), original_url=r.original_url) for r in records]

    def soft_delete(self, pairs: Mapping[str, int]) -> None:
        with self._lock:
            for short_code, owner_id in pairs.items():
                record = self.urls.get(short_code)
                if record is None or record.deleted or owner_id == ANONYMOUS_OWNER or record.user_id != owner_id:
                    continue
                tombstone = record.tombstone(self._next_sequence())
                self._append(tombstone)
                self._apply(tombstone)

    def recover_last_sequence(self) -> int:
        with self._lock:
            return self._last_sequence

    def recover_last_owner(self) -> int:
        with self._lock:
            return max((r.user_id for r in self.urls.values()), default=0)

    def is_ready(self) -> bool:
        return True

    def stats(self) -> Dict[str, int]:
        with self._lock:
            active = [r for r in self.urls.values() if not r.deleted]
        return {"urls": len(active), "users": len({r.user_id for r in active})}

    def __len__(self) -> int:
        with self._lock:
            return len(self.urls)
