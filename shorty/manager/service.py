"""
ShortyService: composition root for the shorty core.

Responsibilities:
    - Own exactly one storage backend, one owner registry and one deletion
      pipeline per process
    - Provide the explicit start/shutdown boundary (the pipeline's consumer
      thread lives between the two)
    - Offer the operations the transport layer needs, with base-address
      rendering applied in one place

Design notes:
    - Nothing here is global; the HTTP app factory builds one service and
      closes over it.
    - Resubmitting a mapped URL is not an error: `shorten` returns the
      existing code with `conflict=True` and the caller picks the status.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from shorty.config import load_settings
from shorty.storage.base import BaseStorage, render_short_url
from shorty.storage.models import BatchResult, OwnedURL, ShortenResult
from shorty.storage.storage_factory import get_storage
from .deletion import DeletionPipeline
from .owners import OwnerRegistry

log = logging.getLogger("shorty.service")


class ShortyService:
    def __init__(
        self,
        storage: BaseStorage,
        base_url: str = "http://localhost:8080",
        registry: Optional[OwnerRegistry] = None,
        pipeline: Optional[DeletionPipeline] = None,
    ):
        """
        Args:
            storage (BaseStorage): Active backend.
            base_url (str): Prefix used to render short URLs.
            registry (Optional[OwnerRegistry]): Defaults to one seeded from storage.
            pipeline (Optional[DeletionPipeline]): Defaults to one with configured limits.
        """
        self.storage = storage
        self.base_url = base_url.rstrip("/")
        self.registry = registry or OwnerRegistry(storage)
        self.pipeline = pipeline or DeletionPipeline(storage)
        self._started = False

    @classmethod
    def from_settings(cls, **storage_kwargs: Any) -> "ShortyService":
        """Build the service (and its backend) from the environment."""
        cfg = load_settings()
        storage = get_storage(**storage_kwargs)
        pipeline = DeletionPipeline(
            storage,
            capacity=cfg.DELETE_QUEUE_SIZE,
            policy=cfg.DELETE_POLICY,
            submit_timeout=cfg.DELETE_SUBMIT_TIMEOUT,
            max_attempts=cfg.DELETE_MAX_ATTEMPTS,
        )
        return cls(storage=storage, base_url=cfg.BASE_URL, pipeline=pipeline)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> "ShortyService":
        if not self._started:
            self.pipeline.start()
            self._started = True
            log.info("shorty service started (storage=%s)", type(self.storage).__name__)
        return self

    def shutdown(self, grace_period: Optional[float] = None) -> int:
        """Drain pending deletions, then release the backend. Returns undrained count."""
        dropped = self.pipeline.stop(grace_period)
        self.storage.close()
        self._started = False
        log.info("shorty service stopped")
        return dropped

    def __enter__(self) -> "ShortyService":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    def session_for(self, token: Optional[str]) -> Tuple[Optional[str], int]:
        """Return (new_token_or_None, owner_id) for a possibly missing/unknown token.

        A new session is allocated when the token is absent or unknown; the
        new token is returned so the caller can hand it back to the client.
        """
        owner_id = self.registry.get(token)
        if owner_id is not None:
            return None, owner_id
        return self.registry.allocate_session()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def short_url(self, short_code: str) -> str:
        return render_short_url(self.base_url, short_code)

    def shorten(self, owner_id: int, long_url: str) -> ShortenResult:
        return self.storage.get_or_create_short_code(owner_id, long_url)

    def shorten_batch(self, owner_id: int, items: Iterable[Mapping[str, Any]]) -> List[BatchResult]:
        return self.storage.resolve_batch(owner_id, self.base_url, items)

    def resolve(self, short_code: str) -> str:
        return self.storage.resolve(short_code)

    def list_owned(self, owner_id: int) -> List[OwnedURL]:
        return self.storage.list_owned(owner_id, self.base_url)

    def delete(self, owner_id: int, short_codes: Iterable[str]) -> int:
        """Queue soft deletes; returns how many were accepted."""
        return self.pipeline.submit(owner_id, short_codes)

    def stats(self) -> Dict[str, int]:
        return self.storage.stats()

    def ping(self) -> bool:
        return self.storage.is_ready()
