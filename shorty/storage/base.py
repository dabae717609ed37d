"""
Base storage interface for shorty.

Purpose:
    Define the persistence contract that the in-memory table, the append-only
    log file and the PostgreSQL backends implement, so the owner registry,
    the deletion pipeline and the HTTP layer never care where data lives.

Shared behaviour lives here too:
    - URL / short-code validation
    - the capped candidate loop used by every get_or_create_short_code
    - resolve_batch, which is the same per-item loop for every backend

Testing & Coverage:
    Abstract declarations are annotated with `# pragma: no cover`.
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union
from urllib.parse import urlparse

from pydantic import ValidationError

from shorty.config import settings
from shorty.manager.strategies import BaseStrategy, RandomStrategy
from .errors import ShortyError
from .models import BatchItem, BatchResult, OwnedURL, ShortenResult

log = logging.getLogger("shorty.storage")

ANONYMOUS_OWNER = 0

ShortCodePattern = re.compile(r"^[0-9A-Za-z]+$")

BatchInput = Union[BatchItem, Mapping[str, Any]]


def validate_url(url: Optional[str]) -> str:
    """
    Validate that a URL has an http/https scheme and a netloc.

    Raises:
        ValueError: If the URL is empty or malformed.
    """
    if not url or not url.strip():
        raise ValueError("url is empty")
    parsed = urlparse(url.strip())
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Invalid URL format")
    return url.strip()


def validate_short_code(short_code: str) -> str:
    if not short_code or not ShortCodePattern.match(short_code):
        raise ValueError("short code must be non-empty and use only 0-9A-Za-z")
    return short_code


def render_short_url(base_addr: str, short_code: str) -> str:
    return f"{base_addr.rstrip('/')}/{short_code}"


class BaseStorage(ABC):
    """Abstract base class for storage backends."""

    def __init__(self, generator: Optional[BaseStrategy] = None, max_attempts: Optional[int] = None):
        self.generator = generator or RandomStrategy()
        self.max_attempts = max(1, int(max_attempts if max_attempts is not None else settings.CODE_MAX_ATTEMPTS))

    # ---- Contract methods -------------------------------------------------

    @abstractmethod  # pragma: no cover
    def save(self, owner_id: int, short_code: str, long_url: str) -> None:
        """
        Persist a new (code, url) mapping for an owner.

        Raises:
            ConflictError: if any record (active or tombstoned) holds short_code,
                or long_url already has an active code.
            ValueError: on a malformed code or URL.
        """
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def get_or_create_short_code(self, owner_id: int, long_url: str) -> ShortenResult:
        """
        Return the active code for long_url, creating one if needed.

        An existing mapping is returned with `conflict=True` (a soft success).
        The existence check and the insert are atomic per backend.

        Raises:
            ExhaustedError: when max_attempts candidates all collided.
        """
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def resolve(self, short_code: str) -> str:
        """
        Return the long URL for short_code.

        Raises:
            NotFoundError: the code never existed.
            GoneError: the code was soft-deleted.
        """
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def list_owned(self, owner_id: int, base_addr: str) -> List[OwnedURL]:
        """Return every active record of owner_id, rendered against base_addr."""
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def soft_delete(self, pairs: Mapping[str, int]) -> None:
        """
        Tombstone each (code, owner) pair. Unknown codes and owner
        mismatches are silently ignored.
        """
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def recover_last_sequence(self) -> int:
        """Highest record sequence id known to the backend (0 when empty)."""
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def recover_last_owner(self) -> int:
        """Highest owner id that owns a persisted record (0 when empty)."""
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def is_ready(self) -> bool:
        raise NotImplementedError

    @abstractmethod  # pragma: no cover
    def stats(self) -> Dict[str, int]:
        """Return {"urls": active records, "users": distinct owners of active records}."""
        raise NotImplementedError

    # ---- Shared behaviour -------------------------------------------------

    def close(self) -> None:
        """Release backend resources. Default: nothing to release."""
        return None

    def _candidates(self) -> Iterator[str]:
        """Yield at most max_attempts freshly generated codes."""
        for _ in range(self.max_attempts):
            yield self.generator.generate()

    def resolve_batch(self, owner_id: int, base_addr: str, items: Iterable[BatchInput]) -> List[BatchResult]:
        """
        Shorten every item independently.

        A malformed item (bad shape, empty or non-http(s) URL) or a taxonomy
        error yields a per-item error; an already-mapped URL yields its
        existing short URL with `conflict=True`. Errors outside the taxonomy
        (I/O, lost connection) abort the batch and propagate unchanged.
        """
        results: List[BatchResult] = []
        for raw in items:
            correlation_id = None
            try:
                item = raw if isinstance(raw, BatchItem) else BatchItem.model_validate(raw)
                correlation_id = item.correlation_id
                url = validate_url(item.original_url)
                res = self.get_or_create_short_code(owner_id, url)
            except ValidationError as e:
                if isinstance(raw, Mapping):
                    correlation_id = raw.get("correlation_id")
                results.append(BatchResult(correlation_id=_as_str(correlation_id), error=_first_error(e)))
                continue
            except (ValueError, ShortyError) as e:
                results.append(BatchResult(correlation_id=correlation_id, error=str(e)))
                continue
            results.append(
                BatchResult(
                    correlation_id=correlation_id,
                    short_url=render_short_url(base_addr, res.short_code),
                    conflict=res.conflict,
                )
            )
        log.debug("resolve_batch owner=%s items=%d errors=%d", owner_id, len(results), sum(not r.ok for r in results))
        return results


def _as_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _first_error(e: ValidationError) -> str:
    errs = e.errors()
    if not errs:
        return "malformed batch item"
    first = errs[0]
    loc = ".".join(str(p) for p in first.get("loc", ())) or "item"
    return f"malformed batch item: {loc}: {first.get('msg', 'invalid')}"
