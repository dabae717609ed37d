"""
Short-code generation for shorty.

Provided strategies:
- RandomStrategy: L independent, uniformly random symbols from the 62-symbol
  alphabet `0-9A-Za-z`.

Notes:
- Not cryptographically secure; codes are identifiers, not secrets.
- Uniqueness is enforced by the storage backend's retry loop, never here.
- Pass a seed (or a `random.Random`) to get reproducible codes in tests.
"""

import random
import threading
from abc import ABC, abstractmethod
from typing import Optional

from shorty.config import settings

ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"


def _safe_len(length: Optional[int]) -> int:
    """Resolve code length from arg or config, clamped to [1, 32]."""
    L = int(length) if length is not None else int(getattr(settings, "CODE_LENGTH", 6))
    return max(1, min(32, L))


class BaseStrategy(ABC):
    """Abstract base for code generation strategies."""

    @abstractmethod
    def generate(self) -> str:
        raise NotImplementedError


class RandomStrategy(BaseStrategy):
    """
    Random Base62 codes of a fixed length.

    The underlying PRNG is shared by every thread using this instance, so
    draws are taken under a lock.
    """

    def __init__(self, length: Optional[int] = None, seed: Optional[int] = None, rng: Optional[random.Random] = None):
        self.length = _safe_len(length)
        self._rng = rng or random.Random(seed)
        self._lock = threading.Lock()

    def generate(self) -> str:
        with self._lock:
            return "".join(self._rng.choice(ALPHABET) for _ in range(self.length))

    def __call__(self) -> str:
        return self.generate()


def get_strategy_from_config(length: Optional[int] = None) -> RandomStrategy:
    """Return a RandomStrategy sized by `length` or settings.CODE_LENGTH."""
    return RandomStrategy(length=length)
