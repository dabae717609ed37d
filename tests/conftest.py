"""
Global pytest fixtures for the shorty test suite.

Responsibilities:
    - Provide fresh in-memory and file-backed storage per test
    - Provide a scripted code generator so collision paths are deterministic
    - Provide a started ShortyService and a FastAPI TestClient bound to it

Why an app factory?
    `create_app(service)` lets every test own its storage, registry and
    deletion pipeline, so no state leaks between tests.
"""

from typing import Iterable, List

import pytest
from fastapi.testclient import TestClient

from main import create_app
from shorty.manager.deletion import DeletionPipeline
from shorty.manager.service import ShortyService
from shorty.manager.strategies import BaseStrategy
from shorty.storage.file_storage import FileStorage
from shorty.storage.storage import Storage

BASE_URL = "http://localhost:8080"


class ScriptedStrategy(BaseStrategy):
    """Returns pre-seeded codes in order, then falls back to a counter."""

    def __init__(self, codes: Iterable[str]):
        self.codes: List[str] = list(codes)
        self.calls = 0

    def generate(self) -> str:
        self.calls += 1
        if self.codes:
            return self.codes.pop(0)
        return f"z{self.calls:05d}"


@pytest.fixture
def scripted():
    """Factory fixture: scripted("aaaaaa", "bbbbbb") -> ScriptedStrategy."""
    return lambda *codes: ScriptedStrategy(codes)


@pytest.fixture
def storage() -> Storage:
    """Fresh in-memory table storage."""
    return Storage()


@pytest.fixture
def log_path(tmp_path):
    return str(tmp_path / "short-url-db.json")


@pytest.fixture
def file_storage(log_path) -> FileStorage:
    """Fresh append-only log storage in a temp directory."""
    return FileStorage(path=log_path)


@pytest.fixture
def service(storage):
    """Started service over in-memory storage; drained on teardown."""
    pipeline = DeletionPipeline(storage, capacity=500, policy="block", max_attempts=2, retry_backoff=0.01)
    svc = ShortyService(storage=storage, base_url=BASE_URL, pipeline=pipeline)
    svc.start()
    yield svc
    svc.shutdown(grace_period=2.0)


@pytest.fixture
def client(storage):
    """
    Fresh TestClient with a new app instance.

    Used as a context manager so the lifespan starts and drains the
    deletion pipeline.
    """
    svc = ShortyService(storage=storage, base_url=BASE_URL)
    app = create_app(svc)
    with TestClient(app) as c:
        yield c
