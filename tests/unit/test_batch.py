"""
Unit tests for BaseStorage.resolve_batch (exercised through the table backend).

Covers:
    - per-item isolation: malformed items do not discard valid results
    - duplicates inside one batch and against existing records
    - BatchItem instances and plain dicts are both accepted
    - taxonomy errors become per-item errors; foreign errors abort
"""

import pytest

from shorty.storage.errors import ExhaustedError
from shorty.storage.models import BatchItem
from shorty.storage.storage import Storage

BASE = "http://localhost:8080"


def test_one_valid_one_malformed(storage):
    results = storage.resolve_batch(
        1,
        BASE,
        [
            {"correlation_id": "ok", "original_url": "https://valid.example"},
            {"correlation_id": "bad", "original_url": "not-a-url"},
        ],
    )
    assert len(results) == 2
    ok, bad = results
    assert ok.ok and ok.correlation_id == "ok"
    assert ok.short_url.startswith(BASE + "/")
    code = ok.short_url.rsplit("/", 1)[1]
    assert storage.resolve(code) == "https://valid.example"
    assert not bad.ok and bad.correlation_id == "bad"
    assert bad.short_url is None
    assert "Invalid URL format" in bad.error


def test_missing_fields_are_per_item_errors(storage):
    results = storage.resolve_batch(
        1,
        BASE,
        [
            {"original_url": "https://no-id.example"},
            {"correlation_id": "no-url"},
            "just a string",
            {"correlation_id": "fine", "original_url": "https://fine.example"},
        ],
    )
    assert [r.ok for r in results] == [False, False, False, True]
    assert results[0].correlation_id is None
    assert "malformed batch item" in results[0].error
    assert results[1].correlation_id == "no-url"
    assert results[1].error == "url is empty"


def test_duplicates_are_soft_successes(storage):
    existing = storage.get_or_create_short_code(7, "https://dup.example").short_code
    results = storage.resolve_batch(
        1,
        BASE,
        [
            BatchItem(correlation_id="a", original_url="https://dup.example"),
            BatchItem(correlation_id="b", original_url="https://same.example"),
            BatchItem(correlation_id="c", original_url="https://same.example"),
        ],
    )
    assert all(r.ok for r in results)
    assert results[0].short_url == f"{BASE}/{existing}"
    assert results[0].conflict is True
    assert results[1].conflict is False
    assert results[2].conflict is True
    assert results[1].short_url == results[2].short_url


def test_exhausted_item_does_not_abort_batch(scripted):
    storage = Storage(generator=scripted("taken1", "taken1", "fresh1"), max_attempts=2)
    storage.save(1, "taken1", "https://taken.example")
    results = storage.resolve_batch(
        1,
        BASE,
        [
            {"correlation_id": "x", "original_url": "https://x.example"},
            {"correlation_id": "y", "original_url": "https://y.example"},
        ],
    )
    assert not results[0].ok
    assert str(ExhaustedError(2)) == results[0].error
    assert results[1].ok and results[1].short_url == f"{BASE}/fresh1"


def test_foreign_errors_propagate(storage, monkeypatch):
    def boom(owner_id, long_url):
        raise OSError("disk on fire")

    monkeypatch.setattr(storage, "get_or_create_short_code", boom)
    with pytest.raises(OSError):
        storage.resolve_batch(1, BASE, [{"correlation_id": "a", "original_url": "https://a.example"}])


def test_empty_batch(storage):
    assert storage.resolve_batch(1, BASE, []) == []
