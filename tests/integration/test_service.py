"""
Integration tests for ShortyService: storage, owner registry and deletion
pipeline wired together.
"""

import pytest

from shorty.manager.service import ShortyService
from shorty.storage.errors import GoneError, PipelineClosedError

BASE_URL = "http://localhost:8080"


def test_session_for_issues_and_reuses_tokens(service):
    token, owner_id = service.session_for(None)
    assert token and owner_id >= 1
    assert service.session_for(token) == (None, owner_id)
    new_token, other = service.session_for("stale-token")
    assert new_token and new_token != token and other != owner_id


def test_shorten_and_list_owned(service):
    _, owner_id = service.session_for(None)
    res = service.shorten(owner_id, "https://a.example")
    owned = service.list_owned(owner_id)
    assert [o.short_url for o in owned] == [service.short_url(res.short_code)]
    assert service.short_url(res.short_code) == f"{BASE_URL}/{res.short_code}"


def test_delete_goes_through_pipeline(service):
    _, owner_id = service.session_for(None)
    code = service.shorten(owner_id, "https://a.example").short_code
    assert service.delete(owner_id, [code]) == 1
    service.pipeline.join()
    with pytest.raises(GoneError):
        service.resolve(code)
    assert service.list_owned(owner_id) == []


def test_shorten_batch_renders_base_url(service):
    _, owner_id = service.session_for(None)
    results = service.shorten_batch(owner_id, [{"correlation_id": "x", "original_url": "https://b.example"}])
    assert results[0].short_url.startswith(BASE_URL + "/")


def test_shutdown_drains_and_closes(storage):
    svc = ShortyService(storage=storage, base_url=BASE_URL + "/")
    assert svc.base_url == BASE_URL
    with svc:
        _, owner_id = svc.session_for(None)
        code = svc.shorten(owner_id, "https://a.example").short_code
        svc.delete(owner_id, [code])
    with pytest.raises(GoneError):
        storage.resolve(code)
    with pytest.raises(PipelineClosedError):
        svc.delete(owner_id, [code])


def test_from_settings_uses_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SHORTY_STORAGE_BACKEND", "file")
    monkeypatch.setenv("SHORTY_FILE_STORAGE_PATH", str(tmp_path / "db.json"))
    monkeypatch.setenv("SHORTY_BASE_URL", "https://sho.rt")
    monkeypatch.setenv("SHORTY_DELETE_POLICY", "reject")
    monkeypatch.setenv("SHORTY_DELETE_QUEUE_SIZE", "7")
    svc = ShortyService.from_settings()
    assert svc.base_url == "https://sho.rt"
    assert svc.pipeline.policy == "reject" and svc.pipeline.capacity == 7
    assert svc.ping() is True
    svc.shutdown(0.1)
