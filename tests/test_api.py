"""Tests for the FastAPI generation and quota endpoints."""

from __future__ import annotations

import base64

import pytest
from fastapi.testclient import TestClient

from app import main
from app.studio.models import ImageChunk, QuotaRecord, TextChunk
from app.studio.quota import QuotaStore
from fakes import PNG_BYTES, MemoryStorage, ScriptedGenerator

REFERENCE_B64 = base64.b64encode(b"reference").decode()


@pytest.fixture
def api_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def api_store(api_storage) -> QuotaStore:
    return QuotaStore(api_storage, free_limit=3)


@pytest.fixture
def api_generator() -> ScriptedGenerator:
    return ScriptedGenerator(scripts={"sitting-desk": [TextChunk("refused")]})


@pytest.fixture
def client(api_store, api_generator):
    main.app.dependency_overrides[main.get_quota_store] = lambda: api_store
    main.app.dependency_overrides[main.get_generator_factory] = lambda: (lambda provider: api_generator)
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()
    main.generation_jobs.clear()


def _headers() -> dict:
    return {"X-API-Key": main.API_KEY}


def _body(**overrides) -> dict:
    body = {
        "user_id": "u1",
        "reference_image": REFERENCE_B64,
        "style": "comic-style",
        "poses": ["arms-crossed", "sitting-desk", "coffee-standing"],
    }
    body.update(overrides)
    return body


def test_generate_reports_mixed_outcomes(client, api_store) -> None:
    response = client.post("/generate", json=_body(), headers=_headers())

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["succeeded_count"] == 2
    assert data["failed_count"] == 1
    assert [o["descriptor_id"] for o in data["outcomes"]] == ["arms-crossed", "sitting-desk", "coffee-standing"]
    assert data["outcomes"][0]["image"] == "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
    assert data["outcomes"][1]["reason"] == "no_image_produced"
    assert data["outcomes"][1]["detail"] == "refused"
    assert api_store.load("u1").free_used == 2


def test_generate_requires_api_key(client) -> None:
    response = client.post("/generate", json=_body(), headers={"X-API-Key": "wrong"})
    assert response.status_code == 403


def test_generate_blocked_when_quota_exhausted(client, api_store, api_generator) -> None:
    api_store.persist(QuotaRecord("u1", free_used=3, free_limit=3))

    response = client.post("/generate", json=_body(), headers=_headers())

    data = response.json()
    assert data["status"] == "quota_exceeded"
    assert {o["reason"] for o in data["outcomes"]} == {"quota_exceeded"}
    assert api_generator.calls == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"poses": []},
        {"style": None},
        {"style": "no-such-style"},
        {"poses": ["no-such-pose"]},
        {"reference_image": "not base64!!"},
        {"user_id": "../escape"},
    ],
)
def test_generate_rejects_bad_requests(client, overrides) -> None:
    response = client.post("/generate", json=_body(**overrides), headers=_headers())
    assert response.status_code == 400


def test_background_swap(client, api_generator) -> None:
    body = _body(background_image="data:image/png;base64," + REFERENCE_B64, poses=[], style=None)
    response = client.post("/generate", json=body, headers=_headers())
    assert response.status_code == 200
    assert api_generator.calls == ["background-swap"]


def test_storage_unavailable_on_load(client, api_storage) -> None:
    api_storage.fail_reads = True
    response = client.post("/generate", json=_body(), headers=_headers())
    assert response.status_code == 503


def test_storage_failure_mid_batch_returns_partial_result(client, api_storage) -> None:
    api_storage.fail_writes_after = 0
    response = client.post("/generate", json=_body(), headers=_headers())

    assert response.status_code == 503
    data = response.json()
    assert data["status"] == "aborted"
    assert data["succeeded_count"] == 1
    assert [o["reason"] for o in data["outcomes"][1:]] == ["aborted", "aborted"]
    assert data["error"]


def test_concurrent_batch_for_same_user_rejected(client) -> None:
    main.acquire_user_lock("u1")
    try:
        response = client.post("/generate", json=_body(), headers=_headers())
    finally:
        main.release_user_lock("u1")
    assert response.status_code == 409


def test_user_lock_is_dropped_after_batch(client, api_storage) -> None:
    client.post("/generate", json=_body(), headers=_headers())
    api_storage.fail_reads = True
    client.post("/generate", json=_body(user_id="u2"), headers=_headers())
    assert main._active_users == set()


def test_unconfigured_generator(client, monkeypatch) -> None:
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    main.app.dependency_overrides[main.get_generator_factory] = lambda: main.get_generator
    response = client.post("/generate", json=_body(), headers=_headers())
    assert response.status_code == 500
    assert "GEMINI_API_KEY" in response.json()["detail"]


class TestAsyncJobs:
    def test_job_runs_and_reports(self, client) -> None:
        started = client.post("/generate/async", json=_body(), headers=_headers())
        assert started.status_code == 200
        job_id = started.json()["job_id"]

        status = client.get(f"/generate/status/{job_id}").json()
        assert status["status"] == "completed"
        assert status["progress"] == {"current": 3, "total": 3}
        assert status["succeeded_count"] == 2

    def test_cancel_stops_remaining_items(self, client, api_generator) -> None:
        def cancel_then_image():
            for job in main.generation_jobs.values():
                job["cancel"].set()
            yield ImageChunk(PNG_BYTES)

        api_generator.scripts["arms-crossed"] = cancel_then_image()
        job_id = client.post("/generate/async", json=_body(), headers=_headers()).json()["job_id"]

        status = client.get(f"/generate/status/{job_id}").json()
        assert status["status"] == "aborted"
        assert [o["status"] for o in status["outcomes"]] == ["success", "failed", "failed"]
        assert api_generator.calls == ["arms-crossed"]
        assert status["progress"] == {"current": 3, "total": 3}

        cancel = client.post(f"/generate/cancel/{job_id}", headers=_headers())
        assert cancel.json()["cancel_requested"] is True

    def test_unknown_job(self, client) -> None:
        assert client.get("/generate/status/missing").status_code == 404
        assert client.post("/generate/cancel/missing", headers=_headers()).status_code == 404


class TestQuotaEndpoints:
    def test_get_quota_for_new_user(self, client) -> None:
        data = client.get("/quota/new-user", headers=_headers()).json()
        assert data["free_used"] == 0
        assert data["remaining"] == 3
        assert data["can_generate"] is True
        assert data["subscription_active"] is False

    def test_user_quota_requires_api_key(self, client) -> None:
        assert client.get("/quota/u1").status_code == 403

    def test_reset(self, client, api_store) -> None:
        api_store.persist(QuotaRecord("u1", free_used=3, free_limit=3))
        data = client.post("/quota/u1/reset", headers=_headers()).json()
        assert data["free_used"] == 0
        assert data["can_generate"] is True

    def test_list_users(self, client, api_store) -> None:
        api_store.persist(QuotaRecord("u1"))
        assert client.get("/quota", headers=_headers()).json() == {"users": ["u1"]}


def test_presets_endpoint(client) -> None:
    data = client.get("/presets").json()
    assert any(p["id"] == "arms-crossed" for p in data["poses"])


def test_providers_endpoint(client) -> None:
    names = [p["name"] for p in client.get("/providers").json()["providers"]]
    assert names == ["gemini", "gemini-rest"]


class TestRequestKinds:
    def test_custom_descriptors(self, client, api_generator) -> None:
        body = _body(poses=[], style=None, descriptors=[
            {"id": "wave", "instruction": "make them wave"},
            {"id": "hat", "instruction": "add a hat", "reference_images": [REFERENCE_B64], "aspect_ratio": "1:1"},
        ])
        response = client.post("/generate", json=body, headers=_headers())

        assert response.status_code == 200
        assert api_generator.calls == ["wave", "hat"]
        assert [o["descriptor_id"] for o in response.json()["outcomes"]] == ["wave", "hat"]

    def test_custom_descriptors_need_unique_ids(self, client) -> None:
        body = _body(descriptors=[{"id": "a", "instruction": "x"}, {"id": "a", "instruction": "y"}])
        assert client.post("/generate", json=body, headers=_headers()).status_code == 400

    def test_infographic(self, client, api_generator) -> None:
        body = {
            "user_id": "u1",
            "infographic": {
                "content_image": REFERENCE_B64,
                "style_image": REFERENCE_B64,
                "font_description": "rounded sans",
                "brand_color": "#FF6B00",
            },
        }
        response = client.post("/generate", json=body, headers=_headers())
        assert response.status_code == 200
        assert api_generator.calls == ["infographic"]

    def test_thumbnail_and_refine(self, client, api_generator) -> None:
        thumbnail = {"user_id": "u1", "thumbnail": {"title": "I tried it for 30 days", "face_images": [REFERENCE_B64]}}
        refine = {"user_id": "u1", "thumbnail_refine": {"image": REFERENCE_B64, "instruction": "make the text red"}}

        assert client.post("/generate", json=thumbnail, headers=_headers()).status_code == 200
        assert client.post("/generate", json=refine, headers=_headers()).status_code == 200
        assert api_generator.calls == ["thumbnail", "thumbnail-refine"]

    def test_only_one_kind_per_request(self, client, api_generator) -> None:
        body = _body(
            background_image=REFERENCE_B64,
            thumbnail={"title": "two kinds"},
        )
        response = client.post("/generate", json=body, headers=_headers())
        assert response.status_code == 400
        assert api_generator.calls == []

    def test_poses_need_reference_image(self, client) -> None:
        body = _body()
        del body["reference_image"]
        assert client.post("/generate", json=body, headers=_headers()).status_code == 400

    def test_bad_inspiration_weight_is_rejected(self, client) -> None:
        body = {"user_id": "u1", "thumbnail": {"title": "t", "inspiration_weight": "extreme"}}
        assert client.post("/generate", json=body, headers=_headers()).status_code == 422
