import json
import uuid

import httpx
import pytest

from app.apis.deps import current_active_user, get_pipeline
from app.apis.generate.main import ERROR_STATUS
from app.core.db.base import get_session
from app.core.errors import ErrorCode, ErrorKind, PipelineError, to_api_error
from app.core.rate_limiter import RateLimiter
from app.modules.flashcards.main import ErrorEnvelope
from main import create_app

from .conftest import make_pdf
from .test_pipeline import build_pipeline

FORWARDED = {"x-forwarded-for": "203.0.113.9"}


@pytest.fixture
def app(session, user):
    application = create_app()

    async def _session():
        yield session

    application.dependency_overrides[get_session] = _session
    application.dependency_overrides[current_active_user] = lambda: user
    return application


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def use_pipeline(app, pipeline):
    app.dependency_overrides[get_pipeline] = lambda: pipeline


def _upload(data: bytes, content_type: str = "application/pdf"):
    return {"file": ("course.pdf", data, content_type)}


def _sse_events(body: str) -> list[tuple[str, dict]]:
    events = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


class RateLimitedPipeline:
    async def run(self, data, **kwargs):
        exc = PipelineError(ErrorKind.RATE_LIMITED, "Too many requests.", retry_after=17)
        return ErrorEnvelope(error=to_api_error(exc))


async def test_root(client):
    resp = await client.get("/")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_generate_returns_flashcards(app, client, fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(fake_pdftoppm, tmp_path)
    use_pipeline(app, pipeline)
    resp = await client.post("/v1/generate", files=_upload(make_pdf(2)), headers=FORWARDED)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert len(body["data"]["flashcards"]) == 9
    assert len(body["data"]["pageImages"]) == 2
    assert pipeline.rate_limiter.entry("203.0.113.9").count == 1


async def test_generate_rejects_non_pdf(app, client, fake_pdftoppm, tmp_path):
    use_pipeline(app, build_pipeline(fake_pdftoppm, tmp_path))
    resp = await client.post(
        "/v1/generate", files=_upload(b"hello", "text/plain"), headers=FORWARDED
    )
    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "error": {
            "code": "INVALID_FILE",
            "message": "The file must be a PDF.",
            "retryable": False,
        },
    }


async def test_generate_file_too_large(app, client, fake_pdftoppm, tmp_path):
    use_pipeline(
        app, build_pipeline(fake_pdftoppm, tmp_path, max_file_size_bytes=32)
    )
    resp = await client.post("/v1/generate", files=_upload(make_pdf(1) + b"x" * 64))
    assert resp.status_code == 413
    assert resp.json()["error"]["code"] == "FILE_TOO_LARGE"


def test_oversize_codes_map_to_content_too_large():
    assert ERROR_STATUS[ErrorCode.FILE_TOO_LARGE] == 413
    assert ERROR_STATUS[ErrorCode.PAYLOAD_TOO_LARGE] == 413


async def test_rate_limited_sets_retry_after(app, client):
    use_pipeline(app, RateLimitedPipeline())
    resp = await client.post("/v1/generate", files=_upload(make_pdf(1)))
    assert resp.status_code == 429
    assert resp.headers["retry-after"] == "17"
    assert resp.json()["error"]["retryAfter"] == 17


async def test_eleventh_request_is_throttled(app, client, fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(
        fake_pdftoppm, tmp_path, rate_limiter=RateLimiter(max_requests=1)
    )
    use_pipeline(app, pipeline)
    first = await client.post("/v1/generate", files=_upload(make_pdf(1)), headers=FORWARDED)
    second = await client.post("/v1/generate", files=_upload(make_pdf(1)), headers=FORWARDED)
    other = await client.post(
        "/v1/generate",
        files=_upload(make_pdf(1)),
        headers={"x-forwarded-for": "198.51.100.1"},
    )
    assert first.status_code == 200
    assert second.status_code == 429
    assert int(second.headers["retry-after"]) >= 1
    assert other.status_code == 200


async def test_generate_stream_sends_sse(app, client, fake_pdftoppm, tmp_path):
    use_pipeline(app, build_pipeline(fake_pdftoppm, tmp_path))
    resp = await client.post("/v1/generate/stream", files=_upload(make_pdf(2)))
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(resp.text)
    assert events[0] == ("stage", {"stage": "rasterizing"})
    assert events[-1][0] == "complete"
    assert events[-1][1]["success"] is True


async def test_generate_stream_reports_errors(app, client, fake_pdftoppm, tmp_path):
    use_pipeline(app, build_pipeline(fake_pdftoppm, tmp_path))
    resp = await client.post(
        "/v1/generate/stream", files=_upload(make_pdf(1, marker=b"BROKEN"))
    )
    events = _sse_events(resp.text)
    assert events[-1][0] == "error"
    assert events[-1][1]["error"]["code"] == "PROCESSING_ERROR"


async def test_generate_and_persist(app, client, fake_pdftoppm, tmp_path):
    use_pipeline(app, build_pipeline(fake_pdftoppm, tmp_path))
    resp = await client.post("/v1/generate/persist", files=_upload(make_pdf(2)))
    assert resp.status_code == 201
    body = resp.json()
    assert body["thematic"]["name"] == "Cardiac anatomy"
    assert body["thematic"]["pdfName"] == "course.pdf"
    assert len(body["flashcards"]) == 9

    listed = await client.get("/v1/thematics")
    assert [t["flashcardCount"] for t in listed.json()] == [9]


async def test_thematic_crud(client):
    created = await client.post(
        "/v1/thematics", json={"name": "Immunology", "description": "T cells"}
    )
    assert created.status_code == 201
    thematic = created.json()
    assert thematic["color"] == "#3B82F6"
    assert thematic["icon"] == "📚"
    thematic_id = thematic["id"]

    fetched = await client.get(f"/v1/thematics/{thematic_id}")
    assert fetched.json()["flashcardCount"] == 0

    empty = await client.patch(f"/v1/thematics/{thematic_id}", json={})
    assert empty.status_code == 422

    for field in ("name", "color", "icon"):
        nulled = await client.patch(f"/v1/thematics/{thematic_id}", json={field: None})
        assert nulled.status_code == 422
    assert (await client.get(f"/v1/thematics/{thematic_id}")).json()["name"] == "Immunology"

    bad_color = await client.patch(
        f"/v1/thematics/{thematic_id}", json={"color": "red"}
    )
    assert bad_color.status_code == 422

    patched = await client.patch(
        f"/v1/thematics/{thematic_id}", json={"name": "Immunity", "description": None}
    )
    assert patched.status_code == 200
    assert patched.json()["name"] == "Immunity"
    assert "description" not in patched.json() or patched.json()["description"] is None

    deleted = await client.delete(f"/v1/thematics/{thematic_id}")
    assert deleted.status_code == 204
    missing = await client.get(f"/v1/thematics/{thematic_id}")
    assert missing.status_code == 404
    again = await client.delete(f"/v1/thematics/{thematic_id}")
    assert again.status_code == 404


async def test_direct_save_and_listing(client):
    thematic_id = (await client.post("/v1/thematics", json={"name": "Anatomy"})).json()[
        "id"
    ]
    card = {
        "front": {"question": "Which bone forms the heel?", "imagePageIndex": 0},
        "back": {"answer": "The calcaneus."},
        "category": "Anatomy",
        "difficulty": "easy",
    }

    invalid = await client.post(
        "/v1/flashcards",
        json={"thematicId": thematic_id, "flashcards": [{**card, "front": {"question": "?"}}]},
    )
    assert invalid.status_code == 422

    unknown = await client.post(
        "/v1/flashcards", json={"thematicId": str(uuid.uuid4()), "flashcards": [card]}
    )
    assert unknown.status_code == 404

    saved = await client.post(
        "/v1/flashcards", json={"thematicId": thematic_id, "flashcards": [card, card]}
    )
    assert saved.status_code == 201
    body = saved.json()
    assert body["success"] is True
    assert body["count"] == 2
    assert body["flashcards"][0]["front"]["imagePageIndex"] == 0
    assert [c["orderIndex"] for c in body["flashcards"]] == [0, 1]

    by_thematic = await client.get(f"/v1/thematics/{thematic_id}/flashcards")
    assert len(by_thematic.json()) == 2
    filtered = await client.get("/v1/flashcards", params={"thematicId": thematic_id})
    assert len(filtered.json()) == 2

    card_id = body["flashcards"][0]["id"]
    assert (await client.get(f"/v1/flashcards/{card_id}")).status_code == 200
    assert (await client.delete(f"/v1/flashcards/{card_id}")).status_code == 204
    assert (await client.get(f"/v1/flashcards/{card_id}")).status_code == 404


async def test_study_results_feed_revision_and_metrics(client):
    thematic_id = (await client.post("/v1/thematics", json={"name": "Virology"})).json()[
        "id"
    ]
    card = {
        "front": {"question": "Which enzyme does HIV use to copy RNA?"},
        "back": {"answer": "Reverse transcriptase."},
    }
    saved = await client.post(
        "/v1/flashcards", json={"thematicId": thematic_id, "flashcards": [card]}
    )
    card_id = saved.json()["flashcards"][0]["id"]

    for correct in (False, False, True):
        resp = await client.post(
            "/v1/study/results",
            json={"flashcardId": card_id, "isCorrect": correct, "responseTime": 1500},
        )
        assert resp.status_code == 201
        assert resp.json() == {"success": True}

    missing = await client.post(
        "/v1/study/results", json={"flashcardId": str(uuid.uuid4()), "isCorrect": True}
    )
    assert missing.status_code == 404

    assert (await client.get("/v1/study/revision")).json() == []
    revision = (await client.get("/v1/study/revision", params={"threshold": 2})).json()
    assert revision[0]["id"] == card_id
    assert revision[0]["errorCount"] == 2
    assert revision[0]["totalSessions"] == 3
    assert revision[0]["thematicName"] == "Virology"
    assert (await client.get("/v1/study/revision", params={"threshold": 0})).status_code == 422

    metrics = (await client.get("/v1/metrics/dashboard")).json()
    assert metrics["totalFlashcards"] == 1
    assert metrics["totalThematics"] == 1
    assert metrics["totalSessions"] == 3
    assert metrics["successRate"] == 33
    assert metrics["avgResponseTime"] == 1500
    assert metrics["streak"] == 1

    recent = (await client.get("/v1/metrics/recent-thematics")).json()
    assert [t["name"] for t in recent] == ["Virology"]
    assert recent[0]["flashcardCount"] == 1
