import asyncio

import pytest
from sqlalchemy import func, select

from app.core.db.schemas import Flashcard as FlashcardRow, Thematic
from app.core.errors import ErrorCode
from app.core.rate_limiter import RateLimiter
from app.modules.flashcards.generator import FlashcardGenerator
from app.modules.flashcards.main import (
    ErrorEnvelope,
    FlashcardPipeline,
    GenerationEnvelope,
    PersistedEnvelope,
    PipelineRun,
    PipelineState,
)
from app.modules.pdf.optimizer import ImageOptimizer
from app.modules.pdf.rasterizer import PdfRasterizer

from .conftest import flashcard_model, generation_payload, make_pdf, pdftoppm_calls


class CountingGenerator(FlashcardGenerator):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.streams = 0

    def stream(self, images, *, preflight=True):
        self.streams += 1
        return super().stream(images, preflight=preflight)


def build_pipeline(script, tmp_path, *, model=None, **overrides):
    work = tmp_path / "work"
    work.mkdir(exist_ok=True)
    params = dict(
        rasterizer=PdfRasterizer(executable=str(script), temp_dir=work),
        optimizer=ImageOptimizer(),
        generator=CountingGenerator(model or flashcard_model()),
        rate_limiter=RateLimiter(),
    )
    params.update(overrides)
    return FlashcardPipeline(**params)


async def test_run_returns_cards_and_page_images(fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(fake_pdftoppm, tmp_path)
    envelope = await pipeline.run(make_pdf(3), client_key="10.0.0.1")
    assert isinstance(envelope, GenerationEnvelope)
    body = envelope.model_dump(by_alias=True, mode="json", exclude_none=True)
    assert body["success"] is True
    assert len(body["data"]["flashcards"]) == 9
    assert [p["pageIndex"] for p in body["data"]["pageImages"]] == [0, 1, 2]
    assert all(p["mimeType"] == "image/jpeg" for p in body["data"]["pageImages"])
    assert pipeline.rate_limiter.entry("10.0.0.1").active_requests == 0


async def test_wrong_content_type_rejected(fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(fake_pdftoppm, tmp_path)
    envelope = await pipeline.run(
        make_pdf(1), client_key="c", content_type="image/png"
    )
    assert isinstance(envelope, ErrorEnvelope)
    assert envelope.error.code is ErrorCode.INVALID_FILE


async def test_invalid_pdf_never_reaches_the_tool(fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(fake_pdftoppm, tmp_path)
    envelope = await pipeline.run(b"<html></html>", client_key="c")
    assert isinstance(envelope, ErrorEnvelope)
    assert envelope.error.code is ErrorCode.INVALID_FILE
    assert pdftoppm_calls(fake_pdftoppm) == []
    # Rejected before admission: nothing counted against the client.
    assert pipeline.rate_limiter.entry("c") is None


async def test_oversized_upload(fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(fake_pdftoppm, tmp_path, max_file_size_bytes=64)
    envelope = await pipeline.run(make_pdf(1) + b"0" * 100, client_key="c")
    assert envelope.error.code is ErrorCode.FILE_TOO_LARGE
    assert "0MB" in envelope.error.message


async def test_heavy_payload_never_reaches_the_model(fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(fake_pdftoppm, tmp_path, max_payload_bytes=10)
    envelope = await pipeline.run(make_pdf(2), client_key="c")
    assert envelope.error.code is ErrorCode.PAYLOAD_TOO_LARGE
    assert pipeline.generator.streams == 0
    assert pipeline.rate_limiter.entry("c").active_requests == 0


async def test_conversion_failure_releases_slot(fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(fake_pdftoppm, tmp_path)
    envelope = await pipeline.run(make_pdf(2, marker=b"BROKEN"), client_key="c")
    assert envelope.error.code is ErrorCode.PROCESSING_ERROR
    assert envelope.error.retryable is True
    assert pipeline.rate_limiter.entry("c").active_requests == 0


async def test_generation_failure_is_an_ai_error(fake_pdftoppm, tmp_path):
    payload = generation_payload()
    payload["flashcards"] = payload["flashcards"][:4]
    pipeline = build_pipeline(
        fake_pdftoppm, tmp_path, model=flashcard_model(payload)
    )
    envelope = await pipeline.run(make_pdf(1), client_key="c")
    assert envelope.error.code is ErrorCode.AI_ERROR


async def test_rate_limited_client_gets_retry_after(fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(
        fake_pdftoppm, tmp_path, rate_limiter=RateLimiter(max_requests=1)
    )
    first = await pipeline.run(make_pdf(1), client_key="c")
    second = await pipeline.run(make_pdf(1), client_key="c")
    assert isinstance(first, GenerationEnvelope)
    assert second.error.code is ErrorCode.RATE_LIMITED
    assert 1 <= second.error.retry_after <= 60


async def test_stream_emits_stages_partials_and_complete(fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(
        fake_pdftoppm, tmp_path, model=flashcard_model(chunk_size=80)
    )
    events = [e async for e in pipeline.stream(make_pdf(2), client_key="c")]
    kinds = [e.event for e in events]
    assert kinds[:2] == ["stage", "stage"]
    assert events[1].data == {"stage": "generating", "pageCount": 2}
    assert "partial" in kinds
    assert kinds[-1] == "complete"
    complete = events[-1].data
    assert complete["success"] is True
    assert len(complete["data"]["pageImages"]) == 2
    assert pipeline.rate_limiter.entry("c").active_requests == 0


async def test_stream_error_is_last_event(fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(fake_pdftoppm, tmp_path)
    events = [e async for e in pipeline.stream(make_pdf(0), client_key="c")]
    assert events[-1].event == "error"
    assert events[-1].data["success"] is False
    assert events[-1].data["error"]["code"] == "INVALID_FILE"
    assert pipeline.rate_limiter.entry("c").active_requests == 0


async def test_closing_stream_early_releases_slot(fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(fake_pdftoppm, tmp_path)
    events = pipeline.stream(make_pdf(1), client_key="c")
    first = await events.__anext__()
    assert first.event == "stage"
    assert pipeline.rate_limiter.entry("c").active_requests == 1
    await events.aclose()
    assert pipeline.rate_limiter.entry("c").active_requests == 0


async def test_concurrent_runs_share_the_cap(fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(
        fake_pdftoppm, tmp_path, rate_limiter=RateLimiter(max_concurrent=1)
    )
    results = await asyncio.gather(
        *(pipeline.run(make_pdf(1), client_key="c") for _ in range(3))
    )
    assert all(isinstance(r, GenerationEnvelope) for r in results)
    assert pipeline.rate_limiter.entry("c").active_requests == 0


async def test_persisting_run_stores_thematic_and_cards(
    fake_pdftoppm, tmp_path, session, user
):
    pipeline = build_pipeline(fake_pdftoppm, tmp_path)
    envelope = await pipeline.run(
        make_pdf(3),
        client_key="c",
        user_id=user.id,
        session=session,
        file_name="cardio.pdf",
    )
    assert isinstance(envelope, PersistedEnvelope)
    assert envelope.thematic.name == "Cardiac anatomy"
    assert envelope.thematic.pdf_name == "cardio.pdf"
    assert len(envelope.flashcards) == 9
    assert [c.order_index for c in envelope.flashcards] == list(range(9))
    assert len(envelope.page_images) == 3

    thematics = await session.scalar(select(func.count(Thematic.id)))
    cards = await session.scalar(select(func.count(FlashcardRow.id)))
    assert (thematics, cards) == (1, 9)


async def test_persisting_without_session_fails_cleanly(fake_pdftoppm, tmp_path):
    pipeline = build_pipeline(fake_pdftoppm, tmp_path)
    envelope = await pipeline.run(make_pdf(1), client_key="c", user_id=1)
    assert isinstance(envelope, ErrorEnvelope)
    assert envelope.error.code is ErrorCode.PROCESSING_ERROR


def test_finished_run_cannot_advance():
    run = PipelineRun(client_key="c")
    run.advance(PipelineState.ADMITTED)
    run.fail(RuntimeError("boom"))
    assert run.history == [
        PipelineState.IDLE,
        PipelineState.ADMITTED,
        PipelineState.FAILED,
    ]
    with pytest.raises(RuntimeError):
        run.advance(PipelineState.RASTERIZING)
