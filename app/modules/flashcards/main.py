"""Flashcards pipeline: PDF bytes in, validated flashcards out.

``FlashcardPipeline`` sequences admission, rasterization, optimization, the
payload guard, generation and (for signed-in callers) persistence. Every
failure ends as an error envelope carrying a stable code, and the
concurrency slot taken at admission is always released.
"""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings
from app.core.errors import ApiError, ErrorKind, PipelineError, to_api_error
from app.core.logging import get_logger
from app.core.rate_limiter import RateLimiter
from app.modules.flashcards.generator import FlashcardGenerator
from app.modules.flashcards.models.flashcards import (
    CamelModel,
    GenerationDraft,
    GenerationMetadata,
    GenerationResult,
    PageImage,
)
from app.modules.flashcards.models.records import FlashcardRead, ThematicRead
from app.modules.flashcards.reconciler import PersistenceReconciler
from app.modules.pdf.guard import assert_within_limit
from app.modules.pdf.optimizer import ImageOptimizer
from app.modules.pdf.rasterizer import PdfRasterizer, validate_pdf_bytes

logger = get_logger(__name__)

PDF_MIME_TYPE = "application/pdf"


class PipelineState(str, enum.Enum):
    IDLE = "idle"
    ADMITTED = "admitted"
    RASTERIZING = "rasterizing"
    OPTIMIZING = "optimizing"
    GUARD_CHECKED = "guard_checked"
    GENERATING = "generating"
    VALIDATED = "validated"
    PERSISTING = "persisting"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_STATES = frozenset({PipelineState.COMPLETE, PipelineState.FAILED})


@dataclass
class PipelineRun:
    """State of one request going through the pipeline."""

    client_key: str
    state: PipelineState = PipelineState.IDLE
    history: list[PipelineState] = field(
        default_factory=lambda: [PipelineState.IDLE]
    )
    error: Optional[ApiError] = None
    started: float = field(default_factory=time.perf_counter)

    def advance(self, state: PipelineState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"pipeline already finished ({self.state.value})")
        self.state = state
        self.history.append(state)
        logger.debug(
            "-> %s",
            state.value,
            extra={"client": self.client_key, "stage": state.value},
        )

    def fail(self, exc: BaseException) -> ApiError:
        self.error = to_api_error(exc)
        failed_at = self.state
        self.state = PipelineState.FAILED
        self.history.append(PipelineState.FAILED)
        kind = exc.kind.value if isinstance(exc, PipelineError) else type(exc).__name__
        if isinstance(exc, PipelineError):
            logger.warning(
                "Pipeline failed at %s: %s (%s)",
                failed_at.value,
                kind,
                exc.message,
                extra={"client": self.client_key, "stage": failed_at.value},
            )
        else:
            logger.exception(
                "Pipeline failed at %s with unexpected error",
                failed_at.value,
                exc_info=exc,
                extra={"client": self.client_key, "stage": failed_at.value},
            )
        return self.error

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.started


# --- envelopes -----------------------------------------------------------


class ErrorEnvelope(CamelModel):
    success: Literal[False] = False
    error: ApiError


class GenerationEnvelope(CamelModel):
    success: Literal[True] = True
    data: GenerationResult


class PersistedEnvelope(CamelModel):
    success: Literal[True] = True
    thematic: ThematicRead
    flashcards: list[FlashcardRead]
    metadata: GenerationMetadata
    page_images: list[PageImage]


PipelineEnvelope = Union[GenerationEnvelope, PersistedEnvelope, ErrorEnvelope]


@dataclass
class StreamEvent:
    """One server-sent event: ``stage``, ``partial``, ``complete`` or ``error``."""

    event: str
    data: dict[str, Any]


def partial_payload(draft: GenerationDraft) -> dict[str, Any]:
    return {
        "flashcardCount": len(draft.flashcards),
        "partial": draft.model_dump(by_alias=True, mode="json", exclude_none=True),
    }


class FlashcardPipeline:
    def __init__(
        self,
        *,
        rasterizer: PdfRasterizer,
        optimizer: ImageOptimizer,
        generator: FlashcardGenerator,
        rate_limiter: RateLimiter,
        reconciler: Optional[PersistenceReconciler] = None,
        max_file_size_bytes: int = 20 * 1024 * 1024,
        max_payload_bytes: int = 50 * 1024 * 1024,
    ) -> None:
        self.rasterizer = rasterizer
        self.optimizer = optimizer
        self.generator = generator
        self.rate_limiter = rate_limiter
        self.reconciler = reconciler or PersistenceReconciler(generator)
        self.max_file_size_bytes = max_file_size_bytes
        self.max_payload_bytes = max_payload_bytes

    @classmethod
    def from_settings(
        cls,
        cfg: Settings = settings,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        generator: Optional[FlashcardGenerator] = None,
    ) -> "FlashcardPipeline":
        p = cfg.pipeline
        return cls(
            rasterizer=PdfRasterizer(
                executable=p.pdftoppm_path, density=p.density, max_pages=p.max_pages
            ),
            optimizer=ImageOptimizer(
                max_width=p.max_width, quality=p.quality, batch_size=p.batch_size
            ),
            generator=generator
            or FlashcardGenerator(
                api_key=cfg.gemini_api_key,
                model_name=cfg.gemini_model,
                language=p.output_language,
                timeout=p.generation_timeout_seconds,
                max_payload_bytes=p.max_payload_bytes,
            ),
            rate_limiter=rate_limiter
            or RateLimiter(
                window_seconds=p.rate_limit_window_seconds,
                max_requests=p.rate_limit_max_requests,
                max_concurrent=p.max_concurrent_requests_per_ip,
                sweep_interval=p.rate_limit_sweep_seconds,
            ),
            max_file_size_bytes=p.max_file_size_bytes,
            max_payload_bytes=p.max_payload_bytes,
        )

    # --- stages ----------------------------------------------------------

    def validate_upload(
        self, pdf_bytes: bytes, content_type: Optional[str] = PDF_MIME_TYPE
    ) -> None:
        if content_type is not None and content_type != PDF_MIME_TYPE:
            raise PipelineError(ErrorKind.INVALID_INPUT, "The file must be a PDF.")
        if len(pdf_bytes) > self.max_file_size_bytes:
            limit_mb = self.max_file_size_bytes // (1024 * 1024)
            raise PipelineError(
                ErrorKind.FILE_TOO_LARGE,
                f"The file must be smaller than {limit_mb}MB.",
            )
        validate_pdf_bytes(pdf_bytes)

    async def prepare_images(
        self, run: PipelineRun, pdf_bytes: bytes
    ) -> list[PageImage]:
        """Rasterize, optimize and size-check the document pages."""
        run.advance(PipelineState.RASTERIZING)
        async with self.rasterizer.rasterize(pdf_bytes) as pages:
            run.advance(PipelineState.OPTIMIZING)
            images = await self.optimizer.optimize_all(pages)
        size = assert_within_limit(images, self.max_payload_bytes)
        run.advance(PipelineState.GUARD_CHECKED)
        logger.info(
            "Prepared %d page image(s), %.1fMB encoded",
            len(images),
            size / 1024 / 1024,
            extra={"client": run.client_key, "stage": run.state.value},
        )
        return images

    async def _finish(
        self,
        run: PipelineRun,
        images: list[PageImage],
        result: GenerationResult,
        *,
        user_id: Optional[int],
        session: Optional[AsyncSession],
        file_name: Optional[str],
    ) -> Union[GenerationEnvelope, PersistedEnvelope]:
        run.advance(PipelineState.VALIDATED)
        if user_id is None:
            run.advance(PipelineState.COMPLETE)
            return GenerationEnvelope(
                data=result.model_copy(update={"page_images": images})
            )

        if session is None:
            raise RuntimeError("a database session is required to persist results")
        run.advance(PipelineState.PERSISTING)
        reconciled = await self.reconciler.reconcile(
            session,
            images=images,
            result=result,
            owner_id=user_id,
            source_file_name=file_name,
        )
        run.advance(PipelineState.COMPLETE)
        return PersistedEnvelope(
            thematic=ThematicRead.model_validate(reconciled.thematic),
            flashcards=[FlashcardRead.model_validate(c) for c in reconciled.flashcards],
            metadata=result.metadata,
            page_images=images,
        )

    # --- entry points ----------------------------------------------------

    async def run(
        self,
        pdf_bytes: bytes,
        *,
        client_key: str,
        content_type: Optional[str] = PDF_MIME_TYPE,
        user_id: Optional[int] = None,
        session: Optional[AsyncSession] = None,
        file_name: Optional[str] = None,
    ) -> PipelineEnvelope:
        """One-shot generation. Never raises for pipeline failures."""
        run = PipelineRun(client_key=client_key)
        logger.info(
            "Processing %s (%.2fMB)",
            file_name or "upload",
            len(pdf_bytes) / 1024 / 1024,
            extra={"client": client_key},
        )
        try:
            self.validate_upload(pdf_bytes, content_type)
            async with self.rate_limiter.admit(client_key):
                run.advance(PipelineState.ADMITTED)
                images = await self.prepare_images(run, pdf_bytes)
                run.advance(PipelineState.GENERATING)
                result = await self.generator.generate(images, preflight=False)
                envelope = await self._finish(
                    run,
                    images,
                    result,
                    user_id=user_id,
                    session=session,
                    file_name=file_name,
                )
        except Exception as exc:  # noqa: BLE001
            return ErrorEnvelope(error=run.fail(exc))
        logger.info(
            "Pipeline complete in %.2fs", run.elapsed, extra={"client": client_key}
        )
        return envelope

    async def stream(
        self,
        pdf_bytes: bytes,
        *,
        client_key: str,
        content_type: Optional[str] = PDF_MIME_TYPE,
        user_id: Optional[int] = None,
        session: Optional[AsyncSession] = None,
        file_name: Optional[str] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Same stages as ``run``, yielding partial results while generating.

        The last event is ``complete`` with the success envelope or ``error``
        with the error envelope. Closing the iterator early cancels the
        in-flight generation.
        """
        run = PipelineRun(client_key=client_key)
        admitted = False
        try:
            self.validate_upload(pdf_bytes, content_type)
            await self.rate_limiter.acquire(client_key)
            admitted = True
            run.advance(PipelineState.ADMITTED)

            yield StreamEvent("stage", {"stage": PipelineState.RASTERIZING.value})
            images = await self.prepare_images(run, pdf_bytes)

            run.advance(PipelineState.GENERATING)
            yield StreamEvent(
                "stage",
                {"stage": PipelineState.GENERATING.value, "pageCount": len(images)},
            )
            async with self.generator.stream(images, preflight=False) as generation:
                async for partial in generation:
                    yield StreamEvent("partial", partial_payload(partial))
                result = await generation.result()

            envelope = await self._finish(
                run,
                images,
                result,
                user_id=user_id,
                session=session,
                file_name=file_name,
            )
        except Exception as exc:  # noqa: BLE001
            error = run.fail(exc)
            yield StreamEvent(
                "error",
                ErrorEnvelope(error=error).model_dump(
                    by_alias=True, mode="json", exclude_none=True
                ),
            )
            return
        finally:
            if admitted:
                self.rate_limiter.release(client_key)

        logger.info(
            "Streaming pipeline complete in %.2fs",
            run.elapsed,
            extra={"client": client_key},
        )
        yield StreamEvent(
            "complete",
            envelope.model_dump(by_alias=True, mode="json", exclude_none=True),
        )


__all__ = [
    "ErrorEnvelope",
    "FlashcardPipeline",
    "GenerationEnvelope",
    "PersistedEnvelope",
    "PipelineEnvelope",
    "PipelineRun",
    "PipelineState",
    "StreamEvent",
    "partial_payload",
]
