"""Flashcard generator using pydantic-ai and the Gemini provider.

``FlashcardGenerator`` sends the page images of one document to a vision
model and validates what comes back. Streaming goes through
``GenerationStream``: a producer task pulls partial objects from the model
into a small queue and the consumer iterates it. ``GenerationStream.result()``
drains whatever is left before returning the final object, so the final
result can be awaited without iterating first.
"""

from __future__ import annotations

import asyncio
import base64
import time
from typing import Any, AsyncIterator, Optional, Sequence

from pydantic import ValidationError
from pydantic_ai import Agent, BinaryContent
from pydantic_ai.exceptions import ModelHTTPError, UnexpectedModelBehavior
from pydantic_ai.models import Model

from app.core.config import settings
from app.core.errors import ErrorKind, PipelineError
from app.core.logging import get_logger
from app.modules.flashcards.models.flashcards import (
    MIN_FLASHCARDS,
    MIN_PER_DIFFICULTY,
    GenerationDraft,
    GenerationResult,
    PageImage,
    finalize_draft,
)
from app.modules.flashcards.models.thematic import (
    ThematicExtraction,
    parse_thematic_response,
)
from app.modules.pdf.guard import (
    DEFAULT_MAX_PAYLOAD_BYTES,
    assert_within_limit,
    estimate_token_usage,
)

logger = get_logger(__name__)

FLASHCARDS_MODEL_NAME = "gemini-2.0-flash"
GENERATION_INSTRUCTION = (
    "Analyse these PDF pages and generate flashcards. Return ONLY valid JSON."
)
THEMATIC_INSTRUCTION = "Analyse these first pages and extract the main theme."
THEMATIC_PAGE_COUNT = 2
DEFAULT_RETRY_AFTER = 60
STREAM_BUFFER_SIZE = 8

_SAFETY_MARKERS = ("safety", "blocked", "content filter", "prohibited")
_RATE_LIMIT_MARKERS = ("rate_limit", "resource_exhausted", "quota")


def _build_google_model(model_name: str, *, api_key: Optional[str] = None):
    """Build the Google Gemini model provider (lazy import)."""
    from pydantic_ai.models.google import GoogleModel
    from pydantic_ai.providers.google import GoogleProvider

    provider = GoogleProvider(api_key=api_key or settings.gemini_api_key)
    return GoogleModel(model_name, provider=provider)


def build_system_prompt(language: str = "French") -> str:
    return (
        "You are a medical education expert who writes study flashcards for "
        f"medical students. ALL CONTENT MUST BE WRITTEN IN {language.upper()}.\n\n"
        "Analyse the PDF pages supplied as images and generate flashcards that "
        "help students memorise the key concepts.\n\n"
        "Rules:\n"
        "1. Extract the key medical terms, definitions and concepts of each page.\n"
        "2. Ask questions that test understanding, not only recall.\n"
        "3. Categorise every card by medical subject (Anatomy, Physiology, "
        "Pharmacology...).\n"
        "4. Difficulty: easy for basic definitions and simple facts, medium for "
        "mechanisms and clinical applications, hard for complex integrations, "
        "differential diagnoses and rare conditions.\n"
        "5. Keep answers concise but complete (1-3 sentences).\n"
        "6. Generate 3-6 flashcards per page depending on content density.\n\n"
        f"MANDATORY: generate at least {MIN_PER_DIFFICULTY} easy, "
        f"{MIN_PER_DIFFICULTY} medium and {MIN_PER_DIFFICULTY} hard flashcards. "
        f"Never return fewer than {MIN_FLASHCARDS} flashcards in total.\n\n"
        "Images and diagrams: when a page contains a diagram, chart or picture "
        "you MUST reference it. Set imagePageIndex to the 0-based index of the "
        "page holding the image and describe it briefly in imageDescription. "
        "Only use indexes of pages you were given.\n\n"
        "Questions must be unambiguous and each card must test ONE concept. "
        "Fill metadata with the detected subject, the number of distinct "
        "concepts and study recommendations.\n"
        "Output strictly the structured JSON object, with no markdown and no "
        "commentary."
    )


THEMATIC_SYSTEM_PROMPT = (
    "You are a medical education expert. Read the first pages of this PDF and "
    "extract its main theme. Return a single JSON object "
    '{"name", "description", "color", "icon"}: '
    "name is short and memorable (max 50 characters), description summarises "
    "the content (max 200 characters), color is a hex color like #3B82F6 that "
    "suits the medical field, icon is one relevant emoji. "
    "Return ONLY the JSON, without markdown or explanation."
)


def _image_parts(images: Sequence[PageImage]) -> list[BinaryContent]:
    ordered = sorted(images, key=lambda image: image.page_index)
    return [
        BinaryContent(data=base64.b64decode(image.base64), media_type=image.mime_type)
        for image in ordered
    ]


def map_generation_error(exc: BaseException) -> PipelineError:
    """Translate an upstream failure into a tagged ``PipelineError``."""
    if isinstance(exc, PipelineError):
        return exc
    if isinstance(exc, TimeoutError):
        return PipelineError(
            ErrorKind.TIMEOUT,
            "Generation took too long. Try again with a shorter document.",
        )

    text = str(exc).lower()
    if isinstance(exc, ModelHTTPError):
        body = str(exc.body or "").lower()
        if exc.status_code == 429 or any(m in body for m in _RATE_LIMIT_MARKERS):
            return PipelineError(
                ErrorKind.RATE_LIMITED,
                "The AI service is busy. Please wait before retrying.",
                retry_after=DEFAULT_RETRY_AFTER,
            )
        if any(m in body for m in _SAFETY_MARKERS):
            return PipelineError(
                ErrorKind.CONTENT_FILTERED,
                "The document was rejected by the AI content filter.",
            )
        return PipelineError(
            ErrorKind.GENERATION_FAILED,
            "The AI service failed to generate flashcards.",
            details=f"upstream status {exc.status_code}",
        )
    if any(m in text for m in _RATE_LIMIT_MARKERS):
        return PipelineError(
            ErrorKind.RATE_LIMITED,
            "The AI service is busy. Please wait before retrying.",
            retry_after=DEFAULT_RETRY_AFTER,
        )
    if any(m in text for m in _SAFETY_MARKERS):
        return PipelineError(
            ErrorKind.CONTENT_FILTERED,
            "The document was rejected by the AI content filter.",
        )
    if isinstance(exc, UnexpectedModelBehavior):
        return PipelineError(
            ErrorKind.GENERATION_FAILED,
            "The AI service returned an unusable response.",
            details=type(exc).__name__,
        )
    return PipelineError(
        ErrorKind.GENERATION_FAILED,
        "The AI service failed to generate flashcards.",
        details=type(exc).__name__,
    )


_END = object()


class GenerationStream:
    """Channel between the model stream (producer) and its reader.

    Iterate it for partial ``GenerationDraft`` objects, then call
    ``result()``. When the reader falls behind, older partials are dropped
    since each one supersedes the previous. ``aclose()`` cancels the
    producer, which aborts the upstream request.
    """

    def __init__(
        self,
        agent: Agent[None, GenerationDraft],
        prompt: list[Any],
        *,
        page_count: int,
        timeout: float,
    ) -> None:
        self._agent = agent
        self._prompt = prompt
        self._page_count = page_count
        self._timeout = timeout
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=STREAM_BUFFER_SIZE)
        self._finished = False
        self._result: Optional[GenerationResult] = None
        self._error: Optional[PipelineError] = None
        self.partial_count = 0
        self._task = asyncio.create_task(self._produce())

    # --- producer --------------------------------------------------------

    def _offer(self, item: Any) -> None:
        while self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(item)

    async def _stream_draft(self) -> GenerationDraft:
        async with asyncio.timeout(self._timeout):
            async with self._agent.run_stream(self._prompt) as run:
                async for partial in run.stream_output(debounce_by=None):
                    self.partial_count += 1
                    self._offer(partial)
                return await run.get_output()

    def _finalize(self, draft: GenerationDraft) -> GenerationResult:
        try:
            return finalize_draft(draft, self._page_count)
        except (ValidationError, ValueError) as exc:
            logger.warning("Generated flashcards failed validation: %s", exc)
            raise PipelineError(
                ErrorKind.VALIDATION_FAILED,
                "The generated flashcards did not meet the quality rules. "
                "Please retry.",
                details=_validation_summary(exc),
            ) from exc

    async def _produce(self) -> None:
        started = time.perf_counter()
        try:
            draft = await self._stream_draft()
            self._result = self._finalize(draft)
            logger.info(
                "Generated %d flashcards in %.2fs (%d partial updates)",
                len(self._result.flashcards),
                time.perf_counter() - started,
                self.partial_count,
            )
        except asyncio.CancelledError:
            logger.info("Generation cancelled after %.2fs", time.perf_counter() - started)
            raise
        except Exception as exc:  # noqa: BLE001
            self._error = map_generation_error(exc)
            logger.warning(
                "Generation failed after %.2fs: %s (%r)",
                time.perf_counter() - started,
                self._error.kind.value,
                exc,
            )
        finally:
            self._offer(_END)

    # --- consumer --------------------------------------------------------

    def __aiter__(self) -> AsyncIterator[GenerationDraft]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[GenerationDraft]:
        while not self._finished:
            item = await self._queue.get()
            if item is _END:
                self._finished = True
                return
            yield item

    async def result(self) -> GenerationResult:
        """Drain the stream, then return the validated result or raise."""
        async for _ in self:
            pass
        await self._task
        if self._error is not None:
            raise self._error
        if self._result is None:
            raise PipelineError(
                ErrorKind.GENERATION_FAILED,
                "Generation finished without producing flashcards.",
            )
        return self._result

    @property
    def closed(self) -> bool:
        """True once the producer task has finished or been cancelled."""
        return self._task.done()

    async def aclose(self) -> None:
        if not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    async def __aenter__(self) -> "GenerationStream":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


def _validation_summary(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()[:5]
        )
    return str(exc)


class FlashcardGenerator:
    """Vision-model client producing validated flashcards from page images."""

    def __init__(
        self,
        model: Model | None = None,
        *,
        api_key: Optional[str] = None,
        model_name: str = FLASHCARDS_MODEL_NAME,
        language: str = "French",
        timeout: float = 180.0,
        max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES,
    ) -> None:
        self._model = model
        self.api_key = api_key
        self.model_name = model_name
        self.language = language
        self.timeout = timeout
        self.max_payload_bytes = max_payload_bytes

    def _resolve_model(self) -> Model:
        if self._model is None:
            if not self.api_key:
                raise PipelineError(
                    ErrorKind.CONFIGURATION_ERROR,
                    "The AI service is not configured.",
                    details="GEMINI_API_KEY is not set",
                )
            self._model = _build_google_model(self.model_name, api_key=self.api_key)
        return self._model

    def _flashcard_agent(self) -> Agent[None, GenerationDraft]:
        return Agent[None, GenerationDraft](
            model=self._resolve_model(),
            output_type=GenerationDraft,
            system_prompt=build_system_prompt(self.language),
            retries=2,
        )

    def stream(
        self, images: Sequence[PageImage], *, preflight: bool = True
    ) -> GenerationStream:
        """Start a streaming generation. Must be called inside a running loop.

        ``preflight=False`` skips the payload check for callers that already
        ran it.
        """
        if not images:
            raise PipelineError(
                ErrorKind.EMPTY_DOCUMENT, "No page images to generate flashcards from."
            )
        if preflight:
            assert_within_limit(images, self.max_payload_bytes)
        agent = self._flashcard_agent()

        avg_kb = sum(len(i.base64) for i in images) * 3 / 4 / 1024 / len(images)
        logger.info(
            "Requesting flashcards for %d page(s), ~%d input tokens",
            len(images),
            estimate_token_usage(len(images), avg_kb),
        )
        prompt: list[Any] = [GENERATION_INSTRUCTION, *_image_parts(images)]
        return GenerationStream(
            agent, prompt, page_count=len(images), timeout=self.timeout
        )

    async def generate(
        self, images: Sequence[PageImage], *, preflight: bool = True
    ) -> GenerationResult:
        async with self.stream(images, preflight=preflight) as stream:
            return await stream.result()

    async def extract_thematic(
        self, images: Sequence[PageImage]
    ) -> ThematicExtraction:
        """Derive a thematic label from the first pages.

        Unparseable or invalid answers fall back to the default thematic;
        transport failures raise ``PipelineError``.
        """
        leading = sorted(images, key=lambda image: image.page_index)[
            :THEMATIC_PAGE_COUNT
        ]
        agent = Agent[None, str](
            model=self._resolve_model(),
            output_type=str,
            system_prompt=THEMATIC_SYSTEM_PROMPT,
        )
        try:
            async with asyncio.timeout(self.timeout):
                res = await agent.run([THEMATIC_INSTRUCTION, *_image_parts(leading)])
        except Exception as exc:  # noqa: BLE001
            raise map_generation_error(exc) from exc
        return parse_thematic_response(res.output)


__all__ = [
    "FlashcardGenerator",
    "GenerationStream",
    "GENERATION_INSTRUCTION",
    "THEMATIC_SYSTEM_PROMPT",
    "build_system_prompt",
    "map_generation_error",
]
