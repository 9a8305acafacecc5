from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.schemas.flashcards import Flashcard as DBFlashcard, Thematic
from app.core.db_services import ThematicService
from app.core.errors import PipelineError
from app.core.logging import get_logger
from app.modules.flashcards.generator import FlashcardGenerator
from app.modules.flashcards.models.flashcards import GenerationResult, PageImage
from app.modules.flashcards.models.thematic import (
    DEFAULT_THEMATIC,
    ThematicExtraction,
)

logger = get_logger(__name__)


@dataclass
class ReconciledResult:
    thematic: Thematic
    flashcards: list[DBFlashcard]


class PersistenceReconciler:
    """Stores a successful generation under a freshly extracted thematic."""

    def __init__(self, generator: FlashcardGenerator) -> None:
        self.generator = generator

    async def derive_thematic(
        self, images: Sequence[PageImage]
    ) -> ThematicExtraction:
        try:
            return await self.generator.extract_thematic(images)
        except PipelineError as exc:
            logger.warning(
                "Thematic extraction failed (%s), using default", exc.kind.value
            )
            return DEFAULT_THEMATIC.model_copy()

    async def reconcile(
        self,
        session: AsyncSession,
        *,
        images: Sequence[PageImage],
        result: GenerationResult,
        owner_id: int,
        source_file_name: Optional[str],
    ) -> ReconciledResult:
        extracted = await self.derive_thematic(images)
        thematic, rows = await ThematicService(session).create_with_flashcards(
            owner_id,
            result.flashcards,
            name=extracted.name,
            description=extracted.description,
            color=extracted.color,
            icon=extracted.icon,
            pdf_name=source_file_name,
        )
        logger.info(
            "Saved %d flashcards under thematic %s (%r)",
            len(rows),
            thematic.id,
            thematic.name,
        )
        return ReconciledResult(thematic=thematic, flashcards=rows)


__all__ = ["PersistenceReconciler", "ReconciledResult"]
