"""Database service classes for thematics, flashcards, study sessions and metrics."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import case, delete, false, func, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db.schemas.flashcards import (
    DEFAULT_ICON,
    Flashcard,
    StudySession,
    Thematic,
)
from app.core.logging import get_logger
from app.modules.flashcards.models.flashcards import (
    Flashcard as GeneratedFlashcard,
    FlashcardInput,
)

logger = get_logger(__name__)


def _front_payload(card: GeneratedFlashcard | FlashcardInput) -> dict[str, Any]:
    return card.front.model_dump(by_alias=True, exclude_none=True)


def _back_payload(card: GeneratedFlashcard | FlashcardInput) -> dict[str, Any]:
    return card.back.model_dump(by_alias=True, exclude_none=True)


def _flashcard_rows(
    cards: Sequence[GeneratedFlashcard | FlashcardInput],
    *,
    thematic_id: uuid.UUID,
    user_id: int,
    start_index: int = 0,
) -> list[Flashcard]:
    return [
        Flashcard(
            thematic_id=thematic_id,
            user_id=user_id,
            front=_front_payload(card),
            back=_back_payload(card),
            category=card.category,
            difficulty=card.difficulty.value,
            order_index=start_index + position,
        )
        for position, card in enumerate(cards)
    ]


class ThematicService:
    """CRUD for thematics, always scoped to one owner."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _with_counts(self):
        return (
            select(Thematic, func.count(Flashcard.id).label("flashcard_count"))
            .outerjoin(Flashcard, Flashcard.thematic_id == Thematic.id)
            .group_by(Thematic.id)
        )

    async def list_with_counts(
        self, user_id: int, *, limit: Optional[int] = None
    ) -> list[tuple[Thematic, int]]:
        stmt = (
            self._with_counts()
            .where(Thematic.user_id == user_id)
            .order_by(Thematic.created_at.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        rows = await self.session.execute(stmt)
        return [(row[0], int(row[1])) for row in rows.all()]

    async def get_with_count(
        self, thematic_id: uuid.UUID, user_id: int
    ) -> Optional[tuple[Thematic, int]]:
        rows = await self.session.execute(
            self._with_counts().where(
                Thematic.id == thematic_id, Thematic.user_id == user_id
            )
        )
        row = rows.first()
        if row is None:
            return None
        return row[0], int(row[1])

    async def get(self, thematic_id: uuid.UUID, user_id: int) -> Optional[Thematic]:
        result = await self.session.execute(
            select(Thematic).where(
                Thematic.id == thematic_id, Thematic.user_id == user_id
            )
        )
        return result.scalar_one_or_none()

    def _build(
        self,
        user_id: int,
        *,
        name: str,
        description: Optional[str],
        color: Optional[str],
        icon: Optional[str],
        pdf_name: Optional[str],
    ) -> Thematic:
        thematic = Thematic(
            user_id=user_id,
            name=name,
            description=description,
            pdf_name=pdf_name,
        )
        if color:
            thematic.color = color
        if icon:
            thematic.icon = icon
        return thematic

    async def create(
        self,
        user_id: int,
        *,
        name: str,
        description: Optional[str] = None,
        color: Optional[str] = None,
        icon: Optional[str] = None,
        pdf_name: Optional[str] = None,
    ) -> Thematic:
        thematic = self._build(
            user_id,
            name=name,
            description=description,
            color=color,
            icon=icon,
            pdf_name=pdf_name,
        )
        self.session.add(thematic)
        await self.session.commit()
        await self.session.refresh(thematic)
        return thematic

    async def create_with_flashcards(
        self,
        user_id: int,
        cards: Sequence[GeneratedFlashcard],
        *,
        name: str,
        description: Optional[str] = None,
        color: Optional[str] = None,
        icon: Optional[str] = None,
        pdf_name: Optional[str] = None,
    ) -> tuple[Thematic, list[Flashcard]]:
        """Insert a thematic and its flashcards in one transaction.

        Either both land or neither does.
        """
        thematic = self._build(
            user_id,
            name=name,
            description=description,
            color=color,
            icon=icon,
            pdf_name=pdf_name,
        )
        try:
            self.session.add(thematic)
            await self.session.flush()
            rows = _flashcard_rows(cards, thematic_id=thematic.id, user_id=user_id)
            self.session.add_all(rows)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return thematic, rows

    async def update(
        self, thematic_id: uuid.UUID, user_id: int, changes: dict[str, Any]
    ) -> Optional[Thematic]:
        thematic = await self.get(thematic_id, user_id)
        if thematic is None:
            return None
        for key, value in changes.items():
            setattr(thematic, key, value)
        thematic.updated_at = datetime.now(timezone.utc)
        await self.session.commit()
        await self.session.refresh(thematic)
        return thematic

    async def delete(self, thematic_id: uuid.UUID, user_id: int) -> bool:
        """Delete a thematic with its flashcards and their study sessions."""
        thematic = await self.get(thematic_id, user_id)
        if thematic is None:
            return False
        card_ids = select(Flashcard.id).where(Flashcard.thematic_id == thematic_id)
        await self.session.execute(
            delete(StudySession).where(StudySession.flashcard_id.in_(card_ids))
        )
        await self.session.execute(
            delete(Flashcard).where(Flashcard.thematic_id == thematic_id)
        )
        await self.session.execute(delete(Thematic).where(Thematic.id == thematic_id))
        await self.session.commit()
        logger.info("Deleted thematic %s for user %s", thematic_id, user_id)
        return True


class FlashcardService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def save_to_thematic(
        self,
        user_id: int,
        thematic_id: uuid.UUID,
        cards: Sequence[FlashcardInput],
    ) -> Optional[list[Flashcard]]:
        """Append pre-built flashcards to an owned thematic.

        Returns None when the thematic does not exist or is not owned.
        """
        owned = await self.session.execute(
            select(Thematic.id).where(
                Thematic.id == thematic_id, Thematic.user_id == user_id
            )
        )
        if owned.scalar_one_or_none() is None:
            return None
        existing = await self.session.execute(
            select(func.count(Flashcard.id)).where(Flashcard.thematic_id == thematic_id)
        )
        rows = _flashcard_rows(
            cards,
            thematic_id=thematic_id,
            user_id=user_id,
            start_index=int(existing.scalar_one()),
        )
        self.session.add_all(rows)
        await self.session.commit()
        return rows

    async def get(self, flashcard_id: uuid.UUID, user_id: int) -> Optional[Flashcard]:
        result = await self.session.execute(
            select(Flashcard).where(
                Flashcard.id == flashcard_id, Flashcard.user_id == user_id
            )
        )
        return result.scalar_one_or_none()

    async def delete(self, flashcard_id: uuid.UUID, user_id: int) -> bool:
        card = await self.get(flashcard_id, user_id)
        if card is None:
            return False
        await self.session.execute(
            delete(StudySession).where(StudySession.flashcard_id == flashcard_id)
        )
        await self.session.execute(delete(Flashcard).where(Flashcard.id == flashcard_id))
        await self.session.commit()
        return True

    async def list_for_user(
        self,
        user_id: int,
        thematic_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> list[Flashcard]:
        """Oldest first; restricted to ``thematic_ids`` when given."""
        stmt = select(Flashcard).where(Flashcard.user_id == user_id)
        if thematic_ids is not None:
            if not thematic_ids:
                return []
            stmt = stmt.where(Flashcard.thematic_id.in_(list(thematic_ids)))
        stmt = stmt.order_by(Flashcard.created_at.asc(), Flashcard.order_index.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


@dataclass
class RevisionCard:
    flashcard: Flashcard
    error_count: int
    total_sessions: int
    thematic_name: str
    thematic_icon: str


class StudyService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record_result(
        self,
        user_id: int,
        flashcard_id: uuid.UUID,
        *,
        is_correct: bool,
        response_time: Optional[int] = None,
    ) -> Optional[StudySession]:
        owned = await self.session.execute(
            select(Flashcard.id).where(
                Flashcard.id == flashcard_id, Flashcard.user_id == user_id
            )
        )
        if owned.scalar_one_or_none() is None:
            return None
        study = StudySession(
            flashcard_id=flashcard_id,
            user_id=user_id,
            is_correct=is_correct,
            response_time=response_time,
        )
        self.session.add(study)
        await self.session.commit()
        return study

    async def revision_cards(
        self, user_id: int, threshold: int = 3
    ) -> list[RevisionCard]:
        """Flashcards answered wrong at least ``threshold`` times, worst first."""
        error_count = func.count(case((StudySession.is_correct == false(), 1)))
        total_sessions = func.count(StudySession.id)
        stmt = (
            select(
                Flashcard,
                error_count.label("error_count"),
                total_sessions.label("total_sessions"),
                Thematic.name,
                Thematic.icon,
            )
            .join(Thematic, Flashcard.thematic_id == Thematic.id)
            .outerjoin(StudySession, StudySession.flashcard_id == Flashcard.id)
            .where(Flashcard.user_id == user_id)
            .group_by(Flashcard.id, Thematic.name, Thematic.icon)
            .having(error_count >= threshold)
            .order_by(error_count.desc())
        )
        rows = await self.session.execute(stmt)
        return [
            RevisionCard(
                flashcard=row[0],
                error_count=int(row[1]),
                total_sessions=int(row[2]),
                thematic_name=row[3],
                thematic_icon=row[4] or DEFAULT_ICON,
            )
            for row in rows.all()
        ]


@dataclass
class DashboardMetrics:
    total_flashcards: int
    total_thematics: int
    total_sessions: int
    success_rate: int
    avg_response_time: int
    streak: int


def compute_streak(study_days: Sequence[date], today: date) -> int:
    """Consecutive study days ending today, or yesterday if today is empty."""
    days = set(study_days)
    if today in days:
        cursor = today
    elif today - timedelta(days=1) in days:
        cursor = today - timedelta(days=1)
    else:
        return 0
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


class MetricsService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def dashboard(
        self, user_id: int, *, today: Optional[date] = None
    ) -> DashboardMetrics:
        total_flashcards = await self.session.scalar(
            select(func.count(Flashcard.id)).where(Flashcard.user_id == user_id)
        )
        total_thematics = await self.session.scalar(
            select(func.count(Thematic.id)).where(Thematic.user_id == user_id)
        )
        stats = await self.session.execute(
            select(
                func.count(StudySession.id),
                func.coalesce(
                    func.sum(case((StudySession.is_correct == true(), 1), else_=0)), 0
                ),
                func.avg(StudySession.response_time),
            ).where(StudySession.user_id == user_id)
        )
        total_sessions, correct, avg_time = stats.one()
        total_sessions = int(total_sessions or 0)
        success_rate = (
            round(int(correct) / total_sessions * 100) if total_sessions else 0
        )

        studied = await self.session.execute(
            select(StudySession.studied_at).where(StudySession.user_id == user_id)
        )
        study_days = [_as_utc(ts).date() for ts in studied.scalars().all()]
        streak = compute_streak(
            study_days, today or datetime.now(timezone.utc).date()
        )

        return DashboardMetrics(
            total_flashcards=int(total_flashcards or 0),
            total_thematics=int(total_thematics or 0),
            total_sessions=total_sessions,
            success_rate=success_rate,
            avg_response_time=round(float(avg_time)) if avg_time is not None else 0,
            streak=streak,
        )

    async def recent_thematics(
        self, user_id: int, limit: int = 5
    ) -> list[tuple[Thematic, int]]:
        return await ThematicService(self.session).list_with_counts(
            user_id, limit=limit
        )


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


__all__ = [
    "DashboardMetrics",
    "FlashcardService",
    "MetricsService",
    "RevisionCard",
    "StudyService",
    "ThematicService",
    "compute_streak",
]
