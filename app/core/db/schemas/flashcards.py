from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional
from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
    func,
    JSON,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.db.base import Base

if TYPE_CHECKING:
    from .auth import User


DEFAULT_COLOR = "#3B82F6"
DEFAULT_ICON = "📚"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Thematic(Base):
    """A user-owned group of flashcards generated from one PDF."""

    __tablename__ = "thematics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    color: Mapped[str] = mapped_column(
        String(7), nullable=False, default=DEFAULT_COLOR
    )
    icon: Mapped[str] = mapped_column(String(10), nullable=False, default=DEFAULT_ICON)
    pdf_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    user: Mapped["User"] = relationship("User", back_populates="thematics")
    flashcards: Mapped[list["Flashcard"]] = relationship(
        "Flashcard",
        back_populates="thematic",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Flashcard(Base):
    __tablename__ = "flashcards"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    thematic_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("thematics.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # {question, imagePageIndex?, imageDescription?}
    front: Mapped[dict] = mapped_column(JSON, nullable=False)
    # {answer, details?, imagePageIndex?, imageDescription?}
    back: Mapped[dict] = mapped_column(JSON, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    difficulty: Mapped[str] = mapped_column(
        String(10), nullable=False, default="medium"
    )
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    thematic: Mapped["Thematic"] = relationship(
        "Thematic", back_populates="flashcards"
    )
    study_sessions: Mapped[list["StudySession"]] = relationship(
        "StudySession",
        back_populates="flashcard",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class StudySession(Base):
    """One answer given to one flashcard."""

    __tablename__ = "study_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    flashcard_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("flashcards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    response_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    studied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
        index=True,
    )

    flashcard: Mapped["Flashcard"] = relationship(
        "Flashcard", back_populates="study_sessions"
    )


__all__ = [
    "DEFAULT_COLOR",
    "DEFAULT_ICON",
    "Thematic",
    "Flashcard",
    "StudySession",
]
