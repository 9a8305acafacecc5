"""Quick DB inspector for flashcards data.

Summarizes thematics, flashcard counts per difficulty and study activity.

Usage:
  uv run scripts/inspect_flashcards.py
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Ensure project root is on sys.path so `app` package imports resolve
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from sqlalchemy import select, func

from app.core.db.base import get_session
from app.core.db.schemas.flashcards import Flashcard, StudySession, Thematic


async def main() -> int:
    async for session in get_session():  # get_session is an async generator
        total_thematics = (
            await session.execute(select(func.count(Thematic.id)))
        ).scalar() or 0
        total_cards = (
            await session.execute(select(func.count(Flashcard.id)))
        ).scalar() or 0
        total_sessions = (
            await session.execute(select(func.count(StudySession.id)))
        ).scalar() or 0

        print("Flashcards DB summary:")
        print(f"- Thematics: {total_thematics}")
        print(f"- Flashcards: {total_cards}")
        print(f"- Study sessions: {total_sessions}")

        by_difficulty = await session.execute(
            select(Flashcard.difficulty, func.count(Flashcard.id)).group_by(
                Flashcard.difficulty
            )
        )
        for difficulty, n in by_difficulty.all():
            print(f"  - {difficulty}: {n}")

        recent = await session.execute(
            select(Thematic, func.count(Flashcard.id))
            .outerjoin(Flashcard, Flashcard.thematic_id == Thematic.id)
            .group_by(Thematic.id)
            .order_by(Thematic.created_at.desc())
            .limit(5)
        )
        rows = recent.all()
        if not rows:
            print("- No thematics found.")
            return 0

        print("\nRecent thematics:")
        for thematic, n in rows:
            print(
                f"* {thematic.icon} {thematic.name} ({n} cards)"
                f" from {thematic.pdf_name or '-'} [user {thematic.user_id}]"
            )
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
