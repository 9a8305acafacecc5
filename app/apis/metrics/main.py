from __future__ import annotations

from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.apis.deps import current_active_user
from app.core.config import settings
from app.core.db.base import get_session
from app.core.db.schemas.auth import User
from app.core.db_services import MetricsService
from app.modules.flashcards.models.records import ThematicWithCount
from .schemas import DashboardMetricsRead


router = APIRouter()

CurrentUser = Annotated[User, Depends(current_active_user)]


@router.get(
    f"/{settings.app.version}/metrics/dashboard",
    response_model=DashboardMetricsRead,
    tags=["metrics"],
)
async def get_dashboard_metrics(
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> DashboardMetricsRead:
    metrics = await MetricsService(session).dashboard(user.id)
    return DashboardMetricsRead(**asdict(metrics))


@router.get(
    f"/{settings.app.version}/metrics/recent-thematics",
    response_model=list[ThematicWithCount],
    tags=["metrics"],
)
async def get_recent_thematics(
    user: CurrentUser,
    session: AsyncSession = Depends(get_session),
) -> list[ThematicWithCount]:
    rows = await MetricsService(session).recent_thematics(user.id, limit=5)
    return [ThematicWithCount.from_row(t, n) for t, n in rows]
