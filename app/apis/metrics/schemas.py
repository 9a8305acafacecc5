from __future__ import annotations

from app.modules.flashcards.models.flashcards import CamelModel


class DashboardMetricsRead(CamelModel):
    total_flashcards: int
    total_thematics: int
    total_sessions: int
    success_rate: int
    avg_response_time: int
    streak: int
