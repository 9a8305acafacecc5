from __future__ import annotations

from fastapi import Request

from app.core.rate_limiter import client_key_from_headers
from app.modules.auth import current_active_user
from app.modules.flashcards.main import FlashcardPipeline


def get_pipeline(request: Request) -> FlashcardPipeline:
    """Pipeline built once in the app lifespan."""
    return request.app.state.pipeline


def get_client_key(request: Request) -> str:
    return client_key_from_headers(request.headers)


__all__ = ["current_active_user", "get_client_key", "get_pipeline"]
