from __future__ import annotations

import json
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, UploadFile, status
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.apis.deps import current_active_user, get_client_key, get_pipeline
from app.core.config import settings
from app.core.db.base import get_session
from app.core.db.schemas.auth import User
from app.core.errors import ErrorCode
from app.modules.flashcards.main import (
    ErrorEnvelope,
    FlashcardPipeline,
    PipelineEnvelope,
)


router = APIRouter()

CurrentUser = Annotated[User, Depends(current_active_user)]
Pipeline = Annotated[FlashcardPipeline, Depends(get_pipeline)]
ClientKey = Annotated[str, Depends(get_client_key)]

ERROR_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_FILE: status.HTTP_400_BAD_REQUEST,
    ErrorCode.FILE_TOO_LARGE: status.HTTP_413_CONTENT_TOO_LARGE,
    ErrorCode.PAYLOAD_TOO_LARGE: status.HTTP_413_CONTENT_TOO_LARGE,
    ErrorCode.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.PROCESSING_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.AI_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
}


def envelope_response(
    envelope: PipelineEnvelope, success_status: int = status.HTTP_200_OK
) -> JSONResponse:
    body = envelope.model_dump(by_alias=True, mode="json", exclude_none=True)
    if isinstance(envelope, ErrorEnvelope):
        headers: dict[str, str] = {}
        if envelope.error.retry_after is not None:
            headers["Retry-After"] = str(envelope.error.retry_after)
        return JSONResponse(
            body, status_code=ERROR_STATUS[envelope.error.code], headers=headers
        )
    return JSONResponse(body, status_code=success_status)


def _sse(event: str | None, data: dict) -> bytes:
    payload = json.dumps(data, ensure_ascii=False)
    parts = []
    if event:
        parts.append(f"event: {event}")
    parts.append(f"data: {payload}")
    parts.append("")
    return ("\n".join(parts) + "\n").encode("utf-8")


async def _read_upload(file: UploadFile) -> tuple[bytes, Optional[str], Optional[str]]:
    data = await file.read()
    return data, file.content_type, file.filename


@router.post(
    f"/{settings.app.version}/generate",
    tags=["generate"],
)
async def generate_flashcards(
    pipeline: Pipeline,
    client_key: ClientKey,
    file: UploadFile = File(...),
) -> JSONResponse:
    """Generate flashcards from a PDF without storing anything."""
    data, content_type, filename = await _read_upload(file)
    envelope = await pipeline.run(
        data, client_key=client_key, content_type=content_type, file_name=filename
    )
    return envelope_response(envelope)


@router.post(
    f"/{settings.app.version}/generate/persist",
    tags=["generate"],
)
async def generate_and_persist(
    pipeline: Pipeline,
    client_key: ClientKey,
    user: CurrentUser,
    file: UploadFile = File(...),
    session: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """Generate flashcards and save them under a new thematic."""
    data, content_type, filename = await _read_upload(file)
    envelope = await pipeline.run(
        data,
        client_key=client_key,
        content_type=content_type,
        user_id=user.id,
        session=session,
        file_name=filename,
    )
    return envelope_response(envelope, success_status=status.HTTP_201_CREATED)


@router.post(
    f"/{settings.app.version}/generate/stream",
    tags=["generate"],
)
async def generate_flashcards_stream(
    pipeline: Pipeline,
    client_key: ClientKey,
    file: UploadFile = File(...),
) -> StreamingResponse:
    """Server-sent events: ``stage``, ``partial``, then ``complete`` or ``error``."""
    data, content_type, filename = await _read_upload(file)

    async def gen():
        events = pipeline.stream(
            data, client_key=client_key, content_type=content_type, file_name=filename
        )
        try:
            async for event in events:
                yield _sse(event.event, event.data)
        finally:
            # Client gone: stop the generation too.
            await events.aclose()

    return StreamingResponse(
        gen(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
