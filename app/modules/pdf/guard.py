from __future__ import annotations

import math
from typing import Sequence

from app.core.errors import ErrorKind, PipelineError
from app.core.logging import get_logger
from app.modules.flashcards.models.flashcards import PageImage

logger = get_logger(__name__)

DEFAULT_MAX_PAYLOAD_BYTES = 50 * 1024 * 1024

# Gemini bills roughly 258 tokens per image tile.
TOKENS_PER_IMAGE_TILE = 258


def total_payload_size(images: Sequence[PageImage]) -> int:
    return sum(len(image.base64) for image in images)


def assert_within_limit(
    images: Sequence[PageImage], max_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES
) -> int:
    """Fail with ``PayloadTooLarge`` when the encoded images exceed ``max_bytes``.

    Returns the measured size so callers can log it.
    """
    size = total_payload_size(images)
    if size > max_bytes:
        logger.warning(
            "Payload of %d page(s) is %.1fMB, limit is %.1fMB",
            len(images),
            size / 1024 / 1024,
            max_bytes / 1024 / 1024,
        )
        raise PipelineError(
            ErrorKind.PAYLOAD_TOO_LARGE,
            "The document is too heavy to analyse. Try a shorter PDF.",
            details=f"{size} bytes > {max_bytes} bytes",
        )
    return size


def estimate_token_usage(image_count: int, avg_size_kb: float = 100) -> int:
    return image_count * math.ceil(avg_size_kb / 50) * TOKENS_PER_IMAGE_TILE


__all__ = [
    "DEFAULT_MAX_PAYLOAD_BYTES",
    "assert_within_limit",
    "estimate_token_usage",
    "total_payload_size",
]
