"""Thematic label extracted from the first pages of a document."""

from __future__ import annotations

import json
from typing import Optional

from pydantic import Field, ValidationError, field_validator

from app.core.db.schemas.flashcards import DEFAULT_COLOR, DEFAULT_ICON
from app.core.logging import get_logger
from app.modules.flashcards.models.flashcards import CamelModel

logger = get_logger(__name__)

HEX_COLOR_PATTERN = r"^#[0-9A-Fa-f]{6}$"


class ThematicExtraction(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: str = Field(default=DEFAULT_COLOR, pattern=HEX_COLOR_PATTERN)
    icon: str = Field(default=DEFAULT_ICON, min_length=1, max_length=10)

    @field_validator("color", "icon", mode="before")
    @classmethod
    def _none_means_default(cls, value, info):
        if value is None:
            return DEFAULT_COLOR if info.field_name == "color" else DEFAULT_ICON
        return value


DEFAULT_THEMATIC = ThematicExtraction(
    name="Medical document",
    description="Imported medical content",
    color=DEFAULT_COLOR,
    icon=DEFAULT_ICON,
)


def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    if cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_thematic_response(response: str) -> ThematicExtraction:
    """Parse the model's JSON answer, falling back to ``DEFAULT_THEMATIC``.

    When the JSON parses but fails validation, a usable ``name`` is kept on
    top of the default values.
    """
    try:
        parsed = json.loads(_strip_fences(response))
    except json.JSONDecodeError as exc:
        logger.warning("Thematic response is not valid JSON: %s", exc)
        return DEFAULT_THEMATIC.model_copy()

    if not isinstance(parsed, dict):
        logger.warning("Thematic response is not a JSON object")
        return DEFAULT_THEMATIC.model_copy()

    try:
        return ThematicExtraction.model_validate(parsed)
    except ValidationError as exc:
        logger.warning("Thematic response failed validation: %s", exc.errors())

    name = parsed.get("name")
    if isinstance(name, str) and 0 < len(name.strip()) <= 100:
        return DEFAULT_THEMATIC.model_copy(update={"name": name.strip()})
    return DEFAULT_THEMATIC.model_copy()


__all__ = [
    "ThematicExtraction",
    "DEFAULT_THEMATIC",
    "parse_thematic_response",
]
