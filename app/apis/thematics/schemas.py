from __future__ import annotations

from typing import Optional

from pydantic import Field, model_validator

from app.modules.flashcards.models.flashcards import CamelModel
from app.modules.flashcards.models.thematic import HEX_COLOR_PATTERN


class ThematicCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    icon: Optional[str] = Field(default=None, min_length=1, max_length=10)
    pdf_name: Optional[str] = None


class ThematicUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)
    icon: Optional[str] = Field(default=None, min_length=1, max_length=10)

    @model_validator(mode="after")
    def _not_empty(self) -> "ThematicUpdate":
        if not self.changes():
            raise ValueError("at least one field must be provided")
        return self

    def changes(self) -> dict:
        # Only description may be cleared.
        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None or key == "description"
        }
