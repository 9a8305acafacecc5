"""Flashcards module exports.

The generator and pipeline live in ``.generator`` and ``.main``; they depend
on ``app.modules.pdf``, which itself imports these models, so they are not
re-exported here.
"""

from .models.flashcards import Flashcard, GenerationResult, PageImage

__all__ = [
    "Flashcard",
    "GenerationResult",
    "PageImage",
]
