"""Recompress rasterized pages into bounded JPEGs with Pillow."""

from __future__ import annotations

import asyncio
import base64
import io
import time
from pathlib import Path
from typing import Sequence

from PIL import Image, UnidentifiedImageError

from app.core.errors import ErrorKind, PipelineError
from app.core.logging import get_logger
from app.modules.flashcards.models.flashcards import IMAGE_MIME_TYPE, PageImage

logger = get_logger(__name__)


class ImageOptimizer:
    def __init__(
        self, *, max_width: int = 1024, quality: int = 80, batch_size: int = 5
    ) -> None:
        self.max_width = max_width
        self.quality = quality
        self.batch_size = max(1, int(batch_size))

    def encode_bytes(self, raw: bytes) -> str:
        """Downscale to ``max_width`` (never up) and encode as base64 JPEG."""
        with Image.open(io.BytesIO(raw)) as img:
            img = img.convert("RGB")
            if img.width > self.max_width:
                height = max(1, round(img.height * self.max_width / img.width))
                img = img.resize((self.max_width, height), Image.Resampling.LANCZOS)
            out = io.BytesIO()
            img.save(out, format="JPEG", quality=self.quality, optimize=True)
        return base64.b64encode(out.getvalue()).decode("ascii")

    def _encode_file(self, path: Path) -> str:
        encoded = self.encode_bytes(path.read_bytes())
        # Free disk as soon as the page is encoded.
        path.unlink(missing_ok=True)
        return encoded

    async def optimize(self, path: Path, page_index: int) -> PageImage:
        try:
            encoded = await asyncio.to_thread(self._encode_file, path)
        except (OSError, UnidentifiedImageError) as exc:
            raise PipelineError(
                ErrorKind.CONVERSION_FAILED,
                f"Failed to optimize page {page_index + 1}.",
                details=str(exc),
            ) from exc
        return PageImage(
            page_index=page_index, base64=encoded, mime_type=IMAGE_MIME_TYPE
        )

    async def _optimize_batch(
        self, batch: Sequence[Path], first_index: int
    ) -> list[PageImage]:
        # Every page settles before the first failure propagates; the caller
        # deletes the page files right after.
        outcomes = await asyncio.gather(
            *(
                self.optimize(path, first_index + offset)
                for offset, path in enumerate(batch)
            ),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return list(outcomes)

    async def optimize_all(self, paths: Sequence[Path]) -> list[PageImage]:
        """Optimize pages in concurrent batches, keeping page order."""
        started = time.perf_counter()
        images: list[PageImage] = []
        for start in range(0, len(paths), self.batch_size):
            images.extend(
                await self._optimize_batch(paths[start : start + self.batch_size], start)
            )
        logger.info(
            "Optimized %d page(s) in %.2fs", len(images), time.perf_counter() - started
        )
        return images


__all__ = ["ImageOptimizer"]
