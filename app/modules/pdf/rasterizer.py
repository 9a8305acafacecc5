"""Rasterize PDF documents into page PNGs with the ``pdftoppm`` CLI.

Each call works inside a private ``medflash-<uuid>`` directory under the
system temp dir. The directory is removed when the ``rasterize`` context
exits, whatever happened inside it.
"""

from __future__ import annotations

import asyncio
import re
import shutil
import tempfile
import time
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from app.core.errors import ErrorKind, PipelineError
from app.core.logging import get_logger

logger = get_logger(__name__)

PDF_MAGIC = b"%PDF-"

_PAGE_FILE_RE = re.compile(r"^page-(\d+)\.png$")


def validate_pdf_bytes(data: bytes) -> None:
    """Reject empty buffers and anything not starting with ``%PDF-``."""
    if not data:
        raise PipelineError(ErrorKind.INVALID_INPUT, "The uploaded file is empty.")
    if not data.startswith(PDF_MAGIC):
        raise PipelineError(
            ErrorKind.INVALID_INPUT, "The uploaded file is not a valid PDF document."
        )


def _collect_pages(workdir: Path) -> list[Path]:
    """Page files ordered by their numeric suffix (page-2 before page-10)."""
    numbered: list[tuple[int, Path]] = []
    for path in workdir.iterdir():
        match = _PAGE_FILE_RE.match(path.name)
        if match:
            numbered.append((int(match.group(1)), path))
    numbered.sort(key=lambda item: item[0])
    return [path for _, path in numbered]


def _make_workdir(base: Optional[Path]) -> Path:
    root = base or Path(tempfile.gettempdir())
    workdir = root / f"medflash-{uuid.uuid4()}"
    workdir.mkdir(parents=True)
    return workdir


class PdfRasterizer:
    """Thin async adapter over the ``pdftoppm`` executable."""

    def __init__(
        self,
        *,
        executable: str = "pdftoppm",
        density: int = 150,
        max_pages: int = 50,
        temp_dir: Path | str | None = None,
    ) -> None:
        self.executable = executable
        self.density = density
        self.max_pages = max_pages
        self.temp_dir = Path(temp_dir) if temp_dir else None
        self._available: Optional[bool] = None

    async def is_available(self) -> bool:
        """Whether ``pdftoppm -v`` runs. Probed once per instance."""
        if self._available is None:
            self._available = await self._probe()
            if not self._available:
                logger.error("pdftoppm not available (executable=%s)", self.executable)
        return self._available

    async def _probe(self) -> bool:
        if shutil.which(self.executable) is None:
            return False
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable,
                "-v",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            return await proc.wait() == 0
        except OSError:
            return False

    @asynccontextmanager
    async def rasterize(
        self,
        pdf_bytes: bytes,
        *,
        density: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> AsyncIterator[list[Path]]:
        """Yield the rendered page files in page order.

        Pages beyond ``max_pages`` are silently dropped. The files are only
        valid inside the ``async with`` block.
        """
        validate_pdf_bytes(pdf_bytes)
        if not await self.is_available():
            raise PipelineError(
                ErrorKind.MISSING_DEPENDENCY,
                "PDF conversion tool is not installed on the server.",
            )

        density = density or self.density
        max_pages = max_pages or self.max_pages
        workdir = await asyncio.to_thread(_make_workdir, self.temp_dir)
        try:
            pdf_path = workdir / "input.pdf"
            await asyncio.to_thread(pdf_path.write_bytes, pdf_bytes)

            started = time.perf_counter()
            await self._run_pdftoppm(pdf_path, workdir / "page", density, max_pages)
            pages = await asyncio.to_thread(_collect_pages, workdir)
            if not pages:
                raise PipelineError(
                    ErrorKind.EMPTY_DOCUMENT, "The PDF document contains no pages."
                )
            logger.info(
                "Rasterized %d page(s) at %d DPI in %.2fs",
                len(pages),
                density,
                time.perf_counter() - started,
            )
            yield pages
        finally:
            await asyncio.to_thread(_remove_workdir, workdir)

    async def _run_pdftoppm(
        self, pdf_path: Path, prefix: Path, density: int, max_pages: int
    ) -> None:
        cmd = [
            self.executable,
            "-png",
            "-r",
            str(density),
            "-l",
            str(max_pages),
            str(pdf_path),
            str(prefix),
        ]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise PipelineError(
                ErrorKind.MISSING_DEPENDENCY,
                "PDF conversion tool could not be started.",
                details=exc.strerror,
            ) from exc

        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            diagnostic = stderr.decode(errors="replace").strip()
            logger.warning(
                "pdftoppm exited with code %s: %s", proc.returncode, diagnostic
            )
            raise PipelineError(
                ErrorKind.CONVERSION_FAILED,
                "Failed to convert the PDF into images.",
                details=diagnostic or f"exit code {proc.returncode}",
            )


def _remove_workdir(workdir: Path) -> None:
    try:
        shutil.rmtree(workdir)
    except OSError as exc:
        logger.warning("Failed to clean up temp directory %s: %s", workdir, exc)


__all__ = ["PDF_MAGIC", "PdfRasterizer", "validate_pdf_bytes"]
