from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from app.core.config import settings
from app.core.errors import describe_error
from app.core.logging import setup_logging
from app.modules.flashcards.main import ErrorEnvelope, FlashcardPipeline

CLI_CLIENT_KEY = "cli"


def _load_pdf(path: str) -> bytes:
    p = Path(path)
    if not p.is_file():
        raise SystemExit(f"File not found: {path}")
    return p.read_bytes()


def _print_error_hint(envelope: ErrorEnvelope) -> None:
    hint = describe_error(envelope.error.code)
    print(f"{hint.title}: {hint.suggestion}", file=sys.stderr)


async def _generate(pdf_bytes: bytes, file_name: str) -> int:
    pipeline = FlashcardPipeline.from_settings(settings)
    envelope = await pipeline.run(
        pdf_bytes, client_key=CLI_CLIENT_KEY, file_name=file_name
    )
    print(json.dumps(envelope.model_dump(by_alias=True, mode="json"), indent=2))
    if isinstance(envelope, ErrorEnvelope):
        _print_error_hint(envelope)
        return 1
    return 0


async def _generate_streaming(pdf_bytes: bytes, file_name: str) -> int:
    pipeline = FlashcardPipeline.from_settings(settings)
    exit_code = 1
    async for event in pipeline.stream(
        pdf_bytes, client_key=CLI_CLIENT_KEY, file_name=file_name
    ):
        if event.event == "stage":
            print(f"[{event.data['stage']}]", file=sys.stderr)
        elif event.event == "partial":
            print(
                f"\r{event.data['flashcardCount']} flashcard(s) so far",
                end="",
                file=sys.stderr,
            )
        else:
            print(file=sys.stderr)
            print(json.dumps(event.data, indent=2))
            if event.event == "error":
                _print_error_hint(ErrorEnvelope.model_validate(event.data))
            else:
                exit_code = 0
    return exit_code


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="flashcards-gen", description="Generate flashcards from a PDF"
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    g = sub.add_parser("generate", help="Generate flashcards from a PDF file")
    g.add_argument("pdf", help="Path to the PDF document")
    g.add_argument(
        "--stream", action="store_true", help="Show progress while generating"
    )
    g.add_argument("--log-level", default=None, help="Logging level (default: INFO)")

    args = parser.parse_args(argv)
    if args.cmd == "generate":
        setup_logging(args.log_level.upper() if args.log_level else None)
        pdf_bytes = _load_pdf(args.pdf)
        name = Path(args.pdf).name
        if args.stream:
            return asyncio.run(_generate_streaming(pdf_bytes, name))
        return asyncio.run(_generate(pdf_bytes, name))

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
