import json
import os
import stat
import sys
from pathlib import Path

os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest  # noqa: E402
from pydantic_ai.messages import ModelResponse, TextPart  # noqa: E402
from pydantic_ai.models.function import (  # noqa: E402
    AgentInfo,
    DeltaToolCall,
    FunctionModel,
)
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.core.db.base import Base, enable_sqlite_foreign_keys  # noqa: E402
from app.core.db.schemas import User  # noqa: E402


# --- sample data ---------------------------------------------------------


def make_pdf(pages: int = 3, *, marker: bytes = b"") -> bytes:
    """Bytes that look like a PDF to the validator and the fake pdftoppm."""
    return (
        b"%PDF-1.4\n"
        + b"1 0 obj << /Type /Pages /Count " + str(pages).encode() + b" >> endobj\n"
        + marker
        + b"\n%%EOF\n"
    )


def card_payload(index: int, difficulty: str, **overrides) -> dict:
    card = {
        "id": f"card-{index}",
        "front": {"question": f"What is the role of structure number {index}?"},
        "back": {"answer": f"It performs function {index} in the body."},
        "category": "Anatomy",
        "difficulty": difficulty,
    }
    card.update(overrides)
    return card


def generation_payload(per_level: int = 3, **extra) -> dict:
    cards = []
    for level in ("easy", "medium", "hard"):
        for _ in range(per_level):
            cards.append(card_payload(len(cards) + 1, level))
    payload = {
        "flashcards": cards,
        "metadata": {
            "subject": "Cardiology",
            "totalConcepts": len(cards),
            "recommendations": "Review the diagrams twice.",
        },
    }
    payload.update(extra)
    return payload


THEMATIC_JSON = json.dumps(
    {
        "name": "Cardiac anatomy",
        "description": "Chambers, valves and vessels of the heart",
        "color": "#DC2626",
        "icon": "🫀",
    }
)


def flashcard_model(
    payload: dict | None = None,
    *,
    chunk_size: int = 200,
    thematic_text: str = THEMATIC_JSON,
    calls: list | None = None,
) -> FunctionModel:
    """A model that streams ``payload`` through the output tool in chunks.

    Plain (non-streamed) runs answer with ``thematic_text``.
    """
    body = json.dumps(payload if payload is not None else generation_payload())

    async def stream_function(messages, info: AgentInfo):
        if calls is not None:
            calls.append(messages)
        tool_name = info.output_tools[0].name
        for start in range(0, len(body), chunk_size):
            chunk = body[start : start + chunk_size]
            if start == 0:
                yield {0: DeltaToolCall(name=tool_name, json_args=chunk)}
            else:
                yield {0: DeltaToolCall(json_args=chunk)}

    def function(messages, info: AgentInfo) -> ModelResponse:
        return ModelResponse(parts=[TextPart(content=thematic_text)])

    return FunctionModel(function, stream_function=stream_function)


# --- fake pdftoppm -------------------------------------------------------

FAKE_PDFTOPPM = """#!{python}
import re
import sys
from pathlib import Path

from PIL import Image

here = Path(__file__).resolve().parent
args = sys.argv[1:]
with open(here / "calls.log", "a") as log:
    log.write(" ".join(args) + "\\n")

if args == ["-v"]:
    print("pdftoppm version 24.02.0", file=sys.stderr)
    sys.exit(0)

last = int(args[args.index("-l") + 1])
pdf_path, prefix = args[-2], args[-1]
data = Path(pdf_path).read_bytes()
if b"BROKEN" in data:
    print("Syntax Error: Couldn't find trailer dictionary", file=sys.stderr)
    sys.exit(1)

match = re.search(rb"/Count (\\d+)", data)
pages = min(int(match.group(1)) if match else 1, last)
for n in range(1, pages + 1):
    # width encodes the page number so tests can check ordering
    Image.new("RGB", (200 + n, 100), (n * 10 % 255, 40, 90)).save(f"{{prefix}}-{{n}}.png")
"""


@pytest.fixture
def fake_pdftoppm(tmp_path: Path) -> Path:
    if sys.platform == "win32":
        pytest.skip("fake pdftoppm relies on a shebang script")
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "pdftoppm"
    script.write_text(FAKE_PDFTOPPM.format(python=sys.executable))
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script


def pdftoppm_calls(script: Path) -> list[str]:
    log = script.parent / "calls.log"
    if not log.exists():
        return []
    return log.read_text().splitlines()


# --- database ------------------------------------------------------------


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    enable_sqlite_foreign_keys(eng.sync_engine)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def session(engine):
    maker = async_sessionmaker(engine, expire_on_commit=False)
    async with maker() as s:
        yield s


async def create_user(session, email: str) -> User:
    user = User(
        email=email,
        hashed_password="not-a-real-hash",
        is_active=True,
        is_superuser=False,
        is_verified=True,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest.fixture
async def user(session) -> User:
    return await create_user(session, "student@example.com")


@pytest.fixture
async def other_user(session) -> User:
    return await create_user(session, "other@example.com")
