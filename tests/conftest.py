"""
Pytest fixtures for hybridedit tests.

Every test gets its own SQLite database file (via aiosqlite) and its own
storage root under tmp_path, so no external services are needed.
Run with: pytest tests/ -v
"""

import os

# Must be set before hybridedit modules create the engine and settings
os.environ.setdefault("HYBRIDEDIT_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("HYBRIDEDIT_DEV_MODE", "true")
os.environ.setdefault("HYBRIDEDIT_ADMIN_USER_IDS_RAW", "admin-user")

import asyncio
import hashlib
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from hybridedit.exceptions import RenderError
from hybridedit.models import Base, Project, Video
from hybridedit.render.media import MediaInfo
from hybridedit.render.plan import EffectStep
from hybridedit.services.edit_log import EditLog
from hybridedit.services.storage_service import LocalStorageService

OWNER_ID = "user-owner"
OTHER_USER_ID = "user-other"
ADMIN_ID = "admin-user"


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: test waits on real timers")


# =============================================================================
# Fakes
# =============================================================================


class FakeMediaProcessor:
    """MediaProcessor that writes placeholder bytes and records every call."""

    def __init__(
        self,
        *,
        fail: bool = False,
        error: Exception | None = None,
        probe_error: Exception | None = None,
        delay: float = 0,
        info: MediaInfo | None = None,
    ):
        self.fail = fail
        self.error = error
        self.probe_error = probe_error
        self.delay = delay
        self.info = info or MediaInfo(duration=12.5, width=1920, height=1080)
        self.apply_calls: list[dict[str, Any]] = []
        self.probe_calls: list[str] = []

    async def apply_effects(
        self,
        source_path: str,
        effects: Sequence[EffectStep],
        output_path: str,
        *,
        width: int,
        height: int,
        format: str = "mp4",
    ) -> str:
        self.apply_calls.append(
            {
                "source_path": source_path,
                "effects": list(effects),
                "output_path": output_path,
                "width": width,
                "height": height,
                "format": format,
            }
        )
        # Partial output must never reach the artifact key
        Path(output_path).write_bytes(b"partial")
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RenderError("ffmpeg failed: simulated")
        if self.error is not None:
            raise self.error
        Path(output_path).write_bytes(f"render {width}x{height} {len(effects)}".encode())
        return output_path

    async def probe(self, path: str) -> MediaInfo:
        self.probe_calls.append(path)
        if self.probe_error is not None:
            raise self.probe_error
        return self.info


class RecordingEventSink:
    def __init__(self):
        self.events: list[tuple[str, str, dict | None]] = []

    async def publish(self, project_id, event_type: str, data: dict | None = None) -> int:
        self.events.append((str(project_id), event_type, data))
        return 1

    def types(self) -> list[str]:
        return [event_type for _, event_type, _ in self.events]


# =============================================================================
# Database and storage fixtures
# =============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def storage(tmp_path) -> LocalStorageService:
    return LocalStorageService(tmp_path / "storage")


@pytest.fixture
def media() -> FakeMediaProcessor:
    return FakeMediaProcessor()


@pytest.fixture
def event_sink() -> RecordingEventSink:
    return RecordingEventSink()


# =============================================================================
# Data helpers
# =============================================================================


async def create_video(
    session: AsyncSession,
    directory: Path,
    content: bytes = b"source video bytes",
    user_id: str = OWNER_ID,
    title: str = "source.mp4",
) -> Video:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{hashlib.sha256(content).hexdigest()[:12]}_{title}"
    path.write_bytes(content)
    video = Video(
        user_id=user_id,
        title=title,
        sha256=hashlib.sha256(content).hexdigest(),
        ref_count=1,
        file_path=str(path),
        file_size=len(content),
    )
    session.add(video)
    await session.flush()
    return video


async def create_project(
    session: AsyncSession,
    video: Video | None = None,
    user_id: str = OWNER_ID,
    name: str = "Test project",
) -> Project:
    project = Project(
        user_id=user_id,
        name=name,
        video_id=video.id if video else None,
        current_version=0,
    )
    session.add(project)
    await session.flush()
    return project


def effect_op(effect: str, **parameters: Any) -> dict[str, Any]:
    return {"type": "effect", "effect": effect, "parameters": parameters}


async def append_batches(session: AsyncSession, project: Project, count: int) -> list:
    log = EditLog(session)
    operations = []
    for i in range(count):
        operations.append(
            await log.append(project.id, [effect_op("brightness", brightness=10 * (i + 1))], project.user_id)
        )
    await session.commit()
    return operations


@pytest_asyncio.fixture
async def project_with_video(db_session, tmp_path):
    video = await create_video(db_session, tmp_path / "uploads")
    project = await create_project(db_session, video)
    await db_session.commit()
    return project
