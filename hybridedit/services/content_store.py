"""Content-addressed source video storage.

Uploads are identified by their SHA-256 digest. A second upload of known
content is turned into an alias: the new file is removed and the existing
video's ``ref_count`` is incremented with a single conditional UPDATE.
"""

import asyncio
import hashlib
import logging
import os
from pathlib import Path
from uuid import UUID

from sqlalchemy import exc as sa_exc
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hybridedit.config import get_settings
from hybridedit.exceptions import ValidationError
from hybridedit.models.video import Video

logger = logging.getLogger(__name__)


def _hash_file(file_path: str | Path, chunk_size: int) -> str:
    digest = hashlib.sha256()
    with open(file_path, "rb") as f:
        while chunk := f.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


class ContentStore:
    def __init__(self, db: AsyncSession, chunk_size: int | None = None):
        self.db = db
        self.chunk_size = chunk_size or get_settings().digest_chunk_size

    async def compute_digest(self, file_path: str | Path) -> str:
        """Stream the file through SHA-256 without loading it into memory."""
        return await asyncio.to_thread(_hash_file, file_path, self.chunk_size)

    async def find_by_digest(self, digest: str) -> Video | None:
        result = await self.db.execute(select(Video).where(Video.sha256 == digest))
        return result.scalar_one_or_none()

    async def _increment_ref_count(self, video_id: UUID) -> int | None:
        result = await self.db.execute(
            update(Video)
            .where(Video.id == video_id)
            .values(ref_count=Video.ref_count + 1)
            .returning(Video.ref_count)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()

    async def deduplicate(self, new_file_path: str | Path, digest: str) -> Video | None:
        """Alias an upload onto existing content with the same digest.

        Returns:
            The existing Video (the upload is now an alias), or None when the
            content is new and the caller should register it.
        """
        existing = await self.find_by_digest(digest)
        if existing is None:
            return None

        if os.path.abspath(new_file_path) != os.path.abspath(existing.file_path):
            try:
                os.unlink(new_file_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove duplicate upload {new_file_path}: {e}")

        ref_count = await self._increment_ref_count(existing.id)
        if ref_count is None:
            return None
        await self.db.refresh(existing)

        logger.info(f"Deduplicated upload onto video {existing.id} (refs={ref_count})")
        return existing

    async def register(
        self,
        file_path: str | Path,
        digest: str,
        user_id: str,
        title: str,
    ) -> tuple[Video, bool]:
        """Register new content with ``ref_count = 1``.

        A concurrent first upload of the same digest that wins the UNIQUE race
        turns this call into a dedup.

        Returns:
            (video, duplicate)
        """
        video = Video(
            user_id=user_id,
            title=title,
            sha256=digest,
            ref_count=1,
            file_path=str(file_path),
            file_size=os.path.getsize(file_path),
        )
        try:
            async with self.db.begin_nested():
                self.db.add(video)
        except sa_exc.IntegrityError:
            logger.warning(f"Digest {digest[:12]} registered concurrently, aliasing upload")
            existing = await self.deduplicate(file_path, digest)
            if existing is None:
                raise
            return existing, True

        logger.info(f"Registered video {video.id} ({digest[:12]})")
        return video, False

    async def ingest(self, file_path: str | Path, user_id: str, title: str) -> tuple[Video, bool]:
        """Digest an upload, then alias it or register it as new content."""
        try:
            digest = await self.compute_digest(file_path)
        except OSError as e:
            raise ValidationError(
                f"Cannot read upload {file_path}: {e.strerror or e}", field="file_path"
            ) from e
        existing = await self.deduplicate(file_path, digest)
        if existing is not None:
            return existing, True
        return await self.register(file_path, digest, user_id, title)

    async def release(self, video_id: UUID) -> int | None:
        """Drop one reference; the count never goes below zero.

        Returns:
            The new ref_count, or None if the video was missing or already at zero
        """
        result = await self.db.execute(
            update(Video)
            .where(Video.id == video_id, Video.ref_count > 0)
            .values(ref_count=Video.ref_count - 1)
            .returning(Video.ref_count)
            .execution_options(synchronize_session=False)
        )
        ref_count = result.scalar_one_or_none()
        if ref_count is not None:
            video = await self.db.get(Video, video_id)
            if video is not None:
                await self.db.refresh(video)
        return ref_count

    async def find_unused(self) -> list[Video]:
        result = await self.db.execute(
            select(Video).where(Video.ref_count <= 0).order_by(Video.created_at.asc())
        )
        return list(result.scalars().all())
