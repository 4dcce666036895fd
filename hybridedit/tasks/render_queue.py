"""In-process render job queue.

Jobs are persisted as ``render_jobs`` rows before they are queued in memory,
and a single worker loop drains them strictly in FIFO order, one at a time.
A failed or timed-out job is recorded on its row and the loop moves on.
``recover()`` re-queues jobs left behind by a previous process.
"""

import asyncio
import logging
from collections import deque
from datetime import timedelta
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hybridedit.config import get_settings
from hybridedit.exceptions import ConflictError, HybridEditError, NotFoundError, RenderTimeoutError
from hybridedit.models.base import utcnow
from hybridedit.models.render_job import RenderJob
from hybridedit.render.media import MediaProcessor
from hybridedit.render.workers import RenderWorker
from hybridedit.services.event_manager import EventSink, NullEventSink
from hybridedit.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobType(str, Enum):
    PROXY = "proxy"
    EXPORT = "export"


FINISHED_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value, JobStatus.CANCELLED.value)


def job_to_dict(job: RenderJob) -> dict[str, Any]:
    return {
        "id": str(job.id),
        "job_type": job.job_type,
        "project_id": str(job.project_id),
        "version": job.version,
        "options": job.options or {},
        "status": job.status,
        "error_message": job.error_message,
        "result": job.result,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "started_at": job.started_at.isoformat() if job.started_at else None,
        "completed_at": job.completed_at.isoformat() if job.completed_at else None,
    }


class RenderQueue:
    """Durable FIFO queue drained by one cooperative worker loop."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        storage: LocalStorageService,
        media: MediaProcessor,
        events: EventSink | None = None,
        *,
        job_timeout_seconds: float | None = None,
        retention_seconds: float | None = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.storage = storage
        self.media = media
        self.events = events or NullEventSink()
        timeout = settings.render_job_timeout_seconds if job_timeout_seconds is None else job_timeout_seconds
        self.job_timeout_seconds = timeout or None
        self.retention_seconds = (
            settings.job_retention_seconds if retention_seconds is None else retention_seconds
        )

        self._pending: deque[UUID] = deque()
        self._wakeup = asyncio.Event()
        self._worker_task: asyncio.Task | None = None
        self._sweeper_task: asyncio.Task | None = None
        self.current_job_id: UUID | None = None

    @property
    def size(self) -> int:
        return len(self._pending)

    # =========================================================================
    # Producer side
    # =========================================================================

    async def enqueue(
        self,
        job_type: JobType | str,
        project_id: UUID,
        version: int,
        options: dict[str, Any] | None = None,
    ) -> UUID:
        """Persist a job and queue it. Returns the job id immediately."""
        job_type = JobType(job_type)
        async with self.session_factory() as session:
            job = RenderJob(
                job_type=job_type.value,
                project_id=project_id,
                version=version,
                options=options or {},
                status=JobStatus.PENDING.value,
            )
            session.add(job)
            await session.commit()
            job_id = job.id

        self._pending.append(job_id)
        self._wakeup.set()
        logger.info(
            f"Enqueued {job_type.value} job {job_id}: project={project_id}, "
            f"version={version} (queue size {self.size})"
        )
        return job_id

    async def enqueue_proxy(self, project_id: UUID, version: int) -> UUID:
        return await self.enqueue(JobType.PROXY, project_id, version)

    async def enqueue_export(
        self, project_id: UUID, version: int, options: dict[str, Any] | None = None
    ) -> UUID:
        return await self.enqueue(JobType.EXPORT, project_id, version, options)

    async def get_job_status(self, job_id: UUID | str) -> dict[str, Any] | None:
        """Current job record, or None for unknown or malformed ids."""
        try:
            job_uuid = job_id if isinstance(job_id, UUID) else UUID(str(job_id))
        except ValueError:
            return None

        try:
            async with self.session_factory() as session:
                job = await session.get(RenderJob, job_uuid)
                return job_to_dict(job) if job else None
        except Exception:
            logger.exception(f"Failed to load status of job {job_id}")
            return None

    async def cancel(self, job_id: UUID) -> dict[str, Any]:
        """Cancel a job that has not started yet.

        Raises:
            NotFoundError: If the job does not exist
            ConflictError: If the job already started or finished
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(RenderJob)
                .where(RenderJob.id == job_id, RenderJob.status == JobStatus.PENDING.value)
                .values(status=JobStatus.CANCELLED.value, completed_at=utcnow())
                .returning(RenderJob.id)
                .execution_options(synchronize_session=False)
            )
            cancelled = result.scalar_one_or_none() is not None
            await session.commit()

            job = await session.get(RenderJob, job_id, populate_existing=True)
            if job is None:
                raise NotFoundError(f"Render job not found: {job_id}")
            if not cancelled:
                raise ConflictError(f"Render job {job_id} is {job.status} and cannot be cancelled")

        try:
            self._pending.remove(job_id)
        except ValueError:
            pass
        logger.info(f"Cancelled job {job_id}")
        return job_to_dict(job)

    async def recover(self) -> int:
        """Re-queue jobs left pending or processing by a previous process."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(RenderJob)
                .where(RenderJob.status == JobStatus.PROCESSING.value)
                .values(status=JobStatus.PENDING.value, started_at=None)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                logger.warning(f"Reset {result.rowcount} interrupted processing jobs to pending")

            rows = await session.execute(
                select(RenderJob.id)
                .where(RenderJob.status == JobStatus.PENDING.value)
                .order_by(RenderJob.created_at.asc())
            )
            job_ids = list(rows.scalars().all())
            await session.commit()

        queued = set(self._pending)
        recovered = [job_id for job_id in job_ids if job_id not in queued]
        self._pending.extend(recovered)
        if recovered:
            self._wakeup.set()
        logger.info(f"Recovered {len(recovered)} pending render jobs")
        return len(recovered)

    # =========================================================================
    # Consumer side
    # =========================================================================

    async def _set_status(self, job_id: UUID, **values: Any) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(RenderJob)
                .where(RenderJob.id == job_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def _claim(self, job_id: UUID) -> RenderJob | None:
        """Move a pending job to processing; None if it was cancelled or removed."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(RenderJob)
                .where(RenderJob.id == job_id, RenderJob.status == JobStatus.PENDING.value)
                .values(status=JobStatus.PROCESSING.value, started_at=utcnow())
                .returning(RenderJob.id)
                .execution_options(synchronize_session=False)
            )
            claimed = result.scalar_one_or_none() is not None
            await session.commit()
            if not claimed:
                return None
            return await session.get(RenderJob, job_id, populate_existing=True)

    async def _execute(self, job: RenderJob) -> dict[str, Any]:
        async with self.session_factory() as session:
            worker = RenderWorker(session, self.storage, self.media, self.events)
            try:
                if job.job_type == JobType.PROXY.value:
                    result = await worker.render_proxy(job.project_id, job.version)
                else:
                    result = await worker.render_export(job.project_id, job.version, job.options)
                await session.commit()
            except BaseException:
                await session.rollback()
                raise
        return result.to_dict()

    async def process_next(self) -> bool:
        """Run the oldest queued job. Returns False when the queue is empty."""
        if not self._pending:
            return False

        job_id = self._pending.popleft()
        job = await self._claim(job_id)
        if job is None:
            logger.info(f"Skipping job {job_id}: no longer pending")
            return True

        self.current_job_id = job_id
        logger.info(f"Processing {job.job_type} job {job_id}: project={job.project_id}, v{job.version}")
        try:
            result = await asyncio.wait_for(self._execute(job), timeout=self.job_timeout_seconds)
        except asyncio.TimeoutError:
            error = RenderTimeoutError(self.job_timeout_seconds)
            logger.error(f"Job {job_id} failed: {error.message}")
            await self._set_status(
                job_id,
                status=JobStatus.FAILED.value,
                error_message=error.message,
                completed_at=utcnow(),
            )
        except HybridEditError as e:
            logger.error(f"Job {job_id} failed: [{e.code}] {e.message}")
            await self._set_status(
                job_id,
                status=JobStatus.FAILED.value,
                error_message=e.message,
                completed_at=utcnow(),
            )
        except Exception as e:
            logger.exception(f"Job {job_id} failed unexpectedly")
            await self._set_status(
                job_id,
                status=JobStatus.FAILED.value,
                error_message=str(e) or type(e).__name__,
                completed_at=utcnow(),
            )
        else:
            await self._set_status(
                job_id,
                status=JobStatus.COMPLETED.value,
                result=result,
                completed_at=utcnow(),
            )
            logger.info(f"Job {job_id} completed")
        finally:
            self.current_job_id = None
        return True

    async def drain(self) -> int:
        """Process queued jobs until the queue is empty."""
        processed = 0
        while await self.process_next():
            processed += 1
        return processed

    async def run(self) -> None:
        """Worker loop: wait for jobs and process them one at a time."""
        logger.info("Render queue worker started")
        while True:
            if not self._pending:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue
            try:
                await self.process_next()
            except asyncio.CancelledError:
                raise
            except Exception:
                # Bookkeeping failures must not stop the loop
                logger.exception("Render queue iteration failed")

    # =========================================================================
    # Housekeeping
    # =========================================================================

    async def clear_completed_jobs(self, retention_seconds: float | None = None) -> int:
        """Delete finished job records older than the retention window."""
        retention = self.retention_seconds if retention_seconds is None else retention_seconds
        cutoff = utcnow() - timedelta(seconds=retention)
        async with self.session_factory() as session:
            result = await session.execute(
                delete(RenderJob)
                .where(
                    RenderJob.status.in_(FINISHED_STATUSES),
                    RenderJob.completed_at <= cutoff,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        if result.rowcount:
            logger.info(f"Cleared {result.rowcount} finished render jobs")
        return result.rowcount

    async def _sweep(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.clear_completed_jobs()
            except Exception:
                logger.exception("Render job sweep failed")

    def start(self, sweep_interval_seconds: float | None = None) -> None:
        interval = sweep_interval_seconds or get_settings().job_sweep_interval_seconds
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.create_task(self.run(), name="render-queue-worker")
        if self._sweeper_task is None or self._sweeper_task.done():
            self._sweeper_task = asyncio.create_task(self._sweep(interval), name="render-queue-sweeper")

    async def stop(self) -> None:
        for task in (self._worker_task, self._sweeper_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._worker_task = None
        self._sweeper_task = None
        logger.info("Render queue worker stopped")
