"""Proxy and export render workers.

Both entry points check the cache first and only then replay the edit log,
so calling them twice for the same version never redoes work. A render is
written to a scratch file and promoted to its artifact key with an atomic
rename; pointers and catalog records are only written after the promote.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from hybridedit.config import get_settings
from hybridedit.exceptions import (
    ExportAlreadyExistsError,
    HybridEditError,
    InvalidVersionError,
    RenderError,
    ValidationError,
)
from hybridedit.models.project import Project
from hybridedit.models.video import Video
from hybridedit.render.media import MediaInfo, MediaProcessor
from hybridedit.render.plan import RenderPlan, build_render_plan
from hybridedit.services.edit_log import EditLog
from hybridedit.services.event_manager import (
    RENDER_CACHED,
    RENDER_COMPLETED,
    RENDER_FAILED,
    RENDER_PROGRESS,
    RENDER_STARTED,
    EventSink,
    NullEventSink,
)
from hybridedit.services.export_store import ExportVersionStore
from hybridedit.services.project_service import ProjectService
from hybridedit.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("mp4", "mov", "webm")


@dataclass
class RenderResult:
    """Outcome of a proxy or export render, stored on the job record."""

    kind: str  # proxy, export
    project_id: str
    version: int
    storage_key: str
    file_path: str
    cached: bool
    effect_count: int = 0
    export_id: str | None = None
    size: int | None = None
    resolution: str | None = None
    format: str | None = None
    options_ignored: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_resolution(resolution: str) -> tuple[int, int]:
    """Parse ``"WIDTHxHEIGHT"`` into a pair of positive ints."""
    try:
        width_str, height_str = resolution.lower().split("x")
        width, height = int(width_str), int(height_str)
    except (AttributeError, ValueError):
        raise ValidationError(f"Invalid resolution: {resolution!r}", field="resolution") from None
    if width <= 0 or height <= 0:
        raise ValidationError(f"Invalid resolution: {resolution!r}", field="resolution")
    return width, height


def normalize_export_options(options: dict[str, Any] | None) -> dict[str, str]:
    settings = get_settings()
    options = options or {}
    resolution = options.get("resolution") or settings.default_export_resolution
    format = (options.get("format") or settings.default_export_format).lower()
    parse_resolution(resolution)
    if format not in SUPPORTED_FORMATS:
        raise ValidationError(f"Unsupported export format: {format}", field="format")
    return {"resolution": resolution, "format": format}


def proxy_dimensions(
    source_width: int | None, source_height: int | None, target_height: int
) -> tuple[int, int]:
    """Scale to ``target_height`` keeping the aspect ratio; width is rounded to even."""
    source_width = source_width or 1280
    source_height = source_height or 720
    width = round(target_height * source_width / source_height)
    width += width % 2
    return max(width, 2), target_height


class RenderWorker:
    def __init__(
        self,
        db: AsyncSession,
        storage: LocalStorageService,
        media: MediaProcessor,
        events: EventSink | None = None,
    ):
        self.db = db
        self.storage = storage
        self.media = media
        self.events = events or NullEventSink()
        self.settings = get_settings()
        self.edit_log = EditLog(db)
        self.exports = ExportVersionStore(db)
        self.projects = ProjectService(db)

    async def _progress(self, project_id: UUID, kind: str, version: int, stage: str, percent: int) -> None:
        await self.events.publish(
            project_id,
            RENDER_PROGRESS,
            {"kind": kind, "version": version, "stage": stage, "percent": percent},
        )

    async def _load_project(self, project_id: UUID, version: int) -> Project:
        project = await self.projects.get_project(project_id)
        if version < 1 or version > project.current_version:
            raise InvalidVersionError(version, project.current_version)
        return project

    async def _source_video(self, project: Project) -> Video:
        video = await self.db.get(Video, project.video_id) if project.video_id else None
        if video is None:
            raise RenderError(f"Source video not found: {project.video_id}")
        return video

    async def _build_plan(self, project_id: UUID, version: int) -> RenderPlan:
        operations = await self.edit_log.get_operations_up_to_version(project_id, version)
        if not operations:
            raise RenderError(f"No edit operations found for project {project_id} version {version}")
        return build_render_plan(operations)

    async def _fail(
        self, project_id: UUID, kind: str, version: int, error: Exception
    ) -> RenderError | None:
        """Publish ``render_failed``; returns a RenderError for errors outside our hierarchy."""
        if isinstance(error, HybridEditError):
            message = error.message
            wrapped = None
            logger.error(
                f"{kind.capitalize()} render failed: project={project_id}, version={version}: {message}"
            )
        else:
            message = f"{kind.capitalize()} render failed: {error}"
            wrapped = RenderError(message)
            logger.exception(f"Unexpected error rendering {kind}: project={project_id}, version={version}")
        await self.events.publish(
            project_id, RENDER_FAILED, {"kind": kind, "version": version, "error": message}
        )
        return wrapped

    async def _materialize(
        self,
        source: Video,
        plan: RenderPlan,
        storage_key: str,
        *,
        width: int,
        height: int,
        format: str,
        probe_output: bool = False,
    ) -> tuple[str, MediaInfo | None]:
        """Render into a scratch file, then promote it to ``storage_key``.

        With ``probe_output`` the scratch file is probed before the promote, so
        a file nobody can read never lands at the artifact key.
        """
        temp_path = self.storage.temp_path(storage_key.rsplit("/", 1)[-1])
        try:
            await self.media.apply_effects(
                source.file_path,
                plan.effects,
                str(temp_path),
                width=width,
                height=height,
                format=format,
            )
            info = await self.media.probe(str(temp_path)) if probe_output else None
            return str(self.storage.promote(temp_path, storage_key)), info
        except OSError as e:
            raise RenderError(f"Failed to write render output: {e}") from e
        finally:
            # No-op after a successful promote
            self.storage.discard(temp_path)

    async def render_proxy(self, project_id: UUID, version: int) -> RenderResult:
        """Materialize the low-resolution proxy for ``version``.

        An existing artifact at the proxy key is a cache hit: only the
        project's pointer is updated.
        """
        logger.info(f"Starting proxy render: project={project_id}, version={version}")
        fmt = self.settings.proxy_format
        storage_key = self.storage.proxy_key(project_id, version, fmt)

        try:
            await self._load_project(project_id, version)

            if self.storage.file_exists(storage_key):
                await self.projects.set_latest_proxy_key(project_id, storage_key)
                logger.info(f"Proxy already exists: {storage_key}, skipping render")
                result = RenderResult(
                    kind="proxy",
                    project_id=str(project_id),
                    version=version,
                    storage_key=storage_key,
                    file_path=str(self.storage.get_file_path(storage_key)),
                    cached=True,
                    format=fmt,
                )
                await self.events.publish(project_id, RENDER_CACHED, result.to_dict())
                return result

            await self.events.publish(project_id, RENDER_STARTED, {"kind": "proxy", "version": version})
            await self._progress(project_id, "proxy", version, "replaying_log", 10)
            plan = await self._build_plan(project_id, version)
            source = await self._source_video(await self.projects.get_project(project_id))

            info = await self.media.probe(source.file_path)
            width, height = proxy_dimensions(info.width, info.height, self.settings.proxy_height)

            await self._progress(project_id, "proxy", version, "rendering", 30)
            logger.info(f"Applying {len(plan.effects)} effects to proxy render")
            file_path, _ = await self._materialize(
                source, plan, storage_key, width=width, height=height, format=fmt
            )

            await self._progress(project_id, "proxy", version, "finalizing", 90)
            await self.projects.set_latest_proxy_key(project_id, storage_key)
        except Exception as e:
            wrapped = await self._fail(project_id, "proxy", version, e)
            if wrapped is None:
                raise
            raise wrapped from e

        result = RenderResult(
            kind="proxy",
            project_id=str(project_id),
            version=version,
            storage_key=storage_key,
            file_path=file_path,
            cached=False,
            effect_count=len(plan.effects),
            resolution=f"{width}x{height}",
            format=fmt,
        )
        logger.info(f"Proxy render completed: {storage_key}")
        await self.events.publish(project_id, RENDER_COMPLETED, result.to_dict())
        return result

    async def render_export(
        self, project_id: UUID, version: int, options: dict[str, Any] | None = None
    ) -> RenderResult:
        """Materialize the full-resolution export for ``version``.

        The catalog is keyed on ``(project_id, version)`` only. When a record
        exists, it is returned as-is even if ``options`` differ from the ones
        it was rendered with.
        """
        logger.info(f"Starting export render: project={project_id}, version={version}")

        try:
            opts = normalize_export_options(options)
            await self._load_project(project_id, version)

            existing = await self.exports.find_by_project_and_version(project_id, version)
            if existing is not None:
                options_ignored = (existing.resolution, existing.format) != (
                    opts["resolution"],
                    opts["format"],
                )
                if options_ignored:
                    logger.warning(
                        f"Export v{version} of project {project_id} exists as "
                        f"{existing.resolution}/{existing.format}; requested "
                        f"{opts['resolution']}/{opts['format']} ignored"
                    )
                logger.info(f"Export already exists: {existing.storage_key}")
                result = RenderResult(
                    kind="export",
                    project_id=str(project_id),
                    version=version,
                    storage_key=existing.storage_key,
                    file_path=existing.file_path,
                    cached=True,
                    export_id=str(existing.id),
                    size=existing.size,
                    resolution=existing.resolution,
                    format=existing.format,
                    options_ignored=options_ignored,
                )
                await self.events.publish(project_id, RENDER_CACHED, result.to_dict())
                return result

            await self.events.publish(project_id, RENDER_STARTED, {"kind": "export", "version": version})
            await self._progress(project_id, "export", version, "replaying_log", 10)
            plan = await self._build_plan(project_id, version)
            source = await self._source_video(await self.projects.get_project(project_id))

            width, height = parse_resolution(opts["resolution"])
            storage_key = self.storage.export_key(project_id, version, opts["format"])

            await self._progress(project_id, "export", version, "rendering", 30)
            logger.info(f"Applying {len(plan.effects)} effects to export render")
            file_path, info = await self._materialize(
                source,
                plan,
                storage_key,
                width=width,
                height=height,
                format=opts["format"],
                probe_output=True,
            )

            await self._progress(project_id, "export", version, "finalizing", 90)
            try:
                export = await self.exports.create(
                    project_id=project_id,
                    version=version,
                    storage_key=storage_key,
                    file_path=file_path,
                    size=self.storage.file_size(file_path),
                    resolution=opts["resolution"],
                    duration=info.duration,
                    format=opts["format"],
                    pinned=False,
                )
            except ExportAlreadyExistsError:
                raise
            except Exception:
                # An uncatalogued artifact is invisible to GC
                self.storage.delete_path(file_path)
                raise
            await self.projects.set_latest_export_key(project_id, storage_key)
        except Exception as e:
            wrapped = await self._fail(project_id, "export", version, e)
            if wrapped is None:
                raise
            raise wrapped from e

        result = RenderResult(
            kind="export",
            project_id=str(project_id),
            version=version,
            storage_key=storage_key,
            file_path=file_path,
            cached=False,
            effect_count=len(plan.effects),
            export_id=str(export.id),
            size=export.size,
            resolution=export.resolution,
            format=export.format,
        )
        logger.info(f"Export render completed: {storage_key}")
        await self.events.publish(project_id, RENDER_COMPLETED, result.to_dict())
        return result
