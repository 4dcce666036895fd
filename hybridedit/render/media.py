"""Media processing boundary.

Render workers depend on two capabilities: apply an ordered effect chain to a
video at a target size, and probe a file for duration and dimensions. The
``FFmpegMediaProcessor`` provides both by shelling out to ffmpeg/ffprobe.
"""

import asyncio
import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from hybridedit.config import get_settings
from hybridedit.exceptions import RenderError
from hybridedit.render.plan import EffectStep

logger = logging.getLogger(__name__)


@dataclass
class MediaInfo:
    """Media file information."""

    duration: float | None = None  # seconds
    width: int | None = None
    height: int | None = None


class MediaProcessor(Protocol):
    async def apply_effects(
        self,
        source_path: str,
        effects: Sequence[EffectStep],
        output_path: str,
        *,
        width: int,
        height: int,
        format: str = "mp4",
    ) -> str: ...

    async def probe(self, path: str) -> MediaInfo: ...


# =============================================================================
# Effect -> filter translation
# =============================================================================


def _brightness(parameters: dict[str, Any]) -> list[str]:
    brightness = float(parameters.get("brightness", 0))
    contrast = float(parameters.get("contrast", 0))
    filters = []
    if brightness:
        filters.append(f"exposure={brightness / 100:g}")
    if contrast:
        filters.append(f"eq=contrast={1 + contrast / 100:g}")
    return filters


def _gaussian_blur(parameters: dict[str, Any]) -> list[str]:
    radius = float(parameters.get("radius", 5))
    return [f"gblur=sigma={radius / 2:g}"]


def _motion_blur(parameters: dict[str, Any]) -> list[str]:
    strength = float(parameters.get("strength", 10))
    return [f"boxblur={max(1, int(strength // 5))}:1"]


def _color_correction(parameters: dict[str, Any]) -> list[str]:
    saturation = 1 + float(parameters.get("saturation", 0)) / 100
    gamma = float(parameters.get("gamma", 1))
    return [f"eq=saturation={saturation:g}:gamma={gamma:g}"]


EFFECT_FILTERS: dict[str, Callable[[dict[str, Any]], list[str]]] = {
    "brightness": _brightness,
    "gaussian-blur": _gaussian_blur,
    "motion-blur": _motion_blur,
    "color-correction": _color_correction,
}

# Codec arguments per container
CODEC_ARGS: dict[str, list[str]] = {
    "mp4": ["-c:v", "libx264", "-preset", "medium", "-crf", "23", "-c:a", "aac", "-b:a", "128k"],
    "mov": ["-c:v", "libx264", "-preset", "medium", "-crf", "23", "-c:a", "aac", "-b:a", "128k"],
    "webm": ["-c:v", "libvpx-vp9", "-crf", "32", "-b:v", "0", "-c:a", "libopus"],
}


def build_filter_chain(effects: Sequence[EffectStep], width: int, height: int) -> str:
    """Translate an effect chain into one ffmpeg ``-vf`` argument.

    Unknown effects are skipped. The output is always scaled to the target size.
    """
    filters: list[str] = []
    for step in effects:
        builder = EFFECT_FILTERS.get(step.effect)
        if builder is None:
            logger.warning(f"Skipping unsupported effect: {step.effect}")
            continue
        filters.extend(builder(step.parameters))
    filters.append(f"scale={width}:{height}")
    return ",".join(filters)


class FFmpegMediaProcessor:
    """MediaProcessor backed by the ffmpeg and ffprobe binaries."""

    def __init__(self, ffmpeg_path: str | None = None, ffprobe_path: str | None = None):
        settings = get_settings()
        self.ffmpeg_path = ffmpeg_path or settings.ffmpeg_path
        self.ffprobe_path = ffprobe_path or settings.ffprobe_path

    async def _run(self, cmd: list[str]) -> bytes:
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise RenderError(f"Could not start {cmd[0]}: {e}") from e

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            error = stderr.decode("utf-8", errors="ignore")
            logger.error(f"{cmd[0]} failed (rc={process.returncode}): {error[-2000:]}")
            raise RenderError(f"{Path(cmd[0]).name} failed: {error[-500:]}")
        return stdout

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
        try:
            vf = build_filter_chain(effects, width, height)
        except (TypeError, ValueError) as e:
            raise RenderError(f"Invalid effect parameters: {e}") from e
        logger.info(f"Applying {len(effects)} effects at {width}x{height}: {vf}")
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-i", str(source_path),
            "-vf", vf,
            *CODEC_ARGS.get(format, CODEC_ARGS["mp4"]),
            "-f", format,
            str(output_path),
        ]
        await self._run(cmd)
        return str(output_path)

    async def probe(self, path: str) -> MediaInfo:
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            "-select_streams", "v:0",
            str(path),
        ]
        stdout = await self._run(cmd)
        try:
            data = json.loads(stdout.decode())
        except json.JSONDecodeError as e:
            raise RenderError(f"Failed to parse ffprobe output: {e}") from e

        info = MediaInfo()
        duration = data.get("format", {}).get("duration")
        if duration is not None:
            info.duration = float(duration)
        streams = data.get("streams", [])
        if streams:
            info.width = streams[0].get("width")
            info.height = streams[0].get("height")
        return info
