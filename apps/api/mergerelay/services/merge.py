"""ffmpeg invocation for muxing one video and one audio source."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path

from mergerelay.core.logging_safety import tail_text
from mergerelay.domain.tempfiles import LocalTempFile, TempFileScope
from mergerelay.errors import MergeError

logger = logging.getLogger(__name__)

_AUDIO_BITRATE = "192k"
_COPY_VIDEO_ARGS = ["-c:v", "copy"]
_REENCODE_VIDEO_ARGS = ["-c:v", "libx264", "-preset", "veryfast", "-pix_fmt", "yuv420p"]


@dataclass(frozen=True, slots=True)
class MergeOptions:
    ffmpeg_path: str = "ffmpeg"
    force_video_reencode: bool = False
    timeout_seconds: float = 1800.0


def build_merge_command(
    video_path: Path,
    audio_path: Path,
    output_path: Path,
    *,
    ffmpeg_path: str = "ffmpeg",
    force_video_reencode: bool = False,
) -> list[str]:
    """First video stream of input 0, first audio stream of input 1, cut to the shorter input."""
    video_args = _REENCODE_VIDEO_ARGS if force_video_reencode else _COPY_VIDEO_ARGS
    return [
        ffmpeg_path,
        "-hide_banner",
        "-y",
        "-i",
        str(video_path),
        "-i",
        str(audio_path),
        "-map",
        "0:v:0",
        "-map",
        "1:a:0",
        *video_args,
        "-c:a",
        "aac",
        "-b:a",
        _AUDIO_BITRATE,
        "-shortest",
        str(output_path),
    ]


class MergeEngine:
    def __init__(self, options: MergeOptions) -> None:
        self._options = options

    async def merge(self, video_path: Path, audio_path: Path, *, scope: TempFileScope) -> LocalTempFile:
        # Output is registered with the scope before ffmpeg starts so partial writes get cleaned up.
        output = scope.create(".mp4")
        output.mark_in_use()
        cmd = build_merge_command(
            video_path,
            audio_path,
            output.path,
            ffmpeg_path=self._options.ffmpeg_path,
            force_video_reencode=self._options.force_video_reencode,
        )
        logger.info(
            "ffmpeg.merge.start output=%s video_codec=%s",
            output.path.name,
            "libx264" if self._options.force_video_reencode else "copy",
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise MergeError(127, f"ffmpeg binary not found: {self._options.ffmpeg_path}") from exc

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self._options.timeout_seconds)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise MergeError(-1, f"ffmpeg timed out after {self._options.timeout_seconds:g}s") from exc
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        stderr_text = stderr.decode("utf-8", errors="ignore") if stderr else ""
        if proc.returncode != 0:
            stderr_tail = tail_text(stderr_text)
            logger.warning("ffmpeg.merge.failed exit_code=%s", proc.returncode)
            raise MergeError(proc.returncode, stderr_tail)

        size = output.size() if output.path.exists() else 0
        logger.info("ffmpeg.merge.done output=%s bytes=%s", output.path.name, size)
        return output
