"""Overlay the caller and agent tracks into one file with ffmpeg."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from calls.errors import MixFailedError

LOGGER = logging.getLogger(__name__)


def build_mix_command(ffmpeg: str, caller: Path, agent: Path, output: Path) -> list[str]:
    # duration=first: the caller track is the wall-clock reference.
    return [
        ffmpeg,
        "-hide_banner",
        "-loglevel",
        "warning",
        "-y",
        "-i",
        str(caller),
        "-i",
        str(agent),
        "-filter_complex",
        "[0:a][1:a]amix=inputs=2:duration=first:dropout_transition=0[mixed]",
        "-map",
        "[mixed]",
        str(output),
    ]


class AudioMixer:
    def __init__(self, ffmpeg_path: str = "ffmpeg") -> None:
        self._ffmpeg = ffmpeg_path

    async def mix(self, caller: Path, agent: Path, output: Path) -> Path:
        command = build_mix_command(self._ffmpeg, caller, agent, output)
        LOGGER.info("FFmpeg command: %s", " ".join(command))
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise MixFailedError(f"ffmpeg not found at {self._ffmpeg!r}") from exc

        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            detail = stderr.decode(errors="ignore").strip()
            LOGGER.error("FFmpeg failed (%s): %s", proc.returncode, detail)
            raise MixFailedError(f"ffmpeg exited with {proc.returncode}")
        return output
