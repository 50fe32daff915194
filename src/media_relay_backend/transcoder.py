"""
ffmpeg command construction and execution.

Commands are always built as argument lists and started with
``asyncio.create_subprocess_exec``; nothing is ever passed through a shell.
The only sub-syntax that user-influenced text can reach is the filter graph
(``-vf``), and every value placed there goes through
:func:`escape_filter_value`, which rejects anything outside a small allow-list.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Sequence

from .errors import TranscodeFailed, TranscodeTimeout

logger = logging.getLogger(__name__)

FILTER_VALUE_ALLOWED = re.compile(r"[A-Za-z0-9_./&,=+:\-]*")
ASS_COLOUR_PATTERN = re.compile(r"&H[0-9A-Fa-f]{8}")


def escape_filter_value(value: str) -> str:
    """
    Make a value safe to embed between single quotes in an ffmpeg filter graph.

    Quotes, backslashes, whitespace and brackets are rejected outright. Colons
    are escaped because the filter option parser still splits on them.

    Raises:
        ValueError: If the value contains a character outside the allow-list
    """
    if not FILTER_VALUE_ALLOWED.fullmatch(value):
        raise ValueError(f"Unsupported characters in filter argument: {value!r}")
    return value.replace(":", "\\:")


@dataclass(frozen=True)
class CaptionStyle:
    """ASS style overrides handed to the subtitles filter as ``force_style``."""

    font_size: int = 24
    primary_colour: str = "&H00FFFFFF"
    outline_colour: str = "&H00000000"
    back_colour: str = "&H80000000"
    bold: int = 1
    outline: int = 2
    shadow: int = 1
    alignment: int = 2
    margin_v: int = 30

    @classmethod
    def from_config(cls, values: Mapping[str, Any]) -> "CaptionStyle":
        return cls(**dict(values))

    def to_force_style(self) -> str:
        for name in ("primary_colour", "outline_colour", "back_colour"):
            colour = getattr(self, name)
            if not ASS_COLOUR_PATTERN.fullmatch(colour):
                raise ValueError(f"Invalid ASS colour for {name}: {colour!r}")
        numbers = {
            "FontSize": self.font_size,
            "Bold": self.bold,
            "Outline": self.outline,
            "Shadow": self.shadow,
            "Alignment": self.alignment,
            "MarginV": self.margin_v,
        }
        for name, number in numbers.items():
            if isinstance(number, bool) or not isinstance(number, int):
                raise ValueError(f"{name} must be an integer, got {number!r}")
        return ",".join(
            [
                f"FontSize={self.font_size}",
                f"PrimaryColour={self.primary_colour}",
                f"OutlineColour={self.outline_colour}",
                f"BackColour={self.back_colour}",
                f"Bold={self.bold}",
                f"Outline={self.outline}",
                f"Shadow={self.shadow}",
                f"Alignment={self.alignment}",
                f"MarginV={self.margin_v}",
            ]
        )


@dataclass(frozen=True)
class ExecResult:
    returncode: int
    output: str


def build_probe_args(ffmpeg: str, source: Path) -> List[str]:
    # No output file: ffmpeg prints the input summary and exits non-zero.
    return [ffmpeg, "-hide_banner", "-nostdin", "-i", str(source)]


def build_caption_burn_args(
    ffmpeg: str,
    source: Path,
    subtitle: Path,
    output: Path,
    style: CaptionStyle,
    video: Mapping[str, Any],
) -> List[str]:
    width = int(video["width"])
    height = int(video["height"])
    try:
        subtitles = escape_filter_value(str(subtitle))
        force_style = escape_filter_value(style.to_force_style())
    except ValueError as exc:
        raise TranscodeFailed(f"Cannot build caption filter: {exc}") from exc
    video_filter = ",".join(
        [
            f"scale={width}:{height}:force_original_aspect_ratio=decrease",
            f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
            f"subtitles='{subtitles}':force_style='{force_style}'",
        ]
    )
    return [
        ffmpeg, "-y", "-nostdin",
        "-i", str(source),
        "-vf", video_filter,
        "-c:v", "libx264",
        "-preset", str(video["preset"]),
        "-crf", str(int(video["crf"])),
        "-profile:v", str(video["profile"]),
        "-level", str(video["level"]),
        "-c:a", "aac",
        "-b:a", str(video["audio_bitrate"]),
        "-movflags", "+faststart",
        str(output),
    ]


def build_audio_extract_args(
    ffmpeg: str,
    source: Path,
    output: Path,
    bitrate: str,
    sample_rate: int,
) -> List[str]:
    return [
        ffmpeg, "-y", "-nostdin",
        "-i", str(source),
        "-vn",
        "-acodec", "libmp3lame",
        "-b:a", str(bitrate),
        "-ar", str(int(sample_rate)),
        str(output),
    ]


def build_trim_args(ffmpeg: str, source: Path, output: Path, seconds: float) -> List[str]:
    return [
        ffmpeg, "-y", "-nostdin",
        "-i", str(source),
        "-t", f"{seconds:.3f}",
        "-c", "copy",
        str(output),
    ]


class TranscodeExecutor:
    """
    Runs ffmpeg argument lists under a wall-clock timeout.

    stdout and stderr are merged so callers always get the diagnostic text,
    whatever the exit code. On timeout the child is killed and reaped before
    :class:`TranscodeTimeout` is raised, so no orphaned ffmpeg keeps running.
    """

    def __init__(self, ffmpeg_path: str = "ffmpeg") -> None:
        self.ffmpeg_path = ffmpeg_path

    async def run(self, argv: Sequence[str], timeout: float, probe: bool = False) -> ExecResult:
        logger.debug(f"Executing: {' '.join(argv)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise TranscodeFailed(f"Could not start {argv[0]}: {exc}") from exc

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Killing pid {process.pid} after {timeout:g}s timeout")
            if process.returncode is None:
                process.kill()
            await process.wait()
            raise TranscodeTimeout(timeout) from None
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        output = stdout.decode("utf-8", errors="replace") if stdout else ""
        result = ExecResult(returncode=process.returncode, output=output)
        if result.returncode != 0 and not probe:
            tail = output.strip().splitlines()[-1:] or ["no output"]
            raise TranscodeFailed(
                f"ffmpeg exited with code {result.returncode}: {tail[0]}",
                returncode=result.returncode,
                output=output,
            )
        return result
