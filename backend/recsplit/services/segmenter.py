"""
RecSplit Backend — ffmpeg Segmenter
=====================================

What:  Wraps the ffmpeg `segment` muxer to cut one audio file into
       fixed-length chunks without re-encoding.
Why:   Stream copy is fast and lossless; every chunk starts on a clean
       timestamp so each plays as a standalone file.
How:   asyncio subprocess with a hard wall-clock timeout. The process is
       killed when the timeout fires or the awaiting task is cancelled.

Command:
    ffmpeg -hide_banner -nostdin -y -i <input>
           -map 0:a                 only the audio stream; device files carry
                                    an extra data stream ffmpeg cannot copy
           -f segment -segment_time <seconds>
           -c copy
           -reset_timestamps 1      each chunk's timestamps start at zero
           <dir>/part_%03d<ext>

Failure modes (distinct kinds, neither retried here):
    ProcessTimeoutError  the run exceeded its timeout
    ProcessFailureError  binary missing or non-zero exit (stderr tail in context)
"""

import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from recsplit.exceptions import ProcessFailureError, ProcessTimeoutError

logger = logging.getLogger(__name__)

# Chunk files are named part_000<ext>, part_001<ext>, ...; zero padding keeps
# lexical order equal to index order
CHUNK_PREFIX = "part_"
CHUNK_PATTERN = CHUNK_PREFIX + "%03d"

_STDERR_TAIL = 2000


class Segmenter:
    """Runs ffmpeg/ffprobe for the split pipeline."""

    def __init__(self, ffmpeg_binary: str = "ffmpeg", ffprobe_binary: str = "ffprobe"):
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary

    def is_available(self) -> bool:
        return shutil.which(self.ffmpeg_binary) is not None

    def build_command(self, input_path: Path, output_pattern: Path, segment_seconds: int) -> List[str]:
        return [
            self.ffmpeg_binary,
            "-hide_banner",
            "-nostdin",
            "-y",
            "-i", str(input_path),
            "-map", "0:a",
            "-f", "segment",
            "-segment_time", str(segment_seconds),
            "-c", "copy",
            "-reset_timestamps", "1",
            str(output_pattern),
        ]

    async def segment(
        self,
        input_path: Path,
        output_pattern: Path,
        segment_seconds: int,
        timeout: float,
    ) -> List[Path]:
        """
        Cut `input_path` into `segment_seconds` chunks.

        Args:
            input_path: Source audio file.
            output_pattern: printf-style output path, e.g. /tmp/x/part_%03d.ogg.
                The directory must exist and contain nothing else named like it.
            segment_seconds: Target chunk length.
            timeout: Hard wall-clock bound in seconds.

        Returns:
            Produced chunk paths in index order.
        """
        if segment_seconds <= 0:
            raise ValueError("segment_seconds must be positive")

        cmd = self.build_command(input_path, output_pattern, segment_seconds)
        logger.info(
            "Segmenting %s into %ds chunks (timeout %ss)",
            input_path.name,
            segment_seconds,
            timeout,
        )
        returncode, _, stderr = await self._run(cmd, timeout)
        if returncode != 0:
            tail = stderr[-_STDERR_TAIL:]
            logger.error("ffmpeg exited with %d: %s", returncode, tail)
            raise ProcessFailureError(
                message="Audio segmentation failed",
                returncode=returncode,
                context={"stderr": tail},
            )
        return list_chunks(output_pattern)

    async def probe_audio_codec(self, input_path: Path, timeout: float) -> Optional[str]:
        """
        Codec name of the first audio stream, or None if it cannot be determined.

        Probing is advisory: any failure falls back to None so the caller keeps
        the input container.
        """
        cmd = [
            self.ffprobe_binary,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            str(input_path),
        ]
        try:
            returncode, stdout, _ = await self._run(cmd, timeout)
        except (ProcessFailureError, ProcessTimeoutError) as e:
            logger.warning("ffprobe unavailable for %s: %s", input_path.name, e.message)
            return None
        if returncode != 0:
            return None
        try:
            streams = json.loads(stdout or "{}").get("streams") or []
        except ValueError:
            return None
        for stream in streams:
            if stream.get("codec_type") == "audio" and stream.get("codec_name"):
                return str(stream["codec_name"]).lower()
        return None

    async def _run(self, cmd: Sequence[str], timeout: float) -> Tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ProcessFailureError(
                message=f"{Path(cmd[0]).name} is not installed",
                context={"binary": cmd[0]},
            ) from e
        except OSError as e:
            raise ProcessFailureError(
                message="Could not start audio tool",
                context={"binary": cmd[0], "os_error": str(e)},
            ) from e

        try:
            stdout_raw, stderr_raw = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("%s killed after %ss", Path(cmd[0]).name, timeout)
            raise ProcessTimeoutError(timeout_seconds=timeout, context={"binary": cmd[0]})
        finally:
            # Timeout or cancellation: never leave the child running
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()

        stdout = stdout_raw.decode("utf-8", errors="replace")
        stderr = stderr_raw.decode("utf-8", errors="replace")
        return proc.returncode, stdout, stderr


def list_chunks(output_pattern: Path) -> List[Path]:
    """Files produced for `output_pattern`, sorted lexically."""
    directory = output_pattern.parent
    suffix = output_pattern.suffix
    return sorted(
        path
        for path in directory.iterdir()
        if path.is_file() and path.name.startswith(CHUNK_PREFIX) and path.name.endswith(suffix)
    )
