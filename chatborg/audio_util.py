import asyncio
import logging
from pathlib import Path

from chatborg.errors import TranscodeError

logger = logging.getLogger(__name__)


class FfmpegTranscoder:
    def __init__(self, ffmpeg: str = "ffmpeg"):
        self.ffmpeg = ffmpeg

    async def convert_to_mp3(self, input_path) -> Path:
        """Converts `input_path` into an mp3 next to it and returns the new path."""
        input_path = Path(input_path)
        output_path = input_path.with_suffix(".mp3")
        cmd = [
            self.ffmpeg,
            "-i", str(input_path),
            "-y",  # Overwrite output
            str(output_path),
        ]

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TranscodeError(
                "ffmpeg not found. Please install ffmpeg for voice message support."
            ) from e

        try:
            _, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode != 0:
            stderr_text = stderr.decode(errors="replace") if stderr else "Unknown error"
            raise TranscodeError(f"FFmpeg conversion failed: {stderr_text}")
        return output_path
