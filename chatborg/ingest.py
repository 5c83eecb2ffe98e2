"""
Turns an inbound Telegram message into a `Prompt`.

Photos are fetched into memory. Voice notes go through a temporary `.ogg`
file, ffmpeg, and speech-to-text; the temporary files never outlive the call.
"""

import logging
import time
from pathlib import Path

import aiofiles
import aiofiles.os

from chatborg.constants import VOICE_TEMP_DIR
from chatborg.errors import IngestError, TranscodeError
from chatborg.models import Prompt

logger = logging.getLogger(__name__)

KIND_PHOTO = "photo"
KIND_VOICE = "voice"


class AttachmentError(IngestError):
    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind


async def remove_if_exists(path):
    try:
        await aiofiles.os.remove(path)
    except FileNotFoundError:
        pass


class MultimodalIngestor:
    def __init__(self, *, llm, transcoder, temp_dir=VOICE_TEMP_DIR):
        self.llm = llm
        self.transcoder = transcoder
        self.temp_dir = Path(temp_dir)

    async def ingest(self, message) -> Prompt:
        # Telethon keeps media captions in `message.message` too
        prompt = Prompt(text=message.message or "")
        if message.photo:
            prompt.image_bytes = await self.download_photo(message)
        if message.voice:
            prompt.text = await self.transcribe_voice(message)
        return prompt

    async def download_photo(self, message) -> bytes:
        # without `thumb`, telethon picks the largest size
        try:
            data = await message.download_media(file=bytes)
        except Exception as e:
            raise AttachmentError(KIND_PHOTO, f"failed to download photo: {e}") from e
        if not data:
            raise AttachmentError(KIND_PHOTO, "photo download returned no data")
        return data

    async def transcribe_voice(self, message) -> str:
        try:
            ogg_bytes = await message.download_media(file=bytes)
        except Exception as e:
            raise AttachmentError(KIND_VOICE, f"failed to download voice: {e}") from e
        if not ogg_bytes:
            raise AttachmentError(KIND_VOICE, "voice download returned no data")

        try:
            await aiofiles.os.makedirs(self.temp_dir, exist_ok=True)
        except OSError as e:
            raise TranscodeError(f"failed to create {self.temp_dir}: {e}") from e

        ogg_path = self.temp_dir / f"voice-{time.time_ns()}.ogg"
        mp3_path = ogg_path.with_suffix(".mp3")
        try:
            try:
                async with aiofiles.open(ogg_path, "wb") as f:
                    await f.write(ogg_bytes)
            except OSError as e:
                raise TranscodeError(f"failed to store voice message: {e}") from e

            mp3_path = await self.transcoder.convert_to_mp3(ogg_path)
            try:
                async with aiofiles.open(mp3_path, "rb") as f:
                    mp3_bytes = await f.read()
            except OSError as e:
                raise TranscodeError(f"failed to read converted audio: {e}") from e

            transcript = await self.llm.transcribe(mp3_bytes)
        finally:
            await remove_if_exists(ogg_path)
            await remove_if_exists(mp3_path)

        logger.info(f"Transcribed voice message ({len(ogg_bytes)} bytes)")
        return transcript
