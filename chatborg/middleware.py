"""
Middlewares wrap a routed handler: `middleware(next_handler) -> handler`.

`chain(handler, [outer, ..., inner])` applies them so that the first one in
the list runs first.
"""

import asyncio
import logging
import time

from chatborg import bot_util
from chatborg.constants import CB_GEN_IMAGE
from chatborg.errors import BotError
from chatborg.ingest import AttachmentError
from chatborg.log_util import new_request_id, request_id_var

logger = logging.getLogger(__name__)


def chain(handler, middlewares):
    for middleware in reversed(middlewares):
        handler = middleware(handler)
    return handler


def request_id(next_handler):
    async def handler(event):
        token = request_id_var.set(new_request_id())
        started = time.monotonic()
        logger.info(
            f"-> {type(event).__name__} chat={event.chat_id} sender={event.sender_id}"
        )
        try:
            await next_handler(event)
        except asyncio.CancelledError:
            logger.info("request cancelled")
            raise
        except Exception:
            logger.exception("unhandled error while processing update")
        finally:
            logger.info(f"<- done in {time.monotonic() - started:.2f}s")
            request_id_var.reset(token)

    return handler


def auth(allowed_user_ids):
    allowed_user_ids = set(allowed_user_ids)

    def middleware(next_handler):
        async def handler(event):
            if event.sender_id not in allowed_user_ids:
                logger.warning(f"dropping update from unauthorized user {event.sender_id}")
                return
            await next_handler(event)

        return handler

    return middleware


def chat_action_for(event, is_image_intent) -> str:
    data = getattr(event, "data", None)
    if isinstance(data, bytes):
        if data.decode("utf-8", errors="replace").startswith(CB_GEN_IMAGE):
            return "photo"
        return "typing"
    message = getattr(event, "message", None)
    if message is not None and is_image_intent(message.message or ""):
        return "photo"
    return "typing"


def typing(is_image_intent):
    """Shows "typing…" (or "sending a photo…") until the handler returns."""

    def middleware(next_handler):
        async def handler(event):
            action = chat_action_for(event, is_image_intent)
            async with event.client.action(event.chat_id, action):
                await next_handler(event)

        return handler

    return middleware


def voice_to_text(ingestor):
    """
    Replaces a voice note with its transcript before the handler sees it, so
    the rest of the pipeline only deals with text. Placed before `typing` so
    the chat action is chosen from the transcript.
    """

    def middleware(next_handler):
        async def handler(event):
            message = getattr(event, "message", None)
            if message is not None and getattr(message, "voice", None):
                key = bot_util.message_key(event)
                try:
                    async with event.client.action(event.chat_id, "typing"):
                        transcript = await ingestor.transcribe_voice(message)
                except AttachmentError as e:
                    await bot_util.send_message(
                        event, key, f"❌ Не удалось получить аудио файл: {e}"
                    )
                    return
                except BotError as e:
                    await bot_util.send_message(
                        event, key, f"❌ Не удалось распознать голосовое сообщение: {e}"
                    )
                    return

                message.message = transcript
                message.media = None
            await next_handler(event)

        return handler

    return middleware
