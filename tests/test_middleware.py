"""Tests for the middleware chain."""

import asyncio
import logging
from unittest.mock import AsyncMock, call

import pytest

from chatborg import middleware
from chatborg.errors import ProviderTransientError
from chatborg.handlers import is_image_intent
from chatborg.ingest import KIND_VOICE, AttachmentError
from chatborg.log_util import request_id_var
from tests.conftest import make_callback_event, make_message_event, sent_texts


class TestChain:
    @pytest.mark.asyncio
    async def test_first_middleware_runs_outermost(self):
        calls = []

        def tracing(name):
            def mw(next_handler):
                async def handler(event):
                    calls.append(f"{name}:in")
                    await next_handler(event)
                    calls.append(f"{name}:out")

                return handler

            return mw

        async def final(event):
            calls.append("handler")

        await middleware.chain(final, [tracing("a"), tracing("b")])(make_message_event("x"))

        assert calls == ["a:in", "b:in", "handler", "b:out", "a:out"]


class TestRequestId:
    @pytest.mark.asyncio
    async def test_request_id_is_set_for_the_handler_only(self):
        seen = []

        async def handler(event):
            seen.append(request_id_var.get())

        await middleware.request_id(handler)(make_message_event("x"))

        assert seen[0] != "-"
        assert request_id_var.get() == "-"

    @pytest.mark.asyncio
    async def test_errors_are_logged_not_raised(self, caplog):
        async def handler(event):
            raise RuntimeError("boom")

        with caplog.at_level(logging.ERROR):
            await middleware.request_id(handler)(make_message_event("x"))

        assert "unhandled error" in caplog.text
        assert "boom" in caplog.text

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        async def handler(event):
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await middleware.request_id(handler)(make_message_event("x"))


class TestAuth:
    @pytest.mark.asyncio
    async def test_allowed_sender_passes(self):
        handler = AsyncMock()
        event = make_message_event("hi", sender_id=42)

        await middleware.auth({42})(handler)(event)

        handler.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_unknown_sender_is_dropped_silently(self):
        handler = AsyncMock()
        event = make_message_event("hi", sender_id=7)

        await middleware.auth({42})(handler)(event)

        handler.assert_not_awaited()
        event.client.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_allow_list_denies_everyone(self):
        handler = AsyncMock()
        await middleware.auth(set())(handler)(make_message_event("hi"))
        handler.assert_not_awaited()


class TestTyping:
    @pytest.mark.asyncio
    async def test_text_shows_typing(self):
        event = make_message_event("Hello")
        handler = AsyncMock()

        await middleware.typing(is_image_intent)(handler)(event)

        event.client.action.assert_called_once_with(event.chat_id, "typing")
        handler.assert_awaited_once_with(event)

    @pytest.mark.asyncio
    async def test_image_request_shows_photo_upload(self):
        event = make_message_event("Нарисуй кота")
        await middleware.typing(is_image_intent)(AsyncMock())(event)
        event.client.action.assert_called_once_with(event.chat_id, "photo")

    @pytest.mark.asyncio
    async def test_regenerate_callback_shows_photo_upload(self):
        event = make_callback_event("gen_image:42")
        await middleware.typing(is_image_intent)(AsyncMock())(event)
        event.client.action.assert_called_once_with(event.chat_id, "photo")


class TestVoiceToText:
    @pytest.mark.asyncio
    async def test_voice_becomes_text(self):
        ingestor = AsyncMock()
        ingestor.transcribe_voice.return_value = "нарисуй кота"
        seen = []

        async def handler(event):
            seen.append((event.message.message, event.message.media))

        event = make_message_event("", voice=object(), media_bytes=b"OGG")
        await middleware.voice_to_text(ingestor)(handler)(event)

        assert seen == [("нарисуй кота", None)]

    @pytest.mark.asyncio
    async def test_text_passes_through(self):
        ingestor = AsyncMock()
        handler = AsyncMock()

        await middleware.voice_to_text(ingestor)(handler)(make_message_event("hi"))

        ingestor.transcribe_voice.assert_not_awaited()
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_download_failure_stops_the_turn(self):
        ingestor = AsyncMock()
        ingestor.transcribe_voice.side_effect = AttachmentError(KIND_VOICE, "gone")
        handler = AsyncMock()
        event = make_message_event("", voice=object())

        await middleware.voice_to_text(ingestor)(handler)(event)

        handler.assert_not_awaited()
        assert sent_texts(event.client) == ["❌ Не удалось получить аудио файл: gone"]

    @pytest.mark.asyncio
    async def test_transcription_failure_stops_the_turn(self):
        ingestor = AsyncMock()
        ingestor.transcribe_voice.side_effect = ProviderTransientError("503")
        handler = AsyncMock()
        event = make_message_event("", voice=object())

        await middleware.voice_to_text(ingestor)(handler)(event)

        handler.assert_not_awaited()
        (text,) = sent_texts(event.client)
        assert text.startswith("❌ ")


class TestVoiceThenTyping:
    @pytest.mark.asyncio
    async def test_drawing_request_by_voice_shows_photo_upload(self):
        ingestor = AsyncMock()
        ingestor.transcribe_voice.return_value = "нарисуй кота"
        handler = AsyncMock()
        event = make_message_event("", voice=object(), media_bytes=b"OGG")

        wrapped = middleware.chain(
            handler,
            [middleware.voice_to_text(ingestor), middleware.typing(is_image_intent)],
        )
        await wrapped(event)

        assert event.client.action.call_args_list == [
            call(event.chat_id, "typing"),
            call(event.chat_id, "photo"),
        ]
        handler.assert_awaited_once_with(event)
