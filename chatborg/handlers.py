"""
Handlers for commands, callback queries and plain messages.

Every `create_*_handler` factory takes only the collaborators it needs and
returns an `async def handler(event)`. Failures are reported to the user as a
single "❌ ..." message; cancellation is never caught here.
"""

import logging
import re
from datetime import timedelta

from chatborg import bot_util, render
from chatborg.constants import (
    CB_GEN_IMAGE,
    CB_SET_IMAGE_MODEL,
    CB_SET_TEXT_MODEL,
    CB_SET_TTL,
    CB_SYSTEM_PROMPT,
    CHUNK_SEND_DELAY,
    EDIT_LABEL,
    EMPTY_SYSTEM_PROMPT_LABEL,
    IMAGE_INTENT_MARKERS,
    MORE_LABEL,
    TEXT_MODELS,
    TTL_OPTIONS,
)
from chatborg.errors import (
    BotError,
    MalformedCallbackError,
    NotFoundError,
    UnsupportedModelError,
    UnsupportedTTLError,
)
from chatborg.ingest import KIND_PHOTO, AttachmentError
from chatborg.models import Chat, Message

logger = logging.getLogger(__name__)

START_MESSAGE = """👋 Привет! Я твой ChatGPT Telegram-бот. Вот что я умею:

🆕 <b>/new</b> — Начать новый чат
⏳ <b>/ttl</b> — Установить время жизни чата
📝 <b>/text_models</b> — Выбрать модель для текста
🖼️ <b>/image_models</b> — Выбрать модель для картинок
⚙️ <b>/system_prompt</b> — Настроить системную инструкцию

🖊️ Просто задай мне вопрос — я помогу!
🎨 Напиши "нарисуй ..." и я создам картинку.
🎙 Отправь голосовое сообщение — я пойму.
📷 Отправь картинку — я опишу её или отвечу на твои вопросы о ней.

Начнем? 🚀"""

HISTORY_CLEARED = "🧹 История очищена! Начните новый чат. 🚀"


# --- Helpers ---


def is_image_intent(text: str) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in IMAGE_INTENT_MARKERS)


async def load_chat(chats, key) -> Chat:
    """Returns the stored chat, or a fresh one with default settings."""
    chat_id, topic_id = key
    try:
        return await chats.get(chat_id, topic_id)
    except NotFoundError:
        return Chat(id=chat_id, topic_id=topic_id)


async def fail(event, key, description: str, error=None):
    text = f"❌ {description}"
    if error is not None:
        text += f": {error}"
    await bot_util.send_message(event, key, text)


def more_button(prompt_id: int):
    return [[bot_util.inline_button(MORE_LABEL, f"{CB_GEN_IMAGE}{prompt_id}")]]


DURATION_RE = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$")


def parse_duration(value: str) -> timedelta:
    """Parses durations such as `30s`, `15m`, `1h30m` or `15m0s`."""
    m = DURATION_RE.match(value or "")
    if not value or not m:
        raise ValueError(f"invalid duration: {value!r}")
    hours, minutes, seconds = (int(g) if g else 0 for g in m.groups())
    return timedelta(hours=hours, minutes=minutes, seconds=seconds)


def format_duration(value: timedelta) -> str:
    total = int(value.total_seconds())
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")
    return "".join(parts)


def parse_ttl(value: str) -> timedelta:
    try:
        ttl = parse_duration(value)
    except ValueError as e:
        raise UnsupportedTTLError(value) from e
    if ttl not in TTL_OPTIONS.values():
        raise UnsupportedTTLError(value)
    return ttl


# --- Commands ---


def create_start_handler():
    async def handler(event):
        key = bot_util.message_key(event)
        await bot_util.send_message(event, key, START_MESSAGE, parse_mode="html")

    return handler


def create_new_chat_handler(*, chats):
    async def handler(event):
        key = bot_util.message_key(event)
        try:
            await chats.delete_messages(*key)
        except BotError as e:
            await fail(event, key, "Не удалось очистить чат", e)
            return
        await bot_util.send_message(event, key, HISTORY_CLEARED)

    return handler


def create_show_text_models_handler(*, chats, text_models=TEXT_MODELS):
    async def handler(event):
        key = bot_util.message_key(event)
        try:
            chat = await load_chat(chats, key)
        except BotError as e:
            await fail(event, key, "Не удалось получить чат", e)
            return
        await bot_util.send_message(
            event,
            key,
            "🤖 Выберите модель для текста:",
            buttons=bot_util.options_menu(
                {model: model for model in text_models},
                callback_prefix=CB_SET_TEXT_MODEL,
                current=chat.text_model,
            ),
        )

    return handler


def create_show_image_models_handler(*, chats, image_models: dict):
    async def handler(event):
        key = bot_util.message_key(event)
        try:
            chat = await load_chat(chats, key)
        except BotError as e:
            await fail(event, key, "Не удалось получить чат", e)
            return
        await bot_util.send_message(
            event,
            key,
            "🎨 Выберите модель для генерации изображений:",
            buttons=bot_util.options_menu(
                image_models,
                callback_prefix=CB_SET_IMAGE_MODEL,
                current=chat.image_model,
            ),
        )

    return handler


def create_show_ttl_handler(*, chats):
    async def handler(event):
        key = bot_util.message_key(event)
        try:
            chat = await load_chat(chats, key)
        except BotError as e:
            await fail(event, key, "Не удалось получить чат", e)
            return
        await bot_util.send_message(
            event,
            key,
            "⏳ Выберите время жизни чата:",
            buttons=bot_util.options_menu(
                {label: label for label in TTL_OPTIONS},
                callback_prefix=CB_SET_TTL,
                current=format_duration(chat.ttl),
                n_cols=3,
            ),
        )

    return handler


def create_show_system_prompt_handler(*, chats):
    async def handler(event):
        key = bot_util.message_key(event)
        try:
            chat = await load_chat(chats, key)
        except BotError as e:
            await fail(event, key, "Не удалось получить чат", e)
            return
        prompt = chat.system_prompt or EMPTY_SYSTEM_PROMPT_LABEL
        await bot_util.send_message(
            event,
            key,
            f"🧠 Текущая системная инструкция:\n{prompt}",
            buttons=[[bot_util.inline_button(EDIT_LABEL, f"{CB_SYSTEM_PROMPT}{EDIT_LABEL}")]],
        )

    return handler


# --- Setting Callbacks ---


def create_set_image_model_handler(*, chats, image_models: dict):
    async def handler(event):
        await event.answer()
        key = await bot_util.callback_key(event)

        model = bot_util.callback_suffix(event, CB_SET_IMAGE_MODEL)
        if model not in image_models:
            await fail(
                event, key, "Не удалось извлечь модель изображения", UnsupportedModelError(model)
            )
            return

        try:
            chat = await load_chat(chats, key)
        except BotError as e:
            await fail(event, key, "Не удалось получить чат", e)
            return

        chat.image_model = model
        try:
            await chats.save(chat)
        except BotError as e:
            await fail(event, key, "Не удалось сохранить чат", e)
            return

        await bot_util.send_message(
            event,
            key,
            f"✅ Модель для генерации изображений установлена: {image_models[model]}",
        )

    return handler


def create_set_text_model_handler(*, chats, text_models=TEXT_MODELS):
    async def handler(event):
        await event.answer()
        key = await bot_util.callback_key(event)

        model = bot_util.callback_suffix(event, CB_SET_TEXT_MODEL)
        if model not in text_models:
            await fail(
                event, key, "Не удалось извлечь текстовую модель", UnsupportedModelError(model)
            )
            return

        try:
            chat = await load_chat(chats, key)
        except BotError as e:
            await fail(event, key, "Не удалось получить чат", e)
            return

        chat.text_model = model
        try:
            await chats.save(chat)
        except BotError as e:
            await fail(event, key, "Не удалось сохранить чат", e)
            return
        await bot_util.send_message(event, key, f"✅ Модель установлена: {model}")

        # history never carries over to another model
        try:
            await chats.delete_messages(*key)
        except BotError as e:
            await fail(event, key, "Не удалось очистить историю", e)
            return
        await bot_util.send_message(event, key, HISTORY_CLEARED)

    return handler


def create_set_ttl_handler(*, chats):
    async def handler(event):
        await event.answer()
        key = await bot_util.callback_key(event)

        try:
            ttl = parse_ttl(bot_util.callback_suffix(event, CB_SET_TTL))
        except UnsupportedTTLError as e:
            await fail(event, key, "Не удалось извлечь TTL", e)
            return

        try:
            chat = await load_chat(chats, key)
        except BotError as e:
            await fail(event, key, "Не удалось получить чат", e)
            return

        chat.ttl = ttl
        try:
            await chats.save(chat)
        except BotError as e:
            await fail(event, key, "Не удалось сохранить чат", e)
            return

        await bot_util.send_message(
            event, key, f"✅ Время жизни чата (TTL) установлено: {format_duration(ttl)}"
        )

    return handler


# --- System Prompt Flow ---


def create_request_system_prompt_handler(*, state):
    async def handler(event):
        await event.answer()
        key = await bot_util.callback_key(event)
        state.set_awaiting_system_prompt(key)
        await bot_util.send_message(
            event, key, "✍️ Отправьте новую системную инструкцию следующим сообщением."
        )

    return handler


def awaiting_system_prompt(state):
    """Matches the next text message of a conversation that is editing its system prompt."""

    def predicate(event):
        if not event.message.message:
            return False
        return state.is_awaiting_system_prompt(bot_util.message_key(event))

    return predicate


def create_set_system_prompt_handler(*, chats, state):
    async def handler(event):
        key = bot_util.message_key(event)
        prompt = event.message.message

        try:
            chat = await load_chat(chats, key)
        except BotError as e:
            await fail(event, key, "Не удалось получить чат", e)
            return

        chat.system_prompt = prompt
        try:
            await chats.save(chat)
        except BotError as e:
            await fail(event, key, "Не удалось сохранить чат", e)
            return

        state.clear(key)
        await bot_util.send_message(
            event, key, f"✅ Системная инструкция установлена: {prompt}"
        )

    return handler


# --- Images ---


async def _generate_and_send(event, key, *, images, chats, prompt):
    try:
        chat = await load_chat(chats, key)
    except BotError as e:
        await fail(event, key, "Не удалось получить чат", e)
        return

    try:
        image = await images.generate_image(prompt.text, chat.image_model)
    except BotError as e:
        await fail(event, key, "Не удалось сгенерировать изображение", e)
        return

    await bot_util.send_photo(event, key, image, buttons=more_button(prompt.id))


def create_regenerate_image_handler(*, prompts, images, chats):
    async def handler(event):
        await event.answer()
        key = await bot_util.callback_key(event)

        raw_id = bot_util.callback_suffix(event, CB_GEN_IMAGE)
        try:
            prompt_id = int(raw_id)
        except ValueError:
            await fail(
                event,
                key,
                "Не удалось прочитать промпт ID",
                MalformedCallbackError(f"invalid prompt id: {raw_id!r}"),
            )
            return

        try:
            prompt = await prompts.get_by_id(prompt_id)
        except BotError as e:
            await fail(event, key, "Не удалось извлечь промпт", e)
            return

        await _generate_and_send(event, key, images=images, chats=chats, prompt=prompt)

    return handler


# --- Default Dispatcher ---


def create_generate_content_handler(
    *,
    ingestor,
    llm,
    images,
    chats,
    prompts,
    send_delay=CHUNK_SEND_DELAY,
):
    async def reply_with_image(event, key, prompt):
        try:
            prompt.text = await llm.generate_image_prompt(prompt.text)
        except BotError as e:
            await fail(event, key, "Не удалось сгенерировать промпт", e)
            return

        try:
            await prompts.save(prompt)
        except BotError as e:
            await fail(event, key, "Не удалось сохранить промпт", e)
            return

        logger.info(f"Generating image for prompt {prompt.id}")
        await _generate_and_send(event, key, images=images, chats=chats, prompt=prompt)

    async def reply_with_text(event, key, prompt):
        try:
            chat = await load_chat(chats, key)
        except BotError as e:
            await fail(event, key, "Не удалось получить чат", e)
            return

        if chat.history_expired():
            logger.info(f"History of chat {key} expired, starting over")
            chat.messages = []

        chat.append(Message.user(prompt.text, prompt.image_bytes))

        try:
            answer = await llm.create_chat_completion(chat)
        except BotError as e:
            await fail(event, key, "Не удалось сгенерировать ответ", e)
            return

        if answer is None or not answer.content_parts or not answer.content_parts[0].data:
            await fail(event, key, "Ответ пустой или отсутствует.")
            return

        chat.append(answer)
        try:
            await chats.save(chat)
        except BotError as e:
            await fail(event, key, "Не удалось сохранить чат", e)
            return

        part = answer.content_parts[0]
        if part.type != "text":
            await fail(event, key, "Неожиданный тип ответа", part.type)
            return

        await bot_util.send_chunked(event, key, render.to_html(part.data), delay=send_delay)

    async def handler(event):
        key = bot_util.message_key(event)

        try:
            prompt = await ingestor.ingest(event.message)
        except AttachmentError as e:
            if e.kind == KIND_PHOTO:
                await fail(event, key, "Не удалось получить фото файл", e)
            else:
                await fail(event, key, "Не удалось получить аудио файл", e)
            return
        except BotError as e:
            await fail(event, key, "Не удалось распознать голосовое сообщение", e)
            return

        if not prompt.text and not prompt.image_bytes:
            logger.info("Ignoring a message with nothing to answer")
            return

        if is_image_intent(prompt.text):
            await reply_with_image(event, key, prompt)
        else:
            await reply_with_text(event, key, prompt)

    return handler


# --- Registration ---


def register_handlers(
    router,
    *,
    chats,
    prompts,
    state,
    llm,
    images,
    ingestor,
    image_models: dict,
    text_models=TEXT_MODELS,
):
    """Wires every handler into `router` in order of precedence."""
    router.command("start", create_start_handler())
    router.command("new", create_new_chat_handler(chats=chats))
    router.command(
        "text_models", create_show_text_models_handler(chats=chats, text_models=text_models)
    )
    router.command(
        "image_models",
        create_show_image_models_handler(chats=chats, image_models=image_models),
    )
    router.command("system_prompt", create_show_system_prompt_handler(chats=chats))
    router.command("ttl", create_show_ttl_handler(chats=chats))

    router.callback(
        CB_SET_IMAGE_MODEL,
        create_set_image_model_handler(chats=chats, image_models=image_models),
    )
    router.callback(CB_SET_TTL, create_set_ttl_handler(chats=chats))
    router.callback(
        CB_SET_TEXT_MODEL,
        create_set_text_model_handler(chats=chats, text_models=text_models),
    )
    router.callback(CB_SYSTEM_PROMPT, create_request_system_prompt_handler(state=state))
    router.callback(
        CB_GEN_IMAGE,
        create_regenerate_image_handler(prompts=prompts, images=images, chats=chats),
    )

    router.matcher(
        awaiting_system_prompt(state),
        create_set_system_prompt_handler(chats=chats, state=state),
    )

    router.set_default(
        create_generate_content_handler(
            ingestor=ingestor,
            llm=llm,
            images=images,
            chats=chats,
            prompts=prompts,
        )
    )
    return router
