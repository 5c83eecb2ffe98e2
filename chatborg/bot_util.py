"""
Shared plumbing for the bot: update routing, conversation keys, keyboards and
message sending helpers.
"""

import asyncio
import io
import logging

from telethon.tl.functions.bots import SetBotCommandsRequest
from telethon.tl.types import BotCommand, BotCommandScopeDefault, KeyboardButtonCallback

from chatborg.constants import CHUNK_SEND_DELAY
from chatborg.render import split_html

logger = logging.getLogger(__name__)


# --- Routing ---


def parse_command(text: str):
    """Returns (command, addressee) for `/cmd@bot args`, or (None, None)."""
    if not text or not text.startswith("/"):
        return None, None
    token = text.split(maxsplit=1)[0][1:]
    command, _, addressee = token.partition("@")
    return command.lower(), (addressee or None)


class Router:
    """
    Picks the handler for an update; the first match wins.

    Messages are matched against commands, then against matchers, then fall
    through to the default handler. Callback queries are matched by the
    prefix of their data. Registered callback prefixes may not overlap, so at
    most one of them can match any given data.
    """

    def __init__(self, *, bot_username=None):
        self.bot_username = bot_username
        self.commands = {}
        self.callbacks = []
        self.matchers = []
        self.default = None

    def command(self, name: str, handler):
        self.commands[name.lstrip("/").lower()] = handler

    def callback(self, prefix: str, handler):
        for existing, _ in self.callbacks:
            if existing.startswith(prefix) or prefix.startswith(existing):
                raise ValueError(
                    f"callback prefix {prefix!r} overlaps with {existing!r}"
                )
        self.callbacks.append((prefix, handler))

    def matcher(self, predicate, handler):
        self.matchers.append((predicate, handler))

    def set_default(self, handler):
        self.default = handler

    def resolve_message(self, event):
        command, addressee = parse_command(event.message.message or "")
        if command is not None and command in self.commands:
            addressed_to_us = (
                addressee is None
                or self.bot_username is None
                or addressee.lower() == self.bot_username.lstrip("@").lower()
            )
            if addressed_to_us:
                return self.commands[command]

        for predicate, handler in self.matchers:
            if predicate(event):
                return handler

        return self.default

    def resolve_callback(self, event):
        data = callback_data(event)
        for prefix, handler in self.callbacks:
            if data.startswith(prefix):
                return handler
        return None


def callback_data(event) -> str:
    data = event.data or b""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def callback_suffix(event, prefix: str) -> str:
    return callback_data(event)[len(prefix) :]


# --- Conversation Keys ---


def topic_id_of(message) -> int:
    """The forum topic a message belongs to, or 0 outside forum topics."""
    reply_to = getattr(message, "reply_to", None)
    if reply_to is None or not getattr(reply_to, "forum_topic", False):
        return 0
    return reply_to.reply_to_top_id or reply_to.reply_to_msg_id or 0


def message_key(event):
    return (event.chat_id, topic_id_of(event.message))


async def callback_key(event):
    """Callback queries are keyed by the message that carried the button."""
    message = await event.get_message()
    return (event.chat_id, topic_id_of(message))


# --- Keyboards ---


def build_menu(buttons, n_cols):
    """Helper to build a menu of inline buttons in a grid."""
    return [buttons[i : i + n_cols] for i in range(0, len(buttons), n_cols)]


def inline_button(text: str, data: str):
    return KeyboardButtonCallback(text, data=data.encode("utf-8"))


def options_menu(options: dict, *, callback_prefix: str, current=None, n_cols=2):
    """`options` maps a value to its label; the current value gets a check mark."""
    buttons = [
        inline_button(
            f"✅ {label}" if value == current else label,
            f"{callback_prefix}{value}",
        )
        for value, label in options.items()
    ]
    return build_menu(buttons, n_cols=n_cols)


# --- Sending ---


async def send_message(event, key, text, *, buttons=None, parse_mode=None):
    chat_id, topic_id = key
    return await event.client.send_message(
        chat_id,
        text,
        reply_to=topic_id or None,
        buttons=buttons,
        parse_mode=parse_mode,
        link_preview=False,
    )


async def send_photo(event, key, image_bytes: bytes, *, buttons=None):
    chat_id, topic_id = key
    photo = io.BytesIO(image_bytes)
    # telethon decides between photo and document by the file name
    photo.name = "image.jpg"
    return await event.client.send_file(
        chat_id,
        photo,
        reply_to=topic_id or None,
        buttons=buttons,
    )


async def send_chunked(event, key, html_text: str, *, delay=CHUNK_SEND_DELAY):
    """Sends HTML in Telegram-sized pieces, pausing between them."""
    for i, chunk in enumerate(split_html(html_text)):
        if i:
            await asyncio.sleep(delay)
        await send_message(event, key, chunk, parse_mode="html")


# --- Bot Initialization ---


async def register_bot_commands(borg, commands: list[dict]):
    """Sets the bot's command menu in the Telegram UI."""
    try:
        await borg(
            SetBotCommandsRequest(
                scope=BotCommandScopeDefault(),
                lang_code="",
                commands=[BotCommand(c["command"], c["description"]) for c in commands],
            )
        )
        logger.info("Bot command menu has been updated")
    except Exception as e:
        logger.warning(f"Failed to set bot commands: {e}")
