"""
Adapter between internal `Chat`/`Message` objects and the OpenAI API, reached
through litellm.
"""

import logging

import litellm
import openai

from chatborg.constants import (
    DEFAULT_LLM_MAX_TOKENS,
    IMAGE_PROMPT_MODEL,
    TRANSCRIPTION_MODEL,
)
from chatborg.errors import (
    ProtocolError,
    ProviderRejectedError,
    ProviderTransientError,
)
from chatborg.models import Chat, ContentPart, Message

logger = logging.getLogger(__name__)

IMAGE_PROMPT_INSTRUCTION = (
    "You write prompts for an image generation model. "
    "Rewrite the user's request as a single vivid, detailed prompt in English "
    "describing the subject, setting, style and lighting. "
    "Reply with the prompt only."
)


def provider_error(e: Exception, *, what: str):
    """Maps an openai/litellm exception onto our provider error kinds."""
    status = getattr(e, "status_code", None)
    message = f"{what}: {e}"
    if isinstance(e, openai.APIConnectionError):
        return ProviderTransientError(message)
    if status is not None and 400 <= status < 500:
        return ProviderRejectedError(message, status_code=status)
    return ProviderTransientError(message, status_code=status)


def _part_to_wire(part: ContentPart) -> dict:
    if part.type == "image":
        return {"type": "image_url", "image_url": {"url": part.data}}
    return {"type": "text", "text": part.data}


def message_to_wire(message: Message) -> dict:
    parts = message.content_parts
    if len(parts) == 1 and parts[0].type == "text":
        return {"role": message.role, "content": parts[0].data}
    return {"role": message.role, "content": [_part_to_wire(p) for p in parts]}


def chat_to_wire(chat: Chat) -> list[dict]:
    messages = []
    if chat.system_prompt:
        messages.append({"role": "developer", "content": chat.system_prompt})
    for message in chat.messages or []:
        messages.append(message_to_wire(message))
    return messages


def _first_choice_text(response) -> str:
    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError, KeyError, TypeError) as e:
        raise ProtocolError(f"malformed completion response: {e}") from e
    if content is None:
        raise ProtocolError("completion response has no content")
    return content


class TextCompletionAdapter:
    def __init__(
        self,
        *,
        api_key: str,
        max_tokens: int = DEFAULT_LLM_MAX_TOKENS,
        image_prompt_model: str = IMAGE_PROMPT_MODEL,
    ):
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.image_prompt_model = image_prompt_model

    async def _complete(self, *, model: str, messages: list[dict]) -> str:
        try:
            response = await litellm.acompletion(
                model=model,
                messages=messages,
                max_tokens=self.max_tokens,
                api_key=self.api_key,
            )
        except openai.APIError as e:
            raise provider_error(e, what="chat completion failed") from e
        return _first_choice_text(response)

    async def create_chat_completion(self, chat: Chat) -> Message:
        text = await self._complete(model=chat.text_model, messages=chat_to_wire(chat))
        return Message(role="assistant", content_parts=[ContentPart.text(text)])

    async def generate_image_prompt(self, user_text: str) -> str:
        messages = [
            {"role": "developer", "content": IMAGE_PROMPT_INSTRUCTION},
            {"role": "user", "content": user_text},
        ]
        return await self._complete(model=self.image_prompt_model, messages=messages)

    async def transcribe(self, mp3_bytes: bytes) -> str:
        try:
            response = await litellm.atranscription(
                model=TRANSCRIPTION_MODEL,
                file=("voice.mp3", mp3_bytes),
                api_key=self.api_key,
            )
        except openai.APIError as e:
            raise provider_error(e, what="transcription failed") from e

        transcript = getattr(response, "text", None)
        if transcript is None:
            raise ProtocolError("transcription response has no text")
        return transcript
