from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from chatborg.constants import (
    DEFAULT_LLM_MAX_TOKENS,
    IMAGE_PROMPT_MODEL,
    OPENAI_IMAGE_MODELS,
    REPLICATE_IMAGE_MODELS,
    VOICE_TEMP_DIR,
)


class Config(BaseSettings):
    """Environment configuration, read once at startup."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    open_ai_token: str
    telegram_bot_token: str
    #: space-separated user ids; empty denies everyone
    telegram_authorized_user_ids: str = ""

    database_url: str = ""
    db_host: str = "localhost:61234"
    bundebug: int = Field(default=0, ge=0, le=2)

    #: MTProto app credentials; bots can log in with the public desktop pair
    telegram_api_id: int = 6
    telegram_api_hash: str = "eb06d4abfb49dc3eeb1aeb98ae0f581e"
    borg_session: str = "chatborg"

    replicate_api_token: Optional[str] = None
    llm_max_tokens: int = DEFAULT_LLM_MAX_TOKENS
    image_prompt_model: str = IMAGE_PROMPT_MODEL
    voice_temp_dir: str = VOICE_TEMP_DIR
    log_level: str = "INFO"

    @property
    def authorized_user_ids(self) -> set[int]:
        return {int(uid) for uid in self.telegram_authorized_user_ids.split()}

    def dsn(self) -> str:
        if self.database_url:
            return self.database_url
        return f"postgres://app:app@{self.db_host}/app?sslmode=disable"

    def image_models(self) -> dict[str, str]:
        """Enabled image models, mapped to their display names."""
        models = dict(OPENAI_IMAGE_MODELS)
        if self.replicate_api_token:
            models.update(REPLICATE_IMAGE_MODELS)
        return models
