# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.

import asyncio
import logging
import signal
import sys

from pydantic import ValidationError

from chatborg import Chatborg
from chatborg import bot_util, handlers, llm_db, middleware, migrations
from chatborg.audio_util import FfmpegTranscoder
from chatborg.config import Config
from chatborg.constants import BOT_COMMANDS, TEXT_MODELS
from chatborg.image_util import (
    MultiProviderImageClient,
    OpenAIImageProvider,
    ReplicateImageProvider,
)
from chatborg.ingest import MultimodalIngestor
from chatborg.llm_util import TextCompletionAdapter
from chatborg.log_util import setup_logging
from chatborg.services import ServiceGroup, TelegramBotService
from chatborg.storage import EphemeralStateStore

logger = logging.getLogger("stdborg")


def build_image_client(config: Config):
    openai_provider = OpenAIImageProvider(api_key=config.open_ai_token)
    providers = {model: openai_provider for model in ("dall-e-2", "dall-e-3")}
    if config.replicate_api_token:
        replicate_provider = ReplicateImageProvider(api_token=config.replicate_api_token)
        providers["flux-1.1-pro-ultra"] = replicate_provider
    return MultiProviderImageClient(providers)


async def borg_init(config: Config, engine, images):
    llm = TextCompletionAdapter(
        api_key=config.open_ai_token,
        max_tokens=config.llm_max_tokens,
        image_prompt_model=config.image_prompt_model,
    )
    ingestor = MultimodalIngestor(
        llm=llm,
        transcoder=FfmpegTranscoder(),
        temp_dir=config.voice_temp_dir,
    )

    router = handlers.register_handlers(
        bot_util.Router(),
        chats=llm_db.ChatRepository(engine),
        prompts=llm_db.PromptRepository(engine),
        state=EphemeralStateStore(),
        llm=llm,
        images=images,
        ingestor=ingestor,
        image_models=config.image_models(),
        text_models=TEXT_MODELS,
    )
    middlewares = [
        middleware.request_id,
        middleware.auth(config.authorized_user_ids),
        middleware.voice_to_text(ingestor),
        middleware.typing(handlers.is_image_intent),
    ]

    borg = await Chatborg.create(
        config.borg_session,
        router=router,
        middlewares=middlewares,
        bot_token=config.telegram_bot_token,
        api_id=config.telegram_api_id,
        api_hash=config.telegram_api_hash,
        connection_retries=None,
    )
    await bot_util.register_bot_commands(borg, BOT_COMMANDS)
    return borg


async def main() -> int:
    try:
        config = Config()
    except ValidationError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        return 1
    setup_logging(config.log_level)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGHUP, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    engine = llm_db.build_engine(config.dsn(), bundebug=config.bundebug)
    images = build_image_client(config)
    try:
        try:
            await llm_db.ping(engine)
            applied = await migrations.apply_migrations(engine)
            if applied:
                logger.info(f"Applied migrations: {applied}")
            borg = await borg_init(config, engine, images)
        except Exception as e:
            logger.error(f"shutting down due to error: {e}")
            return 1

        print(f"Borg created!\nme: {borg.me.first_name or ''} (@{borg.me.username or 'NA'})")
        try:
            await ServiceGroup([TelegramBotService(borg)]).run(stop_event)
        except Exception:
            logger.exception("shutting down due to error")
            return 1
    finally:
        await images.aclose()
        await engine.dispose()

    logger.info("Bye")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
