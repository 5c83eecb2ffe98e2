from datetime import timedelta

##
TELEGRAM_MESSAGE_LIMIT = 4096
CHUNK_SEND_DELAY = 1.0
##
DEFAULT_TEXT_MODEL = "gpt-4o-mini"
DEFAULT_IMAGE_MODEL = "dall-e-2"
DEFAULT_TTL = timedelta(minutes=15)
DEFAULT_LLM_MAX_TOKENS = 4096

IMAGE_PROMPT_MODEL = "gpt-4o-mini"
TRANSCRIPTION_MODEL = "whisper-1"

TEXT_MODELS = ["gpt-4o-mini", "gpt-3.5-turbo", "o3-mini"]

#: model name -> button label
OPENAI_IMAGE_MODELS = {
    "dall-e-2": "DALL-E 2",
    "dall-e-3": "DALL-E 3",
}
REPLICATE_IMAGE_MODELS = {
    "flux-1.1-pro-ultra": "Flux 1.1 Pro Ultra",
}

#: short label -> duration, in menu order
TTL_OPTIONS = {
    "30s": timedelta(seconds=30),
    "15m": timedelta(minutes=15),
    "1h": timedelta(hours=1),
    "8h": timedelta(hours=8),
    "24h": timedelta(hours=24),
    "168h": timedelta(hours=168),
}
##
IMAGE_INTENT_MARKERS = ("рисуй", "draw")
##
CB_SET_IMAGE_MODEL = "set_image_model:"
CB_SET_TEXT_MODEL = "set_text_model:"
CB_SET_TTL = "set_ttl:"
CB_SYSTEM_PROMPT = "sys_prompt:"
CB_GEN_IMAGE = "gen_image:"

CALLBACK_PREFIXES = [
    CB_SET_IMAGE_MODEL,
    CB_SET_TEXT_MODEL,
    CB_SET_TTL,
    CB_SYSTEM_PROMPT,
    CB_GEN_IMAGE,
]
##
BOT_COMMANDS = [
    {"command": "start", "description": "Что умеет бот"},
    {"command": "new", "description": "Начать новый чат"},
    {"command": "ttl", "description": "Установить время жизни чата"},
    {"command": "text_models", "description": "Выбрать модель для текста"},
    {"command": "image_models", "description": "Выбрать модель для картинок"},
    {"command": "system_prompt", "description": "Настроить системную инструкцию"},
]
##
EDIT_LABEL = "Редактировать"
MORE_LABEL = "Еще"
EMPTY_SYSTEM_PROMPT_LABEL = "Отсутствует"
##
VOICE_TEMP_DIR = "tmp/voices"
##
