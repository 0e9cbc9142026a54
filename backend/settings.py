import os
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Storage
MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "halocare")

# Auth Configuration
SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "fallback_secret_key_change_in_production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")

# Generative AI
OPENAI_CHAT_MODEL = os.environ.get("OPENAI_CHAT_MODEL", "gpt-4o-mini")
OPENAI_TTS_MODEL = os.environ.get("OPENAI_TTS_MODEL", "tts-1")
OPENAI_TTS_VOICE = os.environ.get("OPENAI_TTS_VOICE", "nova")

# Companion session cadence
REMINDER_CHECK_INTERVAL_SECONDS = float(os.environ.get("REMINDER_CHECK_INTERVAL_SECONDS", "30"))
INITIAL_CHECK_DELAY_SECONDS = float(os.environ.get("INITIAL_CHECK_DELAY_SECONDS", "5"))
MEMORY_PROMPT_INTERVAL_SECONDS = float(os.environ.get("MEMORY_PROMPT_INTERVAL_SECONDS", "300"))
MEDICATION_CHANGE_DEBOUNCE_SECONDS = float(os.environ.get("MEDICATION_CHANGE_DEBOUNCE_SECONDS", "1"))

SPEECH_RENDER_AUDIO = os.environ.get("SPEECH_RENDER_AUDIO", "false").lower() == "true"

# Unfinished voice transcripts
TRANSCRIPT_MAX_AGE_SECONDS = float(os.environ.get("TRANSCRIPT_MAX_AGE_SECONDS", "600"))
TRANSCRIPT_MAX_BUFFERS = int(os.environ.get("TRANSCRIPT_MAX_BUFFERS", "1000"))

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "8001"))


def openai_configured() -> bool:
    return bool(os.environ.get("OPENAI_API_KEY"))
