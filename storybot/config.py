import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _default_sqlite_uri() -> str:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return f"sqlite:///{instance_path / 'storybot.db'}"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Chat transport
    TELEGRAM_TOKEN = os.environ.get("TELEGRAM_TOKEN", "")
    TELEGRAM_WEBHOOK_SECRET = os.environ.get("TELEGRAM_WEBHOOK_SECRET", "")
    AUTHORIZED_USER_ID = os.environ.get("AUTHORIZED_USER_ID", "")
    TRANSPORT_MESSAGE_LIMIT = _env_int("TRANSPORT_MESSAGE_LIMIT", 4000)
    CHUNK_DELAY_SECONDS = _env_float("CHUNK_DELAY_SECONDS", 0.5)
    MAX_UPLOAD_BYTES = _env_int("MAX_UPLOAD_BYTES", 1024 * 1024)

    # Completion service
    OPENROUTER_API_KEY = os.environ.get("OPENROUTER_API_KEY", "")
    OPENROUTER_BASE_URL = os.environ.get("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
    OPENROUTER_REFERER = os.environ.get("OPENROUTER_REFERER", "https://fiction-bot.railway.app")
    OPENROUTER_APP_TITLE = os.environ.get("OPENROUTER_APP_TITLE", "Fiction Writing Bot")
    COMPLETION_MODEL = os.environ.get("COMPLETION_MODEL", "anthropic/claude-3.5-haiku")
    MAX_OUTPUT_TOKENS = _env_int("MAX_OUTPUT_TOKENS", 4000)
    TRUNCATION_RATIO = _env_float("TRUNCATION_RATIO", 0.94)
    INPUT_COST_PER_MILLION = _env_float("INPUT_COST_PER_MILLION", 0.80)
    OUTPUT_COST_PER_MILLION = _env_float("OUTPUT_COST_PER_MILLION", 4.00)

    # Workflow and safety limits
    DAILY_MESSAGE_LIMIT = _env_int("DAILY_MESSAGE_LIMIT", 50)
    DAILY_SPENDING_LIMIT = _env_float("DAILY_SPENDING_LIMIT", 2.00)
    TARGET_CHAPTER_WORDS = _env_int("TARGET_CHAPTER_WORDS", 3000)
    RECENT_CHAPTER_COUNT = _env_int("RECENT_CHAPTER_COUNT", 3)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    TELEGRAM_TOKEN = "test-token"
    TELEGRAM_WEBHOOK_SECRET = "test-secret"
    AUTHORIZED_USER_ID = "1001"
    OPENROUTER_API_KEY = "test-key"
    CHUNK_DELAY_SECONDS = 0.0
