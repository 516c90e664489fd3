import os

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # dotenv is optional for production, but useful locally


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # --- Database ---
    # Hosted Postgres when set, embedded SQLite file otherwise
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")
    SQLITE_PATH = os.environ.get("SQLITE_PATH", "database.db")
    AUTO_CREATE_TABLES = _flag("AUTO_CREATE_TABLES", "true")

    # --- Redis (Celery broker + tick lock) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- Scheduler ---
    SCHEDULER_MODE = os.environ.get("SCHEDULER_MODE", "inprocess")  # inprocess | celery
    SCHEDULER_INTERVAL_SECONDS = float(os.environ.get("SCHEDULER_INTERVAL_SECONDS", "60"))
    TICK_LOCK_TIMEOUT = int(os.environ.get("TICK_LOCK_TIMEOUT", "300"))

    # --- Chat gateway (WhatsApp Web bridge) ---
    CHAT_GATEWAY_URL = os.environ.get("CHAT_GATEWAY_URL")
    CHAT_GATEWAY_TOKEN = os.environ.get("CHAT_GATEWAY_TOKEN")
    CHAT_GATEWAY_TIMEOUT = float(os.environ.get("CHAT_GATEWAY_TIMEOUT", "15"))
    CHAT_GATEWAY_WEBHOOK_SECRET = os.environ.get("CHAT_GATEWAY_WEBHOOK_SECRET")
    # Without a gateway the DEV session stays "connecting" (ticks are skipped)
    # unless this is set; then it reports ready and items are consumed unsent.
    CHAT_DEV_DELIVERY = _flag("CHAT_DEV_DELIVERY", "false")

    # --- Timezone used for submitted timestamps without an offset ---
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "America/Sao_Paulo")

    # --- Web panel ---
    STATIC_DIR = os.environ.get("STATIC_DIR", "public")

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


settings = Settings()
