# wabot/utils/config.py

import os
import re
from dataclasses import dataclass, field
from typing import List


def _split_csv(name: str, default: str = "") -> List[str]:
    raw = os.getenv(name, default)
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    return parts


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def normalize_number(value: str) -> str:
    """Strip a WhatsApp jid or phone number down to its digits."""
    if not value:
        return ""
    value = str(value).split("@", 1)[0].split(":", 1)[0]
    return re.sub(r"[^\d]", "", value)


@dataclass
class Config:
    # Bot
    command_prefix: str = os.getenv("PREFIX", ".")
    bot_name: str = os.getenv("BOT_NAME", "GIST HQ Bot")
    owner_number: str = normalize_number(os.getenv("OWNER_NUMBER", ""))
    owner_name: str = os.getenv("OWNER_NAME", "Owner")
    admin_numbers: List[str] = field(
        default_factory=lambda: [normalize_number(x) for x in _split_csv("ADMIN_NUMBERS")]
    )
    mode: str = os.getenv("MODE", "public").lower()
    timezone: str = os.getenv("TIMEZONE", "Africa/Lagos")
    currency_symbol: str = os.getenv("CURRENCY_SYMBOL", "₦")
    disabled_plugins: List[str] = field(default_factory=lambda: _split_csv("DISABLED_PLUGINS"))

    # Store
    mongo_uri: str = os.getenv("MONGODB_URI", "mongodb://localhost:27017")
    mongo_db_name: str = os.getenv("MONGODB_DB", "whatsapp_bot")
    db_pool_min: int = int(os.getenv("DB_POOL_MIN", "2") or "2")
    db_pool_max: int = int(os.getenv("DB_POOL_MAX", "10") or "10")
    db_connect_attempts: int = int(os.getenv("DB_CONNECT_ATTEMPTS", "30") or "30")

    # Web server (health, task API, autoposter webhooks)
    web_enabled: bool = _env_bool("WEB_ENABLED", True)
    web_host: str = os.getenv("WEB_HOST", "0.0.0.0")
    web_port: int = int(os.getenv("PORT", "3000") or "3000")

    # Logging
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "bot.log")
    log_chat_id: str = os.getenv("LOG_CHAT_ID", "")

    # Runtime
    rate_limit_window_sec: float = float(os.getenv("RATE_LIMIT_WINDOW_SEC", "10") or "10")
    rate_limit_max: int = int(os.getenv("RATE_LIMIT_MAX", "3") or "3")
    selection_ttl_sec: int = int(os.getenv("SELECTION_TTL_SEC", "1800") or "1800")
    scheduler_tick_sec: int = int(os.getenv("SCHEDULER_TICK_SEC", "20") or "20")
    slow_plugin_ms: int = int(os.getenv("SLOW_PLUGIN_MS", "1000") or "1000")
    health_interval_sec: int = int(os.getenv("HEALTH_INTERVAL_SEC", "600") or "600")

    # Economy
    starting_balance: int = int(os.getenv("STARTING_BALANCE", "0") or "0")
    daily_reward: int = int(os.getenv("DAILY_REWARD", "1000") or "1000")
    work_min: int = int(os.getenv("WORK_MIN", "200") or "200")
    work_max: int = int(os.getenv("WORK_MAX", "800") or "800")
    work_cooldown_min: int = int(os.getenv("WORK_COOLDOWN_MIN", "60") or "60")

    # Betting
    fixture_floor: int = int(os.getenv("FIXTURE_FLOOR", "15") or "15")
    max_bet_selections: int = int(os.getenv("MAX_BET_SELECTIONS", "10") or "10")

    # Attendance
    attendance_reward: int = int(os.getenv("ATTENDANCE_REWARD", "500") or "500")
    attendance_image_bonus: int = int(os.getenv("ATTENDANCE_IMAGE_BONUS", "200") or "200")
    attendance_require_image: bool = _env_bool("ATTENDANCE_REQUIRE_IMAGE", False)

    # X autoposter
    x_bearer_token: str = os.getenv("X_BEARER_TOKEN", "")
    x_api_base: str = os.getenv("X_API_BASE", "https://api.twitter.com/2")
    x_default_interval_min: int = int(os.getenv("X_DEFAULT_INTERVAL_MIN", "60") or "60")

    def validate(self) -> List[str]:
        problems = []
        if not self.owner_number:
            problems.append("OWNER_NUMBER is required")
        if self.mode not in ("public", "private"):
            problems.append('MODE must be "public" or "private"')
        if not self.mongo_uri.startswith(("mongodb://", "mongodb+srv://")):
            problems.append("MONGODB_URI must be a mongodb:// or mongodb+srv:// URI")
        if not self.mongo_db_name:
            problems.append("MONGODB_DB is required")
        return problems
