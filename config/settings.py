"""
Configuration loader for the relay bot.
Reads settings from an optional YAML file with environment variable
substitution, then applies environment overrides and validates the result.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""
    pass


@dataclass
class TelegramConfig:
    bot_token: str = ""
    bot_api: str = "https://api.telegram.org/bot"
    bot_id: Optional[int] = None           # derived from the token when unset
    bot_name: str = ""
    owner_id: int = 0
    webhook_secret_token: str = ""
    welcome_text: str = "Welcome!"

    @property
    def api_url(self) -> str:
        return f"{self.bot_api}{self.bot_token}"


@dataclass
class RelayConfig:
    kv_expiration_ttl: int = 259200        # seconds, 3 days
    max_correlation_entries: int = 10
    correlation_key_scope: str = ""        # optional key prefix, see DESIGN.md
    blocked_cleanup_delay_ms: int = 10000
    delete_blocked_original: bool = True


@dataclass
class DatabaseConfig:
    store_backend: str = "memory"                      # "memory" | "file" | "sql" | "redis"
    store_file_dir: str = "./data"                     # directory for file backend
    url: str = "sqlite:///./relay_bot.db"              # sql backend
    redis_url: str = "redis://localhost:6379"          # redis backend


@dataclass
class SchedulerConfig:
    default_delay_ms: int = 60000
    recover_on_startup: bool = True


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    background_concurrency: int = 16


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = False


@dataclass
class Settings:
    app_name: str = "RelayBot"
    debug: bool = False
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_settings: Optional[Settings] = None

# env var → (section, attribute, converter)
_ENV_OVERRIDES: dict[str, tuple[str, str, Any]] = {
    "TELEGRAM_BOT_TOKEN": ("telegram", "bot_token", str),
    "TELEGRAM_BOT_API": ("telegram", "bot_api", str),
    "TELEGRAM_BOT_ID": ("telegram", "bot_id", int),
    "TELEGRAM_BOT_NAME": ("telegram", "bot_name", str),
    "TELEGRAM_BOT_OWNER_ID": ("telegram", "owner_id", int),
    "WEBHOOK_SECRET_TOKEN": ("telegram", "webhook_secret_token", str),
    "TELEGRAM_BOT_WELCOME_TEXT": ("telegram", "welcome_text", str),
    "MESSAGE_RELAY_KV_EXPIRATION_TTL": ("relay", "kv_expiration_ttl", int),
    "RELAY_MAX_ENTRIES": ("relay", "max_correlation_entries", int),
    "RELAY_KEY_SCOPE": ("relay", "correlation_key_scope", str),
    "STORE_BACKEND": ("database", "store_backend", str),
    "STORE_FILE_DIR": ("database", "store_file_dir", str),
    "DATABASE_URL": ("database", "url", str),
    "REDIS_URL": ("database", "redis_url", str),
    "LOG_LEVEL": ("logging", "level", str),
    "LOG_JSON": ("logging", "json", lambda v: v.strip().lower() in ("1", "true", "yes")),
}

_STORE_BACKENDS = ("memory", "file", "sql", "redis")


def _substitute_env_vars(value: str, environ: dict[str, str]) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any, environ: dict[str, str]) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj, environ)
    elif isinstance(obj, dict):
        return {k: _process_values(v, environ) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v, environ) for v in obj]
    return obj


def _is_unresolved(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("${") and value.endswith("}")


def _apply_section(target: Any, data: dict[str, Any]) -> None:
    for key, value in (data or {}).items():
        if not hasattr(target, key) or _is_unresolved(value) or value == "":
            continue
        setattr(target, key, value)


def _apply_env_overrides(settings: Settings, environ: dict[str, str]) -> None:
    for var_name, (section, attr, convert) in _ENV_OVERRIDES.items():
        raw = environ.get(var_name)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {var_name}: {raw!r}") from e
        setattr(getattr(settings, section), attr, value)


def derive_bot_id(bot_token: str) -> Optional[int]:
    """Bot tokens look like ``<bot_id>:<secret>``; return the numeric prefix."""
    prefix, sep, _ = bot_token.partition(":")
    if sep and prefix.isdigit():
        return int(prefix)
    return None


def _coerce_types(settings: Settings) -> None:
    """YAML values may arrive as strings after env substitution."""
    tg = settings.telegram
    relay = settings.relay
    try:
        tg.owner_id = int(tg.owner_id or 0)
        if tg.bot_id not in (None, ""):
            tg.bot_id = int(tg.bot_id)
        else:
            tg.bot_id = None
        relay.kv_expiration_ttl = int(relay.kv_expiration_ttl)
        relay.max_correlation_entries = int(relay.max_correlation_entries)
        relay.blocked_cleanup_delay_ms = int(relay.blocked_cleanup_delay_ms)
        settings.scheduler.default_delay_ms = int(settings.scheduler.default_delay_ms)
        settings.server.port = int(settings.server.port)
        settings.server.background_concurrency = int(settings.server.background_concurrency)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid numeric setting: {e}") from e


def validate_settings(settings: Settings) -> Settings:
    """Fail fast on configuration that would make the relay unusable."""
    tg = settings.telegram
    if not tg.bot_token:
        raise ConfigError("Missing required setting: TELEGRAM_BOT_TOKEN")
    if not tg.owner_id:
        raise ConfigError("Missing required setting: TELEGRAM_BOT_OWNER_ID")
    if tg.bot_id is None:
        tg.bot_id = derive_bot_id(tg.bot_token)
        if tg.bot_id is None:
            raise ConfigError(
                "TELEGRAM_BOT_ID is not set and cannot be derived from the bot token"
            )
    if settings.relay.kv_expiration_ttl < 60:
        # Storage backends like Workers KV reject TTLs below one minute.
        raise ConfigError("MESSAGE_RELAY_KV_EXPIRATION_TTL must be at least 60 seconds")
    if settings.relay.max_correlation_entries < 1:
        raise ConfigError("RELAY_MAX_ENTRIES must be positive")
    if settings.database.store_backend not in _STORE_BACKENDS:
        raise ConfigError(
            f"Unsupported STORE_BACKEND {settings.database.store_backend!r}, "
            f"expected one of {', '.join(_STORE_BACKENDS)}"
        )
    return settings


def load_settings(config_path: str = None, environ: dict[str, str] = None) -> Settings:
    """Load settings from YAML file and environment, then validate."""
    global _settings

    environ = dict(os.environ if environ is None else environ)
    if config_path is None:
        config_path = environ.get(
            "RELAY_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw, environ)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        _apply_section(settings.telegram, raw.get("telegram", {}))
        _apply_section(settings.relay, raw.get("relay", {}))
        _apply_section(settings.database, raw.get("database", {}))
        _apply_section(settings.scheduler, raw.get("scheduler", {}))
        _apply_section(settings.server, raw.get("server", {}))
        _apply_section(settings.logging, raw.get("logging", {}))

    _apply_env_overrides(settings, environ)
    _coerce_types(settings)
    validate_settings(settings)

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings
    _settings = None
