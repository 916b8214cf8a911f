from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from pricewatch.alerts.rules import EmergencyRule
from pricewatch.notify.telegram import TelegramConfig
from pricewatch.providers.resolver import RetryPolicy
from pricewatch.scheduler.scheduler import SchedulerConfig


@dataclass(slots=True)
class ApiKeys:
    etherscan: Optional[str] = None
    bscscan: Optional[str] = None
    coingecko: Optional[str] = None


@dataclass(slots=True)
class Settings:
    telegram: Optional[TelegramConfig]       # None -> console transport
    store_backend: str = "memory"            # "memory" | "redis"
    redis_url: str = "redis://localhost:6379/0"
    http_timeout_s: float = 10.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    rule: EmergencyRule = field(default_factory=EmergencyRule)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    keys: ApiKeys = field(default_factory=ApiKeys)
    log_level: str = "INFO"
    log_json: bool = False


def _flag(v: Optional[str], default: bool = False) -> bool:
    if v is None or v == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def settings_from_env(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from environment variables (call load_dotenv() first to pick up .env)."""
    env = os.environ if env is None else env

    telegram = None
    token = env.get("TELEGRAM_BOT_TOKEN")
    if token:
        parse_mode = env.get("TELEGRAM_PARSE_MODE", "MarkdownV2")
        telegram = TelegramConfig(
            bot_token=token,
            parse_mode=None if not parse_mode or parse_mode.lower() == "none" else parse_mode,
        )

    backend = env.get("STORE_BACKEND", "memory").strip().lower()
    if backend not in ("memory", "redis"):
        raise ValueError(f"STORE_BACKEND must be memory or redis, got {backend!r}")

    http_timeout = _float(env, "HTTP_TIMEOUT_S", 10.0)
    retry = RetryPolicy(
        max_attempts=int(_float(env, "PROVIDER_MAX_ATTEMPTS", 3)),
        base_delay_s=_float(env, "PROVIDER_BACKOFF_BASE_S", 1.0),
        timeout_s=min(http_timeout, 8.0),
    )
    rule = EmergencyRule(
        dedup_window_s=_float(env, "EMERGENCY_DEDUP_S", 3600.0),
        retention_s=_float(env, "EMERGENCY_RETENTION_S", 4 * 3600.0),
    )
    sched = SchedulerConfig(
        emergency_interval_s=_float(env, "EMERGENCY_INTERVAL_S", 300.0),
        prune_interval_s=_float(env, "PRUNE_INTERVAL_S", 3600.0),
        tz_name=env.get("DISPLAY_TZ", "UTC"),
    )

    return Settings(
        telegram=telegram,
        store_backend=backend,
        redis_url=env.get("REDIS_URL", "redis://localhost:6379/0"),
        http_timeout_s=http_timeout,
        retry=retry,
        rule=rule,
        scheduler=sched,
        keys=ApiKeys(
            etherscan=env.get("ETHERSCAN_API_KEY") or None,
            bscscan=env.get("BSCSCAN_API_KEY") or None,
            coingecko=env.get("COINGECKO_API_KEY") or None,
        ),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
        log_json=_flag(env.get("LOG_JSON")),
    )
