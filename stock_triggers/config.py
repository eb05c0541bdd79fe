from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import os
import yaml

from .models import TimeOfDay
from .timefilter import NotificationWindow


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


def _default_sync_times() -> List[str]:
    # hourly, 09:00 .. 18:00
    return [f"{h:02d}:00" for h in range(9, 19)]


def _default_notification_times() -> List[str]:
    return ["11:00", "14:00"]


def _parse_times(values: Optional[List[Any]]) -> List[TimeOfDay]:
    return [TimeOfDay.parse(v) for v in (values or [])]


@dataclass
class AppConfig:
    name: str = "Stock Triggers"
    log_level: str = "INFO"


@dataclass
class ProviderConfig:
    type: str = "yahoo"
    base_url: str = "https://query1.finance.yahoo.com"
    interval: str = "1d"
    range: str = "10d"  # more than 6 trading days, to survive holidays
    history_limit: int = 6
    rest_timeout_s: int = 20
    max_retries: int = 4
    backoff_s: float = 0.8
    concurrency: int = 3
    use_fallback: bool = True


@dataclass
class ScheduleConfig:
    timezone: str = "Asia/Kolkata"
    sync_times: List[str] = field(default_factory=_default_sync_times)
    notification_times: List[str] = field(default_factory=_default_notification_times)
    window_minutes: int = 30
    force_on_notification_times: bool = True

    def sync_slots(self) -> List[TimeOfDay]:
        return _parse_times(self.sync_times)

    def notification_slots(self) -> List[TimeOfDay]:
        return _parse_times(self.notification_times)


@dataclass
class FavoritesConfig:
    path: str = "favorites.json"
    max_favorites: int = 3


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    disable_web_page_preview: bool = True


@dataclass
class WebhookConfig:
    enabled: bool = False
    url: str = ""
    secret: str = ""
    timeout_s: int = 10
    headers: Dict[str, str] = None


@dataclass
class AlertsConfig:
    parse_mode: str = "HTML"  # HTML | MarkdownV2
    footer: str = ""


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    favorites: FavoritesConfig = field(default_factory=FavoritesConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)

    def notification_window(self) -> NotificationWindow:
        return NotificationWindow(
            times=self.schedule.notification_slots(),
            window_minutes=int(self.schedule.window_minutes),
            timezone=self.schedule.timezone,
        )


def load_config(path: Optional[str]) -> Config:
    raw: Dict[str, Any] = {}
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping: {path}")

    cfg = Config(
        app=AppConfig(**(raw.get("app") or {})),
        provider=ProviderConfig(**(raw.get("provider") or {})),
        schedule=ScheduleConfig(**(raw.get("schedule") or {})),
        favorites=FavoritesConfig(**(raw.get("favorites") or {})),
        telegram=TelegramConfig(**(raw.get("telegram") or {})),
        webhook=WebhookConfig(**(raw.get("webhook") or {})),
        alerts=AlertsConfig(**(raw.get("alerts") or {})),
    )

    # env overrides (useful on servers)
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []
    cfg.telegram.chat_ids = [str(x).strip() for x in cfg.telegram.chat_ids if str(x).strip()]

    # Allow TELEGRAM_CHAT_IDS="id1,id2"
    chat_env = os.getenv("TELEGRAM_CHAT_IDS")
    if chat_env:
        cfg.telegram.chat_ids = [x.strip() for x in chat_env.split(",") if x.strip()]

    cfg.webhook.secret = _env_override(cfg.webhook.secret, "WEBHOOK_SECRET")
    cfg.webhook.url = _env_override(cfg.webhook.url, "WEBHOOK_URL")
    if cfg.webhook.headers is None:
        cfg.webhook.headers = {}

    cfg.schedule.timezone = _env_override(cfg.schedule.timezone, "STOCK_TRIGGERS_TZ")

    # fail fast on malformed schedule entries and timezone
    cfg.schedule.sync_slots()
    cfg.notification_window()
    if (cfg.alerts.parse_mode or "").upper() not in ("HTML", "MARKDOWNV2"):
        raise ValueError(f"alerts.parse_mode must be HTML or MarkdownV2, got {cfg.alerts.parse_mode!r}")
    if int(cfg.favorites.max_favorites) < 1:
        raise ValueError("favorites.max_favorites must be >= 1")

    return cfg
