"""
Config loading via Pydantic v2 and python-dotenv.

Every setting is read from the environment (optionally via a .env file in the
project root) and validated once, then cached.
"""

from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator


BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=False)


class BotConfig(BaseModel):
    token: str = Field(min_length=1)
    channel_chat_id: str = Field(min_length=1)
    operator_chat_id: int


class PortalConfig(BaseModel):
    api_url: str = Field(min_length=1)
    login_url: str = Field(min_length=1)
    otp_url: str = Field(min_length=1)
    email: str
    password: str
    seed_token: Optional[str] = None
    login_link: str = "https://www.housemanship.mdcn.gov.ng/login"
    request_timeout: float = Field(default=30.0, gt=0)


class SchedulerConfig(BaseModel):
    baseline_interval_ms: int = Field(default=40_000, gt=0)
    fast1_interval_ms: int = Field(default=20_000, gt=0)
    fast2_interval_ms: int = Field(default=10_000, gt=0)
    quiet_threshold_hours: float = Field(default=24.0, gt=0)
    decay_check_seconds: float = Field(default=600.0, gt=0)

    @model_validator(mode="after")
    def _check_ordering(self) -> "SchedulerConfig":
        if not self.baseline_interval_ms > self.fast1_interval_ms > self.fast2_interval_ms:
            raise ValueError("intervals must satisfy baseline > fast1 > fast2")
        return self


class AuthConfig(BaseModel):
    safety_margin_minutes: float = Field(default=60.0, ge=0)
    otp_timeout_seconds: float = Field(default=300.0, gt=0)
    default_token_lifetime_hours: float = Field(default=24.0, gt=0)


class DispatchConfig(BaseModel):
    drain_interval_seconds: float = Field(default=3.0, gt=0)
    batch_size: int = Field(default=10, ge=1)
    batch_pause_seconds: float = Field(default=1.0, ge=0)
    queue_warning_threshold: int = Field(default=500, ge=1)


class SmsConfig(BaseModel):
    url: str = "https://api.ng.termii.com/api/send/template"
    api_key: str = ""
    device_id: str = ""
    template_id: str = ""


class SubscriberStoreConfig(BaseModel):
    url: str = Field(min_length=1)
    key: str = Field(min_length=1)
    table: str = "subscribers"


class LoggingConfig(BaseModel):
    logs_dir: Path = Field(default_factory=lambda: BASE_DIR / "logs")
    log_level: str = Field(default="INFO")
    max_bytes: int = Field(default=5 * 1024 * 1024)  # 5 MB
    backup_count: int = Field(default=5)
    log_file: str = Field(default="housewatch.log", min_length=1)
    console: bool = True
    redact_secrets: bool = True


class Settings(BaseModel):
    bot: BotConfig
    portal: PortalConfig
    scheduler: SchedulerConfig = SchedulerConfig()
    auth: AuthConfig = AuthConfig()
    dispatch: DispatchConfig = DispatchConfig()
    sms: SmsConfig = SmsConfig()
    subscribers: SubscriberStoreConfig
    logging: LoggingConfig = LoggingConfig()


@lru_cache
def get_settings() -> Settings:
    """
    Load and cache settings.

    Raises ValidationError if .env is incomplete or invalid.
    """
    env = os.environ

    def _get(name: str, default: str) -> str:
        value = env.get(name)
        return value if value not in (None, "") else default

    try:
        bot = BotConfig(
            token=env.get("BOT_TOKEN", ""),
            channel_chat_id=env.get("CHANNEL_CHAT_ID", "") or env.get("CHAT_ID", ""),
            operator_chat_id=int(env.get("OPERATOR_CHAT_ID", "0") or "0"),
        )
        portal = PortalConfig(
            api_url=env.get("API_URL", ""),
            login_url=env.get("LOGIN_URL", ""),
            otp_url=env.get("OTP_URL", ""),
            email=env.get("PORTAL_EMAIL", ""),
            password=env.get("PORTAL_PASSWORD", ""),
            seed_token=env.get("JWT_TOKEN") or None,
            login_link=_get("PORTAL_LOGIN_LINK", "https://www.housemanship.mdcn.gov.ng/login"),
            request_timeout=float(_get("REQUEST_TIMEOUT", "30")),
        )
        scheduler = SchedulerConfig(
            baseline_interval_ms=int(_get("BASELINE_INTERVAL_MS", "40000")),
            fast1_interval_ms=int(_get("FAST1_INTERVAL_MS", "20000")),
            fast2_interval_ms=int(_get("FAST2_INTERVAL_MS", "10000")),
            quiet_threshold_hours=float(_get("QUIET_THRESHOLD_HOURS", "24")),
            decay_check_seconds=float(_get("DECAY_CHECK_SECONDS", "600")),
        )
        auth = AuthConfig(
            safety_margin_minutes=float(_get("TOKEN_SAFETY_MARGIN_MINUTES", "60")),
            otp_timeout_seconds=float(_get("OTP_TIMEOUT_SECONDS", "300")),
            default_token_lifetime_hours=float(_get("DEFAULT_TOKEN_LIFETIME_HOURS", "24")),
        )
        dispatch = DispatchConfig(
            drain_interval_seconds=float(_get("DRAIN_INTERVAL_SECONDS", "3")),
            batch_size=int(_get("BATCH_SIZE", "10")),
            batch_pause_seconds=float(_get("BATCH_PAUSE_SECONDS", "1")),
            queue_warning_threshold=int(_get("QUEUE_WARNING_THRESHOLD", "500")),
        )
        sms = SmsConfig(
            url=_get("SMS_URL", "https://api.ng.termii.com/api/send/template"),
            api_key=env.get("SMS_API_KEY", ""),
            device_id=env.get("SMS_DEVICE_ID", ""),
            template_id=env.get("SMS_TEMPLATE_ID", ""),
        )
        subscribers = SubscriberStoreConfig(
            url=env.get("SUPABASE_URL", ""),
            key=env.get("SUPABASE_KEY", ""),
            table=_get("SUBSCRIBERS_TABLE", "subscribers"),
        )
        return Settings(
            bot=bot,
            portal=portal,
            scheduler=scheduler,
            auth=auth,
            dispatch=dispatch,
            sms=sms,
            subscribers=subscribers,
            logging=LoggingConfig(
                log_level=_get("LOG_LEVEL", "INFO"),
                log_file=_get("LOG_FILE", "housewatch.log"),
                console=_get("LOG_CONSOLE", "true").lower() not in ("0", "false", "no"),
                redact_secrets=_get("LOG_REDACT", "true").lower() not in ("0", "false", "no"),
            ),
        )
    except ValidationError:
        # surfaced by the entrypoint
        raise


__all__ = ["Settings", "get_settings", "BASE_DIR"]
