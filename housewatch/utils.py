"""
Logging setup: rotating log file plus optional console output, with
credentials masked out of every formatted record.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional

from .config import Settings, get_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# libraries that are chatty at INFO
QUIET_LOGGERS = ("aiogram.event", "aiohttp.access")

_MARK = "_housewatch_handler"


class RedactingFormatter(logging.Formatter):
    """Replaces known secret values with ``***`` in the final log line."""

    def __init__(self, secrets: Iterable[str], fmt: str = LOG_FORMAT, datefmt: Optional[str] = DATE_FORMAT) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        # longest first so a secret containing another is masked whole
        self._secrets = sorted({s for s in secrets if s}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def secret_values(settings: Settings) -> list[str]:
    values = [
        settings.bot.token,
        settings.portal.password,
        settings.portal.seed_token or "",
        settings.sms.api_key,
        settings.subscribers.key,
    ]
    return [v for v in values if v]


def setup_logging(settings: Settings | None = None) -> Path:
    """
    Install housewatch's log handlers on the root logger and return the log file path.

    Calling it again replaces the handlers from the previous call and leaves
    handlers installed by anything else in place.
    """
    if settings is None:
        settings = get_settings()
    cfg = settings.logging

    cfg.logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = cfg.logs_dir / cfg.log_file
    formatter = RedactingFormatter(secret_values(settings) if cfg.redact_secrets else ())

    handlers: list[logging.Handler] = [
        RotatingFileHandler(log_path, maxBytes=cfg.max_bytes, backupCount=cfg.backup_count, encoding="utf-8")
    ]
    if cfg.console:
        handlers.append(logging.StreamHandler())

    root = logging.getLogger()
    for old in [h for h in root.handlers if getattr(h, _MARK, False)]:
        root.removeHandler(old)
        old.close()
    for handler in handlers:
        setattr(handler, _MARK, True)
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(cfg.log_level.upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return log_path


__all__ = ["setup_logging", "RedactingFormatter", "secret_values"]
