"""Environment-driven settings for the webhook intake service."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"
DEFAULT_REPLY_TEXT = "Дякую! Ваше повідомлення прийнято."


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    webhook_secret: str = ""
    bot_token: str = ""
    spreadsheet_id: str = ""
    sheet_range: str = "Sheet1!A:C"
    credentials_file: str = "credentials.json"
    db_path: str = "db/database.sqlite3"
    timezone: str = DEFAULT_TIMEZONE
    app_name: str = "Leaf Bot"
    reply_text: str = DEFAULT_REPLY_TEXT
    parse_mode: str = "Markdown"
    log_path: str | None = None
    audit_log_path: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        return cls(
            webhook_secret=env.get("TG_WEBHOOK_SECRET", ""),
            bot_token=env.get("TG_BOT_TOKEN", ""),
            spreadsheet_id=env.get("GOOGLE_SHEET_ID", ""),
            sheet_range=env.get("GOOGLE_SHEET_RANGE", "Sheet1!A:C"),
            credentials_file=env.get("GOOGLE_CREDENTIALS_FILE", "credentials.json"),
            db_path=env.get("DB_FILENAME", "db/database.sqlite3"),
            timezone=env.get("APP_TIMEZONE") or DEFAULT_TIMEZONE,
            app_name=env.get("APP_NAME", "Leaf Bot"),
            reply_text=env.get("REPLY_TEXT", DEFAULT_REPLY_TEXT),
            parse_mode=env.get("REPLY_PARSE_MODE", "Markdown"),
            log_path=env.get("LOG_PATH") or None,
            audit_log_path=env.get("AUDIT_LOG_PATH") or None,
        )

    def tzinfo(self) -> ZoneInfo:
        """Resolve the configured timezone, falling back to UTC."""
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning(
                "Unknown timezone %r, falling back to %s", self.timezone, DEFAULT_TIMEZONE,
            )
            return ZoneInfo(DEFAULT_TIMEZONE)


def configure_logging(log_path: str | None = None, level: int = logging.INFO) -> None:
    """Set up root logging, optionally mirroring records to a file."""
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    root = logging.getLogger()
    root.setLevel(level)

    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
               for h in root.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        root.addHandler(stream)

    if log_path:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
