"""Shared test fixtures for the webhook intake service."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from src.audit.logger import AuditLogger
from src.sheets.client import SheetsClient
from src.store.db import UpdateStore
from src.webhook.models import WebhookRequest
from src.webhook.pipeline import SECRET_HEADER, WebhookPipeline
from src.webhook.telegram import TelegramClient

WEBHOOK_SECRET = "s3cr3t-token"
REPLY_TEXT = "Thanks! Your message was received."
FIXED_NOW = datetime(2026, 1, 2, 3, 4, 5, tzinfo=ZoneInfo("UTC"))


@pytest.fixture
def mock_audit_logger() -> MagicMock:
    return MagicMock(spec=AuditLogger)


@pytest.fixture
def store(tmp_path: Path):
    db = UpdateStore(str(tmp_path / "updates.db"))
    yield db
    db.close()


@pytest.fixture
def telegram() -> MagicMock:
    client = MagicMock(spec=TelegramClient)
    client.send_message = AsyncMock(return_value={"ok": True, "result": {}})
    return client


@pytest.fixture
def sheets() -> MagicMock:
    client = MagicMock(spec=SheetsClient)
    client.append_row = AsyncMock(return_value={"updates": {"updatedRows": 1}})
    return client


@pytest.fixture
def pipeline(store: UpdateStore, telegram: MagicMock, sheets: MagicMock) -> WebhookPipeline:
    return make_pipeline(store, telegram, sheets)


# --- Factory functions for test data ---


def make_pipeline(store: Any, telegram: Any, sheets: Any, **kwargs: Any) -> WebhookPipeline:
    """Factory for WebhookPipeline with a fixed clock and test secret."""
    defaults: dict[str, Any] = {
        "store": store,
        "telegram": telegram,
        "sheets": sheets,
        "webhook_secret": WEBHOOK_SECRET,
        "reply_text": REPLY_TEXT,
        "clock": lambda: FIXED_NOW,
    }
    defaults.update(kwargs)
    return WebhookPipeline(**defaults)


def make_update(
    update_id: int = 1,
    text: str | None = "hello",
    chat_id: int | None = 12345,
    username: str | None = "alice",
) -> dict[str, Any]:
    """Factory for a Bot API update payload; None drops the field."""
    message: dict[str, Any] = {"message_id": 1}
    if chat_id is not None:
        message["chat"] = {"id": chat_id}
    if text is not None:
        message["text"] = text
    if username is not None:
        message["from"] = {"id": 7, "username": username}
    return {"update_id": update_id, "message": message}


def make_request(
    body: Any,
    secret: str | None = WEBHOOK_SECRET,
    source_ip: str | None = "127.0.0.1",
) -> WebhookRequest:
    headers = {} if secret is None else {SECRET_HEADER: secret}
    return WebhookRequest(headers=headers, body=body, source_ip=source_ip)
