"""Shared Pydantic data models for the webhook intake service."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_USERNAME = "Unknown"

# SQLite INTEGER is a signed 64-bit value.
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

# --- Enums ---


class AuditEventType(str, Enum):
    WEBHOOK_AUTH_FAILURE = "webhook_auth_failure"
    WEBHOOK_INVALID = "webhook_invalid"
    UPDATE_DUPLICATE = "update_duplicate"
    UPDATE_PROCESSED = "update_processed"
    PERSISTENCE_FAILURE = "persistence_failure"
    SHEETS_FAILURE = "sheets_failure"
    REPLY_FAILURE = "reply_failure"


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Update Models ---


class InboundUpdate(BaseModel):
    """One webhook delivery from the Bot API, keyed by update_id."""

    model_config = ConfigDict(frozen=True)

    update_id: int = Field(ge=INT64_MIN, le=INT64_MAX)
    chat_id: int | None = None
    username: str = UNKNOWN_USERNAME
    message_text: str = ""
    raw_payload: str = "{}"

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> InboundUpdate:
        """Build an update from a parsed webhook body.

        The caller must have checked that ``update_id`` is present.
        """
        message = data.get("message") or {}
        chat = message.get("chat") or {}
        sender = message.get("from") or {}

        text = message.get("text")
        username = sender.get("username")

        return cls(
            update_id=int(data["update_id"]),
            chat_id=_coerce_chat_id(chat.get("id")),
            username=str(username) if username is not None else UNKNOWN_USERNAME,
            message_text=str(text) if text is not None else "",
            raw_payload=json.dumps(data, ensure_ascii=False),
        )


def _coerce_chat_id(value: Any) -> int | None:
    """Return the chat id as an int, or None when it is absent or unusable."""
    if isinstance(value, bool) or not isinstance(value, int | str):
        return None
    try:
        chat_id = int(value)
    except ValueError:
        return None
    if not INT64_MIN <= chat_id <= INT64_MAX:
        return None
    return chat_id


class StoredUpdate(BaseModel):
    model_config = ConfigDict(frozen=True)

    update_id: int
    chat_id: int | None
    username: str | None
    message_text: str | None
    raw_data: str | None
    received_at: str


class OutboundReply(BaseModel):
    model_config = ConfigDict(frozen=True)

    chat_id: int
    text: str


class SheetRow(BaseModel):
    """Ordered (timestamp, username, message_text) row for the log sheet."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    username: str
    message_text: str

    def values(self) -> list[str]:
        return [self.timestamp, self.username, self.message_text]


# --- Audit Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    source_ip: str | None = None
    update_id: int | None = None
    action: str
    result: str  # "success" | "failure" | "blocked" | "skipped"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
