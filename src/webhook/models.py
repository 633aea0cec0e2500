"""Data models for the webhook ingestion pipeline."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


@dataclass
class WebhookRequest:
    """Inbound webhook call: headers, parsed JSON body and caller address."""

    headers: Mapping[str, str]
    body: Any
    source_ip: str | None = None

    def header(self, name: str) -> str:
        """Case-insensitive header lookup; missing headers read as ''."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return ""


@dataclass
class StepOutcome:
    """Result of one best-effort side effect (persist, sheets, reply)."""

    step: str
    ok: bool
    error_type: str | None = None
    detail: str | None = None


@dataclass
class WebhookResult:
    """Pipeline response to return to the Bot API."""

    status_code: int
    body: dict[str, str]
    outcomes: list[StepOutcome] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.body.get("status") == "skipped"
