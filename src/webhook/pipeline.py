"""Webhook ingestion pipeline.

Stages, short-circuiting on the first four:
1. Secret header check (constant-time)
2. Structural validation (update_id present)
3. Field extraction
4. Idempotency check against the update store
5. Persist the update (best-effort; a unique-constraint race means skip)
6. Append a row to the log sheet (best-effort)
7. Reply to the sender (best-effort, only when a chat id is present)
8. Success response

Stages 5-7 report a StepOutcome instead of raising, so one failing
integration never turns a deliverable update into a non-2xx response.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol
from zoneinfo import ZoneInfo

from src.models import (
    AuditEvent,
    AuditEventType,
    InboundUpdate,
    OutboundReply,
    RiskLevel,
    SheetRow,
)
from src.store.db import DuplicateUpdateError
from src.webhook.models import StepOutcome, WebhookRequest, WebhookResult
from src.webhook.telegram import TelegramAPIError, TelegramProtocolError

if TYPE_CHECKING:
    from src.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"
SHEET_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

UNAUTHORIZED = {"status": "error", "message": "Unauthorized"}
NO_UPDATE_ID = {"status": "error", "message": "No update_id"}
ALREADY_PROCESSED = {"status": "skipped", "message": "Already processed"}
SUCCESS = {"status": "success"}


class UpdateStoreLike(Protocol):
    def exists(self, update_id: int) -> bool: ...

    def insert(self, update: InboundUpdate) -> Any: ...


class MessageGateway(Protocol):
    async def send_message(
        self, chat_id: int | str, text: str, parse_mode: str = ...,
    ) -> dict[str, Any]: ...


class RowAppender(Protocol):
    async def append_row(self, values: Sequence[Any], range_: str = ...) -> dict[str, Any]: ...


class WebhookPipeline:
    """Processes one webhook delivery end to end."""

    def __init__(
        self,
        store: UpdateStoreLike,
        telegram: MessageGateway,
        sheets: RowAppender,
        webhook_secret: str,
        reply_text: str,
        parse_mode: str = "Markdown",
        sheet_range: str = "Sheet1!A:C",
        tz: ZoneInfo | None = None,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._telegram = telegram
        self._sheets = sheets
        self._secret = webhook_secret.encode()
        self._reply_text = reply_text
        self._parse_mode = parse_mode
        self._sheet_range = sheet_range
        self._tz = tz or ZoneInfo("UTC")
        self._audit = audit_logger
        self._clock = clock or (lambda: datetime.now(self._tz))

    async def handle(self, request: WebhookRequest) -> WebhookResult:
        # Stage 1: authentication, before touching the body
        if not self.verify_secret(request.header(SECRET_HEADER)):
            logger.error(
                "Security alert: unauthorized webhook access attempt from %s",
                request.source_ip or "unknown",
            )
            await self._audit_event(
                AuditEventType.WEBHOOK_AUTH_FAILURE,
                action="verify_secret",
                result="blocked",
                risk_level=RiskLevel.HIGH,
                source_ip=request.source_ip,
            )
            return WebhookResult(status_code=403, body=dict(UNAUTHORIZED))

        # Stages 2-3: validation and extraction
        update = self._extract(request.body)
        if update is None:
            logger.warning("Invalid webhook data received: missing update_id")
            await self._audit_event(
                AuditEventType.WEBHOOK_INVALID,
                action="validate",
                result="failure",
                risk_level=RiskLevel.LOW,
                source_ip=request.source_ip,
            )
            return WebhookResult(status_code=400, body=dict(NO_UPDATE_ID))

        # Stage 4: idempotency
        if self._store.exists(update.update_id):
            return await self._skip(update, reason="exists")

        # Stage 5: persistence
        persisted = await self.persist(update)
        if persisted.error_type == "duplicate":
            # Lost the race to a concurrent delivery of the same update.
            return await self._skip(update, reason="constraint")
        outcomes = [persisted]

        # Stage 6: spreadsheet
        outcomes.append(await self.append_to_sheet(update))

        # Stage 7: reply
        if update.chat_id is not None:
            reply = OutboundReply(chat_id=update.chat_id, text=self._reply_text)
            outcomes.append(await self.send_reply(reply))

        await self._audit_event(
            AuditEventType.UPDATE_PROCESSED,
            action="process",
            result="success",
            risk_level=RiskLevel.INFO,
            source_ip=request.source_ip,
            update_id=update.update_id,
            details={o.step: o.ok for o in outcomes},
        )
        return WebhookResult(status_code=200, body=dict(SUCCESS), outcomes=outcomes)

    def verify_secret(self, provided: str) -> bool:
        """Constant-time check of the secret header; an unset secret rejects everything."""
        if not self._secret:
            return False
        return hmac.compare_digest(provided.encode(), self._secret)

    async def persist(self, update: InboundUpdate) -> StepOutcome:
        # No await before the insert: it must follow the existence check
        # without yielding to another request.
        try:
            self._store.insert(update)
        except DuplicateUpdateError as exc:
            logger.info("Update %s recorded concurrently: %s", update.update_id, exc)
            return StepOutcome("persist", ok=False, error_type="duplicate", detail=str(exc))
        except Exception as exc:  # write failure must not block the reply
            logger.error("Database error while recording update %s: %s", update.update_id, exc)
            await self._audit_event(
                AuditEventType.PERSISTENCE_FAILURE,
                action="insert",
                result="failure",
                risk_level=RiskLevel.MEDIUM,
                update_id=update.update_id,
                details={"error": str(exc)},
            )
            return StepOutcome(
                "persist", ok=False, error_type=type(exc).__name__, detail=str(exc),
            )
        return StepOutcome("persist", ok=True)

    async def append_to_sheet(self, update: InboundUpdate) -> StepOutcome:
        row = SheetRow(
            timestamp=self._clock().strftime(SHEET_TIMESTAMP_FORMAT),
            username=update.username,
            message_text=update.message_text,
        )
        try:
            await self._sheets.append_row(row.values(), self._sheet_range)
        except Exception as exc:  # sheet logging is best-effort
            logger.error("Google Sheets integration failed for update %s: %s",
                         update.update_id, exc)
            await self._audit_event(
                AuditEventType.SHEETS_FAILURE,
                action="append_row",
                result="failure",
                risk_level=RiskLevel.MEDIUM,
                update_id=update.update_id,
                details={"error": str(exc)},
            )
            return StepOutcome(
                "sheets", ok=False, error_type=type(exc).__name__, detail=str(exc),
            )
        return StepOutcome("sheets", ok=True)

    async def send_reply(self, reply: OutboundReply) -> StepOutcome:
        try:
            await self._telegram.send_message(reply.chat_id, reply.text, self._parse_mode)
        except Exception as exc:  # a lost acknowledgment is logged, not retried
            details: dict[str, object] = {"chat_id": reply.chat_id, "error": str(exc)}
            if isinstance(exc, TelegramAPIError):
                details.update(error_code=exc.error_code, description=exc.description)
            elif isinstance(exc, TelegramProtocolError):
                details.update(status_code=exc.status_code, raw_response=exc.raw_prefix)
            logger.error("Telegram API error for chat %s: %s", reply.chat_id, details)
            await self._audit_event(
                AuditEventType.REPLY_FAILURE,
                action="send_message",
                result="failure",
                risk_level=RiskLevel.MEDIUM,
                details=details,
            )
            return StepOutcome(
                "reply", ok=False, error_type=type(exc).__name__, detail=str(exc),
            )
        logger.info("Reply sent to chat %s", reply.chat_id)
        return StepOutcome("reply", ok=True)

    @staticmethod
    def _extract(body: Any) -> InboundUpdate | None:
        if not isinstance(body, dict) or body.get("update_id") is None:
            return None
        try:
            return InboundUpdate.from_payload(body)
        except (AttributeError, TypeError, ValueError):
            return None

    async def _skip(self, update: InboundUpdate, reason: str) -> WebhookResult:
        logger.info("Update %s already processed. Skipping.", update.update_id)
        await self._audit_event(
            AuditEventType.UPDATE_DUPLICATE,
            action="idempotency_check",
            result="skipped",
            risk_level=RiskLevel.INFO,
            update_id=update.update_id,
            details={"reason": reason},
        )
        return WebhookResult(status_code=200, body=dict(ALREADY_PROCESSED))

    async def _audit_event(
        self,
        event_type: AuditEventType,
        *,
        action: str,
        result: str,
        risk_level: RiskLevel,
        source_ip: str | None = None,
        update_id: int | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """Write an audit record off the event loop; a failed write is only logged."""
        if self._audit is None:
            return
        try:
            event = AuditEvent(
                event_type=event_type,
                source_ip=source_ip,
                update_id=update_id,
                action=action,
                result=result,
                risk_level=risk_level,
                details=details,
            )
            await asyncio.to_thread(self._audit.log, event)
        except Exception:
            logger.exception("Failed to write audit event %s", event_type.value)
