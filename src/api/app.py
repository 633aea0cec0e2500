"""FastAPI application exposing the webhook and health endpoints."""

from __future__ import annotations

import json
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.audit.logger import AuditLogger
from src.config import Settings, configure_logging
from src.sheets.client import SheetsClient
from src.store.db import UpdateStore
from src.webhook.models import WebhookRequest
from src.webhook.pipeline import WebhookPipeline
from src.webhook.telegram import TelegramClient

logger = logging.getLogger(__name__)


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables.

    Any failure building the services is fatal: it is logged and re-raised
    so the server never starts half-configured.
    """
    settings = Settings.from_env()
    configure_logging(settings.log_path)

    try:
        store = UpdateStore(settings.db_path)
    except Exception as exc:
        logger.critical("Database connection failed: %s", exc)
        raise

    try:
        telegram = TelegramClient(settings.bot_token)
        sheets = SheetsClient.from_service_account_file(
            settings.credentials_file, settings.spreadsheet_id,
        )
        audit_logger = (
            AuditLogger.from_env(settings.audit_log_path) if settings.audit_log_path else None
        )
        pipeline = WebhookPipeline(
            store=store,
            telegram=telegram,
            sheets=sheets,
            webhook_secret=settings.webhook_secret,
            reply_text=settings.reply_text,
            parse_mode=settings.parse_mode,
            sheet_range=settings.sheet_range,
            tz=settings.tzinfo(),
            audit_logger=audit_logger,
        )
    except Exception as exc:
        logger.critical("Service initialization failed: %s", exc)
        raise

    if not settings.webhook_secret:
        logger.warning("TG_WEBHOOK_SECRET is not set; every webhook call will be rejected")

    return create_app(pipeline, app_name=settings.app_name)


def create_app(pipeline: WebhookPipeline, app_name: str = "Leaf Bot") -> FastAPI:
    """Create the FastAPI app around an already-wired pipeline."""
    app = FastAPI(docs_url=None, redoc_url=None)

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Uncaught exception on %s %s", request.method, request.url.path, exc_info=exc,
        )
        return JSONResponse(
            {"status": "error", "message": "Internal Server Error"},
            status_code=500,
        )

    @app.get("/")
    async def health() -> dict[str, str]:
        return {"status": "success", "message": f"{app_name} is running!"}

    @app.post("/webhook")
    async def webhook(request: Request) -> JSONResponse:
        raw = await request.body()
        try:
            body = json.loads(raw) if raw else None
        except (json.JSONDecodeError, UnicodeDecodeError):
            body = None

        result = await pipeline.handle(WebhookRequest(
            headers=dict(request.headers),
            body=body,
            source_ip=request.client.host if request.client else None,
        ))
        return JSONResponse(result.body, status_code=result.status_code)

    return app
