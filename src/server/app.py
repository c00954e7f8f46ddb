"""FastAPI application: GitLab webhook intake and VK Callback API endpoint."""

from __future__ import annotations

import asyncio
import hmac
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from src.audit.logger import AuditLogger
from src.bootstrap import RelayServices, bootstrap, register_callback_server
from src.config import RelayConfig, configure_logging
from src.errors import FatalStartupError, RelayError
from src.gitlab.events import HEADER_EVENT, HEADER_TOKEN, decode_event
from src.models import AuditEvent, AuditEventType, RiskLevel
from src.vk.client import VKAPIError, VKClient

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 5_000_000


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    config = RelayConfig.from_env()
    configure_logging(config.log_level)
    audit_logger = AuditLogger.from_env(config.audit_log_path) if config.audit_log_path else None
    return create_app(config=config, audit_logger=audit_logger)


def _status(code: HTTPStatus) -> PlainTextResponse:
    return PlainTextResponse(code.phrase, status_code=code.value)


async def _read_limited(request: Request, limit: int) -> bytes | None:
    """Read the body, giving up as soon as it grows past ``limit`` bytes."""
    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            return None
        chunks.append(chunk)
    return b"".join(chunks)


def create_app(
    services: RelayServices | None = None,
    *,
    config: RelayConfig | None = None,
    audit_logger: AuditLogger | None = None,
    max_content_length: int = MAX_CONTENT_LENGTH,
) -> FastAPI:
    """Create the relay app.

    Pre-built ``services`` are used as is; otherwise they are bootstrapped
    from ``config`` when the application starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.services is not None:
            yield
            return
        if config is None:
            raise FatalStartupError("no services and no configuration given")

        client = VKClient(config.vk_access_token, config.vk_api_version)
        try:
            app.state.services = await bootstrap(config, client, audit_logger=audit_logger)
        except FatalStartupError as exc:
            logger.critical("Startup failed: %s", exc)
            await client.aclose()
            raise

        registration = asyncio.create_task(register_callback_server(app.state.services.registrar))
        logger.info("Relay started for %s", config.domain)
        try:
            yield
        finally:
            registration.cancel()
            await client.aclose()

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.services = services

    def _audit(
        event_type: AuditEventType,
        request: Request,
        recipient_id: int | None,
        result: str,
        risk_level: RiskLevel,
        details: dict[str, Any] | None = None,
    ) -> None:
        if audit_logger is None:
            return
        audit_logger.log(AuditEvent(
            event_type=event_type,
            source_ip=request.client.host if request.client else None,
            recipient_id=recipient_id,
            action=f"{request.method} {request.url.path}",
            result=result,
            risk_level=risk_level,
            details=details,
        ))

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/webhook/{recipient}")
    async def webhook(request: Request, recipient: str) -> Response:
        relay: RelayServices = request.app.state.services
        event_type = request.headers.get(HEADER_EVENT, "")

        try:
            recipient_id = int(recipient)
        except ValueError:
            logger.info("Webhook with malformed recipient %r", recipient)
            return _status(HTTPStatus.BAD_REQUEST)

        try:
            authorized = await relay.authenticator.check_token(
                request.headers.get(HEADER_TOKEN, ""), recipient_id,
            )
        except RelayError as exc:
            logger.error("Token check for %d failed: %s", recipient_id, exc)
            return _status(HTTPStatus.BAD_REQUEST)
        if not authorized:
            logger.info("Forbidden webhook for %d (%s)", recipient_id, event_type)
            _audit(
                AuditEventType.WEBHOOK_FORBIDDEN, request, recipient_id,
                "denied", RiskLevel.HIGH, {"event": event_type},
            )
            return _status(HTTPStatus.FORBIDDEN)

        declared = request.headers.get("content-length")
        if declared is not None:
            try:
                too_large = int(declared) > max_content_length
            except ValueError:
                return _status(HTTPStatus.BAD_REQUEST)
        else:
            too_large = False
        body = None if too_large else await _read_limited(request, max_content_length)
        if body is None:
            logger.info("Oversized webhook for %d (%s)", recipient_id, event_type)
            _audit(
                AuditEventType.PAYLOAD_TOO_LARGE, request, recipient_id,
                "rejected", RiskLevel.MEDIUM, {"event": event_type},
            )
            return _status(HTTPStatus.REQUEST_ENTITY_TOO_LARGE)

        try:
            event = decode_event(event_type, body)
            await relay.dispatcher.dispatch(recipient_id, event)
        except RelayError as exc:
            logger.error("Webhook %s for %d rejected: %s", event_type, recipient_id, exc)
            _audit(
                AuditEventType.WEBHOOK_REJECTED, request, recipient_id,
                "rejected", RiskLevel.LOW, {"event": event_type, "error": str(exc)},
            )
            return _status(HTTPStatus.BAD_REQUEST)

        logger.info("Webhook %s for %d handled", event_type, recipient_id)
        _audit(
            AuditEventType.WEBHOOK_ACCEPTED, request, recipient_id,
            "success", RiskLevel.INFO, {"event": event_type},
        )
        return PlainTextResponse("OK")

    @app.post("/callback")
    async def callback(request: Request) -> Response:
        relay: RelayServices = request.app.state.services
        try:
            body = json.loads(await request.body())
        except json.JSONDecodeError:
            return _status(HTTPStatus.BAD_REQUEST)
        if not isinstance(body, dict):
            return _status(HTTPStatus.BAD_REQUEST)

        kind = body.get("type", "")
        if kind == "confirmation":
            try:
                code = await relay.registrar.confirmation_code()
            except VKAPIError as exc:
                logger.error("Cannot fetch confirmation code: %s", exc)
                return _status(HTTPStatus.SERVICE_UNAVAILABLE)
            return PlainTextResponse(code)

        if not hmac.compare_digest(
            str(body.get("secret", "")).encode(), relay.callback_secret.encode(),
        ):
            logger.info("Callback %s with a wrong secret", kind)
            _audit(
                AuditEventType.CALLBACK_FORBIDDEN, request, None,
                "denied", RiskLevel.HIGH, {"type": kind},
            )
            return _status(HTTPStatus.FORBIDDEN)

        if kind == "message_new":
            obj = body.get("object") or {}
            message = obj.get("message", obj) if isinstance(obj, dict) else {}
            try:
                await relay.conversation.handle_message(message)
            except (RelayError, ValueError, TypeError) as exc:
                logger.error("Settings conversation failed: %s", exc)
        return PlainTextResponse("ok")

    return app
