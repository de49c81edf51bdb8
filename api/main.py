"""
FastAPI Application — Telegram webhook endpoint for the relay bot.

Routes:
- POST /webhook  Telegram updates (optional shared-secret header)
- GET  /         liveness probe, plain "OK"

Everything else is answered by the framework (404 / 405).

The webhook answers as soon as the update is accepted; routing, relaying
and storage happen on the BackgroundExecutor, which is drained on shutdown.

Run:
    relay-bot                      # console script
    python -m api.main
    uvicorn api.main:create_app --factory
"""
from __future__ import annotations

import hmac
import json
import structlog
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from channels.telegram_client import TelegramGateway
from config.logging_setup import configure_logging
from config.settings import ConfigError, Settings, get_settings
from core.router import RelayRouter, build_router
from database.store_factory import KVStores, create_stores
from job_queue.actions import ActionExecutor
from job_queue.background import BackgroundExecutor
from job_queue.scheduler import DeferredTaskScheduler

logger = structlog.get_logger()

SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


@dataclass
class Runtime:
    """Everything one running bot owns; hung on ``app.state.runtime``."""
    settings: Settings
    gateway: TelegramGateway
    stores: KVStores
    scheduler: DeferredTaskScheduler
    router: RelayRouter
    background: BackgroundExecutor


def build_runtime(
    settings: Settings,
    gateway: Optional[TelegramGateway] = None,
    stores: Optional[KVStores] = None,
) -> Runtime:
    gateway = gateway or TelegramGateway(settings.telegram.api_url)
    stores = stores or create_stores(settings.database)
    scheduler = DeferredTaskScheduler(
        stores.timers,
        ActionExecutor(gateway),
        default_delay_ms=settings.scheduler.default_delay_ms,
    )
    return Runtime(
        settings=settings,
        gateway=gateway,
        stores=stores,
        scheduler=scheduler,
        router=build_router(settings, gateway, stores, scheduler),
        background=BackgroundExecutor(settings.server.background_concurrency),
    )


# ──────────────────────────────────────────────────────────────
#  App factory
# ──────────────────────────────────────────────────────────────

def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[TelegramGateway] = None,
    stores: Optional[KVStores] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.logging.level, settings.logging.json)
    runtime = build_runtime(settings, gateway, stores)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await runtime.stores.init()
        if settings.scheduler.recover_on_startup:
            await runtime.scheduler.recover()
        if not settings.telegram.webhook_secret_token:
            logger.warning("webhook_secret_not_configured")
        logger.info("relay_bot_started",
                    bot_id=settings.telegram.bot_id,
                    store_backend=settings.database.store_backend)
        yield

        await runtime.background.shutdown()
        await runtime.scheduler.close()
        await runtime.gateway.close()
        await runtime.stores.close()
        logger.info("relay_bot_stopped")

    app = FastAPI(
        title=settings.app_name,
        description="Telegram direct message relay",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.runtime = runtime

    @app.get("/", response_class=PlainTextResponse)
    async def liveness():
        return "OK"

    @app.post("/webhook", response_class=PlainTextResponse)
    async def telegram_webhook(request: Request):
        """Accept one Telegram update and process it in the background."""
        secret = settings.telegram.webhook_secret_token
        if secret:
            provided = request.headers.get(SECRET_HEADER, "")
            if not hmac.compare_digest(provided.encode(), secret.encode()):
                logger.warning("webhook_secret_mismatch", header_present=bool(provided))
                return PlainTextResponse("Unauthorized", status_code=401)
        else:
            logger.warning("webhook_secret_check_skipped")

        try:
            update = json.loads(await request.body())
        except ValueError:
            logger.warning("webhook_invalid_json")
            return PlainTextResponse("Bad Request", status_code=400)
        if not isinstance(update, dict):
            logger.warning("webhook_invalid_payload", payload_type=type(update).__name__)
            return PlainTextResponse("Bad Request", status_code=400)

        runtime.background.submit(
            runtime.router.process_update(update),
            name=f"update:{update.get('update_id')}",
        )
        return "OK"

    return app


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

def main() -> None:
    import uvicorn

    try:
        settings = get_settings()
    except ConfigError as e:
        configure_logging()
        logger.error("config_invalid", error=str(e))
        raise SystemExit(1) from e

    uvicorn.run(create_app(settings), host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":
    main()
