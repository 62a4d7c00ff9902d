import asyncio
import os

from fastapi import FastAPI

from wabot.config import settings
from wabot.database import init_db
from wabot.dependencies import get_sweeper
from wabot.logging_config import get_logger, setup_logging
from wabot.routers import admin, webhook

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="WA Bot Brain",
    description="WhatsApp customer-service bot with operator handoff",
    version="0.1.0",
)

app.include_router(webhook.router)
app.include_router(admin.router)

_sweeper_task: asyncio.Task | None = None


def _is_sweeper_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.sweep_enabled


async def _sweeper_loop() -> None:
    sweeper = get_sweeper()
    interval_seconds = max(float(settings.sweep_interval_seconds), 1.0)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            await asyncio.to_thread(sweeper.run_once)
        except asyncio.CancelledError:
            break
        except Exception as exc:
            logger.error("Sweeper loop failed", extra={"context": {"error": str(exc)}})


@app.on_event("startup")
async def startup() -> None:
    global _sweeper_task
    init_db()
    if not settings.cs_number:
        logger.warning("CS_NUMBER not configured; operator commands and forwards are disabled")
    logger.info(
        "Bot started",
        extra={"context": {"auto_timeout_hours": settings.auto_timeout_hours, "gateway_stub": settings.gateway_stub}},
    )
    if not _is_sweeper_enabled():
        return
    if _sweeper_task is None or _sweeper_task.done():
        _sweeper_task = asyncio.create_task(_sweeper_loop())
        logger.info("Timeout sweeper started", extra={"context": {"interval_seconds": settings.sweep_interval_seconds}})


@app.on_event("shutdown")
async def shutdown() -> None:
    global _sweeper_task
    if _sweeper_task is None:
        return
    _sweeper_task.cancel()
    try:
        await _sweeper_task
    except asyncio.CancelledError:
        pass
    _sweeper_task = None


@app.get("/health")
async def health():
    return {"ok": True}
