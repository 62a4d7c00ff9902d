from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from wabot.dependencies import get_processor
from wabot.logging_config import get_logger
from wabot.schemas.inbound import InboundResponse
from wabot.services.inbound_service import InboundProcessor

logger = get_logger("webhook")

router = APIRouter(tags=["webhook"])


@router.post("/webhook/inbound", response_model=InboundResponse, response_model_exclude_none=True)
async def inbound(request: Request, processor: InboundProcessor = Depends(get_processor)):
    """Receive one inbound chat event from the gateway."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        logger.warning("Inbound body is not a JSON object")
        return JSONResponse(status_code=400, content={"ok": False, "error": "invalid_payload"})

    try:
        result = await run_in_threadpool(processor.handle, payload)
    except Exception:
        # StoreUnavailable lands here too; details stay in the log.
        logger.exception("Inbound processing failed", extra={"context": {"message_id": payload.get("message_id")}})
        return JSONResponse(status_code=500, content={"ok": False, "error": "internal_error"})

    if not result.ok:
        return JSONResponse(status_code=400, content=result.to_dict())
    return result.to_dict()
