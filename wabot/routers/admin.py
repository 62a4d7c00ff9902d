"""Operator console API. HTTP Basic auth against ADMIN_USER / ADMIN_PASS."""

import secrets

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from wabot.config import Settings
from wabot.dependencies import get_processor, get_settings, get_store
from wabot.logging_config import get_logger
from wabot.models import DeliveryStatus
from wabot.schemas.admin import (
    MessageListResponse,
    MessageOut,
    MetaResponse,
    SendMessageRequest,
    SetModeRequest,
    SetModeResponse,
    UserListResponse,
    UserOut,
)
from wabot.services.conversation_store import ConversationStore
from wabot.services.errors import InboundValidationError, StoreUnavailable
from wabot.services.identity import normalize_identity
from wabot.services.inbound_service import InboundProcessor

logger = get_logger("admin")

security = HTTPBasic(auto_error=False)

USERS_LIMIT_DEFAULT = 200
USERS_LIMIT_MAX = 500
MESSAGES_LIMIT_DEFAULT = 20
MESSAGES_LIMIT_MAX = 200


def require_admin(
    credentials: HTTPBasicCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> str:
    if not settings.admin_user or not settings.admin_pass:
        raise HTTPException(status_code=500, detail="ADMIN_USER/ADMIN_PASS not configured")
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Auth required",
            headers={"WWW-Authenticate": 'Basic realm="Admin"'},
        )
    user_ok = secrets.compare_digest(credentials.username.encode(), settings.admin_user.encode())
    pass_ok = secrets.compare_digest(credentials.password.encode(), settings.admin_pass.encode())
    if not (user_ok and pass_ok):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": 'Basic realm="Admin"'},
        )
    return credentials.username


router = APIRouter(prefix="/admin/api", tags=["admin"], dependencies=[Depends(require_admin)])


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def _error(status_code: int, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": code})


def _store_error(exc: StoreUnavailable) -> JSONResponse:
    logger.error("Admin store operation failed", extra={"context": {"error": str(exc)}})
    return _error(500, "internal_error")


@router.get("/users", response_model=UserListResponse)
def list_users(
    limit: int = USERS_LIMIT_DEFAULT,
    offset: int = 0,
    store: ConversationStore = Depends(get_store),
):
    try:
        page = store.list_users(limit=_clamp(limit, 1, USERS_LIMIT_MAX), offset=max(offset, 0))
    except StoreUnavailable as exc:
        return _store_error(exc)
    return UserListResponse(
        rows=[UserOut.model_validate(row) for row in page["rows"]],
        total=page["total"],
        limit=page["limit"],
        offset=page["offset"],
    )


@router.get("/users/{identity}/messages", response_model=MessageListResponse)
def list_messages(
    identity: str,
    limit: int = MESSAGES_LIMIT_DEFAULT,
    offset: int = 0,
    store: ConversationStore = Depends(get_store),
):
    wa = normalize_identity(identity)
    try:
        user = store.get_user(wa) if wa else None
        if user is None:
            return MessageListResponse(user=None, messages=[])
        messages = store.list_messages(wa, limit=_clamp(limit, 1, MESSAGES_LIMIT_MAX), offset=max(offset, 0))
    except StoreUnavailable as exc:
        return _store_error(exc)
    return MessageListResponse(
        user=UserOut.model_validate(user),
        messages=[MessageOut.model_validate(message) for message in messages],
    )


@router.post("/users/{identity}/mode", response_model=SetModeResponse)
def set_mode(identity: str, body: SetModeRequest, processor: InboundProcessor = Depends(get_processor)):
    try:
        user = processor.admin_set_mode(identity, body.mode, notify_user=body.notify_user)
    except InboundValidationError as exc:
        return _error(400, exc.code)
    except StoreUnavailable as exc:
        return _store_error(exc)
    return SetModeResponse(user=UserOut.model_validate(user))


@router.post("/users/{identity}/send")
def send_message(identity: str, body: SendMessageRequest, processor: InboundProcessor = Depends(get_processor)):
    try:
        result = processor.admin_send_message(identity, body.text)
    except InboundValidationError as exc:
        return _error(400, exc.code)
    except StoreUnavailable as exc:
        return _store_error(exc)
    status_value = DeliveryStatus.SENT if result.ok else DeliveryStatus.FAILED
    return {"ok": True, "status": status_value.value}


@router.get("/meta", response_model=MetaResponse)
def meta(settings: Settings = Depends(get_settings)):
    return MetaResponse(autoTimeoutHours=settings.auto_timeout_hours, csNumber=settings.cs_number)
