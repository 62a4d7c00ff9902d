from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from wabot.services.state_machine import ConversationState


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    identity: str
    mode: str
    selected_step: Optional[int] = None
    state: ConversationState
    last_interaction_at: int
    created_at: int
    updated_at: int


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    direction: str
    external_message_id: Optional[str] = None
    from_identity: Optional[str] = None
    to_identity: Optional[str] = None
    text: str
    timestamp: int
    status: Optional[str] = None
    error: Optional[str] = None
    meta: Optional[Any] = None
    created_at: int


class UserListResponse(BaseModel):
    ok: bool = True
    rows: list[UserOut]
    total: int
    limit: int
    offset: int


class MessageListResponse(BaseModel):
    ok: bool = True
    user: Optional[UserOut] = None
    messages: list[MessageOut] = []


class SetModeRequest(BaseModel):
    mode: str = ""
    notify_user: bool = Field(default=False, validation_alias=AliasChoices("notifyUser", "notify_user"))


class SetModeResponse(BaseModel):
    ok: bool = True
    user: UserOut


class SendMessageRequest(BaseModel):
    text: str = ""


class MetaResponse(BaseModel):
    ok: bool = True
    autoTimeoutHours: int
    csNumber: str
