from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class InboundEvent(BaseModel):
    """Inbound chat event as relayed by the WhatsApp gateway."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    message_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("message_id", "externalMessageId", "messageId"),
    )
    from_identity: str = Field(
        min_length=1,
        validation_alias=AliasChoices("from", "fromIdentity", "from_identity"),
    )
    text: Optional[str] = ""
    timestamp: Optional[Union[int, float, str]] = None

    @field_validator("text", mode="after")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> str:
        return (value or "").strip()


class InboundResponse(BaseModel):
    ok: bool
    duplicate: Optional[bool] = None
    handled: Optional[str] = None
    error: Optional[str] = None
