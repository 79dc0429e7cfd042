"""Request bodies for the HTTP surface."""

from pydantic import BaseModel, Field


class SendRequest(BaseModel):
    receiver_id: str = Field(min_length=1)
    content: str | None = None
    media_type: str = "text"
    media_ref: str | None = None
    auto_delete_mode: str = "none"


class MessageIdsRequest(BaseModel):
    message_ids: list[str] = Field(default_factory=list)


class ReactRequest(BaseModel):
    emoji: str


class VaultRequest(BaseModel):
    password: str = ""


class HeartbeatRequest(BaseModel):
    partner_id: str = Field(min_length=1)
    session_id: str = "default"
    in_chat_target: str | None = None
    typing: bool = False


class DisconnectRequest(BaseModel):
    partner_id: str = Field(min_length=1)
    session_id: str = "default"
