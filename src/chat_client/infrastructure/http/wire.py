"""JSON shapes exchanged with the backend's REST endpoints."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from chat_client.domain.entities.message import Message
from chat_client.domain.entities.profile import DEFAULT_DISPLAY_NAME, Profile

# Names the backend uses while a profile is still unresolved
_PLACEHOLDER_NAMES = frozenset({"", DEFAULT_DISPLAY_NAME, "Loading..."})


class WireUser(BaseModel):
    id: str
    username: str | None = None

    model_config = ConfigDict(coerce_numbers_to_str=True)


class WireMessage(BaseModel):
    id: str
    content: str
    timestamp: int
    user: WireUser
    edited: bool = False
    edited_content: str | None = Field(None, alias="editedContent")
    reply_to: str | None = Field(None, alias="replyTo")
    conversation_id: str | None = Field(None, alias="conversationId")

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    def to_domain(self, conversation_id: str) -> Message:
        username = (self.user.username or "").strip()
        return Message(
            id=self.id,
            conversation_id=self.conversation_id or conversation_id,
            author_id=self.user.id,
            author_display_name="" if username in _PLACEHOLDER_NAMES else username,
            content=self.content,
            created_at_ms=self.timestamp,
            edited=self.edited,
            edited_content=self.edited_content,
            reply_to_id=self.reply_to,
        )


class MessagesEnvelope(BaseModel):
    messages: list[WireMessage] = []


class MessageEnvelope(BaseModel):
    message: WireMessage


class WireProfile(BaseModel):
    id: str
    username: str | None = None
    email: str | None = None

    model_config = ConfigDict(coerce_numbers_to_str=True)

    def to_domain(self) -> Profile:
        return Profile(user_id=self.id, username=self.username, email=self.email)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str | None = None


class MuteStatus(BaseModel):
    muted: bool = False
