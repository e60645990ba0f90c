"""Row-change envelope models for the realtime channel."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from chat_client.domain.value_objects.enums import ChangeType


class MessageRow(BaseModel):
    """A ``messages`` / ``dm_messages`` row as published by the database."""

    id: str
    conversation_id: str = Field(validation_alias=AliasChoices("conversation_id", "channel_id"))
    user_id: str
    content: str
    created_at: datetime
    edited_at: datetime | None = None
    edited_content: str | None = None
    reply_to_id: str | None = None

    model_config = {"coerce_numbers_to_str": True}


class DeletedRow(BaseModel):
    id: str
    conversation_id: str | None = Field(
        None, validation_alias=AliasChoices("conversation_id", "channel_id"),
    )

    model_config = {"coerce_numbers_to_str": True}


class ChangeEnvelope(BaseModel):
    type: ChangeType
    table: str | None = None
    record: dict[str, Any] | None = None
    old_record: dict[str, Any] | None = None


class MutedUserRow(BaseModel):
    """A ``muted_users`` row; its presence means the user cannot post."""

    user_id: str
    conversation_id: str | None = Field(
        None, validation_alias=AliasChoices("conversation_id", "channel_id"),
    )

    model_config = {"coerce_numbers_to_str": True}
