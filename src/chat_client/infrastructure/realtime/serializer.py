from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from chat_client.application.exceptions import MalformedServerData
from chat_client.domain.entities.message import Message
from chat_client.domain.events.message_changes import (
    MessageDeleted,
    MessageInserted,
    MessageUpdated,
    MuteChanged,
    RealtimeEvent,
)
from chat_client.domain.value_objects.enums import ChangeType
from chat_client.infrastructure.realtime.protocol import (
    ChangeEnvelope,
    DeletedRow,
    MessageRow,
    MutedUserRow,
)
from chat_client.infrastructure.timestamps import from_epoch_ms, to_epoch_ms

MUTED_USERS_TABLE = "muted_users"


def row_to_message(row: MessageRow) -> Message:
    return Message(
        id=row.id,
        conversation_id=row.conversation_id,
        author_id=row.user_id,
        author_display_name="",
        content=row.content,
        created_at_ms=to_epoch_ms(row.created_at),
        edited=row.edited_at is not None,
        edited_content=row.edited_content,
        reply_to_id=row.reply_to_id,
    )


def deserialize_change(raw: str | bytes) -> RealtimeEvent:
    """Parse one realtime payload. Raises ``MalformedServerData``."""
    try:
        envelope = ChangeEnvelope.model_validate_json(raw)
        if envelope.table == MUTED_USERS_TABLE:
            return _mute_change(envelope)
        if envelope.type == ChangeType.DELETE:
            deleted = DeletedRow.model_validate(envelope.old_record or {})
            return MessageDeleted(deleted.id, deleted.conversation_id)
        row = MessageRow.model_validate(envelope.record or {})
    except PydanticValidationError as exc:
        raise MalformedServerData(
            f"Invalid realtime payload: {exc.error_count()} validation errors"
        ) from exc

    message = row_to_message(row)
    if envelope.type == ChangeType.INSERT:
        return MessageInserted(message)
    return MessageUpdated(message)


def _mute_change(envelope: ChangeEnvelope) -> MuteChanged:
    # an UPDATE leaves the row in place, so the user stays muted
    if envelope.type == ChangeType.DELETE:
        row = MutedUserRow.model_validate(envelope.old_record or {})
        return MuteChanged(row.user_id, row.conversation_id, muted=False)
    row = MutedUserRow.model_validate(envelope.record or {})
    return MuteChanged(row.user_id, row.conversation_id, muted=True)


def serialize_change(change: RealtimeEvent, table: str = "messages") -> str:
    """Inverse of ``deserialize_change``; used to publish changes on a channel."""
    envelope: dict[str, Any]
    if isinstance(change, MuteChanged):
        row = {"user_id": change.user_id, "conversation_id": change.conversation_id}
        envelope = {
            "type": (ChangeType.INSERT if change.muted else ChangeType.DELETE).value,
            "table": MUTED_USERS_TABLE,
            "record": row if change.muted else None,
            "old_record": None if change.muted else row,
        }
    elif isinstance(change, MessageDeleted):
        envelope = {
            "type": ChangeType.DELETE.value,
            "table": table,
            "record": None,
            "old_record": {"id": change.message_id, "conversation_id": change.conversation_id},
        }
    else:
        m = change.message
        envelope = {
            "type": (
                ChangeType.INSERT if isinstance(change, MessageInserted) else ChangeType.UPDATE
            ).value,
            "table": table,
            "record": {
                "id": m.id,
                "conversation_id": m.conversation_id,
                "user_id": m.author_id,
                "content": m.content,
                "created_at": from_epoch_ms(m.created_at_ms).isoformat(),
                "edited_at": from_epoch_ms(m.created_at_ms).isoformat() if m.edited else None,
                "edited_content": m.edited_content,
                "reply_to_id": m.reply_to_id,
            },
            "old_record": None,
        }
    return json.dumps(envelope)
