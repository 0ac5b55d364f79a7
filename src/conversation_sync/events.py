"""Signals folded into the conversation state, and push payload parsing.

Every input to the reconciler is one of the signal dataclasses below. Push
events arrive as camelCase dicts and are turned into signals by parse_event().
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from conversation_sync.errors import MalformedEvent
from conversation_sync.models import (
    Conversation,
    ConversationKind,
    GroupDescriptor,
    Message,
    Peer,
    parse_timestamp,
)

MESSAGE_NEW = "message:new"
CONVERSATION_UPDATED = "conversation:updated"
CONVERSATION_CREATED = "conversation:created"

PUSH_EVENTS = (MESSAGE_NEW, CONVERSATION_UPDATED, CONVERSATION_CREATED)


@dataclass(frozen=True)
class BulkSnapshot:
    """Result of a full conversation list fetch."""

    conversations: tuple[Conversation, ...]


@dataclass(frozen=True)
class NewMessage:
    message: Message


@dataclass(frozen=True)
class ConversationUpdated:
    conversation_id: str
    updated_at: datetime
    last_message: Message | None = None


@dataclass(frozen=True)
class ConversationCreated:
    conversation_id: str
    kind: ConversationKind
    updated_at: datetime
    created_at: datetime
    participant_ids: tuple[str, ...] = ()
    group_id: str | None = None
    last_message: Message | None = None


@dataclass(frozen=True)
class EnrichmentResolved:
    """Descriptor fetched for a placeholder conversation."""

    conversation_id: str
    peer: Peer | None = None
    group: GroupDescriptor | None = None


@dataclass(frozen=True)
class Selected:
    conversation_id: str


@dataclass(frozen=True)
class Deselected:
    pass


Signal = (
    BulkSnapshot
    | NewMessage
    | ConversationUpdated
    | ConversationCreated
    | EnrichmentResolved
    | Selected
    | Deselected
)


def _conversation_id(payload: dict[str, Any]) -> str:
    value = payload.get("conversationId")
    if not value:
        raise MalformedEvent("MISSING_FIELD", "event missing 'conversationId'")
    return str(value)


def _participant_ids(payload: dict[str, Any]) -> tuple[str, ...]:
    participants = payload.get("participantIds") or payload.get("users") or []
    if not isinstance(participants, (list, tuple)):
        raise MalformedEvent("BAD_PAYLOAD", f"conversation:created participants is not a list: {participants!r}")
    return tuple(str(p) for p in participants)


def _optional_message(payload: dict[str, Any]) -> Message | None:
    data = payload.get("lastMessage")
    return Message.from_api(data) if data else None


def parse_event(event_name: str, payload: Any) -> Signal:
    """Convert a push event payload into a reconciler signal.

    Args:
        event_name: One of PUSH_EVENTS
        payload: Decoded JSON payload of the event

    Returns:
        The matching signal

    Raises:
        MalformedEvent: For unknown event names or invalid payloads
    """
    if not isinstance(payload, dict):
        raise MalformedEvent("BAD_PAYLOAD", f"{event_name} payload is not an object")

    if event_name == MESSAGE_NEW:
        return NewMessage(message=Message.from_api(payload))

    if event_name == CONVERSATION_UPDATED:
        if payload.get("updatedAt") is None:
            raise MalformedEvent("MISSING_FIELD", "conversation:updated missing 'updatedAt'")
        return ConversationUpdated(
            conversation_id=_conversation_id(payload),
            updated_at=parse_timestamp(payload["updatedAt"]),
            last_message=_optional_message(payload),
        )

    if event_name == CONVERSATION_CREATED:
        raw_kind = payload.get("type") or payload.get("kind")
        try:
            kind = ConversationKind(raw_kind)
        except ValueError as e:
            raise MalformedEvent("BAD_KIND", f"Unknown conversation type: {raw_kind!r}") from e
        if payload.get("updatedAt") is None:
            raise MalformedEvent("MISSING_FIELD", "conversation:created missing 'updatedAt'")

        updated_at = parse_timestamp(payload["updatedAt"])
        created_raw = payload.get("createdAt")
        group_id = payload.get("groupId")

        return ConversationCreated(
            conversation_id=_conversation_id(payload),
            kind=kind,
            updated_at=updated_at,
            created_at=parse_timestamp(created_raw) if created_raw is not None else updated_at,
            participant_ids=_participant_ids(payload),
            group_id=str(group_id) if group_id else None,
            last_message=_optional_message(payload),
        )

    raise MalformedEvent("UNKNOWN_EVENT", f"Unknown event: {event_name}")
