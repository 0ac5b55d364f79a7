"""Canonical data models for conversations and messages.

Records are immutable; reconciliation produces modified copies with
dataclasses.replace() instead of mutating in place.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from conversation_sync.errors import MalformedEvent


class ConversationKind(str, Enum):
    DIRECT = "DIRECT"
    GROUP = "GROUP"


def parse_timestamp(value: Any) -> datetime:
    """Parse an API timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (with or without a trailing 'Z'), datetimes,
    and Unix epoch seconds.

    Raises:
        MalformedEvent: If the value cannot be interpreted as a timestamp
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(value, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise MalformedEvent("BAD_TIMESTAMP", f"Invalid timestamp: {value!r}") from e
    else:
        raise MalformedEvent("BAD_TIMESTAMP", f"Invalid timestamp: {value!r}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _record(data: Any, record: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedEvent("BAD_RECORD", f"{record} is not an object: {data!r}")
    return data


def _count(data: dict[str, Any], key: str, record: str) -> int:
    value = data.get(key) or 0
    if isinstance(value, bool):
        raise MalformedEvent("BAD_COUNT", f"{record} has invalid '{key}': {value!r}")
    try:
        return max(0, int(value))
    except (TypeError, ValueError, OverflowError) as e:
        raise MalformedEvent("BAD_COUNT", f"{record} has invalid '{key}': {value!r}") from e


def _require(data: dict[str, Any], key: str, record: str) -> Any:
    try:
        value = data[key]
    except (KeyError, TypeError) as e:
        raise MalformedEvent("MISSING_FIELD", f"{record} missing '{key}'") from e
    if value is None:
        raise MalformedEvent("MISSING_FIELD", f"{record} has null '{key}'")
    return value


@dataclass(frozen=True)
class Message:
    """Snapshot of a single chat message."""

    id: str
    conversation_id: str
    sender_id: str
    content: str | None
    sent_at: datetime
    attachment_url: str | None = None
    attachment_type: str | None = None  # image, file

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Message":
        """Build a Message from the camelCase API/push representation."""
        data = _record(data, "message")
        return cls(
            id=str(_require(data, "id", "message")),
            conversation_id=str(_require(data, "conversationId", "message")),
            sender_id=str(_require(data, "senderId", "message")),
            content=data.get("content"),
            sent_at=parse_timestamp(data.get("createdAt") or _require(data, "sentAt", "message")),
            attachment_url=data.get("attachmentUrl"),
            attachment_type=data.get("attachmentType"),
        )


@dataclass(frozen=True)
class Peer:
    """The other participant of a direct conversation."""

    id: str
    display_name: str = ""
    email: str = ""

    @property
    def is_enriched(self) -> bool:
        return self.display_name != ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Peer":
        """Build a Peer from a user record ({id, firstName, lastName, email})."""
        data = _record(data, "participant")
        first = data.get("firstName") or ""
        last = data.get("lastName") or ""
        return cls(
            id=str(_require(data, "id", "participant")),
            display_name=f"{first} {last}".strip(),
            email=data.get("email") or "",
        )


@dataclass(frozen=True)
class GroupDescriptor:
    """Display metadata of a group conversation."""

    id: str
    name: str = ""
    description: str = ""
    avatar: str | None = None

    @property
    def is_enriched(self) -> bool:
        return self.name != ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "GroupDescriptor":
        data = _record(data, "group")
        return cls(
            id=str(_require(data, "id", "group")),
            name=data.get("name") or "",
            description=data.get("description") or "",
            avatar=data.get("avatar"),
        )


@dataclass(frozen=True)
class Conversation:
    """A conversation as shown in the conversation list."""

    id: str
    kind: ConversationKind
    updated_at: datetime
    peer: Peer | None = None
    group: GroupDescriptor | None = None
    last_message: Message | None = None
    unread_count: int = 0
    total_messages: int = 0

    @property
    def needs_enrichment(self) -> bool:
        """True if this conversation still carries placeholder metadata."""
        if self.kind is ConversationKind.DIRECT:
            return self.peer is not None and not self.peer.is_enriched
        return self.group is not None and not self.group.is_enriched

    @property
    def title(self) -> str:
        """Best available display title."""
        if self.kind is ConversationKind.DIRECT and self.peer is not None:
            return self.peer.display_name or self.peer.email or self.peer.id
        if self.group is not None:
            return self.group.name or self.group.id
        return self.id

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Conversation":
        """Build a Conversation from an item of GET /chat-module/conversations.

        Raises:
            MalformedEvent: If required fields are missing or invalid
        """
        data = _record(data, "conversation")
        try:
            kind = ConversationKind(_require(data, "type", "conversation"))
        except ValueError as e:
            raise MalformedEvent("BAD_KIND", f"Unknown conversation type: {data.get('type')!r}") from e

        participant = data.get("participant")
        group = data.get("group")
        last_message = data.get("lastMessage")

        return cls(
            id=str(_require(data, "id", "conversation")),
            kind=kind,
            updated_at=parse_timestamp(_require(data, "updatedAt", "conversation")),
            peer=Peer.from_api(participant) if participant else None,
            group=GroupDescriptor.from_api(group) if group else None,
            last_message=Message.from_api(last_message) if last_message else None,
            unread_count=_count(data, "unreadCount", "conversation"),
            total_messages=_count(data, "totalMessages", "conversation"),
        )


@dataclass(frozen=True)
class SendMessageRequest:
    """Outbound message; exactly one of to_user_id / group_id applies."""

    kind: ConversationKind
    content: str | None = None
    to_user_id: str | None = None
    group_id: str | None = None

    def to_form(self) -> dict[str, str]:
        """Convert to the form fields of POST /chat-module/message."""
        form = {"type": self.kind.value}
        if self.to_user_id:
            form["to_user_id"] = self.to_user_id
        if self.group_id:
            form["group_id"] = self.group_id
        if self.content:
            form["content"] = self.content
        return form
