"""Shared fixtures for conversation-sync tests."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conversation_sync.errors import NetworkError
from conversation_sync.models import (
    Conversation,
    ConversationKind,
    GroupDescriptor,
    Message,
    Peer,
    SendMessageRequest,
)

LOCAL_USER = "me"
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def at(seconds: int) -> datetime:
    """Timestamp `seconds` after T0."""
    return T0 + timedelta(seconds=seconds)


def make_message(
    message_id: str = "m1",
    conversation_id: str = "c1",
    sender_id: str = "u2",
    sent_at: datetime = T0,
    content: str = "hello",
) -> Message:
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
        sent_at=sent_at,
    )


def make_direct(
    conversation_id: str = "c1",
    updated_at: datetime = T0,
    unread_count: int = 0,
    peer_id: str = "u2",
    display_name: str = "Ada Lovelace",
    last_message: Message | None = None,
    total_messages: int = 0,
) -> Conversation:
    return Conversation(
        id=conversation_id,
        kind=ConversationKind.DIRECT,
        updated_at=updated_at,
        peer=Peer(id=peer_id, display_name=display_name, email=f"{peer_id}@example.com"),
        last_message=last_message,
        unread_count=unread_count,
        total_messages=total_messages,
    )


def make_group(
    conversation_id: str = "g1",
    updated_at: datetime = T0,
    group_id: str = "grp1",
    name: str = "Team",
    unread_count: int = 0,
) -> Conversation:
    return Conversation(
        id=conversation_id,
        kind=ConversationKind.GROUP,
        updated_at=updated_at,
        group=GroupDescriptor(id=group_id, name=name, description="", avatar=None),
        unread_count=unread_count,
    )


class FakeClock:
    """Controllable replacement for utc_now()."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeBackend:
    """In-memory ChatBackend recording every call."""

    def __init__(self) -> None:
        self.conversations: list[Conversation] = []
        self.users: dict[str, Peer] = {}
        self.groups: dict[str, GroupDescriptor] = {}
        self.fail_fetch = False
        self.fail_lookups = False
        self.fail_mark_read = False
        self.mark_read_gate: asyncio.Event | None = None
        self.fetch_gate: asyncio.Event | None = None
        self.fetch_calls = 0
        self.user_lookups: list[str] = []
        self.group_lookups: list[str] = []
        self.marked_read: list[str] = []
        self.sent: list[SendMessageRequest] = []
        self.next_message: Message | None = None
        self.on_send = None

    async def fetch_conversations(self) -> list[Conversation]:
        self.fetch_calls += 1
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fail_fetch:
            raise NetworkError("NETWORK_ERROR", "connection refused")
        return list(self.conversations)

    async def fetch_group_by_id(self, group_id: str) -> GroupDescriptor | None:
        self.group_lookups.append(group_id)
        if self.fail_lookups:
            raise NetworkError("NETWORK_ERROR", "connection refused")
        return self.groups.get(group_id)

    async def fetch_user_by_id(self, user_id: str) -> Peer | None:
        self.user_lookups.append(user_id)
        if self.fail_lookups:
            raise NetworkError("NETWORK_ERROR", "connection refused")
        return self.users.get(user_id)

    async def mark_conversation_read(self, conversation_id: str) -> None:
        if self.mark_read_gate is not None:
            await self.mark_read_gate.wait()
        if self.fail_mark_read:
            raise NetworkError("NETWORK_ERROR", "connection reset")
        self.marked_read.append(conversation_id)

    async def send_message(self, request: SendMessageRequest) -> Message:
        self.sent.append(request)
        if self.on_send is not None:
            self.on_send(request)
        assert self.next_message is not None
        return self.next_message


@pytest.fixture
def backend() -> FakeBackend:
    """Provide an empty fake backend."""
    return FakeBackend()


@pytest.fixture
def clock() -> FakeClock:
    """Provide a clock frozen at T0."""
    return FakeClock()
