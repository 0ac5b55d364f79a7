"""Immutable, ordered conversation store.

A ConversationStore is a value: every mutator returns a new store with an
incremented version and leaves the original untouched. Entries are kept
unique by id and sorted by updated_at, most recent first.
"""

from collections.abc import Iterable, Iterator
from dataclasses import fields, replace
from typing import Any

from conversation_sync.errors import ConversationNotFound, InvariantViolation
from conversation_sync.models import Conversation

PATCHABLE_FIELDS = frozenset(f.name for f in fields(Conversation)) - {"id"}


def check_invariants(items: tuple[Conversation, ...]) -> None:
    """Validate id uniqueness, ordering and counter ranges.

    Raises:
        InvariantViolation: If any invariant does not hold
    """
    seen: set[str] = set()
    previous = None
    for conv in items:
        if conv.id in seen:
            raise InvariantViolation(
                "DUPLICATE_ID", f"Duplicate conversation id: {conv.id}", conversation_id=conv.id
            )
        seen.add(conv.id)
        if conv.unread_count < 0 or conv.total_messages < 0:
            raise InvariantViolation(
                "NEGATIVE_COUNT", f"Negative counter on conversation {conv.id}", conversation_id=conv.id
            )
        if previous is not None and previous.updated_at < conv.updated_at:
            raise InvariantViolation(
                "UNSORTED",
                f"Conversation {conv.id} is newer than its predecessor {previous.id}",
                conversation_id=conv.id,
            )
        previous = conv


def _insert_position(items: tuple[Conversation, ...], conv: Conversation) -> int:
    """Index at which conv goes: ahead of every entry that is not newer."""
    for i, existing in enumerate(items):
        if existing.updated_at <= conv.updated_at:
            return i
    return len(items)


class ConversationStore:
    """Ordered collection of conversations with a change-detection version."""

    __slots__ = ("_items", "_index", "_version")

    def __init__(self, conversations: Iterable[Conversation] = (), version: int = 0) -> None:
        """Create a store from already ordered conversations.

        Args:
            conversations: Conversations sorted by updated_at descending
            version: Version number of this snapshot

        Raises:
            InvariantViolation: If the conversations break an invariant
        """
        items = tuple(conversations)
        check_invariants(items)
        self._items = items
        self._index = {conv.id: i for i, conv in enumerate(items)}
        self._version = version

    @property
    def version(self) -> int:
        return self._version

    def get(self) -> tuple[Conversation, ...]:
        """Return the visible, ordered sequence of conversations."""
        return self._items

    def find(self, conversation_id: str) -> Conversation | None:
        index = self._index.get(conversation_id)
        if index is None:
            return None
        return self._items[index]

    def ids(self) -> frozenset[str]:
        return frozenset(self._index)

    def _derive(self, items: tuple[Conversation, ...]) -> "ConversationStore":
        return ConversationStore(items, version=self._version + 1)

    def replace_all(self, conversations: Iterable[Conversation]) -> "ConversationStore":
        """Replace the whole content; input order is irrelevant.

        Raises:
            InvariantViolation: If the input holds duplicate ids
        """
        items = tuple(sorted(conversations, key=lambda c: c.updated_at, reverse=True))
        return self._derive(items)

    def upsert(self, conversation: Conversation) -> "ConversationStore":
        """Insert or replace a conversation, positioned by its updated_at."""
        remaining = tuple(c for c in self._items if c.id != conversation.id)
        position = _insert_position(remaining, conversation)
        items = remaining[:position] + (conversation,) + remaining[position:]
        return self._derive(items)

    def patch(self, conversation_id: str, **changes: Any) -> "ConversationStore":
        """Update fields of an existing conversation.

        The entry keeps its position unless updated_at changes, in which case
        it is repositioned. A patch that changes nothing returns this store.

        Raises:
            ConversationNotFound: If the id is not in the store
            ValueError: If changes names a field that cannot be patched
        """
        invalid = set(changes) - PATCHABLE_FIELDS
        if invalid:
            raise ValueError(f"Invalid attributes: {invalid}")

        index = self._index.get(conversation_id)
        if index is None:
            raise ConversationNotFound(conversation_id)

        existing = self._items[index]
        updated = replace(existing, **changes)
        if updated == existing:
            return self

        if updated.updated_at == existing.updated_at:
            items = self._items[:index] + (updated,) + self._items[index + 1:]
            return self._derive(items)
        return self.upsert(updated)

    def remove(self, conversation_id: str) -> "ConversationStore":
        """Remove a conversation.

        Raises:
            ConversationNotFound: If the id is not in the store
        """
        if conversation_id not in self._index:
            raise ConversationNotFound(conversation_id)
        return self._derive(tuple(c for c in self._items if c.id != conversation_id))

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._index

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Conversation]:
        return iter(self._items)

    def __repr__(self) -> str:
        return f"ConversationStore(version={self._version}, ids={[c.id for c in self._items]})"
