"""Pure merge rules folding signals into the synchronization state.

Reconciler.reduce() is a function of (state, signal): it never performs I/O,
never logs and never mutates its inputs. It returns the next state together
with Change records describing what happened, which callers use for logging
and for triggering follow-up work (enrichment, refreshes).
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

from conversation_sync.events import (
    BulkSnapshot,
    ConversationCreated,
    ConversationUpdated,
    Deselected,
    EnrichmentResolved,
    NewMessage,
    Selected,
    Signal,
)
from conversation_sync.models import (
    Conversation,
    ConversationKind,
    GroupDescriptor,
    Peer,
)
from conversation_sync.store import ConversationStore


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChangeKind(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    ENRICHED = "enriched"
    RETAINED = "retained"  # unconfirmed placeholder kept through a refresh
    REMOVED = "removed"
    SELECTED = "selected"
    DESELECTED = "deselected"
    IGNORED = "ignored"


@dataclass(frozen=True)
class Change:
    kind: ChangeKind
    conversation_id: str | None = None
    detail: str = ""


@dataclass(frozen=True)
class SyncState:
    """Everything the reconciler needs besides the signal itself.

    Attributes:
        store: Current conversation store
        selected_id: Currently open conversation, if any
        unconfirmed: Placeholder ids not yet seen in a bulk snapshot, mapped
            to the number of snapshots they have been missing from
        push_touched: Ids modified by push events since the last snapshot
    """

    store: ConversationStore = field(default_factory=ConversationStore)
    selected_id: str | None = None
    unconfirmed: Mapping[str, int] = field(default_factory=dict)
    push_touched: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Outcome:
    state: SyncState
    changes: tuple[Change, ...] = ()

    @property
    def changed(self) -> bool:
        return any(change.kind is not ChangeKind.IGNORED for change in self.changes)


def _ignored(state: SyncState, conversation_id: str | None, detail: str) -> Outcome:
    return Outcome(state, (Change(ChangeKind.IGNORED, conversation_id, detail),))


def _pick_descriptor(
    preferred: Peer | GroupDescriptor | None,
    fallback: Peer | GroupDescriptor | None,
) -> Peer | GroupDescriptor | None:
    """Keep the preferred descriptor unless only the fallback is enriched."""
    if preferred is None:
        return fallback
    if (
        fallback is not None
        and fallback.id == preferred.id
        and fallback.is_enriched
        and not preferred.is_enriched
    ):
        return fallback
    return preferred


class Reconciler:
    """Applies the merge rules for one local user."""

    def __init__(
        self,
        local_user_id: str,
        clock: Callable[[], datetime] = utc_now,
        placeholder_grace_cycles: int = 1,
    ) -> None:
        """Initialize the reconciler.

        Args:
            local_user_id: Id of the signed-in user; own messages never count as unread
            clock: Source of "now" for message arrival times
            placeholder_grace_cycles: Snapshots an unconfirmed placeholder may be
                missing from before it is pruned
        """
        self._local_user_id = local_user_id
        self._clock = clock
        self._grace_cycles = placeholder_grace_cycles

    @property
    def local_user_id(self) -> str:
        return self._local_user_id

    def reduce(self, state: SyncState, signal: Signal) -> Outcome:
        """Fold a signal into the state.

        Raises:
            InvariantViolation: If the resulting store would be invalid
            TypeError: For unsupported signal types
        """
        if isinstance(signal, BulkSnapshot):
            return self.apply_snapshot(state, signal)
        if isinstance(signal, NewMessage):
            return self.apply_new_message(state, signal)
        if isinstance(signal, ConversationUpdated):
            return self.apply_conversation_updated(state, signal)
        if isinstance(signal, ConversationCreated):
            return self.apply_conversation_created(state, signal)
        if isinstance(signal, EnrichmentResolved):
            return self.apply_enrichment(state, signal)
        if isinstance(signal, Selected):
            return self.apply_selected(state, signal)
        if isinstance(signal, Deselected):
            return self.apply_deselected(state)
        raise TypeError(f"Unsupported signal: {type(signal).__name__}")

    # Bulk refresh

    def _merge_entry(self, existing: Conversation, incoming: Conversation, push_touched: bool) -> Conversation:
        # Equal timestamps favour whatever a push event wrote since the last snapshot
        if existing.updated_at > incoming.updated_at or (
            existing.updated_at == incoming.updated_at and push_touched
        ):
            newer, older = existing, incoming
        else:
            newer, older = incoming, existing
        return replace(
            newer,
            peer=_pick_descriptor(newer.peer, older.peer),
            group=_pick_descriptor(newer.group, older.group),
            total_messages=max(existing.total_messages, incoming.total_messages),
        )

    def apply_snapshot(self, state: SyncState, signal: BulkSnapshot) -> Outcome:
        changes: list[Change] = []

        incoming: dict[str, Conversation] = {}
        for conv in signal.conversations:
            prior = incoming.get(conv.id)
            if prior is not None:
                changes.append(Change(ChangeKind.IGNORED, conv.id, "duplicate id in snapshot"))
                if prior.updated_at >= conv.updated_at:
                    continue
            incoming[conv.id] = conv

        merged: list[Conversation] = []
        for conv_id, conv in incoming.items():
            existing = state.store.find(conv_id)
            if existing is None:
                result = conv
                changes.append(Change(ChangeKind.INSERTED, conv_id))
            else:
                result = self._merge_entry(existing, conv, conv_id in state.push_touched)
            if conv_id == state.selected_id and result.unread_count:
                result = replace(result, unread_count=0)
            if existing is not None and result != existing:
                changes.append(Change(ChangeKind.UPDATED, conv_id))
            merged.append(result)

        unconfirmed: dict[str, int] = {}
        selected_id = state.selected_id
        for existing in state.store:
            if existing.id in incoming:
                continue
            misses = state.unconfirmed.get(existing.id)
            if misses is not None and misses < self._grace_cycles:
                merged.append(existing)
                unconfirmed[existing.id] = misses + 1
                changes.append(Change(ChangeKind.RETAINED, existing.id, "awaiting confirmation"))
            else:
                changes.append(Change(ChangeKind.REMOVED, existing.id))
                if existing.id == selected_id:
                    selected_id = None
                    changes.append(Change(ChangeKind.DESELECTED, existing.id, "conversation removed"))

        store = state.store.replace_all(merged)
        next_state = replace(
            state,
            store=store,
            selected_id=selected_id,
            unconfirmed=unconfirmed,
            push_touched=frozenset(),
        )
        return Outcome(next_state, tuple(changes))

    # Push events

    def _touch(self, state: SyncState, store: ConversationStore, conversation_id: str) -> SyncState:
        return replace(state, store=store, push_touched=state.push_touched | {conversation_id})

    def apply_new_message(self, state: SyncState, signal: NewMessage) -> Outcome:
        message = signal.message
        conv = state.store.find(message.conversation_id)
        if conv is None:
            return _ignored(state, message.conversation_id, "message for unknown conversation")

        last = conv.last_message
        if last is not None and last.id == message.id:
            return _ignored(state, conv.id, "duplicate message")

        delta = int(message.sender_id != self._local_user_id and conv.id != state.selected_id)

        if last is not None and message.sent_at < last.sent_at:
            # Late delivery: count it, but never regress the preview or the ordering
            store = state.store.patch(
                conv.id,
                unread_count=conv.unread_count + delta,
                total_messages=conv.total_messages + 1,
            )
        else:
            store = state.store.patch(
                conv.id,
                last_message=message,
                updated_at=max(conv.updated_at, self._clock()),
                unread_count=conv.unread_count + delta,
                total_messages=conv.total_messages + 1,
            )
        return Outcome(self._touch(state, store, conv.id), (Change(ChangeKind.UPDATED, conv.id, "new message"),))

    def apply_conversation_updated(self, state: SyncState, signal: ConversationUpdated) -> Outcome:
        conv = state.store.find(signal.conversation_id)
        if conv is None:
            return _ignored(state, signal.conversation_id, "update for unknown conversation")
        if signal.updated_at < conv.updated_at:
            return _ignored(state, conv.id, "stale update")

        changes: dict[str, object] = {"updated_at": signal.updated_at}
        incoming = signal.last_message
        if incoming is not None and (conv.last_message is None or incoming.sent_at >= conv.last_message.sent_at):
            changes["last_message"] = incoming

        store = state.store.patch(conv.id, **changes)
        if store is state.store:
            return Outcome(state, ())
        return Outcome(self._touch(state, store, conv.id), (Change(ChangeKind.UPDATED, conv.id, "metadata refresh"),))

    def _placeholder(self, state: SyncState, signal: ConversationCreated) -> Conversation:
        peer = None
        group = None
        if signal.kind is ConversationKind.DIRECT:
            other = next((p for p in signal.participant_ids if p != self._local_user_id), None)
            if other is not None:
                peer = Peer(id=other)
        elif signal.group_id:
            group = GroupDescriptor(id=signal.group_id)

        last = signal.last_message
        unread = int(
            last is not None
            and last.sender_id != self._local_user_id
            and signal.conversation_id != state.selected_id
        )
        return Conversation(
            id=signal.conversation_id,
            kind=signal.kind,
            updated_at=signal.updated_at,
            peer=peer,
            group=group,
            last_message=last,
            unread_count=unread,
            total_messages=1 if last is not None else 0,
        )

    def apply_conversation_created(self, state: SyncState, signal: ConversationCreated) -> Outcome:
        if signal.conversation_id in state.store:
            return self.apply_conversation_updated(
                state,
                ConversationUpdated(
                    conversation_id=signal.conversation_id,
                    updated_at=signal.updated_at,
                    last_message=signal.last_message,
                ),
            )

        placeholder = self._placeholder(state, signal)
        store = state.store.upsert(placeholder)
        next_state = replace(
            self._touch(state, store, placeholder.id),
            unconfirmed={**state.unconfirmed, placeholder.id: 0},
        )
        return Outcome(next_state, (Change(ChangeKind.INSERTED, placeholder.id, "placeholder"),))

    # Enrichment and selection

    def apply_enrichment(self, state: SyncState, signal: EnrichmentResolved) -> Outcome:
        conv = state.store.find(signal.conversation_id)
        if conv is None:
            return _ignored(state, signal.conversation_id, "enrichment for unknown conversation")

        if signal.peer is not None and conv.peer is not None and conv.peer.id == signal.peer.id:
            if conv.peer.is_enriched and not signal.peer.is_enriched:
                return _ignored(state, conv.id, "lookup returned less than known")
            store = state.store.patch(conv.id, peer=signal.peer)
        elif signal.group is not None and conv.group is not None and conv.group.id == signal.group.id:
            if conv.group.is_enriched and not signal.group.is_enriched:
                return _ignored(state, conv.id, "lookup returned less than known")
            store = state.store.patch(conv.id, group=signal.group)
        else:
            return _ignored(state, conv.id, "descriptor does not match conversation")

        if store is state.store:
            return Outcome(state, ())
        return Outcome(replace(state, store=store), (Change(ChangeKind.ENRICHED, conv.id),))

    def apply_selected(self, state: SyncState, signal: Selected) -> Outcome:
        store = state.store
        conv = store.find(signal.conversation_id)
        if conv is not None and conv.unread_count:
            store = store.patch(conv.id, unread_count=0)
        next_state = replace(state, store=store, selected_id=signal.conversation_id)
        return Outcome(next_state, (Change(ChangeKind.SELECTED, signal.conversation_id),))

    def apply_deselected(self, state: SyncState) -> Outcome:
        if state.selected_id is None:
            return Outcome(state, ())
        return Outcome(
            replace(state, selected_id=None),
            (Change(ChangeKind.DESELECTED, state.selected_id),),
        )
