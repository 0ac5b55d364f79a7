"""Conversation synchronization session.

A ChatSyncSession is created once per signed-in user and torn down on
logout. It owns the only path that changes conversation state: every bulk
refresh, push event, enrichment result and selection change goes through
dispatch(), which runs the reconciler synchronously on the event loop and
publishes the resulting store to subscribers.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from functools import partial
from typing import Any, Self

from conversation_sync.api import ChatApiClient, ChatBackend
from conversation_sync.config import Config
from conversation_sync.enrichment import DEFAULT_REFRESH_DELAY_SECONDS, EnrichmentCoordinator
from conversation_sync.errors import ChatSyncError, InvariantViolation, MalformedEvent
from conversation_sync.events import (
    PUSH_EVENTS,
    BulkSnapshot,
    ConversationCreated,
    NewMessage,
    Signal,
    parse_event,
)
from conversation_sync.logging import get_logger
from conversation_sync.models import Conversation, ConversationKind, Message, SendMessageRequest
from conversation_sync.read_state import ReadReceipt, ReadStateTracker
from conversation_sync.reconciler import (
    Change,
    ChangeKind,
    Outcome,
    Reconciler,
    SyncState,
    utc_now,
)
from conversation_sync.store import ConversationStore
from conversation_sync.transport import LocalEventBus, PushTransport

logger = get_logger("session")

StoreListener = Callable[[ConversationStore], None]


class ChatSyncSession:
    """Keeps the conversation list of one user in sync with the server."""

    def __init__(
        self,
        backend: ChatBackend,
        transport: PushTransport,
        local_user_id: str,
        refresh_delay_seconds: float = DEFAULT_REFRESH_DELAY_SECONDS,
        refresh_interval_seconds: float = 0.0,
        placeholder_grace_cycles: int = 1,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the session.

        Args:
            backend: REST collaborator
            transport: Push-event collaborator
            local_user_id: Id of the signed-in user
            refresh_delay_seconds: Delay of the refresh that follows conversation creation
            refresh_interval_seconds: Period of the fallback refresh; 0 disables it
            placeholder_grace_cycles: Refreshes an unconfirmed placeholder survives
            clock: Source of "now" for message arrival times
        """
        self._backend = backend
        self._transport = transport
        self._refresh_interval = refresh_interval_seconds
        self._reconciler = Reconciler(
            local_user_id,
            clock=clock,
            placeholder_grace_cycles=placeholder_grace_cycles,
        )
        self._state = SyncState()
        self._listeners: list[StoreListener] = []
        self._enrichment = EnrichmentCoordinator(
            backend,
            submit=self.dispatch,
            refresh=self.refresh,
            refresh_delay_seconds=refresh_delay_seconds,
        )
        self._read_state = ReadStateTracker(
            backend,
            submit=self.dispatch,
            current_selection=lambda: self._state.selected_id,
        )
        self._periodic_task: asyncio.Task[None] | None = None
        self._running = False
        self._stopped = False

    @classmethod
    def from_config(
        cls,
        config: Config,
        backend: ChatBackend | None = None,
        transport: PushTransport | None = None,
    ) -> Self:
        """Build a session from application configuration."""
        return cls(
            backend=backend or ChatApiClient(config.api),
            transport=transport or LocalEventBus(),
            local_user_id=config.sync.local_user_id,
            refresh_delay_seconds=config.sync.refresh_delay_seconds,
            refresh_interval_seconds=config.sync.refresh_interval_seconds,
            placeholder_grace_cycles=config.sync.placeholder_grace_cycles,
        )

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def store(self) -> ConversationStore:
        return self._state.store

    @property
    def conversations(self) -> tuple[Conversation, ...]:
        return self._state.store.get()

    @property
    def selected_id(self) -> str | None:
        return self._state.selected_id

    @property
    def enrichment(self) -> EnrichmentCoordinator:
        return self._enrichment

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a listener called with every new store.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # State mutation

    def dispatch(self, signal: Signal) -> Outcome:
        """Fold a signal into the state and publish the result.

        An operation that would break a store invariant is rejected and the
        previous state is kept.
        """
        try:
            outcome = self._reconciler.reduce(self._state, signal)
        except InvariantViolation as e:
            logger.error(
                "Rejected signal: signal=%s code=%s error=%s",
                type(signal).__name__,
                e.code,
                e.message,
            )
            rejected = Change(ChangeKind.IGNORED, e.extra.get("conversation_id"), e.code)
            return Outcome(self._state, (rejected,))

        self._log_changes(signal, outcome)

        previous = self._state
        self._state = outcome.state

        if self._running:
            if isinstance(signal, BulkSnapshot):
                self._enrichment.reset_attempts()
            if isinstance(signal, ConversationCreated):
                self._enrichment.schedule_refresh()
            self._enrichment.observe(self._state)

        if self._state.store is not previous.store:
            self._publish(self._state.store)
        return outcome

    def _log_changes(self, signal: Signal, outcome: Outcome) -> None:
        for change in outcome.changes:
            if change.kind is ChangeKind.IGNORED:
                logger.info(
                    "Ignored signal: signal=%s conversation_id=%s reason=%s",
                    type(signal).__name__,
                    change.conversation_id,
                    change.detail,
                )
            else:
                logger.debug(
                    "Applied change: kind=%s conversation_id=%s detail=%s",
                    change.kind.value,
                    change.conversation_id,
                    change.detail,
                )

    def _publish(self, store: ConversationStore) -> None:
        for listener in list(self._listeners):
            try:
                listener(store)
            except Exception:
                logger.exception("Store listener failed: listener=%r", listener)

    # Inputs

    def _on_push(self, event_name: str, payload: Any) -> None:
        try:
            signal = parse_event(event_name, payload)
        except MalformedEvent as e:
            logger.warning("Dropping malformed event: event=%s error=%s", event_name, e.message)
            return
        self.dispatch(signal)

    async def refresh(self) -> bool:
        """Fetch the full conversation list and reconcile it.

        Returns:
            True if the snapshot was applied, False if the fetch failed
        """
        try:
            conversations = await self._backend.fetch_conversations()
        except ChatSyncError as e:
            logger.warning("Bulk refresh failed: code=%s error=%s", e.code, e.message)
            return False
        if self._stopped:
            logger.debug("Discarding bulk refresh finished after stop")
            return False

        self.dispatch(BulkSnapshot(tuple(conversations)))
        logger.debug("Bulk refresh applied: conversations=%d", len(conversations))
        return True

    async def _refresh_periodically(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_interval)
            try:
                await self.refresh()
            except Exception:
                logger.exception("Periodic refresh crashed")

    def select(self, conversation_id: str) -> asyncio.Task[ReadReceipt] | None:
        """Open a conversation; its unread count drops to zero immediately."""
        return self._read_state.select(conversation_id)

    def deselect(self) -> None:
        self._read_state.deselect()

    async def send_message(self, request: SendMessageRequest) -> Message:
        """Send a message, creating the conversation server-side if needed.

        A message for a conversation the store already holds is folded in
        directly; otherwise the list is refreshed to pick the new one up.
        """
        message = await self._backend.send_message(request)
        if message.conversation_id in self._state.store:
            self.dispatch(NewMessage(message))
        else:
            await self.refresh()
        return message

    def find_group_conversation(self, group_id: str) -> Conversation | None:
        for conv in self._state.store:
            if conv.kind is ConversationKind.GROUP and conv.group is not None and conv.group.id == group_id:
                return conv
        return None

    async def open_group_conversation(self, group_id: str, greeting: str = "👋") -> Conversation | None:
        """Select the conversation of a group, starting it with a greeting if none exists.

        Returns:
            The selected conversation, or None if it could not be found or created
        """
        await self.refresh()
        conv = self.find_group_conversation(group_id)
        if conv is None:
            request = SendMessageRequest(kind=ConversationKind.GROUP, content=greeting, group_id=group_id)
            await self.send_message(request)
            conv = self.find_group_conversation(group_id)

        if conv is None:
            logger.warning("Group conversation unavailable: group_id=%s", group_id)
            return None
        self.select(conv.id)
        return conv

    # Lifecycle

    async def start(self) -> bool:
        """Subscribe to push events and load the initial conversation list.

        Returns:
            Result of the initial refresh
        """
        if self._running:
            return True
        if self._stopped:
            raise RuntimeError("A stopped session cannot be restarted; create a new one")
        self._running = True

        for event_name in PUSH_EVENTS:
            self._transport.subscribe(event_name, partial(self._on_push, event_name))

        if self._refresh_interval > 0:
            self._periodic_task = asyncio.get_running_loop().create_task(self._refresh_periodically())

        logger.info(
            "Session started: local_user_id=%s refresh_interval=%ss",
            self._reconciler.local_user_id,
            self._refresh_interval,
        )
        return await self.refresh()

    async def stop(self) -> None:
        """Unsubscribe from push events and cancel background work."""
        if not self._running:
            return
        self._running = False
        self._stopped = True

        for event_name in PUSH_EVENTS:
            self._transport.unsubscribe(event_name)

        if self._periodic_task is not None:
            self._periodic_task.cancel()
            try:
                await self._periodic_task
            except asyncio.CancelledError:
                pass
            self._periodic_task = None

        self._enrichment.close()
        self._read_state.close()
        logger.info("Session stopped")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        await self.stop()
