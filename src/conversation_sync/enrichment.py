"""Best-effort enrichment of placeholder conversations.

Placeholders created from push events carry only ids for their peer or
group. The coordinator looks the missing metadata up, at most one lookup per
conversation at a time, and submits the results back through the session's
dispatch entry point. It also owns the delayed safety-net refresh that follows
conversation creation.
"""

import asyncio
from collections.abc import Awaitable, Callable

from conversation_sync.api import ChatBackend
from conversation_sync.errors import ChatSyncError
from conversation_sync.events import EnrichmentResolved, Signal
from conversation_sync.logging import get_logger
from conversation_sync.models import Conversation, ConversationKind
from conversation_sync.reconciler import SyncState

logger = get_logger("enrichment")

# Delay before the refresh that follows conversation creation (seconds)
DEFAULT_REFRESH_DELAY_SECONDS = 0.5


class EnrichmentCoordinator:
    """Schedules metadata lookups for placeholder conversations."""

    def __init__(
        self,
        backend: ChatBackend,
        submit: Callable[[Signal], object],
        refresh: Callable[[], Awaitable[bool]],
        refresh_delay_seconds: float = DEFAULT_REFRESH_DELAY_SECONDS,
    ) -> None:
        """Initialize the coordinator.

        Args:
            backend: Source of user and group lookups
            submit: Entry point that folds a signal into the state
            refresh: Coroutine function performing a full bulk refresh
            refresh_delay_seconds: Delay of the post-creation refresh
        """
        self._backend = backend
        self._submit = submit
        self._refresh = refresh
        self._refresh_delay = refresh_delay_seconds
        self._inflight: dict[str, asyncio.Task[None]] = {}
        # Ids already looked up since the last bulk refresh; failures are not retried
        self._attempted: set[str] = set()
        self._refresh_tasks: set[asyncio.Task[None]] = set()
        # Refresh still sleeping through its delay; a new schedule replaces it
        self._waiting_refresh: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def inflight(self) -> frozenset[str]:
        return frozenset(self._inflight)

    @property
    def refresh_pending(self) -> bool:
        return any(not task.done() for task in self._refresh_tasks)

    def reset_attempts(self) -> None:
        """Allow another lookup for every placeholder (called after a bulk refresh)."""
        self._attempted.clear()

    def observe(self, state: SyncState) -> list[str]:
        """Start lookups for placeholders that have none outstanding.

        Must be called from a running event loop.

        Returns:
            Ids for which a lookup was started
        """
        if self._closed:
            return []

        started = []
        for conv in state.store:
            if not conv.needs_enrichment:
                continue
            if conv.id in self._inflight or conv.id in self._attempted:
                continue
            self._attempted.add(conv.id)
            task = asyncio.get_running_loop().create_task(self._lookup(conv))
            self._inflight[conv.id] = task
            task.add_done_callback(lambda _t, cid=conv.id: self._inflight.pop(cid, None))
            started.append(conv.id)

        if started:
            logger.debug("Started enrichment lookups: conversation_ids=%s", started)
        return started

    async def _lookup(self, conv: Conversation) -> None:
        try:
            if conv.kind is ConversationKind.DIRECT and conv.peer is not None:
                peer = await self._backend.fetch_user_by_id(conv.peer.id)
                signal = EnrichmentResolved(conv.id, peer=peer) if peer is not None else None
                target = conv.peer.id
            elif conv.group is not None:
                group = await self._backend.fetch_group_by_id(conv.group.id)
                signal = EnrichmentResolved(conv.id, group=group) if group is not None else None
                target = conv.group.id
            else:
                return
        except ChatSyncError as e:
            logger.warning(
                "Enrichment lookup failed: conversation_id=%s code=%s error=%s",
                conv.id,
                e.code,
                e.message,
            )
            return
        except Exception:
            logger.exception("Enrichment lookup crashed: conversation_id=%s", conv.id)
            return

        if signal is None:
            logger.info("Enrichment target not found: conversation_id=%s target=%s", conv.id, target)
            return
        if self._closed:
            return
        self._submit(signal)

    def schedule_refresh(self) -> None:
        """Schedule a bulk refresh after the configured delay.

        A refresh still waiting for its delay is pushed back; one already
        fetching is left alone and a new one is queued behind it.
        """
        if self._closed:
            return
        if self._waiting_refresh is not None:
            self._waiting_refresh.cancel()
        task = asyncio.get_running_loop().create_task(self._delayed_refresh())
        self._waiting_refresh = task
        self._refresh_tasks.add(task)
        task.add_done_callback(self._refresh_tasks.discard)

    async def _delayed_refresh(self) -> None:
        await asyncio.sleep(self._refresh_delay)
        if self._waiting_refresh is asyncio.current_task():
            self._waiting_refresh = None
        logger.debug("Running post-creation refresh")
        await self._refresh()

    async def join(self) -> None:
        """Wait for outstanding lookups and pending refreshes to finish."""
        while True:
            tasks = [t for t in (*self._inflight.values(), *self._refresh_tasks) if not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def close(self) -> None:
        """Cancel outstanding lookups and every scheduled or running refresh."""
        self._closed = True
        for task in self._inflight.values():
            task.cancel()
        self._inflight.clear()
        for task in self._refresh_tasks:
            task.cancel()
        self._refresh_tasks.clear()
        self._waiting_refresh = None
