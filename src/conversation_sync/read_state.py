"""Selection and read-state handling."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass

from conversation_sync.api import ChatBackend
from conversation_sync.events import Deselected, Selected, Signal
from conversation_sync.logging import get_logger

logger = get_logger("read_state")


@dataclass(frozen=True)
class ReadReceipt:
    """Result of a mark-as-read call; failures are warnings, never rollbacks."""

    conversation_id: str
    ok: bool
    error: Exception | None = None


class ReadStateTracker:
    """Tracks the open conversation and keeps its unread count at zero.

    Selecting a conversation zeroes its unread count immediately and notifies
    the server in the background, once per selection change.
    """

    def __init__(
        self,
        backend: ChatBackend,
        submit: Callable[[Signal], object],
        current_selection: Callable[[], str | None],
    ) -> None:
        self._backend = backend
        self._submit = submit
        self._current_selection = current_selection
        self._pending: set[asyncio.Task[ReadReceipt]] = set()

    def select(self, conversation_id: str) -> asyncio.Task[ReadReceipt] | None:
        """Open a conversation.

        Returns:
            Task resolving to the mark-as-read receipt, or None when the
            conversation was already selected
        """
        if self._current_selection() == conversation_id:
            return None

        self._submit(Selected(conversation_id))

        task = asyncio.get_running_loop().create_task(self._mark_read(conversation_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def deselect(self) -> None:
        self._submit(Deselected())

    async def _mark_read(self, conversation_id: str) -> ReadReceipt:
        try:
            await self._backend.mark_conversation_read(conversation_id)
        except Exception as e:
            logger.warning("Mark-as-read failed: conversation_id=%s error=%s", conversation_id, e)
            return ReadReceipt(conversation_id, ok=False, error=e)
        logger.debug("Marked as read: conversation_id=%s", conversation_id)
        return ReadReceipt(conversation_id, ok=True)

    def close(self) -> None:
        for task in self._pending:
            task.cancel()
        self._pending.clear()
