from typing import Callable, Optional

from marketchat.services.message_store import MessageStore
from marketchat.utils.refresh import RefreshTrigger


class UnreadBadge:
    """Unread messages addressed to the viewer across all conversations."""

    def __init__(
        self,
        store: MessageStore,
        viewer_id: str,
        debounce: float = 0.25,
        on_change: Optional[Callable[["UnreadBadge"], None]] = None,
    ) -> None:
        self._store = store
        self.viewer_id = viewer_id
        self._on_change = on_change
        self.count = 0
        self._loaded = False
        self._tickets = 0
        self._committed = 0
        self._trigger = RefreshTrigger(self.refresh, name="unread badge refresh", debounce=debounce)

    async def refresh(self) -> int:
        self._tickets += 1
        ticket = self._tickets
        count = await self._store.count_unread_total(self.viewer_id)
        # A read that started before the committed one is stale.
        if self._trigger.cancelled or ticket < self._committed:
            return self.count
        self._committed = ticket
        if count != self.count or not self._loaded:
            self.count = count
            self._loaded = True
            if self._on_change is not None:
                self._on_change(self)
        return self.count

    def request_refresh(self) -> None:
        self._trigger.fire()

    async def wait_idle(self) -> None:
        await self._trigger.wait_idle()

    def reset(self) -> None:
        """Sign-out: stop refreshing and drop the count."""
        self._trigger.cancel()
        self.count = 0
        self._loaded = False
