"""Bridge from the push channel to refresh triggers.

Delivery on the channel is at-least-once and unordered across conversations,
so an event never carries state: it only tells a view which piece of state to
re-read from the message store. Ordering inside a conversation comes from the
store, never from the order notifications arrive in.
"""
import asyncio
from typing import Callable, Dict, List, Optional, Set

from pydantic import ValidationError as SchemaError

from marketchat.schemas.events import ChangeEvent
from marketchat.utils.errors import TransientIOError
from marketchat.utils.logger import get_logger
from marketchat.utils.realtime_bus import conversation_channel, receiver_channel


logger = get_logger(__name__)


class ChannelWatch:
    """A subscription that is re-established whenever the channel drops."""

    def __init__(
        self,
        bus,
        channels: List[str],
        on_event: Callable[[ChangeEvent], None],
        *,
        on_subscribed: Optional[Callable[[bool], None]] = None,
        backoff_initial: float = 0.5,
        backoff_max: float = 10.0,
    ) -> None:
        self._bus = bus
        self.channels = channels
        self._on_event = on_event
        self._on_subscribed = on_subscribed
        self._backoff_initial = backoff_initial
        self._backoff_max = backoff_max
        self._delay = backoff_initial
        self._subscription = None
        self._subscribed = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        self.reconnects = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def wait_subscribed(self) -> None:
        await self._subscribed.wait()

    async def _run(self) -> None:
        first = True
        while not self._closed:
            try:
                subscription = await self._bus.subscribe(self.channels, self._handle)
            except TransientIOError as exc:
                logger.warning("Subscribe to %s failed: %s; retrying in %.2fs", self.channels, exc, self._delay)
                await self._backoff()
                continue
            if self._closed:
                await subscription.cancel()
                return
            self._subscription = subscription
            if not first:
                logger.info("Resubscribed to %s", self.channels)
            self._subscribed.set()
            if self._on_subscribed is not None:
                self._on_subscribed(first)
            first = False
            try:
                await subscription.run()
            except TransientIOError as exc:
                self._subscribed.clear()
                self._subscription = None
                self.reconnects += 1
                logger.warning("Subscription to %s lost: %s; resubscribing in %.2fs", self.channels, exc, self._delay)
                await self._backoff()
                continue
            return

    async def _backoff(self) -> None:
        await asyncio.sleep(self._delay)
        self._delay = min(self._delay * 2, self._backoff_max)

    async def _handle(self, raw: str) -> None:
        try:
            event = ChangeEvent.model_validate_json(raw)
        except SchemaError:
            logger.warning("Dropping malformed change event on %s: %.200r", self.channels, raw)
            return
        self._delay = self._backoff_initial
        if not self._closed:
            self._on_event(event)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._subscription is not None:
            await self._subscription.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)


class RealtimeNotifier:
    """Per-viewer router of change events to the views that must refresh.

    The viewer's receiver channel is watched for the notifier's whole life and
    drives the conversation list and the unread badge. Each open chat session
    additionally watches its conversation channel.
    """

    def __init__(
        self,
        bus,
        viewer_id: str,
        *,
        list_view=None,
        badge=None,
        backoff_initial: float = 0.5,
        backoff_max: float = 10.0,
    ) -> None:
        self._bus = bus
        self.viewer_id = viewer_id
        self._list_view = list_view
        self._badge = badge
        self._backoff_initial = backoff_initial
        self._backoff_max = backoff_max
        self._inbox: Optional[ChannelWatch] = None
        self._sessions: Dict[str, object] = {}
        self._watches: Dict[str, ChannelWatch] = {}
        self._background: Set[asyncio.Task] = set()
        self._closed = False

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _watch(self, channels: List[str], on_event, on_subscribed) -> ChannelWatch:
        watch = ChannelWatch(
            self._bus,
            channels,
            on_event,
            on_subscribed=on_subscribed,
            backoff_initial=self._backoff_initial,
            backoff_max=self._backoff_max,
        )
        watch.start()
        return watch

    def start(self) -> ChannelWatch:
        if self._inbox is None:
            self._inbox = self._watch([receiver_channel(self.viewer_id)], self._on_inbox_event, self._on_inbox_subscribed)
        return self._inbox

    def watch_conversation(self, session) -> ChannelWatch:
        """Route events of session.conversation_id to the session until unwatched."""
        conversation_id = session.conversation_id
        previous = self._watches.pop(conversation_id, None)
        if previous is not None:
            self._spawn(previous.close())
        self._sessions[conversation_id] = session
        watch = self._watch(
            [conversation_channel(conversation_id)],
            self._on_conversation_event,
            lambda first: session.request_refresh(),
        )
        self._watches[conversation_id] = watch
        return watch

    async def unwatch_conversation(self, session) -> None:
        conversation_id = session.conversation_id
        if self._sessions.get(conversation_id) is not session:
            return
        del self._sessions[conversation_id]
        watch = self._watches.pop(conversation_id, None)
        if watch is not None:
            await watch.close()

    def _on_conversation_event(self, event: ChangeEvent) -> None:
        session = self._sessions.get(event.conversation_id)
        if session is None:
            # Late delivery for a conversation that was closed meanwhile.
            return
        session.request_refresh()
        if event.kind == "insert" and event.receiver_id == self.viewer_id:
            session.request_mark_read()
        if self._list_view is not None:
            self._list_view.request_refresh(event.conversation_id)

    def _on_inbox_event(self, event: ChangeEvent) -> None:
        if event.receiver_id != self.viewer_id:
            return
        if self._list_view is not None:
            self._list_view.request_refresh(event.conversation_id)
        if self._badge is not None:
            self._badge.request_refresh()

    def _on_inbox_subscribed(self, first: bool) -> None:
        if first:
            return
        # Events may have been missed while disconnected: re-derive everything.
        if self._list_view is not None:
            self._spawn(self._reload_list())
        if self._badge is not None:
            self._badge.request_refresh()

    async def _reload_list(self) -> None:
        try:
            await self._list_view.load()
        except TransientIOError as exc:
            logger.warning("Conversation list reload after resubscribe failed: %s", exc)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        watches = list(self._watches.values())
        if self._inbox is not None:
            watches.append(self._inbox)
        self._watches.clear()
        self._sessions.clear()
        for watch in watches:
            await watch.close()
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
