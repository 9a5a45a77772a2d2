import asyncio
from enum import Enum
from typing import Callable, List, Optional

from marketchat.repositories.engagement_repository import EngagementRepository
from marketchat.schemas.conversation import Counterpart, Engagement
from marketchat.schemas.message import Message
from marketchat.services.message_store import MessageStore
from marketchat.services.read_tracker import ReadTracker
from marketchat.services.realtime_notifier import RealtimeNotifier
from marketchat.utils.errors import (
    ConversationNotFound,
    InvalidSessionState,
    NotAuthorized,
    TransientIOError,
    ValidationError,
)
from marketchat.utils.logger import get_logger
from marketchat.utils.refresh import RefreshTrigger


logger = get_logger(__name__)


class SessionState(str, Enum):

    LOADING = "loading"
    READY = "ready"
    SENDING = "sending"
    ERROR = "error"
    CLOSED = "closed"


class ChatSession:
    """Controller for one open conversation.

    Loading -> Ready, Ready -> Sending -> Ready, any -> Error on a transient
    store failure (Error -> Loading on retry), any -> Closed.
    """

    def __init__(
        self,
        store: MessageStore,
        read_tracker: ReadTracker,
        engagement_repo: EngagementRepository,
        notifier: RealtimeNotifier,
        viewer_id: str,
        on_change: Optional[Callable[["ChatSession"], None]] = None,
    ) -> None:
        self._store = store
        self._read_tracker = read_tracker
        self._engagements = engagement_repo
        self._notifier = notifier
        self.viewer_id = viewer_id
        self._on_change = on_change

        self.conversation_id: Optional[str] = None
        self.title: Optional[str] = None
        self.counterpart: Optional[Counterpart] = None
        self.state = SessionState.LOADING
        self.error: Optional[str] = None
        self._messages: List[Message] = []
        self._engagement: Optional[Engagement] = None
        self._send_lock = asyncio.Lock()
        self._watch = None
        self._refresh_trigger = RefreshTrigger(self.refresh, name="history refresh")
        self._read_trigger = RefreshTrigger(self.mark_read, name="mark read")

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    async def open(self, conversation_id: str) -> "ChatSession":
        if self.closed:
            raise InvalidSessionState("Session is closed")
        self.conversation_id = conversation_id
        self._set_state(SessionState.LOADING)
        try:
            engagement = await self._engagements.get(conversation_id)
            if engagement is None:
                raise ConversationNotFound(f"Conversation {conversation_id} not found")
            counterpart = engagement.counterpart_for(self.viewer_id)
            if counterpart is None:
                raise NotAuthorized(f"{self.viewer_id} is not a participant of {conversation_id}")
            messages = await self._store.list_by_conversation(conversation_id)
            await self._read_tracker.mark_read(conversation_id, self.viewer_id)
        except TransientIOError as exc:
            self._fail(exc)
            return self
        if self.closed:
            return self
        self._engagement = engagement
        self.title = engagement.title
        self.counterpart = counterpart
        self._messages = engagement.label_senders(messages)
        if self._watch is None:
            self._watch = self._notifier.watch_conversation(self)
        self.error = None
        self._set_state(SessionState.READY)
        return self

    async def retry(self) -> "ChatSession":
        if self.state is not SessionState.ERROR:
            raise InvalidSessionState(f"Cannot retry from {self.state.value}")
        return await self.open(self.conversation_id)

    @property
    def live(self) -> bool:
        """Opened successfully and not failed or closed since."""
        return self._engagement is not None and self.state in (SessionState.READY, SessionState.SENDING)

    async def refresh(self) -> None:
        """Replace the local history with the store's current order.

        Only a live session refreshes; leaving Error goes through retry().
        """
        if not self.live:
            return
        try:
            messages = await self._store.list_by_conversation(self.conversation_id)
        except TransientIOError as exc:
            if self.state is SessionState.READY:
                self._fail(exc)
            return
        if not self.live:
            return
        self._messages = self._engagement.label_senders(messages)
        self._changed()

    async def mark_read(self) -> int:
        if not self.live:
            return 0
        return await self._read_tracker.mark_read(self.conversation_id, self.viewer_id)

    def request_refresh(self) -> None:
        if not self.closed:
            self._refresh_trigger.fire()

    def request_mark_read(self) -> None:
        if not self.closed:
            self._read_trigger.fire()

    async def wait_idle(self) -> None:
        await self._refresh_trigger.wait_idle()
        await self._read_trigger.wait_idle()

    async def send(self, content: str) -> Optional[Message]:
        """Append a message; one send in flight per session.

        Returns the stored message, or None when the session closed while the
        send was in flight or the store was unreachable (state is then Error).
        """
        async with self._send_lock:
            if self.state is not SessionState.READY:
                raise InvalidSessionState(f"Cannot send while {self.state.value}")
            self._set_state(SessionState.SENDING)
            try:
                message = await self._store.append(
                    self.conversation_id,
                    self.viewer_id,
                    self.counterpart.other_id,
                    content,
                )
            except ValidationError:
                self._restore_ready()
                raise
            except NotAuthorized:
                self._restore_ready()
                raise
            except TransientIOError as exc:
                if not self.closed:
                    self._fail(exc)
                return None
            if self.closed:
                logger.debug("Discarding send result for closed session %s", self.conversation_id)
                return None
            message = self._engagement.label_senders([message])[0]
            self._merge(message)
            self._set_state(SessionState.READY)
            return message

    async def close(self) -> None:
        if self.closed:
            return
        self._set_state(SessionState.CLOSED)
        self._refresh_trigger.cancel()
        self._read_trigger.cancel()
        if self._watch is not None:
            await self._notifier.unwatch_conversation(self)
            self._watch = None

    def _merge(self, message: Message) -> None:
        # The notifier-driven refresh may already have brought it in.
        if any(m.id == message.id for m in self._messages):
            return
        self._messages.append(message)
        self._messages.sort(key=lambda m: m.sort_key)

    def _restore_ready(self) -> None:
        if not self.closed:
            self._set_state(SessionState.READY)

    def _fail(self, exc: Exception) -> None:
        logger.warning("Chat session %s unavailable: %s", self.conversation_id, exc)
        self.error = str(exc)
        self._set_state(SessionState.ERROR)

    def _set_state(self, state: SessionState) -> None:
        if self.state is SessionState.CLOSED:
            return
        self.state = state
        self._changed()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
