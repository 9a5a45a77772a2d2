from typing import Callable, Optional

from marketchat.config import Settings, get_settings
from marketchat.repositories.engagement_repository import EngagementRepository
from marketchat.repositories.message_repository import MessageRepository
from marketchat.services.chat_session import ChatSession
from marketchat.services.conversation_aggregator import ConversationAggregator, ConversationListView
from marketchat.services.message_store import MessageStore
from marketchat.services.read_tracker import ReadTracker
from marketchat.services.realtime_notifier import RealtimeNotifier
from marketchat.services.unread_badge import UnreadBadge
from marketchat.utils.errors import NotAuthorized
from marketchat.utils.logger import get_logger


logger = get_logger(__name__)


class ViewerSession:
    """Everything the messaging core keeps for one signed-in viewer.

    Created when the auth collaborator establishes an identity and torn down
    on sign-out. The viewer id is read-only here.
    """

    def __init__(
        self,
        viewer_id: str,
        store: MessageStore,
        read_tracker: ReadTracker,
        engagement_repo: EngagementRepository,
        bus,
        settings: Optional[Settings] = None,
        on_list_change: Optional[Callable[[ConversationListView], None]] = None,
        on_badge_change: Optional[Callable[[UnreadBadge], None]] = None,
        on_chat_change: Optional[Callable[[ChatSession], None]] = None,
    ) -> None:
        settings = settings or get_settings()
        self.viewer_id = viewer_id
        self._store = store
        self._read_tracker = read_tracker
        self._engagements = engagement_repo
        self._on_chat_change = on_chat_change

        aggregator = ConversationAggregator(store, engagement_repo, preview_length=settings.preview_length)
        self.conversations = ConversationListView(aggregator, viewer_id, on_change=on_list_change)
        self.badge = UnreadBadge(
            store, viewer_id, debounce=settings.badge_debounce_seconds, on_change=on_badge_change
        )
        self.notifier = RealtimeNotifier(
            bus,
            viewer_id,
            list_view=self.conversations,
            badge=self.badge,
            backoff_initial=settings.resubscribe_backoff_initial,
            backoff_max=settings.resubscribe_backoff_max,
        )
        self.chat: Optional[ChatSession] = None
        self.signed_out = False

    @classmethod
    def from_database(cls, viewer_id: str, db, bus, settings: Optional[Settings] = None, **callbacks) -> "ViewerSession":
        settings = settings or get_settings()
        message_repo = MessageRepository(db)
        engagement_repo = EngagementRepository(db)
        store = MessageStore(message_repo, engagement_repo, bus, max_length=settings.message_max_length)
        read_tracker = ReadTracker(message_repo, bus)
        return cls(viewer_id, store, read_tracker, engagement_repo, bus, settings=settings, **callbacks)

    async def start(self) -> "ViewerSession":
        self.notifier.start()
        await self.conversations.load()
        await self.badge.refresh()
        logger.info("Viewer %s started", self.viewer_id)
        return self

    async def open_chat(self, conversation_id: str) -> ChatSession:
        await self.close_chat()
        chat = ChatSession(
            self._store,
            self._read_tracker,
            self._engagements,
            self.notifier,
            self.viewer_id,
            on_change=self._on_chat_change,
        )
        self.chat = chat
        try:
            await chat.open(conversation_id)
        except NotAuthorized:
            self.chat = None
            await chat.close()
            raise
        return chat

    async def close_chat(self) -> None:
        if self.chat is not None:
            chat, self.chat = self.chat, None
            await chat.close()

    async def sign_out(self) -> None:
        if self.signed_out:
            return
        self.signed_out = True
        await self.close_chat()
        self.conversations.close()
        self.badge.reset()
        await self.notifier.close()
        logger.info("Viewer %s signed out", self.viewer_id)
