import asyncio
from typing import Callable, Dict, List, Optional

from marketchat.repositories.engagement_repository import EngagementRepository
from marketchat.schemas.conversation import NO_MESSAGE_PREVIEW, ConversationSummary, Engagement
from marketchat.services.message_store import MessageStore
from marketchat.utils.logger import get_logger
from marketchat.utils.refresh import RefreshTrigger


logger = get_logger(__name__)


def order_summaries(summaries: List[ConversationSummary]) -> List[ConversationSummary]:
    """Most recent activity first; conversations without messages last.

    Input must already be in engagement creation order: the sort is stable, so
    that order breaks ties between equal timestamps and between empty
    conversations.
    """
    return sorted(summaries, key=lambda s: s.sort_time, reverse=True)


class ConversationAggregator:

    def __init__(
        self,
        store: MessageStore,
        engagement_repo: EngagementRepository,
        preview_length: int = 200,
    ) -> None:
        self._store = store
        self._engagements = engagement_repo
        self._preview_length = preview_length

    async def summarize(self, engagement: Engagement, viewer_id: str) -> Optional[ConversationSummary]:
        counterpart = engagement.counterpart_for(viewer_id)
        if counterpart is None:
            return None
        # Independent reads: a message landing between them is corrected by
        # the next notifier-driven refresh.
        latest, unread = await asyncio.gather(
            self._store.latest(engagement.conversation_id),
            self._store.count_unread(engagement.conversation_id, viewer_id),
        )
        summary = ConversationSummary(
            conversation_id=engagement.conversation_id,
            title=engagement.title,
            counterpart=counterpart,
            unread_count=unread,
            engagement_created_at=engagement.created_at,
        )
        if latest is not None:
            summary.last_message = latest.content
            summary.last_message_preview = latest.content[: self._preview_length]
            summary.last_message_at = latest.created_at
        else:
            summary.last_message_preview = NO_MESSAGE_PREVIEW
        return summary

    async def list_for(self, viewer_id: str) -> List[ConversationSummary]:
        engagements = await self._engagements.list_for_participant(viewer_id)
        results = await asyncio.gather(*(self.summarize(e, viewer_id) for e in engagements))
        by_id: Dict[str, ConversationSummary] = {
            s.conversation_id: s for s in results if s is not None
        }
        # Re-join in creation order so the stable sort has a fixed tie-break.
        ordered = [by_id[e.conversation_id] for e in engagements if e.conversation_id in by_id]
        return order_summaries(ordered)

    async def refresh_one(self, conversation_id: str, viewer_id: str) -> Optional[ConversationSummary]:
        engagement = await self._engagements.get(conversation_id)
        if engagement is None:
            return None
        return await self.summarize(engagement, viewer_id)


class ConversationListView:
    """The viewer's live conversation list.

    Loaded once in full; afterwards individual entries are recomputed when the
    notifier reports a change in that conversation. Every read takes a ticket
    when it starts; an entry only accepts a result whose read started after
    the one it holds.
    """

    def __init__(
        self,
        aggregator: ConversationAggregator,
        viewer_id: str,
        on_change: Optional[Callable[["ConversationListView"], None]] = None,
    ) -> None:
        self._aggregator = aggregator
        self.viewer_id = viewer_id
        self._on_change = on_change
        self._summaries: Dict[str, ConversationSummary] = {}
        self._committed: Dict[str, int] = {}
        self._tickets = 0
        self._items: List[ConversationSummary] = []
        self._triggers: Dict[str, RefreshTrigger] = {}
        self._closed = False

    @property
    def items(self) -> List[ConversationSummary]:
        return list(self._items)

    def get(self, conversation_id: str) -> Optional[ConversationSummary]:
        return self._summaries.get(conversation_id)

    def _ticket(self) -> int:
        self._tickets += 1
        return self._tickets

    def _commit(self, summary: ConversationSummary, ticket: int) -> bool:
        if self._committed.get(summary.conversation_id, 0) > ticket:
            return False
        self._summaries[summary.conversation_id] = summary
        self._committed[summary.conversation_id] = ticket
        return True

    async def load(self) -> List[ConversationSummary]:
        ticket = self._ticket()
        items = await self._aggregator.list_for(self.viewer_id)
        if self._closed:
            return items
        for summary in items:
            self._commit(summary, ticket)
        self._reorder()
        return self.items

    async def refresh(self, conversation_id: str) -> None:
        ticket = self._ticket()
        summary = await self._aggregator.refresh_one(conversation_id, self.viewer_id)
        if self._closed or summary is None:
            return
        if not self._commit(summary, ticket):
            return
        self._reorder()

    def _reorder(self) -> None:
        creation_order = sorted(self._summaries.values(), key=lambda s: (s.engagement_created_at, s.conversation_id))
        self._items = order_summaries(creation_order)
        self._changed()

    def request_refresh(self, conversation_id: str) -> None:
        if self._closed:
            return
        trigger = self._triggers.get(conversation_id)
        if trigger is None:
            trigger = RefreshTrigger(
                lambda: self.refresh(conversation_id),
                name=f"summary refresh {conversation_id}",
            )
            self._triggers[conversation_id] = trigger
        trigger.fire()

    async def wait_idle(self) -> None:
        for trigger in list(self._triggers.values()):
            await trigger.wait_idle()

    def close(self) -> None:
        self._closed = True
        for trigger in self._triggers.values():
            trigger.cancel()
        self._triggers.clear()

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change(self)
