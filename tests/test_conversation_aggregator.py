"""Tests for ConversationAggregator and ConversationListView."""

import asyncio

import pytest

from marketchat.schemas.conversation import NO_MESSAGE_PREVIEW, ParticipantRole
from marketchat.services.conversation_aggregator import ConversationAggregator, ConversationListView
from tests.fixtures.engagement_fixtures import CUSTOMER, OTHER_PROVIDER, OUTSIDER, PROVIDER, make_engagement


class HeldAggregator(ConversationAggregator):
    """Full listings wait for `release` after reading the store."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.release = asyncio.Event()
        self.read_done = asyncio.Event()

    async def list_for(self, viewer_id):
        items = await super().list_for(viewer_id)
        self.read_done.set()
        await self.release.wait()
        return items


@pytest.fixture
def aggregator(store, engagement_repo):
    return ConversationAggregator(store, engagement_repo, preview_length=10)


@pytest.mark.asyncio
async def test_sorted_by_last_message_desc(aggregator, store, engagements, clock):
    await store.append("eng-a", CUSTOMER, PROVIDER, "oldest")
    clock.advance()
    await store.append("eng-c", PROVIDER, CUSTOMER, "newest")

    summaries = await aggregator.list_for(CUSTOMER)

    assert [s.conversation_id for s in summaries] == ["eng-c", "eng-a", "eng-b"]
    times = [s.sort_time for s in summaries]
    assert times == sorted(times, reverse=True)


@pytest.mark.asyncio
async def test_empty_conversations_sort_last_in_creation_order(aggregator, store, engagement_repo, engagements):
    await engagement_repo.save(make_engagement("eng-d", offset_days=5))
    await store.append("eng-c", CUSTOMER, PROVIDER, "only one")

    summaries = await aggregator.list_for(CUSTOMER)

    assert [s.conversation_id for s in summaries] == ["eng-c", "eng-a", "eng-b", "eng-d"]
    empty = summaries[1:]
    assert all(s.last_message_at is None for s in empty)
    assert all(s.last_message_preview == NO_MESSAGE_PREVIEW for s in empty)
    assert all(s.unread_count == 0 for s in empty)


@pytest.mark.asyncio
async def test_summary_fields(aggregator, store, engagements):
    await store.append("eng-b", OTHER_PROVIDER, CUSTOMER, "a rather long first message")
    await store.append("eng-b", OTHER_PROVIDER, CUSTOMER, "and another one")

    summaries = await aggregator.list_for(CUSTOMER)
    summary = next(s for s in summaries if s.conversation_id == "eng-b")

    assert summary.title == "Job eng-b"
    assert summary.counterpart.role == ParticipantRole.CUSTOMER
    assert summary.counterpart.other_id == OTHER_PROVIDER
    assert summary.counterpart.other_name == "Dave"
    assert summary.unread_count == 2
    assert summary.last_message == "and another one"
    assert summary.last_message_preview == "and anothe"


@pytest.mark.asyncio
async def test_unread_scoped_to_viewer(aggregator, store, engagements):
    await store.append("eng-a", CUSTOMER, PROVIDER, "for bob")

    alice = {s.conversation_id: s for s in await aggregator.list_for(CUSTOMER)}
    bob = {s.conversation_id: s for s in await aggregator.list_for(PROVIDER)}

    assert alice["eng-a"].unread_count == 0
    assert bob["eng-a"].unread_count == 1
    assert bob["eng-a"].counterpart.role == ParticipantRole.PROVIDER
    assert bob["eng-a"].counterpart.other_id == CUSTOMER
    # Bob is not part of eng-b.
    assert set(bob) == {"eng-a", "eng-c"}


@pytest.mark.asyncio
async def test_no_engagements(aggregator):
    assert await aggregator.list_for(OUTSIDER) == []


@pytest.mark.asyncio
async def test_refresh_one(aggregator, store, engagements):
    assert (await aggregator.refresh_one("eng-a", CUSTOMER)).unread_count == 0
    await store.append("eng-a", PROVIDER, CUSTOMER, "new")
    refreshed = await aggregator.refresh_one("eng-a", CUSTOMER)
    assert refreshed.unread_count == 1
    assert refreshed.last_message == "new"
    assert await aggregator.refresh_one("missing", CUSTOMER) is None
    assert await aggregator.refresh_one("eng-a", OUTSIDER) is None


@pytest.mark.asyncio
async def test_list_view_refresh_reorders(aggregator, store, engagements, clock):
    changes = []
    view = ConversationListView(aggregator, CUSTOMER, on_change=lambda v: changes.append(v.items))
    await view.load()
    assert [s.conversation_id for s in view.items] == ["eng-a", "eng-b", "eng-c"]

    await store.append("eng-b", OTHER_PROVIDER, CUSTOMER, "bump")
    await view.refresh("eng-b")

    assert [s.conversation_id for s in view.items] == ["eng-b", "eng-a", "eng-c"]
    assert view.get("eng-b").unread_count == 1
    assert len(changes) == 2


@pytest.mark.asyncio
async def test_list_view_request_refresh_runs_in_background(aggregator, store, engagements):
    view = ConversationListView(aggregator, CUSTOMER)
    await view.load()
    await store.append("eng-c", PROVIDER, CUSTOMER, "hi")

    view.request_refresh("eng-c")
    view.request_refresh("eng-c")
    await view.wait_idle()

    assert view.items[0].conversation_id == "eng-c"


@pytest.mark.asyncio
async def test_closed_list_view_ignores_refresh(aggregator, store, engagements):
    view = ConversationListView(aggregator, CUSTOMER)
    await view.load()
    view.close()
    await store.append("eng-c", PROVIDER, CUSTOMER, "hi")

    view.request_refresh("eng-c")
    await view.refresh("eng-c")

    assert view.get("eng-c").last_message is None


@pytest.mark.asyncio
async def test_slow_load_keeps_newer_entry_refresh(store, engagement_repo, engagements):
    aggregator = HeldAggregator(store, engagement_repo)
    view = ConversationListView(aggregator, CUSTOMER)

    loading = asyncio.create_task(view.load())
    await asyncio.wait_for(aggregator.read_done.wait(), 1)
    await store.append("eng-a", PROVIDER, CUSTOMER, "hi")
    await view.refresh("eng-a")
    assert view.get("eng-a").unread_count == 1

    aggregator.release.set()
    await loading

    assert view.get("eng-a").unread_count == 1
    assert view.get("eng-a").last_message == "hi"
    assert [s.conversation_id for s in view.items] == ["eng-a", "eng-b", "eng-c"]


@pytest.mark.asyncio
async def test_entry_refresh_older_than_load_is_dropped(store, engagement_repo, engagements):
    aggregator = ConversationAggregator(store, engagement_repo)
    view = ConversationListView(aggregator, CUSTOMER)
    release = asyncio.Event()
    original = aggregator.refresh_one

    async def held_refresh_one(conversation_id, viewer_id):
        summary = await original(conversation_id, viewer_id)
        await release.wait()
        return summary

    aggregator.refresh_one = held_refresh_one
    refreshing = asyncio.create_task(view.refresh("eng-b"))
    await asyncio.sleep(0.01)
    await store.append("eng-b", OTHER_PROVIDER, CUSTOMER, "newer")
    await view.load()

    release.set()
    await refreshing

    assert view.get("eng-b").last_message == "newer"
    assert view.get("eng-b").unread_count == 1
