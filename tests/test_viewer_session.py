"""Tests for ViewerSession wiring: list, badge and chat driven by live events."""

import pytest
import pytest_asyncio

from marketchat.services.chat_session import SessionState
from marketchat.services.viewer_session import ViewerSession
from marketchat.utils.errors import NotAuthorized
from marketchat.utils.realtime_bus import conversation_channel, receiver_channel
from tests.fixtures.engagement_fixtures import CUSTOMER, OTHER_PROVIDER, OUTSIDER, PROVIDER
from tests.helpers import eventually


@pytest_asyncio.fixture
async def viewer(store, read_tracker, engagement_repo, bus, settings, engagements):
    session = ViewerSession(CUSTOMER, store, read_tracker, engagement_repo, bus, settings=settings)
    await session.start()
    await session.notifier.start().wait_subscribed()
    yield session
    await session.sign_out()


@pytest.mark.asyncio
async def test_start_loads_list_and_badge(store, read_tracker, engagement_repo, bus, settings, engagements):
    await store.append("eng-b", OTHER_PROVIDER, CUSTOMER, "hello")
    frames = []
    session = ViewerSession(
        CUSTOMER,
        store,
        read_tracker,
        engagement_repo,
        bus,
        settings=settings,
        on_list_change=lambda view: frames.append(("list", [s.conversation_id for s in view.items])),
        on_badge_change=lambda badge: frames.append(("badge", badge.count)),
    )
    await session.start()

    assert frames == [("list", ["eng-b", "eng-a", "eng-c"]), ("badge", 1)]
    await session.sign_out()


@pytest.mark.asyncio
async def test_incoming_message_updates_list_and_badge(viewer, store, engagements, clock):
    clock.advance()
    await store.append("eng-c", PROVIDER, CUSTOMER, "on my way")

    await eventually(lambda: viewer.badge.count == 1)
    await eventually(lambda: viewer.conversations.items[0].conversation_id == "eng-c")
    assert viewer.conversations.get("eng-c").unread_count == 1


@pytest.mark.asyncio
async def test_open_chat_clears_unread(viewer, store, engagements):
    await store.append("eng-a", PROVIDER, CUSTOMER, "quote")
    await eventually(lambda: viewer.badge.count == 1)

    chat = await viewer.open_chat("eng-a")

    assert chat.state is SessionState.READY
    await eventually(lambda: viewer.badge.count == 0)
    await eventually(lambda: viewer.conversations.get("eng-a").unread_count == 0)


@pytest.mark.asyncio
async def test_open_chat_replaces_previous(viewer, engagements, bus):
    first = await viewer.open_chat("eng-a")
    second = await viewer.open_chat("eng-b")

    assert first.closed
    assert viewer.chat is second
    assert bus.subscriptions(conversation_channel("eng-a")) == []


@pytest.mark.asyncio
async def test_open_chat_not_authorized(store, read_tracker, engagement_repo, bus, settings, engagements):
    session = ViewerSession(OUTSIDER, store, read_tracker, engagement_repo, bus, settings=settings)
    await session.start()

    with pytest.raises(NotAuthorized):
        await session.open_chat("eng-a")

    assert session.chat is None
    assert session.conversations.items == []
    await session.sign_out()


@pytest.mark.asyncio
async def test_sign_out_tears_everything_down(store, read_tracker, engagement_repo, bus, settings, engagements):
    session = ViewerSession(CUSTOMER, store, read_tracker, engagement_repo, bus, settings=settings)
    await session.start()
    await session.notifier.start().wait_subscribed()
    await session.open_chat("eng-a")
    await eventually(lambda: len(bus.subscriptions(conversation_channel("eng-a"))) == 1)

    await session.sign_out()
    await session.sign_out()

    assert session.chat is None
    assert session.badge.count == 0
    assert bus.subscriptions(receiver_channel(CUSTOMER)) == []
    assert bus.subscriptions(conversation_channel("eng-a")) == []
