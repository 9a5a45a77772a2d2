from datetime import datetime, timedelta, timezone

import pytest_asyncio

from marketchat.schemas.conversation import Engagement


CUSTOMER = "alice"
PROVIDER = "bob"
OTHER_PROVIDER = "dave"
OUTSIDER = "carol"

BASE_TIME = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)


def make_engagement(conversation_id: str, customer_id: str = CUSTOMER, provider_id: str = PROVIDER, offset_days: int = 0, **kwargs) -> Engagement:
    return Engagement(
        conversation_id=conversation_id,
        customer_id=customer_id,
        provider_id=provider_id,
        title=kwargs.pop("title", f"Job {conversation_id}"),
        created_at=BASE_TIME + timedelta(days=offset_days),
        customer_name=kwargs.pop("customer_name", "Alice Customer"),
        provider_name=kwargs.pop("provider_name", "Bob Provider"),
        **kwargs,
    )


@pytest_asyncio.fixture
async def engagement(engagement_repo):
    """Alice (customer) and Bob (provider) on one job."""
    return await engagement_repo.save(make_engagement("eng-1", title="Fix the sink"))


@pytest_asyncio.fixture
async def engagements(engagement_repo):
    """Three conversations for Alice, created in order eng-a, eng-b, eng-c."""
    saved = []
    for i, (cid, provider) in enumerate([("eng-a", PROVIDER), ("eng-b", OTHER_PROVIDER), ("eng-c", PROVIDER)]):
        saved.append(
            await engagement_repo.save(
                make_engagement(cid, provider_id=provider, offset_days=i, provider_name=provider.title())
            )
        )
    return saved
