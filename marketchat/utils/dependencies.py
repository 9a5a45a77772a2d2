from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from marketchat.config import get_settings
from marketchat.database.connection import mongo_db_dependency
from marketchat.repositories.engagement_repository import EngagementRepository
from marketchat.repositories.message_repository import MessageRepository
from marketchat.services.conversation_aggregator import ConversationAggregator
from marketchat.services.message_store import MessageStore
from marketchat.services.read_tracker import ReadTracker
from marketchat.utils.realtime_bus import get_bus


async def get_current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    # Identity is established upstream by the auth collaborator.
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return x_user_id


def get_engagement_repository(db=Depends(mongo_db_dependency)) -> EngagementRepository:
    return EngagementRepository(db)


async def get_message_store(
    db=Depends(mongo_db_dependency),
    engagements: EngagementRepository = Depends(get_engagement_repository),
    bus=Depends(get_bus),
) -> MessageStore:
    return MessageStore(MessageRepository(db), engagements, bus, max_length=get_settings().message_max_length)


async def get_read_tracker(db=Depends(mongo_db_dependency), bus=Depends(get_bus)) -> ReadTracker:
    return ReadTracker(MessageRepository(db), bus)


def get_aggregator(
    store: MessageStore = Depends(get_message_store),
    engagements: EngagementRepository = Depends(get_engagement_repository),
) -> ConversationAggregator:
    return ConversationAggregator(store, engagements, preview_length=get_settings().preview_length)
