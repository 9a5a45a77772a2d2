from typing import List

from fastapi import APIRouter, Depends, status

from marketchat.repositories.engagement_repository import EngagementRepository
from marketchat.schemas.conversation import ConversationSummary, Engagement
from marketchat.schemas.message import Message, MessageCreate
from marketchat.services.conversation_aggregator import ConversationAggregator
from marketchat.services.message_store import MessageStore
from marketchat.services.read_tracker import ReadTracker
from marketchat.utils.dependencies import (
    get_aggregator,
    get_current_user,
    get_engagement_repository,
    get_message_store,
    get_read_tracker,
)
from marketchat.utils.errors import ConversationNotFound, NotAuthorized


router = APIRouter(prefix="/conversations", tags=["chat"])


async def resolve_engagement(
    conversation_id: str, viewer_id: str, engagements: EngagementRepository
) -> Engagement:
    engagement = await engagements.get(conversation_id)
    if engagement is None:
        raise ConversationNotFound(f"Conversation {conversation_id} not found")
    if viewer_id not in engagement.participants:
        raise NotAuthorized("Not a participant of this conversation")
    return engagement


@router.get("", response_model=List[ConversationSummary])
async def list_conversations(
    current_user: str = Depends(get_current_user),
    aggregator: ConversationAggregator = Depends(get_aggregator),
):
    return await aggregator.list_for(current_user)


@router.get("/unread")
async def unread_count(
    current_user: str = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
):
    return {"count": await store.count_unread_total(current_user)}


@router.get("/{conversation_id}/messages", response_model=List[Message])
async def list_messages(
    conversation_id: str,
    current_user: str = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
    engagements: EngagementRepository = Depends(get_engagement_repository),
):
    engagement = await resolve_engagement(conversation_id, current_user, engagements)
    return engagement.label_senders(await store.list_by_conversation(conversation_id))


@router.post("/{conversation_id}/messages", response_model=Message, status_code=status.HTTP_201_CREATED)
async def send_message(
    conversation_id: str,
    body: MessageCreate,
    current_user: str = Depends(get_current_user),
    store: MessageStore = Depends(get_message_store),
    engagements: EngagementRepository = Depends(get_engagement_repository),
):
    engagement = await resolve_engagement(conversation_id, current_user, engagements)
    counterpart = engagement.counterpart_for(current_user)
    message = await store.append(conversation_id, current_user, counterpart.other_id, body.content)
    return engagement.label_senders([message])[0]


@router.post("/{conversation_id}/read")
async def mark_read(
    conversation_id: str,
    current_user: str = Depends(get_current_user),
    tracker: ReadTracker = Depends(get_read_tracker),
    engagements: EngagementRepository = Depends(get_engagement_repository),
):
    await resolve_engagement(conversation_id, current_user, engagements)
    return {"updated": await tracker.mark_read(conversation_id, current_user)}
