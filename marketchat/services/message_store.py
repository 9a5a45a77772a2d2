from datetime import datetime, timezone
from typing import Callable, List, Optional

from marketchat.repositories.engagement_repository import EngagementRepository
from marketchat.repositories.message_repository import MessageRepository
from marketchat.schemas.events import ChangeEvent
from marketchat.schemas.message import Message
from marketchat.utils.errors import ConversationNotFound, NotAuthorized, TransientIOError, ValidationError
from marketchat.utils.logger import get_logger
from marketchat.utils.realtime_bus import conversation_channel, receiver_channel


logger = get_logger(__name__)

DEFAULT_MAX_LENGTH = 1000


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_store_resolution(ts: datetime) -> datetime:
    # MongoDB keeps milliseconds; truncate so stored and returned values agree.
    return ts.replace(microsecond=ts.microsecond - ts.microsecond % 1000)


def validate_content(content: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Return the trimmed content or raise ValidationError."""
    if not isinstance(content, str):
        raise ValidationError("Message content must be text")
    trimmed = content.strip()
    if not trimmed:
        raise ValidationError("Message cannot be empty")
    if len(trimmed) > max_length:
        raise ValidationError("Message too long")
    return trimmed


class MessageStore:
    """Append-only message log; the single source of truth for history."""

    def __init__(
        self,
        message_repo: MessageRepository,
        engagement_repo: EngagementRepository,
        bus,
        max_length: int = DEFAULT_MAX_LENGTH,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._messages = message_repo
        self._engagements = engagement_repo
        self._bus = bus
        self._max_length = max_length
        self._clock = clock

    async def append(self, conversation_id: str, sender_id: str, receiver_id: str, content: str) -> Message:
        trimmed = validate_content(content, self._max_length)
        if sender_id == receiver_id:
            raise NotAuthorized("Sender and receiver must differ")
        engagement = await self._engagements.get(conversation_id)
        if engagement is None:
            raise ConversationNotFound(f"Conversation {conversation_id} not found")
        if frozenset((sender_id, receiver_id)) != engagement.participants:
            logger.warning(
                "Refused append to %s: %s -> %s are not its participants",
                conversation_id,
                sender_id,
                receiver_id,
            )
            raise NotAuthorized("Sender and receiver are not the conversation's participants")

        created_at = to_store_resolution(self._clock())
        latest = await self._messages.latest(conversation_id)
        if latest is not None and latest["created_at"] > created_at:
            created_at = latest["created_at"]

        doc = await self._messages.insert(conversation_id, sender_id, receiver_id, trimmed, created_at)
        message = Message.from_document(doc)
        logger.debug("Appended message %s to %s", message.id, conversation_id)

        await self._publish(ChangeEvent(kind="insert", conversation_id=conversation_id, receiver_id=receiver_id))
        return message

    async def list_by_conversation(self, conversation_id: str) -> List[Message]:
        docs = await self._messages.list_by_conversation(conversation_id)
        return [Message.from_document(d) for d in docs]

    async def latest(self, conversation_id: str) -> Optional[Message]:
        doc = await self._messages.latest(conversation_id)
        return Message.from_document(doc) if doc else None

    async def count(self, conversation_id: str) -> int:
        return await self._messages.count(conversation_id)

    async def count_unread(self, conversation_id: str, receiver_id: str) -> int:
        return await self._messages.count_unread(conversation_id, receiver_id)

    async def count_unread_total(self, receiver_id: str) -> int:
        return await self._messages.count_unread_for_receiver(receiver_id)

    async def _publish(self, event: ChangeEvent) -> None:
        await publish_change(self._bus, event)


async def publish_change(bus, event: ChangeEvent) -> None:
    """Fan a change out to the conversation and receiver channels.

    A failed publish leaves the write in place; subscribers converge on their
    next refresh.
    """
    payload = event.model_dump_json()
    try:
        await bus.publish(conversation_channel(event.conversation_id), payload)
        await bus.publish(receiver_channel(event.receiver_id), payload)
    except TransientIOError as exc:
        logger.warning("Change notification for %s not published: %s", event.conversation_id, exc)
