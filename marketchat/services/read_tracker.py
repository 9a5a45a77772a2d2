from marketchat.repositories.message_repository import MessageRepository
from marketchat.schemas.events import ChangeEvent
from marketchat.services.message_store import publish_change
from marketchat.utils.logger import get_logger


logger = get_logger(__name__)


class ReadTracker:

    def __init__(self, message_repo: MessageRepository, bus) -> None:
        self._messages = message_repo
        self._bus = bus

    async def mark_read(self, conversation_id: str, receiver_id: str) -> int:
        """Flip every unread message addressed to receiver_id in the conversation.

        Only rows where the caller is the receiver are touched, and only from
        unread to read, so repeating the call affects nothing.
        """
        affected = await self._messages.mark_read(conversation_id, receiver_id)
        logger.debug("Marked %d message(s) read in %s for %s", affected, conversation_id, receiver_id)
        if affected:
            await publish_change(
                self._bus,
                ChangeEvent(kind="update", conversation_id=conversation_id, receiver_id=receiver_id),
            )
        return affected
