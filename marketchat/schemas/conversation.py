from datetime import datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, List, Mapping, Optional

from pydantic import BaseModel, Field

from marketchat.models.engagement import EngagementDocument
from marketchat.schemas.message import Message


# Sort position of a conversation without messages: below any real message.
NO_MESSAGE_TIME = datetime.min.replace(tzinfo=timezone.utc)

NO_MESSAGE_PREVIEW = "No messages yet"


class ParticipantRole(str, Enum):

    CUSTOMER = "customer"
    PROVIDER = "provider"


class Counterpart(BaseModel):
    """The viewer's role in a conversation and who is on the other side."""

    role: ParticipantRole
    other_id: str
    other_name: Optional[str] = None


class Engagement(BaseModel):
    """External record linking a customer and a provider under a title.

    One engagement is one conversation; its id is the conversation id.
    """

    conversation_id: str
    customer_id: str
    provider_id: str
    title: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    customer_name: Optional[str] = None
    provider_name: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Engagement":
        created_at = doc["created_at"]
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            conversation_id=str(doc["_id"]),
            customer_id=doc["customer_id"],
            provider_id=doc["provider_id"],
            title=doc.get("title", ""),
            created_at=created_at,
            customer_name=doc.get("customer_name"),
            provider_name=doc.get("provider_name"),
        )

    def to_document(self) -> EngagementDocument:
        return {
            "_id": self.conversation_id,
            "customer_id": self.customer_id,
            "provider_id": self.provider_id,
            "title": self.title,
            "created_at": self.created_at,
            "customer_name": self.customer_name,
            "provider_name": self.provider_name,
        }

    @property
    def participants(self) -> FrozenSet[str]:
        return frozenset((self.customer_id, self.provider_id))

    def display_name(self, user_id: str) -> Optional[str]:
        if user_id == self.customer_id:
            return self.customer_name
        if user_id == self.provider_id:
            return self.provider_name
        return None

    def label_senders(self, messages: List[Message]) -> List[Message]:
        return [m.model_copy(update={"sender_name": self.display_name(m.sender_id)}) for m in messages]

    def counterpart_for(self, viewer_id: str) -> Optional[Counterpart]:
        if viewer_id == self.customer_id:
            return Counterpart(
                role=ParticipantRole.CUSTOMER,
                other_id=self.provider_id,
                other_name=self.provider_name,
            )
        if viewer_id == self.provider_id:
            return Counterpart(
                role=ParticipantRole.PROVIDER,
                other_id=self.customer_id,
                other_name=self.customer_name,
            )
        return None


class ConversationSummary(BaseModel):

    conversation_id: str
    title: str
    counterpart: Counterpart
    last_message: Optional[str] = None
    last_message_preview: str = NO_MESSAGE_PREVIEW
    last_message_at: Optional[datetime] = None
    unread_count: int = 0
    engagement_created_at: datetime

    @property
    def sort_time(self) -> datetime:
        return self.last_message_at or NO_MESSAGE_TIME
