from datetime import datetime
from typing import Any, Mapping, Optional, Tuple

from pydantic import BaseModel


class Message(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    created_at: datetime
    read: bool = False
    # Filled from the engagement, never stored with the message.
    sender_name: Optional[str] = None

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "Message":
        return cls(
            id=str(doc["_id"]),
            conversation_id=str(doc["conversation_id"]),
            sender_id=doc["sender_id"],
            receiver_id=doc["receiver_id"],
            content=doc["content"],
            created_at=doc["created_at"],
            read=bool(doc.get("read", False)),
        )

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        # ObjectId hex strings compare in generation order
        return (self.created_at, self.id)


class MessageCreate(BaseModel):

    content: str
