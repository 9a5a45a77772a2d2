from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from marketchat.database.connection import translate_driver_errors
from marketchat.models.message import MessageDocument


# Total order of a conversation: created_at, then _id for equal timestamps.
HISTORY_SORT = [("created_at", ASCENDING), ("_id", ASCENDING)]
LATEST_SORT = [("created_at", DESCENDING), ("_id", DESCENDING)]


def _normalize(doc: Dict[str, Any]) -> MessageDocument:
    doc["_id"] = str(doc.get("_id"))
    created_at = doc.get("created_at")
    if isinstance(created_at, datetime) and created_at.tzinfo is None:
        doc["created_at"] = created_at.replace(tzinfo=timezone.utc)
    return doc


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        with translate_driver_errors("ensure_indexes"):
            await self.collection.create_index(
                [("conversation_id", ASCENDING), ("created_at", ASCENDING), ("_id", ASCENDING)]
            )
            await self.collection.create_index(
                [("receiver_id", ASCENDING), ("read", ASCENDING), ("conversation_id", ASCENDING)]
            )

    async def insert(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
        created_at: datetime,
    ) -> MessageDocument:
        doc: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "content": content,
            "created_at": created_at,
            "read": False,
        }
        with translate_driver_errors("insert"):
            result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _normalize(doc)

    async def list_by_conversation(self, conversation_id: str) -> List[MessageDocument]:
        with translate_driver_errors("list_by_conversation"):
            cur = self.collection.find({"conversation_id": conversation_id}).sort(HISTORY_SORT)
            items = await cur.to_list(length=None)
        return [_normalize(it) for it in items]

    async def latest(self, conversation_id: str) -> Optional[MessageDocument]:
        with translate_driver_errors("latest"):
            cur = self.collection.find({"conversation_id": conversation_id}).sort(LATEST_SORT).limit(1)
            items = await cur.to_list(length=1)
        return _normalize(items[0]) if items else None

    async def count(self, conversation_id: str) -> int:
        with translate_driver_errors("count"):
            return await self.collection.count_documents({"conversation_id": conversation_id})

    async def count_unread(self, conversation_id: str, receiver_id: str) -> int:
        with translate_driver_errors("count_unread"):
            return await self.collection.count_documents(
                {"conversation_id": conversation_id, "receiver_id": receiver_id, "read": False}
            )

    async def count_unread_for_receiver(self, receiver_id: str) -> int:
        with translate_driver_errors("count_unread_for_receiver"):
            return await self.collection.count_documents({"receiver_id": receiver_id, "read": False})

    async def mark_read(self, conversation_id: str, receiver_id: str) -> int:
        # Predicate update, not an increment: overlapping calls cannot lose updates.
        with translate_driver_errors("mark_read"):
            result = await self.collection.update_many(
                {"conversation_id": conversation_id, "receiver_id": receiver_id, "read": False},
                {"$set": {"read": True}},
            )
        return result.modified_count or 0
