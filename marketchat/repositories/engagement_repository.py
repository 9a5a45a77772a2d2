from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from marketchat.database.connection import translate_driver_errors
from marketchat.schemas.conversation import Engagement


class EngagementRepository:
    """Read access to engagement records owned by the marketplace side."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["engagements"]

    async def ensure_indexes(self) -> None:
        with translate_driver_errors("ensure_indexes"):
            await self.collection.create_index([("customer_id", ASCENDING), ("created_at", ASCENDING)])
            await self.collection.create_index([("provider_id", ASCENDING), ("created_at", ASCENDING)])

    async def save(self, engagement: Engagement) -> Engagement:
        doc = engagement.to_document()
        with translate_driver_errors("save"):
            await self.collection.replace_one({"_id": doc["_id"]}, doc, upsert=True)
        return engagement

    async def get(self, conversation_id: str) -> Optional[Engagement]:
        with translate_driver_errors("get"):
            doc = await self.collection.find_one({"_id": conversation_id})
        return Engagement.from_document(doc) if doc else None

    async def list_for_participant(self, user_id: str) -> List[Engagement]:
        query = {"$or": [{"customer_id": user_id}, {"provider_id": user_id}]}
        with translate_driver_errors("list_for_participant"):
            cur = self.collection.find(query).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
            items = await cur.to_list(length=None)
        return [Engagement.from_document(it) for it in items]
