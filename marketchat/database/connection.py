from contextlib import contextmanager
from typing import Iterator, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure

from marketchat.config import get_settings
from marketchat.utils.errors import TransientIOError
from marketchat.utils.logger import get_logger


logger = get_logger(__name__)

_client: Optional[AsyncIOMotorClient] = None


async def connect_to_mongo() -> None:
    global _client
    if _client is not None:
        return
    settings = get_settings()
    _client = AsyncIOMotorClient(settings.mongo_url, tz_aware=True)
    logger.info("Connected to MongoDB database %s", settings.mongo_db_name)


async def close_mongo_connection() -> None:
    global _client
    if _client is None:
        return
    _client.close()
    _client = None
    logger.info("MongoDB connection closed")


def get_database() -> AsyncIOMotorDatabase:
    if _client is None:
        raise RuntimeError("MongoDB client is not connected")
    return _client[get_settings().mongo_db_name]


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()


@contextmanager
def translate_driver_errors(operation: str) -> Iterator[None]:
    """Re-raise lost-connection driver errors as TransientIOError."""
    try:
        yield
    except ConnectionFailure as exc:
        logger.warning("MongoDB unavailable during %s: %s", operation, exc)
        raise TransientIOError(f"store unavailable during {operation}") from exc
