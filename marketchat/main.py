from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from marketchat.config import get_settings
from marketchat.database.connection import close_mongo_connection, connect_to_mongo, get_database
from marketchat.repositories.engagement_repository import EngagementRepository
from marketchat.repositories.message_repository import MessageRepository
from marketchat.routers.chat import router as chat_router
from marketchat.routers.conversations import router as conversations_router
from marketchat.utils.errors import (
    ConversationNotFound,
    InvalidSessionState,
    NotAuthorized,
    TransientIOError,
    ValidationError,
)
from marketchat.utils.realtime_bus import close_bus


@asynccontextmanager
async def lifespan(app: FastAPI):

    await connect_to_mongo()
    db = get_database()
    await MessageRepository(db).ensure_indexes()
    await EngagementRepository(db).ensure_indexes()
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


def create_app(testing: bool = False) -> FastAPI:
    settings = get_settings()
    testing = testing or settings.is_test
    app = FastAPI(title=settings.app_name, lifespan=None if testing else lifespan)

    # Handlers resolve along the MRO: ConversationNotFound maps to 404, not 403.
    app.add_exception_handler(ConversationNotFound, _error_handler(404))
    app.add_exception_handler(NotAuthorized, _error_handler(403))
    app.add_exception_handler(ValidationError, _error_handler(422))
    app.add_exception_handler(InvalidSessionState, _error_handler(409))
    app.add_exception_handler(TransientIOError, _error_handler(503))

    app.include_router(conversations_router)
    app.include_router(chat_router)

    @app.get("/")
    async def root():
        return {"service": get_settings().app_name}

    return app


app = create_app()
