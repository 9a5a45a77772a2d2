import asyncio
import json
from typing import Any, Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from marketchat.config import get_settings
from marketchat.database.connection import mongo_db_dependency
from marketchat.services.chat_session import ChatSession, SessionState
from marketchat.services.conversation_aggregator import ConversationListView
from marketchat.services.unread_badge import UnreadBadge
from marketchat.services.viewer_session import ViewerSession
from marketchat.utils.errors import InvalidSessionState, NotAuthorized, TransientIOError, ValidationError
from marketchat.utils.logger import get_logger
from marketchat.utils.realtime_bus import get_bus
from marketchat.utils.websocket_manager import Connection, ConnectionManager


logger = get_logger(__name__)

router = APIRouter(tags=["chat"])
manager = ConnectionManager()


def conversations_frame(view: ConversationListView) -> Dict[str, Any]:
    return {"type": "conversations", "items": [s.model_dump(mode="json") for s in view.items]}


def unread_frame(badge: UnreadBadge) -> Dict[str, Any]:
    return {"type": "unread", "count": badge.count}


def messages_frame(chat: ChatSession) -> Dict[str, Any]:
    return {
        "type": "messages",
        "conversation_id": chat.conversation_id,
        "title": chat.title,
        "counterpart": chat.counterpart.model_dump(mode="json") if chat.counterpart else None,
        "state": chat.state.value,
        "error": chat.error,
        "items": [m.model_dump(mode="json") for m in chat.messages],
    }


def error_frame(detail: str) -> Dict[str, Any]:
    return {"type": "error", "detail": detail}


async def handle_command(connection: Connection, viewer: ViewerSession, msg: Dict[str, Any]) -> None:
    kind = msg.get("type")
    if kind == "open":
        conversation_id = msg.get("conversation_id")
        if not conversation_id:
            connection.push(error_frame("conversation_id required"))
            return
        try:
            await viewer.open_chat(str(conversation_id))
        except NotAuthorized as exc:
            connection.push(error_frame(str(exc)))
        return

    if kind == "send":
        if viewer.chat is None:
            connection.push(error_frame("No conversation open"))
            return
        try:
            message = await viewer.chat.send(msg.get("content", ""))
        except (ValidationError, NotAuthorized, InvalidSessionState) as exc:
            connection.push(error_frame(str(exc)))
            return
        if message is not None:
            connection.push({"type": "sent", "message": message.model_dump(mode="json")})
        return

    if kind == "close":
        await viewer.close_chat()
        return

    if kind == "refresh":
        try:
            await viewer.conversations.load()
            await viewer.badge.refresh()
        except TransientIOError as exc:
            connection.push(error_frame(str(exc)))
        chat = viewer.chat
        if chat is not None:
            if chat.state is SessionState.ERROR:
                try:
                    await chat.retry()
                except NotAuthorized as exc:
                    await viewer.close_chat()
                    connection.push(error_frame(str(exc)))
            else:
                await chat.refresh()
        return

    connection.push(error_frame(f"Unknown command: {kind}"))


@router.websocket("/ws/chat")
async def chat_socket(websocket: WebSocket, db=Depends(mongo_db_dependency), bus=Depends(get_bus)):
    user_id = websocket.query_params.get("user_id")
    if not user_id:
        await websocket.close(code=4401)
        return

    connection = await manager.connect(user_id, websocket)
    pump_task = asyncio.create_task(connection.pump())
    viewer = ViewerSession.from_database(
        user_id,
        db,
        bus,
        settings=get_settings(),
        on_list_change=lambda view: connection.push(conversations_frame(view)),
        on_badge_change=lambda badge: connection.push(unread_frame(badge)),
        on_chat_change=lambda chat: connection.push(messages_frame(chat)),
    )
    connection.viewer = viewer
    try:
        await viewer.start()
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                connection.push(error_frame("Invalid frame"))
                continue
            if not isinstance(msg, dict):
                connection.push(error_frame("Invalid frame"))
                continue
            await handle_command(connection, viewer, msg)
    except WebSocketDisconnect:
        logger.debug("Viewer %s disconnected", user_id)
    except TransientIOError as exc:
        logger.warning("Closing socket for %s: %s", user_id, exc)
        await websocket.close(code=1011)
    finally:
        await manager.disconnect(connection)
        pump_task.cancel()
        await asyncio.gather(pump_task, return_exceptions=True)
