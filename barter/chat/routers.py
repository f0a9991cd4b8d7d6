import json
import asyncio
import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Depends, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from supabase import Client

from barter.core.supabase_client import get_supabase
from barter.core.dependencies import (
    CurrentUser,
    get_current_user,
    authenticate_websocket,
    get_realtime,
    WS_FORBIDDEN,
    WS_NOT_FOUND,
)
from barter.core.realtime import LiveUpdateListener

from .service import (
    BACKEND_ERRORS,
    ChatSession,
    ConversationInbox,
    aggregate_conversations,
    chat_path,
    fetch_messages,
    get_or_create_conversation,
)
from .schemas import (
    SendMessageModel,
    SendMessageResponseModel,
    CreateDirectConversationModel,
    CreateDirectConversationResponseModel,
    GetConversationsResponseModel,
    ChatSessionResponseModel,
    ConversationListEntry,
    MessageData,
)


logger = logging.getLogger(__name__)
router = APIRouter()

WS_INTERNAL_ERROR = 1011


def _load_session(client: Client, conversation_id: str, user_id: str) -> ChatSession:
    return ChatSession(client, conversation_id, user_id).load()


@router.get(
    "/conversations",
    response_model=GetConversationsResponseModel,
    status_code=200,
)
def get_conversations(
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Retrieve the conversation list for the authenticated user.

    Every conversation where the caller is either participant, newest first.
    Each entry names the *other* participant and carries the last-message
    preview when one exists.

    **Returns**
    - `conversations`: list of entries
        - `conversationId`, `path` (where the chat is opened)
        - `otherUser`: `id`, `fullName`, `avatarUrl`
        - `lastMessage`: `content`, `timestamp`, `isFromMe` or null
        - `timestamp`: last message time, else conversation creation time

    **Errors**
    - 401: Invalid or expired token
    - 500: Database or unexpected server error
    """
    try:
        return {"conversations": aggregate_conversations(client, user.id)}

    except HTTPException:
        raise

    except Exception:
        logger.exception(f"conversations_fetch_failed user_id={user.id}")
        raise HTTPException(status_code=500, detail="Failed to fetch conversations")


@router.post(
    "/conversations/direct",
    response_model=CreateDirectConversationResponseModel,
    status_code=200,
)
def get_or_create_direct_conversation(
    data: CreateDirectConversationModel,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Get or create the 1-on-1 conversation with another user.

    **Input**
    - `receiver_id`: UUID of the other user

    **Returns**
    - `conversation_id`, `is_new`, `path`

    **Errors**
    - 400: Receiver is the caller
    - 401: Unauthorized
    - 500: Database error
    """
    try:
        conversation, is_new = get_or_create_conversation(
            client, user.id, str(data.receiver_id)
        )
        return {
            "conversation_id": conversation["id"],
            "is_new": is_new,
            "path": chat_path(conversation["id"]),
        }

    except HTTPException:
        raise

    except Exception:
        logger.exception(f"direct_conversation_failed user_id={user.id}")
        raise HTTPException(
            status_code=500,
            detail="Failed to create or fetch conversation.",
        )


@router.get(
    "/conversations/{conversation_id}",
    response_model=ChatSessionResponseModel,
    status_code=200,
)
def get_chat_session(
    conversation_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Snapshot of one chat: the conversation, both participant profiles, the
    other user relative to the caller and the full message history, oldest
    first.

    **Errors**
    - 401: Invalid or expired token
    - 403: Caller is not a participant
    - 404: Conversation does not exist
    - 500: Database or unexpected server error
    """
    try:
        return _load_session(client, conversation_id, user.id).snapshot()

    except HTTPException:
        raise

    except Exception:
        logger.exception(f"chat_session_failed conversation_id={conversation_id}")
        raise HTTPException(status_code=500, detail="Failed to retrieve messages")


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=SendMessageResponseModel,
    status_code=201,
)
def post_message(
    conversation_id: UUID,
    data: SendMessageModel,
    user: CurrentUser = Depends(get_current_user),
    client: Client = Depends(get_supabase),
):
    """
    Send a message to a conversation the caller takes part in.

    Content is trimmed; blank content inserts nothing and answers
    `{"sent": false}`. The new row is not pushed back here, open chat
    sockets receive it from the live stream.

    **Errors**
    - 403: Caller is not a participant
    - 404: Conversation not found
    - 500: Database error
    """
    try:
        session = ChatSession(client, conversation_id, user.id)
        # Membership check only, the history is not needed to send
        session.ensure_member()

        message = session.send(data.content)
        return {"sent": message is not None, "message": message}

    except HTTPException:
        raise

    except Exception:
        logger.exception(f"send_message_failed conversation_id={conversation_id}")
        raise HTTPException(status_code=500, detail="Failed to send message.")


# --- Live views ---


def _conversations_frame(inbox: ConversationInbox) -> dict:
    return {
        "type": "conversations",
        "loading": inbox.loading,
        "error": inbox.error,
        "conversations": [
            ConversationListEntry.model_validate(entry).model_dump(mode="json", by_alias=True)
            for entry in inbox.entries
        ],
    }


def _session_frame(session: ChatSession) -> dict:
    return {
        "type": "session",
        **ChatSessionResponseModel.model_validate(session.snapshot()).model_dump(mode="json"),
    }


def _message_frame(session: ChatSession, message: dict) -> dict:
    """
    A new message plus where it sits in the history. Late arrivals can land
    before messages already sent, so clients insert at `index` (equivalently
    after `after_id`, None meaning first) rather than appending.
    """
    index = session.position(message)
    return {
        "type": "message",
        "index": index,
        "after_id": str(session.messages[index - 1]["id"]) if index else None,
        "message": MessageData.model_validate(message).model_dump(mode="json"),
    }


class SocketSender:
    """Serialises frames onto one socket shared by the listener and the receive loop."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.lock = asyncio.Lock()

    async def send(self, frame: dict) -> None:
        async with self.lock:
            await self.websocket.send_json(frame)


@router.websocket("/ws/conversations")
async def conversations_socket(
    websocket: WebSocket,
    client: Client = Depends(get_supabase),
):
    """
    Live conversation list.

    Sends the list on connect and again after every change to the messages
    table. The subscription lives as long as the socket.
    """
    user = await authenticate_websocket(websocket)
    if user is None:
        return

    realtime = get_realtime(websocket)
    if realtime is None:
        await websocket.close(code=WS_INTERNAL_ERROR)
        return

    await websocket.accept()
    inbox = ConversationInbox(client, user.id)
    # One refresh-and-send at a time, so the last frame comes from the last refresh
    refreshing = asyncio.Lock()

    async def push(_payload=None):
        async with refreshing:
            await run_in_threadpool(inbox.refresh)
            await websocket.send_json(_conversations_frame(inbox))

    listener = LiveUpdateListener(
        realtime,
        f"conversations:{user.id}",
        on_change=push,
        table="messages",
        event="*",
    )

    try:
        await listener.start()
        await push()
        while True:
            # Nothing is expected from the client; reading detects disconnects
            await websocket.receive_text()

    except WebSocketDisconnect:
        logger.info(f"conversations_socket_closed user_id={user.id}")

    except Exception:
        logger.exception(f"conversations_socket_failed user_id={user.id}")
        await websocket.close(code=WS_INTERNAL_ERROR)

    finally:
        await listener.stop()


@router.websocket("/ws/conversations/{conversation_id}")
async def chat_socket(
    websocket: WebSocket,
    conversation_id: UUID,
    client: Client = Depends(get_supabase),
):
    """
    Live chat for one conversation.

    Server frames:
    - `{"type": "session", ...}` once, with the snapshot
    - `{"type": "message", "index", "after_id", "message": {...}}` for each
      new message, placed by creation time
    - `{"type": "sent"}` / `{"type": "ignored"}` / `{"type": "error", "detail"}`
      answering a send

    Client frames:
    - `{"type": "send", "content": "..."}`
    """
    user = await authenticate_websocket(websocket)
    if user is None:
        return

    realtime = get_realtime(websocket)
    if realtime is None:
        await websocket.close(code=WS_INTERNAL_ERROR)
        return

    try:
        session = await run_in_threadpool(_load_session, client, conversation_id, user.id)
    except HTTPException as e:
        await websocket.close(code=WS_NOT_FOUND if e.status_code == 404 else WS_FORBIDDEN)
        return
    except Exception:
        logger.exception(f"chat_session_failed conversation_id={conversation_id}")
        await websocket.close(code=WS_INTERNAL_ERROR)
        return

    await websocket.accept()
    sender = SocketSender(websocket)

    # Live events wait until the snapshot has gone out
    ready = asyncio.Event()

    async def on_change(payload):
        await ready.wait()
        message = session.apply_change(payload)
        if message is not None:
            await sender.send(_message_frame(session, message))

    listener = LiveUpdateListener(
        realtime,
        f"messages:{conversation_id}:{user.id}",
        on_change=on_change,
        table="messages",
        event="INSERT",
        filter=f"conversation_id=eq.{conversation_id}",
    )

    try:
        await listener.start()

        # Catch up on anything sent between the first load and the subscription
        session.merge(await run_in_threadpool(fetch_messages, client, conversation_id))
        await sender.send(_session_frame(session))
        ready.set()

        while True:
            await _handle_client_frame(sender, session, await websocket.receive_text())

    except WebSocketDisconnect:
        logger.info(f"chat_socket_closed conversation_id={conversation_id} user_id={user.id}")

    except Exception:
        logger.exception(f"chat_socket_failed conversation_id={conversation_id}")
        await websocket.close(code=WS_INTERNAL_ERROR)

    finally:
        await listener.stop()


async def _handle_client_frame(sender: SocketSender, session: ChatSession, raw: str):
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        await sender.send({"type": "error", "detail": "Frames must be JSON."})
        return

    if not isinstance(frame, dict) or frame.get("type") != "send":
        await sender.send({"type": "error", "detail": "Unknown frame type."})
        return

    content = frame.get("content")
    if not isinstance(content, str):
        await sender.send({"type": "error", "detail": "Content must be text."})
        return

    try:
        message = await run_in_threadpool(session.send, content)
    except BACKEND_ERRORS as e:
        logger.error(
            f"send_message_failed conversation_id={session.conversation_id} error={e}"
        )
        await sender.send({"type": "error", "detail": "Failed to send message."})
        return

    if message is None:
        await sender.send({"type": "ignored"})
    else:
        await sender.send({"type": "sent", "message_id": str(message["id"])})
