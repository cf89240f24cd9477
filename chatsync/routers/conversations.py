import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect

from chatsync.client import ChatClient
from chatsync.errors import ChatSyncError
from chatsync.schemas.conversation import ConversationSummaryOut, OpenConversationRequest
from chatsync.utils.dependencies import get_client, get_current_user_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("")
async def list_conversations(client: ChatClient = Depends(get_client), user_id: str = Depends(get_current_user_id)):
    directory = client.directory
    items = [ConversationSummaryOut.from_summary(s, user_id) for s in directory.summaries]
    return {"items": items, "is_loading": directory.is_loading, "error_message": directory.error_message}


@router.post("/open")
async def open_conversation(body: OpenConversationRequest, client: ChatClient = Depends(get_client), user_id: str = Depends(get_current_user_id)):
    try:
        conversation_id = await client.screen.open(user_id, body.other_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ChatSyncError as exc:
        raise HTTPException(status_code=503, detail=f"Error creating chat: {exc}")
    return {"conversation_id": conversation_id}


@router.post("/close")
async def close_conversation(client: ChatClient = Depends(get_client), user_id: str = Depends(get_current_user_id)):
    result = await client.screen.close()
    return {"closed": result is not None, "marked_read": bool(result)}


@router.post("/{conversation_id}/read")
async def mark_read(conversation_id: str, client: ChatClient = Depends(get_client), user_id: str = Depends(get_current_user_id)):
    try:
        await client.chat.ensure_participant(conversation_id, user_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ChatSyncError as exc:
        raise HTTPException(status_code=503, detail=f"Error loading chat: {exc}")
    result = await client.reconciler.mark_read(conversation_id, user_id)
    return {"ok": result.ok, "error": result.error}


@router.get("/active/messages")
async def active_messages(client: ChatClient = Depends(get_client), user_id: str = Depends(get_current_user_id)):
    screen = client.screen
    if screen.conversation_id is None:
        raise HTTPException(status_code=404, detail="No conversation is open")
    return {
        "conversation_id": screen.conversation_id,
        "items": [m.model_dump(mode="json") for m in screen.messages],
        "error_message": screen.error_message,
    }


@router.websocket("/ws")
async def conversations_socket(websocket: WebSocket):
    client: ChatClient = websocket.app.state.client
    user_id = client.user_id
    if user_id is None:
        await websocket.close(code=4401)
        return
    await websocket.accept()

    async def _push_updates():
        stream = client.directory.updates()
        try:
            async for summaries in stream:
                if client.user_id != user_id:
                    logger.info("Session of %s ended, closing conversation stream", user_id)
                    await websocket.close(code=4401)
                    return
                items = [ConversationSummaryOut.from_summary(s, user_id).model_dump(mode="json") for s in summaries]
                await websocket.send_text(json.dumps({"type": "conversations", "items": items}))
        finally:
            await stream.aclose()

    async def _read_keepalives():
        # client messages are only keep-alives; reading detects the disconnect
        while True:
            await websocket.receive_text()

    push_task = asyncio.create_task(_push_updates())
    read_task = asyncio.create_task(_read_keepalives())
    done, pending = await asyncio.wait({push_task, read_task}, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    for task in done:
        exc = task.exception()
        if isinstance(exc, WebSocketDisconnect):
            logger.debug("Conversation stream for %s closed", user_id)
        elif exc is not None:
            logger.warning("Conversation stream for %s failed: %s", user_id, exc)
