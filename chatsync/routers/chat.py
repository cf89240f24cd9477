from fastapi import APIRouter, Depends, HTTPException

from chatsync.client import ChatClient
from chatsync.errors import ChatSyncError
from chatsync.schemas.message import MessageAck, SendMessageRequest, SendVoiceMessageRequest
from chatsync.utils.dependencies import get_client, get_current_user_id


router = APIRouter(prefix="/messages", tags=["chat"])


@router.post("", response_model=MessageAck)
async def send_message(body: SendMessageRequest, client: ChatClient = Depends(get_client), user_id: str = Depends(get_current_user_id)):
    try:
        return await client.chat.send_message(body.conversation_id, user_id, body.receiver_id, body.text)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ChatSyncError as exc:
        raise HTTPException(status_code=503, detail=f"Error sending message: {exc}")


@router.post("/voice", response_model=MessageAck)
async def send_voice_message(body: SendVoiceMessageRequest, client: ChatClient = Depends(get_client), user_id: str = Depends(get_current_user_id)):
    try:
        return await client.chat.send_voice_message(
            body.conversation_id, user_id, body.receiver_id, body.audio_url, body.duration
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except ChatSyncError as exc:
        raise HTTPException(status_code=503, detail=f"Error sending voice message: {exc}")


@router.get("/{conversation_id}")
async def get_history(conversation_id: str, client: ChatClient = Depends(get_client), user_id: str = Depends(get_current_user_id)):
    try:
        messages = await client.chat.get_history(conversation_id, user_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ChatSyncError as exc:
        raise HTTPException(status_code=503, detail=f"Error fetching messages: {exc}")
    return {"items": [m.model_dump(mode="json") for m in messages]}
