from fastapi import APIRouter, Depends, HTTPException

from chatsync.client import ChatClient
from chatsync.errors import ChatSyncError
from chatsync.schemas.user import UserPublic
from chatsync.utils.dependencies import get_client, get_current_user_id


router = APIRouter(prefix="/users", tags=["users"])


@router.get("")
async def list_users(client: ChatClient = Depends(get_client), user_id: str = Depends(get_current_user_id)):
    try:
        users = await client.users.list_contacts(exclude_user_id=user_id)
    except ChatSyncError as exc:
        raise HTTPException(status_code=503, detail=f"Error fetching users: {exc}")
    return {"items": [UserPublic(**u.model_dump(include={"id", "name", "email", "photo_url"})) for u in users]}
