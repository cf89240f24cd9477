from fastapi import Depends, HTTPException, Request, status

from chatsync.client import ChatClient


def get_client(request: Request) -> ChatClient:
    return request.app.state.client


def get_current_user_id(client: ChatClient = Depends(get_client)) -> str:
    user_id = client.user_id
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not signed in")
    return user_id
