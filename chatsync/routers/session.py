from fastapi import APIRouter, Depends, HTTPException

from chatsync.client import ChatClient
from chatsync.schemas.user import SessionStatus, SignInRequest, VerifyCodeRequest
from chatsync.utils.dependencies import get_client


router = APIRouter(prefix="/session", tags=["session"])


def _status(client: ChatClient) -> SessionStatus:
    session = client.session
    return SessionStatus(
        state=str(session.state),
        is_authenticated=session.is_authenticated,
        user_id=session.user_id,
        error_message=session.error_message,
    )


@router.get("", response_model=SessionStatus)
async def get_session(client: ChatClient = Depends(get_client)):
    return _status(client)


@router.post("/sign-in", response_model=SessionStatus)
async def sign_in(body: SignInRequest, client: ChatClient = Depends(get_client)):
    try:
        await client.session.sign_in(body.credential)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _status(client)


@router.post("/verify", response_model=SessionStatus)
async def verify(body: VerifyCodeRequest, client: ChatClient = Depends(get_client)):
    try:
        await client.session.verify_code(body.code)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _status(client)


@router.post("/resend-code", response_model=SessionStatus)
async def resend_code(client: ChatClient = Depends(get_client)):
    try:
        await client.session.resend_code()
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _status(client)


@router.post("/validate", response_model=SessionStatus)
async def validate(client: ChatClient = Depends(get_client)):
    await client.session.validate()
    return _status(client)


@router.post("/sign-out", response_model=SessionStatus)
async def sign_out(client: ChatClient = Depends(get_client)):
    await client.screen.close()
    await client.session.sign_out()
    return _status(client)
