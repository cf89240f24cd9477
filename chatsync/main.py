from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from chatsync.client import ChatClient
from chatsync.config import get_settings
from chatsync.context import build_context
from chatsync.logging_config import setup_logging
from chatsync.routers.chat import router as chat_router
from chatsync.routers.conversations import router as conversations_router
from chatsync.routers.session import router as session_router
from chatsync.routers.users import router as users_router


def create_app(client: Optional[ChatClient] = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        setup_logging("Server", settings)
        app.state.client = client or ChatClient(build_context(settings))
        await app.state.client.start()
        try:
            yield
        finally:
            await app.state.client.shutdown()

    app = FastAPI(title=get_settings().app_name, lifespan=lifespan)

    app.include_router(session_router)
    app.include_router(conversations_router)
    app.include_router(chat_router)
    app.include_router(users_router)

    @app.get("/")
    async def root():
        client: ChatClient = app.state.client
        return {"state": str(client.session.state), "listening": client.directory.is_listening}

    return app


app = create_app()
