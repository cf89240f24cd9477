import logging
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError

from chatsync.errors import DecodeError
from chatsync.models.user import UserDocument
from chatsync.schemas.user import IdentityUser, User
from chatsync.utils.gateway import DataGateway, Document, Query

logger = logging.getLogger(__name__)

USERS = "users"


def decode_user(doc: Document) -> User:
    try:
        return User.model_validate({**doc.data, "id": doc.id})
    except ValidationError as exc:
        raise DecodeError(doc.path, str(exc)) from exc


class UserRepository:

    def __init__(self, gateway: DataGateway) -> None:
        self._gateway = gateway

    def _path(self, user_id: str) -> str:
        return f"{USERS}/{user_id}"

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        doc = await self._gateway.get_document(self._path(user_id))
        if doc is None:
            return None
        return decode_user(doc)

    async def upsert_profile(self, identity: IdentityUser) -> None:
        path = self._path(identity.id)
        existing = await self._gateway.get_document(path)
        if existing is not None:
            await self._gateway.update_fields(path, {
                "email": identity.email or "",
                "name": identity.display_name or "",
                "photo_url": identity.photo_url,
            })
            return
        doc: UserDocument = {
            "name": identity.display_name or "",
            "email": identity.email or "",
            "photo_url": identity.photo_url,
            "created_at": datetime.now(timezone.utc),
            "is_verified": False,
        }
        await self._gateway.set_document(path, dict(doc))

    async def mark_verified(self, user_id: str) -> None:
        await self._gateway.update_fields(self._path(user_id), {"is_verified": True})

    async def delete_user(self, user_id: str) -> None:
        await self._gateway.delete_document(self._path(user_id))

    async def list_users(self, exclude_user_id: Optional[str] = None) -> List[User]:
        users = []
        for doc in await self._gateway.query(Query(USERS, order_by="name")):
            if doc.id == exclude_user_id:
                continue
            try:
                users.append(decode_user(doc))
            except DecodeError as exc:
                logger.warning("Skipping undecodable user: %s", exc)
        return users
