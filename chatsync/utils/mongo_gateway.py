import logging
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import AutoReconnect, ConnectionFailure, NetworkTimeout, PyMongoError

from chatsync.errors import BackendError, TransientNetworkError
from chatsync.utils.gateway import BusBackedGateway, Document, Increment, Query, split_path

logger = logging.getLogger(__name__)

PARENT_FIELD = "_parent"

_TRANSIENT_ERRORS = (AutoReconnect, ConnectionFailure, NetworkTimeout)


def _wrap(exc: PyMongoError):
    if isinstance(exc, _TRANSIENT_ERRORS):
        return TransientNetworkError(str(exc))
    return BackendError(str(exc))


def _locate(collection_path: str) -> Tuple[str, str]:
    """Map ``chats/<id>/messages`` to collection ``messages`` and parent ``chats/<id>``."""
    parts = collection_path.strip("/").split("/")
    return parts[-1], "/".join(parts[:-1])


class MongoGateway(BusBackedGateway):
    """Gateway over MongoDB.

    Subcollection documents live in a collection named after the last path
    segment and carry their parent document path in ``_parent``.
    """

    def __init__(self, db: AsyncIOMotorDatabase, bus, client: Optional[AsyncIOMotorClient] = None) -> None:
        super().__init__(bus)
        self._db = db
        self._client = client

    @classmethod
    def connect(cls, url: str, db_name: str, bus, timeout_ms: int = 5000) -> "MongoGateway":
        client = AsyncIOMotorClient(url, serverSelectionTimeoutMS=timeout_ms)
        return cls(client[db_name], bus, client=client)

    def _collection(self, collection_path: str):
        name, _ = _locate(collection_path)
        return self._db[name]

    async def ensure_indexes(self) -> None:
        try:
            await self._db["chats"].create_index([("participants", ASCENDING)])
            await self._db["chats"].create_index([("last_message_at", DESCENDING)])
            await self._db["messages"].create_index([(PARENT_FIELD, ASCENDING), ("timestamp", ASCENDING)])
        except PyMongoError as exc:
            raise _wrap(exc) from exc

    def _to_document(self, collection_path: str, raw: Dict[str, Any]) -> Document:
        doc_id = str(raw.pop("_id"))
        raw.pop(PARENT_FIELD, None)
        return Document(id=doc_id, path=f"{collection_path.strip('/')}/{doc_id}", data=raw)

    async def get_document(self, path: str) -> Optional[Document]:
        collection_path, doc_id = split_path(path)
        _, parent = _locate(collection_path)
        try:
            raw = await self._collection(collection_path).find_one({"_id": doc_id, PARENT_FIELD: parent})
        except PyMongoError as exc:
            raise _wrap(exc) from exc
        if raw is None:
            return None
        return self._to_document(collection_path, raw)

    async def set_document(self, path: str, value: Dict[str, Any]) -> None:
        collection_path, doc_id = split_path(path)
        _, parent = _locate(collection_path)
        doc = {**value, "_id": doc_id, PARENT_FIELD: parent}
        try:
            await self._collection(collection_path).replace_one({"_id": doc_id}, doc, upsert=True)
        except PyMongoError as exc:
            raise _wrap(exc) from exc
        await self._notify(collection_path)

    async def update_fields(self, path: str, fields: Dict[str, Any]) -> None:
        collection_path, doc_id = split_path(path)
        update: Dict[str, Dict[str, Any]] = {}
        for name, value in fields.items():
            if isinstance(value, Increment):
                update.setdefault("$inc", {})[name] = value.amount
            else:
                update.setdefault("$set", {})[name] = value
        try:
            result = await self._collection(collection_path).update_one({"_id": doc_id}, update)
        except PyMongoError as exc:
            raise _wrap(exc) from exc
        if not result.matched_count:
            raise BackendError(f"No document to update at {path}")
        await self._notify(collection_path)

    async def add_document(self, collection: str, value: Dict[str, Any]) -> str:
        _, parent = _locate(collection)
        doc_id = str(ObjectId())
        doc = {**value, "_id": doc_id, PARENT_FIELD: parent}
        try:
            await self._collection(collection).insert_one(doc)
        except PyMongoError as exc:
            raise _wrap(exc) from exc
        await self._notify(collection)
        return doc_id

    async def delete_document(self, path: str) -> None:
        collection_path, doc_id = split_path(path)
        try:
            result = await self._collection(collection_path).delete_one({"_id": doc_id})
        except PyMongoError as exc:
            raise _wrap(exc) from exc
        if result.deleted_count:
            await self._notify(collection_path)

    async def query(self, query: Query) -> List[Document]:
        _, parent = _locate(query.collection)
        criteria: Dict[str, Any] = {PARENT_FIELD: parent}
        if query.array_contains is not None:
            field_name, value = query.array_contains
            criteria[field_name] = {"$in": [value]}
        cursor = self._collection(query.collection).find(criteria)
        if query.order_by:
            cursor = cursor.sort([(query.order_by, DESCENDING if query.descending else ASCENDING), ("_id", DESCENDING)])
        if query.limit:
            cursor = cursor.limit(query.limit)
        try:
            items = await cursor.to_list(length=query.limit)
        except PyMongoError as exc:
            raise _wrap(exc) from exc
        return [self._to_document(query.collection, it) for it in items]

    async def close(self) -> None:
        await self._bus.close()
        if self._client is not None:
            self._client.close()
