import asyncio
import copy
from typing import Any, Dict, List, Optional

from bson import ObjectId

from chatsync.errors import BackendError
from chatsync.utils.gateway import BusBackedGateway, Document, Increment, Query, sort_documents, split_path
from chatsync.utils.realtime_bus import LocalBus


class MemoryGateway(BusBackedGateway):
    """Document store kept in process memory.

    Used when no MongoDB URL is configured. Every call yields to the event
    loop once, so interleavings between concurrent callers behave like a
    remote store would.
    """

    def __init__(self, bus=None) -> None:
        super().__init__(bus or LocalBus())
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    async def get_document(self, path: str) -> Optional[Document]:
        await asyncio.sleep(0)
        collection, doc_id = split_path(path)
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return Document(id=doc_id, path=path, data=copy.deepcopy(data))

    async def set_document(self, path: str, value: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        collection, doc_id = split_path(path)
        self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(value)
        await self._notify(collection)

    async def update_fields(self, path: str, fields: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        collection, doc_id = split_path(path)
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            raise BackendError(f"No document to update at {path}")
        for dotted, value in fields.items():
            _apply_field(data, dotted, value)
        await self._notify(collection)

    async def add_document(self, collection: str, value: Dict[str, Any]) -> str:
        await asyncio.sleep(0)
        doc_id = str(ObjectId())
        self._collections.setdefault(collection.strip("/"), {})[doc_id] = copy.deepcopy(value)
        await self._notify(collection.strip("/"))
        return doc_id

    async def delete_document(self, path: str) -> None:
        await asyncio.sleep(0)
        collection, doc_id = split_path(path)
        removed = self._collections.get(collection, {}).pop(doc_id, None)
        if removed is not None:
            await self._notify(collection)

    async def query(self, query: Query) -> List[Document]:
        await asyncio.sleep(0)
        collection = query.collection.strip("/")
        documents = []
        for doc_id, data in self._collections.get(collection, {}).items():
            if query.array_contains is not None:
                field_name, value = query.array_contains
                if value not in (data.get(field_name) or []):
                    continue
            documents.append(Document(id=doc_id, path=f"{collection}/{doc_id}", data=copy.deepcopy(data)))
        documents = sort_documents(documents, query.order_by, query.descending)
        if query.limit is not None:
            documents = documents[: query.limit]
        return documents

    async def close(self) -> None:
        await self._bus.close()


def _apply_field(data: Dict[str, Any], dotted: str, value: Any) -> None:
    *parents, leaf = dotted.split(".")
    target = data
    for name in parents:
        child = target.get(name)
        if not isinstance(child, dict):
            child = {}
            target[name] = child
        target = child
    if isinstance(value, Increment):
        target[leaf] = (target.get(leaf) or 0) + value.amount
    else:
        target[leaf] = copy.deepcopy(value)
