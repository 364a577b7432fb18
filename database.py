"""
Database access for the Mentor Dashboard

A DocumentStore is a per-collection document database: add/get/update/delete,
equality queries, and long-lived subscriptions that deliver the full ordered
snapshot of a collection after every change.

MongoDocumentStore talks to MongoDB through pymongo's asyncio client and uses
change streams for subscriptions (requires a replica set). When DATABASE_URL or
DATABASE_NAME is not configured, create_store() falls back to the in-process
MemoryDocumentStore.
"""

import asyncio
import copy
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient

load_dotenv()

logger = logging.getLogger(__name__)

# Ordering timestamp assigned by the store on insert
CREATED_TS = "_created_ts"

Document = Dict[str, Any]
SnapshotCallback = Callable[[List[Document]], None]


class StoreError(Exception):
    """Base class for document store failures."""


class DocumentNotFound(StoreError):
    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_doc(doc: Optional[Document]) -> Optional[Document]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


class Subscription:
    """Handle for a running collection subscription."""

    def __init__(self, collection: str, task: asyncio.Task):
        self.collection = collection
        self.task = task

    @property
    def active(self) -> bool:
        return not self.task.done()

    def cancel(self) -> None:
        self.task.cancel()


class DocumentStore(ABC):
    """Remote collection store contract."""

    name = "abstract"

    @abstractmethod
    async def add(self, collection: str, document: Mapping[str, Any]) -> str:
        raise NotImplementedError

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        raise NotImplementedError

    @abstractmethod
    async def update(self, collection: str, doc_id: str, fields: Mapping[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        raise NotImplementedError

    @abstractmethod
    async def query(self, collection: str, filters: Mapping[str, Any]) -> List[Document]:
        raise NotImplementedError

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        callback: SnapshotCallback,
        order_by: Optional[str] = None,
        descending: bool = True,
    ) -> Subscription:
        raise NotImplementedError

    @abstractmethod
    async def collection_names(self) -> List[str]:
        raise NotImplementedError

    async def close(self) -> None:
        pass


def _deliver(callback: SnapshotCallback, collection: str, snapshot: List[Document]) -> None:
    try:
        callback(snapshot)
    except Exception:
        logger.exception("Snapshot callback for %s failed", collection)


# -------------------- MongoDB -------------------- #

def _object_id(doc_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(doc_id)
    except (InvalidId, TypeError):
        return None


class MongoDocumentStore(DocumentStore):
    name = "mongodb"

    def __init__(self, database_url: str, database_name: str):
        self._client = AsyncMongoClient(database_url, tz_aware=True)
        self.db = self._client[database_name]

    async def add(self, collection, document):
        data = dict(document)
        data[CREATED_TS] = utcnow()
        result = await self.db[collection].insert_one(data)
        return str(result.inserted_id)

    async def get(self, collection, doc_id):
        oid = _object_id(doc_id)
        if oid is None:
            return None
        return serialize_doc(await self.db[collection].find_one({"_id": oid}))

    async def update(self, collection, doc_id, fields):
        oid = _object_id(doc_id)
        if oid is None:
            raise DocumentNotFound(collection, doc_id)
        if fields:
            res = await self.db[collection].update_one({"_id": oid}, {"$set": dict(fields)})
            matched = res.matched_count
        else:
            matched = await self.db[collection].count_documents({"_id": oid}, limit=1)
        if not matched:
            raise DocumentNotFound(collection, doc_id)

    async def delete(self, collection, doc_id):
        oid = _object_id(doc_id)
        if oid is None:
            return
        await self.db[collection].delete_one({"_id": oid})

    async def query(self, collection, filters):
        cursor = self.db[collection].find(dict(filters))
        return [serialize_doc(d) async for d in cursor]

    async def _snapshot(self, collection: str, order_by: Optional[str], descending: bool) -> List[Document]:
        cursor = self.db[collection].find()
        if order_by:
            cursor = cursor.sort(order_by, DESCENDING if descending else ASCENDING)
        return [serialize_doc(d) async for d in cursor]

    async def _watch(self, collection, callback, order_by, descending):
        # Open the stream before the first read so no change falls between them
        async with await self.db[collection].watch() as stream:
            _deliver(callback, collection, await self._snapshot(collection, order_by, descending))
            async for _change in stream:
                _deliver(callback, collection, await self._snapshot(collection, order_by, descending))

    def subscribe(self, collection, callback, order_by=None, descending=True):
        task = asyncio.create_task(
            self._watch(collection, callback, order_by, descending),
            name=f"watch:{collection}",
        )
        return Subscription(collection, task)

    async def collection_names(self):
        return await self.db.list_collection_names()

    async def close(self):
        await self._client.close()


# -------------------- In-process store -------------------- #

class _Listener:
    def __init__(self, collection: str, callback: SnapshotCallback, order_by: Optional[str], descending: bool):
        self.collection = collection
        self.callback = callback
        self.order_by = order_by
        self.descending = descending
        self.queue: asyncio.Queue = asyncio.Queue()

    async def run(self) -> None:
        while True:
            snapshot = await self.queue.get()
            try:
                _deliver(self.callback, self.collection, snapshot)
            finally:
                self.queue.task_done()


class MemoryDocumentStore(DocumentStore):
    """Document store kept in process memory.

    Snapshots are queued per subscription and delivered by a background task,
    so a write returns before its subscribers have seen it. Call flush() to
    wait for delivery.
    """

    name = "memory"

    def __init__(self):
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._listeners: Dict[str, List[_Listener]] = {}
        self._subscriptions: List[Subscription] = []

    def _docs(self, collection: str) -> Dict[str, Document]:
        return self._collections.setdefault(collection, {})

    def _export(self, doc_id: str, doc: Document) -> Document:
        out = copy.deepcopy(doc)
        out["id"] = doc_id
        return out

    def _snapshot(self, listener: _Listener) -> List[Document]:
        docs = [self._export(k, v) for k, v in self._docs(listener.collection).items()]
        if listener.order_by:
            key = listener.order_by
            # Newest insert first among equal keys when descending
            if listener.descending:
                docs.reverse()
            docs.sort(key=lambda d: (d.get(key) is not None, d.get(key) or 0), reverse=listener.descending)
        return docs

    def _notify(self, collection: str) -> None:
        for listener in self._listeners.get(collection, []):
            listener.queue.put_nowait(self._snapshot(listener))

    async def add(self, collection, document):
        doc_id = uuid4().hex
        data = copy.deepcopy(dict(document))
        data.pop("id", None)
        data[CREATED_TS] = utcnow()
        self._docs(collection)[doc_id] = data
        self._notify(collection)
        return doc_id

    async def get(self, collection, doc_id):
        doc = self._docs(collection).get(doc_id)
        if doc is None:
            return None
        return self._export(doc_id, doc)

    async def update(self, collection, doc_id, fields):
        docs = self._docs(collection)
        if doc_id not in docs:
            raise DocumentNotFound(collection, doc_id)
        docs[doc_id].update(copy.deepcopy(dict(fields)))
        self._notify(collection)

    async def delete(self, collection, doc_id):
        if self._docs(collection).pop(doc_id, None) is not None:
            self._notify(collection)

    async def query(self, collection, filters):
        return [
            self._export(k, v)
            for k, v in self._docs(collection).items()
            if all(v.get(field) == value for field, value in filters.items())
        ]

    def subscribe(self, collection, callback, order_by=None, descending=True):
        listener = _Listener(collection, callback, order_by, descending)
        self._listeners.setdefault(collection, []).append(listener)
        listener.queue.put_nowait(self._snapshot(listener))
        task = asyncio.create_task(listener.run(), name=f"watch:{collection}")
        task.add_done_callback(lambda _t: self._forget(listener))
        sub = Subscription(collection, task)
        self._subscriptions.append(sub)
        return sub

    def _forget(self, listener: _Listener) -> None:
        listeners = self._listeners.get(listener.collection, [])
        if listener in listeners:
            listeners.remove(listener)
        # Undelivered snapshots would otherwise block flush()
        while not listener.queue.empty():
            listener.queue.get_nowait()
            listener.queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued snapshot has been delivered."""
        listeners = [l for ls in self._listeners.values() for l in ls]
        await asyncio.gather(*(l.queue.join() for l in listeners))

    async def collection_names(self):
        return [name for name, docs in self._collections.items() if docs]

    async def close(self):
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions.clear()


def create_store() -> DocumentStore:
    database_url = os.getenv("DATABASE_URL")
    database_name = os.getenv("DATABASE_NAME")
    if database_url and database_name:
        logger.info("Using MongoDB database %s", database_name)
        return MongoDocumentStore(database_url, database_name)
    logger.warning("DATABASE_URL/DATABASE_NAME not set, using in-memory store")
    return MemoryDocumentStore()
