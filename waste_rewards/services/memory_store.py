"""
In-process document store.

Used when STORE_BACKEND=memory (local development without MongoDB) and by the
test suite. It keeps the same guarantees the MongoDB backend gives:

- every document carries a version that is bumped on each committed write;
- transactions record the version of every document they read and validate
  them at commit time, under a single lock, before applying any write;
- a conflicting commit re-runs the transaction body up to ``max_attempts``.
"""

import asyncio
import copy
import logging
import uuid
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Set, Tuple

from waste_rewards.core.errors import DocumentNotFound, PreconditionFailed, TransactionAborted
from waste_rewards.services.document_store import (
    DocumentSnapshot,
    DocumentStore,
    QuerySnapshot,
    Transaction,
    TransactionBody,
    matches_expected,
    namespaced,
)

logger = logging.getLogger(__name__)

Key = Tuple[str, str]


class TransactionConflict(Exception):
    """A document read by the transaction changed before commit."""


class InMemoryTransaction(Transaction):
    def __init__(self, store: "InMemoryDocumentStore") -> None:
        self._store = store
        self.reads: Dict[Key, int] = {}
        self.writes: List[Tuple[str, Key, Dict[str, Any]]] = []

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        key = self._store._key(collection, doc_id)
        data, version = self._store._read(key)
        self.reads.setdefault(key, version)
        return DocumentSnapshot(collection, doc_id, data)

    def set(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self.writes.append(("set", self._store._key(collection, doc_id), copy.deepcopy(fields)))

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self.writes.append(("update", self._store._key(collection, doc_id), copy.deepcopy(fields)))


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, namespace: str = "local-app") -> None:
        self.namespace = namespace
        self._data: Dict[Key, Dict[str, Any]] = {}
        self._versions: Dict[Key, int] = {}
        self._lock = asyncio.Lock()
        self._doc_watchers: Dict[Key, Set[asyncio.Queue]] = {}
        self._collection_watchers: Dict[str, Set[asyncio.Queue]] = {}

    # ---------------------------
    # Internal helpers
    # ---------------------------
    def _key(self, collection: str, doc_id: str) -> Key:
        return namespaced(self.namespace, collection), doc_id

    def _read(self, key: Key) -> Tuple[Optional[Dict[str, Any]], int]:
        data = self._data.get(key)
        return (copy.deepcopy(data) if data is not None else None), self._versions.get(key, 0)

    def _snapshot(self, collection: str, doc_id: str) -> DocumentSnapshot:
        data, _ = self._read(self._key(collection, doc_id))
        return DocumentSnapshot(collection, doc_id, data)

    def _query(self, collection: str) -> QuerySnapshot:
        physical = namespaced(self.namespace, collection)
        docs = [
            DocumentSnapshot(collection, doc_id, copy.deepcopy(data))
            for (coll, doc_id), data in self._data.items()
            if coll == physical
        ]
        return QuerySnapshot(collection, docs)

    def _apply(self, changes: Dict[Key, Dict[str, Any]]) -> None:
        for key, data in changes.items():
            self._data[key] = data
            self._versions[key] = self._versions.get(key, 0) + 1
        self._publish(changes.keys())

    def _publish(self, keys) -> None:
        collections = set()
        for key in keys:
            collections.add(key[0])
            for queue in self._doc_watchers.get(key, ()):
                queue.put_nowait(key)
        for collection in collections:
            for queue in self._collection_watchers.get(collection, ()):
                queue.put_nowait(collection)

    async def _commit(self, tx: InMemoryTransaction) -> None:
        async with self._lock:
            for key, version in tx.reads.items():
                if self._versions.get(key, 0) != version:
                    raise TransactionConflict(f"{key[0]}/{key[1]} changed during transaction")

            pending: Dict[Key, Optional[Dict[str, Any]]] = {}
            for op, key, fields in tx.writes:
                if key not in pending:
                    pending[key] = copy.deepcopy(self._data.get(key))
                if op == "set":
                    pending[key] = dict(fields)
                else:
                    if pending[key] is None:
                        raise DocumentNotFound(f"No document to update at {key[0]}/{key[1]}")
                    pending[key].update(fields)

            self._apply({key: data for key, data in pending.items() if data is not None})

    # ---------------------------
    # DocumentStore API
    # ---------------------------
    async def health_check(self) -> Dict[str, Any]:
        return {"status": "ok", "backend": "memory", "documents": len(self._data)}

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        return self._snapshot(collection, doc_id)

    async def set(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        async with self._lock:
            self._apply({self._key(collection, doc_id): copy.deepcopy(dict(fields))})

    async def add(self, collection: str, fields: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        await self.set(collection, doc_id, fields)
        return doc_id

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> None:
        key = self._key(collection, doc_id)
        async with self._lock:
            current = self._data.get(key)
            if current is None:
                raise DocumentNotFound(f"No document to update at {collection}/{doc_id}")
            if not matches_expected(current, expected):
                raise PreconditionFailed(f"{collection}/{doc_id} no longer matches {dict(expected)}")
            updated = copy.deepcopy(current)
            updated.update(copy.deepcopy(fields))
            self._apply({key: updated})

    async def list(self, collection: str) -> List[DocumentSnapshot]:
        return self._query(collection).documents

    async def run_transaction(self, body: TransactionBody, max_attempts: int = 5) -> Any:
        last_error: Optional[Exception] = None
        for attempt in range(1, max_attempts + 1):
            tx = InMemoryTransaction(self)
            result = await body(tx)
            try:
                await self._commit(tx)
                return result
            except TransactionConflict as e:
                last_error = e
                logger.warning(f"🔁 Transaction conflict on attempt {attempt}/{max_attempts}: {e}")
        raise TransactionAborted(f"Transaction aborted after {max_attempts} attempts: {last_error}")

    async def watch_document(self, collection: str, doc_id: str) -> AsyncIterator[DocumentSnapshot]:
        key = self._key(collection, doc_id)
        queue: asyncio.Queue = asyncio.Queue()
        self._doc_watchers.setdefault(key, set()).add(queue)
        try:
            yield self._snapshot(collection, doc_id)
            while True:
                await queue.get()
                while not queue.empty():
                    queue.get_nowait()
                yield self._snapshot(collection, doc_id)
        finally:
            self._doc_watchers.get(key, set()).discard(queue)

    async def watch_collection(self, collection: str) -> AsyncIterator[QuerySnapshot]:
        physical = namespaced(self.namespace, collection)
        queue: asyncio.Queue = asyncio.Queue()
        self._collection_watchers.setdefault(physical, set()).add(queue)
        try:
            yield self._query(collection)
            while True:
                await queue.get()
                while not queue.empty():
                    queue.get_nowait()
                yield self._query(collection)
        finally:
            self._collection_watchers.get(physical, set()).discard(queue)

    def watcher_count(self) -> int:
        """Open subscriptions; used to verify watches release their resources."""
        return sum(len(q) for q in self._doc_watchers.values()) + sum(
            len(q) for q in self._collection_watchers.values()
        )
