#!/usr/bin/env python3
"""
MongoDB Document Store for the Waste Rewards API

Backs the profile and report collections with MongoDB through motor:

- Connection with ping/backoff retry and graceful degradation when unavailable
- Namespaced collections (artifacts.<APP_ID>.profiles / .reports)
- Compare-and-swap single document updates
- Multi-document transactions (snapshot read concern, majority writes)
  retried on TransientTransactionError
- Change streams for real-time document and collection watches

Transactions and change streams require a replica set (Atlas, or a local
single-node replica set started with --replSet).
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from bson.objectid import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import OperationFailure, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from waste_rewards.core.errors import (
    DocumentNotFound,
    PermissionDenied,
    PreconditionFailed,
    StoreUnavailable,
    TransactionAborted,
)
from waste_rewards.services.document_store import (
    PROFILES,
    REPORTS,
    DocumentSnapshot,
    DocumentStore,
    QuerySnapshot,
    Transaction,
    TransactionBody,
    namespaced,
)
from waste_rewards.utils.timing_middleware import CommandLogger

logger = logging.getLogger(__name__)

UNAUTHORIZED_CODES = {13, 8000}
RETRYABLE_LABELS = ("TransientTransactionError", "UnknownTransactionCommitResult")


def _expected_filter(expected: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    clauses: Dict[str, Any] = {}
    for key, wanted in (expected or {}).items():
        if isinstance(wanted, (tuple, list, set, frozenset)):
            clauses[key] = {"$in": list(wanted)}
        else:
            clauses[key] = wanted
    return clauses


class MongoTransaction(Transaction):
    def __init__(self, store: "MongoDocumentStore", session) -> None:
        self._store = store
        self._session = session
        self._writes: List[tuple] = []

    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        doc = await self._store._collection(collection).find_one({"_id": doc_id}, session=self._session)
        return self._store._to_snapshot(collection, doc_id, doc)

    def set(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self._writes.append(("set", collection, doc_id, dict(fields)))

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self._writes.append(("update", collection, doc_id, dict(fields)))

    async def flush(self) -> None:
        for op, collection, doc_id, fields in self._writes:
            coll = self._store._collection(collection)
            if op == "set":
                await coll.replace_one({"_id": doc_id}, fields, upsert=True, session=self._session)
                continue
            result = await coll.update_one({"_id": doc_id}, {"$set": fields}, session=self._session)
            if result.matched_count == 0:
                raise DocumentNotFound(f"No document to update at {collection}/{doc_id}")


class MongoDocumentStore(DocumentStore):
    """
    Document store backed by MongoDB.
    """

    def __init__(self, mongo_uri: str, db_name: str, namespace: str, *, max_retries: int = 3):
        self.mongo_uri = mongo_uri
        self.db_name = db_name
        self.namespace = namespace
        self.max_retries = max_retries

        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None
        self._connect_lock = asyncio.Lock()

        self.index_definitions = {
            REPORTS: [
                IndexModel([("reportedAt", DESCENDING)], name="reported_at_desc"),
                IndexModel([("status", ASCENDING), ("reportedAt", DESCENDING)], name="status_reported_at"),
                IndexModel([("pickerId", ASCENDING)], name="picker_id"),
                IndexModel([("reporterId", ASCENDING)], name="reporter_id"),
            ],
            PROFILES: [
                IndexModel([("role", ASCENDING)], name="role"),
            ],
        }

    async def open(self) -> bool:
        """
        Establish the MongoDB connection with retry and exponential backoff.

        Returns:
            bool: True if connection successful, False otherwise
        """
        async with self._connect_lock:
            if self.db is not None:
                return True

            self.client = AsyncIOMotorClient(
                self.mongo_uri,
                serverSelectionTimeoutMS=15000,
                connectTimeoutMS=30000,
                socketTimeoutMS=45000,
                maxPoolSize=20,
                minPoolSize=0,
                retryWrites=True,
                tz_aware=True,
                event_listeners=[CommandLogger()],
            )

            retry_delay = 2.0
            for attempt in range(1, self.max_retries + 1):
                try:
                    logger.info(f"🔄 MongoDB connection attempt {attempt}/{self.max_retries}...")
                    await self.client.admin.command("ping")
                    self.db = self.client[self.db_name]
                    logger.info(f"✅ MongoDB connected: database={self.db_name} namespace={self.namespace}")
                    break
                except PyMongoError as e:
                    logger.warning(f"⚠️ MongoDB connection attempt {attempt} failed: {e}")
                    if attempt < self.max_retries:
                        await asyncio.sleep(retry_delay)
                        retry_delay *= 2

            if self.db is None:
                logger.error("❌ All MongoDB connection attempts failed; store operations will fail until restart")
                return False

            try:
                await self._create_indexes()
            except PyMongoError as e:
                logger.warning(f"⚠️ Index creation failed: {e}")
            return True

    async def close(self) -> None:
        if self.client is not None:
            self.client.close()
            logger.info("🔒 MongoDB connection closed")
        self.client = None
        self.db = None

    async def _create_indexes(self) -> None:
        for collection, indexes in self.index_definitions.items():
            await self._collection(collection).create_indexes(indexes)
        logger.info("📇 MongoDB indexes created/verified")

    async def health_check(self) -> Dict[str, Any]:
        if self.client is None or self.db is None:
            return {"status": "disconnected", "backend": "mongo"}
        try:
            await self.client.admin.command("ping")
            return {"status": "ok", "backend": "mongo", "database": self.db_name}
        except PyMongoError as e:
            return {"status": "error", "backend": "mongo", "error": str(e)}

    # ---------------------------
    # Internal helpers
    # ---------------------------
    def _collection(self, collection: str) -> AsyncIOMotorCollection:
        if self.db is None:
            raise StoreUnavailable("Database connection is not established")
        return self.db[namespaced(self.namespace, collection)]

    @staticmethod
    def _to_snapshot(collection: str, doc_id: str, doc: Optional[Dict[str, Any]]) -> DocumentSnapshot:
        if doc is None:
            return DocumentSnapshot(collection, doc_id, None)
        data = dict(doc)
        data.pop("_id", None)
        return DocumentSnapshot(collection, doc_id, data)

    @staticmethod
    def _raise_if_denied(e: OperationFailure, where: str) -> None:
        if e.code in UNAUTHORIZED_CODES:
            raise PermissionDenied(f"Read of {where} denied") from e

    # ---------------------------
    # DocumentStore API
    # ---------------------------
    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        try:
            doc = await self._collection(collection).find_one({"_id": doc_id})
        except OperationFailure as e:
            self._raise_if_denied(e, f"{collection}/{doc_id}")
            raise
        return self._to_snapshot(collection, doc_id, doc)

    async def set(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        await self._collection(collection).replace_one({"_id": doc_id}, dict(fields), upsert=True)

    async def add(self, collection: str, fields: Dict[str, Any]) -> str:
        doc_id = str(ObjectId())
        await self._collection(collection).insert_one({"_id": doc_id, **fields})
        return doc_id

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        expected: Optional[Mapping[str, Any]] = None,
    ) -> None:
        filter_dict = {"_id": doc_id, **_expected_filter(expected)}
        result = await self._collection(collection).update_one(filter_dict, {"$set": dict(fields)})
        if result.matched_count:
            return
        current = await self.get(collection, doc_id)
        if not current.exists:
            raise DocumentNotFound(f"No document to update at {collection}/{doc_id}")
        raise PreconditionFailed(f"{collection}/{doc_id} no longer matches {dict(expected or {})}")

    async def list(self, collection: str) -> List[DocumentSnapshot]:
        try:
            cursor = self._collection(collection).find({})
            docs = await cursor.to_list(length=None)
        except OperationFailure as e:
            self._raise_if_denied(e, collection)
            raise
        return [self._to_snapshot(collection, str(doc["_id"]), doc) for doc in docs]

    async def run_transaction(self, body: TransactionBody, max_attempts: int = 5) -> Any:
        if self.client is None:
            raise StoreUnavailable("Database connection is not established")

        last_error: Optional[PyMongoError] = None
        for attempt in range(1, max_attempts + 1):
            try:
                async with await self.client.start_session() as session:
                    async with session.start_transaction(
                        read_concern=ReadConcern("snapshot"),
                        write_concern=WriteConcern("majority"),
                    ):
                        tx = MongoTransaction(self, session)
                        result = await body(tx)
                        await tx.flush()
                return result
            except PyMongoError as e:
                last_error = e
                if any(e.has_error_label(label) for label in RETRYABLE_LABELS) and attempt < max_attempts:
                    logger.warning(f"🔁 Transaction conflict on attempt {attempt}/{max_attempts}: {e}")
                    continue
                break
        logger.error(f"❌ Transaction aborted: {last_error}")
        raise TransactionAborted(f"Transaction aborted: {last_error}") from last_error

    async def watch_document(self, collection: str, doc_id: str) -> AsyncIterator[DocumentSnapshot]:
        pipeline = [{"$match": {"documentKey._id": doc_id}}]
        try:
            # Open the stream before the initial read so no write falls between them
            async with self._collection(collection).watch(pipeline) as stream:
                yield await self.get(collection, doc_id)
                async for _change in stream:
                    yield await self.get(collection, doc_id)
        except OperationFailure as e:
            self._raise_if_denied(e, f"{collection}/{doc_id}")
            raise

    async def watch_collection(self, collection: str) -> AsyncIterator[QuerySnapshot]:
        try:
            async with self._collection(collection).watch() as stream:
                yield QuerySnapshot(collection, await self.list(collection))
                async for _change in stream:
                    yield QuerySnapshot(collection, await self.list(collection))
        except OperationFailure as e:
            self._raise_if_denied(e, collection)
            raise
