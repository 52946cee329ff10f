import logging
import os
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

import motor.motor_asyncio
from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pymongo import ASCENDING, DESCENDING, IndexModel, ReturnDocument
from pymongo.errors import DuplicateKeyError

# Load environment variables from .env
load_dotenv()

MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "bookbuddydb")
# Multi-document transactions need a replica set
MONGO_TRANSACTIONS = os.getenv("MONGO_TRANSACTIONS", "false").lower() == "true"

logger = logging.getLogger(__name__)


class DuplicateDocumentError(Exception):
    """Raised when an insert violates a unique index."""


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize_document(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if document is None:
        return None
    document = dict(document)
    document["id"] = str(document.pop("_id"))
    return document


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MongoStore:
    """Async document store over a Motor database.

    Filters are Mongo query dicts. The key ``id`` addresses ``_id`` and
    accepts string ids; documents come back with ``_id`` replaced by a
    string ``id``.
    """

    def __init__(self, database, use_transactions: bool = False):
        self.db = database
        self.use_transactions = use_transactions
        self._session: ContextVar = ContextVar("mongo_session", default=None)

    def _id_condition(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                op: [to_object_id(v) for v in operand] if isinstance(operand, list) else to_object_id(operand)
                for op, operand in value.items()
            }
        return to_object_id(value)

    def _query(self, filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        query = {}
        for key, value in (filters or {}).items():
            if key == "$or":
                query["$or"] = [self._query(branch) for branch in value]
            elif key == "id":
                query["_id"] = self._id_condition(value)
            else:
                query[key] = value
        return query

    async def find_one(self, collection: str, filters: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        document = await self.db[collection].find_one(self._query(filters), session=self._session.get())
        return serialize_document(document)

    async def find_many(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        skip: int = 0,
        limit: int = 0,
        sort: Tuple[str, int] = ("createdAt", DESCENDING),
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection].find(self._query(filters), session=self._session.get())
        cursor = cursor.sort(*sort).skip(skip).limit(limit)
        return [serialize_document(document) async for document in cursor]

    async def count(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> int:
        return await self.db[collection].count_documents(self._query(filters), session=self._session.get())

    async def insert_one(self, collection: str, document: Dict[str, Any]) -> Dict[str, Any]:
        now = utcnow()
        document = {**document, "createdAt": now, "updatedAt": now}
        try:
            result = await self.db[collection].insert_one(document, session=self._session.get())
        except DuplicateKeyError as e:
            raise DuplicateDocumentError(str(e)) from e
        document["_id"] = result.inserted_id
        return serialize_document(document)

    async def update_one(
        self,
        collection: str,
        document_id: str,
        fields: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Set ``fields`` on one document, only if it still matches ``expected``.

        Returns the updated document, or None when nothing matched.
        """
        query = self._query({**(expected or {}), "id": document_id})
        document = await self.db[collection].find_one_and_update(
            query,
            {"$set": {**fields, "updatedAt": utcnow()}},
            return_document=ReturnDocument.AFTER,
            session=self._session.get(),
        )
        return serialize_document(document)

    async def update_many(self, collection: str, filters: Dict[str, Any], fields: Dict[str, Any]) -> int:
        result = await self.db[collection].update_many(
            self._query(filters),
            {"$set": {**fields, "updatedAt": utcnow()}},
            session=self._session.get(),
        )
        return result.modified_count

    async def delete_one(self, collection: str, document_id: str, expected: Optional[Dict[str, Any]] = None) -> bool:
        query = self._query({**(expected or {}), "id": document_id})
        result = await self.db[collection].delete_one(query, session=self._session.get())
        return result.deleted_count == 1

    async def fold_rating(self, collection: str, document_id: str, rating: float) -> Optional[Dict[str, Any]]:
        """Fold one rating into ``rating.average`` / ``rating.count`` in a single write."""
        count = {"$ifNull": ["$rating.count", 0]}
        average = {"$ifNull": ["$rating.average", 0]}
        pipeline = [
            {
                "$set": {
                    "rating.average": {
                        "$divide": [
                            {"$add": [{"$multiply": [average, count]}, rating]},
                            {"$add": [count, 1]},
                        ]
                    },
                    "rating.count": {"$add": [count, 1]},
                    "updatedAt": utcnow(),
                }
            }
        ]
        document = await self.db[collection].find_one_and_update(
            self._query({"id": document_id}),
            pipeline,
            return_document=ReturnDocument.AFTER,
            session=self._session.get(),
        )
        return serialize_document(document)

    @asynccontextmanager
    async def transaction(self):
        """Group writes in a session transaction.

        Yields True when the writes inside roll back together on error, and
        False when transactions are disabled and callers must undo their own
        partial writes.
        """
        if not self.use_transactions:
            yield False
            return
        if self._session.get() is not None:
            yield True
            return
        async with await self.db.client.start_session() as session:
            async with session.start_transaction():
                token = self._session.set(session)
                try:
                    yield True
                finally:
                    self._session.reset(token)

    async def ensure_indexes(self):
        await self.db.users.create_indexes([
            IndexModel([("email", ASCENDING)], unique=True, name="unique_email"),
        ])
        await self.db.books.create_indexes([
            IndexModel([("owner", ASCENDING)]),
            IndexModel([("genre", ASCENDING), ("status", ASCENDING)]),
            IndexModel([("status", ASCENDING), ("isActive", ASCENDING)]),
        ])
        await self.db.requests.create_indexes([
            IndexModel([("requester", ASCENDING), ("status", ASCENDING)]),
            IndexModel([("owner", ASCENDING), ("status", ASCENDING)]),
            IndexModel([("book", ASCENDING), ("status", ASCENDING)]),
            IndexModel([("status", ASCENDING), ("createdAt", DESCENDING)]),
            # One pending request per requester and book
            IndexModel(
                [("requester", ASCENDING), ("book", ASCENDING), ("status", ASCENDING)],
                unique=True,
                partialFilterExpression={"status": "pending"},
                name="unique_pending_request",
            ),
        ])
        logger.info("Indexes ensured on %s", self.db.name)


@lru_cache
def get_store() -> MongoStore:
    client = motor.motor_asyncio.AsyncIOMotorClient(MONGO_URL)
    return MongoStore(client[MONGO_DB_NAME], use_transactions=MONGO_TRANSACTIONS)
