# data_access/remote_store.py
"""Remote durable store: whole-object JSON documents keyed by (collection, key)."""

from __future__ import annotations

import copy
import json
from typing import Any, Protocol, runtime_checkable

import structlog
from config import settings
from core.db_manager import Neo4jManager

logger = structlog.get_logger(__name__)

__all__ = [
    "RemoteStore",
    "RemoteStoreError",
    "InMemoryRemoteStore",
    "Neo4jRemoteStore",
]


class RemoteStoreError(Exception):
    """A remote read or write failed for a transient or transport reason."""

    def __init__(self, operation: str, collection: str, key: str, cause: Exception | None = None):
        self.operation = operation
        self.collection = collection
        self.key = key
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Remote {operation} failed for {collection}/{key}{detail}")


@runtime_checkable
class RemoteStore(Protocol):
    """Key-value contract of the remote durable store.

    ``get`` returns ``None`` when nothing is stored under the key and raises
    ``RemoteStoreError`` when the store cannot be reached.
    """

    async def put(self, collection: str, key: str, value: Any) -> None: ...

    async def get(self, collection: str, key: str) -> Any | None: ...


class InMemoryRemoteStore:
    """Dict-backed remote store for offline runs and tests."""

    def __init__(self) -> None:
        self.documents: dict[tuple[str, str], Any] = {}
        self.put_calls: list[tuple[str, str]] = []

    async def put(self, collection: str, key: str, value: Any) -> None:
        self.put_calls.append((collection, key))
        self.documents[(collection, key)] = copy.deepcopy(value)

    async def get(self, collection: str, key: str) -> Any | None:
        value = self.documents.get((collection, key))
        return copy.deepcopy(value)


class Neo4jRemoteStore:
    """Remote store keeping each document as a Neo4j node with a JSON payload."""

    def __init__(
        self,
        db: Neo4jManager | None = None,
        label: str = settings.REMOTE_DOCUMENT_LABEL,
    ) -> None:
        self.db = db or Neo4jManager()
        self.label = label

    async def ensure_schema(self) -> None:
        """Create the uniqueness constraint on (collection, key)."""
        await self.db.run_schema_operations(
            [
                f"CREATE CONSTRAINT syncDocument_collection_key_unique IF NOT EXISTS "
                f"FOR (d:{self.label}) REQUIRE (d.collection, d.key) IS UNIQUE"
            ],
            "constraint",
        )

    async def put(self, collection: str, key: str, value: Any) -> None:
        query = f"""
        MERGE (d:{self.label} {{collection: $collection_param, key: $key_param}})
        SET d.value_json = $value_param,
            d.last_updated = timestamp()
        """
        try:
            parameters = {
                "collection_param": collection,
                "key_param": key,
                "value_param": json.dumps(value, ensure_ascii=False),
            }
            await self.db.execute_write_query(query, parameters)
        except Exception as exc:
            raise RemoteStoreError("put", collection, key, exc) from exc
        logger.debug("Stored remote document", collection=collection, key=key)

    async def get(self, collection: str, key: str) -> Any | None:
        query = f"""
        MATCH (d:{self.label} {{collection: $collection_param, key: $key_param}})
        RETURN d.value_json AS value_json
        """
        try:
            result = await self.db.execute_read_query(
                query, {"collection_param": collection, "key_param": key}
            )
        except Exception as exc:
            raise RemoteStoreError("get", collection, key, exc) from exc
        if not result or not result[0] or result[0].get("value_json") is None:
            return None
        try:
            return json.loads(result[0]["value_json"])
        except (TypeError, ValueError) as exc:
            raise RemoteStoreError("get", collection, key, exc) from exc
