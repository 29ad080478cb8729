# tests/test_remote_store.py
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from data_access.remote_store import (
    InMemoryRemoteStore,
    Neo4jRemoteStore,
    RemoteStore,
    RemoteStoreError,
)


def _fake_db():
    db = MagicMock()
    db.execute_write_query = AsyncMock(return_value=[])
    db.execute_read_query = AsyncMock(return_value=[])
    db.run_schema_operations = AsyncMock()
    return db


@pytest.mark.asyncio
async def test_in_memory_store_copies_values():
    store = InMemoryRemoteStore()
    value = {"characters": [{"name": "A"}]}
    await store.put("chapter-ai-delta", "k", value)
    value["characters"].append({"name": "B"})

    loaded = await store.get("chapter-ai-delta", "k")
    assert loaded == {"characters": [{"name": "A"}]}
    loaded["extra"] = 1
    assert await store.get("chapter-ai-delta", "k") == {"characters": [{"name": "A"}]}
    assert await store.get("chapter-ai-delta", "missing") is None


def test_implementations_satisfy_protocol():
    assert isinstance(InMemoryRemoteStore(), RemoteStore)
    assert isinstance(Neo4jRemoteStore(db=_fake_db()), RemoteStore)


@pytest.mark.asyncio
async def test_neo4j_put_serializes_value():
    db = _fake_db()
    store = Neo4jRemoteStore(db=db)
    await store.put("chapter-content", "s::c1", {"content": "Chào"})

    query, params = db.execute_write_query.await_args.args
    assert "MERGE (d:SyncDocument" in query
    assert params["collection_param"] == "chapter-content"
    assert params["key_param"] == "s::c1"
    assert json.loads(params["value_param"]) == {"content": "Chào"}


@pytest.mark.asyncio
async def test_neo4j_get_decodes_and_handles_missing():
    db = _fake_db()
    store = Neo4jRemoteStore(db=db)
    assert await store.get("chapter-content", "k") is None

    db.execute_read_query.return_value = [{"value_json": json.dumps({"a": 1})}]
    assert await store.get("chapter-content", "k") == {"a": 1}


@pytest.mark.asyncio
async def test_neo4j_errors_are_wrapped():
    db = _fake_db()
    db.execute_write_query.side_effect = ConnectionError("down")
    db.execute_read_query.return_value = [{"value_json": "{broken"}]
    store = Neo4jRemoteStore(db=db)

    with pytest.raises(RemoteStoreError) as excinfo:
        await store.put("chapter-content", "k", {"content": "x"})
    assert excinfo.value.operation == "put"
    assert isinstance(excinfo.value.cause, ConnectionError)

    with pytest.raises(RemoteStoreError):
        await store.get("chapter-content", "k")


@pytest.mark.asyncio
async def test_ensure_schema_creates_constraint():
    db = _fake_db()
    await Neo4jRemoteStore(db=db).ensure_schema()
    queries, description = db.run_schema_operations.await_args.args
    assert "IS UNIQUE" in queries[0]
    assert description == "constraint"
