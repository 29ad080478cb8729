# This file makes the data_access directory a Python package.

from .remote_store import (
    InMemoryRemoteStore,
    Neo4jRemoteStore,
    RemoteStore,
    RemoteStoreError,
)

__all__ = [
    "RemoteStore",
    "RemoteStoreError",
    "InMemoryRemoteStore",
    "Neo4jRemoteStore",
]
