from typing import Any

import structlog
from config import settings
from neo4j import (  # type: ignore
    AsyncDriver,
    AsyncGraphDatabase,
    AsyncManagedTransaction,
)
from neo4j.exceptions import ServiceUnavailable  # type: ignore

logger = structlog.get_logger(__name__)


class Neo4jManager:
    """Owns the async Neo4j driver used by the remote document store."""

    def __init__(
        self,
        uri: str | None = None,
        user: str | None = None,
        password: str | None = None,
        database: str | None = None,
    ) -> None:
        self.logger = structlog.get_logger(__name__)
        self.uri = uri or settings.NEO4J_URI
        self.user = user or settings.NEO4J_USER
        self.password = password or settings.NEO4J_PASSWORD
        self.database = database or settings.NEO4J_DATABASE
        self.driver: AsyncDriver | None = None
        self.logger.info(
            "Neo4jManager initialized. Call connect() to establish connection."
        )

    async def __aenter__(self) -> "Neo4jManager":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def is_connected(self) -> bool:
        return self.driver is not None

    async def connect(self) -> None:
        if self.driver:
            self.logger.info(
                "Existing driver instance found. Closing it before creating a new connection."
            )
            try:
                await self.driver.close()
            except Exception as e_close:
                self.logger.warning(
                    f"Error closing existing driver (it might have been already closed or invalid): {e_close}"
                )
            finally:
                self.driver = None

        try:
            self.driver = AsyncGraphDatabase.driver(
                self.uri, auth=(self.user, self.password)
            )
            await self.driver.verify_connectivity()
            self.logger.info(f"Successfully connected to Neo4j at {self.uri}")
        except ServiceUnavailable as e:
            self.logger.error(
                f"Neo4j connection failed: {e}. Ensure the Neo4j database is running and accessible."
            )
            self.driver = None
            raise
        except Exception as e:
            self.logger.error(
                f"Unexpected error during Neo4j connection: {e}", exc_info=True
            )
            self.driver = None
            raise

    async def close(self) -> None:
        if self.driver:
            try:
                await self.driver.close()
                self.logger.info("Neo4j driver closed.")
            except Exception as e:
                self.logger.error(
                    f"Error while closing Neo4j driver: {e}", exc_info=True
                )
            finally:
                self.driver = None
        else:
            self.logger.info("No active Neo4j driver to close (driver was None).")

    async def _ensure_connected(self) -> None:
        if self.driver is None:
            self.logger.info("Driver is None, attempting to connect.")
            await self.connect()

        if self.driver is None:
            raise ConnectionError("Neo4j driver not initialized or connection failed.")

    async def _execute_query_tx(
        self,
        tx: AsyncManagedTransaction,
        query: str,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        self.logger.debug(f"Executing Cypher query: {query}")
        result_cursor = await tx.run(query, parameters)
        return await result_cursor.data()

    async def execute_read_query(
        self, query: str, parameters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        await self._ensure_connected()
        async with self.driver.session(database=self.database) as session:  # type: ignore
            return await session.execute_read(self._execute_query_tx, query, parameters)

    async def execute_write_query(
        self, query: str, parameters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        await self._ensure_connected()
        async with self.driver.session(database=self.database) as session:  # type: ignore
            return await session.execute_write(
                self._execute_query_tx, query, parameters
            )

    async def run_schema_operations(self, queries: list[str], description: str) -> None:
        """Apply idempotent schema statements one by one, logging failures."""
        for query_text in queries:
            try:
                await self.execute_write_query(query_text)
                self.logger.info(f"Applied {description} operation: '{query_text[:100]}'")
            except Exception as e:
                self.logger.warning(
                    f"Failed to apply {description} operation '{query_text[:100]}': {e}"
                )
