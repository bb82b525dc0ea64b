"""
Base repository - generic CRUD over one table (get / find / remove implemented, add / update abstract).
Challenge: Share connection lifecycle and statement boilerplate across tables; column lists stay per table.
Design: Every public operation opens its own connection, catches store errors and answers with
bool / None / [] (fail quiet). The Outcome of each call goes to logs and Prometheus instead.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager, contextmanager
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import ValidationError
from sqlalchemy import Connection, text
from sqlalchemy.ext.asyncio import AsyncConnection

from sqlrepo.config import get_settings
from sqlrepo.core.metrics import Outcome, record_outcome, statement_timer
from sqlrepo.db.base import Entity
from sqlrepo.db.session import ConnectionFactory
from sqlrepo.db.sql import SqlTemplates, UnsafeIdentifierValue, validate_batch_ids

logger = logging.getLogger(__name__)

EntityType = TypeVar("EntityType", bound=Entity)
KeyType = TypeVar("KeyType")

Predicate = Callable[[Any], bool]


class RemoveRangeStrategy(str, Enum):
    """How remove_range deletes a set of ids."""

    BATCH = "batch"  # one DELETE ... IN (...) round trip
    FAN_OUT = "fan_out"  # one DELETE per id, run concurrently


class Repository(ABC, Generic[EntityType, KeyType]):
    """
    Generic repository for one table. Subclasses implement add, add_range and update.

    find, single_or_default and remove_range(predicate) load the whole table and filter in
    Python. They are slow on large tables: write a dedicated query method (or override them
    with a WHERE clause) for anything performance-sensitive.
    """

    def __init__(
        self,
        entity_type: type[EntityType],
        connection_string: str | None = None,
        schema_name: str | None = None,
        table_name: str | None = None,
        id_column_name: str | None = None,
        *,
        remove_range_strategy: RemoveRangeStrategy | str | None = None,
        max_concurrency: int | None = None,
    ):
        settings = get_settings()
        self.entity_type = entity_type
        self._schema_name = schema_name or settings.default_schema
        self._table_name = table_name or entity_type.__name__
        self._id_column_name = id_column_name or settings.default_id_column
        self.remove_range_strategy = RemoveRangeStrategy(
            remove_range_strategy or settings.remove_range_strategy
        )
        self.max_concurrency = max(1, max_concurrency or settings.remove_range_max_concurrency)
        self.connections = ConnectionFactory(connection_string)
        self.sql = SqlTemplates(self._schema_name, self._table_name, self._id_column_name)

    @property
    def schema_name(self) -> str:
        return self._schema_name

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def id_column_name(self) -> str:
        return self._id_column_name

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(table={self.sql.qualified_table})>"

    # --- Connections (for subclasses writing their own statements) ---

    @contextmanager
    def open_connection(self) -> Iterator[Connection]:
        """Blocking connection, released when the with-block exits."""
        with self.connections.connect() as conn:
            yield conn

    @contextmanager
    def transaction_sync(self) -> Iterator[Connection]:
        with self.connections.begin() as conn:
            yield conn

    @asynccontextmanager
    async def open_async_connection(self) -> AsyncIterator[AsyncConnection]:
        async with self.connections.connect_async() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Async connection in a transaction: committed if the block succeeds, rolled back otherwise."""
        async with self.connections.begin_async() as conn:
            yield conn

    # --- Outcome reporting ---

    def _report(self, operation: str, outcome: Outcome, error: BaseException | None = None) -> None:
        record_outcome(self._table_name, operation, outcome)
        if error is not None:
            logger.warning(
                "%s.%s failed: outcome=%s error=%s",
                self._table_name, operation, outcome.value, error,
            )
        else:
            logger.debug("%s.%s: outcome=%s", self._table_name, operation, outcome.value)

    @staticmethod
    def _failure_outcome(error: Exception) -> Outcome:
        # A row that does not fit the entity is bad data, not a broken store
        if isinstance(error, ValidationError):
            return Outcome.INVALID_INPUT
        return Outcome.STORE_ERROR

    def _to_entity(self, row) -> EntityType:
        return self.entity_type.from_row(row)

    # --- Statement helpers: one connection per call ---

    async def _fetch(self, operation: str, sql: str, params: dict | None = None) -> list[EntityType]:
        with statement_timer(self._table_name, operation):
            async with self.connections.connect_async() as conn:
                result = await conn.execute(text(sql), params or {})
                rows = result.mappings().all()
        return [self._to_entity(row) for row in rows]

    def _fetch_sync(self, operation: str, sql: str, params: dict | None = None) -> list[EntityType]:
        with statement_timer(self._table_name, operation):
            with self.connections.connect() as conn:
                rows = conn.execute(text(sql), params or {}).mappings().all()
        return [self._to_entity(row) for row in rows]

    async def _execute(self, operation: str, statement, params: dict | None = None) -> int:
        """Run a mutating statement in its own transaction. Returns the affected-row count."""
        if isinstance(statement, str):
            statement = text(statement)
        with statement_timer(self._table_name, operation):
            async with self.connections.begin_async() as conn:
                result = await conn.execute(statement, params or {})
                return result.rowcount

    def _execute_sync(self, operation: str, statement, params: dict | None = None) -> int:
        if isinstance(statement, str):
            statement = text(statement)
        with statement_timer(self._table_name, operation):
            with self.connections.begin() as conn:
                return conn.execute(statement, params or {}).rowcount

    # --- Reads ---

    async def get(self, id: KeyType) -> EntityType | None:
        """Fetch one entity by id. None when absent or on store error."""
        try:
            rows = await self._fetch("get", self.sql.select_by_id, {"id": id})
        except Exception as e:
            self._report("get", self._failure_outcome(e), e)
            return None
        self._report("get", Outcome.OK if rows else Outcome.NOT_FOUND)
        return rows[0] if rows else None

    def get_sync(self, id: KeyType) -> EntityType | None:
        """Blocking twin of get()."""
        try:
            rows = self._fetch_sync("get", self.sql.select_by_id, {"id": id})
        except Exception as e:
            self._report("get", self._failure_outcome(e), e)
            return None
        self._report("get", Outcome.OK if rows else Outcome.NOT_FOUND)
        return rows[0] if rows else None

    def __getitem__(self, id: KeyType) -> EntityType | None:
        # repo[id] returns None for unknown ids rather than raising KeyError
        return self.get_sync(id)

    async def get_all(self) -> list[EntityType]:
        """All rows, in store order (no ORDER BY). Empty list on store error."""
        try:
            entities = await self._fetch("get_all", self.sql.select_all)
        except Exception as e:
            self._report("get_all", self._failure_outcome(e), e)
            return []
        self._report("get_all", Outcome.OK)
        return entities

    def get_all_sync(self) -> list[EntityType]:
        try:
            entities = self._fetch_sync("get_all", self.sql.select_all)
        except Exception as e:
            self._report("get_all", self._failure_outcome(e), e)
            return []
        self._report("get_all", Outcome.OK)
        return entities

    def _single(self, entities: list[EntityType], predicate: Predicate) -> EntityType | None:
        try:
            matches = [e for e in entities if predicate(e)]
        except Exception as e:
            self._report("single_or_default", Outcome.INVALID_INPUT, e)
            return None
        # More than one match is reported as not found, same as zero
        if len(matches) != 1:
            self._report("single_or_default", Outcome.NOT_FOUND)
            return None
        self._report("single_or_default", Outcome.OK)
        return matches[0]

    def _filter(self, entities: list[EntityType], predicate: Predicate) -> list[EntityType]:
        try:
            matches = [e for e in entities if predicate(e)]
        except Exception as e:
            self._report("find", Outcome.INVALID_INPUT, e)
            return []
        self._report("find", Outcome.OK if matches else Outcome.NOT_FOUND)
        return matches

    async def single_or_default(self, predicate: Predicate) -> EntityType | None:
        """
        The only entity matching predicate, else None (zero or several matches).
        Slow path: loads the whole table and evaluates predicate in Python.
        """
        return self._single(await self.get_all(), predicate)

    def single_or_default_sync(self, predicate: Predicate) -> EntityType | None:
        return self._single(self.get_all_sync(), predicate)

    async def find(self, predicate: Predicate) -> list[EntityType]:
        """
        All entities matching predicate; [] on no match or if predicate raises.
        Slow path: loads the whole table and evaluates predicate in Python.
        """
        return self._filter(await self.get_all(), predicate)

    def find_sync(self, predicate: Predicate) -> list[EntityType]:
        return self._filter(self.get_all_sync(), predicate)

    # --- Writes supplied by table-specific subclasses ---

    @abstractmethod
    async def add(self, entity: EntityType) -> bool:
        """Insert entity. Callers must ensure the id is unique."""

    @abstractmethod
    async def add_range(self, entities: Iterable[EntityType]) -> bool:
        """Insert all entities in one transaction; commit only if every insert succeeds."""

    @abstractmethod
    async def update(self, entity: EntityType) -> bool:
        """Overwrite all non-id columns of the row with entity.id. False if no row matched."""

    # --- Removal ---

    def _id_of(self, entity_or_id: EntityType | KeyType) -> KeyType:
        if isinstance(entity_or_id, Entity):
            return entity_or_id.id
        return entity_or_id

    async def remove(self, entity_or_id: EntityType | KeyType) -> bool:
        """Delete one row by entity or id. True iff a row was deleted."""
        try:
            affected = await self._execute("remove", self.sql.delete_by_id, {"id": self._id_of(entity_or_id)})
        except Exception as e:
            self._report("remove", Outcome.STORE_ERROR, e)
            return False
        self._report("remove", Outcome.OK if affected > 0 else Outcome.NOT_FOUND)
        return affected > 0

    def remove_sync(self, entity_or_id: EntityType | KeyType) -> bool:
        try:
            affected = self._execute_sync("remove", self.sql.delete_by_id, {"id": self._id_of(entity_or_id)})
        except Exception as e:
            self._report("remove", Outcome.STORE_ERROR, e)
            return False
        self._report("remove", Outcome.OK if affected > 0 else Outcome.NOT_FOUND)
        return affected > 0

    async def remove_all(self) -> bool:
        """
        Delete every row. False when the table was already empty: "nothing removed"
        and "removal failed" look the same to the caller (see logs/metrics).
        """
        try:
            affected = await self._execute("remove_all", self.sql.delete_all)
        except Exception as e:
            self._report("remove_all", Outcome.STORE_ERROR, e)
            return False
        self._report("remove_all", Outcome.OK if affected > 0 else Outcome.NOT_FOUND)
        return affected > 0

    def remove_all_sync(self) -> bool:
        try:
            affected = self._execute_sync("remove_all", self.sql.delete_all)
        except Exception as e:
            self._report("remove_all", Outcome.STORE_ERROR, e)
            return False
        self._report("remove_all", Outcome.OK if affected > 0 else Outcome.NOT_FOUND)
        return affected > 0

    async def remove_range(self, items: Predicate | Iterable[EntityType | KeyType]) -> bool:
        """
        Delete several rows. items is a predicate (slow path: full read, filter, then delete),
        a sequence of entities or a sequence of ids. An empty sequence is a no-op returning True.
        A predicate that matches nothing also returns True; a failed read returns False.
        """
        if callable(items):
            try:
                entities = await self._fetch("remove_range", self.sql.select_all)
            except Exception as e:
                self._report("remove_range", self._failure_outcome(e), e)
                return False
            items = self._matching(entities, items)
            if items is None:
                return False
        ids = [self._id_of(item) for item in items]
        if self.remove_range_strategy is RemoveRangeStrategy.FAN_OUT:
            return await self._remove_fan_out(ids)
        return await self._remove_batch(ids)

    def remove_range_sync(self, items: Predicate | Iterable[EntityType | KeyType]) -> bool:
        if callable(items):
            try:
                entities = self._fetch_sync("remove_range", self.sql.select_all)
            except Exception as e:
                self._report("remove_range", self._failure_outcome(e), e)
                return False
            items = self._matching(entities, items)
            if items is None:
                return False
        ids = [self._id_of(item) for item in items]
        if self.remove_range_strategy is RemoveRangeStrategy.FAN_OUT:
            return self._remove_fan_out_sync(ids)
        return self._remove_batch_sync(ids)

    def _matching(self, entities: list[EntityType], predicate: Predicate) -> list[EntityType] | None:
        try:
            return [e for e in entities if predicate(e)]
        except Exception as e:
            self._report("remove_range", Outcome.INVALID_INPUT, e)
            return None

    def _checked_batch(self, ids: list) -> list | None:
        try:
            return validate_batch_ids(ids)
        except UnsafeIdentifierValue as e:
            self._report("remove_range", Outcome.INVALID_INPUT, e)
            return None

    async def _remove_batch(self, ids: list) -> bool:
        if not ids:
            self._report("remove_range", Outcome.NOT_FOUND)
            return True
        checked = self._checked_batch(ids)
        if checked is None:
            return False
        try:
            affected = await self._execute(
                "remove_range", self.sql.delete_by_ids_statement(), {"ids": checked}
            )
        except Exception as e:
            self._report("remove_range", Outcome.STORE_ERROR, e)
            return False
        self._report("remove_range", Outcome.OK if affected > 0 else Outcome.NOT_FOUND)
        return affected > 0

    def _remove_batch_sync(self, ids: list) -> bool:
        if not ids:
            self._report("remove_range", Outcome.NOT_FOUND)
            return True
        checked = self._checked_batch(ids)
        if checked is None:
            return False
        try:
            affected = self._execute_sync(
                "remove_range", self.sql.delete_by_ids_statement(), {"ids": checked}
            )
        except Exception as e:
            self._report("remove_range", Outcome.STORE_ERROR, e)
            return False
        self._report("remove_range", Outcome.OK if affected > 0 else Outcome.NOT_FOUND)
        return affected > 0

    async def _remove_fan_out(self, ids: list) -> bool:
        # Bounded: at most max_concurrency connections open at once
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def remove_one(id: KeyType) -> bool:
            async with semaphore:
                return await self.remove(id)

        # Cancelling the gather cancels every pending remove_one
        results = await asyncio.gather(*(remove_one(id) for id in ids))
        return self._fan_out_result(results)

    def _remove_fan_out_sync(self, ids: list) -> bool:
        if not ids:
            return self._fan_out_result([])
        with ThreadPoolExecutor(max_workers=min(self.max_concurrency, len(ids))) as pool:
            results = list(pool.map(self.remove_sync, ids))
        return self._fan_out_result(results)

    def _fan_out_result(self, results: list[bool]) -> bool:
        """Aggregate per-id removes into one remove_range outcome, same tags as the batch path."""
        if not results:
            self._report("remove_range", Outcome.NOT_FOUND)
            return True
        succeeded = all(results)
        self._report("remove_range", Outcome.OK if succeeded else Outcome.NOT_FOUND)
        return succeeded
