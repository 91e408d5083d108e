"""
Local persistent store for the synchronized tables.

DuckDB through ibis. Every covered table lives in the ``hubsync`` schema as
``(record_key, seq, payload)``: the record's key, its insertion order and the
record itself as JSON. Automatically creates the schema and tables if they
don't exist.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import ibis

from hubsync.exceptions import HubSyncError, StateStoreError
from hubsync.utils.logging import get_logger

logger = get_logger("hubsync.store")

SCHEMA = "hubsync"

# Rows per INSERT statement
INSERT_CHUNK_SIZE = 500


@dataclass(frozen=True)
class TableSpec:
    """A synchronized table and the field that identifies its records."""

    name: str
    key: str = "id"


COVERED_TABLES: tuple[TableSpec, ...] = (
    TableSpec("settings"),
    TableSpec("persons"),
    TableSpec("billing_records"),
    TableSpec("payments"),
    TableSpec("balances", key="person_id"),
    TableSpec("balance_ledger"),
    TableSpec("cash_ledger"),
    TableSpec("letter_templates"),
    TableSpec("letter_archive"),
)

COVERED_TABLE_NAMES: tuple[str, ...] = tuple(definition.name for definition in COVERED_TABLES)


def _escape_sql_string(value: str) -> str:
    """Escape single quotes for SQL strings."""
    return value.replace("'", "''")


def _sql_value(value: Any) -> str:
    """Convert Python value to SQL string representation."""
    if value is None:
        return "NULL"
    elif isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    elif isinstance(value, (int, float)):
        return str(value)
    elif isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return f"TIMESTAMP '{value.isoformat()}'"
    else:
        escaped = _escape_sql_string(str(value))
        return f"'{escaped}'"


def _encode(row: dict[str, Any]) -> str:
    return json.dumps(row, ensure_ascii=False, default=str)


class LocalStore:
    """
    Key-indexed, transactional store for the covered tables.

    Args:
        path: DuckDB database file; None for an in-memory database
        tables: Table specs to manage
    """

    def __init__(self, path: str | Path | None = None, tables: Iterable[TableSpec] = COVERED_TABLES):
        self.path = str(path) if path is not None else None
        self.tables: dict[str, TableSpec] = {definition.name: definition for definition in tables}
        self._connection: ibis.BaseBackend | None = None
        self._initialized = False
        self._in_transaction = False

    @property
    def connection(self) -> ibis.BaseBackend:
        """ibis DuckDB backend (lazy)."""
        if self._connection is None:
            try:
                if self.path in (None, ":memory:"):
                    self._connection = ibis.duckdb.connect()
                else:
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                    self._connection = ibis.duckdb.connect(self.path)
            except Exception as e:
                raise StateStoreError(f"Could not open local store {self.path or ':memory:'}: {e}") from e
        return self._connection

    def execute(self, query: str) -> list[tuple]:
        """Run one SQL statement and return any result rows."""
        try:
            cursor = self.connection.raw_sql(query)
            if cursor is None or cursor.description is None:
                return []
            return cursor.fetchall()
        except HubSyncError:
            raise
        except Exception as e:
            raise StateStoreError(f"Local store query failed: {e}", details={"query": query[:200]}) from e

    def initialize(self) -> None:
        """Create the schema and covered tables if they don't exist."""
        if self._initialized:
            return
        self.execute(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}")
        # No PRIMARY KEY: DuckDB rejects delete-then-reinsert of a key inside
        # one transaction, so key uniqueness is enforced here instead.
        for definition in self.tables.values():
            self.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._qualified(definition.name)} (
                    record_key VARCHAR NOT NULL,
                    seq BIGINT NOT NULL,
                    payload VARCHAR NOT NULL
                )
                """
            )
        self._initialized = True
        logger.debug(f"Local store ready ({len(self.tables)} tables)")

    def definition(self, table: str) -> TableSpec:
        try:
            return self.tables[table]
        except KeyError:
            raise StateStoreError(f"Unknown table '{table}'", details={"table": table}) from None

    def _qualified(self, table: str) -> str:
        return f"{SCHEMA}.{self.definition(table).name}"

    def _record_key(self, definition: TableSpec, row: dict[str, Any]) -> str:
        if not isinstance(row, dict):
            raise StateStoreError(f"Rows of table '{definition.name}' must be objects, got {type(row).__name__}")
        value = row.get(definition.key)
        if value is None or value == "":
            raise StateStoreError(
                f"Row in table '{definition.name}' has no '{definition.key}' value",
                details={"table": definition.name, "key": definition.key},
            )
        return str(value)

    # --- Reads --------------------------------------------------------------

    def read_table(self, table: str) -> list[dict[str, Any]]:
        """All records of ``table`` in insertion order."""
        self.initialize()
        rows = self.execute(f"SELECT payload FROM {self._qualified(table)} ORDER BY seq")
        return [json.loads(payload) for (payload,) in rows]

    def get_row(self, table: str, key: Any) -> dict[str, Any] | None:
        self.initialize()
        rows = self.execute(
            f"SELECT payload FROM {self._qualified(table)} WHERE record_key = {_sql_value(str(key))}"
        )
        return json.loads(rows[0][0]) if rows else None

    def count(self, table: str) -> int:
        self.initialize()
        return int(self.execute(f"SELECT COUNT(*) FROM {self._qualified(table)}")[0][0])

    def _keys(self, table: str) -> set[str]:
        return {key for (key,) in self.execute(f"SELECT record_key FROM {self._qualified(table)}")}

    def _next_seq(self, table: str) -> int:
        return int(self.execute(f"SELECT COALESCE(MAX(seq), -1) + 1 FROM {self._qualified(table)}")[0][0])

    # --- Writes -------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[LocalStore]:
        """
        All-or-nothing block. Any exception rolls back every write made inside it.

        Nested blocks join the outermost transaction.
        """
        self.initialize()
        if self._in_transaction:
            yield self
            return

        self.execute("BEGIN TRANSACTION")
        self._in_transaction = True
        try:
            yield self
        except BaseException:
            self._in_transaction = False
            try:
                self.execute("ROLLBACK")
            except StateStoreError as rollback_error:
                logger.error(f"Rollback failed: {rollback_error}")
            raise
        else:
            self._in_transaction = False
            self.execute("COMMIT")

    def clear_table(self, table: str) -> None:
        self.initialize()
        self.execute(f"DELETE FROM {self._qualified(table)}")

    def insert_rows(self, table: str, rows: list[dict[str, Any]]) -> int:
        """
        Append records; every key must be new.

        Raises:
            StateStoreError: Missing key field, or a key already present
        """
        self.initialize()
        definition = self.definition(table)
        existing = self._keys(table)
        keyed: list[tuple[str, dict[str, Any]]] = []
        for row in rows:
            key = self._record_key(definition, row)
            if key in existing:
                raise StateStoreError(
                    f"Duplicate {definition.key} '{key}' in table '{table}'",
                    details={"table": table, "key": key},
                )
            existing.add(key)
            keyed.append((key, row))
        self._insert(table, keyed, self._next_seq(table))
        return len(keyed)

    def put_rows(self, table: str, rows: list[dict[str, Any]]) -> tuple[int, int]:
        """
        Insert-or-replace records by key, keeping the position of replaced ones.

        Returns:
            (inserted, updated)
        """
        self.initialize()
        definition = self.definition(table)
        latest: dict[str, dict[str, Any]] = {}
        for row in rows:
            latest[self._record_key(definition, row)] = row
        if not latest:
            return 0, 0

        qualified = self._qualified(table)
        key_list = ", ".join(_sql_value(k) for k in latest)
        positions = dict(self.execute(f"SELECT record_key, seq FROM {qualified} WHERE record_key IN ({key_list})"))
        next_seq = self._next_seq(table)

        with self.transaction():
            if positions:
                self.execute(f"DELETE FROM {qualified} WHERE record_key IN ({key_list})")
            values = []
            for key, row in latest.items():
                seq = positions.get(key)
                if seq is None:
                    seq = next_seq
                    next_seq += 1
                values.append(f"({_sql_value(key)}, {int(seq)}, {_sql_value(_encode(row))})")
            self._insert_values(qualified, values)

        updated = len(positions)
        return len(latest) - updated, updated

    def _insert(self, table: str, keyed: list[tuple[str, dict[str, Any]]], start_seq: int) -> None:
        values = [
            f"({_sql_value(key)}, {start_seq + offset}, {_sql_value(_encode(row))})"
            for offset, (key, row) in enumerate(keyed)
        ]
        self._insert_values(self._qualified(table), values)

    def _insert_values(self, qualified: str, values: list[str]) -> None:
        for start in range(0, len(values), INSERT_CHUNK_SIZE):
            chunk = values[start : start + INSERT_CHUNK_SIZE]
            self.execute(f"INSERT INTO {qualified} (record_key, seq, payload) VALUES {', '.join(chunk)}")

    def close(self) -> None:
        if self._connection is not None:
            try:
                self._connection.disconnect()
            finally:
                self._connection = None
                self._initialized = False

    def __repr__(self) -> str:
        return f"LocalStore(path={self.path or ':memory:'!r})"
