"""
Supamock - Relational Store.

In-memory tables keyed by qualified name ("schema.table"). Rows are plain
dicts kept in insertion order. Update and upsert merge into the stored dict
itself, so anyone holding a row reference sees the change.

The store is a MutableMapping so RPC and edge handlers can work with it the
way they would with a dict of tables:

    users = store.setdefault("public.users", [])
    users.append({"id": 3, "name": "Carol"})
"""

import copy
import logging
import threading
from collections.abc import Callable, Iterator, MutableMapping
from typing import Any

from supamock.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

Row = dict[str, Any]
Table = list[Row]
RowPredicate = Callable[[Row], bool]

# Fixed identity column used by upsert
IDENTITY_KEY = "id"


def qualify(schema: str, table: str) -> str:
    """Build the store key for a schema/table pair."""
    return f"{schema}.{table}"


def _as_rows(payload: Any) -> list[Row]:
    """Normalize a single-row or batch payload to a list of rows."""
    if payload is None:
        raise ValidationError("No data provided")
    rows = payload if isinstance(payload, list) else [payload]
    if not rows:
        raise ValidationError("No data provided")
    for row in rows:
        if not isinstance(row, dict):
            raise ValidationError("Invalid data format", details=f"expected an object, got {type(row).__name__}")
    return rows


class RelationalStore(MutableMapping):
    """
    Qualified name -> ordered row list.

    Tables are created lazily on first write and only disappear on reset().
    Every mutation holds `lock`; it is re-entrant so a handler already
    holding it can still call the CRUD primitives.
    """

    def __init__(self, tables: dict[str, Table] | None = None):
        self._tables: dict[str, Table] = dict(tables or {})
        self.lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Mapping protocol
    # -------------------------------------------------------------------------

    def __getitem__(self, name: str) -> Table:
        return self._tables[name]

    def __setitem__(self, name: str, rows: Table) -> None:
        with self.lock:
            self._tables[name] = rows

    def __delitem__(self, name: str) -> None:
        with self.lock:
            del self._tables[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tables)

    def __len__(self) -> int:
        return len(self._tables)

    def __repr__(self) -> str:
        sizes = ", ".join(f"{name}={len(rows)}" for name, rows in self._tables.items())
        return f"RelationalStore({sizes})"

    # -------------------------------------------------------------------------
    # CRUD primitives
    # -------------------------------------------------------------------------

    def table(self, name: str) -> Table:
        """Return the live table, creating it if absent."""
        with self.lock:
            return self._tables.setdefault(name, [])

    def snapshot(self, name: str) -> Table:
        """Deep copy of a table for read pipelines; empty if absent."""
        with self.lock:
            return copy.deepcopy(self._tables.get(name, []))

    def insert(self, name: str, payload: Row | list[Row] | None) -> list[Row]:
        """Append one or many rows. Returns the inserted rows."""
        rows = _as_rows(payload)
        with self.lock:
            self.table(name).extend(rows)
        logger.debug(f"insert {name}: {len(rows)} row(s)")
        return list(rows)

    def update(self, name: str, predicate: RowPredicate | None, patch: Row | None) -> list[Row]:
        """
        Merge `patch` into every row matching `predicate`.

        Raises NotFound when nothing matched, including a missing table.
        """
        if patch is None:
            raise ValidationError("No data provided")
        if not isinstance(patch, dict):
            raise ValidationError("Invalid data format", details="update payload must be an object")
        if predicate is None:
            raise ValidationError("UPDATE requires a filter", hint="Add at least one filter to the request")

        with self.lock:
            updated = [row for row in self._tables.get(name, []) if predicate(row)]
            for row in updated:
                row.update(patch)

        if not updated:
            raise NotFound("Not found", details=f"no rows in {name} matched the update filters")
        logger.debug(f"update {name}: {len(updated)} row(s)")
        return updated

    def upsert(self, name: str, payload: Row | list[Row] | None, ignore_duplicates: bool = False) -> list[Row]:
        """
        Insert rows, merging onto existing rows that share the same id.

        With `ignore_duplicates`, rows whose id already exists are left
        untouched and returned as stored.
        """
        rows = _as_rows(payload)
        results: list[Row] = []
        with self.lock:
            table = self.table(name)
            for row in rows:
                existing = self._find_by_identity(table, row.get(IDENTITY_KEY))
                if existing is None:
                    table.append(row)
                    results.append(row)
                    continue
                if not ignore_duplicates:
                    existing.update(row)
                results.append(existing)
        logger.debug(f"upsert {name}: {len(results)} row(s)")
        return results

    def delete(self, name: str, predicate: RowPredicate | None) -> list[Row]:
        """Remove and return rows matching `predicate`; a filter is required."""
        if predicate is None:
            raise ValidationError("DELETE requires a filter", hint="Add at least one filter to the request")

        with self.lock:
            table = self._tables.get(name)
            if not table:
                return []
            kept: Table = []
            removed: Table = []
            for row in table:
                (removed if predicate(row) else kept).append(row)
            table[:] = kept

        logger.debug(f"delete {name}: {len(removed)} row(s)")
        return removed

    def reset(self) -> None:
        """Drop every table."""
        with self.lock:
            self._tables.clear()

    @staticmethod
    def _find_by_identity(table: Table, identity: Any) -> Row | None:
        if identity is None:
            return None
        for row in table:
            if row.get(IDENTITY_KEY) == identity:
                return row
        return None
