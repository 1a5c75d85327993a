"""
SQLite store adapter.

Purpose
- Persist entities declared by ``EntityType`` definitions and expose the
  ``find_by``/``upsert``/``delete_where``/``preload`` operations the sync
  orchestrator relies on.

Functional requirements
- Idempotent table creation for entity tables and many-to-many join tables.
- Validation failures surface as ``ValidationError`` with the offending attrs.
- Many-to-many writes replace join rows by diffing against a preloaded base.

Non-functional requirements
- Short-lived connections unless a caller opens an explicit transaction.
- Bounded retries when SQLite reports the database as busy.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Final

from fixture_sync.constants import DEFAULT_BUSY_TIMEOUT_MS
from fixture_sync.domain.errors import StoreError, ValidationError
from fixture_sync.domain.models import AssociationKind, Entity
from fixture_sync.persistence.contracts import (
    AssociationInspector,
    EntityPredicate,
    IdentifierNotIn,
)
from fixture_sync.persistence.schema import Association, EntityType, FieldType

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]

DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

# Kept identifiers bound into one NOT IN clause; larger sets are filtered in Python.
MAX_BOUND_IDENTIFIERS: Final[int] = 900

_SQLITE_BUSY_CODES: Final[frozenset[int]] = frozenset({5, 6})
_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = ("database is locked", "database is busy")

logger = logging.getLogger(__name__)


class StoreBusyError(StoreError):
    """Raised when bounded busy retries are exhausted."""


class SQLiteStore:
    """SQLite-backed store adapter for a fixed set of entity types."""

    def __init__(
        self,
        path: str | Path,
        entity_types: Iterable[EntityType],
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")
        if busy_retry_backoff_ms < 0:
            raise ValueError("busy_retry_backoff_ms must be >= 0")

        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms
        self._types: dict[str, EntityType] = {}
        for entity_type in entity_types:
            if entity_type.name in self._types:
                raise ValueError(f"duplicate entity type {entity_type.name!r}")
            self._types[entity_type.name] = entity_type
        self._shared_conn: sqlite3.Connection | None = None
        self._savepoint_counter = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def entity_types(self) -> tuple[EntityType, ...]:
        return tuple(self._types.values())

    def entity_type(self, name: str) -> EntityType:
        try:
            return self._types[name]
        except KeyError:
            raise StoreError(f"unknown entity type {name!r}") from None

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        if self._shared_conn is not None:
            yield self._shared_conn
            return
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run store operations atomically; nested calls use savepoints."""

        if self._shared_conn is not None:
            conn = self._shared_conn
            savepoint = self._next_savepoint_name()
            self._execute(conn, f"SAVEPOINT {savepoint}", (), operation="savepoint")
            try:
                yield conn
            except Exception:
                self._execute(
                    conn, f"ROLLBACK TO SAVEPOINT {savepoint}", (), operation="rollback savepoint"
                )
                self._execute(conn, f"RELEASE SAVEPOINT {savepoint}", (), operation="release")
                raise
            else:
                self._execute(conn, f"RELEASE SAVEPOINT {savepoint}", (), operation="release")
            return

        conn = self._connect()
        self._shared_conn = conn
        try:
            self._execute(conn, "BEGIN IMMEDIATE", (), operation="begin transaction")
            try:
                yield conn
            except Exception:
                self._execute(conn, "ROLLBACK", (), operation="rollback transaction")
                raise
            else:
                self._execute(conn, "COMMIT", (), operation="commit transaction")
        finally:
            self._shared_conn = None
            conn.close()

    def migrate(self) -> int:
        """Create entity and join tables idempotently; return the table count."""

        statements: dict[str, str] = {}
        for entity_type in self._types.values():
            statements[entity_type.table] = _create_table_sql(entity_type)
            for association in entity_type.many_to_many_associations():
                self._assert_join_compatible(entity_type, association)
                statements.setdefault(
                    association.join_table or "", _create_join_table_sql(association)
                )

        with self.transaction() as conn:
            for sql in statements.values():
                self._execute(conn, sql, (), operation="create table")
        logger.debug("store schema ready", extra={"tables": sorted(statements)})
        return len(statements)

    def find_by(
        self, target_type: AssociationInspector, criteria: Mapping[str, object]
    ) -> Entity | None:
        entity_type = self._resolve_type(target_type)
        if not criteria:
            raise StoreError(f"find_by on {entity_type.name} requires at least one criterion")

        clauses: list[str] = []
        params: list[SQLValue] = []
        for name in criteria:
            if not entity_type.has_field(name):
                raise StoreError(f"{entity_type.name} has no field {name!r}")
            value = criteria[name]
            if value is None:
                clauses.append(f'"{name}" IS NULL')
            else:
                clauses.append(f'"{name}" = ?')
                params.append(_to_sql(value))

        sql = (
            f'SELECT * FROM "{entity_type.table}" WHERE {" AND ".join(clauses)} '
            "ORDER BY rowid LIMIT 2"
        )
        with self.connection() as conn:
            rows = self._execute(conn, sql, params, operation="find_by").fetchall()
        if len(rows) > 1:
            raise StoreError(
                f"expected at most one {entity_type.name} for {dict(criteria)!r}, got several"
            )
        if not rows:
            return None
        return self._row_to_entity(entity_type, rows[0])

    def upsert(self, entity: Entity, attrs: Mapping[str, object]) -> Entity:
        entity_type = self._resolve_type(entity.entity_type)

        columns: dict[str, object] = {}
        replacements: dict[str, list[Entity]] = {}
        details: list[str] = []
        for name, value in attrs.items():
            if entity_type.has_field(name):
                columns[name] = value
                continue
            association = entity_type.association(name)
            if association is None or association.kind is not AssociationKind.MANY_TO_MANY:
                continue
            related = self._coerce_related(association, value, details)
            if related is not None:
                replacements[name] = related

        merged = {**entity.fields, **columns}
        details.extend(entity_type.validate(merged))
        if details:
            raise ValidationError(entity_type.name, attrs, details)

        for name in replacements:
            if entity.persisted and not entity.is_loaded(name):
                raise StoreError(
                    f"association {name!r} of {entity_type.name} must be preloaded before replace"
                )

        try:
            with self.transaction() as conn:
                identifier = self._write_row(conn, entity_type, entity, merged)
                for name, related in replacements.items():
                    base = entity.associations.get(name, []) if entity.persisted else []
                    self._replace_join_rows(
                        conn,
                        entity_type.association(name),
                        identifier,
                        base if isinstance(base, list) else [],
                        related,
                    )
                row = self._fetch_by_identifier(conn, entity_type, identifier)
        except sqlite3.IntegrityError as exc:
            raise ValidationError(entity_type.name, attrs, (str(exc),)) from exc

        if row is None:
            raise StoreError(f"{entity_type.name} {identifier!r} vanished after write")
        saved = self._row_to_entity(entity_type, row)
        saved.associations.update(entity.associations)
        saved.associations.update(replacements)
        logger.debug(
            "upserted entity",
            extra={
                "entity_type": entity_type.name,
                "identifier": identifier,
                "action": "update" if entity.persisted else "insert",
            },
        )
        return saved

    def delete_where(
        self, target_type: AssociationInspector, predicate: EntityPredicate
    ) -> list[Entity]:
        entity_type = self._resolve_type(target_type)
        primary_key = entity_type.primary_key_fields()

        with self.transaction() as conn:
            if (
                isinstance(predicate, IdentifierNotIn)
                and len(primary_key) == 1
                and len(predicate.identifiers) <= MAX_BOUND_IDENTIFIERS
            ):
                keep = [_to_sql(value) for value in predicate.identifiers]
                placeholders = ", ".join("?" for _ in keep)
                where = f'WHERE "{primary_key[0]}" NOT IN ({placeholders})' if keep else ""
                rows = self._execute(
                    conn,
                    f'SELECT * FROM "{entity_type.table}" {where} ORDER BY rowid',
                    keep,
                    operation="select for delete",
                ).fetchall()
                victims = [self._row_to_entity(entity_type, row) for row in rows]
            else:
                rows = self._execute(
                    conn,
                    f'SELECT * FROM "{entity_type.table}" ORDER BY rowid',
                    (),
                    operation="select for delete",
                ).fetchall()
                candidates = [self._row_to_entity(entity_type, row) for row in rows]
                victims = [candidate for candidate in candidates if predicate(candidate)]

            for victim in victims:
                self._delete_row(conn, entity_type, victim)

        logger.debug(
            "deleted entities",
            extra={"entity_type": entity_type.name, "count": len(victims)},
        )
        return victims

    def preload(self, entity: Entity, association_names: Sequence[str]) -> Entity:
        entity_type = self._resolve_type(entity.entity_type)
        loaded = dict(entity.associations)

        with self.connection() as conn:
            for name in association_names:
                association = entity_type.association(name)
                if association is None:
                    raise StoreError(f"{entity_type.name} has no association {name!r}")
                loaded[name] = self._load_association(conn, entity, association)

        return Entity(
            entity_type,
            entity.fields,
            persisted=entity.persisted,
            associations=loaded,
        )

    def all(self, target_type: AssociationInspector) -> list[Entity]:
        entity_type = self._resolve_type(target_type)
        with self.connection() as conn:
            rows = self._execute(
                conn,
                f'SELECT * FROM "{entity_type.table}" ORDER BY rowid',
                (),
                operation="select all",
            ).fetchall()
        return [self._row_to_entity(entity_type, row) for row in rows]

    def count(self, target_type: AssociationInspector) -> int:
        entity_type = self._resolve_type(target_type)
        with self.connection() as conn:
            row = self._execute(
                conn,
                f'SELECT COUNT(*) FROM "{entity_type.table}"',
                (),
                operation="count",
            ).fetchone()
        return int(row[0])

    def _resolve_type(self, target_type: AssociationInspector) -> EntityType:
        registered = self._types.get(target_type.name)
        if registered is None:
            raise StoreError(f"entity type {target_type.name!r} is not registered with this store")
        return registered

    def _assert_join_compatible(self, entity_type: EntityType, association: Association) -> None:
        target = self.entity_type(association.target)
        for side in (entity_type, target):
            if len(side.primary_key_fields()) != 1:
                raise StoreError(
                    f"many_to_many {association.name!r} needs single-field primary keys "
                    f"({side.name} has {side.primary_key_fields()})"
                )

    def _coerce_related(
        self, association: Association, value: object, details: list[str]
    ) -> list[Entity] | None:
        if value is None:
            return None
        if not isinstance(value, (list, tuple)):
            details.append(f"{association.name} must be a list of {association.target} entities")
            return None
        related: list[Entity] = []
        for item in value:
            if (
                not isinstance(item, Entity)
                or item.entity_type.name != association.target
                or not item.persisted
            ):
                details.append(f"{association.name} accepts only persisted {association.target}")
                return None
            related.append(item)
        return related

    def _write_row(
        self,
        conn: sqlite3.Connection,
        entity_type: EntityType,
        entity: Entity,
        values: Mapping[str, object],
    ) -> object:
        primary_key = entity_type.primary_key_fields()
        if entity.persisted:
            names = [name for name in values if name not in primary_key]
            if names:
                assignments = ", ".join(f'"{name}" = ?' for name in names)
                where, key_params = _identifier_clause(primary_key, entity.identifier)
                self._execute(
                    conn,
                    f'UPDATE "{entity_type.table}" SET {assignments} WHERE {where}',
                    [*(_to_sql(values[name]) for name in names), *key_params],
                    operation="update",
                )
            return entity.identifier

        row = {
            name: values.get(name, spec.default)
            for name, spec in entity_type.fields.items()
            if name in values or spec.default is not None
        }
        if entity_type.autoincrement and row.get("id") is None:
            row.pop("id", None)
        names = list(row)
        if names:
            column_sql = ", ".join(f'"{name}"' for name in names)
            placeholders = ", ".join("?" for _ in names)
            sql = f'INSERT INTO "{entity_type.table}" ({column_sql}) VALUES ({placeholders})'
        else:
            sql = f'INSERT INTO "{entity_type.table}" DEFAULT VALUES'
        cursor = self._execute(
            conn, sql, [_to_sql(row[name]) for name in names], operation="insert"
        )
        if entity_type.autoincrement and "id" not in row:
            return cursor.lastrowid
        if len(primary_key) == 1:
            return row.get(primary_key[0])
        return tuple(row.get(name) for name in primary_key)

    def _replace_join_rows(
        self,
        conn: sqlite3.Connection,
        association: Association | None,
        owner_id: object,
        base: Sequence[object],
        related: Sequence[Entity],
    ) -> None:
        if association is None:
            return
        table = association.join_table
        owner_key = association.owner_key
        related_key = association.related_key

        current = {item.identifier for item in base if isinstance(item, Entity)}
        wanted = [item.identifier for item in related]
        for stale in sorted(current - set(wanted), key=repr):
            self._execute(
                conn,
                f'DELETE FROM "{table}" WHERE "{owner_key}" = ? AND "{related_key}" = ?',
                (_to_sql(owner_id), _to_sql(stale)),
                operation="delete join row",
            )
        for identifier in wanted:
            if identifier in current:
                continue
            self._execute(
                conn,
                f'INSERT OR IGNORE INTO "{table}" ("{owner_key}", "{related_key}") VALUES (?, ?)',
                (_to_sql(owner_id), _to_sql(identifier)),
                operation="insert join row",
            )

    def _delete_row(self, conn: sqlite3.Connection, entity_type: EntityType, entity: Entity) -> None:
        primary_key = entity_type.primary_key_fields()
        where, params = _identifier_clause(primary_key, entity.identifier)
        self._execute(
            conn,
            f'DELETE FROM "{entity_type.table}" WHERE {where}',
            params,
            operation="delete",
        )
        if len(primary_key) != 1:
            return
        identifier = _to_sql(entity.identifier)

        for association in entity_type.many_to_many_associations():
            self._execute(
                conn,
                f'DELETE FROM "{association.join_table}" WHERE "{association.owner_key}" = ?',
                (identifier,),
                operation="delete join rows",
            )
        # Rowids are reused, so links pointing at this row must not outlive it.
        for owner_type in self._types.values():
            for association in owner_type.many_to_many_associations():
                if association.target != entity_type.name:
                    continue
                self._execute(
                    conn,
                    f'DELETE FROM "{association.join_table}" WHERE "{association.related_key}" = ?',
                    (identifier,),
                    operation="delete inbound join rows",
                )

        for association in entity_type.child_associations():
            child_type = self._types.get(association.target)
            foreign_key = association.foreign_key or ""
            if child_type is None or not child_type.has_field(foreign_key):
                continue
            rows = self._execute(
                conn,
                f'SELECT * FROM "{child_type.table}" WHERE "{foreign_key}" = ? ORDER BY rowid',
                (identifier,),
                operation=f"select {association.kind.value} children",
            ).fetchall()
            for row in rows:
                self._delete_row(conn, child_type, self._row_to_entity(child_type, row))

    def _fetch_by_identifier(
        self, conn: sqlite3.Connection, entity_type: EntityType, identifier: object
    ) -> sqlite3.Row | None:
        where, params = _identifier_clause(entity_type.primary_key_fields(), identifier)
        row: sqlite3.Row | None = self._execute(
            conn,
            f'SELECT * FROM "{entity_type.table}" WHERE {where}',
            params,
            operation="fetch",
        ).fetchone()
        return row

    def _load_association(
        self, conn: sqlite3.Connection, entity: Entity, association: Association
    ) -> object:
        target = self.entity_type(association.target)
        target_key = target.primary_key_fields()[0]

        if association.kind is AssociationKind.BELONGS_TO:
            value = entity.fields.get(association.foreign_key or "")
            if value is None:
                return None
            row = self._execute(
                conn,
                f'SELECT * FROM "{target.table}" WHERE "{target_key}" = ?',
                (_to_sql(value),),
                operation="preload belongs_to",
            ).fetchone()
            return None if row is None else self._row_to_entity(target, row)

        if association.kind is AssociationKind.MANY_TO_MANY:
            rows = self._execute(
                conn,
                f'SELECT t.* FROM "{target.table}" AS t '
                f'JOIN "{association.join_table}" AS j ON t."{target_key}" = j."{association.related_key}" '
                f'WHERE j."{association.owner_key}" = ? ORDER BY j.rowid',
                (_to_sql(entity.identifier),),
                operation="preload many_to_many",
            ).fetchall()
            return [self._row_to_entity(target, row) for row in rows]

        rows = self._execute(
            conn,
            f'SELECT * FROM "{target.table}" WHERE "{association.foreign_key}" = ? ORDER BY rowid',
            (_to_sql(entity.identifier),),
            operation=f"preload {association.kind.value}",
        ).fetchall()
        children = [self._row_to_entity(target, row) for row in rows]
        if association.kind is AssociationKind.HAS_ONE:
            return children[0] if children else None
        return children

    def _row_to_entity(self, entity_type: EntityType, row: sqlite3.Row) -> Entity:
        values: dict[str, object] = {}
        for name in row.keys():
            value = row[name]
            spec = entity_type.fields.get(name)
            if spec is not None and spec.type is FieldType.BOOLEAN and value is not None:
                value = bool(value)
            values[name] = value
        return Entity(entity_type, values, persisted=True)

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _next_savepoint_name(self) -> str:
        self._savepoint_counter += 1
        return f"sp_{self._savepoint_counter}"

    def _execute(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams,
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        for attempt in range(self._busy_retry_limit + 1):
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if self._is_busy_error(exc) and attempt < self._busy_retry_limit:
                    time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))
                    continue
                if self._is_busy_error(exc):
                    raise StoreBusyError(
                        f"{operation} hit SQLITE_BUSY for {self._path} after "
                        f"{self._busy_retry_limit + 1} attempt(s): {exc}"
                    ) from exc
                raise StoreError(f"{operation} failed for {self._path}: {exc}") from exc
        raise StoreBusyError(f"{operation} exhausted retries unexpectedly")

    def _is_busy_error(self, exc: sqlite3.Error) -> bool:
        code = getattr(exc, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_BUSY_CODES:
            return True
        message = str(exc).lower()
        return any(fragment in message for fragment in _BUSY_SUBSTRINGS)


def _create_table_sql(entity_type: EntityType) -> str:
    primary_key = entity_type.primary_key_fields()
    columns: list[str] = []
    for name, spec in entity_type.fields.items():
        if entity_type.autoincrement and name == "id":
            columns.append('"id" INTEGER PRIMARY KEY')
        else:
            columns.append(f'"{name}" {spec.type.sql_affinity}')
    if not entity_type.autoincrement:
        key_sql = ", ".join(f'"{name}"' for name in primary_key)
        columns.append(f"PRIMARY KEY ({key_sql})")
    return f'CREATE TABLE IF NOT EXISTS "{entity_type.table}" ({", ".join(columns)})'


def _create_join_table_sql(association: Association) -> str:
    owner_key = association.owner_key
    related_key = association.related_key
    return (
        f'CREATE TABLE IF NOT EXISTS "{association.join_table}" ('
        f'"{owner_key}" NOT NULL, "{related_key}" NOT NULL, '
        f'PRIMARY KEY ("{owner_key}", "{related_key}"))'
    )


def _identifier_clause(
    primary_key: tuple[str, ...], identifier: object
) -> tuple[str, list[SQLValue]]:
    if len(primary_key) == 1:
        return f'"{primary_key[0]}" = ?', [_to_sql(identifier)]
    if not isinstance(identifier, tuple) or len(identifier) != len(primary_key):
        raise StoreError(f"composite identifier must be a {len(primary_key)}-tuple")
    where = " AND ".join(f'"{name}" = ?' for name in primary_key)
    return where, [_to_sql(value) for value in identifier]


def _to_sql(value: object) -> SQLValue:
    if value is None or isinstance(value, (str, bytes, float)):
        return value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, Entity):
        raise StoreError("entities cannot be stored in scalar columns; use a relation")
    return str(value)


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "SQLParams",
    "SQLValue",
    "SQLiteStore",
    "StoreBusyError",
]
