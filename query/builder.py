"""
Query Builder

Translates a discovered shape plus a declarative request into parameterized SQL.
All values are passed as asyncpg positional parameters ($1, $2, ...); values are never interpolated.
Identifiers come only from the shape, i.e. from names the catalog reported;
anything else is rejected before it can reach SQL text.

Supports:
- Stable projections (absent fields come back as NULL or a default literal)
- Equality filters that are silently dropped when the field did not resolve
- Case-insensitive name search over whichever name columns exist
- Ordering by the most specific timestamp available
- Column-gated INSERT / UPDATE / soft-or-hard DELETE
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

from schema.shape import ShapeDescriptor
from utils.errors import NoFieldsToUpdateError, NoMappableColumnsError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 200
MAX_LIMIT = 500
DEFAULT_SORT = ("updated_at", "created_at", "id")
NAME_FIELDS = ("first_name", "last_name")

# Values written to an active flag, by column kind: (active, inactive)
BOOLEAN_FLAGS = (True, False)
NUMERIC_FLAGS = (1, 0)
TEXT_FLAGS = ("ACTIVO", "INACTIVO")

LIKE_ESCAPE = "ESCAPE '\\'"


class _ServerNow:
    """Marks a value the database clock should supply"""

    def __repr__(self):
        return "SERVER_NOW"


SERVER_NOW = _ServerNow()


def clamp_limit(raw: Any, default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT, minimum: int = 1) -> int:
    """Coerce a caller-supplied limit into [minimum, maximum]; junk falls back to `default`."""
    if raw is None or raw == "":
        value = default
    else:
        try:
            value = int(raw)
        except (TypeError, ValueError):
            value = default
    return max(minimum, min(maximum, value))


def clamp_page(raw: Any) -> int:
    """Pages start at 1"""
    return clamp_limit(raw, default=1, maximum=2**31 - 1)


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit


def sort_direction(raw: Any) -> str:
    """ASC only on an explicit request, DESC otherwise"""
    return "ASC" if str(raw or "").strip().lower() == "asc" else "DESC"


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def like_pattern(term: str) -> str:
    """Substring pattern for `term` with its LIKE wildcards matched literally; pair with LIKE_ESCAPE."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SqlParams:
    """Positional parameter list; `add` returns the placeholder for a value."""

    def __init__(self, initial: Iterable[Any] = ()):
        self.values: list[Any] = list(initial)

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"

    def __len__(self):
        return len(self.values)


@dataclass
class QuerySpec:
    """Declarative read request"""
    text_search: Optional[str] = None
    text_fields: tuple[str, str] = NAME_FIELDS
    equality_filters: dict[str, Any] = field(default_factory=dict)
    sort_preference: tuple[str, ...] = DEFAULT_SORT
    sort_direction: str = "DESC"
    limit: int = DEFAULT_LIMIT
    offset: int = 0


@dataclass
class MutationSpec:
    """Ordered (canonical_field, value) pairs for an INSERT or UPDATE"""
    assignments: list[tuple[str, Any]] = field(default_factory=list)

    def set(self, canonical_field: str, value: Any) -> "MutationSpec":
        self.assignments.append((canonical_field, value))
        return self

    def resolved(self, shape: ShapeDescriptor) -> list[tuple[str, Any]]:
        """Assignments whose field maps to a real column, as (column, value)"""
        return [
            (shape.column(name), value)
            for name, value in self.assignments
            if shape.column(name) is not None
        ]

    def __bool__(self):
        return bool(self.assignments)


class QueryBuilder:
    """Builds parameterized SQL for one discovered shape."""

    def __init__(self, shape: ShapeDescriptor, alias: Optional[str] = None):
        self.shape = shape
        self.alias = alias

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def ident(self, column: str) -> str:
        """Quoted, optionally alias-qualified column; must be a catalog column."""
        if column not in self.shape.columns:
            raise ValueError(f"Unverified identifier '{column}' for table '{self.shape.table}'")
        quoted = quote_ident(column)
        return f"{self.alias}.{quoted}" if self.alias else quoted

    def ref(self, canonical_field: str) -> Optional[str]:
        """Column reference for a canonical field, or None when it did not resolve"""
        column = self.shape.column(canonical_field)
        return self.ident(column) if column is not None else None

    @property
    def table(self) -> str:
        quoted = quote_ident(self.shape.table)
        return f"{quoted} {self.alias}" if self.alias else quoted

    # ------------------------------------------------------------------
    # Fragments
    # ------------------------------------------------------------------

    def projection(self, fields: Sequence[str], defaults: Optional[Mapping[str, str]] = None) -> str:
        """
        `column AS field` for each resolved field, `<default> AS field` otherwise.

        `defaults` holds SQL fragments built by the caller from literals or
        from `ref()`; it never carries request input.
        """
        defaults = defaults or {}
        parts = []
        for name in fields:
            column = self.ref(name)
            expr = column if column is not None else defaults.get(name, "NULL")
            parts.append(f"{expr} AS {quote_ident(name)}")
        return ", ".join(parts)

    def equality_conditions(self, filters: Mapping[str, Any], params: SqlParams) -> list[str]:
        """Equality conditions; filters on unresolved fields are dropped"""
        conditions = []
        for name, value in filters.items():
            column = self.ref(name)
            if column is None:
                logger.debug(f"Dropping filter on unresolved field '{name}' ({self.shape.table})")
                continue
            conditions.append(f"{column} = {params.add(value)}")
        return conditions

    def text_search_condition(
        self,
        term: Optional[str],
        params: SqlParams,
        fields: tuple[str, str] = NAME_FIELDS,
    ) -> Optional[str]:
        """
        Case-insensitive substring match over the name fields.

        Both resolved: search `last || ' ' || first`; one resolved: search it;
        none: the term is ignored.
        """
        term = (term or "").strip().lower()
        if not term:
            return None

        first, last = (self.ref(f) for f in fields)
        if first and last:
            target = f"LOWER(COALESCE({last}, '') || ' ' || COALESCE({first}, ''))"
        elif first or last:
            target = f"LOWER({first or last})"
        else:
            return None
        return f"{target} LIKE {params.add(like_pattern(term))} {LIKE_ESCAPE}"

    def flag_values(self, canonical_field: str = "active") -> Optional[tuple[Any, Any]]:
        """(active, inactive) values matching the flag column's type, or None when unusable"""
        info = self.shape.info(canonical_field)
        if info is None:
            return None
        if info.is_boolean:
            return BOOLEAN_FLAGS
        if info.is_numeric:
            return NUMERIC_FLAGS
        if info.is_text:
            return TEXT_FLAGS
        return None

    def active_condition(self) -> Optional[str]:
        """Predicate hiding soft-deleted rows, or None when there is no usable flag"""
        column = self.ref("active")
        flags = self.flag_values("active")
        if column is None or flags is None:
            return None
        if flags is BOOLEAN_FLAGS:
            return f"{column} IS NOT FALSE"
        inactive = flags[1]
        literal = str(inactive) if flags is NUMERIC_FLAGS else f"'{inactive}'"
        return f"{column} IS DISTINCT FROM {literal}"

    def order_clause(self, preference: Sequence[str] = DEFAULT_SORT, direction: str = "DESC") -> str:
        """ORDER BY the first resolved field of `preference`"""
        for name in preference:
            column = self.ref(name)
            if column is not None:
                return f"ORDER BY {column} {sort_direction(direction)}"
        return ""

    def where_clause(self, spec: QuerySpec, params: SqlParams, extra: Sequence[str] = ()) -> str:
        """WHERE over `extra`, the equality filters and the text search; empty when nothing applies"""
        conditions = list(extra)
        conditions.extend(self.equality_conditions(spec.equality_filters, params))
        search = self.text_search_condition(spec.text_search, params, spec.text_fields)
        if search:
            conditions.append(search)
        return f"WHERE {' AND '.join(conditions)}" if conditions else ""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def build_select(
        self,
        spec: QuerySpec,
        fields: Sequence[str],
        defaults: Optional[Mapping[str, str]] = None,
        extra_conditions: Sequence[str] = (),
        params: Optional[SqlParams] = None,
    ) -> tuple[str, list]:
        """
        Build a SELECT for the shape.
        Returns (sql, params).
        """
        params = params if params is not None else SqlParams()
        select_clause = self.projection(fields, defaults)
        where_clause = self.where_clause(spec, params, extra_conditions)
        order_clause = self.order_clause(spec.sort_preference, spec.sort_direction)
        limit_clause = f"LIMIT {params.add(spec.limit)}"
        offset_clause = f"OFFSET {params.add(spec.offset)}" if spec.offset else ""

        sql = f"SELECT {select_clause} FROM {self.table} {where_clause} {order_clause} {limit_clause} {offset_clause}"
        return " ".join(sql.split()), params.values

    def build_count(
        self,
        spec: QuerySpec,
        extra_conditions: Sequence[str] = (),
        params: Optional[SqlParams] = None,
    ) -> tuple[str, list]:
        """
        Build a COUNT with the same filters as `build_select`, no pagination.
        Returns (sql, params).
        """
        params = params if params is not None else SqlParams()
        where_clause = self.where_clause(spec, params, extra_conditions)
        sql = f"SELECT COUNT(*) AS total FROM {self.table} {where_clause}"
        return " ".join(sql.split()), params.values

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _value(self, value: Any, params: SqlParams) -> str:
        return "NOW()" if value is SERVER_NOW else params.add(value)

    def _key_condition(self, key: Any, params: SqlParams) -> str:
        id_column = self.ref("id")
        if id_column is None:
            raise NoMappableColumnsError(self.shape.table)
        return f"{id_column} = {params.add(key)}"

    def build_insert(
        self,
        mutation: MutationSpec,
        returning: Sequence[str] = (),
        defaults: Optional[Mapping[str, str]] = None,
    ) -> tuple[str, list]:
        """
        INSERT only the fields that resolved; RETURNING the read projection
        when `returning` names any field.
        Raises NoMappableColumnsError when nothing resolved.
        """
        assignments = mutation.resolved(self.shape)
        if not assignments:
            raise NoMappableColumnsError(self.shape.table)

        params = SqlParams()
        columns = ", ".join(self.ident(col) for col, _ in assignments)
        values = ", ".join(self._value(value, params) for _, value in assignments)
        sql = f"INSERT INTO {self.table} ({columns}) VALUES ({values})"
        if returning:
            sql += f" RETURNING {self.projection(returning, defaults)}"
        return sql, params.values

    def build_update(
        self,
        key: Any,
        mutation: MutationSpec,
        returning: Sequence[str],
        filters: Optional[Mapping[str, Any]] = None,
        defaults: Optional[Mapping[str, str]] = None,
    ) -> tuple[str, list]:
        """
        UPDATE the resolved fields of one row, conjoining `filters` into WHERE.

        The `updated_at` column, when present, is always set to NOW() after
        the caller's assignments. An edit set with nothing resolvable raises
        NoFieldsToUpdateError instead of issuing a touch-only update.
        """
        assignments = mutation.resolved(self.shape)
        if not assignments:
            raise NoFieldsToUpdateError()

        params = SqlParams()
        sets = [f"{self.ident(col)} = {self._value(value, params)}" for col, value in assignments]
        updated = self.ref("updated_at")
        if updated is not None and self.shape.column("updated_at") not in {col for col, _ in assignments}:
            sets.append(f"{updated} = NOW()")

        conditions = [self._key_condition(key, params)]
        conditions.extend(self.equality_conditions(filters or {}, params))

        sql = (
            f"UPDATE {self.table} SET {', '.join(sets)} "
            f"WHERE {' AND '.join(conditions)} "
            f"RETURNING {self.projection(returning, defaults)}"
        )
        return sql, params.values

    def build_delete(
        self,
        key: Any,
        filters: Optional[Mapping[str, Any]] = None,
        returning: Sequence[str] = (),
        soft: bool = True,
    ) -> tuple[str, list]:
        """
        Soft-delete through the `active` flag whenever it resolved (and
        `soft` allows it), hard DELETE only when there is no flag. Ownership
        filters are conjoined into WHERE.

        A flag whose type has no known inactive value raises
        NoMappableColumnsError; the row is never removed in that case.
        """
        params = SqlParams()
        conditions = [self._key_condition(key, params)]
        conditions.extend(self.equality_conditions(filters or {}, params))
        where_clause = " AND ".join(conditions)

        if soft and self.shape.has("active"):
            flags = self.flag_values("active")
            if flags is None:
                raise NoMappableColumnsError(self.shape.table)
            inactive = "FALSE" if flags is BOOLEAN_FLAGS else params.add(flags[1])
            sets = [f"{self.ref('active')} = {inactive}"]
            updated = self.ref("updated_at")
            if updated is not None:
                sets.append(f"{updated} = NOW()")
            sql = f"UPDATE {self.table} SET {', '.join(sets)} WHERE {where_clause}"
        else:
            sql = f"DELETE FROM {self.table} WHERE {where_clause}"
        if returning:
            sql += f" RETURNING {self.projection(returning)}"
        return sql, params.values
