"""
Shape discovery

Resolves one canonical entity against the physical schema:
1. Probe candidate tables in priority order; the first with columns wins.
2. For every canonical field, take the first synonym present on that table.

Shapes are built per request and never cached, so schema migrations are
picked up immediately.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, TYPE_CHECKING

from utils.errors import SchemaNotFoundError

if TYPE_CHECKING:
    from .catalog import SchemaCatalog
    from .entities import EntityShape

logger = logging.getLogger(__name__)

NUMERIC_TYPES = frozenset({
    "smallint", "integer", "bigint", "numeric", "decimal", "real", "double precision",
})


@dataclass(frozen=True)
class ColumnInfo:
    """One physical column as reported by the catalog."""
    name: str
    data_type: str

    @property
    def is_date_like(self) -> bool:
        data_type = (self.data_type or "").lower()
        return "timestamp" in data_type or data_type == "date"

    @property
    def is_boolean(self) -> bool:
        return (self.data_type or "").lower() == "boolean"

    @property
    def is_numeric(self) -> bool:
        return (self.data_type or "").lower() in NUMERIC_TYPES

    @property
    def is_text(self) -> bool:
        data_type = (self.data_type or "").lower()
        return data_type == "text" or data_type.startswith("character")


@dataclass(frozen=True)
class ShapeDescriptor:
    """
    Discovery result for one entity.

    Invariant: every non-None value in `field_map` is a member of `columns`.
    """
    table: str
    field_map: Mapping[str, Optional[str]]
    columns: frozenset[str]
    column_info: Mapping[str, ColumnInfo] = field(default_factory=dict)

    def __post_init__(self):
        unknown = {col for col in self.field_map.values() if col is not None} - self.columns
        if unknown:
            raise ValueError(f"Field map references columns not on '{self.table}': {sorted(unknown)}")

    def column(self, canonical_field: str) -> Optional[str]:
        """Physical column for a canonical field, or None when absent"""
        return self.field_map.get(canonical_field)

    def has(self, *canonical_fields: str) -> bool:
        """True when every given field resolved"""
        return all(self.column(f) is not None for f in canonical_fields)

    def info(self, canonical_field: str) -> Optional[ColumnInfo]:
        column = self.column(canonical_field)
        return self.column_info.get(column) if column else None

    def is_date_like(self, canonical_field: str) -> bool:
        info = self.info(canonical_field)
        return info is not None and info.is_date_like


def resolve_synonym(columns: Iterable[str], synonyms: Iterable[str]) -> Optional[str]:
    """First synonym present in `columns`; synonym order is priority order."""
    present = set(columns)
    for candidate in synonyms:
        if candidate in present:
            return candidate
    return None


def build_shape(table: str, columns: list[ColumnInfo], synonyms: Mapping[str, tuple[str, ...]]) -> ShapeDescriptor:
    """Map every canonical field of an entity onto the columns of `table`"""
    names = frozenset(col.name for col in columns)
    return ShapeDescriptor(
        table=table,
        field_map={name: resolve_synonym(names, options) for name, options in synonyms.items()},
        columns=names,
        column_info={col.name: col for col in columns},
    )


class ShapeResolver:
    """Discovers the shape of one canonical entity through the catalog."""

    def __init__(self, catalog: "SchemaCatalog", entity: "EntityShape"):
        self.catalog = catalog
        self.entity = entity

    async def discover_optional(self) -> Optional[ShapeDescriptor]:
        """Shape of the first candidate table with columns, or None"""
        for table in self.entity.table_candidates:
            columns = await self.catalog.columns_of(table)
            if columns:
                shape = build_shape(table, columns, self.entity.synonyms)
                missing = [name for name, col in shape.field_map.items() if col is None]
                if missing:
                    logger.debug(f"{self.entity.name}: table '{table}' lacks fields {missing}")
                return shape
        return None

    async def discover(self) -> ShapeDescriptor:
        """Like `discover_optional`, but a missing table is fatal"""
        shape = await self.discover_optional()
        if shape is None:
            logger.error(f"❌ No table found for entity '{self.entity.name}'")
            raise SchemaNotFoundError(self.entity.name, self.entity.table_candidates)
        return shape
