"""
Schema Catalog

Reads column metadata for one candidate table from information_schema.
"""

import logging

from .shape import ColumnInfo

logger = logging.getLogger(__name__)

CATALOG_QUERY = """
    SELECT column_name, data_type
    FROM information_schema.columns
    WHERE table_schema = 'public'
      AND table_name = $1
    ORDER BY ordinal_position
"""


class SchemaCatalog:
    """
    Catalog reader over any executor with an asyncpg-style `fetch`.

    The executor is either the pooled `DatabaseConnection` or a single
    connection checked out for a transaction.
    """

    def __init__(self, executor):
        self.executor = executor

    async def columns_of(self, table_name: str) -> list[ColumnInfo]:
        """
        Columns of `table_name` in ordinal order.

        Returns an empty list when the table does not exist or has no
        columns visible to the current role. One round-trip per call.
        """
        rows = await self.executor.fetch(CATALOG_QUERY, table_name)
        columns = [ColumnInfo(name=row["column_name"], data_type=row["data_type"]) for row in rows]
        logger.debug(f"Catalog lookup '{table_name}': {len(columns)} columns")
        return columns
