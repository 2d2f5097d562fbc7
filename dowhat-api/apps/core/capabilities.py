"""
Schema capability discovery.

Optional columns and tables drift between deployments. They are detected
once per process by inspecting the database instead of retrying queries.
"""

import logging
from typing import Dict, Optional, Set

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

OPTIONAL_COLUMNS: Dict[str, Set[str]] = {
    "activities": {"activity_types", "tags", "traits", "place_id", "place_label"},
    "venues": {"ai_activity_tags", "verified_activities", "updated_at"},
}
OPTIONAL_TABLES: Set[str] = {"activity_participant_preferences", "place_tiles"}


class SchemaCapabilities:
    """Which optional columns/tables the connected database actually has."""

    def __init__(
        self,
        columns: Optional[Dict[str, Set[str]]] = None,
        tables: Optional[Set[str]] = None,
    ):
        # None means "assume everything is there"
        self._columns = columns
        self._tables = tables

    @classmethod
    def full(cls) -> "SchemaCapabilities":
        return cls()

    @classmethod
    def detect(cls, bind: Engine) -> "SchemaCapabilities":
        """Inspect the database once; fall back to the full schema on errors."""
        try:
            inspector = inspect(bind)
            table_names = set(inspector.get_table_names())
            columns: Dict[str, Set[str]] = {}
            for table, optional in OPTIONAL_COLUMNS.items():
                if table not in table_names:
                    columns[table] = set()
                    continue
                present = {col["name"] for col in inspector.get_columns(table)}
                columns[table] = optional & present
            tables = OPTIONAL_TABLES & table_names
        except SQLAlchemyError as exc:
            logger.warning("Schema inspection failed, assuming full schema: %s", exc)
            return cls.full()

        caps = cls(columns=columns, tables=tables)
        logger.info("Schema capabilities detected: %s", caps.snapshot())
        return caps

    def has_column(self, table: str, column: str) -> bool:
        if self._columns is None:
            return True
        return column in self._columns.get(table, set())

    def has_table(self, table: str) -> bool:
        if self._tables is None:
            return True
        return table in self._tables

    def snapshot(self) -> Dict[str, object]:
        return {
            "columns": {k: sorted(v) for k, v in (self._columns or {}).items()} or "all",
            "tables": sorted(self._tables) if self._tables is not None else "all",
        }


# Global instance
_capabilities: Optional[SchemaCapabilities] = None


def get_schema_capabilities(bind: Optional[Engine] = None) -> SchemaCapabilities:
    """Get (and on first use detect) the process-wide capabilities."""
    global _capabilities
    if _capabilities is None:
        if bind is None:
            from apps.core.db import engine as bind
        _capabilities = SchemaCapabilities.detect(bind)
    return _capabilities


def reset_schema_capabilities() -> None:
    """Forget detected capabilities (tests, schema migrations)."""
    global _capabilities
    _capabilities = None
