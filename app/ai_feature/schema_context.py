import logging
import time
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def describe_tables(sync_conn, allowed_tables: Sequence[str] = ()) -> List[str]:
    """
    Reflect table and column names from a sync connection.

    Returns one line per table, e.g. "users(id INTEGER, name VARCHAR)".
    """
    inspector = inspect(sync_conn)
    allowed = {name.lower() for name in allowed_tables}

    lines = []
    for table_name in sorted(inspector.get_table_names()):
        if allowed and table_name.lower() not in allowed:
            continue
        columns = inspector.get_columns(table_name)
        rendered = ", ".join(f"{col['name']} {col['type']}" for col in columns)
        lines.append(f"{table_name}({rendered})")
    return lines


class SchemaContextProvider:
    """Table descriptions for the prompt, cached for ttl_seconds."""

    def __init__(
        self,
        engine: AsyncEngine,
        ttl_seconds: int = 300,
        allowed_tables: Sequence[str] = (),
    ):
        self.engine = engine
        self.ttl_seconds = ttl_seconds
        self.allowed_tables = list(allowed_tables)
        # { "context": (monotonic_seconds, text) }
        self._cache: Dict[str, Tuple[float, str]] = {}

    async def get_context(self) -> Optional[str]:
        now = time.monotonic()
        cached = self._cache.get("context")
        if cached and (now - cached[0]) < self.ttl_seconds:
            return cached[1]

        try:
            async with self.engine.connect() as conn:
                lines = await conn.run_sync(describe_tables, self.allowed_tables)
        except (SQLAlchemyError, OSError) as error:
            # Serve the stale copy rather than nothing
            logger.warning(f"Schema reflection failed: {error}")
            return cached[1] if cached else None

        if not lines:
            return None

        context = "\n".join(lines)
        self._cache["context"] = (now, context)
        logger.info(f"Schema context refreshed ({len(lines)} tables)")
        return context

    def clear(self) -> None:
        self._cache.clear()
