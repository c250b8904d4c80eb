# app/ai_feature/executor.py
"""
EXECUTOR MODULE - Run generated SQL against the configured database

Purpose:
    1. Refuse anything that is not a single read-only statement
    2. Run the statement on a pooled connection with a time limit
    3. Read column names and at most MAX_ROWS rows
    4. Turn driver values into plain values the page and JSON can show

Data Flow:
    sql → ensure_read_only() → engine.connect() → fetch → ExecutionOutcome
"""

import asyncio
import logging
import re
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from app.core.exceptions import SqlExecutionError
from app.core.schemas import ExecutionOutcome

logger = logging.getLogger(__name__)


# ============================================================================
# STEP 1: READ-ONLY POLICY
# ============================================================================

UNSUPPORTED_STATEMENT_MESSAGE = (
    "Unsupported statement type: only read-only queries are allowed"
)

READ_ONLY_KEYWORDS = {
    "select",
    "with",
    "values",
    "table",
    "show",
    "explain",
    "describe",
    "desc",
}

MUTATING_PATTERN = re.compile(
    r"\b(insert|update|delete|merge|upsert|drop|create|alter|truncate|grant"
    r"|revoke|copy|call|exec|execute|attach|detach|vacuum|reindex|pragma"
    r"|lock|into)\b"
    r"|\breplace\s+(into|table|view)\b",
    re.IGNORECASE,
)

# Quoting differs per database. A statement is checked under every
# convention and refused if any of them exposes a mutating keyword.
LEXER_DIALECTS = ("ansi", "postgresql", "mysql", "sqlite")

DOLLAR_TAG = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)?\$")


def _is_word_char(char: str) -> bool:
    return char.isalnum() or char in "_$"


def _skip_quoted(sql: str, start: int, quote: str, backslash: bool) -> int:
    """Index just past the literal opened at start, or -1 if unterminated."""
    i = start + 1
    while i < len(sql):
        char = sql[i]
        if backslash and char == "\\":
            i += 2
        elif char == quote:
            if sql.startswith(quote * 2, i):
                i += 2
            else:
                return i + 1
        else:
            i += 1
    return -1


def _skip_block_comment(sql: str, start: int, nested: bool) -> int:
    depth = 0
    i = start
    while i < len(sql):
        if sql.startswith("/*", i):
            depth = depth + 1 if nested or depth == 0 else depth
            i += 2
        elif sql.startswith("*/", i):
            depth -= 1
            i += 2
            if depth == 0:
                return i
        else:
            i += 1
    return -1


def mask_sql(sql: str, dialect: str = "ansi") -> str:
    """
    Blank out comments, literals and quoted names so keyword checks only
    see SQL syntax.

    Handles:
        - ansi: '..' with '' escapes, ".." and `..` names, -- and /* */
        - postgresql: E'..' backslash escapes, $tag$..$tag$, nested /* */
        - mysql: backslash escapes in '..' and "..", # comments
        - sqlite: [..] names on top of ansi

    An unterminated literal is left as it is, so the text after it is
    still checked.

    Example:
        mask_sql("SELECT 'drop' AS \"delete\" -- insert")
        → "SELECT '' AS \"\" "
    """
    masked = []
    i = 0
    while i < len(sql):
        char = sql[i]
        previous = sql[i - 1] if i else ""
        end = None
        replacement = ""

        if sql.startswith("--", i) or (char == "#" and dialect == "mysql"):
            newline = sql.find("\n", i)
            end = len(sql) if newline == -1 else newline
            replacement = " "
        elif sql.startswith("/*", i):
            end = _skip_block_comment(sql, i, nested=dialect == "postgresql")
            replacement = " "
        elif (
            dialect == "postgresql"
            and char in "Ee"
            and sql.startswith("'", i + 1)
            and not _is_word_char(previous)
        ):
            end = _skip_quoted(sql, i + 1, "'", backslash=True)
            replacement = "''"
        elif dialect == "postgresql" and char == "$" and not _is_word_char(previous):
            tag = DOLLAR_TAG.match(sql, i)
            if tag:
                closing = sql.find(tag.group(0), tag.end())
                end = -1 if closing == -1 else closing + len(tag.group(0))
                replacement = "''"
        elif char == "'":
            end = _skip_quoted(sql, i, "'", backslash=dialect == "mysql")
            replacement = "''"
        elif char == '"':
            end = _skip_quoted(sql, i, '"', backslash=dialect == "mysql")
            replacement = '""'
        elif char == "`" and dialect != "postgresql":
            end = _skip_quoted(sql, i, "`", backslash=False)
            replacement = '""'
        elif char == "[" and dialect == "sqlite":
            closing = sql.find("]", i + 1)
            end = -1 if closing == -1 else closing + 1
            replacement = '""'

        if end is None:
            masked.append(char)
            i += 1
        elif end == -1:
            masked.append(sql[i:])
            break
        else:
            masked.append(replacement)
            i = end

    return "".join(masked)


def _check_masked(sql: str, masked: str) -> None:
    body = masked.strip().rstrip(";").strip()

    if not body:
        raise SqlExecutionError("Empty SQL statement", sql=sql)

    # Only one statement per request
    if ";" in body:
        raise SqlExecutionError(UNSUPPORTED_STATEMENT_MESSAGE, sql=sql)

    first_word = re.match(r"[\s(]*([A-Za-z]+)", body)
    if not first_word or first_word.group(1).lower() not in READ_ONLY_KEYWORDS:
        raise SqlExecutionError(UNSUPPORTED_STATEMENT_MESSAGE, sql=sql)

    # Catches data-modifying CTEs, EXPLAIN ANALYZE DELETE, SELECT ... INTO
    if MUTATING_PATTERN.search(body):
        raise SqlExecutionError(UNSUPPORTED_STATEMENT_MESSAGE, sql=sql)


def ensure_read_only(sql: str) -> None:
    """
    Raise SqlExecutionError unless sql is one read-only statement.

    Checked before any connection is taken from the pool.
    """
    for dialect in LEXER_DIALECTS:
        _check_masked(sql, mask_sql(sql, dialect))


# ============================================================================
# STEP 2: VALUE NORMALIZATION
# ============================================================================


def normalize_value(value: Any) -> Any:
    """Convert one driver value into something JSON and templates can render."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"<{len(bytes(value))} bytes>"
    if isinstance(value, (list, tuple)):
        return [normalize_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): normalize_value(item) for key, item in value.items()}
    return str(value)


def first_line(error: BaseException) -> str:
    """Driver errors carry the statement and a backtrace link; keep the reason."""
    if isinstance(error, DBAPIError) and error.orig is not None:
        message = str(error.orig)
    else:
        message = str(error)
    lines = [line for line in message.strip().splitlines() if line.strip()]
    return lines[0].strip() if lines else error.__class__.__name__


# ============================================================================
# STEP 3: EXECUTION
# ============================================================================


class SqlExecutor:
    """Runs read-only SQL on a pooled connection, one checkout per call."""

    def __init__(
        self,
        engine: AsyncEngine,
        timeout_seconds: float = 30.0,
        max_rows: int = 1000,
    ):
        if max_rows < 1:
            raise ValueError("max_rows must be at least 1")
        self.engine = engine
        self.timeout_seconds = timeout_seconds
        self.max_rows = max_rows

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def run(self, sql: str) -> ExecutionOutcome:
        """
        Execute sql and return its headers and rows.

        Raises:
            SqlExecutionError: refused statement, driver error, pool timeout
                or statement timeout. Always carries the attempted sql.
        """
        ensure_read_only(sql)
        statement = sql.strip().rstrip(";").strip()

        logger.info(f"Executing SQL: {statement}")
        try:
            # The connection goes back to the pool on every exit path
            async with self.engine.connect() as conn:
                outcome = await asyncio.wait_for(
                    self._fetch(conn, statement), timeout=self.timeout_seconds
                )
                await conn.rollback()
        except asyncio.TimeoutError as error:
            logger.error(f"SQL timed out after {self.timeout_seconds}s: {statement}")
            raise SqlExecutionError(
                f"Query timed out after {self.timeout_seconds:g} seconds",
                sql=sql,
                cause=error,
            ) from error
        except SQLAlchemyError as error:
            message = first_line(error)
            logger.error(f"SQL failed: {message}")
            raise SqlExecutionError(message, sql=sql, cause=error) from error
        except OSError as error:
            # Some drivers let socket errors through on connect
            logger.error(f"Database is unreachable: {error}")
            raise SqlExecutionError(
                f"Database is unreachable: {error}", sql=sql, cause=error
            ) from error

        logger.info(
            f"SQL returned {outcome.row_count} rows"
            + (" (truncated)" if outcome.truncated else "")
        )
        return outcome

    async def _fetch(self, conn: AsyncConnection, statement: str) -> ExecutionOutcome:
        if conn.dialect.name == "postgresql":
            await conn.exec_driver_sql(
                "SET LOCAL transaction_read_only = on",
                execution_options={"no_parameters": True},
            )
            # Let the server stop the statement too, not only the client
            timeout_ms = int(self.timeout_seconds * 1000)
            await conn.exec_driver_sql(
                f"SET LOCAL statement_timeout = {timeout_ms}",
                execution_options={"no_parameters": True},
            )

        result = await conn.exec_driver_sql(
            statement, execution_options={"no_parameters": True}
        )

        # Statements like EXPLAIN on some drivers give no row set at all
        if not result.returns_rows:
            return ExecutionOutcome()

        headers = [str(key) for key in result.keys()]
        fetched = result.fetchmany(self.max_rows + 1)
        result.close()

        truncated = len(fetched) > self.max_rows
        rows: List[List[Any]] = [
            [normalize_value(value) for value in row] for row in fetched[: self.max_rows]
        ]

        return ExecutionOutcome(
            headers=headers, rows=rows, row_count=len(rows), truncated=truncated
        )

    async def ping(self) -> Optional[str]:
        """Return None when the database answers, otherwise the error text."""
        try:
            async with self.engine.connect() as conn:
                await asyncio.wait_for(
                    conn.exec_driver_sql("SELECT 1"), timeout=self.timeout_seconds
                )
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as error:
            logger.warning(f"Database health check failed: {error}")
            return first_line(error)
        return None
