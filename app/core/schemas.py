from typing import Optional, List, Any, Tuple

from pydantic import BaseModel, ConfigDict, Field


# =========================
# PIPELINE RESULTS
# =========================
class ExecutionOutcome(BaseModel):
    """What the executor read back from the database for one statement."""

    headers: Optional[List[str]] = None
    rows: Optional[List[List[Any]]] = None
    row_count: int = 0
    truncated: bool = False


class QueryResult(BaseModel):
    """
    Outcome of one question: the SQL that ran, how long it took and the table.

    Built once per request and never changed afterwards.
    """

    sql: str
    execution_time_ms: int = Field(ge=0)
    # Lists passed in are copied into tuples
    headers: Optional[Tuple[str, ...]] = None
    rows: Optional[Tuple[Tuple[Any, ...], ...]] = None
    truncated: bool = False

    model_config = ConfigDict(frozen=True)

    def has_results(self) -> bool:
        return bool(self.rows)


# =========================
# JSON API
# =========================
class QueryRequest(BaseModel):
    question: str = Field(min_length=1, max_length=2000)

    model_config = ConfigDict(str_strip_whitespace=True)


class QueryResponse(BaseModel):
    question: str
    sql: str
    execution_time_ms: int
    headers: Optional[List[str]] = None
    rows: Optional[List[List[Any]]] = None
    truncated: bool = False
    has_results: bool


class HealthResponse(BaseModel):
    status: str = "ok"
    database: str
