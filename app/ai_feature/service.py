"""Orchestration layer: question → SQL → rows → QueryResult.

Flow:
1. Describe the schema (cached)
2. Ask the language model for SQL
3. Check the SQL is read-only and run it
4. Time the whole thing and build the result
"""

import logging
import time
import uuid
from enum import Enum
from functools import lru_cache
from typing import Optional, Protocol

from app.ai_feature.executor import SqlExecutor
from app.ai_feature.schema_context import SchemaContextProvider
from app.ai_feature.translator import PromptTranslator
from app.core.config import settings
from app.core.database import engine
from app.core.exceptions import ProcessingError, SqlAiError, TranslationError
from app.core.schemas import ExecutionOutcome, QueryResult

logger = logging.getLogger(__name__)


class QueryStage(Enum):
    """Where a question is in the pipeline."""

    RECEIVED = "received"
    TRANSLATING = "translating"
    EXECUTING = "executing"
    COMPLETE = "complete"
    FAILED = "failed"


class Translator(Protocol):
    async def to_sql(
        self, question: str, schema_context: Optional[str] = None
    ) -> str: ...


class Executor(Protocol):
    async def run(self, sql: str) -> ExecutionOutcome: ...


class SchemaProvider(Protocol):
    async def get_context(self) -> Optional[str]: ...


class SqlQueryService:
    """Runs one question through translation and execution, single pass."""

    def __init__(
        self,
        translator: Translator,
        executor: Executor,
        schema_provider: Optional[SchemaProvider] = None,
    ):
        self.translator = translator
        self.executor = executor
        self.schema_provider = schema_provider

    async def process_question(self, question: str) -> QueryResult:
        """
        Translate question into SQL, run it and return the result.

        TranslationError and SqlExecutionError pass through untouched so the
        caller can tell them apart; anything else becomes ProcessingError.
        """
        request_id = uuid.uuid4().hex[:8]
        stage = QueryStage.RECEIVED
        self._log_stage(request_id, stage, question)
        started = time.perf_counter()

        try:
            if not question or not question.strip():
                raise TranslationError("Please enter a question")

            stage = QueryStage.TRANSLATING
            self._log_stage(request_id, stage)
            schema_context = None
            if self.schema_provider is not None:
                schema_context = await self.schema_provider.get_context()
            sql = await self.translator.to_sql(question.strip(), schema_context)

            stage = QueryStage.EXECUTING
            self._log_stage(request_id, stage, sql)
            outcome = await self.executor.run(sql)

        except SqlAiError as error:
            logger.warning(
                f"[{request_id}] {QueryStage.FAILED.value} during {stage.value}: {error.message}"
            )
            raise
        except Exception as error:
            logger.warning(
                f"[{request_id}] {QueryStage.FAILED.value} during {stage.value}: {error}"
            )
            raise ProcessingError(str(error) or error.__class__.__name__) from error

        elapsed_ms = max(0, int((time.perf_counter() - started) * 1000))
        result = QueryResult(
            sql=sql,
            execution_time_ms=elapsed_ms,
            headers=outcome.headers,
            rows=outcome.rows,
            truncated=outcome.truncated,
        )
        self._log_stage(request_id, QueryStage.COMPLETE, f"{elapsed_ms}ms")
        return result

    @staticmethod
    def _log_stage(request_id: str, stage: QueryStage, detail: str = ""):
        suffix = f": {detail}" if detail else ""
        logger.info(f"[{request_id}] {stage.value}{suffix}")


@lru_cache
def get_sql_executor() -> SqlExecutor:
    return SqlExecutor(
        engine,
        timeout_seconds=settings.QUERY_TIMEOUT_SECONDS,
        max_rows=settings.MAX_ROWS,
    )


@lru_cache
def get_query_service() -> SqlQueryService:
    """Build the service once from settings; tests override this dependency."""
    executor = get_sql_executor()
    translator = PromptTranslator(
        api_url=settings.LLM_API_URL,
        api_key=settings.LLM_API_KEY,
        model=settings.LLM_MODEL,
        temperature=settings.LLM_TEMPERATURE,
        timeout_seconds=settings.LLM_TIMEOUT_SECONDS,
        max_retries=settings.LLM_MAX_RETRIES,
        dialect=executor.dialect_name,
    )
    schema_provider = None
    if settings.SCHEMA_CONTEXT_ENABLED:
        schema_provider = SchemaContextProvider(
            engine,
            ttl_seconds=settings.SCHEMA_CACHE_TTL_SECONDS,
            allowed_tables=settings.ALLOWED_TABLES,
        )
    return SqlQueryService(translator, executor, schema_provider)
