import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from app.ai_feature.executor import SqlExecutor
from app.ai_feature.service import SqlQueryService, get_query_service, get_sql_executor
from app.core import schemas
from app.core.exceptions import SqlAiError, SqlExecutionError, TranslationError

router = APIRouter(prefix="/api", tags=["Query"])

service_dep = Annotated[SqlQueryService, Depends(get_query_service)]
executor_dep = Annotated[SqlExecutor, Depends(get_sql_executor)]


@router.post("/query", response_model=schemas.QueryResponse)
async def run_query(payload: schemas.QueryRequest, service: service_dep):
    """Same pipeline as the page, answered as JSON."""
    try:
        result = await service.process_question(payload.question)
    except SqlExecutionError as error:
        logging.error(f"SQL execution failed: {error.message}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": error.message, "sql": error.sql},
        )
    except TranslationError as error:
        logging.error(f"Translation failed: {error.message}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": error.message},
        )
    except SqlAiError as error:
        logging.error(f"Processing failed: {error.message}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": error.message},
        )

    return schemas.QueryResponse(
        question=payload.question,
        sql=result.sql,
        execution_time_ms=result.execution_time_ms,
        headers=result.headers,
        rows=result.rows,
        truncated=result.truncated,
        has_results=result.has_results(),
    )


@router.get("/health", response_model=schemas.HealthResponse)
async def health_check(executor: executor_dep):
    """Is the database reachable?"""
    error = await executor.ping()
    return schemas.HealthResponse(database="ok" if error is None else "unavailable")
