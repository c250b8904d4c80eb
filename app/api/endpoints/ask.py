import logging
from pathlib import Path
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Cookie, Depends, Form, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from app.ai_feature.service import SqlQueryService, get_query_service
from app.core.config import settings
from app.core.exceptions import SqlAiError, SqlExecutionError
from app.core.flash import FLASH_COOKIE, FlashStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Ask"])

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parents[2] / "templates"))
flash_store = FlashStore(ttl_seconds=settings.FLASH_TTL_SECONDS)

service_dep = Annotated[SqlQueryService, Depends(get_query_service)]

NO_RESULTS_MESSAGE = "There are no results for this request"
EMPTY_QUESTION_MESSAGE = "Please enter a question"
ERROR_PREFIX = "Error processing your question: "


def redirect_home(flash: Optional[Dict[str, Any]] = None) -> RedirectResponse:
    response = RedirectResponse("/", status_code=status.HTTP_302_FOUND)
    if flash:
        token = flash_store.put(flash)
        response.set_cookie(
            FLASH_COOKIE,
            token,
            max_age=flash_store.ttl_seconds,
            httponly=True,
            samesite="lax",
        )
    return response


# Question/answer page
@router.get("/", response_class=HTMLResponse)
async def index(
    request: Request,
    flash_token: Annotated[Optional[str], Cookie(alias=FLASH_COOKIE)] = None,
):
    # A flash is shown once, then it's gone
    flash = flash_store.pop(flash_token) or {}
    response = templates.TemplateResponse(
        request, "index.html", {"flash": flash, "max_rows": settings.MAX_ROWS}
    )
    if flash_token:
        response.delete_cookie(FLASH_COOKIE)
    return response


# Ask a question
@router.post("/ask")
async def ask(service: service_dep, question: Annotated[str, Form()] = ""):
    logger.info(f"Received question: {question}")
    flash: Dict[str, Any] = {"question": question}

    if not question.strip():
        flash["error"] = EMPTY_QUESTION_MESSAGE
        return redirect_home(flash)

    try:
        result = await service.process_question(question)
        flash["sql"] = result.sql
        flash["execution_time_ms"] = result.execution_time_ms

        if result.has_results():
            flash["headers"] = list(result.headers)
            flash["rows"] = [list(row) for row in result.rows]
            flash["truncated"] = result.truncated
        else:
            flash["error"] = NO_RESULTS_MESSAGE

    except SqlExecutionError as error:
        # Keep the attempted SQL so the user can see what was run
        logger.exception(f"Error executing SQL for question: {error.message}")
        flash["sql"] = error.sql
        flash["error"] = ERROR_PREFIX + error.message
    except SqlAiError as error:
        logger.exception(f"Error processing question: {error.message}")
        flash["error"] = ERROR_PREFIX + error.message
    except Exception as error:
        logger.exception(f"Unexpected error processing question: {error}")
        flash["error"] = ERROR_PREFIX + "an unexpected error occurred"

    return redirect_home(flash)


# Bookmarked or refreshed /ask goes back home
@router.get("/ask")
async def ask_get():
    return redirect_home()
