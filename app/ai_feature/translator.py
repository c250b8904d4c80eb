# app/ai_feature/translator.py
"""
TRANSLATOR MODULE - Turn a natural-language question into one SQL statement

Purpose:
    1. Build a prompt (question + optional schema description)
    2. Call an OpenAI-compatible chat completions endpoint
    3. Pull the SQL out of whatever the model wrapped around it

Data Flow:
    question → build_messages() → POST /chat/completions → extract_sql() → sql
"""

import asyncio
import logging
import re
import time
from typing import Any, Dict, List, Optional

import httpx

from app.core.exceptions import TranslationError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You translate questions about a {dialect} database into SQL.\n"
    "Reply with exactly one read-only SQL statement (SELECT, or WITH ... SELECT).\n"
    "Do not explain the query and do not wrap it in markdown."
)

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

FENCE_PATTERN = re.compile(r"```(?:[ \t]*[A-Za-z]*[ \t]*\n)?(.*?)```", re.DOTALL)
LABEL_PATTERN = re.compile(r"^\s*(?:sql|query|sql query)\s*:\s*", re.IGNORECASE)
STATEMENT_START = re.compile(
    r"^[ \t(]*(select|with|values|table|show|explain|describe|desc|insert"
    r"|update|delete|merge|upsert|replace|drop|create|alter|truncate|grant"
    r"|revoke|copy|call|exec|execute|attach|detach|vacuum|reindex|pragma"
    r"|lock|set|begin|commit|rollback)\b",
    re.IGNORECASE | re.MULTILINE,
)
PROSE_END = re.compile(r"[A-Za-z][.!?:]$")


# ============================================================================
# STEP 1: PROMPT
# ============================================================================


def build_messages(
    question: str, dialect: str = "SQL", schema_context: Optional[str] = None
) -> List[Dict[str, str]]:
    system = SYSTEM_PROMPT.format(dialect=dialect)
    if schema_context:
        system += f"\n\nAvailable tables:\n{schema_context}"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": question},
    ]


# ============================================================================
# STEP 2: RESPONSE CLEANUP
# ============================================================================


def looks_like_prose(line: str) -> bool:
    """A sentence: several words ending in a word and a full stop, ! ? or :"""
    stripped = line.strip()
    return len(stripped.split()) >= 3 and bool(PROSE_END.search(stripped))


def extract_sql(text: str) -> str:
    """
    Keep only the SQL statement from a model reply.

    Handles:
        - ```sql fenced blocks (first block wins)
        - "SQL:" style labels
        - prose before the statement
        - prose after the statement, with or without ";"
        - prose-only replies, which give ""

    Example:
        Input:
            Here is the query:
            ```sql
            SELECT COUNT(*) FROM users;
            ```
        Output:
            "SELECT COUNT(*) FROM users"
    """
    candidate = text.strip()

    fenced = FENCE_PATTERN.search(candidate)
    if fenced:
        candidate = fenced.group(1).strip()

    candidate = LABEL_PATTERN.sub("", candidate)

    start = None
    for match in STATEMENT_START.finditer(candidate):
        line = candidate[match.start():].split("\n", 1)[0]
        if not looks_like_prose(line):
            start = match.start()
            break

    if start is not None:
        candidate = candidate[start:]
    elif not fenced:
        # "Sorry, there is no planets table." is not a query
        return ""

    kept = []
    for line in candidate.splitlines():
        if kept and looks_like_prose(line):
            break
        kept.append(line)
        if line.rstrip().endswith(";"):
            break

    return "\n".join(kept).strip().rstrip(";").strip()


# ============================================================================
# STEP 3: MODEL CALL
# ============================================================================


class PromptTranslator:
    """Asks the language model for SQL, one request per question."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        model: str,
        temperature: float = 0.0,
        timeout_seconds: float = 30.0,
        max_retries: int = 0,
        dialect: str = "SQL",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(0, max_retries)
        self.dialect = dialect
        self.transport = transport

    async def to_sql(self, question: str, schema_context: Optional[str] = None) -> str:
        """
        Return one SQL statement for question.

        Raises:
            TranslationError: service unreachable, timed out, answered with an
                error status or with no usable SQL.
        """
        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": build_messages(question, self.dialect, schema_context),
        }

        started = time.perf_counter()
        data = await self._post_completion(payload)
        content = self._read_content(data)

        sql = extract_sql(content)
        if not sql:
            raise TranslationError("The language model did not return a SQL query")

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(f"Translated question in {elapsed_ms}ms: {sql}")
        return sql

    async def _post_completion(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        url = f"{self.api_url}/chat/completions"
        attempt = 0
        while True:
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout_seconds, transport=self.transport
                ) as client:
                    response = await client.post(url, json=payload, headers=headers)
            except httpx.TimeoutException as error:
                if attempt < self.max_retries:
                    attempt = await self._backoff(attempt, "timeout")
                    continue
                raise TranslationError(
                    f"Language model request timed out after {self.timeout_seconds:g} seconds",
                    cause=error,
                ) from error
            except httpx.TransportError as error:
                if attempt < self.max_retries:
                    attempt = await self._backoff(attempt, str(error))
                    continue
                raise TranslationError(
                    f"Language model service is unreachable: {error}", cause=error
                ) from error

            if response.status_code in RETRY_STATUS_CODES and attempt < self.max_retries:
                attempt = await self._backoff(attempt, f"HTTP {response.status_code}")
                continue

            try:
                response.raise_for_status()
                return response.json()
            except httpx.HTTPStatusError as error:
                logger.error(
                    f"Language model returned HTTP {response.status_code}: {response.text[:200]}"
                )
                raise TranslationError(
                    f"Language model service returned HTTP {response.status_code}",
                    cause=error,
                ) from error
            except ValueError as error:
                raise TranslationError(
                    "Language model returned a response that is not JSON", cause=error
                ) from error

    async def _backoff(self, attempt: int, reason: str) -> int:
        delay = 0.5 * (2**attempt)
        logger.warning(
            f"Language model call failed ({reason}), retry {attempt + 1}/{self.max_retries} in {delay}s"
        )
        await asyncio.sleep(delay)
        return attempt + 1

    @staticmethod
    def _read_content(data: Any) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as error:
            raise TranslationError(
                "Unexpected response format from the language model", cause=error
            ) from error
        if not isinstance(content, str):
            raise TranslationError("Unexpected response format from the language model")
        return content
