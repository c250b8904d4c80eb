import json

import httpx
import pytest

from app.ai_feature import translator as translator_module
from app.ai_feature.translator import PromptTranslator, build_messages, extract_sql
from app.core.exceptions import TranslationError


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def make_translator(handler, **kwargs) -> PromptTranslator:
    options = {
        "api_url": "https://llm.test/v1/",
        "api_key": "secret",
        "model": "test-model",
        "dialect": "sqlite",
        "transport": httpx.MockTransport(handler),
    }
    options.update(kwargs)
    return PromptTranslator(**options)


@pytest.mark.parametrize(
    "reply, expected",
    [
        ("SELECT COUNT(*) FROM users", "SELECT COUNT(*) FROM users"),
        ("SELECT COUNT(*) FROM users;", "SELECT COUNT(*) FROM users"),
        ("```sql\nSELECT name FROM users;\n```", "SELECT name FROM users"),
        ("```\nSELECT 1\n```", "SELECT 1"),
        (
            "Here is the query:\n```sql\nSELECT id\nFROM users\n```\nIt lists ids.",
            "SELECT id\nFROM users",
        ),
        ("SQL: SELECT 1", "SELECT 1"),
        (
            "Sure! This counts users.\nSELECT COUNT(*) FROM users;\nHope it helps.",
            "SELECT COUNT(*) FROM users",
        ),
        ("  WITH t AS (SELECT 1) SELECT * FROM t  ", "WITH t AS (SELECT 1) SELECT * FROM t"),
        ("", ""),
        ("```sql\n```", ""),
        ("Sorry, there is no planets table.", ""),
        ("With the current schema I cannot answer that.", ""),
        ("SELECT COUNT(*) FROM users\nThis counts every user.", "SELECT COUNT(*) FROM users"),
        ("SELECT name\nFROM users\n\nIt returns every name.", "SELECT name\nFROM users"),
    ],
)
def test_extract_sql(reply, expected):
    assert extract_sql(reply) == expected


def test_build_messages_includes_schema():
    messages = build_messages("How many users?", "postgresql", "users(id INTEGER)")

    assert messages[0]["role"] == "system"
    assert "postgresql" in messages[0]["content"]
    assert "users(id INTEGER)" in messages[0]["content"]
    assert messages[1] == {"role": "user", "content": "How many users?"}


@pytest.mark.asyncio
async def test_to_sql_calls_chat_completions():
    """One POST with the model, key and question; SQL comes back cleaned"""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=completion("```sql\nSELECT COUNT(*) FROM users;\n```"))

    translator = make_translator(handler)
    sql = await translator.to_sql("How many users are there?", "users(id INTEGER)")

    assert sql == "SELECT COUNT(*) FROM users"
    assert len(requests) == 1
    request = requests[0]
    assert str(request.url) == "https://llm.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["model"] == "test-model"
    assert body["messages"][-1]["content"] == "How many users are there?"
    assert "users(id INTEGER)" in body["messages"][0]["content"]


@pytest.mark.asyncio
async def test_to_sql_without_key_sends_no_auth_header():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json=completion("SELECT 1"))

    await make_translator(handler, api_key="").to_sql("anything")

    assert seen["auth"] is None


@pytest.mark.asyncio
async def test_timeout_raises_translation_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TranslationError) as exc_info:
        await make_translator(handler, timeout_seconds=2).to_sql("How many users?")

    assert exc_info.value.message == "Language model request timed out after 2 seconds"
    assert isinstance(exc_info.value.cause, httpx.TimeoutException)


@pytest.mark.asyncio
async def test_unreachable_service_raises_translation_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TranslationError) as exc_info:
        await make_translator(handler).to_sql("How many users?")

    assert "unreachable" in exc_info.value.message


@pytest.mark.asyncio
async def test_error_status_raises_translation_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "bad key"}})

    with pytest.raises(TranslationError) as exc_info:
        await make_translator(handler).to_sql("How many users?")

    assert "HTTP 401" in exc_info.value.message
    # The key never leaks into the message
    assert "secret" not in exc_info.value.message


@pytest.mark.asyncio
async def test_malformed_response_raises_translation_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    with pytest.raises(TranslationError):
        await make_translator(handler).to_sql("How many users?")


@pytest.mark.asyncio
async def test_non_json_response_raises_translation_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    with pytest.raises(TranslationError):
        await make_translator(handler).to_sql("How many users?")


@pytest.mark.asyncio
async def test_empty_sql_raises_translation_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=completion("```sql\n```"))

    with pytest.raises(TranslationError) as exc_info:
        await make_translator(handler).to_sql("How many users?")

    assert exc_info.value.message == "The language model did not return a SQL query"


@pytest.mark.asyncio
async def test_prose_reply_raises_translation_error():
    """A refusal in plain words is not passed on as SQL"""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=completion("Sorry, there is no planets table."))

    with pytest.raises(TranslationError) as exc_info:
        await make_translator(handler).to_sql("How many planets are there?")

    assert exc_info.value.message == "The language model did not return a SQL query"


@pytest.mark.asyncio
async def test_no_retry_by_default():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    with pytest.raises(TranslationError):
        await make_translator(handler).to_sql("How many users?")

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_bounded_retry_on_server_error(monkeypatch):
    calls = []
    delays = []

    async def no_sleep(delay):
        delays.append(delay)

    monkeypatch.setattr(translator_module.asyncio, "sleep", no_sleep)

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(200, json=completion("SELECT 1"))

    sql = await make_translator(handler, max_retries=2).to_sql("anything")

    assert sql == "SELECT 1"
    assert len(calls) == 3
    assert delays == [0.5, 1.0]
