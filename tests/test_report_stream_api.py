"""API tests for the report streaming endpoints."""

from __future__ import annotations

import pytest
from fastapi import status
from httpx import AsyncClient
from pydantic_ai.exceptions import ModelHTTPError

from tests.fixtures.streaming import (
    HTML_REPORT_CHUNKS,
    TEST_MODEL,
    ScriptedAdapter,
    assert_well_formed,
    build_test_orchestrator,
    content_of,
    parse_sse,
)
from tests.fixtures.tokens import issue_token


STREAM_URL = "/api/v1/ai/stream"


def payload(**overrides) -> dict:
    body = {
        "messages": [{"role": "user", "content": "Analyze ACME Corp"}],
        "model": TEST_MODEL,
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_stream_returns_sse_events(async_client: AsyncClient, use_orchestrator):
    use_orchestrator(build_test_orchestrator(ScriptedAdapter(HTML_REPORT_CHUNKS)))

    resp = await async_client.post(
        STREAM_URL, json=payload(), headers={"X-Correlation-ID": "corr-abc"}
    )

    assert resp.status_code == status.HTTP_200_OK
    assert resp.headers["content-type"] == "text/event-stream"
    assert resp.headers["cache-control"] == "no-cache"
    assert resp.headers["x-accel-buffering"] == "no"
    assert resp.headers["x-correlation-id"] == "corr-abc"
    events = parse_sse(resp.text)
    assert_well_formed(events)
    assert events[0]["model"] == TEST_MODEL
    assert events[0]["provider"] == "anthropic"
    assert events[0]["correlationId"] == "corr-abc"
    assert "".join(content_of(events)) == "".join(HTML_REPORT_CHUNKS)
    assert events[-2]["metadata"]["model"] == TEST_MODEL


@pytest.mark.asyncio
async def test_stream_without_model_uses_default(
    async_client: AsyncClient, use_orchestrator
):
    use_orchestrator(build_test_orchestrator(ScriptedAdapter(HTML_REPORT_CHUNKS)))

    body = payload()
    del body["model"]
    resp = await async_client.post(STREAM_URL, json=body)

    assert resp.status_code == status.HTTP_200_OK
    assert parse_sse(resp.text)[0]["model"] == TEST_MODEL


@pytest.mark.asyncio
async def test_include_visuals_cuts_over_chatty_reply(
    async_client: AsyncClient, use_orchestrator
):
    adapter = ScriptedAdapter(["Sure thing. ", "Here are my thoughts on ACME."])
    use_orchestrator(build_test_orchestrator(adapter))

    resp = await async_client.post(STREAM_URL, json=payload(includeVisuals=True))

    events = parse_sse(resp.text)
    assert_well_formed(events)
    contents = content_of(events)
    assert len(contents) == 1
    assert contents[0].startswith("<!DOCTYPE html>")
    assert "Here are my thoughts on ACME." in contents[0]


@pytest.mark.asyncio
async def test_provider_failure_is_reported_in_stream(
    async_client: AsyncClient, use_orchestrator
):
    adapter = ScriptedAdapter(
        HTML_REPORT_CHUNKS[:1],
        error=ModelHTTPError(status_code=503, model_name=TEST_MODEL),
    )
    use_orchestrator(build_test_orchestrator(adapter))

    resp = await async_client.post(STREAM_URL, json=payload())

    assert resp.status_code == status.HTTP_200_OK
    events = parse_sse(resp.text)
    assert_well_formed(events)
    assert "high demand" in events[-2]["error"]


@pytest.mark.asyncio
async def test_unknown_model_rejected_before_stream(
    async_client: AsyncClient, use_orchestrator
):
    use_orchestrator(build_test_orchestrator())

    resp = await async_client.post(STREAM_URL, json=payload(model="mystery-9000"))

    assert resp.status_code == status.HTTP_400_BAD_REQUEST
    assert "data:" not in resp.text
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["type"] == "configuration_error"
    assert body["error"]["details"]["error_code"] == "unknown_model"


@pytest.mark.asyncio
async def test_missing_credential_rejected_before_stream(
    async_client: AsyncClient, use_orchestrator
):
    use_orchestrator(build_test_orchestrator(credentials={}))

    resp = await async_client.post(STREAM_URL, json=payload())

    assert resp.status_code == status.HTTP_403_FORBIDDEN
    assert resp.json()["error"]["details"]["error_code"] == "missing_credential"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "messages",
    [
        [],
        [{"role": "assistant", "content": "<!DOCTYPE html>"}],
        [{"role": "system", "content": "hi"}],
        [{"role": "user", "content": ""}],
    ],
)
async def test_invalid_messages_rejected(
    async_client: AsyncClient, use_orchestrator, messages
):
    use_orchestrator(build_test_orchestrator())

    resp = await async_client.post(STREAM_URL, json=payload(messages=messages))

    assert resp.status_code == 422
    assert resp.json()["error"]["type"] == "validation_error"


@pytest.mark.asyncio
async def test_stream_requires_bearer_token(anon_client: AsyncClient, use_orchestrator):
    use_orchestrator(build_test_orchestrator())

    resp = await anon_client.post(STREAM_URL, json=payload())

    assert resp.status_code == status.HTTP_401_UNAUTHORIZED
    assert resp.json()["error"]["type"] == "unauthorized"


@pytest.mark.asyncio
async def test_stream_accepts_valid_token(anon_client: AsyncClient, use_orchestrator):
    use_orchestrator(build_test_orchestrator(ScriptedAdapter(HTML_REPORT_CHUNKS)))
    token = issue_token("user-9")

    resp = await anon_client.post(
        STREAM_URL, json=payload(), headers={"Authorization": f"Bearer {token}"}
    )

    assert resp.status_code == status.HTTP_200_OK
    assert_well_formed(parse_sse(resp.text))


@pytest.mark.asyncio
async def test_stream_rejects_bad_token(anon_client: AsyncClient, use_orchestrator):
    use_orchestrator(build_test_orchestrator())

    resp = await anon_client.post(
        STREAM_URL, json=payload(), headers={"Authorization": "Bearer not-a-jwt"}
    )

    assert resp.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_instant_report_needs_no_provider_key(
    async_client: AsyncClient, use_orchestrator
):
    use_orchestrator(build_test_orchestrator(credentials={}))

    resp = await async_client.post("/api/v1/ai/instant", json=payload())

    assert resp.status_code == status.HTTP_200_OK
    events = parse_sse(resp.text)
    assert_well_formed(events)
    assert events[0]["model"] == "instant-engine-v1"
    report = "".join(content_of(events))
    assert report.startswith("<!DOCTYPE html>")
    assert "ACME Corp" in report


@pytest.mark.asyncio
async def test_models_endpoint_marks_available_models(
    async_client: AsyncClient, use_orchestrator
):
    use_orchestrator(build_test_orchestrator())

    resp = await async_client.get("/api/v1/ai/models")

    assert resp.status_code == status.HTTP_200_OK
    body = resp.json()
    assert body["success"] is True
    by_id = {m["id"]: m for m in body["data"]}
    assert by_id[TEST_MODEL]["available"] is True
    assert by_id[TEST_MODEL]["contextWindow"] == 200_000
    # The test registry only knows Anthropic
    assert by_id["gpt-4"]["available"] is False
