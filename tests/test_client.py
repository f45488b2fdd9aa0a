import asyncio
import json
from pathlib import Path

import httpx
import pytest

from nested_intake.client import IntakeApiError, IntakeClient, content_type_for
from nested_intake.models import ApiConfig

CONFIG = ApiConfig(
    url="http://intake.test/", timeout=1.0, max_retries=2, backoff_factor=0.001, backoff_max=0.001
)


def run_client(handler, action):
    async def scenario():
        async with IntakeClient(CONFIG, transport=httpx.MockTransport(handler)) as client:
            return await action(client)

    return asyncio.run(scenario())


def test_submit_retries_server_errors():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503, json={"error": {"code": "persist_error"}})
        return httpx.Response(201, json={"user": {"id": 7}})

    created = run_client(
        handler, lambda c: c.submit("users", b'{"user": {}}', "application/json")
    )
    assert created == {"user": {"id": 7}}
    assert len(calls) == 3
    assert str(calls[0].url) == "http://intake.test/users"
    assert calls[0].headers["Content-Type"] == "application/json"


def test_unprocessable_payload_is_not_retried():
    calls = []
    error = {"code": "schema_mismatch", "field": "user.addresses", "message": "bad"}

    def handler(request):
        calls.append(request)
        return httpx.Response(422, json={"error": error})

    with pytest.raises(IntakeApiError) as excinfo:
        run_client(handler, lambda c: c.submit("users", b"{}", "application/json"))
    assert len(calls) == 1
    assert excinfo.value.status_code == 422
    assert excinfo.value.error == error
    assert "schema_mismatch" in str(excinfo.value)


def test_network_errors_exhaust_retries():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(IntakeApiError, match="Network error"):
        run_client(handler, lambda c: c.health())


def test_submit_file_infers_content_type(tmp_path):
    payload = tmp_path / "user.xml"
    payload.write_text("<user><name>Joe</name></user>")
    seen = {}

    def handler(request):
        seen["type"] = request.headers["Content-Type"]
        seen["body"] = request.content
        return httpx.Response(201, content=json.dumps({"user": {"id": 1}}))

    run_client(handler, lambda c: c.submit_file("users", payload))
    assert seen == {"type": "application/xml", "body": b"<user><name>Joe</name></user>"}


def test_content_type_for_unknown_suffix():
    assert content_type_for(Path("a.JSON")) == "application/json"
    with pytest.raises(ValueError):
        content_type_for(Path("a.csv"))


def test_requests_need_an_open_client():
    with pytest.raises(RuntimeError):
        asyncio.run(IntakeClient(CONFIG).health())
