import pytest
from fastapi.testclient import TestClient

from nested_intake.api import create_app
from nested_intake.errors import PersistError

SCENARIO_A = {
    "user": {
        "name": "Joe Bloggs",
        "addresses": [{"street": "Church Street"}, {"street": "Coast Road"}],
    }
}

WRAPPED_XML = b"""<?xml version="1.0" encoding="UTF-8"?>
<user>
  <name>Joe Bloggs</name>
  <addresses>
    <street>Church Street</street>
  </addresses>
</user>"""


def test_create_user_from_json(client, memory_store):
    r = client.post("/users", json=SCENARIO_A)
    assert r.status_code == 201

    body = r.json()
    user = body["user"]
    assert user["id"] == 1
    assert user["name"] == "Joe Bloggs"
    assert isinstance(user["created_at"], str)
    assert "addresses" not in user

    stored = memory_store.get("user", 1)
    assert [a["street"] for a in stored["addresses"]] == ["Church Street", "Coast Road"]


def test_create_user_from_xml_with_singleton_collection(client, memory_store):
    r = client.post(
        "/users", content=WRAPPED_XML, headers={"Content-Type": "application/xml"}
    )
    assert r.status_code == 201
    stored = memory_store.get("user", r.json()["user"]["id"])
    assert stored["addresses"] == [{"street": "Church Street"}]


def test_create_user_from_xml_collection_wrapper(client, memory_store):
    body = b"""<user>
      <name>Joe Bloggs</name>
      <addresses>
        <address><street>Church Street</street></address>
        <address><street>Coast Road</street></address>
      </addresses>
    </user>"""
    r = client.post("/users", content=body, headers={"Content-Type": "application/xml"})
    assert r.status_code == 201
    stored = memory_store.get("user", r.json()["user"]["id"])
    assert stored["addresses"] == [{"street": "Church Street"}, {"street": "Coast Road"}]


def test_empty_collection_creates_user_without_addresses(client, memory_store):
    r = client.post("/users", json={"user": {"name": "Joe", "addresses": []}})
    assert r.status_code == 201
    assert memory_store.get("user", 1)["addresses"] == []


def test_scalar_collection_is_unprocessable(client, memory_store):
    r = client.post("/users", json={"user": {"name": "Joe", "addresses": "none"}})
    assert r.status_code == 422
    assert r.json() == {
        "error": {
            "code": "schema_mismatch",
            "field": "user.addresses",
            "message": r.json()["error"]["message"],
        }
    }
    assert len(memory_store) == 0


def test_strict_mode_rejects_unknown_field(strict_client):
    r = strict_client.post("/users", json={"user": {"name": "Joe", "nickname": "JB"}})
    assert r.status_code == 422
    error = r.json()["error"]
    assert error["code"] == "unknown_field"
    assert error["field"] == "user.nickname"


def test_lenient_mode_accepts_unknown_field(client):
    r = client.post("/users", json={"user": {"name": "Joe", "nickname": "JB"}})
    assert r.status_code == 201
    assert "nickname" not in r.json()["user"]


def test_missing_required_field(client):
    r = client.post("/users", json={"user": {"addresses": []}})
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "missing_required_field"
    assert r.json()["error"]["field"] == "user.name"


def test_missing_child_field_names_the_collection_the_client_sent(client, memory_store):
    r = client.post("/users", json={"user": {"name": "Joe", "addresses": [{"street": None}]}})
    assert r.status_code == 422
    assert r.json()["error"] == {
        "code": "missing_required_field",
        "field": "user.addresses[0].street",
        "message": r.json()["error"]["message"],
    }
    assert len(memory_store) == 0


def test_malformed_body_is_bad_request(client):
    r = client.post("/users", content=b"<user>", headers={"Content-Type": "application/xml"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "decode_error"


@pytest.mark.parametrize("literal", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_json_numbers_are_bad_request(client, memory_store, literal):
    body = f'{{"user": {{"name": {literal}}}}}'.encode()
    r = client.post("/users", content=body, headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "decode_error"
    assert len(memory_store) == 0


def test_deeply_nested_json_is_bad_request(client):
    body = b'{"user": {"name": "Joe", "meta": ' + b"[" * 100_000 + b"]" * 100_000 + b"}}"
    r = client.post("/users", content=body, headers={"Content-Type": "application/json"})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "decode_error"


def test_unsupported_media_type(client):
    r = client.post("/users", content=b"name=Joe", headers={"Content-Type": "text/plain"})
    assert r.status_code == 415
    assert r.json()["error"]["code"] == "unsupported_content_type"


def test_unknown_collection(client):
    r = client.post("/widgets", json={"widget": {}})
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "not_found"


def test_health_lists_types(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "strict": False, "types": ["user", "address"]}


class FailingStore:
    async def persist(self, aggregate):
        raise PersistError("database unavailable")


class BrokenStore:
    async def persist(self, aggregate):
        raise RuntimeError("boom at /srv/app/store.py")


def test_persist_error_is_reported_as_unavailable(registry, settings_factory):
    client = TestClient(create_app(settings_factory(), registry=registry, store=FailingStore()))
    r = client.post("/users", json=SCENARIO_A)
    assert r.status_code == 503
    assert r.json()["error"]["code"] == "persist_error"


def test_unexpected_failure_hides_traceback(registry, settings_factory):
    client = TestClient(create_app(settings_factory(), registry=registry, store=BrokenStore()))
    r = client.post("/users", json=SCENARIO_A, headers={"X-Request-Id": "req-123"})
    assert r.status_code == 500
    body = r.json()
    assert body["error"]["code"] == "internal_error"
    assert body["request_id"] == "req-123"
    assert "Traceback" not in r.text
    assert "boom" not in r.text


def test_request_id_is_echoed(client):
    r = client.get("/health", headers={"X-Request-Id": "abc"})
    assert r.headers["X-Request-Id"] == "abc"
