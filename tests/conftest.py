import pytest
from fastapi.testclient import TestClient

from nested_intake.api import create_app
from nested_intake.config import Settings
from nested_intake.persistence import MemoryStore
from nested_intake.rules import load_rules, rules_from_mapping


def make_settings(**overrides) -> Settings:
    values = dict(
        rules_path=None,
        strict=False,
        database_url=None,
        db_connect_timeout=5.0,
        db_apply_schema=False,
        log_level="INFO",
        host="127.0.0.1",
        port=8000,
        api_url="http://intake.test",
        http_timeout=5.0,
        http_max_retries=2,
        http_backoff_factor=0.01,
        http_backoff_max=0.01,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture()
def settings_factory():
    return make_settings


@pytest.fixture()
def registry():
    return load_rules()


@pytest.fixture()
def deep_registry():
    """Three levels: company -> departments -> employees."""
    return rules_from_mapping(
        {
            "company": {
                "scalar_fields": ["name"],
                "nested_collections": {"departments": "department"},
                "required_fields": ["name"],
                "collection": "companies",
            },
            "department": {
                "scalar_fields": {"title": "text", "floor": "integer"},
                "nested_collections": {"employees": "employee"},
            },
            "employee": {
                "scalar_fields": {"email": "text", "active": "boolean"},
                "required_fields": ["email"],
            },
        }
    )


@pytest.fixture()
def memory_store():
    return MemoryStore()


@pytest.fixture()
def client(registry, memory_store):
    app = create_app(make_settings(), registry=registry, store=memory_store)
    return TestClient(app)


@pytest.fixture()
def strict_client(registry, memory_store):
    app = create_app(make_settings(strict=True), registry=registry, store=memory_store)
    return TestClient(app)
