import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import app as app_module
from app import create_app
from app.main import routes
from efficiency.models import Settings


@pytest.fixture
def app_instance(monkeypatch):
    monkeypatch.setattr(app_module, "create_client", lambda url, key: object())
    os.environ.setdefault("SECRET_KEY", "test")
    os.environ.setdefault("SUPABASE_URL", "http://localhost")
    os.environ.setdefault("SUPABASE_SERVICE_KEY", "service")
    app = create_app()
    return app


def test_get_settings_hides_api_key(app_instance, monkeypatch):
    monkeypatch.setattr(
        routes, "fetch_settings", lambda: (Settings(total_machines=8, vision_api_key="secret"), None)
    )

    payload = app_instance.test_client().get("/api/settings").get_json()

    assert payload["total_machines"] == 8
    assert payload["low_efficiency_threshold"] == 80
    assert payload["vision_api_key_configured"] is True
    assert "vision_api_key" not in payload


def test_update_settings_merges_with_current(app_instance, monkeypatch):
    current = Settings(total_machines=8, notification_number="123", vision_api_key="secret")
    monkeypatch.setattr(routes, "fetch_settings", lambda: (current, None))
    saved = {}

    def fake_upsert(settings):
        saved["settings"] = settings
        return settings, None

    monkeypatch.setattr(routes, "upsert_settings", fake_upsert)

    client = app_instance.test_client()
    response = client.put(
        "/api/settings",
        json={"low_efficiency_threshold": "75", "message_template": " M/C {mc} ", "notification_number": ""},
    )

    assert response.status_code == 200
    assert saved["settings"] == Settings(
        total_machines=8,
        low_efficiency_threshold=75,
        notification_number=None,
        message_template="M/C {mc}",
        vision_api_key="secret",
    )
    views = [message["view"] for message in client.get("/api/changes").get_json()["messages"]]
    assert "settings" in views


@pytest.mark.parametrize(
    "body, field",
    [
        ({"low_efficiency_threshold": 101}, "low_efficiency_threshold"),
        ({"low_efficiency_threshold": "high"}, "low_efficiency_threshold"),
        ({"total_machines": -1}, "total_machines"),
    ],
)
def test_update_settings_validates_numbers(app_instance, monkeypatch, body, field):
    monkeypatch.setattr(routes, "fetch_settings", lambda: (Settings(), None))

    response = app_instance.test_client().put("/api/settings", json=body)

    assert response.status_code == 400
    assert field in response.get_json()["errors"]


def test_machines_endpoint(app_instance, monkeypatch):
    monkeypatch.setattr(routes, "fetch_machine_numbers", lambda: (["1", "2", "10"], None))

    payload = app_instance.test_client().get("/api/machines").get_json()

    assert payload == {"machines": ["1", "2", "10"]}


def test_reset_requires_confirmation(app_instance, monkeypatch):
    def _unexpected():
        raise AssertionError("data must not be deleted")

    monkeypatch.setattr(routes, "delete_all_data", _unexpected)

    response = app_instance.test_client().post("/api/settings/reset", json={"confirmation": "nope"})

    assert response.status_code == 403
    assert response.get_json() == {"message": "The password to delete all data is incorrect."}


def test_reset_deletes_everything(app_instance, monkeypatch):
    calls = []
    monkeypatch.setattr(routes, "delete_all_data", lambda: calls.append(True) or (True, None))

    client = app_instance.test_client()
    response = client.post("/api/settings/reset", json={"confirmation": "delete"})

    assert response.status_code == 200
    assert calls == [True]
    assert client.get("/api/changes").get_json()["revision"] == 2


def test_schema_script_uses_configured_columns(app_instance):
    response = app_instance.test_client().get("/api/settings/schema")

    assert response.status_code == 200
    assert response.mimetype == "text/plain"
    script = response.data.decode("utf-8")
    assert 'CREATE TABLE IF NOT EXISTS "efficiency_records"' in script
    assert '"gemini_api_key" text' in script
    assert "CREATE TYPE shift_type AS ENUM ('Day', 'Night')" in script


def test_update_settings_rejects_too_many_machines(app_instance, monkeypatch):
    monkeypatch.setattr(routes, "fetch_settings", lambda: (Settings(), None))

    def _unexpected(settings):
        raise AssertionError("settings must not be saved")

    monkeypatch.setattr(routes, "upsert_settings", _unexpected)

    response = app_instance.test_client().put("/api/settings", json={"total_machines": 10**9})

    assert response.status_code == 400
    assert response.get_json()["errors"]["total_machines"] == "Must be between 0 and 1000."


@pytest.mark.parametrize("url, method", [("/api/settings", "put"), ("/api/settings/reset", "post")])
def test_settings_endpoints_require_json_object(app_instance, monkeypatch, url, method):
    monkeypatch.setattr(routes, "fetch_settings", lambda: (Settings(), None))

    def _unexpected(*args):
        raise AssertionError("nothing must be saved or deleted")

    monkeypatch.setattr(routes, "upsert_settings", _unexpected)
    monkeypatch.setattr(routes, "delete_all_data", _unexpected)

    response = getattr(app_instance.test_client(), method)(url, json=["delete"])

    assert response.status_code == 400


def test_reset_with_non_ascii_confirmation_is_refused(app_instance, monkeypatch):
    def _unexpected():
        raise AssertionError("data must not be deleted")

    monkeypatch.setattr(routes, "delete_all_data", _unexpected)

    response = app_instance.test_client().post("/api/settings/reset", json={"confirmation": "dél"})

    assert response.status_code == 403


def test_update_settings_accepts_machine_limit(app_instance, monkeypatch):
    monkeypatch.setattr(routes, "fetch_settings", lambda: (Settings(), None))
    monkeypatch.setattr(routes, "upsert_settings", lambda settings: (settings, None))

    response = app_instance.test_client().put("/api/settings", json={"total_machines": 1000})

    assert response.status_code == 200
    assert response.get_json()["settings"]["total_machines"] == 1000
