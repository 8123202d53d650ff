import io
import os
import sys

import pytest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))

import app as app_module
from app import create_app
from app.extraction import ExtractedFields, ExtractionError
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


def _row(record_id, mc, run, shift="Day"):
    return {
        "id": record_id,
        "date": "2024-05-01",
        "time": "08:00:00",
        "shift": shift,
        "machine_number": mc,
        "weft_meter": 100,
        "stops": 2,
        "total_time": "10:00",
        "run_time": run,
    }


def _payload(**overrides):
    payload = {
        "date": "2024-05-01",
        "time": "08:00",
        "shift": "Day",
        "machineNumber": "4",
        "weftMeter": 120,
        "stops": 2,
        "totalTime": "10:00",
        "runTime": "09:00",
    }
    payload.update(overrides)
    return payload


def test_records_for_date_are_split_and_sorted(app_instance, monkeypatch):
    rows = [
        _row("a", "10", "09:00"),
        _row("b", "2", "05:00"),
        _row("c", "3", "07:00", shift="Night"),
    ]
    monkeypatch.setattr(routes, "fetch_efficiency_records", lambda *a, **k: (rows, None))

    client = app_instance.test_client()
    payload = client.get("/api/efficiency/2024-05-01").get_json()

    assert payload["sort"] == {"field": "machine_number", "direction": "asc"}
    assert [row["id"] for row in payload["day"]["rows"]] == ["b", "a"]
    assert [row["id"] for row in payload["night"]["rows"]] == ["c"]
    assert payload["day"]["totals"]["record_count"] == 2
    assert payload["day"]["rows"][0]["band"] == "low"

    payload = client.get("/api/efficiency/2024-05-01?sort=efficiency&direction=desc").get_json()
    assert [row["id"] for row in payload["day"]["rows"]] == ["a", "b"]


def test_toggle_flips_current_sort(app_instance, monkeypatch):
    monkeypatch.setattr(routes, "fetch_efficiency_records", lambda *a, **k: ([], None))
    client = app_instance.test_client()

    payload = client.get("/api/efficiency/2024-05-01?sort=machine_number&direction=asc&toggle=mc").get_json()
    assert payload["sort"] == {"field": "machine_number", "direction": "desc"}

    payload = client.get("/api/efficiency/2024-05-01?sort=machine_number&direction=desc&toggle=weft").get_json()
    assert payload["sort"] == {"field": "weft_meter", "direction": "asc"}


def test_invalid_date_is_rejected(app_instance):
    response = app_instance.test_client().get("/api/efficiency/yesterday")

    assert response.status_code == 400


def test_create_record_saves_and_publishes_change(app_instance, monkeypatch):
    saved = {}

    def fake_insert(row):
        saved.update(row)
        return [{**row, "id": "new-id"}], None

    monkeypatch.setattr(routes, "find_duplicate_record", lambda *a, **k: (None, None))
    monkeypatch.setattr(routes, "insert_efficiency_record", fake_insert)

    client = app_instance.test_client()
    response = client.post("/api/efficiency", json=_payload())

    assert response.status_code == 201
    body = response.get_json()
    assert body["message"] == "Record Saved"
    assert body["record"]["id"] == "new-id"
    assert body["record"]["efficiency_percent"] == 90.0
    assert saved["machine_number"] == "4"
    assert saved["time"] == "08:00:00"

    changes = client.get("/api/changes?since=0").get_json()
    assert changes["revision"] == 1
    assert {"view": "records", "date": "2024-05-01", "revision": 1} in changes["messages"]


def test_create_record_validation_errors(app_instance, monkeypatch):
    def _unexpected(*args, **kwargs):
        raise AssertionError("storage should not be called")

    monkeypatch.setattr(routes, "insert_efficiency_record", _unexpected)

    response = app_instance.test_client().post(
        "/api/efficiency", json=_payload(runTime="11:00", weftMeter=0)
    )

    assert response.status_code == 400
    errors = response.get_json()["errors"]
    assert errors["run_time"] == "Run Time cannot be greater than Total Time."
    assert errors["weft_meter"] == "Must be positive"


def test_create_record_rejects_duplicate(app_instance, monkeypatch):
    monkeypatch.setattr(routes, "find_duplicate_record", lambda *a, **k: ({"id": "old"}, None))

    response = app_instance.test_client().post("/api/efficiency", json=_payload())

    assert response.status_code == 409
    assert "M/C 4" in response.get_json()["errors"]["machine_number"]


def test_update_missing_record_returns_404(app_instance, monkeypatch):
    monkeypatch.setattr(routes, "update_efficiency_record", lambda record_id, row: ([], None))

    response = app_instance.test_client().put("/api/efficiency/missing", json=_payload())

    assert response.status_code == 404


def test_update_record(app_instance, monkeypatch):
    captured = {}

    def fake_update(record_id, row):
        captured["id"] = record_id
        return [{**row, "id": record_id}], None

    monkeypatch.setattr(routes, "update_efficiency_record", fake_update)

    response = app_instance.test_client().put("/api/efficiency/r1", json=_payload(stops=7))

    assert response.status_code == 200
    assert captured["id"] == "r1"
    assert response.get_json()["record"]["stops"] == 7


def test_delete_record(app_instance, monkeypatch):
    monkeypatch.setattr(routes, "delete_efficiency_record", lambda record_id: ([_row(record_id, "1", "09:00")], None))

    client = app_instance.test_client()
    response = client.delete("/api/efficiency/r9")

    assert response.status_code == 200
    assert client.get("/api/changes?since=0").get_json()["revision"] == 1


def test_delete_missing_record(app_instance, monkeypatch):
    monkeypatch.setattr(routes, "delete_efficiency_record", lambda record_id: ([], None))

    assert app_instance.test_client().delete("/api/efficiency/r9").status_code == 404


def test_extract_from_uploaded_photo(app_instance, monkeypatch):
    captured = {}

    def fake_extract(photo, *, api_key=None, model_name=None):
        captured.update(photo=photo, api_key=api_key)
        return ExtractedFields(weft_meter=150.0, stops=3, total_time="07:30", run_time="06:45", machine_number="12")

    monkeypatch.setattr(routes, "extract_efficiency_data", fake_extract)
    monkeypatch.setattr(routes, "fetch_settings", lambda: (Settings(vision_api_key="saved-key"), None))

    response = app_instance.test_client().post(
        "/api/efficiency/extract",
        data={"photo": (io.BytesIO(b"jpeg-bytes"), "display.jpg")},
        content_type="multipart/form-data",
    )

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["fields"]["machine_number"] == "12"
    assert payload["defaults"]["shift"] in ("Day", "Night")
    assert captured["api_key"] == "saved-key"
    assert captured["photo"].startswith("data:image/jpeg;base64,")


def test_extract_failure_returns_502(app_instance, monkeypatch):
    def fake_extract(photo, **kwargs):
        raise ExtractionError("Vision request failed: timeout")

    monkeypatch.setattr(routes, "extract_efficiency_data", fake_extract)
    monkeypatch.setattr(routes, "fetch_settings", lambda: (Settings(), None))

    response = app_instance.test_client().post(
        "/api/efficiency/extract", json={"photoDataUri": "data:image/png;base64,AAAA"}
    )

    assert response.status_code == 502
    assert response.get_json() == {"message": "Vision request failed: timeout"}


def test_extract_requires_photo(app_instance):
    response = app_instance.test_client().post("/api/efficiency/extract", json={})

    assert response.status_code == 400


def test_share_record_fills_template(app_instance, monkeypatch):
    monkeypatch.setattr(routes, "fetch_efficiency_record", lambda record_id: (_row(record_id, "4", "09:00"), None))
    monkeypatch.setattr(
        routes,
        "fetch_settings",
        lambda: (Settings(notification_number="+44 7700", message_template="M/C {mc} {eff}%"), None),
    )

    payload = app_instance.test_client().get("/api/efficiency/r1/share").get_json()

    assert payload["message"] == "M/C 4 90.00%"
    assert payload["url"] == "https://wa.me/447700?text=M%2FC%204%2090.00%25"


def test_share_requires_whatsapp_settings(app_instance, monkeypatch):
    monkeypatch.setattr(routes, "fetch_efficiency_record", lambda record_id: (_row(record_id, "4", "09:00"), None))
    monkeypatch.setattr(routes, "fetch_settings", lambda: (Settings(), None))

    response = app_instance.test_client().get("/api/efficiency/r1/share")

    assert response.status_code == 400
    assert "WhatsApp not configured" in response.get_json()["message"]


@pytest.mark.parametrize("body", [[1, 2], "record", 42])
def test_create_record_requires_json_object(app_instance, body):
    response = app_instance.test_client().post("/api/efficiency", json=body)

    assert response.status_code == 400
    assert response.get_json() == {"message": "Request body must be a JSON object."}


def test_update_record_requires_json_object(app_instance, monkeypatch):
    def _unexpected(*args, **kwargs):
        raise AssertionError("storage should not be called")

    monkeypatch.setattr(routes, "update_efficiency_record", _unexpected)

    response = app_instance.test_client().put("/api/efficiency/r1", json=[_payload()])

    assert response.status_code == 400


def test_extract_requires_json_object(app_instance):
    response = app_instance.test_client().post("/api/efficiency/extract", json=["data:image/png;base64,AAAA"])

    assert response.status_code == 400


def test_row_band_uses_configured_threshold(app_instance, monkeypatch):
    rows = [_row("a", "1", "07:00")]
    monkeypatch.setattr(routes, "fetch_efficiency_records", lambda *a, **k: (rows, None))
    monkeypatch.setattr(routes, "fetch_settings", lambda: (Settings(low_efficiency_threshold=60), None))

    payload = app_instance.test_client().get("/api/efficiency/2024-05-01").get_json()

    assert payload["day"]["rows"][0]["band"] == "fair"
