import json
import time
from pathlib import Path

from fastapi.testclient import TestClient

from pajr.config import Settings
from pajr.orchestration import build_pipeline
from server import create_app


def _settings(tmp_path: Path) -> Settings:
    return Settings(
        local_storage_dir=str(tmp_path),
        gemini_api_key=None,
        s3_bucket=None,
        supabase_url=None,
        supabase_key=None,
        store_backend="local",
        media_ack_delay_sec=0.0,
        seed_demo_patients=True,
    )


def _client(tmp_path: Path) -> TestClient:
    settings = _settings(tmp_path)
    pipeline, _store = build_pipeline(settings)
    return TestClient(create_app(settings, pipeline=pipeline))


def test_health_and_patient_lookup(tmp_path: Path):
    with _client(tmp_path) as client:
        health = client.get("/health")
        assert health.status_code == 200
        assert health.json()["store_backend"] == "local"

        record = client.get("/v1/patients/P-1024")
        assert record.status_code == 200
        body = record.json()
        assert body["name"] == "Sarah Devi"
        assert body["risk_status"] == "MEDIUM"
        assert body["flagged"] is False

        assert client.get("/v1/patients/P-404").status_code == 404


def test_doctor_sees_only_assigned_patients(tmp_path: Path):
    with _client(tmp_path) as client:
        response = client.get("/v1/doctors/D-001/patients")
        assert response.status_code == 200
        assert [p["id"] for p in response.json()] == ["P-1024"]


def test_submit_message_validation(tmp_path: Path):
    with _client(tmp_path) as client:
        missing = client.post("/v1/patients/P-404/messages", json={"sender": "DOCTOR", "content": "hi"})
        assert missing.status_code == 404

        empty = client.post("/v1/patients/P-1024/messages", json={"sender": "PATIENT", "content": "  "})
        assert empty.status_code == 422

        bad_role = client.post("/v1/patients/P-1024/messages", json={"sender": "NURSE", "content": "hi"})
        assert bad_role.status_code == 422


def test_patient_text_gets_fallback_reply_without_api_key(tmp_path: Path):
    with _client(tmp_path) as client:
        sent = client.post(
            "/v1/patients/P-1024/messages",
            json={"sender": "PATIENT", "content": "glucose 220 this morning", "type": "TEXT"},
        )
        assert sent.status_code == 200
        message_id = sent.json()["id"]

        deadline = time.monotonic() + 5.0
        record = client.get("/v1/patients/P-1024").json()
        while len(record["messages"]) < 4 and time.monotonic() < deadline:
            time.sleep(0.05)
            record = client.get("/v1/patients/P-1024").json()

        assert [m["id"] for m in record["messages"]].index(message_id) == 2
        assert record["messages"][-1]["sender"] == "SYSTEM"
        assert record["risk_status"] == "MEDIUM"
        assert record["latest_insight"]["confidence_score"] == 0


def test_active_patient_selection(tmp_path: Path):
    with _client(tmp_path) as client:
        selected = client.put("/v1/session/active-patient", json={"patient_id": "P-1024"})
        assert selected.status_code == 200
        assert selected.json() == {"active_patient_id": "P-1024", "realtime_subscribed": True}

        assert client.put("/v1/session/active-patient", json={"patient_id": "P-404"}).status_code == 404

        cleared = client.delete("/v1/session/active-patient")
        assert cleared.json() == {"active_patient_id": None}
        assert client.get("/health").json()["active_patient_id"] is None


def test_unknown_doctor_is_provisioned_from_store(tmp_path: Path):
    tables = tmp_path / "tables"
    tables.mkdir()
    (tables / "patients.json").write_text(
        json.dumps(
            [
                {"id": "P-2001", "name": "Anil Shah", "assigned_doctor_id": "D-777", "risk_status": "CRITICAL"},
                {"id": "P-2002", "name": "Lata Iyer", "assigned_doctor_id": "D-777", "risk_status": "LOW"},
            ]
        ),
        encoding="utf-8",
    )
    with _client(tmp_path) as client:
        response = client.get("/v1/doctors/D-777/patients")
        assert [p["id"] for p in response.json()] == ["P-2001", "P-2002"]
        assert response.json()[0]["flagged"] is True
        assert client.get("/v1/patients/P-2002").status_code == 200
