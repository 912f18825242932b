"""HTTP API tests with dependency overrides."""

import httpx
import pytest
from fastapi.testclient import TestClient

from oncoassist.database.database import get_session_factory
from oncoassist.main import create_app
from oncoassist.services import chat_service, inference_client, inference_pipeline
from oncoassist.services.artifact_store import ClinicalArtifactStore
from oncoassist.services.artifact_writer import ArtifactWriter
from oncoassist.services.chat_service import ConversationalAssistant, get_assistant
from oncoassist.services.errors import InferenceConfigurationError, TransportError
from oncoassist.services.inference_client import InferenceClient
from oncoassist.services.inference_pipeline import InferencePipeline, get_pipeline
from tests.conftest import DIAGNOSIS_JSON, PROGNOSIS_JSON, FakeInferenceClient

PATIENT = {
    "patient_id": "P-2001",
    "name": "Robin Patel",
    "age": 55,
    "gender": "male",
    "cancer_type": "Colorectal",
    "stage": "II",
}


@pytest.fixture
def fake_client():
    return FakeInferenceClient()


@pytest.fixture
def app(session_factory, fake_client):
    app = create_app()
    assistant = ConversationalAssistant(fake_client)
    pipeline = InferencePipeline(fake_client, ArtifactWriter(ClinicalArtifactStore(session_factory)))
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_assistant] = lambda: assistant
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def registered(client):
    response = client.post("/api/v1/patients", json=PATIENT)
    assert response.status_code == 201
    return response.json()


def add_scan(client, size=2.8):
    response = client.post(
        f"/api/v1/patients/{PATIENT['patient_id']}/scans",
        json={"scan_type": "CT", "file_url": "s3://scans/ct.dcm", "tumor_detected": True, "tumor_size": size},
    )
    assert response.status_code == 201
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["api"] is True
    assert "X-Request-ID" in response.headers


def test_patient_crud(client, registered):
    assert registered["status"] == "active"

    response = client.put(f"/api/v1/patients/{PATIENT['patient_id']}", json={"status": "remission"})
    assert response.status_code == 200
    assert response.json()["status"] == "remission"

    assert client.get("/api/v1/patients/unknown").status_code == 404
    assert [p["patient_id"] for p in client.get("/api/v1/patients").json()] == ["P-2001"]


def test_duplicate_patient(client, registered):
    response = client.post("/api/v1/patients", json=PATIENT)
    assert response.status_code == 409
    assert response.json()["error"] == "DUPLICATE_PATIENT"


def test_artifact_for_unknown_patient(client):
    response = client.post(
        "/api/v1/patients/ghost/alerts",
        json={"type": "info", "message": "hello"},
    )
    assert response.status_code == 404
    assert response.json()["error"] == "UNKNOWN_PATIENT"


def test_generate_diagnosis(client, fake_client, registered):
    add_scan(client)
    fake_client.replies.append(f"```json\n{DIAGNOSIS_JSON}\n```")

    response = client.post("/api/v1/ai/diagnosis", json={"patient_id": PATIENT["patient_id"]})
    assert response.status_code == 201
    assert response.json()["primary_diagnosis"] == "Non-small cell lung carcinoma"

    current = client.get(f"/api/v1/patients/{PATIENT['patient_id']}/diagnoses/current")
    assert current.json()["id"] == response.json()["id"]


def test_generate_diagnosis_without_scan(client, registered):
    response = client.post("/api/v1/ai/diagnosis", json={"patient_id": PATIENT["patient_id"]})
    assert response.status_code == 404
    assert response.json()["error"] == "MISSING_CONTEXT"


def test_model_unreachable_maps_to_503(client, fake_client, registered):
    add_scan(client)
    fake_client.replies.append(TransportError("Inference endpoint unreachable"))

    response = client.post("/api/v1/ai/diagnosis", json={"patient_id": PATIENT["patient_id"]})
    assert response.status_code == 503
    body = response.json()
    assert body["error"] == "MODEL_UNREACHABLE"
    assert body["details"]["retryable"] is True
    assert client.get(f"/api/v1/patients/{PATIENT['patient_id']}/diagnoses").json() == []


def test_unusable_output_maps_to_502(client, fake_client, registered):
    add_scan(client)
    fake_client.replies.append("I am unable to comply.")

    response = client.post("/api/v1/ai/diagnosis", json={"patient_id": PATIENT["patient_id"]})
    assert response.status_code == 502
    assert response.json()["details"]["category"] == "model_output_unusable"


def test_unconfigured_model_maps_to_503(app, client, registered):
    def unconfigured():
        raise InferenceConfigurationError("LLM_API_KEY is not configured")

    app.dependency_overrides[get_pipeline] = unconfigured
    response = client.post("/api/v1/ai/diagnosis", json={"patient_id": PATIENT["patient_id"]})
    assert response.status_code == 503
    assert response.json()["error"] == "MODEL_NOT_CONFIGURED"


def test_prognosis_from_explicit_diagnosis(client, fake_client, registered):
    add_scan(client)
    fake_client.replies.extend([DIAGNOSIS_JSON, DIAGNOSIS_JSON, PROGNOSIS_JSON])
    first = client.post("/api/v1/ai/diagnosis", json={"patient_id": PATIENT["patient_id"]}).json()
    client.post("/api/v1/ai/diagnosis", json={"patient_id": PATIENT["patient_id"]})

    response = client.post(
        "/api/v1/ai/prognosis",
        json={
            "patient_id": PATIENT["patient_id"],
            "diagnosis_id": first["id"],
            "treatment_options": [{"name": "Hemicolectomy"}],
        },
    )
    assert response.status_code == 201
    assert response.json()["survival_5yr"] == 0.45

    explicit = client.get(
        f"/api/v1/patients/{PATIENT['patient_id']}/diagnoses/current",
        params={"artifact_id": first["id"]},
    )
    assert explicit.json()["id"] == first["id"]


def test_monitoring_and_alert_acknowledgment(client, registered):
    base = f"/api/v1/patients/{PATIENT['patient_id']}"
    add_scan(client, 3.0)
    client.post(f"{base}/biomarkers", json={"type": "CEA", "value": 8.2, "unit": "ng/mL", "normal_range_high": 5.0})
    alert = client.post(f"{base}/alerts", json={"type": "critical", "message": "CEA rising"}).json()

    summary = client.get(f"{base}/monitoring", params={"timeframe": "all-time"}).json()
    assert summary["latest_biomarkers"][0]["range_status"] == "high"
    assert summary["tumor_timeline"][0]["size"] == 3.0
    assert len(summary["open_alerts"]) == 1

    for _ in range(2):
        response = client.patch(f"/api/v1/alerts/{alert['id']}/acknowledge")
        assert response.status_code == 200
        assert response.json()["acknowledged"] is True

    assert client.get(f"{base}/monitoring").json()["open_alerts"] == []
    assert client.patch("/api/v1/alerts/9999/acknowledge").status_code == 404


def test_chat_session_flow(client, fake_client):
    session = client.post("/api/v1/chat/sessions").json()
    assert session["state"] == "idle"
    assert len(session["transcript"]) == 1

    fake_client.replies.append("Consider MRI of the pelvis.")
    response = client.post(
        f"/api/v1/chat/sessions/{session['session_id']}/messages",
        json={"message": "  Staging for rectal cancer?  "},
    )
    assert response.status_code == 200
    assert response.json()["text"] == "Consider MRI of the pelvis."

    transcript = client.get(f"/api/v1/chat/sessions/{session['session_id']}").json()["transcript"]
    assert [t["is_user"] for t in transcript] == [False, True, False]
    assert transcript[1]["text"] == "Staging for rectal cancer?"


def test_chat_blank_message_rejected(client):
    session = client.post("/api/v1/chat/sessions").json()
    response = client.post(f"/api/v1/chat/sessions/{session['session_id']}/messages", json={"message": "   "})
    assert response.status_code == 422


def test_chat_unknown_session(client):
    response = client.post("/api/v1/chat/sessions/missing/messages", json={"message": "hi"})
    assert response.status_code == 404


def test_non_finite_output_maps_to_502(client, fake_client, registered):
    add_scan(client)
    fake_client.replies.append('```json {"primaryDiagnosis":"X","confidence":NaN,"alternativeDiagnoses":[]} ```')

    response = client.post("/api/v1/ai/diagnosis", json={"patient_id": PATIENT["patient_id"]})
    assert response.status_code == 502
    assert response.json()["details"]["category"] == "model_output_unusable"
    assert client.get(f"/api/v1/patients/{PATIENT['patient_id']}/diagnoses").json() == []


def test_close_chat_session(client):
    session_id = client.post("/api/v1/chat/sessions").json()["session_id"]

    response = client.delete(f"/api/v1/chat/sessions/{session_id}")
    assert response.status_code == 204
    assert client.get(f"/api/v1/chat/sessions/{session_id}").status_code == 404
    assert client.delete(f"/api/v1/chat/sessions/{session_id}").status_code == 404


def test_shutdown_closes_client_and_resets_singletons(monkeypatch):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    inference = InferenceClient(api_key="test-key", model="test-model", http_client=http_client)
    monkeypatch.setattr(inference_client, "_client_instance", inference)
    monkeypatch.setattr(inference_pipeline, "_pipeline_instance", object())
    monkeypatch.setattr(chat_service, "_assistant_instance", object())

    with TestClient(create_app()) as started:
        assert started.get("/health").status_code == 200

    assert inference_client._client_instance is None
    assert inference_pipeline._pipeline_instance is None
    assert chat_service._assistant_instance is None
    assert http_client.is_closed
