"""Shared fixtures: in-memory database, stores and a scripted inference client."""

from datetime import datetime, timedelta

import pytest

from oncoassist.database.database import create_database_engine, create_session_factory, init_db
from oncoassist.models.models import PatientCreate
from oncoassist.services.artifact_store import ClinicalArtifactStore, PatientRecordStore
from oncoassist.services.errors import TransportError


DIAGNOSIS_JSON = (
    '{"primaryDiagnosis": "Non-small cell lung carcinoma", "confidence": 0.87, '
    '"details": "Spiculated mass in the right upper lobe.", '
    '"alternativeDiagnoses": [{"diagnosis": "Small cell lung cancer", "confidence": 0.08}, '
    '{"diagnosis": "Pulmonary hamartoma", "confidence": 0.05}]}'
)

PROGNOSIS_JSON = (
    '{"survival1yr": 0.82, "survival3yr": 0.61, "survival5yr": 0.45, '
    '"treatmentScenarios": [{"name": "Lobectomy", "description": "Surgical resection", '
    '"survivalRate": 0.63, "timeframe": "5-year"}]}'
)

RADIATION_PLAN_JSON = (
    '{"beamAngles": 7, "totalDose": 60.0, "fractions": 30, "tumorCoverage": 0.95, '
    '"healthyTissueSpared": 0.82, "organsAtRisk": [{"name": "Spinal cord", "dose": 38.5, "limit": 45.0}], '
    '"optimizationMethod": "IMRT inverse planning"}'
)


class FakeClock:
    """Deterministic clock that advances one minute per reading."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(minutes=1)
        return current


class FakeInferenceClient:
    """Returns scripted replies in order; exceptions in the script are raised."""

    def __init__(self, replies=()):
        self.replies = list(replies)
        self.prompts: list[str] = []
        self.chat_calls: list[tuple[str, list]] = []

    def _next(self):
        if not self.replies:
            raise TransportError("No scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def generate(self, prompt, config=None, *, system=None, timeout=None):
        self.prompts.append(prompt)
        return self._next()

    async def chat(self, message, history=(), config=None, *, preamble=None, timeout=None):
        self.chat_calls.append((message, list(history)))
        return self._next()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory():
    engine = create_database_engine("sqlite://")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def patient_store(session_factory, clock):
    return PatientRecordStore(session_factory, clock=clock)


@pytest.fixture
def artifact_store(session_factory, clock):
    return ClinicalArtifactStore(session_factory, clock=clock)


@pytest.fixture
def patient_data():
    return PatientCreate(
        patient_id="P-1001",
        name="Jordan Avery",
        age=62,
        gender="female",
        cancer_type="Lung",
        stage="IIIA",
        treatment_history=[{"treatment": "Chemotherapy", "cycles": 4}],
    )


@pytest.fixture
def patient(patient_store, patient_data):
    return patient_store.create_patient(patient_data)
