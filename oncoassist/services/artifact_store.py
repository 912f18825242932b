"""
Patient and clinical artifact stores.

The persistence boundary of the application:

- PatientRecordStore: create, read, list and update patients.
- ClinicalArtifactStore: append-only per-patient time series (scans,
  diagnoses, prognoses, radiation plans, biomarkers) plus alerts, whose
  ``acknowledged`` flag is the one value ever updated in place.

Each write runs in its own transaction and inserts exactly one row.
"current" artifacts are derived when read, never stored.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from oncoassist.config.logging_config import get_logger
from oncoassist.database.database import session_scope
from oncoassist.database.tables import (
    Alert,
    Base,
    Biomarker,
    Diagnosis,
    Patient,
    Prognosis,
    RadiationPlan,
    Scan,
)
from oncoassist.models.clinical_models import (
    AlertRecord,
    ArtifactKind,
    ArtifactRecord,
    BiomarkerRecord,
    DiagnosisRecord,
    PatientRecord,
    PrognosisRecord,
    RadiationPlanRecord,
    RecordModel,
    ScanRecord,
)
from oncoassist.models.models import (
    AlertCreate,
    BiomarkerCreate,
    PatientCreate,
    PatientUpdate,
    ScanCreate,
    utcnow,
)
from oncoassist.services.errors import DuplicatePatientError, PatientReferenceError

logger = get_logger(__name__)


@dataclass(frozen=True)
class ArtifactTable:
    """How one artifact kind is stored and read back."""
    table: type[Base]
    record: type[RecordModel]
    timestamp_columns: tuple[str, ...]

    @property
    def order_column(self) -> str:
        """Column that defines recency for this kind."""
        return self.timestamp_columns[-1]


ARTIFACT_TABLES: dict[ArtifactKind, ArtifactTable] = {
    ArtifactKind.SCAN: ArtifactTable(Scan, ScanRecord, ("uploaded_at",)),
    ArtifactKind.DIAGNOSIS: ArtifactTable(Diagnosis, DiagnosisRecord, ("created_at", "updated_at")),
    ArtifactKind.PROGNOSIS: ArtifactTable(Prognosis, PrognosisRecord, ("created_at", "updated_at")),
    ArtifactKind.RADIATION_PLAN: ArtifactTable(
        RadiationPlan, RadiationPlanRecord, ("created_at", "updated_at")
    ),
    ArtifactKind.BIOMARKER: ArtifactTable(Biomarker, BiomarkerRecord, ("recorded_at",)),
    ArtifactKind.ALERT: ArtifactTable(Alert, AlertRecord, ("created_at",)),
}


def _patient_exists(session: Session, patient_id: str) -> bool:
    return session.scalar(
        select(func.count()).select_from(Patient).where(Patient.patient_id == patient_id)
    ) > 0


class PatientRecordStore:
    """
    Store for canonical patient records.

    The external identifier is fixed at creation; updates never touch it.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def create_patient(self, data: PatientCreate) -> PatientRecord:
        """
        Register a new patient.

        Raises:
            DuplicatePatientError: If the identifier is already taken.
        """
        now = self._clock()
        try:
            with session_scope(self._session_factory) as session:
                if _patient_exists(session, data.patient_id):
                    raise DuplicatePatientError(data.patient_id)
                patient = Patient(**data.model_dump(mode="json"), created_at=now, updated_at=now)
                session.add(patient)
                session.flush()
                record = PatientRecord.model_validate(patient)
        except IntegrityError as exc:
            raise DuplicatePatientError(data.patient_id) from exc

        logger.info("Patient created", patient_id=record.patient_id, status=record.status.value)
        return record

    def get_patient(self, patient_id: str) -> PatientRecord | None:
        with session_scope(self._session_factory) as session:
            patient = session.scalar(select(Patient).where(Patient.patient_id == patient_id))
            return PatientRecord.model_validate(patient) if patient else None

    def list_patients(self, skip: int = 0, limit: int = 100) -> list[PatientRecord]:
        with session_scope(self._session_factory) as session:
            rows = session.scalars(
                select(Patient).order_by(Patient.id).offset(skip).limit(limit)
            ).all()
            return [PatientRecord.model_validate(row) for row in rows]

    def update_patient(self, patient_id: str, changes: PatientUpdate) -> PatientRecord | None:
        """
        Apply a partial update and refresh ``updated_at``.

        Returns:
            The updated record, or None if the patient does not exist.
        """
        values = changes.model_dump(mode="json", exclude_unset=True)
        with session_scope(self._session_factory) as session:
            patient = session.scalar(select(Patient).where(Patient.patient_id == patient_id))
            if patient is None:
                return None
            for key, value in values.items():
                setattr(patient, key, value)
            patient.updated_at = self._clock()
            session.flush()
            record = PatientRecord.model_validate(patient)

        logger.info("Patient updated", patient_id=patient_id, fields=sorted(values))
        return record

    def exists(self, patient_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            return _patient_exists(session, patient_id)


class ClinicalArtifactStore:
    """
    Append-only store for per-patient clinical artifacts.

    Concurrent inserts for the same patient are independent transactions, so
    racing writers each produce their own row.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, kind: ArtifactKind, patient_id: str, values: dict[str, Any]) -> ArtifactRecord:
        """
        Insert one artifact row for an existing patient.

        Timestamp columns are stamped from the store clock; values for them
        are ignored.

        Args:
            kind: Artifact kind to insert.
            patient_id: Owning patient identifier.
            values: Column values for the new row.

        Returns:
            The stored record.

        Raises:
            PatientReferenceError: If the patient does not exist.
            IntegrityError: If the values violate any other constraint.
        """
        entry = ARTIFACT_TABLES[kind]
        now = self._clock()
        row_values = {k: v for k, v in values.items() if k not in entry.timestamp_columns}
        row_values.update({column: now for column in entry.timestamp_columns})

        try:
            with session_scope(self._session_factory) as session:
                if not _patient_exists(session, patient_id):
                    raise PatientReferenceError(patient_id)
                row = entry.table(patient_id=patient_id, **row_values)
                session.add(row)
                session.flush()
                record = entry.record.model_validate(row)
        except IntegrityError as exc:
            # Only a missing owner is a reference error; other constraint
            # violations are bad row values.
            if not self.patient_exists(patient_id):
                raise PatientReferenceError(patient_id) from exc
            logger.error(
                "Artifact insert violated a constraint",
                kind=kind.value,
                patient_id=patient_id,
                error=str(exc.orig),
            )
            raise

        logger.info(
            "Artifact stored",
            kind=kind.value,
            patient_id=patient_id,
            artifact_id=record.id,
        )
        return record

    def patient_exists(self, patient_id: str) -> bool:
        with session_scope(self._session_factory) as session:
            return _patient_exists(session, patient_id)

    def add_scan(self, patient_id: str, data: ScanCreate) -> ScanRecord:
        return self.insert(ArtifactKind.SCAN, patient_id, data.model_dump(mode="json"))

    def add_biomarker(self, patient_id: str, data: BiomarkerCreate) -> BiomarkerRecord:
        return self.insert(ArtifactKind.BIOMARKER, patient_id, data.model_dump(mode="json"))

    def add_alert(self, patient_id: str, data: AlertCreate) -> AlertRecord:
        values = data.model_dump(mode="json")
        values["acknowledged"] = False
        return self.insert(ArtifactKind.ALERT, patient_id, values)

    def acknowledge_alert(self, alert_id: int) -> AlertRecord | None:
        """
        Mark an alert acknowledged with a single conditional UPDATE.

        Idempotent: acknowledging twice leaves ``acknowledged=True``.

        Returns:
            The alert after the update, or None if it does not exist.
        """
        with session_scope(self._session_factory) as session:
            result = session.execute(
                update(Alert)
                .where(Alert.id == alert_id)
                .values(acknowledged=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None
            alert = session.get(Alert, alert_id)
            record = AlertRecord.model_validate(alert)

        logger.info("Alert acknowledged", alert_id=alert_id, patient_id=record.patient_id)
        return record

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_artifacts(
        self,
        patient_id: str,
        kind: ArtifactKind,
        since: datetime | None = None,
    ) -> list[ArtifactRecord]:
        """
        All artifacts of one kind for a patient, oldest first.

        Args:
            patient_id: Owning patient identifier.
            kind: Artifact kind.
            since: Only include artifacts at or after this time.
        """
        entry = ARTIFACT_TABLES[kind]
        order_column = getattr(entry.table, entry.order_column)
        stmt = select(entry.table).where(entry.table.patient_id == patient_id)
        if since is not None:
            stmt = stmt.where(order_column >= since)
        stmt = stmt.order_by(order_column.asc(), entry.table.id.asc())

        with session_scope(self._session_factory) as session:
            return [entry.record.model_validate(row) for row in session.scalars(stmt).all()]

    def get_artifact(self, kind: ArtifactKind, artifact_id: int) -> ArtifactRecord | None:
        entry = ARTIFACT_TABLES[kind]
        with session_scope(self._session_factory) as session:
            row = session.get(entry.table, artifact_id)
            return entry.record.model_validate(row) if row else None

    def current(
        self,
        patient_id: str,
        kind: ArtifactKind,
        artifact_id: int | None = None,
    ) -> ArtifactRecord | None:
        """
        Resolve the artifact a reader should see.

        With an explicit id, exactly that record is returned (if it belongs to
        the patient) regardless of recency. Otherwise the most recent record
        wins, ties broken by the later insert.
        """
        entry = ARTIFACT_TABLES[kind]
        if artifact_id is not None:
            record = self.get_artifact(kind, artifact_id)
            if record is None or record.patient_id != patient_id:
                return None
            return record

        order_column = getattr(entry.table, entry.order_column)
        stmt = (
            select(entry.table)
            .where(entry.table.patient_id == patient_id)
            .order_by(order_column.desc(), entry.table.id.desc())
            .limit(1)
        )
        with session_scope(self._session_factory) as session:
            row = session.scalars(stmt).first()
            return entry.record.model_validate(row) if row else None

    def count(self, patient_id: str, kind: ArtifactKind) -> int:
        entry = ARTIFACT_TABLES[kind]
        with session_scope(self._session_factory) as session:
            return session.scalar(
                select(func.count()).select_from(entry.table).where(entry.table.patient_id == patient_id)
            )
