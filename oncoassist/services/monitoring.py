"""
Read-time monitoring views over a patient's artifacts.

Nothing here is stored: every view is recomputed from the append-only
biomarker, scan and alert series on each request.
"""

from datetime import datetime, timedelta

from oncoassist.models.clinical_models import AlertRecord, ArtifactKind, BiomarkerRecord
from oncoassist.models.models import (
    BiomarkerReading,
    MonitoringSummary,
    RangeStatus,
    Timeframe,
    TumorMeasurement,
    utcnow,
)
from oncoassist.services.artifact_store import ClinicalArtifactStore

TIMEFRAME_DAYS: dict[Timeframe, int | None] = {
    Timeframe.LAST_30_DAYS: 30,
    Timeframe.LAST_90_DAYS: 90,
    Timeframe.ALL_TIME: None,
}


def range_status(biomarker: BiomarkerRecord) -> RangeStatus:
    """Classify a reading against whichever normal range bounds are present."""
    if biomarker.normal_range_low is not None and biomarker.value < biomarker.normal_range_low:
        return RangeStatus.LOW
    if biomarker.normal_range_high is not None and biomarker.value > biomarker.normal_range_high:
        return RangeStatus.HIGH
    return RangeStatus.NORMAL


def timeframe_start(timeframe: Timeframe, now: datetime | None = None) -> datetime | None:
    days = TIMEFRAME_DAYS[timeframe]
    if days is None:
        return None
    return (now or utcnow()) - timedelta(days=days)


class MonitoringService:
    """Projections used by the patient monitoring screens."""

    def __init__(self, store: ClinicalArtifactStore):
        self.store = store

    def biomarker_series(self, patient_id: str, biomarker_type: str | None = None) -> dict[str, list[BiomarkerRecord]]:
        """Readings grouped by assay name, oldest first within each group."""
        series: dict[str, list[BiomarkerRecord]] = {}
        for reading in self.store.list_artifacts(patient_id, ArtifactKind.BIOMARKER):
            if biomarker_type is not None and reading.type != biomarker_type:
                continue
            series.setdefault(reading.type, []).append(reading)
        return series

    def latest_biomarkers(self, patient_id: str) -> list[BiomarkerReading]:
        """The most recent reading of each assay with its range status."""
        readings = []
        for _, series in sorted(self.biomarker_series(patient_id).items()):
            latest = series[-1]
            readings.append(BiomarkerReading(biomarker=latest, range_status=range_status(latest)))
        return readings

    def tumor_timeline(
        self,
        patient_id: str,
        timeframe: Timeframe = Timeframe.ALL_TIME,
        now: datetime | None = None,
    ) -> list[TumorMeasurement]:
        """Tumour size and malignancy per scan within the timeframe, oldest first."""
        scans = self.store.list_artifacts(
            patient_id,
            ArtifactKind.SCAN,
            since=timeframe_start(timeframe, now),
        )
        return [
            TumorMeasurement(
                scan_id=scan.id,
                recorded_at=scan.uploaded_at,
                size=scan.tumor_size,
                malignancy=scan.malignancy_score,
                growth_rate=scan.growth_rate,
            )
            for scan in scans
            if scan.tumor_detected
        ]

    def open_alerts(self, patient_id: str) -> list[AlertRecord]:
        """Unacknowledged alerts, newest first."""
        alerts = self.store.list_artifacts(patient_id, ArtifactKind.ALERT)
        return [alert for alert in reversed(alerts) if not alert.acknowledged]

    def summary(
        self,
        patient_id: str,
        timeframe: Timeframe = Timeframe.ALL_TIME,
        now: datetime | None = None,
    ) -> MonitoringSummary:
        return MonitoringSummary(
            patient_id=patient_id,
            timeframe=timeframe,
            latest_biomarkers=self.latest_biomarkers(patient_id),
            tumor_timeline=self.tumor_timeline(patient_id, timeframe, now),
            open_alerts=self.open_alerts(patient_id),
        )
