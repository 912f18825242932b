"""
Persist validated inference results as new clinical artifacts.

Every write inserts exactly one new row. Prior artifacts are never touched;
the newest row becomes "current" through the store's read-time ordering.
"""

from pydantic import BaseModel

from oncoassist.config.logging_config import get_logger
from oncoassist.models.clinical_models import (
    ArtifactKind,
    DiagnosisRecord,
    DiagnosisResult,
    InferenceResult,
    PrognosisRecord,
    PrognosisResult,
    RadiationPlanRecord,
    RadiationPlanResult,
)
from oncoassist.services.artifact_store import ClinicalArtifactStore

logger = get_logger(__name__)


RESULT_KINDS: dict[type[BaseModel], ArtifactKind] = {
    DiagnosisResult: ArtifactKind.DIAGNOSIS,
    PrognosisResult: ArtifactKind.PROGNOSIS,
    RadiationPlanResult: ArtifactKind.RADIATION_PLAN,
}


def _clamp_unit(value: float, field: str, kind: ArtifactKind, patient_id: str) -> float:
    """Clamp a fraction or probability into [0, 1]."""
    clamped = min(max(float(value), 0.0), 1.0)
    if clamped != value:
        logger.warning(
            "Clamped out-of-range model value",
            kind=kind.value,
            patient_id=patient_id,
            field=field,
            value=value,
            clamped=clamped,
        )
    return clamped


class ArtifactWriter:
    """Maps result shapes onto artifact rows and inserts them."""

    def __init__(self, store: ClinicalArtifactStore):
        self.store = store

    def write(
        self,
        patient_id: str,
        result: InferenceResult,
        kind: ArtifactKind | None = None,
    ):
        """
        Store a result as a new artifact for a patient.

        Args:
            patient_id: Owning patient identifier.
            result: A validated Diagnosis, Prognosis or RadiationPlan result.
            kind: Artifact kind; inferred from the result type when omitted.

        Returns:
            The stored record.

        Raises:
            PatientReferenceError: If the patient does not exist.
            ValueError: If the result does not match the artifact kind.
        """
        expected = RESULT_KINDS.get(type(result))
        if expected is None:
            raise ValueError(f"Unsupported result type {type(result).__name__}")
        if kind is not None and kind != expected:
            raise ValueError(f"{type(result).__name__} cannot be stored as '{kind.value}'")

        if expected is ArtifactKind.DIAGNOSIS:
            values = self._diagnosis_values(patient_id, result)
        elif expected is ArtifactKind.PROGNOSIS:
            values = self._prognosis_values(patient_id, result)
        else:
            values = self._radiation_plan_values(patient_id, result)

        return self.store.insert(expected, patient_id, values)

    def write_diagnosis(self, patient_id: str, result: DiagnosisResult) -> DiagnosisRecord:
        return self.write(patient_id, result, ArtifactKind.DIAGNOSIS)

    def write_prognosis(self, patient_id: str, result: PrognosisResult) -> PrognosisRecord:
        return self.write(patient_id, result, ArtifactKind.PROGNOSIS)

    def write_radiation_plan(self, patient_id: str, result: RadiationPlanResult) -> RadiationPlanRecord:
        return self.write(patient_id, result, ArtifactKind.RADIATION_PLAN)

    # ------------------------------------------------------------------
    # Column mapping
    # ------------------------------------------------------------------

    def _diagnosis_values(self, patient_id: str, result: DiagnosisResult) -> dict:
        kind = ArtifactKind.DIAGNOSIS
        alternatives = []
        for i, alt in enumerate(result.alternative_diagnoses):
            alternatives.append({
                "diagnosis": alt.diagnosis,
                "confidence": _clamp_unit(
                    alt.confidence, f"alternative_diagnoses.{i}.confidence", kind, patient_id
                ),
            })
        return {
            "primary_diagnosis": result.primary_diagnosis,
            "confidence": _clamp_unit(result.confidence, "confidence", kind, patient_id),
            "details": result.details,
            "alternative_diagnoses": alternatives,
        }

    def _prognosis_values(self, patient_id: str, result: PrognosisResult) -> dict:
        kind = ArtifactKind.PROGNOSIS
        scenarios = []
        for i, scenario in enumerate(result.treatment_scenarios):
            values = scenario.model_dump()
            values["survival_rate"] = _clamp_unit(
                scenario.survival_rate, f"treatment_scenarios.{i}.survival_rate", kind, patient_id
            )
            scenarios.append(values)
        return {
            "survival_1yr": _clamp_unit(result.survival_1yr, "survival_1yr", kind, patient_id),
            "survival_3yr": _clamp_unit(result.survival_3yr, "survival_3yr", kind, patient_id),
            "survival_5yr": _clamp_unit(result.survival_5yr, "survival_5yr", kind, patient_id),
            "treatment_scenarios": scenarios,
        }

    def _radiation_plan_values(self, patient_id: str, result: RadiationPlanResult) -> dict:
        kind = ArtifactKind.RADIATION_PLAN
        return {
            "beam_angles": result.beam_angles,
            "total_dose": result.total_dose,
            "fractions": result.fractions,
            "tumor_coverage": _clamp_unit(result.tumor_coverage, "tumor_coverage", kind, patient_id),
            "healthy_tissue_spared": _clamp_unit(
                result.healthy_tissue_spared, "healthy_tissue_spared", kind, patient_id
            ),
            "organs_at_risk": [organ.model_dump() for organ in result.organs_at_risk],
            "optimization_method": result.optimization_method,
        }
