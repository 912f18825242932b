"""
Pydantic models for clinical data flowing through the inference pipeline.

Three groups live here:

- Result shapes the model is asked to produce (Diagnosis, Prognosis,
  RadiationPlan). These are validated structurally: strings must be strings
  and numbers must be numbers, nothing is coerced.
- Typed inputs to each pipeline entry point, serialized by the prompt builder.
- Read-side records returned by the stores, built from ORM rows.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictStr,
)


# ============================================================================
# Enumerations
# ============================================================================

class PatientStatus(str, Enum):
    """Patient case status. Any transition between values is allowed."""
    ACTIVE = "active"
    REMISSION = "remission"
    CRITICAL = "critical"
    INACTIVE = "inactive"


class ArtifactKind(str, Enum):
    """Kinds of per-patient clinical artifacts."""
    SCAN = "scan"
    DIAGNOSIS = "diagnosis"
    PROGNOSIS = "prognosis"
    RADIATION_PLAN = "radiation_plan"
    BIOMARKER = "biomarker"
    ALERT = "alert"


class BiomarkerTrend(str, Enum):
    """Direction of a biomarker relative to its previous reading."""
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class AlertType(str, Enum):
    """Alert severity."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


# ============================================================================
# Structural number types (no coercion from strings or booleans)
# ============================================================================

def _require_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a JSON number")
    if not math.isfinite(value):
        raise ValueError("must be a finite number")
    return value


def _require_integer(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a JSON integer")
    if not math.isfinite(value):
        raise ValueError("must be a finite number")
    if isinstance(value, float) and not value.is_integer():
        raise ValueError("must be a whole number")
    return int(value)


Number = Annotated[float, BeforeValidator(_require_number)]
Integer = Annotated[int, BeforeValidator(_require_integer)]


def _camel(snake: str, camel: str) -> AliasChoices:
    """Accept the camelCase wire name emitted by the model and the Python name."""
    return AliasChoices(camel, snake)


# ============================================================================
# Result shapes
# ============================================================================

class AlternativeDiagnosis(BaseModel):
    """A differential diagnosis with its own confidence."""
    diagnosis: StrictStr = Field(..., description="Alternative diagnosis label")
    confidence: Number = Field(..., description="Confidence in [0, 1]")


class DiagnosisResult(BaseModel):
    """
    Structured diagnosis produced by the model.

    Wire format: ``primaryDiagnosis``, ``confidence``, ``details``,
    ``alternativeDiagnoses``.
    """
    primary_diagnosis: StrictStr = Field(
        ...,
        validation_alias=_camel("primary_diagnosis", "primaryDiagnosis"),
        description="Primary diagnosis label",
    )
    confidence: Number = Field(..., description="Confidence in [0, 1]")
    details: StrictStr | None = Field(default=None, description="Free-text rationale")
    alternative_diagnoses: list[AlternativeDiagnosis] = Field(
        ...,
        validation_alias=_camel("alternative_diagnoses", "alternativeDiagnoses"),
        description="Differential diagnoses",
    )


class TreatmentScenario(BaseModel):
    """Expected outcome for one treatment option."""
    name: StrictStr = Field(..., description="Scenario name")
    description: StrictStr = Field(..., description="Scenario description")
    survival_rate: Number = Field(
        ...,
        validation_alias=_camel("survival_rate", "survivalRate"),
        description="Survival rate in [0, 1]",
    )
    timeframe: StrictStr = Field(..., description="Timeframe label, e.g. '3-year'")


class PrognosisResult(BaseModel):
    """
    Structured survival prognosis produced by the model.

    Wire format: ``survival1yr``, ``survival3yr``, ``survival5yr``,
    ``treatmentScenarios``.
    """
    survival_1yr: Number = Field(..., validation_alias=_camel("survival_1yr", "survival1yr"))
    survival_3yr: Number = Field(..., validation_alias=_camel("survival_3yr", "survival3yr"))
    survival_5yr: Number = Field(..., validation_alias=_camel("survival_5yr", "survival5yr"))
    treatment_scenarios: list[TreatmentScenario] = Field(
        ...,
        validation_alias=_camel("treatment_scenarios", "treatmentScenarios"),
    )


class OrganAtRisk(BaseModel):
    """Dose delivered to an organ at risk against its limit."""
    name: StrictStr = Field(..., description="Organ name")
    dose: Number = Field(..., description="Delivered dose (Gy)")
    limit: Number = Field(..., description="Dose limit (Gy)")


class RadiationPlanResult(BaseModel):
    """
    Structured radiation therapy plan produced by the model.

    Wire format: ``beamAngles``, ``totalDose``, ``fractions``,
    ``tumorCoverage``, ``healthyTissueSpared``, ``organsAtRisk``,
    ``optimizationMethod``.
    """
    beam_angles: Integer = Field(..., validation_alias=_camel("beam_angles", "beamAngles"))
    total_dose: Number = Field(..., validation_alias=_camel("total_dose", "totalDose"))
    fractions: Integer = Field(...)
    tumor_coverage: Number = Field(..., validation_alias=_camel("tumor_coverage", "tumorCoverage"))
    healthy_tissue_spared: Number = Field(
        ...,
        validation_alias=_camel("healthy_tissue_spared", "healthyTissueSpared"),
    )
    organs_at_risk: list[OrganAtRisk] = Field(
        ...,
        validation_alias=_camel("organs_at_risk", "organsAtRisk"),
    )
    optimization_method: StrictStr = Field(
        ...,
        validation_alias=_camel("optimization_method", "optimizationMethod"),
    )


InferenceResult = DiagnosisResult | PrognosisResult | RadiationPlanResult


# ============================================================================
# Pipeline inputs
# ============================================================================

class PatientContext(BaseModel):
    """Patient attributes made available to the model."""
    patient_id: str = Field(..., min_length=1, description="External patient identifier")
    name: str | None = Field(default=None, description="Patient name")
    age: int | None = Field(default=None, ge=0, le=150)
    gender: str | None = None
    cancer_type: str | None = None
    stage: str | None = None
    status: PatientStatus | None = None
    treatment_history: Any = Field(default=None, description="Free-form treatment history")

    @classmethod
    def from_record(cls, record: "PatientRecord") -> "PatientContext":
        return cls.model_validate(record.model_dump(exclude={"id", "created_at", "updated_at"}))


class ScanContext(BaseModel):
    """Imaging findings for a diagnosis request."""
    scan_type: str = Field(..., description="Modality tag (CT, MRI, PET, ...)")
    tumor_detected: bool | None = None
    tumor_location: dict[str, Any] | None = None
    tumor_size: float | None = Field(default=None, ge=0)
    malignancy_score: float | None = Field(default=None, ge=0, le=1)
    growth_rate: float | None = None
    notes: str | None = None

    @classmethod
    def from_record(cls, record: "ScanRecord") -> "ScanContext":
        return cls.model_validate(record.model_dump(include=set(cls.model_fields)))


class DiagnosisContext(BaseModel):
    """The diagnosis a prognosis request is based on."""
    primary_diagnosis: str
    confidence: float | None = None
    details: str | None = None
    alternative_diagnoses: list[AlternativeDiagnosis] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: "DiagnosisRecord") -> "DiagnosisContext":
        return cls.model_validate(record.model_dump(include=set(cls.model_fields)))


class TreatmentOption(BaseModel):
    """A treatment option to evaluate in the prognosis."""
    name: str = Field(..., min_length=1)
    description: str | None = None


class TumorContext(BaseModel):
    """Target volume description for radiation planning."""
    tumor_type: str | None = None
    location: dict[str, Any] | str | None = None
    size: float | None = Field(default=None, ge=0, description="Largest dimension (cm)")
    volume: float | None = Field(default=None, ge=0, description="Volume (cc)")
    malignancy_score: float | None = Field(default=None, ge=0, le=1)
    notes: str | None = None


class OrganConstraint(BaseModel):
    """Dose constraint for an organ at risk."""
    name: str = Field(..., min_length=1)
    max_dose: float = Field(..., ge=0, description="Maximum tolerated dose (Gy)")
    priority: str | None = None


class DiagnosisRequest(BaseModel):
    """Input for a diagnosis pipeline run."""
    patient: PatientContext
    scan: ScanContext


class PrognosisRequest(BaseModel):
    """Input for a prognosis pipeline run."""
    patient: PatientContext
    diagnosis: DiagnosisContext
    treatment_options: list[TreatmentOption] = Field(default_factory=list)


class RadiationPlanRequest(BaseModel):
    """Input for a radiation plan pipeline run."""
    patient: PatientContext
    tumor: TumorContext
    organ_constraints: list[OrganConstraint] = Field(default_factory=list)


# ============================================================================
# Stored records
# ============================================================================

class RecordModel(BaseModel):
    """Base for read-side records built from ORM rows."""
    model_config = ConfigDict(from_attributes=True)


class PatientRecord(RecordModel):
    id: int
    patient_id: str
    name: str
    age: int
    gender: str
    cancer_type: str
    stage: str
    status: PatientStatus
    treatment_history: Any = None
    created_at: datetime
    updated_at: datetime


class ScanRecord(RecordModel):
    id: int
    patient_id: str
    scan_type: str
    file_url: str
    tumor_detected: bool = False
    tumor_location: dict[str, Any] | None = None
    tumor_size: float | None = None
    malignancy_score: float | None = None
    growth_rate: float | None = None
    notes: str | None = None
    uploaded_at: datetime


class DiagnosisRecord(RecordModel):
    id: int
    patient_id: str
    primary_diagnosis: str
    confidence: float
    details: str | None = None
    alternative_diagnoses: list[AlternativeDiagnosis] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class PrognosisRecord(RecordModel):
    id: int
    patient_id: str
    survival_1yr: float
    survival_3yr: float
    survival_5yr: float
    treatment_scenarios: list[TreatmentScenario] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class RadiationPlanRecord(RecordModel):
    id: int
    patient_id: str
    beam_angles: int
    total_dose: float
    fractions: int
    tumor_coverage: float
    healthy_tissue_spared: float
    organs_at_risk: list[OrganAtRisk] = Field(default_factory=list)
    optimization_method: str
    created_at: datetime
    updated_at: datetime


class BiomarkerRecord(RecordModel):
    id: int
    patient_id: str
    type: str
    value: float
    unit: str
    normal_range_low: float | None = None
    normal_range_high: float | None = None
    trend: BiomarkerTrend | None = None
    recorded_at: datetime


class AlertRecord(RecordModel):
    id: int
    patient_id: str
    type: AlertType
    message: str
    details: str | None = None
    acknowledged: bool = False
    created_at: datetime


ArtifactRecord = (
    ScanRecord
    | DiagnosisRecord
    | PrognosisRecord
    | RadiationPlanRecord
    | BiomarkerRecord
    | AlertRecord
)
