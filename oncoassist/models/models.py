"""
Pydantic models for API request/response validation.

All models are explicit, documented, and enforce strict validation.
Invalid inputs fail closed with descriptive error messages.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from oncoassist.models.clinical_models import (
    AlertRecord,
    AlertType,
    BiomarkerRecord,
    BiomarkerTrend,
    OrganConstraint,
    PatientStatus,
    TreatmentOption,
    TumorContext,
)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in every timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============================================================================
# Patients and manually recorded artifacts
# ============================================================================

class PatientCreate(BaseModel):
    """Request to register a new patient."""
    patient_id: str = Field(..., min_length=1, max_length=64, description="External patient identifier")
    name: str = Field(..., min_length=1, max_length=200)
    age: int = Field(..., ge=0, le=150)
    gender: str = Field(..., min_length=1, max_length=32)
    cancer_type: str = Field(..., min_length=1, max_length=100)
    stage: str = Field(..., min_length=1, max_length=32)
    status: PatientStatus = Field(default=PatientStatus.ACTIVE)
    treatment_history: Any = Field(default=None, description="Free-form treatment history")

    @field_validator("patient_id")
    @classmethod
    def validate_patient_id(cls, v: str) -> str:
        """Identifiers are compared verbatim, so surrounding whitespace is rejected."""
        if v != v.strip():
            raise ValueError("Patient identifier cannot have leading or trailing whitespace")
        return v


class PatientUpdate(BaseModel):
    """
    Partial patient update.

    The patient identifier is not part of this model: it is immutable once
    created.
    """
    name: str | None = Field(default=None, min_length=1, max_length=200)
    age: int | None = Field(default=None, ge=0, le=150)
    gender: str | None = Field(default=None, min_length=1, max_length=32)
    cancer_type: str | None = Field(default=None, min_length=1, max_length=100)
    stage: str | None = Field(default=None, min_length=1, max_length=32)
    status: PatientStatus | None = None
    treatment_history: Any = None


class ScanCreate(BaseModel):
    """Request to record an imaging study."""
    scan_type: str = Field(..., min_length=1, max_length=32, description="CT, MRI, PET, ...")
    file_url: str = Field(..., min_length=1, description="Storage reference of the image")
    tumor_detected: bool = False
    tumor_location: dict[str, Any] | None = None
    tumor_size: float | None = Field(default=None, ge=0)
    malignancy_score: float | None = Field(default=None, ge=0, le=1)
    growth_rate: float | None = None
    notes: str | None = None


class BiomarkerCreate(BaseModel):
    """Request to record a lab biomarker reading."""
    type: str = Field(..., min_length=1, max_length=64, description="Assay name (CEA, WBC, CRP, ...)")
    value: float
    unit: str = Field(..., min_length=1, max_length=32)
    normal_range_low: float | None = None
    normal_range_high: float | None = None
    trend: BiomarkerTrend | None = None


class AlertCreate(BaseModel):
    """Request to raise a patient alert."""
    type: AlertType = Field(default=AlertType.INFO)
    message: str = Field(..., min_length=1, max_length=500)
    details: str | None = None


# ============================================================================
# AI generation requests
# ============================================================================

class DiagnosisGenerationRequest(BaseModel):
    """Generate a diagnosis from the patient's current scan, or a chosen one."""
    patient_id: str = Field(..., min_length=1)
    scan_id: int | None = Field(default=None, description="Scan to diagnose; latest when omitted")


class PrognosisGenerationRequest(BaseModel):
    """Generate a prognosis from the patient's current diagnosis, or a chosen one."""
    patient_id: str = Field(..., min_length=1)
    diagnosis_id: int | None = Field(default=None, description="Diagnosis to use; latest when omitted")
    treatment_options: list[TreatmentOption] = Field(default_factory=list)


class RadiationPlanGenerationRequest(BaseModel):
    """Generate a radiation plan; tumour data defaults to the current scan's findings."""
    patient_id: str = Field(..., min_length=1)
    tumor: TumorContext | None = None
    organ_constraints: list[OrganConstraint] = Field(default_factory=list)


# ============================================================================
# Monitoring
# ============================================================================

class Timeframe(str, Enum):
    """Window for tumour tracking charts."""
    LAST_30_DAYS = "30-days"
    LAST_90_DAYS = "90-days"
    ALL_TIME = "all-time"


class RangeStatus(str, Enum):
    """Where a biomarker value falls relative to its normal range."""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class BiomarkerReading(BaseModel):
    """Latest reading of a biomarker type with its range status."""
    biomarker: BiomarkerRecord
    range_status: RangeStatus


class TumorMeasurement(BaseModel):
    """One point on the tumour size timeline."""
    scan_id: int
    recorded_at: datetime
    size: float | None = None
    malignancy: float | None = None
    growth_rate: float | None = None


class MonitoringSummary(BaseModel):
    """Read-time monitoring view of one patient."""
    patient_id: str
    timeframe: Timeframe
    latest_biomarkers: list[BiomarkerReading] = Field(default_factory=list)
    tumor_timeline: list[TumorMeasurement] = Field(default_factory=list)
    open_alerts: list[AlertRecord] = Field(default_factory=list)


# ============================================================================
# Chat
# ============================================================================

class ChatTurn(BaseModel):
    """
    A single turn in a chat transcript.

    Attributes:
        text: The message text.
        is_user: True for clinician turns, False for assistant turns.
        timestamp: When the turn was appended.
    """
    text: str = Field(..., description="Turn text")
    is_user: bool = Field(..., description="Whether the clinician sent this turn")
    timestamp: datetime = Field(default_factory=utcnow, description="Turn timestamp")


class ChatMessageRequest(BaseModel):
    """Request to send a message to the assistant."""
    message: str = Field(
        ...,
        min_length=1,
        max_length=5000,
        description="Clinician message to the assistant"
    )

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        """Validate and clean the message."""
        cleaned = v.strip()
        if not cleaned:
            raise ValueError("Message cannot be empty")
        return cleaned


class ChatSessionResponse(BaseModel):
    """A chat session and its full transcript."""
    session_id: str = Field(..., description="Session ID")
    state: str = Field(..., description="idle or awaiting_response")
    transcript: list[ChatTurn] = Field(default_factory=list)


class ChatReplyResponse(BaseModel):
    """The assistant's reply to one clinician message."""
    session_id: str
    text: str = Field(..., description="Assistant response")
    is_user: bool = False
    processing_time_ms: int = Field(..., ge=0, description="Processing time in milliseconds")


# ============================================================================
# Service
# ============================================================================

class HealthStatus(str, Enum):
    """System health status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """
    Health check response for monitoring.

    Attributes:
        status: Overall system health status.
        version: Application version.
        environment: Deployment environment.
        checks: Individual component health checks.
    """
    status: HealthStatus = Field(..., description="Overall health status")
    version: str = Field(..., description="Application version")
    environment: str = Field(..., description="Deployment environment")
    timestamp: datetime = Field(default_factory=utcnow, description="Check timestamp")
    checks: dict[str, bool] = Field(default_factory=dict, description="Component health checks")


class ErrorResponse(BaseModel):
    """
    Standardized error response.

    Attributes:
        error: Error type/code.
        message: Human-readable error message.
        details: Additional error details.
        request_id: Request ID for tracing.
    """
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict | None = Field(default=None, description="Additional details")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=utcnow, description="Error timestamp")
