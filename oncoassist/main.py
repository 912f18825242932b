"""
Oncology Assist API

A clinical decision support API for oncologists: AI-generated diagnoses,
survival prognoses and radiation therapy plans, stored as versioned patient
artifacts, plus patient monitoring and a conversational assistant.

This API provides:
- Patient records and per-patient clinical artifacts
- Structured AI generation with layered output recovery
- Monitoring views over biomarkers, tumour size and alerts
- Chat sessions with the oncology assistant
"""

import time
from contextlib import asynccontextmanager
from enum import Enum
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from oncoassist.config.config import Settings, get_settings
from oncoassist.config.logging_config import configure_logging, get_logger, log_request_context
from oncoassist.database.database import close_connection, get_session_factory
from oncoassist.models.clinical_models import (
    AlertRecord,
    ArtifactKind,
    BiomarkerRecord,
    DiagnosisRecord,
    PatientRecord,
    PrognosisRecord,
    RadiationPlanRecord,
    ScanRecord,
)
from oncoassist.models.models import (
    AlertCreate,
    BiomarkerCreate,
    ChatMessageRequest,
    ChatReplyResponse,
    ChatSessionResponse,
    DiagnosisGenerationRequest,
    ErrorResponse,
    HealthResponse,
    HealthStatus,
    MonitoringSummary,
    PatientCreate,
    PatientUpdate,
    PrognosisGenerationRequest,
    RadiationPlanGenerationRequest,
    ScanCreate,
    Timeframe,
)
from oncoassist.services.artifact_store import ClinicalArtifactStore, PatientRecordStore
from oncoassist.services.chat_service import (
    ChatSession,
    ConversationalAssistant,
    get_assistant,
    reset_assistant,
)
from oncoassist.services.errors import (
    DuplicatePatientError,
    InferenceConfigurationError,
    PipelineError,
    SessionBusyError,
    SessionNotFoundError,
)
from oncoassist.services.inference_pipeline import (
    InferencePipeline,
    MissingContextError,
    PatientPipeline,
    get_pipeline,
    reset_pipeline,
)
from oncoassist.services.inference_client import close_inference_client
from oncoassist.services.monitoring import MonitoringService

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


PIPELINE_STATUS_CODES = {
    "model_unreachable": 503,
    "model_output_unusable": 502,
    "unknown_patient": 404,
}


class ArtifactCollection(str, Enum):
    """URL segment for each artifact kind."""
    SCANS = "scans"
    DIAGNOSES = "diagnoses"
    PROGNOSES = "prognoses"
    RADIATION_PLANS = "radiation-plans"
    BIOMARKERS = "biomarkers"
    ALERTS = "alerts"


COLLECTION_KINDS = {
    ArtifactCollection.SCANS: ArtifactKind.SCAN,
    ArtifactCollection.DIAGNOSES: ArtifactKind.DIAGNOSIS,
    ArtifactCollection.PROGNOSES: ArtifactKind.PROGNOSIS,
    ArtifactCollection.RADIATION_PLANS: ArtifactKind.RADIATION_PLAN,
    ArtifactCollection.BIOMARKERS: ArtifactKind.BIOMARKER,
    ArtifactCollection.ALERTS: ArtifactKind.ALERT,
}


# ============================================================================
# Dependencies
# ============================================================================

def get_patient_store(session_factory=Depends(get_session_factory)) -> PatientRecordStore:
    return PatientRecordStore(session_factory)


def get_artifact_store(session_factory=Depends(get_session_factory)) -> ClinicalArtifactStore:
    return ClinicalArtifactStore(session_factory)


def get_monitoring_service(
    artifacts: ClinicalArtifactStore = Depends(get_artifact_store),
) -> MonitoringService:
    return MonitoringService(artifacts)


def get_patient_pipeline(
    pipeline: InferencePipeline = Depends(get_pipeline),
    patients: PatientRecordStore = Depends(get_patient_store),
    artifacts: ClinicalArtifactStore = Depends(get_artifact_store),
) -> PatientPipeline:
    return PatientPipeline(pipeline, patients, artifacts)


def require_patient(patient_id: str, patients: PatientRecordStore) -> None:
    if not patients.exists(patient_id):
        raise HTTPException(status_code=404, detail=f"Patient '{patient_id}' not found")


def session_response(session: ChatSession) -> ChatSessionResponse:
    return ChatSessionResponse(
        session_id=session.session_id,
        state=session.state.value,
        transcript=session.transcript,
    )


# ============================================================================
# Application
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events with proper logging.
    """
    settings = get_settings()

    # Startup
    logger.info(
        "Application starting",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
        config=settings.get_safe_config_dict(),
    )

    yield

    # Shutdown: drop services bound to the client and engine before closing them
    reset_pipeline()
    reset_assistant()
    await close_inference_client()
    close_connection()
    logger.info("Application shutting down")


def _error_response(request: Request, status_code: int, error: str, message: str, details: dict | None = None):
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=message,
            details=details,
            request_id=getattr(request.state, "request_id", None),
        ).model_dump(mode="json"),
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Optional settings override for testing.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=__doc__,
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request logging middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing and context."""
        request_id = str(uuid4())
        request.state.request_id = request_id
        start_time = time.perf_counter()

        # Bind request context for all logs in this request
        log_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)

        processing_time = int((time.perf_counter() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-Ms"] = str(processing_time)

        logger.info(
            "Request completed",
            status_code=response.status_code,
            processing_time_ms=processing_time,
        )

        return response

    # Exception handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions with structured response."""
        return _error_response(request, exc.status_code, f"HTTP_{exc.status_code}", exc.detail)

    @app.exception_handler(PipelineError)
    async def pipeline_exception_handler(request: Request, exc: PipelineError):
        """Map the pipeline error taxonomy onto HTTP status codes."""
        status_code = PIPELINE_STATUS_CODES.get(exc.category, 500)
        logger.warning(
            "Pipeline error",
            error_code=exc.error_code,
            category=exc.category,
            status_code=status_code,
        )
        return _error_response(request, status_code, exc.error_code, exc.message, exc.to_details())

    @app.exception_handler(InferenceConfigurationError)
    async def configuration_exception_handler(request: Request, exc: InferenceConfigurationError):
        logger.error("Inference endpoint not configured", error=str(exc))
        return _error_response(request, 503, "MODEL_NOT_CONFIGURED", str(exc))

    @app.exception_handler(DuplicatePatientError)
    async def duplicate_patient_handler(request: Request, exc: DuplicatePatientError):
        return _error_response(request, 409, "DUPLICATE_PATIENT", str(exc))

    @app.exception_handler(MissingContextError)
    async def missing_context_handler(request: Request, exc: MissingContextError):
        return _error_response(
            request, 404, "MISSING_CONTEXT", str(exc), {"kind": exc.kind.value}
        )

    @app.exception_handler(SessionBusyError)
    async def session_busy_handler(request: Request, exc: SessionBusyError):
        return _error_response(request, 409, "SESSION_BUSY", str(exc))

    @app.exception_handler(SessionNotFoundError)
    async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
        return _error_response(request, 404, "SESSION_NOT_FOUND", str(exc))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.exception("Unhandled exception", error=str(exc))
        return _error_response(request, 500, "INTERNAL_ERROR", "An unexpected error occurred")

    # Register routes
    register_routes(app)

    return app


def register_routes(app: FastAPI) -> None:
    """Register all API routes."""

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        settings = get_settings()
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "docs": "/docs" if settings.debug else "disabled",
        }

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(settings: Settings = Depends(get_settings)) -> HealthResponse:
        """
        Health check endpoint for monitoring.

        The API stays usable for records and monitoring without an inference
        credential, so a missing one only degrades the status.
        """
        checks = {
            "api": True,
            "llm_configured": settings.llm_configured,
        }

        if all(checks.values()):
            status = HealthStatus.HEALTHY
        elif checks["api"]:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.UNHEALTHY

        return HealthResponse(
            status=status,
            version=settings.app_version,
            environment=settings.environment,
            checks=checks,
        )

    # ------------------------------------------------------------------
    # Patients
    # ------------------------------------------------------------------

    @app.get("/api/v1/patients", response_model=list[PatientRecord], tags=["Patients"])
    def list_patients(
        skip: int = Query(default=0, ge=0),
        limit: int = Query(default=100, ge=1, le=500),
        patients: PatientRecordStore = Depends(get_patient_store),
    ):
        return patients.list_patients(skip=skip, limit=limit)

    @app.post("/api/v1/patients", response_model=PatientRecord, status_code=201, tags=["Patients"])
    def create_patient(
        data: PatientCreate,
        patients: PatientRecordStore = Depends(get_patient_store),
    ):
        return patients.create_patient(data)

    @app.get("/api/v1/patients/{patient_id}", response_model=PatientRecord, tags=["Patients"])
    def get_patient(patient_id: str, patients: PatientRecordStore = Depends(get_patient_store)):
        record = patients.get_patient(patient_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Patient '{patient_id}' not found")
        return record

    @app.put("/api/v1/patients/{patient_id}", response_model=PatientRecord, tags=["Patients"])
    def update_patient(
        patient_id: str,
        changes: PatientUpdate,
        patients: PatientRecordStore = Depends(get_patient_store),
    ):
        record = patients.update_patient(patient_id, changes)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Patient '{patient_id}' not found")
        return record

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    @app.post(
        "/api/v1/patients/{patient_id}/scans",
        response_model=ScanRecord,
        status_code=201,
        tags=["Artifacts"],
    )
    def add_scan(
        patient_id: str,
        data: ScanCreate,
        artifacts: ClinicalArtifactStore = Depends(get_artifact_store),
    ):
        return artifacts.add_scan(patient_id, data)

    @app.post(
        "/api/v1/patients/{patient_id}/biomarkers",
        response_model=BiomarkerRecord,
        status_code=201,
        tags=["Artifacts"],
    )
    def add_biomarker(
        patient_id: str,
        data: BiomarkerCreate,
        artifacts: ClinicalArtifactStore = Depends(get_artifact_store),
    ):
        return artifacts.add_biomarker(patient_id, data)

    @app.post(
        "/api/v1/patients/{patient_id}/alerts",
        response_model=AlertRecord,
        status_code=201,
        tags=["Artifacts"],
    )
    def add_alert(
        patient_id: str,
        data: AlertCreate,
        artifacts: ClinicalArtifactStore = Depends(get_artifact_store),
    ):
        return artifacts.add_alert(patient_id, data)

    @app.get("/api/v1/patients/{patient_id}/monitoring", response_model=MonitoringSummary, tags=["Monitoring"])
    def get_monitoring(
        patient_id: str,
        timeframe: Timeframe = Query(default=Timeframe.ALL_TIME),
        patients: PatientRecordStore = Depends(get_patient_store),
        monitoring: MonitoringService = Depends(get_monitoring_service),
    ):
        require_patient(patient_id, patients)
        return monitoring.summary(patient_id, timeframe)

    @app.get("/api/v1/patients/{patient_id}/{collection}", tags=["Artifacts"])
    def list_artifacts(
        patient_id: str,
        collection: ArtifactCollection,
        patients: PatientRecordStore = Depends(get_patient_store),
        artifacts: ClinicalArtifactStore = Depends(get_artifact_store),
    ):
        """All artifacts of one kind for a patient, oldest first."""
        require_patient(patient_id, patients)
        return artifacts.list_artifacts(patient_id, COLLECTION_KINDS[collection])

    @app.get("/api/v1/patients/{patient_id}/{collection}/current", tags=["Artifacts"])
    def get_current_artifact(
        patient_id: str,
        collection: ArtifactCollection,
        artifact_id: int | None = Query(default=None),
        patients: PatientRecordStore = Depends(get_patient_store),
        artifacts: ClinicalArtifactStore = Depends(get_artifact_store),
    ):
        """The latest artifact of one kind, or exactly ``artifact_id`` when given."""
        require_patient(patient_id, patients)
        record = artifacts.current(patient_id, COLLECTION_KINDS[collection], artifact_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"No {collection.value} found")
        return record

    @app.patch("/api/v1/alerts/{alert_id}/acknowledge", response_model=AlertRecord, tags=["Artifacts"])
    def acknowledge_alert(
        alert_id: int,
        artifacts: ClinicalArtifactStore = Depends(get_artifact_store),
    ):
        record = artifacts.acknowledge_alert(alert_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
        return record

    # ------------------------------------------------------------------
    # AI generation
    # ------------------------------------------------------------------

    @app.post("/api/v1/ai/diagnosis", response_model=DiagnosisRecord, status_code=201, tags=["AI"])
    async def generate_diagnosis(
        request: DiagnosisGenerationRequest,
        pipeline: PatientPipeline = Depends(get_patient_pipeline),
    ):
        """Generate a diagnosis from the patient's current (or chosen) scan."""
        logger.info("Diagnosis requested", patient_id=request.patient_id, scan_id=request.scan_id)
        return await pipeline.diagnose(request.patient_id, request.scan_id)

    @app.post("/api/v1/ai/prognosis", response_model=PrognosisRecord, status_code=201, tags=["AI"])
    async def generate_prognosis(
        request: PrognosisGenerationRequest,
        pipeline: PatientPipeline = Depends(get_patient_pipeline),
    ):
        """Generate a survival prognosis with treatment scenarios."""
        logger.info(
            "Prognosis requested",
            patient_id=request.patient_id,
            diagnosis_id=request.diagnosis_id,
            treatment_options=len(request.treatment_options),
        )
        return await pipeline.prognose(
            request.patient_id,
            request.treatment_options,
            request.diagnosis_id,
        )

    @app.post("/api/v1/ai/radiation-plan", response_model=RadiationPlanRecord, status_code=201, tags=["AI"])
    async def generate_radiation_plan(
        request: RadiationPlanGenerationRequest,
        pipeline: PatientPipeline = Depends(get_patient_pipeline),
    ):
        """Generate an optimized radiation therapy plan."""
        logger.info(
            "Radiation plan requested",
            patient_id=request.patient_id,
            organ_constraints=len(request.organ_constraints),
        )
        return await pipeline.plan_radiation(
            request.patient_id,
            request.tumor,
            request.organ_constraints,
        )

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    @app.post("/api/v1/chat/sessions", response_model=ChatSessionResponse, status_code=201, tags=["Chat"])
    async def create_chat_session(
        assistant: ConversationalAssistant = Depends(get_assistant),
    ) -> ChatSessionResponse:
        return session_response(assistant.create_session())

    @app.get("/api/v1/chat/sessions/{session_id}", response_model=ChatSessionResponse, tags=["Chat"])
    async def get_chat_session(
        session_id: str,
        assistant: ConversationalAssistant = Depends(get_assistant),
    ) -> ChatSessionResponse:
        return session_response(assistant.get_session(session_id))

    @app.delete("/api/v1/chat/sessions/{session_id}", status_code=204, tags=["Chat"])
    async def close_chat_session(
        session_id: str,
        assistant: ConversationalAssistant = Depends(get_assistant),
    ) -> Response:
        """Discard a chat session and its transcript."""
        assistant.close_session(session_id)
        return Response(status_code=204)

    @app.post("/api/v1/chat/sessions/{session_id}/messages", response_model=ChatReplyResponse, tags=["Chat"])
    async def send_chat_message(
        session_id: str,
        request: ChatMessageRequest,
        assistant: ConversationalAssistant = Depends(get_assistant),
    ) -> ChatReplyResponse:
        """
        Send a message to the oncology assistant.

        The session's prior transcript is sent as context. A second message
        while a reply is pending is rejected with 409.
        """
        start_time = time.perf_counter()
        session = assistant.get_session(session_id)
        reply = await assistant.send_chat_turn(session, request.message)
        return ChatReplyResponse(
            session_id=session_id,
            text=reply,
            processing_time_ms=int((time.perf_counter() - start_time) * 1000),
        )


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "oncoassist.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
