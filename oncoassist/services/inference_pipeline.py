"""
AI-assisted structured inference pipeline.

One run is four strictly sequential stages:

    Prompt Builder -> Inference Client -> Structured Extractor -> Artifact Writer

The pipeline never retries. Any stage error propagates to the caller
unchanged, and because the write is the last stage a failed run leaves the
artifact store untouched. Runs share no mutable state, so runs for different
patients or kinds can be awaited concurrently.
"""

import time

from oncoassist.config.config import get_settings
from oncoassist.config.logging_config import get_logger
from oncoassist.database.database import get_session_factory
from oncoassist.models.clinical_models import (
    ArtifactKind,
    DiagnosisContext,
    DiagnosisRecord,
    DiagnosisRequest,
    DiagnosisResult,
    OrganConstraint,
    PatientContext,
    PrognosisRecord,
    PrognosisRequest,
    PrognosisResult,
    RadiationPlanRecord,
    RadiationPlanRequest,
    RadiationPlanResult,
    ScanContext,
    TreatmentOption,
    TumorContext,
)
from oncoassist.services.artifact_store import ClinicalArtifactStore, PatientRecordStore
from oncoassist.services.artifact_writer import ArtifactWriter
from oncoassist.services.errors import PatientReferenceError, PipelineError
from oncoassist.services.inference_client import InferenceClient, get_inference_client
from oncoassist.services.prompt_builder import (
    Prompt,
    build_diagnosis_prompt,
    build_prognosis_prompt,
    build_radiation_plan_prompt,
)
from oncoassist.services.structured_extractor import StructuredExtractor

logger = get_logger(__name__)


class MissingContextError(LookupError):
    """Raised when a stored artifact needed to build a prompt does not exist."""

    def __init__(self, patient_id: str, kind: ArtifactKind):
        super().__init__(f"Patient '{patient_id}' has no {kind.value.replace('_', ' ')} on record")
        self.patient_id = patient_id
        self.kind = kind


class InferencePipeline:
    """
    Runs prompt, call, extraction and persistence for one result kind.

    Attributes:
        client: Inference client used for generation calls.
        writer: Artifact writer for validated results.
        extractor: Structured extractor for model text.
    """

    def __init__(
        self,
        client: InferenceClient,
        writer: ArtifactWriter,
        extractor: StructuredExtractor | None = None,
        timeout: float | None = None,
    ):
        self.client = client
        self.writer = writer
        self.extractor = extractor or StructuredExtractor()
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def generate_diagnosis(self, patient: PatientContext, scan: ScanContext) -> DiagnosisRecord:
        """Generate and store a diagnosis from patient attributes and scan findings."""
        request = DiagnosisRequest(patient=patient, scan=scan)
        return await self.run_diagnosis(request)

    async def generate_prognosis(
        self,
        patient: PatientContext,
        diagnosis: DiagnosisContext,
        treatment_options: list[TreatmentOption],
    ) -> PrognosisRecord:
        """Generate and store a survival prognosis with treatment scenarios."""
        request = PrognosisRequest(
            patient=patient,
            diagnosis=diagnosis,
            treatment_options=treatment_options,
        )
        return await self.run_prognosis(request)

    async def generate_radiation_plan(
        self,
        patient: PatientContext,
        tumor: TumorContext,
        organ_constraints: list[OrganConstraint],
    ) -> RadiationPlanRecord:
        """Generate and store a radiation therapy plan."""
        request = RadiationPlanRequest(
            patient=patient,
            tumor=tumor,
            organ_constraints=organ_constraints,
        )
        return await self.run_radiation_plan(request)

    async def run_diagnosis(self, request: DiagnosisRequest) -> DiagnosisRecord:
        return await self._run(
            request.patient.patient_id,
            build_diagnosis_prompt(request),
            DiagnosisResult,
        )

    async def run_prognosis(self, request: PrognosisRequest) -> PrognosisRecord:
        return await self._run(
            request.patient.patient_id,
            build_prognosis_prompt(request),
            PrognosisResult,
        )

    async def run_radiation_plan(self, request: RadiationPlanRequest) -> RadiationPlanRecord:
        return await self._run(
            request.patient.patient_id,
            build_radiation_plan_prompt(request),
            RadiationPlanResult,
        )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    async def _run(self, patient_id: str, prompt: Prompt, shape: type):
        start_time = time.perf_counter()
        logger.info(
            "Pipeline run started",
            kind=prompt.kind.value,
            patient_id=patient_id,
            prompt_length=len(prompt.user),
        )

        try:
            text = await self.client.generate(prompt.user, system=prompt.system, timeout=self.timeout)
            result = self.extractor.extract(text, shape)
            record = self.writer.write(patient_id, result, prompt.kind)
        except PipelineError as e:
            logger.warning(
                "Pipeline run failed",
                kind=prompt.kind.value,
                patient_id=patient_id,
                error_code=e.error_code,
                category=e.category,
            )
            raise

        logger.info(
            "Pipeline run completed",
            kind=prompt.kind.value,
            patient_id=patient_id,
            artifact_id=record.id,
            processing_time_ms=int((time.perf_counter() - start_time) * 1000),
        )
        return record


class PatientPipeline:
    """
    Builds pipeline inputs from stored records.

    Used by the HTTP layer: the latest scan or diagnosis on record (or an
    explicitly chosen one) becomes the context for the next generation.
    """

    def __init__(
        self,
        pipeline: InferencePipeline,
        patients: PatientRecordStore,
        artifacts: ClinicalArtifactStore,
    ):
        self.pipeline = pipeline
        self.patients = patients
        self.artifacts = artifacts

    def patient_context(self, patient_id: str) -> PatientContext:
        record = self.patients.get_patient(patient_id)
        if record is None:
            raise PatientReferenceError(patient_id)
        return PatientContext.from_record(record)

    def _current(self, patient_id: str, kind: ArtifactKind, artifact_id: int | None):
        record = self.artifacts.current(patient_id, kind, artifact_id)
        if record is None:
            raise MissingContextError(patient_id, kind)
        return record

    async def diagnose(self, patient_id: str, scan_id: int | None = None) -> DiagnosisRecord:
        """Diagnose from the patient's current (or chosen) scan."""
        patient = self.patient_context(patient_id)
        scan = self._current(patient_id, ArtifactKind.SCAN, scan_id)
        return await self.pipeline.generate_diagnosis(patient, ScanContext.from_record(scan))

    async def prognose(
        self,
        patient_id: str,
        treatment_options: list[TreatmentOption],
        diagnosis_id: int | None = None,
    ) -> PrognosisRecord:
        """Prognose from the patient's current (or chosen) diagnosis."""
        patient = self.patient_context(patient_id)
        diagnosis = self._current(patient_id, ArtifactKind.DIAGNOSIS, diagnosis_id)
        return await self.pipeline.generate_prognosis(
            patient,
            DiagnosisContext.from_record(diagnosis),
            treatment_options,
        )

    async def plan_radiation(
        self,
        patient_id: str,
        tumor: TumorContext | None,
        organ_constraints: list[OrganConstraint],
    ) -> RadiationPlanRecord:
        """
        Plan radiation for a patient.

        Without explicit tumour data the current scan's findings are used.
        """
        patient = self.patient_context(patient_id)
        if tumor is None:
            scan = self._current(patient_id, ArtifactKind.SCAN, None)
            tumor = TumorContext(
                tumor_type=patient.cancer_type,
                location=scan.tumor_location,
                size=scan.tumor_size,
                malignancy_score=scan.malignancy_score,
                notes=scan.notes,
            )
        return await self.pipeline.generate_radiation_plan(patient, tumor, organ_constraints)


# Singleton instance
_pipeline_instance: InferencePipeline | None = None


def get_pipeline() -> InferencePipeline:
    """
    Get the singleton pipeline over the configured client and database.

    Raises:
        InferenceConfigurationError: If the inference endpoint is not configured.
    """
    global _pipeline_instance
    if _pipeline_instance is None:
        settings = get_settings()
        _pipeline_instance = InferencePipeline(
            client=get_inference_client(),
            writer=ArtifactWriter(ClinicalArtifactStore(get_session_factory())),
            timeout=settings.llm_timeout_seconds,
        )
    return _pipeline_instance


def reset_pipeline() -> None:
    """Drop the singleton so the next use binds to the current client and database."""
    global _pipeline_instance
    _pipeline_instance = None
