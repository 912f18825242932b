"""
Prompt construction for structured clinical generation.

Each prompt states the task, embeds the typed inputs as JSON and spells out
the exact JSON object the model must return. Output is deterministic for
identical inputs: JSON is serialized with sorted keys and fixed indentation.
"""

import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from oncoassist.models.clinical_models import (
    ArtifactKind,
    DiagnosisRequest,
    PrognosisRequest,
    RadiationPlanRequest,
)


SYSTEM_PROMPT = (
    "You are a clinical decision support model assisting an oncologist. "
    "Answer with a single JSON object that follows the requested structure exactly. "
    "Use the field names given, numbers for numeric fields and floats between 0 and 1 "
    "for probabilities and fractions. Do not add commentary outside the JSON object."
)


DIAGNOSIS_SCHEMA = """{
  "primaryDiagnosis": "string",
  "confidence": float (0-1),
  "details": "string",
  "alternativeDiagnoses": [
    { "diagnosis": "string", "confidence": float (0-1) }
  ]
}"""

PROGNOSIS_SCHEMA = """{
  "survival1yr": float (0-1),
  "survival3yr": float (0-1),
  "survival5yr": float (0-1),
  "treatmentScenarios": [
    {
      "name": "string",
      "description": "string",
      "survivalRate": float (0-1),
      "timeframe": "string" (e.g., "3-year")
    }
  ]
}"""

RADIATION_PLAN_SCHEMA = """{
  "beamAngles": integer,
  "totalDose": float (Gy),
  "fractions": integer,
  "tumorCoverage": float (0-1),
  "healthyTissueSpared": float (0-1),
  "organsAtRisk": [
    { "name": "string", "dose": float (Gy), "limit": float (Gy) }
  ],
  "optimizationMethod": "string"
}"""


@dataclass(frozen=True)
class Prompt:
    """A built prompt: the system instruction plus the task text."""
    kind: ArtifactKind
    system: str
    user: str


def to_prompt_json(value: Any) -> str:
    """Serialize prompt inputs as stable, human-readable JSON."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", exclude_none=True)
    elif isinstance(value, list):
        value = [
            item.model_dump(mode="json", exclude_none=True) if isinstance(item, BaseModel) else item
            for item in value
        ]
    return json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False)


def _section(title: str, value: Any) -> str:
    return f"{title}:\n{to_prompt_json(value)}"


def _compose(task: str, sections: list[str], schema: str) -> str:
    body = "\n\n".join(sections)
    return (
        f"{task}\n\n"
        f"{body}\n\n"
        "Please format your response as a JSON object with the following structure:\n"
        f"{schema}"
    )


def build_diagnosis_prompt(request: DiagnosisRequest) -> Prompt:
    task = (
        "Based on the following patient information and scan data, please provide:\n"
        "1. A potential primary diagnosis with confidence score\n"
        "2. Details explaining the diagnosis\n"
        "3. 2-3 alternative diagnoses with confidence scores"
    )
    user = _compose(
        task,
        [
            _section("Patient information", request.patient),
            _section("Scan results", request.scan),
        ],
        DIAGNOSIS_SCHEMA,
    )
    return Prompt(kind=ArtifactKind.DIAGNOSIS, system=SYSTEM_PROMPT, user=user)


def build_prognosis_prompt(request: PrognosisRequest) -> Prompt:
    task = (
        "Based on the following patient information, diagnosis, and treatment options, "
        "please predict:\n"
        "1. 1-year survival probability\n"
        "2. 3-year survival probability\n"
        "3. 5-year survival probability\n"
        "4. Treatment scenarios with expected outcomes for each option"
    )
    user = _compose(
        task,
        [
            _section("Patient information", request.patient),
            _section("Diagnosis", request.diagnosis),
            _section("Treatment options", request.treatment_options),
        ],
        PROGNOSIS_SCHEMA,
    )
    return Prompt(kind=ArtifactKind.PROGNOSIS, system=SYSTEM_PROMPT, user=user)


def build_radiation_plan_prompt(request: RadiationPlanRequest) -> Prompt:
    task = (
        "Based on the following patient information, tumor data, and organ constraints, "
        "please provide an optimized radiation therapy plan. Keep every organ-at-risk dose "
        "at or below its constraint where clinically achievable."
    )
    user = _compose(
        task,
        [
            _section("Patient information", request.patient),
            _section("Tumor data", request.tumor),
            _section("Organ constraints", request.organ_constraints),
        ],
        RADIATION_PLAN_SCHEMA,
    )
    return Prompt(kind=ArtifactKind.RADIATION_PLAN, system=SYSTEM_PROMPT, user=user)
