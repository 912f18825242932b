"""Tests for the structured extractor's strategy chain and shape validation."""

import pytest

from oncoassist.models.clinical_models import (
    ArtifactKind,
    DiagnosisResult,
    PrognosisResult,
    RadiationPlanResult,
)
from oncoassist.services.errors import ExtractionError, SchemaValidationError, UnusableOutputError
from oncoassist.services.structured_extractor import (
    StructuredExtractor,
    from_brace_object,
    from_json_fence,
    from_plain_fence,
    from_whole_text,
)
from tests.conftest import DIAGNOSIS_JSON, PROGNOSIS_JSON, RADIATION_PLAN_JSON


@pytest.fixture
def extractor():
    return StructuredExtractor()


class TestStrategies:

    def test_json_fence(self):
        assert from_json_fence('Here:\n```json\n{"a": 1}\n```\nDone') == {"a": 1}

    def test_json_fence_ignores_untagged(self):
        assert from_json_fence('```\n{"a": 1}\n```') is None

    def test_plain_fence(self):
        assert from_plain_fence('Result:\n```\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_plain_fence_skips_tagged_fence(self):
        assert from_plain_fence('```python\nprint("x")\n```') is None

    def test_plain_fence_after_tagged_fence(self):
        text = '```json\nnot valid\n```\nCorrected list:\n```\n[1, 2, 3]\n```'
        assert from_plain_fence(text) == [1, 2, 3]

    def test_json_fence_after_other_tagged_fence(self):
        text = '```python\nx = {"a": 1}\n```\nAnswer:\n```json\n{"b": 2}\n```'
        assert from_json_fence(text) == {"b": 2}

    def test_brace_object_nested(self):
        text = 'The answer is {"a": {"b": 2}, "c": 3} as requested.'
        assert from_brace_object(text) == {"a": {"b": 2}, "c": 3}

    def test_brace_object_skips_stray_braces(self):
        text = 'Using {placeholder} notation, result {"ok": true}'
        assert from_brace_object(text) == {"ok": True}

    def test_whole_text(self):
        assert from_whole_text('  {"a": 1}  ') == {"a": 1}

    def test_whole_text_invalid(self):
        assert from_whole_text("not json") is None


class TestExtract:

    def test_fenced_literal_example(self, extractor):
        text = 'Sure! ```json\n{"primaryDiagnosis":"X","confidence":0.8,"alternativeDiagnoses":[]}\n```'
        result = extractor.extract(text, DiagnosisResult)
        assert result.primary_diagnosis == "X"
        assert result.confidence == 0.8
        assert result.alternative_diagnoses == []
        assert result.details is None

    @pytest.mark.parametrize("value", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_confidence_rejected(self, extractor, value):
        text = f'```json\n{{"primaryDiagnosis":"X","confidence":{value},"alternativeDiagnoses":[]}}\n```'
        with pytest.raises(SchemaValidationError) as exc_info:
            extractor.extract(text, DiagnosisResult)
        assert "confidence" in exc_info.value.to_details()["fields"]

    def test_infinite_dose_rejected(self, extractor):
        text = RADIATION_PLAN_JSON.replace('"totalDose": 60.0', '"totalDose": Infinity')
        with pytest.raises(SchemaValidationError):
            extractor.extract(text, RadiationPlanResult)

    @pytest.mark.parametrize("wrap", [
        lambda body: body,
        lambda body: f"```json\n{body}\n```",
        lambda body: f"```\n{body}\n```",
        lambda body: f"Here is the diagnosis you asked for:\n{body}\nLet me know if you need more.",
    ])
    def test_fence_transparency(self, extractor, wrap):
        expected = extractor.extract(DIAGNOSIS_JSON, DiagnosisResult)
        assert extractor.extract(wrap(DIAGNOSIS_JSON), DiagnosisResult) == expected

    def test_json_fence_wins_over_earlier_braces(self, extractor):
        text = 'Note {"draft": true}\n```json\n' + PROGNOSIS_JSON + "\n```"
        result = extractor.extract(text, PrognosisResult)
        assert result.survival_5yr == 0.45
        assert result.treatment_scenarios[0].survival_rate == 0.63

    def test_radiation_plan(self, extractor):
        result = extractor.extract_kind(RADIATION_PLAN_JSON, ArtifactKind.RADIATION_PLAN)
        assert isinstance(result, RadiationPlanResult)
        assert result.beam_angles == 7
        assert result.organs_at_risk[0].limit == 45.0

    def test_no_json_raises_extraction_error(self, extractor):
        text = "I'm sorry, I cannot provide a diagnosis."
        with pytest.raises(ExtractionError) as exc_info:
            extractor.extract(text, DiagnosisResult)
        assert exc_info.value.raw_text == text
        assert exc_info.value.category == "model_output_unusable"
        assert not exc_info.value.retryable

    def test_missing_confidence_raises_schema_error(self, extractor):
        text = '{"primaryDiagnosis": "X", "alternativeDiagnoses": []}'
        with pytest.raises(SchemaValidationError) as exc_info:
            extractor.extract(text, DiagnosisResult)
        assert exc_info.value.parsed == {"primaryDiagnosis": "X", "alternativeDiagnoses": []}
        assert "confidence" in exc_info.value.to_details()["fields"]

    def test_string_number_not_coerced(self, extractor):
        text = '{"primaryDiagnosis": "X", "confidence": "0.9", "alternativeDiagnoses": []}'
        with pytest.raises(SchemaValidationError):
            extractor.extract(text, DiagnosisResult)

    def test_float_beam_angles_rejected(self, extractor):
        text = RADIATION_PLAN_JSON.replace('"beamAngles": 7', '"beamAngles": 7.5')
        with pytest.raises(SchemaValidationError):
            extractor.extract(text, RadiationPlanResult)

    def test_non_object_json_fails_validation(self, extractor):
        with pytest.raises(SchemaValidationError):
            extractor.extract("[1, 2, 3]", DiagnosisResult)

    def test_out_of_range_values_not_clamped(self, extractor):
        text = '{"primaryDiagnosis": "X", "confidence": 1.4, "alternativeDiagnoses": []}'
        assert extractor.extract(text, DiagnosisResult).confidence == 1.4

    def test_snake_case_keys_accepted(self, extractor):
        text = '{"primary_diagnosis": "X", "confidence": 0.5, "alternative_diagnoses": []}'
        assert extractor.extract(text, DiagnosisResult).primary_diagnosis == "X"

    def test_errors_share_unusable_parent(self):
        assert issubclass(ExtractionError, UnusableOutputError)
        assert issubclass(SchemaValidationError, UnusableOutputError)
