"""
Recover structured results from free-text model output.

Models wrap JSON in prose, markdown fences or nothing at all. Extraction runs
an ordered chain of strategies, each a pure ``text -> object | None``
function, and keeps the first one that yields parseable JSON:

1. a fenced block tagged ``json``
2. a fenced block with no language tag
3. the first ``{...}`` substring that decodes as a JSON object
4. the whole text

The recovered value is then validated structurally against the requested
result shape. Values are never coerced or clamped here.
"""

import json
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from oncoassist.config.logging_config import get_logger
from oncoassist.models.clinical_models import (
    ArtifactKind,
    DiagnosisResult,
    PrognosisResult,
    RadiationPlanResult,
)
from oncoassist.services.errors import ExtractionError, SchemaValidationError

logger = get_logger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)

_MISSING = object()

# Opening fence, optional language tag, body, closing fence. Matches are
# consumed pairwise so a closing fence never opens the next block.
FENCED_BLOCK = re.compile(r"```[ \t]*([A-Za-z][\w+.-]*)?[ \t]*\r?\n?(.*?)```", re.DOTALL)

RESULT_SHAPES: dict[ArtifactKind, type[BaseModel]] = {
    ArtifactKind.DIAGNOSIS: DiagnosisResult,
    ArtifactKind.PROGNOSIS: PrognosisResult,
    ArtifactKind.RADIATION_PLAN: RadiationPlanResult,
}


def _loads(candidate: str) -> Any:
    """Parse JSON, returning the sentinel on a syntax error."""
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        return _MISSING


def _first_parseable_block(text: str, tag: str) -> Any:
    """First fenced block with the given tag ("" for untagged) that parses."""
    for match in FENCED_BLOCK.finditer(text):
        if (match.group(1) or "").lower() != tag:
            continue
        value = _loads(match.group(2).strip())
        if value is not _MISSING:
            return value
    return _MISSING


# ============================================================================
# Strategies
# ============================================================================

def from_json_fence(text: str) -> Any | None:
    """Parse the first ```json fenced block that holds valid JSON."""
    value = _first_parseable_block(text, "json")
    return None if value is _MISSING else value


def from_plain_fence(text: str) -> Any | None:
    """Parse the first untagged ``` fenced block that holds valid JSON."""
    value = _first_parseable_block(text, "")
    return None if value is _MISSING else value


def from_brace_object(text: str) -> Any | None:
    """
    Decode the first JSON object embedded anywhere in the text.

    Scans each opening brace in turn and decodes from there, so nested
    objects are handled and stray braces in prose are skipped.
    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            value, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


def from_whole_text(text: str) -> Any | None:
    """Parse the entire text as JSON."""
    value = _loads(text.strip())
    return None if value is _MISSING else value


@dataclass(frozen=True)
class ExtractionStrategy:
    """A named extraction step."""
    name: str
    extract: Callable[[str], Any | None]


DEFAULT_STRATEGIES: tuple[ExtractionStrategy, ...] = (
    ExtractionStrategy("json_fence", from_json_fence),
    ExtractionStrategy("plain_fence", from_plain_fence),
    ExtractionStrategy("brace_object", from_brace_object),
    ExtractionStrategy("whole_text", from_whole_text),
)


# ============================================================================
# Extractor
# ============================================================================

class StructuredExtractor:
    """
    Runs the strategy chain and validates the result shape.

    Strategies are tried in order; the first non-None result wins.
    """

    def __init__(self, strategies: tuple[ExtractionStrategy, ...] = DEFAULT_STRATEGIES):
        self.strategies = strategies

    def extract_json(self, text: str) -> Any:
        """
        Recover the first JSON value from model text.

        Raises:
            ExtractionError: If no strategy finds parseable JSON.
        """
        for strategy in self.strategies:
            value = strategy.extract(text)
            if value is not None:
                logger.debug("JSON recovered", strategy=strategy.name)
                return value

        logger.warning(
            "No JSON found in model output",
            response_length=len(text),
            raw_text=text[:500],
        )
        raise ExtractionError("No parseable JSON found in model output", raw_text=text)

    def validate(self, value: Any, shape: type[ResultT]) -> ResultT:
        """
        Check a parsed value against a result shape.

        Raises:
            SchemaValidationError: If required fields are missing or mistyped.
        """
        if not isinstance(value, dict):
            raise SchemaValidationError(
                f"Expected a JSON object for {shape.__name__}, got {type(value).__name__}",
                parsed=value,
            )
        try:
            return shape.model_validate(value)
        except ValidationError as exc:
            errors = exc.errors(include_url=False, include_input=False)
            logger.warning(
                "Model output failed schema validation",
                shape=shape.__name__,
                error_count=len(errors),
                fields=[".".join(str(p) for p in e["loc"]) for e in errors],
            )
            raise SchemaValidationError(
                f"Model output does not match {shape.__name__}",
                parsed=value,
                errors=errors,
            ) from exc

    def extract(self, text: str, shape: type[ResultT]) -> ResultT:
        """Recover JSON from text and validate it as ``shape``."""
        return self.validate(self.extract_json(text), shape)

    def extract_kind(self, text: str, kind: ArtifactKind) -> BaseModel:
        """Extract the result shape registered for an artifact kind."""
        try:
            shape = RESULT_SHAPES[kind]
        except KeyError as exc:
            raise ValueError(f"No result shape for artifact kind '{kind.value}'") from exc
        return self.extract(text, shape)
