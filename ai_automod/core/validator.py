"""
Response validation.

Structurally validates a provider's answer against a caller-supplied JSON
schema. Validation failures are terminal for the provider attempt and are
never retried.
"""

import json
from typing import Any, Dict, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from .errors import AIError, AIErrorType

_RISK_LEVELS = ["NONE", "LOW", "MEDIUM", "HIGH"]
_CONFIDENCE = {"type": "number", "minimum": 0, "maximum": 100}

DEFAULT_ANALYSIS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "datingIntent": {
            "type": "object",
            "properties": {
                "detected": {"type": "boolean"},
                "confidence": _CONFIDENCE,
                "reasoning": {"type": "string"},
            },
            "required": ["detected", "confidence", "reasoning"],
        },
        "scammerRisk": {
            "type": "object",
            "properties": {
                "level": {"type": "string", "enum": _RISK_LEVELS},
                "confidence": _CONFIDENCE,
                "patterns": {"type": "array", "items": {"type": "string"}},
                "reasoning": {"type": "string"},
            },
            "required": ["level", "confidence", "patterns", "reasoning"],
        },
        "spamIndicators": {
            "type": "object",
            "properties": {
                "detected": {"type": "boolean"},
                "confidence": _CONFIDENCE,
                "patterns": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["detected", "confidence", "patterns"],
        },
        "overallRisk": {"type": "string", "enum": ["LOW", "MEDIUM", "HIGH", "CRITICAL"]},
        "recommendedAction": {"type": "string", "enum": ["APPROVE", "FLAG", "REMOVE"]},
    },
    "required": [
        "datingIntent",
        "scammerRisk",
        "spamIndicators",
        "overallRisk",
        "recommendedAction",
    ],
}


def _strip_code_fences(payload: str) -> str:
    """Drop Markdown code fences so JSON can be parsed normally."""
    if "```" not in payload:
        return payload
    return "\n".join(ln for ln in payload.splitlines() if not ln.strip().startswith("```"))


class ResponseValidator:
    """Validate provider findings against a JSON schema.

    Args:
        schema: JSON schema (Draft 7) the findings must satisfy

    Raises:
        ValueError: If the schema itself is invalid
    """

    def __init__(self, schema: Optional[Dict[str, Any]] = None):
        self.schema = schema if schema is not None else DEFAULT_ANALYSIS_SCHEMA
        try:
            Draft7Validator.check_schema(self.schema)
        except SchemaError as e:
            raise ValueError(f"Invalid analysis schema: {e.message}") from e
        self._validator = Draft7Validator(self.schema)

    def validate(
        self,
        payload: Any,
        provider: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return ``payload`` unchanged if it satisfies the schema.

        Raises:
            AIError: VALIDATION_FAILED listing every violation with its path
        """
        errors = sorted(self._validator.iter_errors(payload), key=lambda e: list(e.path))
        if errors:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err.path) or '<root>'}: {err.message}"
                for err in errors
            )
            raise AIError(
                AIErrorType.VALIDATION_FAILED,
                f"Response failed schema validation: {details}",
                provider,
                correlation_id,
            )
        return payload

    def parse_and_validate(
        self,
        raw: str,
        provider: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Parse raw provider text as JSON and validate it.

        Raises:
            AIError: VALIDATION_FAILED if the text is empty, not JSON, or
                violates the schema
        """
        cleaned = _strip_code_fences((raw or "").strip())
        if not cleaned:
            raise AIError(
                AIErrorType.VALIDATION_FAILED, "Response is empty", provider, correlation_id
            )
        try:
            payload = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise AIError(
                AIErrorType.VALIDATION_FAILED,
                f"Response is not valid JSON: {e.msg}",
                provider,
                correlation_id,
            ) from e
        return self.validate(payload, provider, correlation_id)
