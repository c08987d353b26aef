"""
Unit tests for response validation and allow-listed field access.
"""

import copy
import json

import pytest

from ai_automod.core.errors import AIError, AIErrorType
from ai_automod.core.field_access import FieldAccessor
from ai_automod.core.validator import ResponseValidator

from fakes import VALID_FINDINGS


class TestResponseValidator:
    """Test schema validation of provider findings."""

    def setup_method(self):
        self.validator = ResponseValidator()

    def test_valid_payload_returned(self):
        assert self.validator.validate(VALID_FINDINGS) == VALID_FINDINGS

    def test_missing_field(self):
        payload = copy.deepcopy(VALID_FINDINGS)
        del payload["overallRisk"]
        with pytest.raises(AIError) as exc_info:
            self.validator.validate(payload, "claude", "cid-1")
        assert exc_info.value.error_type == AIErrorType.VALIDATION_FAILED
        assert exc_info.value.provider == "claude"
        assert exc_info.value.correlation_id == "cid-1"
        assert "overallRisk" in str(exc_info.value)

    def test_nested_violation_reports_path(self):
        payload = copy.deepcopy(VALID_FINDINGS)
        payload["scammerRisk"]["level"] = "EXTREME"
        with pytest.raises(AIError, match="scammerRisk.level"):
            self.validator.validate(payload)

    def test_confidence_out_of_range(self):
        payload = copy.deepcopy(VALID_FINDINGS)
        payload["datingIntent"]["confidence"] = 150
        with pytest.raises(AIError):
            self.validator.validate(payload)

    def test_validation_error_not_retryable(self):
        with pytest.raises(AIError) as exc_info:
            self.validator.validate({})
        assert exc_info.value.retryable is False

    def test_parse_and_validate(self):
        assert self.validator.parse_and_validate(json.dumps(VALID_FINDINGS)) == VALID_FINDINGS

    def test_parse_strips_code_fences(self):
        raw = "```json\n" + json.dumps(VALID_FINDINGS) + "\n```"
        assert self.validator.parse_and_validate(raw) == VALID_FINDINGS

    def test_parse_empty(self):
        with pytest.raises(AIError, match="empty"):
            self.validator.parse_and_validate("   ")

    def test_parse_invalid_json(self):
        with pytest.raises(AIError) as exc_info:
            self.validator.parse_and_validate("not json at all")
        assert exc_info.value.error_type == AIErrorType.VALIDATION_FAILED

    def test_custom_schema(self):
        validator = ResponseValidator({"type": "object", "required": ["score"]})
        assert validator.validate({"score": 1}) == {"score": 1}
        with pytest.raises(AIError):
            validator.validate({})

    def test_invalid_schema_rejected(self):
        with pytest.raises(ValueError, match="Invalid analysis schema"):
            ResponseValidator({"type": "not-a-type"})


class TestFieldAccessor:
    """Test allow-listed nested field reads."""

    def setup_method(self):
        self.accessor = FieldAccessor()

    def test_nested_read(self):
        assert self.accessor.get(VALID_FINDINGS, "scammerRisk.level") == "LOW"

    def test_top_level_read(self):
        assert self.accessor.get(VALID_FINDINGS, "recommendedAction") == "APPROVE"

    def test_missing_segment_returns_none(self):
        assert self.accessor.get({"scammerRisk": {}}, "scammerRisk.level") is None

    def test_non_mapping_not_traversed(self):
        assert self.accessor.get({"scammerRisk": "HIGH"}, "scammerRisk.level") is None

    def test_path_not_allowed(self):
        with pytest.raises(ValueError, match="not allowed"):
            self.accessor.get(VALID_FINDINGS, "datingIntent.reasoning")

    def test_dunder_paths_rejected_at_construction(self):
        with pytest.raises(ValueError):
            FieldAccessor(allowed_paths={"__class__.__init__"})

    def test_depth_limit(self):
        with pytest.raises(ValueError, match="max depth"):
            FieldAccessor(allowed_paths={"a.b.c"}, max_depth=2)

    def test_empty_segment_rejected(self):
        with pytest.raises(ValueError):
            FieldAccessor(allowed_paths={"a..b"})
