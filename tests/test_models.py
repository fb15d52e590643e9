"""Tests for data models."""

import dataclasses
from datetime import datetime

import pytest

from rule_curation.errors import ValidationError
from rule_curation.models import (
    CheckResult,
    ClassificationCategory,
    DimensionScores,
    DuplicateCheck,
    DuplicateType,
    EvaluationError,
    EvaluationResult,
    QualityEvaluation,
    QualityLevel,
    RuleExamples,
    RuleRecord,
)
from rule_curation.classifier import rejected_classification


class TestRuleRecordFromDict:
    def test_camel_case_keys(self, strong_rule_data):
        rule = RuleRecord.from_dict(strong_rule_data)
        assert rule.id == "perf-select-star"
        assert rule.sql_pattern == r"SELECT\s+\*\s+FROM\s+\w+"
        assert rule.examples.bad == ("SELECT * FROM orders WHERE status = 'open'",)
        assert rule.tags == frozenset({"performance", "select", "columns"})
        assert rule.metadata["remediation"] == "Name the required columns explicitly."

    def test_snake_case_keys(self):
        rule = RuleRecord.from_dict({
            "id": "r1",
            "sql_pattern": "DELETE\\s+FROM",
            "created_at": "2024-05-01T10:00:00",
        })
        assert rule.sql_pattern == "DELETE\\s+FROM"
        assert rule.created_at == datetime(2024, 5, 1, 10, 0, 0)

    def test_defaults(self):
        rule = RuleRecord.from_dict({"id": 7})
        assert rule.id == "7"
        assert rule.severity == "medium"
        assert rule.status == "draft"
        assert rule.examples == RuleExamples()
        assert rule.tags == frozenset()

    def test_normalizes_case(self):
        rule = RuleRecord.from_dict({"id": "r1", "category": "Security", "severity": "HIGH", "tags": [" SQL ", "Injection"]})
        assert rule.category == "security"
        assert rule.severity == "high"
        assert rule.tags == frozenset({"sql", "injection"})

    def test_collects_every_error(self):
        with pytest.raises(ValidationError) as exc_info:
            RuleRecord.from_dict({"title": 5, "examples": "SELECT 1", "metadata": ["x"]})
        errors = exc_info.value.errors
        assert any("'id'" in e for e in errors)
        assert any("'title'" in e for e in errors)
        assert any("'examples'" in e for e in errors)
        assert any("'metadata'" in e for e in errors)

    def test_error_carries_rule_id(self):
        with pytest.raises(ValidationError) as exc_info:
            RuleRecord.from_dict({"id": "bad-1", "tags": [1, 2]})
        assert exc_info.value.rule_id == "bad-1"
        assert "rule_id=bad-1" in str(exc_info.value)

    def test_unknown_status(self):
        with pytest.raises(ValidationError, match="'status'"):
            RuleRecord.from_dict({"id": "r1", "status": "retired"})

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError, match="must be a mapping"):
            RuleRecord.from_dict(["id", "r1"])


class TestRuleRecord:
    def test_frozen(self, strong_rule):
        with pytest.raises(dataclasses.FrozenInstanceError):
            strong_rule.title = "changed"

    def test_metadata_is_read_only(self, strong_rule):
        with pytest.raises(TypeError):
            strong_rule.metadata["remediation"] = "changed"

    def test_to_dict_uses_camel_case(self, strong_rule):
        data = strong_rule.to_dict()
        assert data["sqlPattern"] == strong_rule.sql_pattern
        assert data["tags"] == ["columns", "performance", "select"]
        assert RuleRecord.from_dict(data) == strong_rule

    def test_content_hash_ignores_identity(self, strong_rule):
        copy = dataclasses.replace(strong_rule, id="other-id", status="active")
        assert copy.content_hash() == strong_rule.content_hash()

    def test_content_hash_tracks_content(self, strong_rule):
        changed = dataclasses.replace(strong_rule, severity="high")
        assert changed.content_hash() != strong_rule.content_hash()


class TestEvaluationResult:
    def _result(self, errors=()):
        return EvaluationResult(
            rule=None,
            evaluation_id="e1",
            quality=QualityEvaluation(0.0, QualityLevel.POOR, DimensionScores(), False),
            duplicate=DuplicateCheck(False, 0.0, DuplicateType.NONE),
            classification=rejected_classification("no rule"),
            errors=errors,
        )

    def test_failed_when_errors_present(self):
        result = self._result((EvaluationError("validation", "ValidationError", "bad"),))
        assert result.failed
        assert result.classification.category is ClassificationCategory.REJECTED

    def test_not_failed_without_errors(self):
        assert not self._result().failed


class TestCheckResult:
    def test_creation(self):
        cr = CheckResult("has_tags", "completeness", 5, "Rule is tagged")
        assert cr.check_id == "has_tags"
        assert cr.dimension == "completeness"
        assert cr.delta == 5

    def test_dimension_scores_as_dict(self):
        scores = DimensionScores(accuracy=80, practicality=70, completeness=60, generality=50, consistency=40)
        assert scores.as_dict() == {
            "accuracy": 80,
            "practicality": 70,
            "completeness": 60,
            "generality": 50,
            "consistency": 40,
        }
