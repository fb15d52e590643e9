"""Data models for rule-curation."""

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from .errors import ValidationError

VALID_CATEGORIES = frozenset({
    "performance", "security", "standards", "maintainability",
    "reliability", "compatibility", "data_integrity",
})
VALID_SEVERITIES = ("critical", "high", "medium", "low", "info")
VALID_STATUSES = frozenset({"draft", "active", "deprecated"})


class QualityLevel(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class DuplicateType(str, Enum):
    NONE = "none"
    WARNING = "warning"
    STRUCTURAL = "structural"
    SEMANTIC = "semantic"
    EXACT = "exact"


class ClassificationCategory(str, Enum):
    APPROVED = "approved"
    MANUAL_REVIEW = "manual_review"
    LOW_QUALITY = "low_quality"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


@dataclass(frozen=True)
class RuleExamples:
    """SQL snippets the rule should flag (bad) and leave alone (good)."""

    bad: tuple[str, ...] = ()
    good: tuple[str, ...] = ()


@dataclass(frozen=True)
class RuleRecord:
    """A candidate detection rule awaiting an accept/review/reject decision."""

    id: str
    title: str = ""
    description: str = ""
    category: str = ""
    severity: str = "medium"
    sql_pattern: str = ""
    examples: RuleExamples = field(default_factory=RuleExamples)
    tags: frozenset[str] = frozenset()
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    status: str = "draft"
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuleRecord":
        """Build a rule from a parsed document.

        Accepts both camelCase (``sqlPattern``) and snake_case keys. Every
        defect found is reported at once in a single ValidationError.
        """
        if not isinstance(data, Mapping):
            raise ValidationError([f"Rule must be a mapping, got {type(data).__name__}"])

        errors = []
        rule_id = data.get("id")
        if rule_id is None or str(rule_id).strip() == "":
            errors.append("Rule is missing required field 'id'")

        text_fields = {}
        for name in ("title", "description", "category", "severity", "status"):
            value = data.get(name, "")
            if value is None:
                value = ""
            if not isinstance(value, str):
                errors.append(f"Field {name!r} must be a string, got {type(value).__name__}")
                value = ""
            text_fields[name] = value.strip()

        pattern = _first_present(data, "sqlPattern", "sql_pattern", default="")
        if not isinstance(pattern, str):
            errors.append(f"Field 'sqlPattern' must be a string, got {type(pattern).__name__}")
            pattern = ""

        examples_data = data.get("examples") or {}
        if not isinstance(examples_data, Mapping):
            errors.append("Field 'examples' must be a mapping with 'bad' and 'good' lists")
            examples_data = {}
        examples = RuleExamples(
            bad=_string_tuple(examples_data.get("bad"), "examples.bad", errors),
            good=_string_tuple(examples_data.get("good"), "examples.good", errors),
        )

        tags = frozenset(t.strip().lower() for t in _string_tuple(data.get("tags"), "tags", errors) if t.strip())

        status = text_fields["status"].lower() or "draft"
        if status not in VALID_STATUSES:
            errors.append(f"Field 'status' must be one of {sorted(VALID_STATUSES)}, got {status!r}")

        metadata = data.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            errors.append("Field 'metadata' must be a mapping")
            metadata = {}

        if errors:
            raise ValidationError(errors, rule_id=str(rule_id) if rule_id is not None else None)

        return cls(
            id=str(rule_id),
            title=text_fields["title"],
            description=text_fields["description"],
            category=text_fields["category"].lower(),
            severity=(text_fields["severity"] or "medium").lower(),
            sql_pattern=pattern.strip(),
            examples=examples,
            tags=tags,
            metadata=MappingProxyType(dict(metadata)),
            status=status,
            created_at=_parse_datetime(_first_present(data, "createdAt", "created_at")),
            updated_at=_parse_datetime(_first_present(data, "updatedAt", "updated_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Render the rule as a plain document with camelCase keys."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "severity": self.severity,
            "sqlPattern": self.sql_pattern,
            "examples": {"bad": list(self.examples.bad), "good": list(self.examples.good)},
            "tags": sorted(self.tags),
            "metadata": dict(self.metadata),
            "status": self.status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def content_hash(self) -> str:
        """Hash of the rule's semantic content.

        Identity and lifecycle fields (id, status, timestamps) are left out
        so resubmitting the same rule under a new id hashes identically.
        """
        payload = {
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "severity": self.severity,
            "sqlPattern": self.sql_pattern,
            "examples": {"bad": list(self.examples.bad), "good": list(self.examples.good)},
            "tags": sorted(self.tags),
            "metadata": dict(self.metadata),
        }
        encoded = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()


@dataclass(frozen=True)
class CheckResult:
    """Result of a single quality check that fired against a rule."""

    check_id: str
    dimension: str  # one of DIMENSIONS
    delta: float
    reason: str


@dataclass(frozen=True)
class DimensionScores:
    accuracy: float = 0.0
    practicality: float = 0.0
    completeness: float = 0.0
    generality: float = 0.0
    consistency: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return {
            "accuracy": self.accuracy,
            "practicality": self.practicality,
            "completeness": self.completeness,
            "generality": self.generality,
            "consistency": self.consistency,
        }


DIMENSIONS = ("accuracy", "practicality", "completeness", "generality", "consistency")


@dataclass(frozen=True)
class QualityEvaluation:
    """Multi-dimensional quality score for a single rule."""

    quality_score: float
    quality_level: QualityLevel
    dimension_scores: DimensionScores
    should_keep: bool
    issues: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()
    strengths: tuple[str, ...] = ()
    findings: tuple[CheckResult, ...] = ()


@dataclass(frozen=True)
class RuleMatch:
    """A corpus rule that the candidate resembles."""

    id: str
    similarity: float
    signals: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class DuplicateCheck:
    """Outcome of comparing a rule against the corpus."""

    is_duplicate: bool
    similarity: float
    duplicate_type: DuplicateType
    matched_rules: tuple[RuleMatch, ...] = ()
    confidence: float = 0.0
    explanation: str = ""
    candidates_compared: int = 0
    semantic_provider_used: bool = False


@dataclass(frozen=True)
class Classification:
    """Final bucket decision for a rule."""

    category: ClassificationCategory
    reason: str
    target_path: str
    requires_manual_review: bool = False
    confidence: float = 0.0
    decision_path: tuple[str, ...] = ()


@dataclass(frozen=True)
class EvaluationError:
    """A failure recorded against one rule, tagged with the phase it hit."""

    phase: str  # validation, quality, duplicate, classification or timeout
    error_type: str
    message: str


@dataclass(frozen=True)
class EvaluationResult:
    """Everything the pipeline decided about one rule."""

    rule: RuleRecord | None
    evaluation_id: str
    quality: QualityEvaluation
    duplicate: DuplicateCheck
    classification: Classification
    errors: tuple[EvaluationError, ...] = ()
    processing_time_ms: float = 0.0
    cache_hit: bool = False
    rule_id: str | None = None  # kept even when the input could not be parsed

    @property
    def failed(self) -> bool:
        return bool(self.errors)


@dataclass(frozen=True)
class BatchSummary:
    """Aggregate statistics over one batch of evaluations."""

    total_rules: int
    processed_rules: int
    failed_rules: int
    average_quality_score: float
    min_quality_score: float
    max_quality_score: float
    duplicates_found: int
    processing_time_ms: float
    average_processing_time_ms: float
    cache_hits: int = 0
    timed_out: bool = False
    category_counts: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    quality_level_counts: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class BatchResult:
    success: bool
    summary: BatchSummary
    results: tuple[EvaluationResult, ...]


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted once per finished rule while a batch runs."""

    processed: int
    total: int
    index: int
    rule_id: str | None
    category: ClassificationCategory


def _first_present(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _string_tuple(value: Any, name: str, errors: list[str]) -> tuple[str, ...]:
    """Coerce a list-like of strings into a tuple, recording type defects."""
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, (list, tuple, set, frozenset)):
        errors.append(f"Field {name!r} must be a list of strings")
        return ()
    items = []
    for item in value:
        if not isinstance(item, str):
            errors.append(f"Field {name!r} contains a non-string item: {item!r}")
            continue
        items.append(item)
    return tuple(items)


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None
