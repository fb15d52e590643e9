"""YAML evaluation config loading and validation."""

import dataclasses
import importlib.resources
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

WEIGHT_TOLERANCE = 0.01
# Float slack so a group summing to exactly 1.0 ± tolerance is accepted
_FLOAT_EPSILON = 1e-9


@dataclass(frozen=True)
class DuplicateThresholds:
    """Combined-similarity cut-offs, from most to least severe."""

    exact: float = 0.95
    semantic: float = 0.85
    structural: float = 0.75
    warning: float = 0.60


@dataclass(frozen=True)
class DuplicateWeights:
    exact: float = 0.40
    semantic: float = 0.35
    structural: float = 0.15
    content: float = 0.10


@dataclass(frozen=True)
class DuplicateDetectionConfig:
    enabled: bool = True
    thresholds: DuplicateThresholds = field(default_factory=DuplicateThresholds)
    weights: DuplicateWeights = field(default_factory=DuplicateWeights)
    semantic_provider: str | None = None  # dotted path, "module:callable"


@dataclass(frozen=True)
class DimensionWeights:
    accuracy: float = 0.25
    practicality: float = 0.25
    completeness: float = 0.20
    generality: float = 0.15
    consistency: float = 0.15


@dataclass(frozen=True)
class QualityThresholds:
    """Quality-level cut-offs on the 0-100 scale; ``minimum`` decides should_keep."""

    excellent: float = 90.0
    good: float = 75.0
    fair: float = 60.0
    minimum: float = 40.0


@dataclass(frozen=True)
class QualityAssessmentConfig:
    enabled: bool = True
    dimension_weights: DimensionWeights = field(default_factory=DimensionWeights)
    thresholds: QualityThresholds = field(default_factory=QualityThresholds)
    plugins: tuple[str, ...] = ()


@dataclass(frozen=True)
class ClassificationThresholds:
    min_quality_score: float = 60.0
    approval_score: float = 75.0
    borderline_margin: float = 5.0
    min_confidence: float = 0.5


@dataclass(frozen=True)
class ManualReviewTriggers:
    low_confidence: bool = True
    borderline_scores: bool = True
    conflicting_results: bool = True


@dataclass(frozen=True)
class ClassificationConfig:
    thresholds: ClassificationThresholds = field(default_factory=ClassificationThresholds)
    manual_review_triggers: ManualReviewTriggers = field(default_factory=ManualReviewTriggers)


@dataclass(frozen=True)
class Timeouts:
    """Per-phase budgets in milliseconds."""

    duplicate_detection: int = 30000
    quality_evaluation: int = 60000
    classification: int = 10000
    total: int = 120000


@dataclass(frozen=True)
class PerformanceConfig:
    batch_size: int = 10
    max_batch_size: int = 1000
    concurrency: int = 3
    cache_ttl: int = 3600  # seconds
    cache_max_entries: int = 2048
    timeouts: Timeouts = field(default_factory=Timeouts)


@dataclass(frozen=True)
class EvaluationConfig:
    """Complete evaluation configuration. Replaced wholesale, never mutated."""

    duplicate_detection: DuplicateDetectionConfig = field(default_factory=DuplicateDetectionConfig)
    quality_assessment: QualityAssessmentConfig = field(default_factory=QualityAssessmentConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    version: int = 1


def load_config(path: str | Path) -> EvaluationConfig:
    """Load and validate an evaluation config from a YAML file."""
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return config_from_dict(data or {})


def load_default_config() -> EvaluationConfig:
    """Load the bundled default evaluation config."""
    pkg = importlib.resources.files("rule_curation") / "profiles" / "default.yaml"
    text = pkg.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return config_from_dict(data or {})


def config_from_dict(data: dict) -> EvaluationConfig:
    """Build a validated config from a parsed document, starting from defaults."""
    config = apply_overrides(EvaluationConfig(), data)
    require_valid(config)
    return config


def apply_overrides(base: EvaluationConfig, overrides: dict) -> EvaluationConfig:
    """Return a copy of ``base`` with explicit field overrides applied.

    ``overrides`` mirrors the config layout (section -> group -> field); keys
    may be camelCase or snake_case. Unknown keys and wrongly typed values are
    all reported together in one ConfigError. The result is not validated.
    """
    if not isinstance(overrides, dict):
        raise ConfigError([f"Config overrides must be a mapping, got {type(overrides).__name__}"])
    errors: list[str] = []
    result = _override_dataclass(base, overrides, "", errors)
    if errors:
        raise ConfigError(errors)
    return result


def require_valid(config: EvaluationConfig) -> None:
    """Raise ConfigError listing every violated constraint, if any."""
    errors = validate_config(config)
    if errors:
        raise ConfigError(errors)


def validate_config(config: EvaluationConfig) -> list[str]:
    """Check the config as a whole and return every violation found."""
    errors: list[str] = []

    dd = config.duplicate_detection
    _check_weight_group(dataclasses.asdict(dd.weights), "duplicateDetection.weights", errors)
    _check_range_group(dataclasses.asdict(dd.thresholds), "duplicateDetection.thresholds", 0.0, 1.0, errors)
    _check_decreasing(dataclasses.asdict(dd.thresholds), "duplicateDetection.thresholds", errors)

    qa = config.quality_assessment
    _check_weight_group(dataclasses.asdict(qa.dimension_weights), "qualityAssessment.dimensionWeights", errors)
    _check_range_group(dataclasses.asdict(qa.thresholds), "qualityAssessment.thresholds", 0.0, 100.0, errors)
    _check_decreasing(dataclasses.asdict(qa.thresholds), "qualityAssessment.thresholds", errors)

    ct = config.classification.thresholds
    _check_range_group(
        {"minQualityScore": ct.min_quality_score, "approvalScore": ct.approval_score,
         "borderlineMargin": ct.borderline_margin},
        "classification.thresholds", 0.0, 100.0, errors,
    )
    _check_range_group({"minConfidence": ct.min_confidence}, "classification.thresholds", 0.0, 1.0, errors)
    if ct.approval_score <= ct.min_quality_score:
        errors.append(
            "classification.thresholds: approvalScore "
            f"({ct.approval_score}) must be greater than minQualityScore ({ct.min_quality_score})"
        )

    perf = config.performance
    for name in ("batch_size", "max_batch_size", "concurrency", "cache_max_entries"):
        value = getattr(perf, name)
        if value < 1:
            errors.append(f"performance.{_camel(name)} must be at least 1, got {value}")
    if perf.cache_ttl < 0:
        errors.append(f"performance.cacheTtl must not be negative, got {perf.cache_ttl}")
    if perf.batch_size > perf.max_batch_size:
        errors.append(
            f"performance.batchSize ({perf.batch_size}) must not exceed "
            f"performance.maxBatchSize ({perf.max_batch_size})"
        )
    for name, value in dataclasses.asdict(perf.timeouts).items():
        if value <= 0:
            errors.append(f"performance.timeouts.{_camel(name)} must be positive, got {value}")

    return errors


def config_to_dict(config: EvaluationConfig) -> dict[str, Any]:
    """Render the config as the persisted camelCase document."""
    return _dataclass_to_dict(config)


def save_config(config: EvaluationConfig, path: str | Path) -> None:
    """Write the config to a YAML file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config_to_dict(config), f, sort_keys=False)


def _override_dataclass(current: Any, overrides: dict, prefix: str, errors: list[str]) -> Any:
    """Recursively apply overrides onto a frozen dataclass instance."""
    known = {f.name for f in dataclasses.fields(current)}
    changes = {}
    for key, value in overrides.items():
        name = _snake(str(key))
        path = f"{prefix}{key}"
        if name not in known:
            errors.append(f"Unknown config key: {path!r}")
            continue

        existing = getattr(current, name)
        if dataclasses.is_dataclass(existing):
            if not isinstance(value, dict):
                errors.append(f"Config key {path!r} must be a mapping")
                continue
            changes[name] = _override_dataclass(existing, value, f"{path}.", errors)
        else:
            coerced = _coerce(existing, value, path, errors)
            if coerced is not _INVALID:
                changes[name] = coerced
    return dataclasses.replace(current, **changes)


_INVALID = object()


def _coerce(existing: Any, value: Any, path: str, errors: list[str]) -> Any:
    """Coerce an override to the type of the value it replaces."""
    if isinstance(existing, bool):
        if not isinstance(value, bool):
            errors.append(f"Config key {path!r} must be true or false, got {value!r}")
            return _INVALID
        return value
    if isinstance(existing, int):
        if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
            errors.append(f"Config key {path!r} must be an integer, got {value!r}")
            return _INVALID
        return int(value)
    if isinstance(existing, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            errors.append(f"Config key {path!r} must be a number, got {value!r}")
            return _INVALID
        return float(value)
    if isinstance(existing, tuple):
        if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
            errors.append(f"Config key {path!r} must be a list of strings")
            return _INVALID
        return tuple(value)
    # Optional string fields
    if value is not None and not isinstance(value, str):
        errors.append(f"Config key {path!r} must be a string, got {value!r}")
        return _INVALID
    return value


def _check_weight_group(weights: dict[str, float], group: str, errors: list[str]) -> None:
    for name, value in weights.items():
        if not 0.0 <= value <= 1.0:
            errors.append(f"{group}.{_camel(name)} must be between 0 and 1, got {value}")
    total = sum(weights.values())
    if abs(total - 1.0) > WEIGHT_TOLERANCE + _FLOAT_EPSILON:
        errors.append(f"{group} must sum to 1.0 (±{WEIGHT_TOLERANCE}), got {round(total, 4)}")


def _check_range_group(values: dict[str, float], group: str, low: float, high: float, errors: list[str]) -> None:
    for name, value in values.items():
        if not low <= value <= high:
            errors.append(f"{group}.{_camel(name)} must be between {low:g} and {high:g}, got {value}")


def _check_decreasing(values: dict[str, float], group: str, errors: list[str]) -> None:
    """Thresholds are declared most severe first and must strictly decrease."""
    items = list(values.items())
    for (upper_name, upper), (lower_name, lower) in zip(items, items[1:]):
        if not upper > lower:
            errors.append(
                f"{group}: {_camel(upper_name)} ({upper}) must be greater than "
                f"{_camel(lower_name)} ({lower})"
            )


def _dataclass_to_dict(obj: Any) -> dict[str, Any]:
    result = {}
    for f in dataclasses.fields(obj):
        value = getattr(obj, f.name)
        if dataclasses.is_dataclass(value):
            value = _dataclass_to_dict(value)
        elif isinstance(value, tuple):
            value = list(value)
        result[_camel(f.name)] = value
    return result


def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)
