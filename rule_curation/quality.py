"""Multi-dimensional quality scoring for candidate rules."""

import logging
from collections.abc import Mapping
from typing import Callable

from .checks import BUILTIN_CHECKS, DIMENSION_BASES, MISSING_SUGGESTIONS, Check, load_check
from .config import DimensionWeights, EvaluationConfig, QualityThresholds
from .errors import ValidationError
from .models import DIMENSIONS, CheckResult, DimensionScores, QualityEvaluation, QualityLevel, RuleRecord

logger = logging.getLogger(__name__)

# Ceiling for rules that have neither a title nor a description.
EMPTY_TEXT_SCORE_CAP = 25.0
# Dimensions under this score are reported as issues.
WEAK_DIMENSION_SCORE = 60.0


class QualityAssessor:
    """Scores rules on accuracy, practicality, completeness, generality and consistency.

    Scoring is pure: the same rule and config always produce the same
    evaluation. Extra checks can be passed in directly or named by dotted
    path in ``quality_assessment.plugins``.
    """

    def __init__(self, extra_checks: Mapping[str, Check] | None = None) -> None:
        self._checks: dict[str, Check] = dict(extra_checks or {})
        self._loaded_plugins: dict[str, Check | None] = {}
        self._revision = 0

    @property
    def revision(self) -> int:
        """Bumped whenever the set of extra checks changes."""
        return self._revision

    def register_check(self, check_id: str, func: Callable[[RuleRecord], CheckResult | None]) -> None:
        """Register an extra check callable programmatically."""
        self._checks[check_id] = func
        self._revision += 1

    def score(self, rule: RuleRecord | Mapping | None, config: EvaluationConfig) -> QualityEvaluation:
        """Score a single rule. Malformed input yields a zero score instead of raising."""
        if rule is None:
            return failed_evaluation(["No rule was provided"])
        if isinstance(rule, Mapping):
            try:
                rule = RuleRecord.from_dict(rule)
            except ValidationError as exc:
                return failed_evaluation(exc.errors)
        if not isinstance(rule, RuleRecord):
            return failed_evaluation([f"Expected a rule, got {type(rule).__name__}"])

        qa = config.quality_assessment
        if not qa.enabled:
            return _unassessed_evaluation(qa.thresholds)

        scores = dict(DIMENSION_BASES)
        findings: list[CheckResult] = []
        suggestions: list[str] = []

        for check in BUILTIN_CHECKS:
            result = check(rule)
            if result is None:
                check_id = check.__name__.removeprefix("check_")
                if check_id in MISSING_SUGGESTIONS:
                    suggestions.append(MISSING_SUGGESTIONS[check_id])
                continue
            findings.append(result)
            scores[result.dimension] += result.delta

        for check_id, func in self._extra_checks(qa.plugins):
            try:
                result = func(rule)
            except Exception:
                logger.warning("Quality check %r failed on rule %s; skipping it", check_id, rule.id, exc_info=True)
                continue
            if result is None:
                continue
            if result.dimension not in scores:
                logger.warning("Quality check %r reported unknown dimension %r", check_id, result.dimension)
                continue
            findings.append(result)
            scores[result.dimension] += result.delta

        dimension_scores = DimensionScores(**{dim: _clamp(scores[dim]) for dim in DIMENSIONS})
        quality_score = weighted_score(dimension_scores, qa.dimension_weights)
        if not rule.title and not rule.description:
            quality_score = min(quality_score, EMPTY_TEXT_SCORE_CAP)

        issues = [f.reason for f in findings if f.delta < 0]
        for dim, value in dimension_scores.as_dict().items():
            if value < WEAK_DIMENSION_SCORE:
                issues.append(f"Low {dim} score ({value:.0f}/100)")

        return QualityEvaluation(
            quality_score=quality_score,
            quality_level=resolve_level(quality_score, qa.thresholds),
            dimension_scores=dimension_scores,
            should_keep=quality_score >= qa.thresholds.minimum,
            issues=tuple(issues),
            suggestions=tuple(dict.fromkeys(suggestions)),
            strengths=tuple(f.reason for f in findings if f.delta > 0),
            findings=tuple(findings),
        )

    def _extra_checks(self, plugin_paths: tuple[str, ...]) -> list[tuple[str, Check]]:
        checks = list(self._checks.items())
        for path in plugin_paths:
            if path not in self._loaded_plugins:
                try:
                    self._loaded_plugins[path] = load_check(path)
                except (ImportError, AttributeError, TypeError, ValueError):
                    logger.warning("Could not load quality check %r; skipping it", path, exc_info=True)
                    self._loaded_plugins[path] = None
            func = self._loaded_plugins[path]
            if func is not None:
                checks.append((path, func))
        return checks


def weighted_score(dimension_scores: DimensionScores, weights: DimensionWeights) -> float:
    """Combine dimension scores into the overall 0-100 quality score."""
    values = dimension_scores.as_dict()
    total = sum(getattr(weights, dim) * values[dim] for dim in DIMENSIONS)
    return round(_clamp(total), 1)


def resolve_level(score: float, thresholds: QualityThresholds) -> QualityLevel:
    """Map a score to a level, testing the highest threshold first."""
    if score >= thresholds.excellent:
        return QualityLevel.EXCELLENT
    if score >= thresholds.good:
        return QualityLevel.GOOD
    if score >= thresholds.fair:
        return QualityLevel.FAIR
    return QualityLevel.POOR


def failed_evaluation(issues: list[str]) -> QualityEvaluation:
    """Evaluation reported for input that could not be scored."""
    return QualityEvaluation(
        quality_score=0.0,
        quality_level=QualityLevel.POOR,
        dimension_scores=DimensionScores(),
        should_keep=False,
        issues=tuple(issues),
    )


def _unassessed_evaluation(thresholds: QualityThresholds) -> QualityEvaluation:
    # Neutral score: clears the keep threshold but never approves on its own.
    neutral = thresholds.fair
    return QualityEvaluation(
        quality_score=neutral,
        quality_level=QualityLevel.FAIR,
        dimension_scores=DimensionScores(**{dim: neutral for dim in DIMENSIONS}),
        should_keep=neutral >= thresholds.minimum,
        issues=("Quality assessment is disabled",),
    )


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    """Clamp a score within the 0-100 range."""
    if value < low:
        value = low
    if value > high:
        value = high
    return value
