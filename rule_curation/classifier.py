"""Final bucket decision from a quality evaluation and a duplicate check."""

from .config import EvaluationConfig
from .models import Classification, ClassificationCategory, DuplicateCheck, DuplicateType, QualityEvaluation

TARGET_PATHS: dict[ClassificationCategory, str] = {
    ClassificationCategory.APPROVED: "approved",
    ClassificationCategory.MANUAL_REVIEW: "manual_review",
    ClassificationCategory.LOW_QUALITY: "issues/low_quality",
    ClassificationCategory.DUPLICATE: "issues/duplicates",
    ClassificationCategory.REJECTED: "issues/invalid_format",
}


def classify(quality: QualityEvaluation, duplicate: DuplicateCheck, config: EvaluationConfig) -> Classification:
    """Classify a rule. The first matching step decides the category.

    1. exact duplicate -> duplicate
    2. score below the minimum quality -> low_quality
    3. possible duplicate, borderline score, low confidence or
       conflicting signals -> manual_review
    4. score at or above the approval score -> approved
    5. anything else -> manual_review
    """
    thresholds = config.classification.thresholds
    triggers = config.classification.manual_review_triggers
    score = quality.quality_score
    confidence = duplicate.confidence

    if duplicate.duplicate_type is DuplicateType.EXACT:
        return _classification(
            ClassificationCategory.DUPLICATE,
            f"Exact duplicate: {duplicate.explanation}",
            confidence,
            ("exact_duplicate",),
        )

    if score < thresholds.min_quality_score:
        return _classification(
            ClassificationCategory.LOW_QUALITY,
            f"Quality score {score:.1f} is below the minimum of {thresholds.min_quality_score:g}",
            confidence,
            ("below_min_quality",),
        )

    review_steps = []
    reasons = []
    if duplicate.is_duplicate:
        review_steps.append("possible_duplicate")
        reasons.append(f"{duplicate.duplicate_type.value} duplicate suspected ({duplicate.similarity:.2f})")
    if triggers.borderline_scores and thresholds.approval_score - thresholds.borderline_margin <= score < thresholds.approval_score:
        review_steps.append("borderline_score")
        reasons.append(f"score {score:.1f} is just below the approval score of {thresholds.approval_score:g}")
    if triggers.low_confidence and confidence < thresholds.min_confidence:
        review_steps.append("low_confidence")
        reasons.append(f"confidence {confidence:.2f} is below {thresholds.min_confidence:g}")
    if triggers.conflicting_results and score >= thresholds.approval_score and not quality.should_keep:
        review_steps.append("conflicting_results")
        reasons.append("score clears approval but the quality assessment does not recommend keeping the rule")
    if review_steps:
        return _classification(
            ClassificationCategory.MANUAL_REVIEW,
            "Needs review: " + "; ".join(reasons),
            confidence,
            tuple(review_steps),
        )

    if score >= thresholds.approval_score:
        return _classification(
            ClassificationCategory.APPROVED,
            f"Quality score {score:.1f} meets the approval score of {thresholds.approval_score:g}",
            confidence,
            ("approval_score_met",),
        )

    return _classification(
        ClassificationCategory.MANUAL_REVIEW,
        f"Quality score {score:.1f} is acceptable but below the approval score of {thresholds.approval_score:g}",
        confidence,
        ("fallback",),
    )


def rejected_classification(reason: str) -> Classification:
    """Classification for rules that could not be evaluated at all."""
    return _classification(ClassificationCategory.REJECTED, reason, 0.0, ("rejected",))


def _classification(
    category: ClassificationCategory,
    reason: str,
    confidence: float,
    decision_path: tuple[str, ...],
) -> Classification:
    return Classification(
        category=category,
        reason=reason,
        target_path=TARGET_PATHS[category],
        requires_manual_review=category is ClassificationCategory.MANUAL_REVIEW,
        confidence=confidence,
        decision_path=decision_path,
    )
