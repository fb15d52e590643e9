"""Summary statistics for a batch of evaluations."""

import statistics
from collections import Counter
from types import MappingProxyType

from .models import BatchSummary, ClassificationCategory, EvaluationResult, QualityLevel


def summarize(results: list[EvaluationResult], elapsed_ms: float, timed_out: bool = False) -> BatchSummary:
    """Compute aggregate statistics over a list of evaluation results.

    Quality figures only cover results that did not fail.
    """
    category_counts = {c.value: 0 for c in ClassificationCategory}
    category_counts.update(Counter(r.classification.category.value for r in results))

    succeeded = [r for r in results if not r.failed]
    quality_level_counts = {level.value: 0 for level in QualityLevel}
    quality_level_counts.update(Counter(r.quality.quality_level.value for r in succeeded))

    if succeeded:
        quality_scores = [r.quality.quality_score for r in succeeded]
        average_quality = round(statistics.mean(quality_scores), 1)
        min_quality = min(quality_scores)
        max_quality = max(quality_scores)
    else:
        average_quality = min_quality = max_quality = 0.0

    if results:
        average_time = round(statistics.mean(r.processing_time_ms for r in results), 2)
    else:
        average_time = 0.0

    return BatchSummary(
        total_rules=len(results),
        processed_rules=len(succeeded),
        failed_rules=len(results) - len(succeeded),
        average_quality_score=average_quality,
        min_quality_score=min_quality,
        max_quality_score=max_quality,
        duplicates_found=sum(1 for r in results if r.duplicate.is_duplicate),
        processing_time_ms=round(elapsed_ms, 2),
        average_processing_time_ms=average_time,
        cache_hits=sum(1 for r in results if r.cache_hit),
        timed_out=timed_out,
        category_counts=MappingProxyType(category_counts),
        quality_level_counts=MappingProxyType(quality_level_counts),
    )
