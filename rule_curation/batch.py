"""Bounded-concurrency batch evaluation."""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from .classifier import rejected_classification
from .config import EvaluationConfig
from .errors import CapacityError, ComputationError, ConfigError, ValidationError
from .models import (
    BatchResult,
    DuplicateCheck,
    DuplicateType,
    EvaluationError,
    EvaluationResult,
    ProgressEvent,
    RuleRecord,
)
from .quality import failed_evaluation
from .stats import summarize

logger = logging.getLogger(__name__)

EvaluateFn = Callable[[Any, int, bool], EvaluationResult]
ProgressFn = Callable[[ProgressEvent], None]


class ConfigSource(Protocol):
    @property
    def current(self) -> EvaluationConfig: ...


@dataclass(frozen=True)
class BatchOptions:
    """Per-call overrides; None falls back to the performance config."""

    concurrency: int | None = None
    batch_size: int | None = None
    use_cache: bool = True
    timeout_s: float | None = None
    on_progress: ProgressFn | None = None


class BatchCoordinator:
    """Runs an evaluation function over a list of rules on a worker pool.

    Rules are submitted in chunks of ``batch_size`` to at most
    ``concurrency`` workers. Each result is written to the slot of its
    input position, so the output order always equals the input order.
    A rule whose evaluation raises becomes a rejected result; the rest of
    the batch carries on.
    """

    def __init__(self, evaluate_fn: EvaluateFn, config_source: ConfigSource) -> None:
        self._evaluate_fn = evaluate_fn
        self._config_source = config_source

    def run(self, rules: list, options: BatchOptions | None = None) -> BatchResult:
        options = options or BatchOptions()
        config = self._config_source.current
        perf = config.performance
        total = len(rules)

        if total > perf.max_batch_size:
            raise CapacityError(total, perf.max_batch_size)
        concurrency = options.concurrency if options.concurrency is not None else perf.concurrency
        batch_size = options.batch_size if options.batch_size is not None else perf.batch_size
        errors = []
        if concurrency < 1:
            errors.append(f"concurrency must be at least 1, got {concurrency}")
        if batch_size < 1:
            errors.append(f"batch size must be at least 1, got {batch_size}")
        if errors:
            raise ConfigError(errors)
        timeout_s = options.timeout_s if options.timeout_s is not None else perf.timeouts.total / 1000

        logger.info("Evaluating %d rule(s) with concurrency %d in chunks of %d", total, concurrency, batch_size)
        start = time.perf_counter()
        deadline = time.monotonic() + timeout_s
        slots: list[EvaluationResult | None] = [None] * total
        processed = 0
        timed_out = False

        executor = ThreadPoolExecutor(max_workers=concurrency)
        try:
            for chunk_start in range(0, total, batch_size):
                positions = range(chunk_start, min(chunk_start + batch_size, total))
                futures = {
                    executor.submit(self._evaluate_one, rules[i], i, options.use_cache): i
                    for i in positions
                }
                try:
                    for future in as_completed(futures, timeout=max(deadline - time.monotonic(), 0)):
                        i = futures[future]
                        slots[i] = future.result()
                        processed += 1
                        _notify(options.on_progress, ProgressEvent(
                            processed=processed,
                            total=total,
                            index=i,
                            rule_id=_rule_id(rules[i]),
                            category=slots[i].classification.category,
                        ))
                except TimeoutError:
                    timed_out = True
                    for future in futures:
                        future.cancel()
                    break
        finally:
            executor.shutdown(wait=not timed_out, cancel_futures=True)

        if timed_out:
            unfinished = sum(1 for slot in slots if slot is None)
            logger.warning("Batch timed out after %.1fs; %d rule(s) did not finish", timeout_s, unfinished)
            message = f"Batch exceeded its {timeout_s:g}s time limit before this rule finished"
            for i, slot in enumerate(slots):
                if slot is None:
                    slots[i] = failed_result(rules[i], EvaluationError("timeout", "TimeoutError", message))

        elapsed_ms = (time.perf_counter() - start) * 1000
        results = tuple(slots)
        summary = summarize(list(results), elapsed_ms, timed_out=timed_out)
        logger.info(
            "Batch finished: %d processed, %d failed in %.0f ms",
            summary.processed_rules, summary.failed_rules, elapsed_ms,
        )
        return BatchResult(success=True, summary=summary, results=results)

    def _evaluate_one(self, rule: Any, position: int, use_cache: bool) -> EvaluationResult:
        start = time.perf_counter()
        try:
            return self._evaluate_fn(rule, position, use_cache)
        except Exception as exc:
            logger.exception("Evaluation of rule %s failed", _rule_id(rule))
            elapsed_ms = (time.perf_counter() - start) * 1000
            return failed_result(rule, error_from_exception(exc), elapsed_ms)


def error_from_exception(exc: Exception, phase: str = "evaluation") -> EvaluationError:
    """Tag an exception with the phase it came from."""
    if isinstance(exc, ValidationError):
        phase = "validation"
    elif isinstance(exc, ComputationError):
        phase = exc.phase
    return EvaluationError(phase=phase, error_type=type(exc).__name__, message=str(exc))


def failed_result(rule: Any, error: EvaluationError, elapsed_ms: float = 0.0) -> EvaluationResult:
    """Rejected result for a rule whose evaluation could not complete.

    Raw input that never became a RuleRecord is dropped, but its id is kept
    in ``rule_id`` so results still line up with the submitted documents.
    """
    return EvaluationResult(
        rule=rule if isinstance(rule, RuleRecord) else None,
        rule_id=_rule_id(rule),
        evaluation_id=str(uuid.uuid4()),
        quality=failed_evaluation([error.message]),
        duplicate=DuplicateCheck(
            is_duplicate=False,
            similarity=0.0,
            duplicate_type=DuplicateType.NONE,
            explanation="Not checked",
        ),
        classification=rejected_classification(f"Evaluation failed during {error.phase}: {error.message}"),
        errors=(error,),
        processing_time_ms=round(elapsed_ms, 2),
    )


def _notify(callback: ProgressFn | None, event: ProgressEvent) -> None:
    if callback is None:
        return
    try:
        callback(event)
    except Exception:
        logger.warning("Progress callback raised; ignoring it", exc_info=True)


def _rule_id(rule: Any) -> str | None:
    if isinstance(rule, RuleRecord):
        return rule.id
    if isinstance(rule, Mapping) and rule.get("id") is not None:
        return str(rule["id"])
    return None
