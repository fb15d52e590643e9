"""Service facade: the entry point callers hold on to."""

import logging
import threading
import time
import uuid
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .batch import BatchCoordinator, BatchOptions, ProgressFn, error_from_exception, failed_result
from .cache import EvaluationCache
from .classifier import classify
from .config import EvaluationConfig
from .duplicates import CorpusIndex, DuplicateDetector, IndexEntry, SemanticProvider, load_semantic_provider
from .errors import ComputationError, ValidationError
from .models import (
    BatchResult,
    ClassificationCategory,
    DuplicateCheck,
    EvaluationError,
    EvaluationResult,
    QualityEvaluation,
    RuleRecord,
)
from .quality import QualityAssessor
from .store import ConfigStore, UpdateResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthReport:
    status: str  # "ok" or "degraded"
    index_size: int
    index_version: int
    config_version: int
    cache_stats: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    semantic_provider_error: str | None = None


@dataclass(frozen=True)
class _ConfigSnapshot:
    current: EvaluationConfig


class RuleEvaluationService:
    """Evaluates candidate rules against a corpus index.

    The service owns its collaborators: a ConfigStore, the published
    CorpusIndex, a quality cache and an optional semantic provider. Every
    call reads one config and one index snapshot and uses them throughout,
    so concurrent config updates or index reloads never mix into a running
    evaluation.

    Usage:
        service = RuleEvaluationService(corpus=existing_rules)
        result = service.evaluate_single(candidate)
        batch = service.evaluate_batch(candidates, concurrency=3)
    """

    def __init__(
        self,
        config_store: ConfigStore | None = None,
        corpus: CorpusIndex | Iterable[RuleRecord | Mapping] | None = None,
        cache: EvaluationCache | None = None,
        semantic_provider: SemanticProvider | None = None,
        register_approved: bool = True,
    ) -> None:
        self._config_store = config_store or ConfigStore()
        config = self._config_store.current

        if corpus is None:
            self._index = CorpusIndex()
        elif isinstance(corpus, CorpusIndex):
            self._index = corpus
        else:
            self._index = CorpusIndex.build(corpus)
        self._index_lock = threading.Lock()

        perf = config.performance
        self._cache = cache if cache is not None else EvaluationCache(
            ttl=perf.cache_ttl, maxsize=perf.cache_max_entries,
        )

        if semantic_provider is None and config.duplicate_detection.semantic_provider:
            semantic_provider = load_semantic_provider(config.duplicate_detection.semantic_provider)
        self._detector = DuplicateDetector(semantic_provider)
        self._assessor = QualityAssessor()
        self._register_approved = register_approved

    @property
    def config_store(self) -> ConfigStore:
        return self._config_store

    @property
    def index(self) -> CorpusIndex:
        return self._index

    @property
    def cache(self) -> EvaluationCache:
        return self._cache

    @property
    def assessor(self) -> QualityAssessor:
        return self._assessor

    def evaluate_single(self, rule: RuleRecord | Mapping | None, use_cache: bool = True) -> EvaluationResult:
        """Evaluate one rule against the current corpus. Never raises for bad input."""
        config = self._config_store.current
        result = self._evaluate(rule, config, self._index, (), use_cache)
        if self._register_approved:
            self._register([result])
        return result

    def evaluate_batch(
        self,
        rules: Sequence[RuleRecord | Mapping | None],
        concurrency: int | None = None,
        batch_size: int | None = None,
        use_cache: bool = True,
        timeout_s: float | None = None,
        on_progress: ProgressFn | None = None,
    ) -> BatchResult:
        """Evaluate many rules; results come back in input order.

        Rule ``i`` is compared with the corpus and with rules ``0..i-1`` of
        the same batch. Raises ConfigError or CapacityError before any rule
        is evaluated when the options or the batch size are out of bounds.
        """
        config = self._config_store.current
        index = self._index
        records = [_try_record(rule) for rule in rules]
        entries = [IndexEntry.from_rule(r) if isinstance(r, RuleRecord) else None for r in records]

        def evaluate(rule: Any, position: int, cached: bool) -> EvaluationResult:
            earlier = [e for e in entries[:position] if e is not None]
            return self._evaluate(rule, config, index, earlier, cached)

        coordinator = BatchCoordinator(evaluate, _ConfigSnapshot(config))
        result = coordinator.run(records, BatchOptions(
            concurrency=concurrency,
            batch_size=batch_size,
            use_cache=use_cache,
            timeout_s=timeout_s,
            on_progress=on_progress,
        ))
        if self._register_approved:
            self._register(result.results)
        return result

    def check_duplicate_only(self, rule: RuleRecord | Mapping) -> DuplicateCheck:
        """Run duplicate detection alone. Raises ValidationError for malformed rules."""
        record = rule if isinstance(rule, RuleRecord) else RuleRecord.from_dict(rule)
        return self._detector.check(record, self._index, self._config_store.current)

    def get_health(self) -> HealthReport:
        index = self._index
        provider_error = None
        if self._detector.semantic_provider is not None:
            provider_error = self._detector.provider_error
        return HealthReport(
            status="degraded" if provider_error else "ok",
            index_size=index.size,
            index_version=index.version,
            config_version=self._config_store.current.version,
            cache_stats=MappingProxyType(self._cache.stats()),
            semantic_provider_error=provider_error,
        )

    def update_config(self, overrides: dict) -> UpdateResult:
        return self._config_store.update(overrides)

    def reload_index(self, rules: Iterable[RuleRecord | Mapping]) -> CorpusIndex:
        """Replace the corpus with a freshly built index."""
        with self._index_lock:
            self._index = CorpusIndex.build(rules, version=self._index.version + 1)
            index = self._index
        logger.info("Reloaded corpus index: %d rule(s), version %d", index.size, index.version)
        return index

    def add_to_index(self, rules: Iterable[RuleRecord | Mapping]) -> CorpusIndex:
        """Publish a new index that also contains these rules."""
        with self._index_lock:
            self._index = self._index.with_rules(rules)
            return self._index

    def _register(self, results: Iterable[EvaluationResult]) -> None:
        approved = [
            r.rule for r in results
            if not r.failed and r.rule is not None
            and r.classification.category is ClassificationCategory.APPROVED
        ]
        if approved:
            index = self.add_to_index(approved)
            logger.debug("Registered %d approved rule(s); index version %d", len(approved), index.version)

    def _evaluate(
        self,
        rule: Any,
        config: EvaluationConfig,
        index: CorpusIndex,
        extra: Sequence[IndexEntry],
        use_cache: bool,
    ) -> EvaluationResult:
        start = time.perf_counter()
        if rule is None:
            error = EvaluationError("validation", "ValidationError", "No rule was provided")
            return failed_result(None, error, _elapsed_ms(start))

        phase = "validation"
        record = None
        try:
            record = rule if isinstance(rule, RuleRecord) else RuleRecord.from_dict(rule)
            timeouts = config.performance.timeouts

            phase = "quality"
            phase_start = time.perf_counter()
            quality, cache_hit = self._assess(record, config, use_cache)
            _check_budget(phase, phase_start, timeouts.quality_evaluation)

            phase = "duplicate"
            phase_start = time.perf_counter()
            duplicate = self._detector.check(record, index, config, extra)
            _check_budget(phase, phase_start, timeouts.duplicate_detection)

            phase = "classification"
            phase_start = time.perf_counter()
            classification = classify(quality, duplicate, config)
            _check_budget(phase, phase_start, timeouts.classification)
        except Exception as exc:
            if not isinstance(exc, (ValidationError, ComputationError)):
                logger.exception("Unexpected error during %s of rule %s", phase, getattr(record, "id", None))
            return failed_result(record if record is not None else rule, error_from_exception(exc, phase), _elapsed_ms(start))

        return EvaluationResult(
            rule=record,
            rule_id=record.id,
            evaluation_id=str(uuid.uuid4()),
            quality=quality,
            duplicate=duplicate,
            classification=classification,
            processing_time_ms=_elapsed_ms(start),
            cache_hit=cache_hit,
        )

    def _assess(self, record: RuleRecord, config: EvaluationConfig, use_cache: bool) -> tuple[QualityEvaluation, bool]:
        if not use_cache:
            return self._assessor.score(record, config), False
        key = (record.content_hash(), config.version, self._assessor.revision)
        cached = self._cache.get(key)
        if cached is not None:
            return cached, True
        quality = self._assessor.score(record, config)
        self._cache.put(key, quality)
        return quality, False


def _try_record(rule: Any) -> Any:
    """Convert rule documents up front; malformed ones are left for the worker to reject."""
    if isinstance(rule, Mapping):
        try:
            return RuleRecord.from_dict(rule)
        except ValidationError:
            return rule
    return rule


def _check_budget(phase: str, started: float, budget_ms: int) -> None:
    elapsed = _elapsed_ms(started)
    if elapsed > budget_ms:
        raise ComputationError(phase, f"{phase} took {elapsed:.0f} ms, over its {budget_ms} ms budget")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)
