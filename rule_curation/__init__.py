"""rule-curation: Score, de-duplicate and classify candidate SQL analysis rules."""

from .batch import BatchCoordinator, BatchOptions
from .cache import EvaluationCache
from .classifier import classify, rejected_classification
from .config import EvaluationConfig, load_config, load_default_config, validate_config
from .duplicates import CorpusIndex, DuplicateDetector, SemanticProvider
from .errors import CapacityError, ComputationError, ConfigError, RuleCurationError, ValidationError
from .models import (
    BatchResult,
    BatchSummary,
    Classification,
    ClassificationCategory,
    DuplicateCheck,
    DuplicateType,
    EvaluationResult,
    QualityEvaluation,
    QualityLevel,
    RuleRecord,
)
from .quality import QualityAssessor
from .service import HealthReport, RuleEvaluationService
from .stats import summarize
from .store import ConfigStore, UpdateResult

__all__ = [
    "RuleEvaluationService",
    "HealthReport",
    "RuleRecord",
    "QualityAssessor",
    "QualityEvaluation",
    "QualityLevel",
    "DuplicateDetector",
    "DuplicateCheck",
    "DuplicateType",
    "CorpusIndex",
    "SemanticProvider",
    "classify",
    "rejected_classification",
    "Classification",
    "ClassificationCategory",
    "BatchCoordinator",
    "BatchOptions",
    "BatchResult",
    "BatchSummary",
    "EvaluationResult",
    "EvaluationCache",
    "EvaluationConfig",
    "ConfigStore",
    "UpdateResult",
    "load_config",
    "load_default_config",
    "validate_config",
    "summarize",
    "RuleCurationError",
    "ValidationError",
    "ComputationError",
    "CapacityError",
    "ConfigError",
]
