"""Near-duplicate detection against an indexed rule corpus."""

import importlib
import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from difflib import SequenceMatcher
from types import MappingProxyType
from typing import Protocol, Self, runtime_checkable

from .config import DuplicateThresholds, DuplicateWeights, EvaluationConfig
from .models import VALID_SEVERITIES, DuplicateCheck, DuplicateType, RuleMatch, RuleRecord
from .text import SQL_KEYWORDS, jaccard, normalize, strip_punctuation, tokens, words

logger = logging.getLogger(__name__)

# Confidence scale applied when only lexical signals were available.
LEXICAL_CONFIDENCE_FACTOR = 0.85
NO_MATCH_CONFIDENCE = 0.9
TIE_EPSILON = 1e-9

_SHAPE_TOKEN_RE = re.compile(r"\\[a-zA-Z]|\w+|[^\w\s]")


@runtime_checkable
class SemanticProvider(Protocol):
    """Optional capability scoring how close two rules are in meaning."""

    def similarity(self, a: RuleRecord, b: RuleRecord) -> float:
        """Return a similarity between 0 and 1."""
        ...


class _CallableProvider:
    def __init__(self, func) -> None:
        self._func = func

    def similarity(self, a: RuleRecord, b: RuleRecord) -> float:
        return self._func(a, b)


def load_semantic_provider(dotted_path: str) -> SemanticProvider:
    """Load a provider from "module:attr" or "module.attr".

    The attribute may be a provider instance, a class instantiated with no
    arguments, or a plain ``func(a, b) -> float``.
    """
    if ":" in dotted_path:
        module_path, attr = dotted_path.rsplit(":", 1)
    else:
        module_path, attr = dotted_path.rsplit(".", 1)
    obj = getattr(importlib.import_module(module_path), attr)
    if isinstance(obj, type):
        obj = obj()
    if isinstance(obj, SemanticProvider):
        return obj
    if callable(obj):
        return _CallableProvider(obj)
    raise TypeError(f"Semantic provider {dotted_path!r} is neither a provider nor callable")


def pattern_shape(pattern: str) -> tuple[str, ...]:
    """Reduce a pattern to its skeleton: SQL keywords and regex syntax kept, other words generalized."""
    shape = []
    for token in _SHAPE_TOKEN_RE.findall(pattern.lower()):
        if token[0].isalnum() or token[0] == "_":
            shape.append(token if token in SQL_KEYWORDS else "w")
        else:
            shape.append(token)
    return tuple(shape)


@dataclass(frozen=True)
class IndexEntry:
    """Precomputed comparison features of one corpus rule."""

    id: str
    fingerprint: str
    bare_text: str
    text_tokens: frozenset[str]
    semantic_tokens: frozenset[str]
    sql_keywords: frozenset[str]
    shape: tuple[str, ...]
    category: str
    severity: str
    tags: frozenset[str]
    metadata_keys: frozenset[str]
    rule: RuleRecord

    @classmethod
    def from_rule(cls, rule: RuleRecord) -> Self:
        text = f"{rule.title} {rule.description}"
        fingerprint = normalize(text)
        return cls(
            id=rule.id,
            fingerprint=fingerprint,
            bare_text=strip_punctuation(fingerprint),
            text_tokens=tokens(text),
            semantic_tokens=tokens(f"{text} {rule.sql_pattern}"),
            sql_keywords=frozenset(w for w in words(rule.sql_pattern) if w in SQL_KEYWORDS),
            shape=pattern_shape(rule.sql_pattern),
            category=rule.category,
            severity=rule.severity,
            tags=rule.tags,
            metadata_keys=frozenset(str(k).lower() for k in rule.metadata),
            rule=rule,
        )


class CorpusIndex:
    """Immutable snapshot of the accepted-rule corpus.

    Entries are bucketed by category and by text fingerprint. Adding rules
    returns a new index with a higher version; existing snapshots never
    change, so readers can hold one for a whole batch without locking.
    """

    def __init__(self, entries: Iterable[IndexEntry] = (), version: int = 0) -> None:
        by_id: dict[str, IndexEntry] = {}
        for entry in entries:
            by_id[entry.id] = entry
        self._entries = tuple(by_id.values())
        self._version = version

        by_category: dict[str, list[IndexEntry]] = {}
        by_fingerprint: dict[str, list[IndexEntry]] = {}
        for entry in self._entries:
            by_category.setdefault(entry.category, []).append(entry)
            if entry.fingerprint:
                by_fingerprint.setdefault(entry.fingerprint, []).append(entry)
        self._by_category = MappingProxyType({k: tuple(v) for k, v in by_category.items()})
        self._by_fingerprint = MappingProxyType({k: tuple(v) for k, v in by_fingerprint.items()})

    @classmethod
    def build(cls, rules: Iterable[RuleRecord | Mapping], version: int = 1) -> Self:
        """Index a collection of rules, given as records or rule documents."""
        return cls((IndexEntry.from_rule(_as_record(r)) for r in rules), version=version)

    def with_rules(self, rules: Iterable[RuleRecord | Mapping]) -> "CorpusIndex":
        """Return a new index containing these rules as well; same ids are replaced."""
        added = [IndexEntry.from_rule(_as_record(r)) for r in rules]
        return CorpusIndex((*self._entries, *added), version=self._version + 1)

    @property
    def version(self) -> int:
        return self._version

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> tuple[IndexEntry, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, rule_id: str) -> bool:
        return any(entry.id == rule_id for entry in self._entries)

    def candidates(self, entry: IndexEntry) -> list[IndexEntry]:
        """Coarse filter: same category bucket plus anything with the same fingerprint."""
        found: dict[int, IndexEntry] = {}
        for candidate in self._by_category.get(entry.category, ()):
            found[id(candidate)] = candidate
        for candidate in self._by_fingerprint.get(entry.fingerprint, ()):
            found[id(candidate)] = candidate
        return list(found.values())


def exact_similarity(a: IndexEntry, b: IndexEntry) -> float:
    if not a.fingerprint or not b.fingerprint:
        return 0.0
    if a.fingerprint == b.fingerprint:
        return 1.0
    if a.bare_text == b.bare_text:
        return 0.98
    if a.bare_text in b.bare_text or b.bare_text in a.bare_text:
        return 0.95
    overlap = jaccard(a.text_tokens, b.text_tokens)
    return overlap if overlap >= 0.9 else 0.0


def lexical_semantic_similarity(a: IndexEntry, b: IndexEntry) -> float:
    """Token overlap of text and pattern, blended with SQL keyword overlap when both patterns have any."""
    if not a.semantic_tokens and not b.semantic_tokens:
        return 0.0
    overlap = jaccard(a.semantic_tokens, b.semantic_tokens)
    if a.sql_keywords and b.sql_keywords:
        return 0.8 * overlap + 0.2 * jaccard(a.sql_keywords, b.sql_keywords)
    return overlap


def structural_similarity(a: IndexEntry, b: IndexEntry) -> float:
    score = 0.0
    if a.category == b.category:
        score += 0.4
    if a.severity in VALID_SEVERITIES and b.severity in VALID_SEVERITIES:
        distance = abs(VALID_SEVERITIES.index(a.severity) - VALID_SEVERITIES.index(b.severity))
        score += 0.3 * (1.0 - distance / (len(VALID_SEVERITIES) - 1))
    if a.shape or b.shape:
        score += 0.3 * SequenceMatcher(None, a.shape, b.shape).ratio()
    else:
        score += 0.3
    return score


def content_similarity(a: IndexEntry, b: IndexEntry) -> float:
    return jaccard(a.tags | a.metadata_keys, b.tags | b.metadata_keys)


def combine(signals: Mapping[str, float], weights: DuplicateWeights) -> float:
    return (
        weights.exact * signals["exact"]
        + weights.semantic * signals["semantic"]
        + weights.structural * signals["structural"]
        + weights.content * signals["content"]
    )


def resolve_type(similarity: float, thresholds: DuplicateThresholds) -> DuplicateType:
    """Highest threshold the similarity clears."""
    if similarity >= thresholds.exact:
        return DuplicateType.EXACT
    if similarity >= thresholds.semantic:
        return DuplicateType.SEMANTIC
    if similarity >= thresholds.structural:
        return DuplicateType.STRUCTURAL
    if similarity >= thresholds.warning:
        return DuplicateType.WARNING
    return DuplicateType.NONE


class DuplicateDetector:
    """Compares a rule with the corpus using exact, semantic, structural and content signals.

    Without a semantic provider (or when it fails) the semantic signal is
    computed lexically and the reported confidence is scaled down.
    """

    def __init__(self, semantic_provider: SemanticProvider | None = None) -> None:
        self._provider = semantic_provider
        self.provider_error: str | None = None

    @property
    def semantic_provider(self) -> SemanticProvider | None:
        return self._provider

    def check(
        self,
        rule: RuleRecord,
        index: CorpusIndex,
        config: EvaluationConfig,
        extra: Sequence[IndexEntry] = (),
    ) -> DuplicateCheck:
        """Check a rule against the index and any extra entries (earlier rules of the same batch)."""
        dd = config.duplicate_detection
        if not dd.enabled:
            return DuplicateCheck(
                is_duplicate=False,
                similarity=0.0,
                duplicate_type=DuplicateType.NONE,
                confidence=NO_MATCH_CONFIDENCE,
                explanation="Duplicate detection is disabled",
            )

        entry = IndexEntry.from_rule(rule)
        candidates = index.candidates(entry)
        candidates.extend(
            e for e in extra if e.category == entry.category or (e.fingerprint and e.fingerprint == entry.fingerprint)
        )

        use_provider = self._provider is not None
        scored: list[tuple[float, IndexEntry, dict[str, float]]] = []
        for candidate in candidates:
            semantic = None
            if use_provider:
                semantic = self._provider_similarity(rule, candidate.rule)
                if semantic is None:
                    use_provider = False
            if semantic is None:
                semantic = lexical_semantic_similarity(entry, candidate)
            signals = {
                "exact": exact_similarity(entry, candidate),
                "semantic": semantic,
                "structural": structural_similarity(entry, candidate),
                "content": content_similarity(entry, candidate),
            }
            scored.append((combine(signals, dd.weights), candidate, signals))

        best = max((score for score, _, _ in scored), default=0.0)
        best = min(best, 1.0)
        matched: tuple[RuleMatch, ...] = ()
        if scored and best >= dd.thresholds.warning:
            matched = tuple(
                RuleMatch(
                    id=candidate.id,
                    similarity=round(score, 4),
                    signals=MappingProxyType({k: round(v, 4) for k, v in signals.items()}),
                )
                for score, candidate, signals in scored
                if abs(score - best) <= TIE_EPSILON
            )

        duplicate_type = resolve_type(best, dd.thresholds)
        is_duplicate = duplicate_type in (DuplicateType.EXACT, DuplicateType.SEMANTIC, DuplicateType.STRUCTURAL)
        confidence = min(best + 0.1, 1.0) if matched else NO_MATCH_CONFIDENCE
        if not use_provider:
            confidence *= LEXICAL_CONFIDENCE_FACTOR

        return DuplicateCheck(
            is_duplicate=is_duplicate,
            similarity=round(best, 4),
            duplicate_type=duplicate_type,
            matched_rules=matched,
            confidence=round(confidence, 4),
            explanation=_explain(duplicate_type, matched, len(candidates)),
            candidates_compared=len(candidates),
            semantic_provider_used=use_provider,
        )

    def _provider_similarity(self, a: RuleRecord, b: RuleRecord) -> float | None:
        try:
            value = float(self._provider.similarity(a, b))
        except Exception as exc:
            logger.warning("Semantic provider failed; falling back to lexical similarity: %s", exc)
            self.provider_error = str(exc) or type(exc).__name__
            return None
        self.provider_error = None
        return max(0.0, min(value, 1.0))


def _explain(duplicate_type: DuplicateType, matched: tuple[RuleMatch, ...], compared: int) -> str:
    if not matched:
        return f"No similar rules among {compared} candidate(s)"
    ids = ", ".join(m.id for m in matched)
    if duplicate_type is DuplicateType.WARNING:
        return f"Somewhat similar to {ids} (similarity {matched[0].similarity:.2f})"
    return f"{duplicate_type.value.capitalize()} duplicate of {ids} (similarity {matched[0].similarity:.2f})"


def _as_record(rule: RuleRecord | Mapping) -> RuleRecord:
    if isinstance(rule, RuleRecord):
        return rule
    return RuleRecord.from_dict(rule)
