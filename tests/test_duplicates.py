"""Tests for duplicate detection and the corpus index."""

import dataclasses
import logging

import pytest

from rule_curation.config import EvaluationConfig, apply_overrides
from rule_curation.duplicates import (
    LEXICAL_CONFIDENCE_FACTOR,
    CorpusIndex,
    DuplicateDetector,
    IndexEntry,
    SemanticProvider,
    exact_similarity,
    load_semantic_provider,
    pattern_shape,
    resolve_type,
    structural_similarity,
)
from rule_curation.models import DuplicateType, RuleRecord


class ConstantProvider:
    def __init__(self, value: float = 1.0) -> None:
        self.value = value
        self.calls = 0

    def similarity(self, a, b):
        self.calls += 1
        return self.value


class FailingProvider:
    def similarity(self, a, b):
        raise ConnectionError("embedding service unavailable")


@pytest.fixture
def config():
    return EvaluationConfig()


@pytest.fixture
def detector():
    return DuplicateDetector()


@pytest.fixture
def unrelated_rule():
    return RuleRecord.from_dict({
        "id": "sec-grant-all",
        "title": "Do not grant ALL PRIVILEGES to application accounts",
        "description": "Application accounts should receive only the privileges they need.",
        "category": "security",
        "severity": "high",
        "sqlPattern": r"GRANT\s+ALL\s+PRIVILEGES",
        "tags": ["privileges"],
    })


class TestCorpusIndex:
    def test_build(self, strong_rule, unrelated_rule):
        index = CorpusIndex.build([strong_rule, unrelated_rule])
        assert index.size == 2
        assert index.version == 1
        assert "perf-select-star" in index

    def test_build_from_documents(self, strong_rule_data):
        index = CorpusIndex.build([strong_rule_data])
        assert index.entries[0].rule == RuleRecord.from_dict(strong_rule_data)

    def test_with_rules_returns_new_index(self, strong_rule, unrelated_rule):
        index = CorpusIndex.build([strong_rule])
        bigger = index.with_rules([unrelated_rule])
        assert index.size == 1
        assert bigger.size == 2
        assert bigger.version == index.version + 1

    def test_same_id_replaced(self, strong_rule):
        index = CorpusIndex.build([strong_rule])
        updated = index.with_rules([dataclasses.replace(strong_rule, severity="high")])
        assert updated.size == 1
        assert updated.entries[0].severity == "high"

    def test_candidates_by_category(self, strong_rule, unrelated_rule):
        index = CorpusIndex.build([strong_rule, unrelated_rule])
        submitted = IndexEntry.from_rule(dataclasses.replace(strong_rule, id="submitted", title="Different"))
        assert [c.id for c in index.candidates(submitted)] == ["perf-select-star"]

    def test_candidates_by_fingerprint(self, strong_rule):
        index = CorpusIndex.build([strong_rule])
        moved = IndexEntry.from_rule(dataclasses.replace(strong_rule, id="moved", category="standards"))
        assert [c.id for c in index.candidates(moved)] == ["perf-select-star"]


class TestSignals:
    def test_exact_identical_text(self, strong_rule):
        a = IndexEntry.from_rule(strong_rule)
        assert exact_similarity(a, a) == 1.0

    def test_exact_ignoring_punctuation(self, strong_rule):
        a = IndexEntry.from_rule(strong_rule)
        b = IndexEntry.from_rule(dataclasses.replace(strong_rule, title=strong_rule.title + "!"))
        assert exact_similarity(a, b) == 0.98

    def test_exact_containment(self):
        a = IndexEntry.from_rule(RuleRecord(id="a", title="Avoid cartesian joins"))
        b = IndexEntry.from_rule(RuleRecord(id="b", title="Avoid cartesian joins", description="between big tables"))
        assert exact_similarity(a, b) == 0.95

    def test_exact_requires_text(self):
        a = IndexEntry.from_rule(RuleRecord(id="a"))
        assert exact_similarity(a, a) == 0.0

    def test_structural_components(self):
        a = IndexEntry.from_rule(RuleRecord(id="a", category="security", severity="critical", sql_pattern=r"GRANT\s+ALL"))
        b = IndexEntry.from_rule(RuleRecord(id="b", category="security", severity="info", sql_pattern=r"REVOKE\s+ALL"))
        # Same category, opposite severities, shapes differ in one keyword
        assert structural_similarity(a, b) == pytest.approx(0.4 + 0.0 + 0.3 * 0.75)

    def test_missing_categories_match(self, strong_rule):
        a = IndexEntry.from_rule(dataclasses.replace(strong_rule, category=""))
        assert structural_similarity(a, a) == pytest.approx(1.0)

    def test_pattern_shape(self):
        assert pattern_shape(r"SELECT\s+\*\s+FROM\s+orders") == ("select", "\\s", "+", "\\", "*", "\\s", "+", "from", "\\s", "+", "w")

    @pytest.mark.parametrize(("similarity", "expected"), [
        (0.99, DuplicateType.EXACT),
        (0.95, DuplicateType.EXACT),
        (0.9, DuplicateType.SEMANTIC),
        (0.8, DuplicateType.STRUCTURAL),
        (0.6, DuplicateType.WARNING),
        (0.59, DuplicateType.NONE),
    ])
    def test_resolve_type(self, similarity, expected, config):
        assert resolve_type(similarity, config.duplicate_detection.thresholds) is expected


class TestDuplicateDetector:
    def test_identical_copy_is_exact(self, detector, config, strong_rule):
        index = CorpusIndex.build([strong_rule])
        result = detector.check(dataclasses.replace(strong_rule, id="copy"), index, config)
        assert result.is_duplicate
        assert result.duplicate_type is DuplicateType.EXACT
        assert result.similarity == pytest.approx(1.0)
        assert [m.id for m in result.matched_rules] == ["perf-select-star"]

    def test_copy_without_category_is_exact(self, detector, config, strong_rule):
        uncategorized = dataclasses.replace(strong_rule, category="")
        index = CorpusIndex.build([uncategorized])
        result = detector.check(dataclasses.replace(uncategorized, id="copy"), index, config)
        assert result.duplicate_type is DuplicateType.EXACT
        assert result.similarity == pytest.approx(1.0)

    def test_unrelated_rule_is_not_duplicate(self, detector, config, strong_rule, unrelated_rule):
        index = CorpusIndex.build([strong_rule])
        result = detector.check(unrelated_rule, index, config)
        assert not result.is_duplicate
        assert result.duplicate_type is DuplicateType.NONE
        assert result.matched_rules == ()
        assert result.candidates_compared == 0

    def test_empty_index(self, detector, config, strong_rule):
        result = detector.check(strong_rule, CorpusIndex(), config)
        assert result.duplicate_type is DuplicateType.NONE
        assert result.confidence == pytest.approx(0.9 * LEXICAL_CONFIDENCE_FACTOR)

    def test_extra_entries_compared(self, detector, config, strong_rule):
        earlier = IndexEntry.from_rule(strong_rule)
        result = detector.check(dataclasses.replace(strong_rule, id="second"), CorpusIndex(), config, extra=[earlier])
        assert result.duplicate_type is DuplicateType.EXACT
        assert result.candidates_compared == 1

    def test_ties_all_reported(self, detector, config, strong_rule):
        twins = [dataclasses.replace(strong_rule, id="one"), dataclasses.replace(strong_rule, id="two")]
        result = detector.check(strong_rule, CorpusIndex.build(twins), config)
        assert sorted(m.id for m in result.matched_rules) == ["one", "two"]

    def test_warning_is_not_duplicate(self, detector, strong_rule):
        config = apply_overrides(EvaluationConfig(), {
            "duplicateDetection": {"thresholds": {"exact": 0.9, "semantic": 0.8, "structural": 0.7, "warning": 0.3}},
        })
        near = dataclasses.replace(strong_rule, id="near", title="Prefer explicit column lists", description="Name columns.")
        result = detector.check(near, CorpusIndex.build([strong_rule]), config)
        assert result.duplicate_type is DuplicateType.WARNING
        assert not result.is_duplicate
        assert result.matched_rules

    def test_disabled(self, detector, strong_rule):
        config = apply_overrides(EvaluationConfig(), {"duplicateDetection": {"enabled": False}})
        result = detector.check(strong_rule, CorpusIndex.build([strong_rule]), config)
        assert not result.is_duplicate
        assert result.duplicate_type is DuplicateType.NONE
        assert result.confidence >= config.classification.thresholds.min_confidence

    def test_deterministic(self, detector, config, strong_rule, unrelated_rule):
        index = CorpusIndex.build([strong_rule, unrelated_rule])
        submitted = dataclasses.replace(strong_rule, id="submitted", severity="high")
        assert detector.check(submitted, index, config) == detector.check(submitted, index, config)


class TestSemanticProvider:
    def test_provider_used(self, config, strong_rule):
        provider = ConstantProvider(1.0)
        detector = DuplicateDetector(semantic_provider=provider)
        result = detector.check(dataclasses.replace(strong_rule, id="copy"), CorpusIndex.build([strong_rule]), config)
        assert provider.calls == 1
        assert result.semantic_provider_used
        assert result.confidence == pytest.approx(1.0)

    def test_lexical_confidence_is_lower(self, config, strong_rule):
        index = CorpusIndex.build([strong_rule])
        submitted = dataclasses.replace(strong_rule, id="copy")
        with_provider = DuplicateDetector(ConstantProvider(1.0)).check(submitted, index, config)
        lexical = DuplicateDetector().check(submitted, index, config)
        assert not lexical.semantic_provider_used
        assert lexical.confidence < with_provider.confidence

    def test_failing_provider_falls_back(self, config, strong_rule, caplog):
        detector = DuplicateDetector(FailingProvider())
        with caplog.at_level(logging.WARNING, logger="rule_curation.duplicates"):
            result = detector.check(dataclasses.replace(strong_rule, id="copy"), CorpusIndex.build([strong_rule]), config)
        assert result.duplicate_type is DuplicateType.EXACT
        assert not result.semantic_provider_used
        assert detector.provider_error == "embedding service unavailable"
        assert "falling back" in caplog.text

    def test_protocol(self):
        assert isinstance(ConstantProvider(), SemanticProvider)

    def test_load_function_provider(self):
        provider = load_semantic_provider("rule_curation.duplicates:lexical_semantic_similarity")
        assert isinstance(provider, SemanticProvider)

    def test_load_rejects_non_callable(self):
        with pytest.raises(TypeError):
            load_semantic_provider("rule_curation.duplicates:LEXICAL_CONFIDENCE_FACTOR")
