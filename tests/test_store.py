"""Tests for the swap-on-write config store."""

import logging
import threading

import pytest

from rule_curation.config import (
    ClassificationConfig,
    ClassificationThresholds,
    EvaluationConfig,
    config_from_dict,
)
from rule_curation.errors import ConfigError
from rule_curation.store import ConfigStore

FIXTURES_DIR = "tests/fixtures"


@pytest.fixture
def store():
    return ConfigStore()


class TestConfigStore:
    def test_starts_with_defaults(self, store):
        assert store.current == EvaluationConfig()
        assert store.current.version == 1

    def test_invalid_initial_config_raises(self):
        bad = EvaluationConfig(
            classification=ClassificationConfig(thresholds=ClassificationThresholds(approval_score=10.0)),
        )
        with pytest.raises(ConfigError):
            ConfigStore(bad)

    def test_update_publishes_new_version(self, store):
        before = store.current
        result = store.update({"performance": {"concurrency": 6}})
        assert result.success
        assert result.errors == ()
        assert store.current.performance.concurrency == 6
        assert store.current.version == before.version + 1
        # Snapshots held by readers never change
        assert before.performance.concurrency == 3

    def test_rejected_update_keeps_config(self, store):
        before = store.current
        result = store.update({"qualityAssessment": {"dimensionWeights": {"accuracy": 0.5}}})
        assert not result.success
        assert any("must sum to 1.0" in e for e in result.errors)
        assert store.current is before

    def test_unknown_key_reported(self, store):
        result = store.update({"performance": {"workers": 2}})
        assert not result.success
        assert result.errors == ("Unknown config key: 'performance.workers'",)

    def test_reset_restores_initial_values(self, store):
        store.update({"performance": {"concurrency": 9}})
        config = store.reset()
        assert config.performance.concurrency == 3
        assert config.version == 3

    def test_concurrent_updates_all_apply(self, store):
        def bump():
            for _ in range(20):
                store.update({"classification": {"thresholds": {"minConfidence": 0.6}}})

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.current.version == 1 + 80


class TestReload:
    def test_reload_valid_file(self, store):
        result = store.reload(f"{FIXTURES_DIR}/test_config.yaml")
        assert result.success
        assert store.current.classification.thresholds.approval_score == 70

    def test_invalid_file_keeps_last_known_good(self, store, caplog):
        store.update({"performance": {"concurrency": 4}})
        good = store.current
        with caplog.at_level(logging.WARNING, logger="rule_curation.store"):
            result = store.reload(f"{FIXTURES_DIR}/invalid_config.yaml")
        assert not result.success
        assert store.current is good
        assert "failed validation" in caplog.text

    def test_unparsable_file_keeps_config(self, store):
        before = store.current
        result = store.reload(f"{FIXTURES_DIR}/malformed_config.yaml")
        assert not result.success
        assert result.errors[0].startswith("Invalid YAML")
        assert store.current is before

    def test_missing_file_keeps_config(self, store, tmp_path):
        before = store.current
        result = store.reload(tmp_path / "missing.yaml")
        assert not result.success
        assert store.current is before

    def test_from_file_falls_back(self):
        fallback = config_from_dict({"performance": {"concurrency": 7}})
        store = ConfigStore.from_file(f"{FIXTURES_DIR}/invalid_config.yaml", fallback=fallback)
        assert store.current.performance.concurrency == 7

    def test_from_file_loads(self):
        store = ConfigStore.from_file(f"{FIXTURES_DIR}/test_config.yaml")
        assert store.current.performance.batch_size == 5
