"""Swap-on-write holder for the active evaluation config."""

import dataclasses
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Self

import yaml

from .config import (
    EvaluationConfig,
    apply_overrides,
    config_from_dict,
    load_default_config,
    validate_config,
)
from .errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of a config update; ``errors`` lists every violated constraint."""

    success: bool
    errors: tuple[str, ...] = ()
    config: EvaluationConfig | None = None


class ConfigStore:
    """Holds the active EvaluationConfig and publishes replacements atomically.

    Readers take ``store.current`` without locking; the reference they get is
    an immutable config that stays consistent for as long as they hold it.
    Writers build a complete new config, validate it, and swap the reference
    under a lock so concurrent updates never interleave.
    """

    def __init__(self, initial: EvaluationConfig | None = None) -> None:
        config = initial or load_default_config()
        errors = validate_config(config)
        if errors:
            raise ConfigError(errors)
        self._config = config
        self._default = config
        self._write_lock = threading.Lock()

    @classmethod
    def from_file(cls, path: str | Path, fallback: EvaluationConfig | None = None) -> Self:
        """Create a store from a YAML file, falling back when it is unusable."""
        store = cls(fallback)
        store.reload(path)
        return store

    @property
    def current(self) -> EvaluationConfig:
        return self._config

    def update(self, overrides: dict) -> UpdateResult:
        """Apply explicit field overrides to the active config.

        The merged config is validated as a whole. On failure the active
        config is left untouched and every violation is reported.
        """
        with self._write_lock:
            base = self._config
            try:
                candidate = apply_overrides(base, overrides)
            except ConfigError as exc:
                return UpdateResult(success=False, errors=tuple(exc.errors))

            errors = validate_config(candidate)
            if errors:
                logger.warning("Rejected config update with %d violation(s)", len(errors))
                return UpdateResult(success=False, errors=tuple(errors))

            published = dataclasses.replace(candidate, version=base.version + 1)
            self._config = published
        logger.info("Published config version %d", published.version)
        return UpdateResult(success=True, config=published)

    def replace(self, config: EvaluationConfig) -> UpdateResult:
        """Replace the whole config with a validated one."""
        errors = validate_config(config)
        if errors:
            return UpdateResult(success=False, errors=tuple(errors))
        with self._write_lock:
            published = dataclasses.replace(config, version=self._config.version + 1)
            self._config = published
        return UpdateResult(success=True, config=published)

    def reset(self) -> EvaluationConfig:
        """Go back to the config the store was created with."""
        result = self.replace(self._default)
        return result.config

    def reload(self, path: str | Path) -> UpdateResult:
        """Load a YAML config file and publish it if it is valid.

        A missing, unparsable or invalid document keeps the last-known-good
        config and logs a warning instead of raising.
        """
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            config = config_from_dict(data)
        except FileNotFoundError:
            logger.warning("Config file not found: %s; keeping current config", path)
            return UpdateResult(success=False, errors=(f"Config file not found: {path}",))
        except yaml.YAMLError as exc:
            logger.warning("Config file %s is not valid YAML (%s); keeping current config", path, exc)
            return UpdateResult(success=False, errors=(f"Invalid YAML: {exc}",))
        except ConfigError as exc:
            logger.warning(
                "Config file %s failed validation; keeping current config: %s",
                path, "; ".join(exc.errors),
            )
            return UpdateResult(success=False, errors=tuple(exc.errors))

        result = self.replace(config)
        if result.success:
            logger.info("Loaded config from %s (version %d)", path, result.config.version)
        return result
