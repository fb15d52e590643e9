"""Exception taxonomy for rule-curation."""


class RuleCurationError(Exception):
    """Base exception for all rule-curation errors."""

    def __init__(self, message: str, details: dict[str, str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ValidationError(RuleCurationError):
    """Raised when a rule document is malformed."""

    def __init__(self, errors: list[str], rule_id: str | None = None):
        details = {"rule_id": rule_id} if rule_id else None
        super().__init__("Invalid rule: " + "; ".join(errors), details=details)
        self.errors = list(errors)
        self.rule_id = rule_id


class ComputationError(RuleCurationError):
    """Raised when a scoring or similarity step fails or overruns its budget."""

    def __init__(self, phase: str, message: str):
        super().__init__(message, details={"phase": phase})
        self.phase = phase


class CapacityError(RuleCurationError):
    """Raised when a batch is larger than the configured maximum."""

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Batch of {size} rules exceeds the maximum batch size",
            details={"size": str(size), "limit": str(limit)},
        )
        self.size = size
        self.limit = limit


class ConfigError(RuleCurationError):
    """Raised when weights or thresholds violate their constraints."""

    def __init__(self, errors: list[str]):
        super().__init__("Invalid configuration: " + "; ".join(errors))
        self.errors = list(errors)
