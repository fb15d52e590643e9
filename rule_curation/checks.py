"""Built-in quality checks and the loader for extra checks.

A check is a plain callable ``check(rule) -> CheckResult | None``. It returns
a result carrying a positive or negative delta for its dimension when it
fires, and None otherwise. Dimension scores start from a base value, add the
deltas of every check that fired, and are clamped to 0..100.
"""

import importlib
import re
from typing import Callable

import regex

from .models import VALID_CATEGORIES, VALID_SEVERITIES, CheckResult, RuleRecord
from .text import (
    ACTION_WORDS,
    SQL_KEYWORDS,
    TECHNICAL_TERMS,
    VAGUE_INDICATORS,
    contains_any,
    words,
)

Check = Callable[[RuleRecord], CheckResult | None]

DIMENSION_BASES: dict[str, float] = {
    "accuracy": 50.0,
    "practicality": 20.0,
    "completeness": 0.0,
    "generality": 40.0,
    "consistency": 40.0,
}

# Severities a rule of each category is normally filed under.
CATEGORY_SEVERITY_NORMS: dict[str, frozenset[str]] = {
    "security": frozenset({"critical", "high"}),
    "performance": frozenset({"high", "medium", "low"}),
    "standards": frozenset({"medium", "low", "info"}),
    "maintainability": frozenset({"medium", "low", "info"}),
    "reliability": frozenset({"critical", "high", "medium"}),
    "compatibility": frozenset({"medium", "low"}),
    "data_integrity": frozenset({"critical", "high", "medium"}),
}

CATEGORY_VOCABULARY: dict[str, tuple[str, ...]] = {
    "performance": ("performance", "slow", "scan", "index", "latency", "efficient", "throughput", "expensive", "load"),
    "security": ("injection", "privilege", "password", "sensitive", "attack", "security", "escape", "permission", "credential"),
    "standards": ("naming", "convention", "style", "format", "standard", "consistent", "readab"),
    "maintainability": ("maintain", "readab", "complex", "clarity", "refactor"),
    "reliability": ("deadlock", "transaction", "timeout", "retry", "failure", "consistency", "lock"),
    "compatibility": ("dialect", "portable", "compatib", "version", "vendor"),
    "data_integrity": ("constraint", "integrity", "null", "foreign key", "orphan", "duplicate rows"),
}

SPECIFIC_DATABASES = (
    "mysql", "postgresql", "postgres", "oracle", "sql server", "mssql",
    "sqlite", "mariadb", "db2", "snowflake", "bigquery",
)

BROAD_APPLICABILITY = (
    "general", "common", "universal", "best practice", "widely", "typically",
    "any database", "all databases", "most databases", "across",
)

THEORETICAL_INDICATORS = ("theoretical", "academic", "research", "concept", "principle", "theory", "framework")
PRACTICAL_INDICATORS = ("example", "implementation", "query", "sql", "code")

REMEDIATION_KEYS = ("remediation", "fix", "solution", "recommendation")
REFERENCE_KEYS = ("references", "reference", "links", "docs")
VARIANT_KEYS = ("databases", "dialects", "variants")

# Matcher searches run against drafted, untrusted patterns: bound both input and time.
MATCH_TIMEOUT_S = 0.25
MAX_EXAMPLE_LENGTH = 2000

BROAD_PATTERNS = frozenset({".*", ".+", "\\w+", "\\w*", "\\s+", "\\S+", "[\\s\\S]*", "(.*)"})
MAX_PATTERN_LENGTH = 200

_REGEX_SYNTAX_RE = re.compile(r"\\[a-zA-Z]|[.*+?^$()\[\]{}|\\]")


def load_check(dotted_path: str) -> Check:
    """Load a check callable from a dotted path.

    Supports two formats:
    - "module.path:function_name" (colon separator)
    - "module.path.function_name" (dot separator, last segment is the function)
    """
    if ":" in dotted_path:
        module_path, func_name = dotted_path.rsplit(":", 1)
    else:
        module_path, func_name = dotted_path.rsplit(".", 1)

    module = importlib.import_module(module_path)
    func = getattr(module, func_name)

    if not callable(func):
        raise TypeError(f"Check {dotted_path!r} is not callable")

    return func


def compile_pattern(pattern: str) -> regex.Pattern | None:
    """Compile a rule's matcher case-insensitively; None if it is not a valid regex."""
    try:
        return regex.compile(pattern, regex.IGNORECASE)
    except regex.error:
        return None


def pattern_search(compiled: regex.Pattern, text: str) -> bool | None:
    """Search an example with the rule's matcher.

    Returns None when the search runs past ``MATCH_TIMEOUT_S``, which is
    how catastrophic backtracking shows up. Examples are truncated to
    ``MAX_EXAMPLE_LENGTH`` characters first.
    """
    try:
        return compiled.search(text[:MAX_EXAMPLE_LENGTH], timeout=MATCH_TIMEOUT_S) is not None
    except TimeoutError:
        return None


def literal_characters(pattern: str) -> int:
    """Count the alphanumeric characters left once regex syntax is removed."""
    stripped = _REGEX_SYNTAX_RE.sub("", pattern)
    return sum(1 for ch in stripped if ch.isalnum())


def is_overly_broad(pattern: str) -> bool:
    return pattern.strip() in BROAD_PATTERNS or literal_characters(pattern) < 4


def _text(rule: RuleRecord) -> str:
    return f"{rule.title} {rule.description}"


def _has_sql(snippet: str) -> bool:
    return any(w in SQL_KEYWORDS for w in words(snippet))


def _metadata_value(rule: RuleRecord, keys: tuple[str, ...]):
    for key in keys:
        value = rule.metadata.get(key)
        if value:
            return value
    return None


def _declared_variants(rule: RuleRecord) -> int:
    value = _metadata_value(rule, VARIANT_KEYS)
    if value is None:
        return 0
    if isinstance(value, str):
        return len([v for v in re.split(r"[,\s]+", value) if v])
    if isinstance(value, (list, tuple, set, frozenset)):
        return len(value)
    return 1


# -- completeness --

def check_title_present(rule: RuleRecord) -> CheckResult | None:
    if rule.title:
        return CheckResult("title_present", "completeness", 10, "Rule has a title")
    return None


def check_title_descriptive(rule: RuleRecord) -> CheckResult | None:
    if len(words(rule.title)) >= 5:
        return CheckResult("title_descriptive", "completeness", 10, "Title has at least 5 words")
    return None


def check_description_present(rule: RuleRecord) -> CheckResult | None:
    if rule.description:
        return CheckResult("description_present", "completeness", 10, "Rule has a description")
    return None


def check_description_detailed(rule: RuleRecord) -> CheckResult | None:
    if len(words(rule.description)) >= 15:
        return CheckResult("description_detailed", "completeness", 10, "Description has at least 15 words")
    return None


def check_description_thorough(rule: RuleRecord) -> CheckResult | None:
    if len(words(rule.description)) >= 30:
        return CheckResult("description_thorough", "completeness", 5, "Description has at least 30 words")
    return None


def check_has_pattern(rule: RuleRecord) -> CheckResult | None:
    if rule.sql_pattern:
        return CheckResult("has_pattern", "completeness", 10, "Rule declares a SQL pattern")
    return None


def check_has_bad_examples(rule: RuleRecord) -> CheckResult | None:
    if rule.examples.bad:
        return CheckResult("has_bad_examples", "completeness", 15, "Rule lists SQL it should flag")
    return None


def check_has_good_examples(rule: RuleRecord) -> CheckResult | None:
    if rule.examples.good:
        return CheckResult("has_good_examples", "completeness", 15, "Rule lists compliant SQL")
    return None


def check_valid_classification(rule: RuleRecord) -> CheckResult | None:
    if rule.category in VALID_CATEGORIES and rule.severity in VALID_SEVERITIES:
        return CheckResult("valid_classification", "completeness", 10, "Category and severity are recognised")
    return None


def check_has_tags(rule: RuleRecord) -> CheckResult | None:
    if rule.tags:
        return CheckResult("has_tags", "completeness", 5, "Rule is tagged")
    return None


def check_missing_information(rule: RuleRecord) -> CheckResult | None:
    if len(rule.title) < 5 or len(rule.description) < 20:
        return CheckResult(
            "missing_information", "completeness", -15,
            "Title or description is missing or too short to explain the rule",
        )
    return None


# -- practicality --

def check_concrete_bad_examples(rule: RuleRecord) -> CheckResult | None:
    if any(_has_sql(example) for example in rule.examples.bad):
        return CheckResult("concrete_bad_examples", "practicality", 20, "Bad examples contain real SQL")
    return None


def check_concrete_good_examples(rule: RuleRecord) -> CheckResult | None:
    if any(_has_sql(example) for example in rule.examples.good):
        return CheckResult("concrete_good_examples", "practicality", 15, "Good examples contain real SQL")
    return None


def check_actionable_wording(rule: RuleRecord) -> CheckResult | None:
    if ACTION_WORDS.intersection(words(_text(rule))):
        return CheckResult("actionable_wording", "practicality", 15, "Rule tells the reader what to do")
    return None


def check_remediation_metadata(rule: RuleRecord) -> CheckResult | None:
    if _metadata_value(rule, REMEDIATION_KEYS):
        return CheckResult("remediation_metadata", "practicality", 15, "Metadata describes a remediation")
    return None


def check_references_metadata(rule: RuleRecord) -> CheckResult | None:
    if _metadata_value(rule, REFERENCE_KEYS):
        return CheckResult("references_metadata", "practicality", 10, "Metadata cites references")
    return None


def check_distinct_good_example(rule: RuleRecord) -> CheckResult | None:
    bad, good = rule.examples.bad, rule.examples.good
    if bad and good and set(bad) != set(good):
        return CheckResult("distinct_good_example", "practicality", 5, "Good examples differ from bad ones")
    return None


def check_no_examples(rule: RuleRecord) -> CheckResult | None:
    if not rule.examples.bad and not rule.examples.good:
        return CheckResult("no_examples", "practicality", -10, "Rule has no examples at all")
    return None


def check_too_theoretical(rule: RuleRecord) -> CheckResult | None:
    text = _text(rule).lower()
    theoretical = sum(1 for indicator in THEORETICAL_INDICATORS if indicator in text)
    if theoretical > 2 and not contains_any(text, PRACTICAL_INDICATORS):
        return CheckResult("too_theoretical", "practicality", -15, "Rule reads as theory without practical guidance")
    return None


# -- generality --

def check_declared_variants(rule: RuleRecord) -> CheckResult | None:
    count = _declared_variants(rule)
    if count >= 3:
        delta = 30
    elif count == 2:
        delta = 20
    elif count == 1:
        delta = 10
    else:
        return None
    return CheckResult("declared_variants", "generality", delta, f"Rule applies to {count} declared SQL variant(s)")


def check_dialect_agnostic(rule: RuleRecord) -> CheckResult | None:
    if _declared_variants(rule) == 0 and not contains_any(_text(rule), SPECIFIC_DATABASES):
        return CheckResult("dialect_agnostic", "generality", 15, "Rule is not tied to a specific database")
    return None


def check_tag_breadth(rule: RuleRecord) -> CheckResult | None:
    if len(rule.tags) >= 3:
        return CheckResult("tag_breadth", "generality", 15, f"Rule carries {len(rule.tags)} tags")
    if rule.tags:
        return CheckResult("tag_breadth", "generality", 8, f"Rule carries {len(rule.tags)} tag(s)")
    return None


def check_broad_applicability(rule: RuleRecord) -> CheckResult | None:
    if contains_any(_text(rule), BROAD_APPLICABILITY):
        return CheckResult("broad_applicability", "generality", 15, "Rule describes broadly applicable guidance")
    return None


def check_overly_long_pattern(rule: RuleRecord) -> CheckResult | None:
    if len(rule.sql_pattern) > MAX_PATTERN_LENGTH:
        return CheckResult(
            "overly_long_pattern", "generality", -10,
            f"Pattern is longer than {MAX_PATTERN_LENGTH} characters and likely matches one query only",
        )
    return None


# -- consistency --

def check_severity_norms(rule: RuleRecord) -> CheckResult | None:
    norms = CATEGORY_SEVERITY_NORMS.get(rule.category)
    if norms is None or rule.severity not in VALID_SEVERITIES:
        return None
    if rule.severity in norms:
        return CheckResult("severity_norms", "consistency", 25, f"Severity {rule.severity!r} fits category {rule.category!r}")
    return CheckResult(
        "severity_norms", "consistency", -15,
        f"Severity {rule.severity!r} is unusual for category {rule.category!r}",
    )


def check_category_vocabulary(rule: RuleRecord) -> CheckResult | None:
    vocabulary = CATEGORY_VOCABULARY.get(rule.category)
    if vocabulary and contains_any(_text(rule), vocabulary):
        return CheckResult("category_vocabulary", "consistency", 15, "Text uses the vocabulary of its category")
    return None


def check_pattern_matches_bad(rule: RuleRecord) -> CheckResult | None:
    compiled = compile_pattern(rule.sql_pattern) if rule.sql_pattern else None
    if compiled is not None and any(pattern_search(compiled, example) for example in rule.examples.bad):
        return CheckResult("pattern_matches_bad", "consistency", 20, "Pattern matches the bad examples")
    return None


def check_pattern_matches_good(rule: RuleRecord) -> CheckResult | None:
    compiled = compile_pattern(rule.sql_pattern) if rule.sql_pattern else None
    if compiled is not None and any(pattern_search(compiled, example) for example in rule.examples.good):
        return CheckResult("pattern_matches_good", "consistency", -15, "Pattern also matches a good example")
    return None


# -- accuracy --

def check_pattern_missing(rule: RuleRecord) -> CheckResult | None:
    if not rule.sql_pattern:
        return CheckResult("pattern_missing", "accuracy", -20, "Rule has no SQL pattern to match on")
    return None


def check_pattern_invalid(rule: RuleRecord) -> CheckResult | None:
    if rule.sql_pattern and compile_pattern(rule.sql_pattern) is None:
        return CheckResult("pattern_invalid", "accuracy", -25, "SQL pattern is not a valid regular expression")
    return None


def check_pattern_too_slow(rule: RuleRecord) -> CheckResult | None:
    compiled = compile_pattern(rule.sql_pattern) if rule.sql_pattern else None
    if compiled is None:
        return None
    examples = rule.examples.bad + rule.examples.good
    if any(pattern_search(compiled, example) is None for example in examples):
        return CheckResult(
            "pattern_too_slow", "accuracy", -25,
            f"SQL pattern did not finish matching an example within {MATCH_TIMEOUT_S:g}s",
        )
    return None


def check_pattern_overly_broad(rule: RuleRecord) -> CheckResult | None:
    if rule.sql_pattern and is_overly_broad(rule.sql_pattern):
        return CheckResult("pattern_overly_broad", "accuracy", -30, "SQL pattern is broad enough to match almost anything")
    return None


def check_pattern_sql_vocabulary(rule: RuleRecord) -> CheckResult | None:
    if rule.sql_pattern and _has_sql(_REGEX_SYNTAX_RE.sub(" ", rule.sql_pattern)):
        return CheckResult("pattern_sql_vocabulary", "accuracy", 15, "Pattern anchors on SQL keywords")
    return None


def check_pattern_precise(rule: RuleRecord) -> CheckResult | None:
    pattern = rule.sql_pattern
    if pattern and compile_pattern(pattern) is not None and literal_characters(pattern) >= 8:
        return CheckResult("pattern_precise", "accuracy", 10, "Pattern carries enough literal text to be specific")
    return None


def check_title_length(rule: RuleRecord) -> CheckResult | None:
    if 10 <= len(rule.title) <= 120:
        return CheckResult("title_length", "accuracy", 10, "Title length is between 10 and 120 characters")
    return None


def check_description_length(rule: RuleRecord) -> CheckResult | None:
    if len(rule.description) >= 50:
        return CheckResult("description_length", "accuracy", 10, "Description is at least 50 characters")
    return None


def check_technical_vocabulary(rule: RuleRecord) -> CheckResult | None:
    if TECHNICAL_TERMS.intersection(words(_text(rule))):
        return CheckResult("technical_vocabulary", "accuracy", 5, "Text uses precise technical terms")
    return None


def check_vague_wording(rule: RuleRecord) -> CheckResult | None:
    if contains_any(_text(rule), VAGUE_INDICATORS):
        return CheckResult("vague_wording", "accuracy", -10, "Text hedges with vague wording")
    return None


BUILTIN_CHECKS: tuple[Check, ...] = (
    check_title_present,
    check_title_descriptive,
    check_description_present,
    check_description_detailed,
    check_description_thorough,
    check_has_pattern,
    check_has_bad_examples,
    check_has_good_examples,
    check_valid_classification,
    check_has_tags,
    check_missing_information,
    check_concrete_bad_examples,
    check_concrete_good_examples,
    check_actionable_wording,
    check_remediation_metadata,
    check_references_metadata,
    check_distinct_good_example,
    check_no_examples,
    check_too_theoretical,
    check_declared_variants,
    check_dialect_agnostic,
    check_tag_breadth,
    check_broad_applicability,
    check_overly_long_pattern,
    check_severity_norms,
    check_category_vocabulary,
    check_pattern_matches_bad,
    check_pattern_matches_good,
    check_pattern_missing,
    check_pattern_invalid,
    check_pattern_too_slow,
    check_pattern_overly_broad,
    check_pattern_sql_vocabulary,
    check_pattern_precise,
    check_title_length,
    check_description_length,
    check_technical_vocabulary,
    check_vague_wording,
)

# Suggestions offered when a positive check did not fire.
MISSING_SUGGESTIONS: dict[str, str] = {
    "title_descriptive": "Expand the title to describe the problem the rule detects",
    "description_detailed": "Explain the problem, its impact and the fix in the description",
    "has_pattern": "Add a SQL pattern so the rule can be matched automatically",
    "has_bad_examples": "Add at least one SQL example the rule should flag",
    "has_good_examples": "Add a compliant SQL example showing the fix",
    "valid_classification": "Use a recognised category and severity",
    "has_tags": "Tag the rule so it can be found and grouped",
    "remediation_metadata": "Describe the remediation in metadata",
    "declared_variants": "Declare the SQL dialects the rule applies to",
    "pattern_matches_bad": "Make sure the pattern matches the bad examples",
}
