"""Shared rule fixtures."""

import copy

import pytest

from rule_curation.models import RuleRecord

STRONG_RULE = {
    "id": "perf-select-star",
    "title": "Avoid SELECT star queries on large tables because they fetch unused columns",
    "description": (
        "Using SELECT * is a common performance issue in production code. It reads "
        "every column of the table, defeats covering index usage and increases "
        "network impact. List only the columns the query needs, for example "
        "SELECT id, total FROM orders, which is commonly faster across all databases."
    ),
    "category": "performance",
    "severity": "medium",
    "sqlPattern": r"SELECT\s+\*\s+FROM\s+\w+",
    "examples": {
        "bad": ["SELECT * FROM orders WHERE status = 'open'"],
        "good": ["SELECT id, total FROM orders WHERE status = 'open'"],
    },
    "tags": ["performance", "select", "columns"],
    "metadata": {
        "databases": ["mysql", "postgresql", "sqlite"],
        "remediation": "Name the required columns explicitly.",
        "references": ["https://use-the-index-luke.com/sql/clustering/index-only-scan-covering-index"],
    },
}

TOPICS = [
    ("performance", "medium", "leading wildcard LIKE filters", "LIKE", "scan"),
    ("security", "high", "dynamic SQL built from request data", "EXECUTE", "injection"),
    ("standards", "low", "implicit column order in INSERT", "INSERT", "naming"),
    ("maintainability", "low", "deeply nested subqueries", "SELECT", "complex"),
    ("reliability", "high", "long transactions holding row locks", "UPDATE", "deadlock"),
    ("compatibility", "medium", "vendor specific LIMIT syntax", "LIMIT", "portable"),
    ("data_integrity", "critical", "DELETE statements without WHERE", "DELETE", "orphan"),
]


@pytest.fixture
def strong_rule_data():
    return copy.deepcopy(STRONG_RULE)


@pytest.fixture
def strong_rule(strong_rule_data):
    return RuleRecord.from_dict(strong_rule_data)


@pytest.fixture
def empty_rule():
    return RuleRecord(id="empty-draft", title="", description="", category="standards", severity="low")


@pytest.fixture
def distinct_rules():
    """Build ``n`` rules that do not resemble each other."""

    def build(n: int) -> list[RuleRecord]:
        rules = []
        for i in range(n):
            category, severity, subject, keyword, term = TOPICS[i % len(TOPICS)]
            rules.append(RuleRecord.from_dict({
                "id": f"rule-{i:03d}",
                "title": f"Flag {subject} in module{i} queries",
                "description": f"Variant{i} guidance: {subject} cause {term} problems in service{i}.",
                "category": category,
                "severity": severity,
                "sqlPattern": rf"{keyword}\s+token{i}",
                "examples": {"bad": [f"{keyword} token{i} FROM t{i}"]},
                "tags": [f"topic{i}"],
            }))
        return rules

    return build
