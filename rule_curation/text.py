"""Text normalization shared by the quality checks and the duplicate signals."""

import re

_PUNCTUATION_RE = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")
_WORD_RE = re.compile(r"\w+", re.UNICODE)

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "in", "on", "for", "with", "to", "of", "is",
    "are", "be", "by", "it", "this", "that", "as", "at", "from", "when", "which",
    "can", "will", "not", "no", "into", "than", "then", "their", "its",
    "rule", "sql", "check", "use", "avoid", "prevent", "method",
})

SQL_KEYWORDS = frozenset({
    "select", "insert", "update", "delete", "create", "drop", "alter", "truncate",
    "merge", "join", "where", "group", "order", "having", "union", "limit",
    "offset", "distinct", "exists", "between", "like", "index", "table", "view",
    "procedure", "function", "trigger", "cursor", "grant", "revoke", "commit",
    "rollback", "values", "set", "from", "into",
})

TECHNICAL_TERMS = frozenset({
    "query", "index", "table", "join", "transaction", "lock", "schema", "statement",
    "clause", "column", "row", "scan", "subquery", "cursor", "injection",
    "parameter", "privilege", "constraint", "primary", "foreign", "key",
    "performance", "optimization", "cache", "latency", "security", "encryption",
    "vulnerability", "authentication", "authorization", "deadlock", "partition",
})

VAGUE_INDICATORS = (
    "maybe", "perhaps", "possibly", "might", "probably", "seems like",
    "appears to be", "sort of", "kind of", "somewhat",
)

ACTION_WORDS = frozenset({
    "avoid", "prevent", "use", "implement", "apply", "follow", "ensure", "check",
    "verify", "optimize", "improve", "fix", "replace", "add", "remove", "limit",
    "restrict", "parameterize", "index", "rewrite", "specify", "validate",
})


def normalize(text: str) -> str:
    """Lowercase, trim and collapse runs of whitespace."""
    return _WHITESPACE_RE.sub(" ", (text or "").lower()).strip()


def strip_punctuation(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", _PUNCTUATION_RE.sub(" ", text)).strip()


def words(text: str) -> list[str]:
    """Split text into lowercase word tokens, keeping stop words."""
    return _WORD_RE.findall((text or "").lower())


def tokens(text: str) -> frozenset[str]:
    """Content-bearing tokens: lowercase words minus stop words and single characters."""
    return frozenset(w for w in words(text) if len(w) > 1 and w not in STOP_WORDS)


def jaccard(a: frozenset | set, b: frozenset | set) -> float:
    """Jaccard overlap of two sets; two empty sets are identical."""
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def contains_any(text: str, phrases) -> bool:
    lowered = (text or "").lower()
    return any(phrase in lowered for phrase in phrases)
