"""
Prometheus metrics for repository operations (diagnostic side channel).
Challenge: Public methods only return bool / None / []; failures must still be observable.
Design: Every operation ends in an Outcome tag that is counted here and logged by the repository.
"""

from enum import Enum

from prometheus_client import Counter, Histogram


class Outcome(str, Enum):
    """How a repository operation ended. Never returned to callers."""

    OK = "ok"
    NOT_FOUND = "not_found"
    STORE_ERROR = "store_error"
    INVALID_INPUT = "invalid_input"


OPERATIONS_TOTAL = Counter(
    "sqlrepo_operations_total",
    "Repository operations by table, operation and outcome",
    ["table", "operation", "outcome"],
)

STATEMENT_DURATION = Histogram(
    "sqlrepo_statement_duration_seconds",
    "Time spent executing a repository statement (connection setup included)",
    ["table", "operation"],
)


def record_outcome(table: str, operation: str, outcome: Outcome) -> None:
    OPERATIONS_TOTAL.labels(table=table, operation=operation, outcome=outcome.value).inc()


def statement_timer(table: str, operation: str):
    """Context manager timing one statement round trip."""
    return STATEMENT_DURATION.labels(table=table, operation=operation).time()
