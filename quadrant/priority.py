"""Priority labels: a closed three-value enum plus free-text normalization."""
from __future__ import annotations

from enum import StrEnum


class Priority(StrEnum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


# Accepted spellings per canonical value (English and Portuguese sheets)
_HIGH_LABELS = frozenset({"High", "Alta"})
_MEDIUM_LABELS = frozenset({"Medium", "Média"})

PRIORITY_RANK: dict[Priority, int] = {
    Priority.HIGH: 3,
    Priority.MEDIUM: 2,
    Priority.LOW: 1,
}


def normalize_priority(label: object) -> Priority:
    """Map a free-text label to a canonical priority.

    Anything unrecognized (including empty or ``None``) becomes ``Low``.
    """
    value = "" if label is None else str(label).strip()
    if value in _HIGH_LABELS:
        return Priority.HIGH
    if value in _MEDIUM_LABELS:
        return Priority.MEDIUM
    return Priority.LOW


def priority_rank(value: object) -> int:
    """Sort rank of a stored priority value; 0 for unknown labels."""
    try:
        return PRIORITY_RANK[Priority(value)]
    except ValueError:
        return 0
