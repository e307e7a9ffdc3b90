"""
Transaction data models.

Defines the records the core consumes (``TransactionRecord``) and the
typed results it produces (pattern matches, duplicate matches, stats and
the aggregate ``AnalysisOutput``).
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TransactionType(str, Enum):
    """Direction of a transaction."""

    INCOME = "income"
    EXPENSE = "expense"

    @classmethod
    def parse(cls, value: Any) -> "TransactionType":
        """Case-insensitive lookup that also accepts the source data labels."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        result = _TYPE_ALIASES.get(key)
        if result is None:
            raise ValueError(f"Unknown transaction type: {value!r}")
        return result


_TYPE_ALIASES: Dict[str, TransactionType] = {
    "income": TransactionType.INCOME,
    "ingreso": TransactionType.INCOME,
    "expense": TransactionType.EXPENSE,
    "gasto": TransactionType.EXPENSE,
}


class Confidence(str, Enum):
    """Coarse reliability tier of a duplicate match."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def from_score(cls, score: float) -> "Confidence":
        if score > 0.95:
            return cls.HIGH
        if score > 0.90:
            return cls.MEDIUM
        return cls.LOW


# ---------------------------------------------------------------------------
# Input record
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransactionRecord:
    """A single transaction as supplied by the caller."""

    id: int
    text: str
    amount: float
    date: dt.date  # a ``datetime`` is accepted too
    type: TransactionType
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "amount": self.amount,
            "date": self.date.isoformat(),
            "type": self.type.value,
            "category": self.category,
        }


# ---------------------------------------------------------------------------
# Pattern scanning results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PatternMatch:
    """One occurrence of a pattern; ``end_position`` is exclusive."""

    pattern: str
    start_position: int
    end_position: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern": self.pattern,
            "start_position": self.start_position,
            "end_position": self.end_position,
        }


@dataclass
class PatternHit:
    """The unique patterns found in the record at ``index`` of the input."""

    index: int
    record_id: Optional[int]
    patterns: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "record_id": self.record_id,
            "patterns": list(self.patterns),
        }


# ---------------------------------------------------------------------------
# Duplicate detection results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DuplicateMatch:
    """A scored, unordered pair of suspected duplicate transactions."""

    first: TransactionRecord
    second: TransactionRecord
    score: float  # 0.0 – 1.0
    reasons: Tuple[str, ...] = ()
    confidence: Confidence = Confidence.LOW

    @property
    def pair_key(self) -> Tuple[int, int]:
        """Canonical key of the unordered id pair."""
        a, b = self.first.id, self.second.id
        return (a, b) if a <= b else (b, a)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "first_id": self.first.id,
            "second_id": self.second.id,
            "score": round(self.score, 4),
            "reasons": list(self.reasons),
            "confidence": self.confidence.value,
        }


@dataclass
class DuplicateStats:
    """Summary of a list of duplicate matches."""

    total: int = 0
    high_confidence: int = 0
    medium_confidence: int = 0
    low_confidence: int = 0
    average_score: float = 0.0
    by_reason: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "high_confidence": self.high_confidence,
            "medium_confidence": self.medium_confidence,
            "low_confidence": self.low_confidence,
            "average_score": round(self.average_score, 4),
            "by_reason": dict(self.by_reason),
        }


@dataclass
class DuplicateMarking:
    """Ids to keep (``primary``) and ids to flag (``duplicates``)."""

    primary: List[int] = field(default_factory=list)
    duplicates: List[int] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Pipeline output
# ---------------------------------------------------------------------------

@dataclass
class AnalysisOutput:
    """Aggregate result of a full pipeline run."""

    record_count: int = 0
    duplicates: List[DuplicateMatch] = field(default_factory=list)
    pattern_hits: List[PatternHit] = field(default_factory=list)
    groups: List[List[TransactionRecord]] = field(default_factory=list)
    category_suggestions: Dict[int, str] = field(default_factory=dict)
    validation_errors: List[str] = field(default_factory=list)
    validation_warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.validation_errors) == 0

    def duplicate_pairs(self) -> List[Tuple[int, int]]:
        """Return the canonical id pair of every duplicate match."""
        return [m.pair_key for m in self.duplicates]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "record_count": self.record_count,
            "duplicates": [m.to_dict() for m in self.duplicates],
            "pattern_hits": [h.to_dict() for h in self.pattern_hits],
            "groups": [[r.id for r in g] for g in self.groups],
            "category_suggestions": {
                str(k): v for k, v in self.category_suggestions.items()
            },
            "validation_errors": self.validation_errors,
            "validation_warnings": self.validation_warnings,
        }
