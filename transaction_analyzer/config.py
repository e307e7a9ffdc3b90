"""
Configuration module for Transaction Analyzer.

All tuneable parameters — thresholds, weights, tolerances, chunk sizes —
live here.  Nothing is hard-coded in business logic modules.

Every config object is frozen.  Preconditions (weights summing to 1,
positive tolerances, …) are checked at construction time and reported
as ``PreconditionViolation`` rather than silently corrected.
"""

from __future__ import annotations

import dataclasses
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from transaction_analyzer.exceptions import PreconditionViolation


# Names accepted for ``DuplicateDetectionConfig.text_algorithm``
TEXT_ALGORITHMS = ("levenshtein", "jaro-winkler", "dice", "cosine", "composite")

EXECUTOR_KINDS = ("thread", "process")

_WEIGHT_TOLERANCE = 1e-6


def _check_weights_sum(name: str, weights: Dict[str, float]) -> None:
    for key, value in weights.items():
        if value < 0 or math.isnan(value):
            raise PreconditionViolation(
                f"{name}: weight {key!r} must be non-negative, got {value!r}"
            )
    total = sum(weights.values())
    if abs(total - 1.0) > _WEIGHT_TOLERANCE:
        raise PreconditionViolation(
            f"{name}: weights must sum to 1, got {total:.6f} ({weights})"
        )


@dataclass(frozen=True)
class FieldWeights:
    """Per-field weights used to combine field similarities into a score."""

    text: float = 0.4
    amount: float = 0.3
    date: float = 0.2
    category: float = 0.1

    def __post_init__(self) -> None:
        _check_weights_sum("FieldWeights", dataclasses.asdict(self))


@dataclass(frozen=True)
class CompositeWeights:
    """Weights of the four string metrics inside the composite similarity."""

    levenshtein: float = 0.3
    jaro_winkler: float = 0.3
    dice: float = 0.2
    cosine: float = 0.2

    def __post_init__(self) -> None:
        _check_weights_sum("CompositeWeights", dataclasses.asdict(self))


@dataclass(frozen=True)
class DuplicateDetectionConfig:
    """Controls how two transactions are scored and classified."""

    # Minimum weighted score (0.0–1.0) for a pair to count as a duplicate
    threshold: float = 0.85

    weights: FieldWeights = field(default_factory=FieldWeights)

    # Relative amount difference at which amount similarity reaches 0
    amount_tolerance: float = 0.02

    # Day difference at which date similarity reaches 0
    date_tolerance_days: float = 3

    # One of ``TEXT_ALGORITHMS``
    text_algorithm: str = "composite"

    # Only used when ``text_algorithm == "composite"``
    composite_weights: CompositeWeights = field(default_factory=CompositeWeights)

    # Hard pre-filters applied before any scoring
    require_same_type: bool = True
    require_same_category: bool = False

    def __post_init__(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise PreconditionViolation(
                f"threshold must be within [0, 1], got {self.threshold!r}"
            )
        if self.amount_tolerance <= 0:
            raise PreconditionViolation(
                f"amount_tolerance must be positive, got {self.amount_tolerance!r}"
            )
        if self.date_tolerance_days <= 0:
            raise PreconditionViolation(
                "date_tolerance_days must be positive, "
                f"got {self.date_tolerance_days!r}"
            )
        if self.text_algorithm not in TEXT_ALGORITHMS:
            raise PreconditionViolation(
                f"Unknown text algorithm {self.text_algorithm!r}. "
                f"Must be one of {TEXT_ALGORITHMS}."
            )

    # ------------------------------------------------------------------ #
    # Partial overrides
    # ------------------------------------------------------------------ #

    @classmethod
    def from_overrides(
        cls, overrides: Optional[Mapping[str, Any]] = None
    ) -> "DuplicateDetectionConfig":
        """Build a config by merging *overrides* over the defaults."""
        return cls().with_overrides(**dict(overrides or {}))

    def with_overrides(self, **overrides: Any) -> "DuplicateDetectionConfig":
        """Return a copy with the given fields replaced.

        ``weights`` and ``composite_weights`` may be passed as plain dicts;
        missing keys keep their current values.
        """
        known = {f.name for f in dataclasses.fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise PreconditionViolation(
                f"Unknown DuplicateDetectionConfig field(s): {sorted(unknown)}"
            )

        if isinstance(overrides.get("weights"), Mapping):
            overrides["weights"] = dataclasses.replace(
                self.weights, **overrides["weights"]
            )
        if isinstance(overrides.get("composite_weights"), Mapping):
            overrides["composite_weights"] = dataclasses.replace(
                self.composite_weights, **overrides["composite_weights"]
            )
        return dataclasses.replace(self, **overrides)


@dataclass(frozen=True)
class ParallelConfig:
    """Controls chunking and bounded concurrency."""

    # Records per chunk for chunked duplicate detection
    chunk_size: int = 100

    # Records per chunk for chunked pattern scanning
    scan_chunk_size: int = 500

    # Maximum number of tasks running at the same time
    max_concurrency: int = 4

    # "thread" or "process"; processes give real CPU parallelism but
    # require picklable task functions.
    executor: str = "thread"

    # Pause between sequential batches in ``process_batches``
    batch_delay_seconds: float = 0.0

    def __post_init__(self) -> None:
        if self.chunk_size < 1 or self.scan_chunk_size < 1:
            raise PreconditionViolation("chunk sizes must be >= 1")
        if self.max_concurrency < 1:
            raise PreconditionViolation(
                f"max_concurrency must be >= 1, got {self.max_concurrency!r}"
            )
        if self.executor not in EXECUTOR_KINDS:
            raise PreconditionViolation(
                f"Unknown executor kind {self.executor!r}. "
                f"Must be one of {EXECUTOR_KINDS}."
            )
        if self.batch_delay_seconds < 0:
            raise PreconditionViolation("batch_delay_seconds must be >= 0")


@dataclass(frozen=True)
class ValidationConfig:
    """Controls the input validation layer."""

    # When True, repeated record ids are errors; when False, warnings.
    error_on_duplicate_id: bool = True

    # Maximum plausible absolute amount; catches obvious unit errors
    max_absolute_amount: float = 1e12

    warn_on_empty_text: bool = True


@dataclass(frozen=True)
class AnalysisConfig:
    """Top-level configuration aggregating all sub-configs."""

    detection: DuplicateDetectionConfig = field(
        default_factory=DuplicateDetectionConfig
    )
    parallel: ParallelConfig = field(default_factory=ParallelConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)

    # Logging level for the analysis audit trail
    log_level: int = logging.INFO

    # Optional path to a user-supplied pattern catalog JSON file that is
    # *merged* with the built-in catalog.
    custom_pattern_path: Optional[Path] = None

    # Lifetime of compiled automatons in the pipeline cache
    cache_ttl_seconds: float = 60.0

    # When True the pipeline raises on input validation errors instead of
    # analysing what it can.
    strict_mode: bool = False
