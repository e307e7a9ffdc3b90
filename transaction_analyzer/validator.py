"""
Validation Layer.

Checks the quality of the input records *before* they are analysed.

Checks performed
----------------
1. **Unique ids** — ids key every duplicate pair, so repeats are errors
   (or warnings, by configuration).
2. **Amount sanity** — amounts must be finite and within a plausible range.
3. **Text presence** — empty descriptions weaken text similarity.
"""

from __future__ import annotations

import math
from typing import Dict, Sequence

from transaction_analyzer.config import ValidationConfig
from transaction_analyzer.logging_setup import get_logger
from transaction_analyzer.schema import TransactionRecord

logger = get_logger("validator")


class ValidationReport:
    """Accumulates errors and warnings during a validation pass."""

    def __init__(self) -> None:
        self.errors: list[str] = []
        self.warnings: list[str] = []

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)
        logger.error("Validation ERROR: %s", msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)
        logger.warning("Validation WARNING: %s", msg)


class RecordValidator:
    """Validates a sequence of ``TransactionRecord`` objects.

    Parameters
    ----------
    config:
        Validation thresholds and behaviour flags.
    """

    def __init__(self, config: ValidationConfig) -> None:
        self._config = config

    def validate(self, records: Sequence[TransactionRecord]) -> ValidationReport:
        """Run all checks and return a ``ValidationReport``."""
        report = ValidationReport()
        self._check_ids(records, report)
        self._check_amounts(records, report)
        self._check_texts(records, report)
        return report

    # ------------------------------------------------------------------ #
    # Individual checks
    # ------------------------------------------------------------------ #

    def _check_ids(
        self, records: Sequence[TransactionRecord], report: ValidationReport
    ) -> None:
        seen: Dict[int, int] = {}  # id → first position
        for position, r in enumerate(records):
            if r.id in seen:
                msg = (
                    f"Duplicate record id {r.id}: "
                    f"positions {seen[r.id]} and {position}"
                )
                if self._config.error_on_duplicate_id:
                    report.add_error(msg)
                else:
                    report.add_warning(msg)
            else:
                seen[r.id] = position

    def _check_amounts(
        self, records: Sequence[TransactionRecord], report: ValidationReport
    ) -> None:
        for r in records:
            if math.isnan(r.amount) or math.isinf(r.amount):
                report.add_error(f"Record {r.id} has non-finite amount: {r.amount}")
                continue

            if abs(r.amount) > self._config.max_absolute_amount:
                report.add_warning(
                    f"Record {r.id} amount {r.amount} exceeds "
                    f"max_absolute_amount ({self._config.max_absolute_amount}). "
                    f"Possible unit error?"
                )

    def _check_texts(
        self, records: Sequence[TransactionRecord], report: ValidationReport
    ) -> None:
        if not self._config.warn_on_empty_text:
            return
        for r in records:
            if not r.text or not r.text.strip():
                report.add_warning(f"Record {r.id} has no description text")
