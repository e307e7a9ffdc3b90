"""
Duplicate Detection Layer.

Scores pairs of transactions on four signals — text, amount, date and
category — and reports the pairs whose weighted score reaches the
configured threshold.

Traversal strategies
--------------------
* ``detect_duplicates`` — every unordered pair.  The correctness baseline.
* ``detect_duplicates_optimized`` — only pairs sharing a blocking bucket
  (see ``blocking``).  Faster, may miss far-apart pairs.
* ``compare_groups`` / ``find_duplicates_of`` — cross and one-vs-many
  comparisons used by chunked detection and grouping.

Every strategy returns matches deduplicated by canonical id pair and
sorted by score (descending), ties broken by the id pair.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from transaction_analyzer.blocking import build_blocks
from transaction_analyzer.config import DuplicateDetectionConfig
from transaction_analyzer.exceptions import PreconditionViolation
from transaction_analyzer.logging_setup import get_logger
from transaction_analyzer.normalizer import TextNormalizer
from transaction_analyzer.schema import (
    Confidence,
    DuplicateMarking,
    DuplicateMatch,
    DuplicateStats,
    TransactionRecord,
)
from transaction_analyzer.similarity import (
    date_similarity,
    get_similarity_function,
    number_similarity,
)

logger = get_logger("duplicate_detector")

PairKey = Tuple[int, int]

REASON_TEXT = "very similar text"
REASON_AMOUNT = "near-identical amount"
REASON_DATE = "dates very close"
REASON_CATEGORY = "same category"
REASON_TYPE = "same type"

MERGE_STRATEGIES = ("first", "last", "highest", "lowest")


def pair_key(id1: int, id2: int) -> PairKey:
    return (id1, id2) if id1 <= id2 else (id2, id1)


def _category_similarity(a: Optional[str], b: Optional[str]) -> float:
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0
    return 1.0 if a == b else 0.0


class DuplicateDetector:
    """Fuzzy near-duplicate detector over ``TransactionRecord`` objects.

    Parameters
    ----------
    config:
        Threshold, weights, tolerances, text algorithm and hard filters.
        Defaults to ``DuplicateDetectionConfig()``.
    normalizer:
        Shared ``TextNormalizer`` used to bring texts to comparison form.
    """

    def __init__(
        self,
        config: Optional[DuplicateDetectionConfig] = None,
        normalizer: Optional[TextNormalizer] = None,
    ) -> None:
        self._config = config or DuplicateDetectionConfig()
        self._normalizer = normalizer or TextNormalizer()
        self._text_similarity = get_similarity_function(
            self._config.text_algorithm, self._config.composite_weights
        )

    @property
    def config(self) -> DuplicateDetectionConfig:
        return self._config

    # ------------------------------------------------------------------ #
    # Pairwise classifier
    # ------------------------------------------------------------------ #

    def compare_transactions(
        self, a: TransactionRecord, b: TransactionRecord
    ) -> Optional[DuplicateMatch]:
        """Score one pair.

        Returns
        -------
        DuplicateMatch | None
            The match, or ``None`` when a hard filter rejects the pair or
            the score is below the threshold.
        """
        return self._score_pair(
            a,
            b,
            self._normalizer.normalize_for_comparison(a.text),
            self._normalizer.normalize_for_comparison(b.text),
        )

    def _text_score(self, text_a: str, text_b: str) -> float:
        if not text_a and not text_b:
            return 1.0
        if not text_a or not text_b:
            return 0.0
        return self._text_similarity(text_a, text_b)

    def _score_pair(
        self,
        a: TransactionRecord,
        b: TransactionRecord,
        text_a: str,
        text_b: str,
    ) -> Optional[DuplicateMatch]:
        cfg = self._config

        # --- Hard filters ---------------------------------------------
        if cfg.require_same_type and a.type != b.type:
            return None
        if cfg.require_same_category and a.category != b.category:
            return None

        # --- Field similarities ---------------------------------------
        text_sim = self._text_score(text_a, text_b)
        amount_sim = number_similarity(a.amount, b.amount, cfg.amount_tolerance)
        date_sim = date_similarity(a.date, b.date, cfg.date_tolerance_days)
        category_sim = _category_similarity(a.category, b.category)

        w = cfg.weights
        score = math.fsum((
            text_sim * w.text,
            amount_sim * w.amount,
            date_sim * w.date,
            category_sim * w.category,
        ))
        if score < cfg.threshold:
            return None

        reasons: List[str] = []
        if text_sim > 0.9:
            reasons.append(REASON_TEXT)
        if amount_sim > 0.95:
            reasons.append(REASON_AMOUNT)
        if date_sim > 0.9:
            reasons.append(REASON_DATE)
        if category_sim == 1.0:
            reasons.append(REASON_CATEGORY)
        if a.type == b.type:
            reasons.append(REASON_TYPE)

        return DuplicateMatch(
            first=a,
            second=b,
            score=score,
            reasons=tuple(reasons),
            confidence=Confidence.from_score(score),
        )

    def _prepare(self, records: Sequence[TransactionRecord]) -> List[str]:
        return [self._normalizer.normalize_for_comparison(r.text) for r in records]

    # ------------------------------------------------------------------ #
    # Traversal strategies
    # ------------------------------------------------------------------ #

    def detect_duplicates(
        self, records: Sequence[TransactionRecord]
    ) -> List[DuplicateMatch]:
        """Compare every unordered pair of *records*."""
        texts = self._prepare(records)
        matches: List[DuplicateMatch] = []
        seen: Set[PairKey] = set()

        for i in range(len(records)):
            for j in range(i + 1, len(records)):
                key = pair_key(records[i].id, records[j].id)
                if key in seen:
                    continue
                match = self._score_pair(records[i], records[j], texts[i], texts[j])
                if match is not None:
                    matches.append(match)
                    seen.add(key)

        logger.debug(
            "Exhaustive scan: %d records, %d duplicates", len(records), len(matches)
        )
        return sort_matches(matches)

    def detect_duplicates_optimized(
        self, records: Sequence[TransactionRecord]
    ) -> List[DuplicateMatch]:
        """Compare only pairs that share a blocking bucket.

        Known limitation: a pair whose week and amount-bucket offsets add
        up to more than two steps never shares a bucket and is missed.
        """
        texts = self._prepare(records)
        blocks = build_blocks(records)
        matches: List[DuplicateMatch] = []
        compared: Set[Tuple[int, int]] = set()
        seen: Set[PairKey] = set()

        for positions in blocks.values():
            if len(positions) < 2:
                continue
            for x in range(len(positions)):
                for y in range(x + 1, len(positions)):
                    i, j = positions[x], positions[y]
                    # A record sits in several buckets; skip repeats.
                    if i == j or (i, j) in compared:
                        continue
                    compared.add((i, j))

                    key = pair_key(records[i].id, records[j].id)
                    if key in seen:
                        continue
                    match = self._score_pair(
                        records[i], records[j], texts[i], texts[j]
                    )
                    if match is not None:
                        matches.append(match)
                        seen.add(key)

        logger.debug(
            "Blocked scan: %d records, %d buckets, %d comparisons, %d duplicates",
            len(records),
            len(blocks),
            len(compared),
            len(matches),
        )
        return sort_matches(matches)

    def compare_groups(
        self,
        left: Sequence[TransactionRecord],
        right: Sequence[TransactionRecord],
    ) -> List[DuplicateMatch]:
        """Compare every record of *left* with every record of *right*.

        The *left* record is always ``first`` in the returned matches.
        """
        left_texts = self._prepare(left)
        right_texts = self._prepare(right)
        matches: List[DuplicateMatch] = []
        seen: Set[PairKey] = set()

        for i, a in enumerate(left):
            for j, b in enumerate(right):
                key = pair_key(a.id, b.id)
                if a.id == b.id or key in seen:
                    continue
                match = self._score_pair(a, b, left_texts[i], right_texts[j])
                if match is not None:
                    matches.append(match)
                    seen.add(key)
        return sort_matches(matches)

    def find_duplicates_of(
        self,
        target: TransactionRecord,
        candidates: Sequence[TransactionRecord],
    ) -> List[DuplicateMatch]:
        """Return the candidates that duplicate *target*, best first."""
        target_text = self._normalizer.normalize_for_comparison(target.text)
        matches: List[DuplicateMatch] = []
        for candidate in candidates:
            if candidate.id == target.id:
                continue
            match = self._score_pair(
                target,
                candidate,
                target_text,
                self._normalizer.normalize_for_comparison(candidate.text),
            )
            if match is not None:
                matches.append(match)
        return sort_matches(matches)

    def group_duplicates(
        self, records: Sequence[TransactionRecord]
    ) -> List[List[TransactionRecord]]:
        """Single-pass grouping in input order.

        Each unassigned record seeds a group and absorbs every later,
        still unassigned record that duplicates the seed.  Membership is
        not transitive: a record similar only to a non-seed member starts
        its own group.
        """
        groups: List[List[TransactionRecord]] = []
        assigned: Set[int] = set()

        for i, seed in enumerate(records):
            if seed.id in assigned:
                continue
            group = [seed]
            assigned.add(seed.id)

            for match in self.find_duplicates_of(seed, records[i + 1:]):
                if match.second.id not in assigned:
                    group.append(match.second)
                    assigned.add(match.second.id)

            groups.append(group)
        return groups

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #

    @staticmethod
    def get_stats(matches: Sequence[DuplicateMatch]) -> DuplicateStats:
        stats = DuplicateStats(total=len(matches))
        for m in matches:
            if m.confidence is Confidence.HIGH:
                stats.high_confidence += 1
            elif m.confidence is Confidence.MEDIUM:
                stats.medium_confidence += 1
            else:
                stats.low_confidence += 1
            for reason in m.reasons:
                stats.by_reason[reason] = stats.by_reason.get(reason, 0) + 1
        if matches:
            stats.average_score = math.fsum(m.score for m in matches) / len(matches)
        return stats


# ---------------------------------------------------------------------------
# Result helpers
# ---------------------------------------------------------------------------

def sort_matches(matches: Iterable[DuplicateMatch]) -> List[DuplicateMatch]:
    """Score descending, ties broken by canonical id pair."""
    return sorted(matches, key=lambda m: (-m.score, m.pair_key))


def deduplicate_matches(matches: Iterable[DuplicateMatch]) -> List[DuplicateMatch]:
    """Keep the first match seen for each canonical id pair."""
    unique: Dict[PairKey, DuplicateMatch] = {}
    for m in matches:
        unique.setdefault(m.pair_key, m)
    return list(unique.values())


def merge_duplicates(
    group: Sequence[TransactionRecord], strategy: str = "last"
) -> TransactionRecord:
    """Pick the record to keep from a duplicate group.

    ``first`` / ``last`` follow input order; ``highest`` / ``lowest``
    compare amounts (the earliest record wins ties).

    Raises
    ------
    PreconditionViolation
        If *group* is empty or *strategy* is unknown.
    """
    if strategy not in MERGE_STRATEGIES:
        raise PreconditionViolation(
            f"Unknown merge strategy {strategy!r}. Must be one of {MERGE_STRATEGIES}."
        )
    if not group:
        raise PreconditionViolation("Cannot merge an empty duplicate group")

    if strategy == "first":
        return group[0]
    if strategy == "last":
        return group[-1]
    if strategy == "highest":
        return max(group, key=lambda r: r.amount)
    return min(group, key=lambda r: r.amount)


def mark_as_duplicates(matches: Iterable[DuplicateMatch]) -> DuplicateMarking:
    """Split matched ids into records to keep and records to flag.

    Walking the matches in order, the first unseen id of each pair is a
    primary and the second unseen id a duplicate.
    """
    marking = DuplicateMarking()
    processed: Set[int] = set()
    for m in matches:
        if m.first.id not in processed:
            marking.primary.append(m.first.id)
            processed.add(m.first.id)
        if m.second.id not in processed:
            marking.duplicates.append(m.second.id)
            processed.add(m.second.id)
    return marking
