"""
Blocking keys for approximate duplicate search.

Records are bucketed by ``(type, week, amount bucket)`` and also copied
into the four neighbouring buckets (week ± 1, amount ± 100) so that pairs
straddling one boundary still meet.  Two records share at least one
bucket exactly when ``|Δweek| + |Δbucket| <= 2`` (in bucket units); pairs
further apart are never compared, even if the exhaustive search would
report them.
"""

from __future__ import annotations

import datetime as dt
import math
from typing import Dict, List, Sequence, Tuple

from transaction_analyzer.exceptions import PreconditionViolation
from transaction_analyzer.schema import TransactionRecord

BlockKey = Tuple[str, int, int]

AMOUNT_BUCKET_SIZE = 100


def iso_week_index(date: dt.date) -> int:
    """Number of Monday-started (ISO) weeks since 0001-01-01.

    Inside one year this partitions dates exactly like the ISO week
    number, and stays contiguous across year boundaries.
    """
    return (date.toordinal() - 1) // 7


def amount_bucket(amount: float) -> int:
    """Amount rounded down to a multiple of ``AMOUNT_BUCKET_SIZE``."""
    if not math.isfinite(amount):
        raise PreconditionViolation(f"Cannot bucket non-finite amount: {amount!r}")
    return math.floor(amount / AMOUNT_BUCKET_SIZE) * AMOUNT_BUCKET_SIZE


def block_key(record: TransactionRecord) -> BlockKey:
    return (
        record.type.value,
        iso_week_index(record.date),
        amount_bucket(record.amount),
    )


def neighbor_keys(record: TransactionRecord) -> List[BlockKey]:
    kind, week, bucket = block_key(record)
    return [
        (kind, week - 1, bucket),
        (kind, week + 1, bucket),
        (kind, week, bucket - AMOUNT_BUCKET_SIZE),
        (kind, week, bucket + AMOUNT_BUCKET_SIZE),
    ]


def build_blocks(records: Sequence[TransactionRecord]) -> Dict[BlockKey, List[int]]:
    """Map every block key to the input positions of the records in it."""
    blocks: Dict[BlockKey, List[int]] = {}
    for index, record in enumerate(records):
        blocks.setdefault(block_key(record), []).append(index)
        for key in neighbor_keys(record):
            blocks.setdefault(key, []).append(index)
    return blocks
