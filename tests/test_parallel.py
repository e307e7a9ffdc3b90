"""
Tests for chunking, bounded execution and chunked detection / scanning.
"""

from __future__ import annotations

import datetime as dt
import threading
import time
from typing import List

import pytest

from transaction_analyzer.automaton import search_transactions
from transaction_analyzer.config import DuplicateDetectionConfig
from transaction_analyzer.duplicate_detector import DuplicateDetector
from transaction_analyzer.exceptions import OperationCancelled, PreconditionViolation
from transaction_analyzer.parallel import (
    BoundedExecutor,
    CancellationToken,
    chunk_array,
    detect_duplicates_parallel,
    map_reduce,
    process_batches,
    search_transactions_parallel,
)
from transaction_analyzer.schema import TransactionRecord, TransactionType

_TEXTS = ["Uber viaje", "UBER VIAJE", "Netflix mensual", "Pago renta", "Rappi pedido"]


def _square(x: int) -> int:
    return x * x


@pytest.fixture
def records() -> List[TransactionRecord]:
    """Twenty records with repeated texts, amounts and dates."""
    base = dt.date(2025, 10, 1)
    return [
        TransactionRecord(
            id=i + 1,
            text=_TEXTS[i % len(_TEXTS)],
            amount=[120.0, 120.5, 199.0][i % 3],
            date=base + dt.timedelta(days=i % 4),
            type=TransactionType.EXPENSE if i % 7 else TransactionType.INCOME,
        )
        for i in range(20)
    ]


# ======================================================================
# chunk_array
# ======================================================================

class TestChunkArray:
    def test_chunks(self) -> None:
        assert chunk_array([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]

    def test_empty(self) -> None:
        assert chunk_array([], 3) == []

    def test_invalid_size(self) -> None:
        with pytest.raises(PreconditionViolation):
            chunk_array([1, 2], 0)


# ======================================================================
# BoundedExecutor
# ======================================================================

class TestBoundedExecutor:
    def test_results_in_input_order(self) -> None:
        def slow_for_small(x: int) -> int:
            time.sleep(0.01 * (5 - x))
            return x * 10

        results = BoundedExecutor(max_concurrency=3).process(range(5), slow_for_small)
        assert results == [0, 10, 20, 30, 40]

    def test_concurrency_bound(self) -> None:
        lock = threading.Lock()
        active = 0
        peak = 0

        def task(_x: int) -> None:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with lock:
                active -= 1

        BoundedExecutor(max_concurrency=2).process(range(8), task)
        assert 1 <= peak <= 2

    def test_empty_input(self) -> None:
        assert BoundedExecutor().process([], _square) == []

    def test_progress_callback(self) -> None:
        calls = []
        BoundedExecutor(max_concurrency=2).process(
            range(4), _square, on_progress=lambda done, total: calls.append((done, total))
        )
        assert calls == [(1, 4), (2, 4), (3, 4), (4, 4)]

    def test_fail_fast(self) -> None:
        def boom(x: int) -> int:
            if x == 2:
                raise ValueError("bad item")
            return x

        with pytest.raises(ValueError, match="bad item"):
            BoundedExecutor(max_concurrency=2).process(range(10), boom)

    def test_cancelled_before_start(self) -> None:
        token = CancellationToken()
        token.cancel()
        calls = []
        with pytest.raises(OperationCancelled):
            BoundedExecutor().process(range(5), calls.append, cancel_token=token)
        assert calls == []

    def test_cancelled_between_tasks(self) -> None:
        token = CancellationToken()
        calls = []

        def cancel_after_first(done: int, _total: int) -> None:
            if done == 1:
                token.cancel()

        with pytest.raises(OperationCancelled):
            BoundedExecutor(max_concurrency=1).process(
                range(5), calls.append, on_progress=cancel_after_first, cancel_token=token
            )
        assert calls == [0]

    def test_invalid_arguments(self) -> None:
        with pytest.raises(PreconditionViolation):
            BoundedExecutor(max_concurrency=0)
        with pytest.raises(PreconditionViolation):
            BoundedExecutor(executor="fiber")

    def test_process_executor(self) -> None:
        results = BoundedExecutor(max_concurrency=2, executor="process").process(
            range(6), _square
        )
        assert results == [0, 1, 4, 9, 16, 25]


# ======================================================================
# Chunked duplicate detection
# ======================================================================

class TestDetectDuplicatesParallel:
    @pytest.mark.parametrize("chunk_size", [1, 3, 7, 20, 50])
    def test_same_result_as_exhaustive(
        self, records: List[TransactionRecord], chunk_size: int
    ) -> None:
        detector = DuplicateDetector(DuplicateDetectionConfig(threshold=0.75))
        expected = detector.detect_duplicates(records)
        result = detect_duplicates_parallel(
            records, chunk_size=chunk_size, detector=detector, max_concurrency=3
        )
        assert expected
        assert [m.to_dict() for m in result] == [m.to_dict() for m in expected]

    def test_pair_split_by_chunk_boundary(self) -> None:
        first = TransactionRecord(1, "Uber viaje", 120.0, dt.date(2025, 10, 5), TransactionType.EXPENSE)
        other = TransactionRecord(2, "Netflix", 199.0, dt.date(2025, 10, 1), TransactionType.EXPENSE)
        second = TransactionRecord(3, "UBER VIAJE", 120.5, dt.date(2025, 10, 6), TransactionType.EXPENSE)
        result = detect_duplicates_parallel([first, other, second], chunk_size=2)
        assert [m.pair_key for m in result] == [(1, 3)]

    def test_progress_covers_all_tasks(self, records: List[TransactionRecord]) -> None:
        calls = []
        detect_duplicates_parallel(
            records, chunk_size=5, on_progress=lambda d, t: calls.append((d, t))
        )
        # 4 chunks + 6 cross-chunk pairs
        assert calls[-1] == (10, 10)
        assert [d for d, _ in calls] == list(range(1, 11))

    def test_cancellation(self, records: List[TransactionRecord]) -> None:
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            detect_duplicates_parallel(records, chunk_size=5, cancel_token=token)

    def test_process_executor(self, records: List[TransactionRecord]) -> None:
        detector = DuplicateDetector()
        expected = detector.detect_duplicates(records)
        result = detect_duplicates_parallel(
            records, chunk_size=6, detector=detector, max_concurrency=2, executor="process"
        )
        assert [m.to_dict() for m in result] == [m.to_dict() for m in expected]

    def test_empty(self) -> None:
        assert detect_duplicates_parallel([]) == []


# ======================================================================
# Chunked pattern scanning
# ======================================================================

class TestSearchTransactionsParallel:
    def test_same_hits_as_sequential(self, records: List[TransactionRecord]) -> None:
        patterns = ["uber", "netflix", "renta"]
        expected = search_transactions(records, patterns)
        result = search_transactions_parallel(records, patterns, chunk_size=3)
        assert [h.to_dict() for h in result] == [h.to_dict() for h in expected]

    def test_indices_refer_to_full_input(self, records: List[TransactionRecord]) -> None:
        result = search_transactions_parallel(records, ["rappi"], chunk_size=4)
        assert [h.index for h in result] == [4, 9, 14, 19]


# ======================================================================
# Generic utilities
# ======================================================================

class TestUtilities:
    def test_map_reduce(self) -> None:
        total = map_reduce(list(range(10)), _square, lambda acc, v: acc + v, 0, chunk_size=3)
        assert total == 285

    def test_map_reduce_keeps_order(self) -> None:
        joined = map_reduce(list("abcdef"), str.upper, lambda acc, v: acc + v, "", chunk_size=2)
        assert joined == "ABCDEF"

    def test_process_batches(self) -> None:
        seen = []
        progress = []
        results = process_batches(
            list(range(7)),
            3,
            lambda batch, index: (seen.append(index) or [sum(batch)]),
            on_batch_complete=lambda done, total: progress.append((done, total)),
        )
        assert results == [3, 12, 6]
        assert seen == [0, 1, 2]
        assert progress == [(1, 3), (2, 3), (3, 3)]

    def test_process_batches_cancelled(self) -> None:
        token = CancellationToken()
        processed = []

        def handle(batch: List[int], index: int) -> List[int]:
            processed.append(index)
            token.cancel()
            return batch

        with pytest.raises(OperationCancelled):
            process_batches([1, 2, 3, 4], 2, handle, cancel_token=token)
        assert processed == [0]

    def test_process_batches_delay(self) -> None:
        start = time.monotonic()
        process_batches([1, 2, 3], 1, lambda batch, _i: batch, delay_seconds=0.02)
        assert time.monotonic() - start >= 0.04
