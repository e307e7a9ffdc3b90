"""
Parallel Orchestrator.

Chunking and bounded-concurrency execution for large record sets.

* ``BoundedExecutor`` runs a function over many items with at most
  ``max_concurrency`` tasks in flight.  Queued items are admitted as
  running ones finish; completion is awaited with
  ``concurrent.futures.wait`` rather than polled.  Each result is stored
  at its input position, so completion order never shows in the output.
* Execution is fail-fast: the first task error propagates unchanged,
  queued tasks are cancelled and no partial result is returned.
* Cancellation is cooperative and checked only between tasks, never in
  the middle of a scan or comparison.

``executor="thread"`` shares memory with the caller; ``"process"`` gives
real CPU parallelism but needs picklable task functions (every task
function built here is a module-level function or ``functools.partial``).
"""

from __future__ import annotations

import functools
import threading
import time
from concurrent.futures import (
    FIRST_COMPLETED,
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar

from transaction_analyzer.automaton import AhoCorasickAutomaton, scan_records
from transaction_analyzer.config import EXECUTOR_KINDS
from transaction_analyzer.duplicate_detector import (
    DuplicateDetector,
    deduplicate_matches,
    sort_matches,
)
from transaction_analyzer.exceptions import OperationCancelled, PreconditionViolation
from transaction_analyzer.logging_setup import get_logger
from transaction_analyzer.schema import DuplicateMatch, PatternHit, TransactionRecord

logger = get_logger("parallel")

T = TypeVar("T")
R = TypeVar("R")
M = TypeVar("M")
A = TypeVar("A")

ProgressCallback = Callable[[int, int], None]


def chunk_array(items: Sequence[T], size: int) -> List[List[T]]:
    """Split *items* into contiguous chunks of at most *size* elements."""
    if size < 1:
        raise PreconditionViolation(f"chunk size must be >= 1, got {size!r}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class CancellationToken:
    """Thread-safe cancellation flag shared between caller and orchestrator."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled by caller")


class BoundedExecutor:
    """Run a function over many items with bounded concurrency.

    Parameters
    ----------
    max_concurrency:
        Upper bound on simultaneously running tasks.
    executor:
        ``"thread"`` or ``"process"``.
    """

    def __init__(self, max_concurrency: int = 4, executor: str = "thread") -> None:
        if max_concurrency < 1:
            raise PreconditionViolation(
                f"max_concurrency must be >= 1, got {max_concurrency!r}"
            )
        if executor not in EXECUTOR_KINDS:
            raise PreconditionViolation(
                f"Unknown executor kind {executor!r}. Must be one of {EXECUTOR_KINDS}."
            )
        self._max_concurrency = max_concurrency
        self._kind = executor

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    def _make_pool(self) -> Executor:
        if self._kind == "process":
            return ProcessPoolExecutor(max_workers=self._max_concurrency)
        return ThreadPoolExecutor(
            max_workers=self._max_concurrency,
            thread_name_prefix="transaction-analyzer",
        )

    def process(
        self,
        items: Iterable[T],
        fn: Callable[[T], R],
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[R]:
        """Apply *fn* to every item and return results in input order.

        Parameters
        ----------
        on_progress:
            Called as ``on_progress(completed, total)`` after each task
            finishes, from the calling thread.
        cancel_token:
            Checked before each task is admitted; raises
            ``OperationCancelled`` once set.
        """
        items = list(items)
        total = len(items)
        results: List[Any] = [None] * total
        if total == 0:
            return results

        pending: Dict[Future, int] = {}
        next_index = 0
        completed = 0

        with self._make_pool() as pool:
            try:
                while completed < total:
                    while next_index < total and len(pending) < self._max_concurrency:
                        if cancel_token is not None:
                            cancel_token.raise_if_cancelled()
                        pending[pool.submit(fn, items[next_index])] = next_index
                        next_index += 1

                    done, _ = wait(pending, return_when=FIRST_COMPLETED)
                    for future in done:
                        index = pending.pop(future)
                        results[index] = future.result()
                        completed += 1
                        logger.debug("Task %d finished (%d/%d)", index, completed, total)
                        if on_progress is not None:
                            on_progress(completed, total)
            except BaseException:
                for future in pending:
                    future.cancel()
                raise

        return results


def _offset_progress(
    on_progress: Optional[ProgressCallback], offset: int, grand_total: int
) -> Optional[ProgressCallback]:
    if on_progress is None:
        return None
    return lambda done, _total: on_progress(offset + done, grand_total)


# ---------------------------------------------------------------------------
# Chunked duplicate detection
# ---------------------------------------------------------------------------

def _compare_chunk_pair(
    detector: DuplicateDetector,
    pair: Tuple[List[TransactionRecord], List[TransactionRecord]],
) -> List[DuplicateMatch]:
    earlier, later = pair
    return detector.compare_groups(earlier, later)


def detect_duplicates_parallel(
    records: Sequence[TransactionRecord],
    chunk_size: int = 100,
    detector: Optional[DuplicateDetector] = None,
    max_concurrency: int = 4,
    executor: str = "thread",
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> List[DuplicateMatch]:
    """Chunked duplicate detection with cross-chunk reconciliation.

    Phase 1 runs ``detect_duplicates`` inside every chunk.  Phase 2
    compares each chunk with every *earlier* chunk so pairs split by a
    chunk boundary are still found.  The result holds the same pairs, in
    the same order, as ``DuplicateDetector.detect_duplicates(records)``.
    """
    records = list(records)
    detector = detector or DuplicateDetector()
    chunks = chunk_array(records, chunk_size)
    cross_pairs = [
        (chunks[j], chunks[i]) for i in range(len(chunks)) for j in range(i)
    ]
    grand_total = len(chunks) + len(cross_pairs)
    runner = BoundedExecutor(max_concurrency, executor)

    logger.info(
        "Chunked duplicate scan: %d records, %d chunks, %d cross-chunk passes",
        len(records),
        len(chunks),
        len(cross_pairs),
    )

    intra = runner.process(
        chunks,
        detector.detect_duplicates,
        on_progress=_offset_progress(on_progress, 0, grand_total),
        cancel_token=cancel_token,
    )
    cross = runner.process(
        cross_pairs,
        functools.partial(_compare_chunk_pair, detector),
        on_progress=_offset_progress(on_progress, len(chunks), grand_total),
        cancel_token=cancel_token,
    )

    merged = [m for part in intra + cross for m in part]
    result = sort_matches(deduplicate_matches(merged))
    logger.info("Chunked duplicate scan complete — %d duplicates", len(result))
    return result


# ---------------------------------------------------------------------------
# Chunked pattern scanning
# ---------------------------------------------------------------------------

def _scan_chunk(
    automaton: AhoCorasickAutomaton,
    item: Tuple[int, List[TransactionRecord]],
) -> List[PatternHit]:
    start_index, chunk = item
    return scan_records(automaton, chunk, start_index)


def search_transactions_parallel(
    records: Sequence[TransactionRecord],
    patterns: Optional[Iterable[str]] = None,
    chunk_size: int = 500,
    automaton: Optional[AhoCorasickAutomaton] = None,
    max_concurrency: int = 4,
    executor: str = "thread",
    cancel_token: Optional[CancellationToken] = None,
) -> List[PatternHit]:
    """Chunked pattern scan; hit indices refer to positions in *records*.

    Pass either *patterns* or a prepared *automaton*.
    """
    if automaton is None:
        automaton = AhoCorasickAutomaton(patterns or ())
    automaton.build()

    chunks = chunk_array(list(records), chunk_size)
    items = [(n * chunk_size, chunk) for n, chunk in enumerate(chunks)]
    parts = BoundedExecutor(max_concurrency, executor).process(
        items,
        functools.partial(_scan_chunk, automaton),
        cancel_token=cancel_token,
    )
    return [hit for part in parts for hit in part]


# ---------------------------------------------------------------------------
# Generic utilities
# ---------------------------------------------------------------------------

def _map_chunk(map_fn: Callable[[T], M], chunk: List[T]) -> List[M]:
    return [map_fn(item) for item in chunk]


def map_reduce(
    items: Sequence[T],
    map_fn: Callable[[T], M],
    reduce_fn: Callable[[A, M], A],
    initial: A,
    chunk_size: int = 100,
    max_concurrency: int = 4,
    executor: str = "thread",
    cancel_token: Optional[CancellationToken] = None,
) -> A:
    """Map chunks concurrently, then fold the mapped values in input order."""
    chunks = chunk_array(items, chunk_size)
    mapped = BoundedExecutor(max_concurrency, executor).process(
        chunks,
        functools.partial(_map_chunk, map_fn),
        cancel_token=cancel_token,
    )
    return functools.reduce(
        reduce_fn, (value for part in mapped for value in part), initial
    )


def process_batches(
    items: Sequence[T],
    batch_size: int,
    process_batch: Callable[[List[T], int], Iterable[R]],
    on_batch_complete: Optional[ProgressCallback] = None,
    delay_seconds: float = 0.0,
    cancel_token: Optional[CancellationToken] = None,
) -> List[R]:
    """Process batches one after another.

    ``process_batch(batch, batch_index)`` returns the batch results;
    ``on_batch_complete(done, total)`` fires after each batch.  A
    positive *delay_seconds* pauses between batches (not after the last).
    """
    batches = chunk_array(items, batch_size)
    results: List[R] = []

    for index, batch in enumerate(batches):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        results.extend(process_batch(batch, index))
        if on_batch_complete is not None:
            on_batch_complete(index + 1, len(batches))
        if delay_seconds > 0 and index < len(batches) - 1:
            time.sleep(delay_seconds)

    return results
