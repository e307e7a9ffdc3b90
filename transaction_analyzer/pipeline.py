"""
Pipeline Orchestrator.

The central entry point that wires together every layer:

    Raw rows  →  Record Builder  →  Validator
              →  Automaton scan (optional)
              →  Duplicate detection (exhaustive | blocked | parallel)
              →  Grouping / category suggestions (optional)  →  Output

Usage
-----
>>> from transaction_analyzer.pipeline import TransactionAnalysisPipeline
>>> from transaction_analyzer.config import AnalysisConfig
>>>
>>> pipe = TransactionAnalysisPipeline(AnalysisConfig())
>>> result = pipe.analyze_dicts(rows, patterns=["netflix", "uber"])
>>> print(result.to_dict())
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from transaction_analyzer.automaton import AhoCorasickAutomaton, scan_records
from transaction_analyzer.cache import TTLCache
from transaction_analyzer.config import AnalysisConfig
from transaction_analyzer.duplicate_detector import DuplicateDetector
from transaction_analyzer.exceptions import PreconditionViolation
from transaction_analyzer.logging_setup import configure_logging, get_logger
from transaction_analyzer.normalizer import TextNormalizer
from transaction_analyzer.parallel import (
    CancellationToken,
    detect_duplicates_parallel,
    process_batches,
    search_transactions_parallel,
)
from transaction_analyzer.pattern_catalog import PatternCatalog
from transaction_analyzer.record_builder import RecordBuilder
from transaction_analyzer.schema import (
    AnalysisOutput,
    DuplicateMatch,
    PatternHit,
    TransactionRecord,
)
from transaction_analyzer.validator import RecordValidator

logger = get_logger("pipeline")

STRATEGIES = ("exhaustive", "blocked", "parallel")


class TransactionAnalysisPipeline:
    """Orchestrates pattern scanning and duplicate detection.

    Parameters
    ----------
    config:
        All tuneable knobs.  Defaults suit typical personal statements.
    extra_patterns:
        Additional ``{pattern: category}`` entries for the pattern catalog.
    cache:
        Cache for compiled automatons.  A private ``TTLCache`` with
        ``config.cache_ttl_seconds`` is created when omitted.
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        extra_patterns: Optional[Dict[str, str]] = None,
        cache: Optional[TTLCache] = None,
    ) -> None:
        self._config = config or AnalysisConfig()

        # Bootstrap logging before anything else
        configure_logging(level=self._config.log_level)

        # Construct layers
        self._normalizer = TextNormalizer()
        self._catalog = PatternCatalog(
            normalizer=self._normalizer,
            extra_patterns=extra_patterns,
        )
        self._detector = DuplicateDetector(
            config=self._config.detection,
            normalizer=self._normalizer,
        )
        self._validator = RecordValidator(config=self._config.validation)
        self._builder = RecordBuilder(normalizer=self._normalizer)
        self._cache = cache if cache is not None else TTLCache(
            ttl_seconds=self._config.cache_ttl_seconds
        )

        # Load custom pattern file if specified
        if self._config.custom_pattern_path:
            self._catalog.load_custom_patterns(self._config.custom_pattern_path)

        logger.info(
            "Pipeline initialised — patterns=%d, threshold=%.2f, "
            "text_algorithm=%s, strict=%s",
            self._catalog.size,
            self._config.detection.threshold,
            self._config.detection.text_algorithm,
            self._config.strict_mode,
        )

    # ------------------------------------------------------------------ #
    # Convenience entry points (one per input format)
    # ------------------------------------------------------------------ #

    def analyze_dicts(
        self, rows: Iterable[Mapping[str, Any]], **options: Any
    ) -> AnalysisOutput:
        """Analyse plain dict rows."""
        return self.analyze_records(self._builder.read_dicts(rows), **options)

    def analyze_json(self, source: Union[str, Path], **options: Any) -> AnalysisOutput:
        """Analyse a JSON file path or JSON string."""
        return self.analyze_records(self._builder.read_json(source), **options)

    def analyze_csv(self, source: Union[str, Path], **options: Any) -> AnalysisOutput:
        """Analyse a CSV file or CSV string."""
        return self.analyze_records(self._builder.read_csv(source), **options)

    def analyze_dataframe(self, df: Any, **options: Any) -> AnalysisOutput:
        """Analyse a pandas DataFrame."""
        return self.analyze_records(self._builder.read_dataframe(df), **options)

    # ------------------------------------------------------------------ #
    # Core pipeline logic
    # ------------------------------------------------------------------ #

    def analyze_records(
        self,
        records: Sequence[TransactionRecord],
        patterns: Optional[Iterable[str]] = None,
        detect_duplicates: bool = True,
        strategy: str = "exhaustive",
        group: bool = False,
        categorize: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AnalysisOutput:
        """Run every requested analysis over *records*.

        Parameters
        ----------
        patterns:
            When given, every record is scanned for these patterns.
        strategy:
            ``"exhaustive"``, ``"blocked"`` or ``"parallel"``.
        group:
            Also build single-pass duplicate groups.
        categorize:
            Suggest catalog categories for records without one.
        """
        records = list(records)
        report = self._validator.validate(records)

        if self._config.strict_mode and not report.is_valid:
            raise RuntimeError(
                f"Strict mode: input produced {len(report.errors)} "
                f"validation error(s):\n" + "\n".join(report.errors)
            )

        output = AnalysisOutput(
            record_count=len(records),
            validation_errors=report.errors,
            validation_warnings=report.warnings,
        )

        if patterns is not None:
            output.pattern_hits = self.scan(records, patterns, cancel_token)

        # Non-finite amounts are already reported as validation errors
        comparable = [r for r in records if math.isfinite(r.amount)]
        if len(comparable) < len(records):
            logger.warning(
                "Excluding %d record(s) with non-finite amounts from "
                "duplicate detection",
                len(records) - len(comparable),
            )

        if detect_duplicates:
            output.duplicates = self.find_duplicates(comparable, strategy, cancel_token)
        if group:
            output.groups = self._detector.group_duplicates(comparable)
        if categorize:
            output.category_suggestions = self.suggest_categories(records)

        logger.info(
            "Analysis complete — records=%d, duplicates=%d, pattern_hits=%d, "
            "errors=%d, warnings=%d",
            len(records),
            len(output.duplicates),
            len(output.pattern_hits),
            len(report.errors),
            len(report.warnings),
        )
        return output

    def scan(
        self,
        records: Sequence[TransactionRecord],
        patterns: Iterable[str],
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[PatternHit]:
        """Scan record texts for *patterns*; large inputs are chunked."""
        automaton = self.automaton_for(patterns)
        parallel = self._config.parallel

        if len(records) <= parallel.scan_chunk_size:
            return scan_records(automaton, records)

        return search_transactions_parallel(
            records,
            automaton=automaton,
            chunk_size=parallel.scan_chunk_size,
            max_concurrency=parallel.max_concurrency,
            executor=parallel.executor,
            cancel_token=cancel_token,
        )

    def scan_in_batches(
        self,
        records: Sequence[TransactionRecord],
        patterns: Iterable[str],
        on_batch_complete: Optional[Callable[[int, int], None]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[PatternHit]:
        """Sequential batched scan, pausing ``batch_delay_seconds`` between batches."""
        automaton = self.automaton_for(patterns)
        parallel = self._config.parallel

        return process_batches(
            records,
            parallel.scan_chunk_size,
            lambda batch, index: scan_records(
                automaton, batch, index * parallel.scan_chunk_size
            ),
            on_batch_complete=on_batch_complete,
            delay_seconds=parallel.batch_delay_seconds,
            cancel_token=cancel_token,
        )

    def find_duplicates(
        self,
        records: Sequence[TransactionRecord],
        strategy: str = "exhaustive",
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[DuplicateMatch]:
        """Detect duplicates with the chosen traversal strategy."""
        if strategy not in STRATEGIES:
            raise PreconditionViolation(
                f"Unknown strategy {strategy!r}. Must be one of {STRATEGIES}."
            )

        if strategy == "exhaustive":
            return self._detector.detect_duplicates(records)
        if strategy == "blocked":
            return self._detector.detect_duplicates_optimized(records)

        parallel = self._config.parallel
        return detect_duplicates_parallel(
            records,
            chunk_size=parallel.chunk_size,
            detector=self._detector,
            max_concurrency=parallel.max_concurrency,
            executor=parallel.executor,
            on_progress=self._log_progress,
            cancel_token=cancel_token,
        )

    def suggest_categories(
        self, records: Sequence[TransactionRecord]
    ) -> Dict[int, str]:
        """Map uncategorised record ids to a catalog category."""
        suggestions: Dict[int, str] = {}
        for r in records:
            if r.category:
                continue
            category = self._catalog.suggest_category(r.text)
            if category is not None:
                suggestions[r.id] = category
        return suggestions

    def automaton_for(self, patterns: Iterable[str]) -> AhoCorasickAutomaton:
        """Return a built automaton for *patterns*, reusing cached ones."""
        normalized = {self._normalizer.normalize_pattern(p) for p in patterns}
        key = ("automaton", tuple(sorted(p for p in normalized if p)))

        def _compile() -> AhoCorasickAutomaton:
            automaton = AhoCorasickAutomaton(key[1], self._normalizer)
            automaton.build()
            return automaton

        automaton, cached = self._cache.get_or_compute(key, _compile)
        logger.debug("Automaton for %d patterns (cached=%s)", len(key[1]), cached)
        return automaton

    @staticmethod
    def _log_progress(completed: int, total: int) -> None:
        logger.info("Duplicate scan progress: %d/%d tasks", completed, total)

    # ------------------------------------------------------------------ #
    # Utility
    # ------------------------------------------------------------------ #

    def add_patterns(self, mapping: Dict[str, str]) -> None:
        """Hot-add catalog patterns after pipeline construction."""
        self._catalog.add_patterns(mapping)

    @property
    def pattern_count(self) -> int:
        return self._catalog.size

    @property
    def detector(self) -> DuplicateDetector:
        return self._detector
