"""
Integration tests for the full TransactionAnalysisPipeline.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from pathlib import Path

import pytest

from transaction_analyzer.cache import TTLCache
from transaction_analyzer.config import (
    AnalysisConfig,
    DuplicateDetectionConfig,
    ParallelConfig,
    ValidationConfig,
)
from transaction_analyzer.exceptions import PreconditionViolation
from transaction_analyzer.pipeline import TransactionAnalysisPipeline
from transaction_analyzer.record_builder import RecordBuilder

ROWS = [
    {"id": 1, "descripcion": "Uber viaje", "monto": "120.00", "fecha": "2025-10-05", "tipo": "gasto"},
    {"id": 2, "descripcion": "UBER VIAJE", "monto": "120.50", "fecha": "2025-10-06", "tipo": "gasto"},
    {"id": 3, "descripcion": "Pago Netflix", "monto": "199", "fecha": "2025-10-01", "tipo": "gasto"},
    {"id": 4, "descripcion": "Pago Netflix", "monto": "199", "fecha": "2025-10-01", "tipo": "gasto"},
    {"id": 5, "descripcion": "Nomina quincenal", "monto": "15,000", "fecha": "2025-10-15", "tipo": "ingreso"},
    {"id": 6, "descripcion": "Recibo luz CFE", "monto": "820", "fecha": "2025-10-20", "tipo": "gasto",
     "categoria": "servicios"},
]


@pytest.fixture
def pipeline() -> TransactionAnalysisPipeline:
    return TransactionAnalysisPipeline(
        config=AnalysisConfig(
            parallel=ParallelConfig(chunk_size=2, scan_chunk_size=2, max_concurrency=2),
            log_level=logging.WARNING,
        )
    )


@pytest.fixture
def strict_pipeline() -> TransactionAnalysisPipeline:
    return TransactionAnalysisPipeline(
        config=AnalysisConfig(
            validation=ValidationConfig(error_on_duplicate_id=True),
            strict_mode=True,
            log_level=logging.WARNING,
        )
    )


# ======================================================================
# Duplicate detection
# ======================================================================

class TestDuplicates:
    def test_default_run(self, pipeline: TransactionAnalysisPipeline) -> None:
        result = pipeline.analyze_dicts(ROWS)
        assert result.success
        assert result.record_count == 6
        assert result.duplicate_pairs() == [(3, 4), (1, 2)]
        assert result.pattern_hits == []

    @pytest.mark.parametrize("strategy", ["blocked", "parallel"])
    def test_strategies_agree(
        self, pipeline: TransactionAnalysisPipeline, strategy: str
    ) -> None:
        baseline = pipeline.analyze_dicts(ROWS)
        result = pipeline.analyze_dicts(ROWS, strategy=strategy)
        assert [m.to_dict() for m in result.duplicates] == [
            m.to_dict() for m in baseline.duplicates
        ]

    def test_unknown_strategy(self, pipeline: TransactionAnalysisPipeline) -> None:
        with pytest.raises(PreconditionViolation, match="strategy"):
            pipeline.analyze_dicts(ROWS, strategy="quantum")

    def test_detection_can_be_skipped(self, pipeline: TransactionAnalysisPipeline) -> None:
        result = pipeline.analyze_dicts(ROWS, detect_duplicates=False)
        assert result.duplicates == []

    def test_groups(self, pipeline: TransactionAnalysisPipeline) -> None:
        result = pipeline.analyze_dicts(ROWS, detect_duplicates=False, group=True)
        assert [[r.id for r in g] for g in result.groups] == [[1, 2], [3, 4], [5], [6]]

    def test_custom_threshold(self) -> None:
        pipeline = TransactionAnalysisPipeline(
            AnalysisConfig(
                detection=DuplicateDetectionConfig(threshold=0.95),
                log_level=logging.WARNING,
            )
        )
        assert pipeline.analyze_dicts(ROWS).duplicate_pairs() == [(3, 4)]


# ======================================================================
# Pattern scanning and categories
# ======================================================================

class TestScanning:
    def test_pattern_hits(self, pipeline: TransactionAnalysisPipeline) -> None:
        result = pipeline.analyze_dicts(
            ROWS, patterns=["uber", "netflix", "pago"], detect_duplicates=False
        )
        assert [(h.record_id, h.patterns) for h in result.pattern_hits] == [
            (1, ["uber"]),
            (2, ["uber"]),
            (3, ["pago", "netflix"]),
            (4, ["pago", "netflix"]),
        ]

    def test_chunked_scan_matches_single_pass(
        self, pipeline: TransactionAnalysisPipeline
    ) -> None:
        records = RecordBuilder().read_dicts(ROWS)
        chunked = pipeline.scan(records, ["luz", "nomina"])
        single = TransactionAnalysisPipeline(
            AnalysisConfig(log_level=logging.WARNING)
        ).scan(records, ["luz", "nomina"])
        assert [h.to_dict() for h in chunked] == [h.to_dict() for h in single]
        assert [h.index for h in chunked] == [4, 5]

    def test_batched_scan_reports_progress(
        self, pipeline: TransactionAnalysisPipeline
    ) -> None:
        records = RecordBuilder().read_dicts(ROWS)
        progress = []
        hits = pipeline.scan_in_batches(
            records,
            ["luz", "nomina"],
            on_batch_complete=lambda done, total: progress.append((done, total)),
        )
        assert [h.index for h in hits] == [4, 5]
        assert progress == [(1, 3), (2, 3), (3, 3)]

    def test_category_suggestions(self, pipeline: TransactionAnalysisPipeline) -> None:
        result = pipeline.analyze_dicts(ROWS, detect_duplicates=False, categorize=True)
        # Record 6 already has a category
        assert result.category_suggestions == {
            1: "transporte",
            2: "transporte",
            3: "entretenimiento",
            4: "entretenimiento",
            5: "ingresos",
        }

    def test_add_patterns(self, pipeline: TransactionAnalysisPipeline) -> None:
        before = pipeline.pattern_count
        pipeline.add_patterns({"quincenal": "ingresos extra"})
        assert pipeline.pattern_count == before + 1
        result = pipeline.analyze_dicts(ROWS, detect_duplicates=False, categorize=True)
        assert result.category_suggestions[5] == "ingresos extra"

    def test_custom_pattern_file(self, tmp_path: Path) -> None:
        path = tmp_path / "patterns.json"
        path.write_text(json.dumps({"viaje": "viajes"}), encoding="utf-8")
        pipeline = TransactionAnalysisPipeline(
            AnalysisConfig(custom_pattern_path=path, log_level=logging.WARNING)
        )
        result = pipeline.analyze_dicts(ROWS[:1], detect_duplicates=False, categorize=True)
        assert result.category_suggestions == {1: "viajes"}


# ======================================================================
# Automaton cache
# ======================================================================

class TestAutomatonCache:
    def test_same_pattern_set_reused(self, pipeline: TransactionAnalysisPipeline) -> None:
        first = pipeline.automaton_for(["Uber", "netflix"])
        second = pipeline.automaton_for(["netflix", " uber "])
        assert first is second

    def test_expired_entry_rebuilt(self) -> None:
        now = [0.0]
        cache = TTLCache(ttl_seconds=10, clock=lambda: now[0])
        pipeline = TransactionAnalysisPipeline(
            AnalysisConfig(log_level=logging.WARNING), cache=cache
        )
        first = pipeline.automaton_for(["uber"])
        now[0] = 11.0
        assert pipeline.automaton_for(["uber"]) is not first


# ======================================================================
# Validation and strict mode
# ======================================================================

class TestValidation:
    def test_duplicate_ids_reported(self, pipeline: TransactionAnalysisPipeline) -> None:
        rows = ROWS + [dict(ROWS[0])]
        result = pipeline.analyze_dicts(rows, detect_duplicates=False)
        assert not result.success
        assert "Duplicate record id 1" in result.validation_errors[0]

    @pytest.mark.parametrize("strategy", ["exhaustive", "blocked", "parallel"])
    @pytest.mark.parametrize("bad_amount", [float("nan"), float("inf")])
    def test_non_finite_amount_reported_not_raised(
        self,
        pipeline: TransactionAnalysisPipeline,
        strategy: str,
        bad_amount: float,
    ) -> None:
        records = RecordBuilder().read_dicts(ROWS)
        broken = dataclasses.replace(records[0], id=99, amount=bad_amount)
        result = pipeline.analyze_records(
            records + [broken], strategy=strategy, group=True
        )
        assert not result.success
        assert "Record 99 has non-finite amount" in result.validation_errors[0]
        assert result.duplicate_pairs() == [(3, 4), (1, 2)]
        assert all(r.id != 99 for g in result.groups for r in g)

    def test_strict_mode_raises(self, strict_pipeline: TransactionAnalysisPipeline) -> None:
        rows = ROWS + [dict(ROWS[0])]
        with pytest.raises(RuntimeError, match="Strict mode"):
            strict_pipeline.analyze_dicts(rows)

    def test_strict_mode_clean_input(self, strict_pipeline: TransactionAnalysisPipeline) -> None:
        assert strict_pipeline.analyze_dicts(ROWS).success

    def test_bad_row(self, pipeline: TransactionAnalysisPipeline) -> None:
        with pytest.raises(ValueError, match="Row 0"):
            pipeline.analyze_dicts([{"id": 1, "monto": "x", "fecha": "2025-10-05", "tipo": "gasto"}])


# ======================================================================
# Input formats and serialisation
# ======================================================================

class TestFormats:
    def test_json_input(self, pipeline: TransactionAnalysisPipeline) -> None:
        result = pipeline.analyze_json(json.dumps({"transactions": ROWS}))
        assert result.duplicate_pairs() == [(3, 4), (1, 2)]

    def test_csv_input(self, pipeline: TransactionAnalysisPipeline) -> None:
        text = (
            "id,descripcion,monto,fecha,tipo\n"
            "1,Pago Netflix,199,2025-10-01,gasto\n"
            "2,Pago Netflix,199,2025-10-01,gasto\n"
        )
        assert pipeline.analyze_csv(text).duplicate_pairs() == [(1, 2)]

    def test_to_dict_serialisable(self, pipeline: TransactionAnalysisPipeline) -> None:
        result = pipeline.analyze_dicts(
            ROWS, patterns=["uber"], group=True, categorize=True
        )
        data = json.loads(json.dumps(result.to_dict()))
        assert data["record_count"] == 6
        assert data["duplicates"][0] == {
            "first_id": 3,
            "second_id": 4,
            "score": 1.0,
            "reasons": [
                "very similar text",
                "near-identical amount",
                "dates very close",
                "same category",
                "same type",
            ],
            "confidence": "high",
        }
        assert data["category_suggestions"]["1"] == "transporte"
