#!/usr/bin/env python3
"""
Example: Transaction Analysis Pipeline Demo.

Scans a small statement for merchant keywords, finds near-duplicate
charges with each traversal strategy and prints the auditable output.

Run from the project root:
    python -m transaction_analyzer.examples.run_example
or:
    python transaction_analyzer/examples/run_example.py
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

# Ensure the project root is on sys.path when run as a script
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from transaction_analyzer.config import (
    AnalysisConfig,
    DuplicateDetectionConfig,
    ParallelConfig,
    ValidationConfig,
)
from transaction_analyzer.duplicate_detector import DuplicateDetector, mark_as_duplicates
from transaction_analyzer.pipeline import TransactionAnalysisPipeline
from transaction_analyzer.record_builder import RecordBuilder


SAMPLE_ROWS = [
    {"id": 1, "descripcion": "Pago Netflix mensual", "monto": "$199.00",
     "fecha": "2025-10-01", "tipo": "gasto", "categoria": "entretenimiento"},
    {"id": 2, "descripcion": "Netflix pago mensual", "monto": "199",
     "fecha": "2025-10-02", "tipo": "gasto", "categoria": "entretenimiento"},
    {"id": 3, "descripcion": "Uber viaje aeropuerto", "monto": "350.50",
     "fecha": "2025-10-03", "tipo": "gasto"},
    {"id": 4, "descripcion": "Uber viaje aeropuerto", "monto": "351.00",
     "fecha": "2025-10-03", "tipo": "gasto"},
    {"id": 5, "descripcion": "Nomina quincenal", "monto": "15,000.00",
     "fecha": "2025-10-15", "tipo": "ingreso"},
    {"id": 6, "descripcion": "Recibo de luz CFE", "monto": "(820)",
     "fecha": "2025-10-20", "tipo": "gasto"},
    {"id": 7, "descripcion": "Compra Amazon audifonos", "monto": "1,299 MXN",
     "fecha": "2025-10-21", "tipo": "gasto"},
]


# ======================================================================
# Helper
# ======================================================================

def print_section(title: str) -> None:
    width = 72
    print("\n" + "=" * width)
    print(f"  {title}")
    print("=" * width)


def print_output(output) -> None:  # noqa: ANN001
    """Pretty-print an AnalysisOutput."""
    d = output.to_dict()
    print(json.dumps(d, indent=2, ensure_ascii=False))
    print(f"\n  ✓ Records       : {output.record_count}")
    print(f"  ⇄ Duplicates    : {len(output.duplicates)}")
    print(f"  ⌕ Pattern hits  : {len(output.pattern_hits)}")
    print(f"  ⚠ Warnings      : {len(output.validation_warnings)}")
    print(f"  ✖ Errors        : {len(output.validation_errors)}")
    print(f"  Success         : {output.success}")


# ======================================================================
# Demo 1: Pattern scan and category suggestions
# ======================================================================

def demo_scan(pipeline: TransactionAnalysisPipeline) -> None:
    print_section("DEMO 1 — Keyword Scan + Category Suggestions")

    result = pipeline.analyze_dicts(
        SAMPLE_ROWS,
        patterns=["netflix", "uber", "amazon", "luz", "pago"],
        detect_duplicates=False,
        categorize=True,
    )
    print_output(result)


# ======================================================================
# Demo 2: Duplicate detection strategies
# ======================================================================

def demo_duplicates(pipeline: TransactionAnalysisPipeline) -> None:
    print_section("DEMO 2 — Duplicates (exhaustive / blocked / parallel)")

    for strategy in ("exhaustive", "blocked", "parallel"):
        result = pipeline.analyze_dicts(SAMPLE_ROWS, strategy=strategy)
        pairs = ", ".join(f"{a}↔{b}" for a, b in result.duplicate_pairs())
        print(f"  {strategy:10s} → {pairs or 'none'}")

    result = pipeline.analyze_dicts(SAMPLE_ROWS, group=True)
    stats = DuplicateDetector.get_stats(result.duplicates)
    marking = mark_as_duplicates(result.duplicates)

    print("\n  Statistics:")
    print(json.dumps(stats.to_dict(), indent=2, ensure_ascii=False))
    print(f"\n  Keep    : {marking.primary}")
    print(f"  Flag    : {marking.duplicates}")
    print(f"  Groups  : {[[r.id for r in g] for g in result.groups]}")


# ======================================================================
# Demo 3: CSV export
# ======================================================================

def demo_export(pipeline: TransactionAnalysisPipeline) -> None:
    print_section("DEMO 3 — CSV Export of Duplicates")

    result = pipeline.analyze_dicts(SAMPLE_ROWS)
    print(RecordBuilder.duplicates_to_csv(result.duplicates))


# ======================================================================
# Main
# ======================================================================

def main() -> None:
    # A slightly looser threshold so near-duplicates with wording changes show up
    config = AnalysisConfig(
        detection=DuplicateDetectionConfig(threshold=0.8),
        parallel=ParallelConfig(chunk_size=3, max_concurrency=2),
        validation=ValidationConfig(warn_on_empty_text=True),
        log_level=logging.WARNING,  # Quieter for demo output
    )

    pipeline = TransactionAnalysisPipeline(config)

    demo_scan(pipeline)
    demo_duplicates(pipeline)
    demo_export(pipeline)

    print("\n" + "=" * 72)
    print("  All demos complete.")
    print("=" * 72)


if __name__ == "__main__":
    main()
