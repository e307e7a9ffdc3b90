"""
Unit tests for the AhoCorasickAutomaton and the transaction scan helpers.
"""

from __future__ import annotations

import datetime as dt

import pytest

from transaction_analyzer.automaton import (
    DEFAULT_TRANSACTION_PATTERNS,
    AhoCorasickAutomaton,
    create_transaction_pattern_matcher,
    scan_records,
    search_transactions,
)
from transaction_analyzer.schema import PatternMatch, TransactionRecord, TransactionType


def _tx(id: int, text: str) -> TransactionRecord:
    return TransactionRecord(
        id=id,
        text=text,
        amount=100.0,
        date=dt.date(2025, 10, 5),
        type=TransactionType.EXPENSE,
    )


@pytest.fixture
def classic() -> AhoCorasickAutomaton:
    automaton = AhoCorasickAutomaton(["he", "she", "his", "hers"])
    automaton.build()
    return automaton


# ======================================================================
# Matching
# ======================================================================

class TestMatch:
    def test_nested_suffix_pattern(self) -> None:
        automaton = AhoCorasickAutomaton(["netflix", "flix"])
        matches = automaton.match("mi pago netflix mensual")
        assert matches == [
            PatternMatch("netflix", 8, 15),
            PatternMatch("flix", 11, 15),
        ]

    def test_classic_ushers(self, classic: AhoCorasickAutomaton) -> None:
        matches = classic.match("ushers")
        assert [(m.pattern, m.start_position, m.end_position) for m in matches] == [
            ("she", 1, 4),
            ("he", 2, 4),
            ("hers", 2, 6),
        ]

    def test_case_insensitive_positions(self) -> None:
        automaton = AhoCorasickAutomaton(["NETFLIX"])
        text = "Pago NetFlix"
        [m] = automaton.match(text)
        assert m.pattern == "netflix"
        assert text[m.start_position:m.end_position] == "NetFlix"

    def test_positions_survive_length_changing_lowercase(self) -> None:
        # "İ".lower() is two code points
        text = "İİ PAGO"
        [m] = AhoCorasickAutomaton(["pago"]).match(text)
        assert (m.start_position, m.end_position) == (3, 7)
        assert text[m.start_position:m.end_position] == "PAGO"

    def test_highlight_after_length_changing_lowercase(self) -> None:
        automaton = AhoCorasickAutomaton(["pago"])
        text = "İstanbul pago"
        assert automaton.highlight(text, lambda frag, _: f"[{frag}]") == (
            "İstanbul [pago]"
        )
        assert automaton.replace(text, "X") == "İstanbul X"

    def test_non_ascii_pattern(self) -> None:
        automaton = AhoCorasickAutomaton(["educación"])
        assert automaton.get_matched_patterns("PAGO EDUCACIÓN") == ["educación"]

    def test_empty_inputs(self) -> None:
        assert AhoCorasickAutomaton().match("pago netflix") == []
        assert AhoCorasickAutomaton(["uber"]).match("") == []

    def test_search_alias(self, classic: AhoCorasickAutomaton) -> None:
        assert classic.search("ushers") == classic.match("ushers")

    def test_count_and_unique_patterns(self) -> None:
        automaton = AhoCorasickAutomaton(["netflix", "flix"])
        text = "netflix netflix flix"
        assert automaton.count(text) == 5
        assert automaton.get_matched_patterns(text) == ["netflix", "flix"]

    @pytest.mark.parametrize(
        "text", ["ushers", "hi there", "his", "nothing", "", "HERS"]
    )
    def test_contains_agrees_with_match(
        self, classic: AhoCorasickAutomaton, text: str
    ) -> None:
        assert classic.contains(text) == bool(classic.match(text))


# ======================================================================
# Construction
# ======================================================================

class TestConstruction:
    def test_empty_and_repeated_patterns_ignored(self) -> None:
        automaton = AhoCorasickAutomaton(["uber", "", "  ", "UBER", " uber "])
        assert automaton.patterns == ["uber"]

    def test_build_is_idempotent(self, classic: AhoCorasickAutomaton) -> None:
        before = (classic.node_count, classic.patterns, classic.match("ushers"))
        classic.build()
        classic.build()
        assert (classic.node_count, classic.patterns, classic.match("ushers")) == before

    def test_add_after_build_rebuilds_lazily(self, classic: AhoCorasickAutomaton) -> None:
        classic.add_pattern("us")
        assert not classic.is_built
        assert "us" in classic.get_matched_patterns("ushers")
        assert classic.is_built

    def test_failure_links(self, classic: AhoCorasickAutomaton) -> None:
        # Node ids follow insertion order:
        # he: h=1 e=2 | she: s=3 h=4 e=5 | his: i=6 s=7 | hers: r=8 s=9
        assert classic.failure_link(0) == 0
        assert classic.failure_link(1) == 0
        assert classic.failure_link(4) == 1
        assert classic.failure_link(5) == 2
        assert classic.failure_link(7) == 3
        assert classic.failure_link(9) == 3

    def test_stats(self, classic: AhoCorasickAutomaton) -> None:
        stats = classic.get_stats()
        assert stats.pattern_count == 4
        assert stats.node_count == 10
        assert stats.max_depth == 4
        assert stats.avg_pattern_length == pytest.approx(3.0)

    def test_clear(self, classic: AhoCorasickAutomaton) -> None:
        classic.clear()
        assert classic.patterns == []
        assert classic.node_count == 1
        assert classic.match("ushers") == []


# ======================================================================
# Rewriting
# ======================================================================

class TestRewriting:
    def test_replace(self) -> None:
        automaton = AhoCorasickAutomaton(["netflix"])
        assert automaton.replace("Pago Netflix y NETFLIX", "***") == "Pago *** y ***"

    def test_replace_with_callable(self) -> None:
        automaton = AhoCorasickAutomaton(["uber", "rappi"])
        result = automaton.replace("uber y rappi", lambda p: p.upper())
        assert result == "UBER y RAPPI"

    def test_highlight_keeps_original_case(self) -> None:
        automaton = AhoCorasickAutomaton(["netflix"])
        result = automaton.highlight("Pago Netflix", lambda frag, _p: f"[{frag}]")
        assert result == "Pago [Netflix]"


# ======================================================================
# Transaction helpers
# ======================================================================

class TestTransactionHelpers:
    def test_default_matcher(self) -> None:
        automaton = create_transaction_pattern_matcher()
        assert automaton.is_built
        assert len(automaton.patterns) == len(DEFAULT_TRANSACTION_PATTERNS)
        assert automaton.contains("Pago con TARJETA")

    def test_default_matcher_extra_patterns(self) -> None:
        automaton = create_transaction_pattern_matcher(["oxxo"])
        assert automaton.get_matched_patterns("Compra OXXO") == ["compra", "oxxo"]

    def test_scan_records_skips_misses(self) -> None:
        records = [_tx(10, "Pago Netflix"), _tx(11, "Sin coincidencias"), _tx(12, "Uber")]
        automaton = AhoCorasickAutomaton(["netflix", "uber"])
        hits = scan_records(automaton, records, start_index=100)
        assert [(h.index, h.record_id, h.patterns) for h in hits] == [
            (100, 10, ["netflix"]),
            (102, 12, ["uber"]),
        ]

    def test_search_transactions(self) -> None:
        records = [_tx(1, "Rappi pedido"), _tx(2, "Renta depto")]
        hits = search_transactions(records, ["rappi", "renta"])
        assert [h.record_id for h in hits] == [1, 2]
