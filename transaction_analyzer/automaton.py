"""
Aho–Corasick Multi-Pattern Matcher.

Scans transaction text for every occurrence of a set of known merchant /
category keywords in a single left-to-right pass.

Node storage
------------
Nodes live in a flat arena of parallel lists addressed by integer id:

* ``_children[n]`` — ``{char: child_id}`` forward edges
* ``_fail[n]``     — failure link (id of the longest proper suffix of the
  node's path that is also a trie path); root's link is root itself
* ``_terminal[n]`` — patterns that end exactly at ``n``
* ``_outputs[n]``  — terminal patterns plus everything reachable through
  the failure chain (filled by ``build``)
* ``_depth[n]``    — distance from the root

Failure links are therefore plain indices with no ownership cycles.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Union

from transaction_analyzer.logging_setup import get_logger
from transaction_analyzer.normalizer import TextNormalizer
from transaction_analyzer.schema import PatternHit, PatternMatch, TransactionRecord

logger = get_logger("automaton")

ROOT = 0


@dataclass(frozen=True)
class AutomatonStats:
    """Shape of the trie behind an automaton."""

    pattern_count: int
    node_count: int
    max_depth: int
    avg_pattern_length: float


class AhoCorasickAutomaton:
    """Trie of patterns augmented with failure links.

    Patterns are normalised (lowercase, trimmed) on insertion; scanned
    text is only lowercased, and reported positions are mapped back onto
    the caller's string even where lowercasing changes its length.
    Matching builds the automaton lazily when patterns were added since
    the last ``build``.

    Parameters
    ----------
    patterns:
        Optional initial patterns.
    normalizer:
        Shared ``TextNormalizer``; a fresh one is created when omitted.
    """

    def __init__(
        self,
        patterns: Optional[Iterable[str]] = None,
        normalizer: Optional[TextNormalizer] = None,
    ) -> None:
        self._normalizer = normalizer or TextNormalizer()
        self._reset()
        if patterns:
            self.add_patterns(patterns)

    def _reset(self) -> None:
        self._children: List[Dict[str, int]] = []
        self._fail: List[int] = []
        self._terminal: List[List[str]] = []
        self._outputs: List[List[str]] = []
        self._depth: List[int] = []
        self._patterns: List[str] = []
        self._pattern_set: set[str] = set()
        self._built = False
        self._new_node(depth=0)

    def _new_node(self, depth: int) -> int:
        self._children.append({})
        self._fail.append(ROOT)
        self._terminal.append([])
        self._outputs.append([])
        self._depth.append(depth)
        return len(self._children) - 1

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #

    def add_pattern(self, raw: str) -> None:
        """Register one pattern.  Empty and repeated patterns are no-ops."""
        pattern = self._normalizer.normalize_pattern(raw)
        if not pattern or pattern in self._pattern_set:
            return

        node = ROOT
        for ch in pattern:
            child = self._children[node].get(ch)
            if child is None:
                child = self._new_node(self._depth[node] + 1)
                self._children[node][ch] = child
            node = child

        self._terminal[node].append(pattern)
        self._patterns.append(pattern)
        self._pattern_set.add(pattern)
        self._built = False

    def add_patterns(self, patterns: Iterable[str]) -> None:
        for pattern in patterns:
            self.add_pattern(pattern)

    def build(self) -> None:
        """Resolve failure links and propagate outputs breadth-first.

        Calling ``build`` again without adding patterns does nothing.
        """
        if self._built:
            return

        queue: deque[int] = deque()
        self._fail[ROOT] = ROOT
        self._outputs[ROOT] = list(self._terminal[ROOT])

        for child in self._children[ROOT].values():
            self._fail[child] = ROOT
            self._outputs[child] = list(self._terminal[child])
            queue.append(child)

        while queue:
            node = queue.popleft()
            for ch, child in self._children[node].items():
                queue.append(child)

                target = self._fail[node]
                while target != ROOT and ch not in self._children[target]:
                    target = self._fail[target]
                fail = self._children[target].get(ch, ROOT)
                self._fail[child] = fail

                # Suffix propagation: ``fail`` sits at a smaller depth, so
                # its outputs are already final.
                merged = list(self._terminal[child])
                merged.extend(
                    p for p in self._outputs[fail] if p not in merged
                )
                self._outputs[child] = merged

        self._built = True
        logger.debug(
            "Automaton built: %d patterns, %d nodes",
            len(self._patterns),
            len(self._children),
        )

    def clear(self) -> None:
        """Drop every pattern and node."""
        self._reset()

    # ------------------------------------------------------------------ #
    # Scanning
    # ------------------------------------------------------------------ #

    def _step(self, node: int, ch: str) -> int:
        while node != ROOT and ch not in self._children[node]:
            node = self._fail[node]
        return self._children[node].get(ch, node)

    def match(self, text: str) -> List[PatternMatch]:
        """Return every pattern occurrence in *text*.

        Matches are ordered by end position; at the same end position the
        longer pattern comes first.
        """
        if not text or not self._patterns:
            return []
        self.build()

        scan, offsets = self._normalizer.scan_text_with_offsets(text)
        results: List[PatternMatch] = []
        node = ROOT
        for i, ch in enumerate(scan):
            node = self._step(node, ch)
            for pattern in self._outputs[node]:
                results.append(
                    PatternMatch(
                        pattern=pattern,
                        start_position=offsets[i - len(pattern) + 1],
                        end_position=offsets[i] + 1,
                    )
                )
        return results

    search = match

    def contains(self, text: str) -> bool:
        """True as soon as any pattern occurs in *text*."""
        if not text or not self._patterns:
            return False
        self.build()

        node = ROOT
        for ch in self._normalizer.normalize_scan_text(text):
            node = self._step(node, ch)
            if self._outputs[node]:
                return True
        return False

    def count(self, text: str) -> int:
        return len(self.match(text))

    def get_matched_patterns(self, text: str) -> List[str]:
        """Unique matched patterns, in order of first occurrence."""
        seen: Dict[str, None] = {}
        for m in self.match(text):
            seen.setdefault(m.pattern, None)
        return list(seen)

    # ------------------------------------------------------------------ #
    # Rewriting
    # ------------------------------------------------------------------ #

    def replace(
        self,
        text: str,
        replacement: Union[str, Callable[[str], str]],
    ) -> str:
        """Replace every occurrence, working right-to-left.

        Overlapping occurrences are each rewritten in turn, so results for
        nested patterns depend on the pattern set.
        """
        result = text
        for m in sorted(self.match(text), key=lambda m: m.start_position, reverse=True):
            new = replacement(m.pattern) if callable(replacement) else replacement
            result = result[:m.start_position] + new + result[m.end_position:]
        return result

    def highlight(self, text: str, highlight_fn: Callable[[str, str], str]) -> str:
        """Wrap every occurrence with ``highlight_fn(matched_text, pattern)``."""
        result = text
        for m in sorted(self.match(text), key=lambda m: m.start_position, reverse=True):
            fragment = text[m.start_position:m.end_position]
            result = (
                result[:m.start_position]
                + highlight_fn(fragment, m.pattern)
                + result[m.end_position:]
            )
        return result

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def patterns(self) -> List[str]:
        return list(self._patterns)

    @property
    def is_built(self) -> bool:
        return self._built

    @property
    def node_count(self) -> int:
        return len(self._children)

    def failure_link(self, node: int) -> int:
        return self._fail[node]

    def get_stats(self) -> AutomatonStats:
        avg = (
            sum(len(p) for p in self._patterns) / len(self._patterns)
            if self._patterns
            else 0.0
        )
        return AutomatonStats(
            pattern_count=len(self._patterns),
            node_count=len(self._children),
            max_depth=max(self._depth),
            avg_pattern_length=avg,
        )


# ---------------------------------------------------------------------------
# Transaction helpers
# ---------------------------------------------------------------------------

# Merchants, spending categories, payment methods and billing words that
# commonly appear in Mexican bank statement descriptions.
DEFAULT_TRANSACTION_PATTERNS: tuple[str, ...] = (
    "netflix", "spotify", "uber", "rappi", "didi",
    "amazon", "mercadolibre", "walmart", "soriana",
    "supermercado", "restaurant", "gasolina", "transporte",
    "educacion", "salud", "entretenimiento", "renta",
    "luz", "agua", "gas", "internet", "telefono",
    "tarjeta", "efectivo", "transferencia", "cheque",
    "pago", "compra", "servicio", "suscripcion",
    "factura", "recibo", "cargo", "abono",
)


def create_transaction_pattern_matcher(
    extra_patterns: Optional[Iterable[str]] = None,
) -> AhoCorasickAutomaton:
    """Return a built automaton over ``DEFAULT_TRANSACTION_PATTERNS``."""
    automaton = AhoCorasickAutomaton(DEFAULT_TRANSACTION_PATTERNS)
    if extra_patterns:
        automaton.add_patterns(extra_patterns)
    automaton.build()
    return automaton


def scan_records(
    automaton: AhoCorasickAutomaton,
    records: Sequence[TransactionRecord],
    start_index: int = 0,
) -> List[PatternHit]:
    """Scan each record's text; only records with matches are reported.

    ``start_index`` offsets the reported indices, which lets chunked
    callers report positions in the full input.
    """
    hits: List[PatternHit] = []
    for offset, record in enumerate(records):
        found = automaton.get_matched_patterns(record.text)
        if found:
            hits.append(
                PatternHit(
                    index=start_index + offset,
                    record_id=record.id,
                    patterns=found,
                )
            )
    return hits


def search_transactions(
    records: Sequence[TransactionRecord],
    patterns: Iterable[str],
) -> List[PatternHit]:
    """Build an automaton over *patterns* and scan every record."""
    automaton = AhoCorasickAutomaton(patterns)
    automaton.build()
    hits = scan_records(automaton, records)
    logger.info(
        "Scanned %d records for %d patterns — %d with matches",
        len(records),
        len(automaton.patterns),
        len(hits),
    )
    return hits
