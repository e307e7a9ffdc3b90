"""
Pattern Catalog.

A curated, configurable mapping from merchant / keyword patterns found in
transaction descriptions to spending categories.  The catalog compiles
into an ``AhoCorasickAutomaton`` so that a single pass over a description
finds every known pattern.

Design decisions
----------------
* Keys are stored in automaton form (lowercase, trimmed) so lookups after
  a scan are plain dict hits.
* Users extend the catalog at runtime via ``load_custom_patterns`` (JSON
  file) or ``add_pattern`` / ``add_patterns``.
* When several patterns match one description the longest wins; ties go
  to the earliest occurrence.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional, Union

from transaction_analyzer.automaton import AhoCorasickAutomaton
from transaction_analyzer.logging_setup import get_logger
from transaction_analyzer.normalizer import TextNormalizer

logger = get_logger("pattern_catalog")


# ---------------------------------------------------------------------------
# Built-in catalog
# ---------------------------------------------------------------------------
# Convention: key = pattern as written in statements, value = category.

_BUILTIN_PATTERNS: Dict[str, str] = {
    # --- Subscriptions / entertainment ---
    "netflix": "entretenimiento",
    "spotify": "entretenimiento",
    "disney plus": "entretenimiento",
    "cinepolis": "entretenimiento",
    "cinemex": "entretenimiento",
    "entretenimiento": "entretenimiento",
    "suscripcion": "entretenimiento",

    # --- Transport ---
    "uber": "transporte",
    "didi": "transporte",
    "cabify": "transporte",
    "transporte": "transporte",
    "gasolina": "transporte",
    "pemex": "transporte",
    "caseta": "transporte",

    # --- Food ---
    "rappi": "alimentos",
    "uber eats": "alimentos",
    "didi food": "alimentos",
    "restaurant": "alimentos",
    "supermercado": "alimentos",
    "walmart": "alimentos",
    "soriana": "alimentos",
    "chedraui": "alimentos",
    "oxxo": "alimentos",

    # --- Shopping ---
    "amazon": "compras",
    "mercadolibre": "compras",
    "liverpool": "compras",
    "compra": "compras",

    # --- Housing & utilities ---
    "renta": "vivienda",
    "luz": "servicios",
    "cfe": "servicios",
    "agua": "servicios",
    "gas": "servicios",
    "internet": "servicios",
    "telefono": "servicios",
    "telmex": "servicios",
    "izzi": "servicios",
    "totalplay": "servicios",
    "telcel": "servicios",

    # --- Health & education ---
    "salud": "salud",
    "farmacia": "salud",
    "hospital": "salud",
    "educacion": "educacion",
    "colegiatura": "educacion",

    # --- Money movement ---
    "transferencia": "transferencias",
    "spei": "transferencias",
    "deposito": "transferencias",
    "retiro": "efectivo",
    "efectivo": "efectivo",
    "cajero": "efectivo",

    # --- Income ---
    "nomina": "ingresos",
    "salario": "ingresos",
    "abono": "ingresos",
}


class PatternCatalog:
    """Pattern → category dictionary backed by an Aho–Corasick automaton.

    Parameters
    ----------
    normalizer:
        An instance of ``TextNormalizer`` used to normalise both built-in
        and user-supplied patterns.
    extra_patterns:
        Optional dict of additional ``{pattern: category}`` entries merged
        in at construction time.
    """

    def __init__(
        self,
        normalizer: Optional[TextNormalizer] = None,
        extra_patterns: Optional[Dict[str, str]] = None,
    ) -> None:
        self._normalizer = normalizer or TextNormalizer()
        self._dict: Dict[str, str] = {}
        self._automaton: Optional[AhoCorasickAutomaton] = None

        for pattern, category in _BUILTIN_PATTERNS.items():
            self._dict[self._normalizer.normalize_pattern(pattern)] = category

        if extra_patterns:
            self.add_patterns(extra_patterns)

    # ------------------------------------------------------------------ #
    # Lookup
    # ------------------------------------------------------------------ #

    def category_of(self, pattern: str) -> Optional[str]:
        """Return the category registered for *pattern*, if any."""
        return self._dict.get(self._normalizer.normalize_pattern(pattern))

    def suggest_category(self, text: str) -> Optional[str]:
        """Suggest a category for a transaction description.

        Returns
        -------
        str | None
            Category of the longest matched pattern, or ``None`` when no
            catalog pattern occurs in *text*.
        """
        matches = self.build_automaton().match(text)
        if not matches:
            return None

        best = min(
            matches,
            key=lambda m: (-(m.end_position - m.start_position), m.start_position),
        )
        category = self._dict[best.pattern]
        logger.debug(
            "Category suggestion: %r → %r (pattern=%r)", text, category, best.pattern
        )
        return category

    def build_automaton(self) -> AhoCorasickAutomaton:
        """Return the compiled automaton, rebuilding after catalog changes."""
        if self._automaton is None:
            automaton = AhoCorasickAutomaton(self._dict.keys(), self._normalizer)
            automaton.build()
            self._automaton = automaton
        return self._automaton

    # ------------------------------------------------------------------ #
    # Extension API
    # ------------------------------------------------------------------ #

    def add_pattern(self, pattern: str, category: str) -> None:
        """Register a single pattern.

        Raises
        ------
        ValueError
            If the pattern or category is empty after normalisation.
        """
        key = self._normalizer.normalize_pattern(pattern)
        category = category.strip() if category else ""
        if not key or not category:
            raise ValueError(
                f"Pattern and category must be non-empty: {pattern!r} → {category!r}"
            )

        if key in self._dict and self._dict[key] != category:
            logger.warning(
                "Overwriting pattern %r: %r → %r", key, self._dict[key], category
            )
        self._dict[key] = category
        self._automaton = None
        logger.debug("Added pattern: %r → %r", key, category)

    def add_patterns(self, mapping: Dict[str, str]) -> None:
        """Bulk-add patterns from a ``{pattern: category}`` dict."""
        for pattern, category in mapping.items():
            self.add_pattern(pattern, category)

    def load_custom_patterns(self, path: Union[str, Path]) -> int:
        """Load patterns from a JSON file (``{pattern: category}``).

        Returns the number of entries added.
        """
        with open(path, encoding="utf-8") as fh:
            data: Dict[str, str] = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError(
                f"Pattern file {path} must contain a JSON object, "
                f"got {type(data).__name__}"
            )
        self.add_patterns(data)
        logger.info("Loaded %d custom patterns from %s", len(data), path)
        return len(data)

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def size(self) -> int:
        return len(self._dict)

    def all_patterns(self) -> Dict[str, str]:
        """Return a *copy* of the internal dictionary."""
        return dict(self._dict)
