"""
Text Normalization Layer.

Transforms raw transaction text into uniform representations so that the
automaton and the similarity metrics operate on clean, comparable strings.

Three forms are used:

* **comparison** — for similarity scoring: diacritics stripped, lowercase,
  punctuation replaced by spaces, whitespace collapsed.
* **pattern** — for automaton insertion: lowercase, trimmed.
* **scan** — for automaton scanning: lowercase only.  Match positions are
  mapped back onto the caller's original string through per-character
  offsets, since a few characters lowercase to more than one code point.

Amount parsing lives here as well because record readers receive amounts
as free-form strings.
"""

from __future__ import annotations

import math
import re
import unicodedata
from typing import Any, List, Optional, Tuple

from transaction_analyzer.logging_setup import get_logger

logger = get_logger("normalizer")


class TextNormalizer:
    """Stateless text normaliser.  All methods are pure functions."""

    # Currency symbols to strip from amounts
    _CURRENCY_RE = re.compile(r"[$€£¥₹]|\b(?:MXN|USD|EUR)\b", re.IGNORECASE)

    # Parenthetical negative: ``(1234)`` → ``-1234``
    _PAREN_NEG_RE = re.compile(r"^\((.+)\)$")

    # Anything that is neither a word character nor whitespace
    _NON_WORD_RE = re.compile(r"[^\w\s]")

    # Collapse whitespace
    _MULTI_SPACE_RE = re.compile(r"\s+")

    # ------------------------------------------------------------------ #
    # Text forms
    # ------------------------------------------------------------------ #

    def normalize_for_comparison(self, text: str) -> str:
        """Return the comparison form of *text*.

        Applying this twice yields the same result as applying it once.
        """
        if not text:
            return ""
        decomposed = unicodedata.normalize("NFD", text)
        stripped = "".join(
            ch for ch in decomposed if not unicodedata.combining(ch)
        )
        result = stripped.lower()
        result = self._NON_WORD_RE.sub(" ", result)
        result = self._MULTI_SPACE_RE.sub(" ", result).strip()
        return result

    @staticmethod
    def normalize_pattern(raw: str) -> str:
        """Lowercase and trim a pattern before it enters the automaton."""
        return raw.lower().strip() if raw else ""

    @staticmethod
    def normalize_scan_text(text: str) -> str:
        """Lowercase only."""
        return text.lower() if text else ""

    @staticmethod
    def scan_text_with_offsets(text: str) -> Tuple[str, List[int]]:
        """Scan form of *text* plus the source index of every scan character.

        A few characters lowercase to more than one code point
        (``"İ"`` becomes ``"i̇"``), so offsets are needed to map a match
        in the scan form back onto *text*.
        """
        if not text:
            return "", []
        scan = text.lower()
        if len(scan) == len(text):
            return scan, list(range(len(text)))

        pieces: List[str] = []
        offsets: List[int] = []
        for index, ch in enumerate(text):
            lowered = ch.lower()
            pieces.append(lowered)
            offsets.extend([index] * len(lowered))
        return "".join(pieces), offsets

    # ------------------------------------------------------------------ #
    # Amounts
    # ------------------------------------------------------------------ #

    def normalize_amount(self, raw: Any) -> Tuple[Optional[float], list[str]]:
        """Attempt to parse a monetary amount.

        Handles:
        * String numbers with thousands separators: ``"1,234.50"``
        * Currency symbols / codes: ``"$120"``, ``"120 MXN"``
        * Parenthetical negatives: ``"(5000)"``
        * Already-numeric inputs (int / float / Decimal)

        Returns
        -------
        tuple[float | None, list[str]]
            (parsed_value, list_of_warnings).  ``None`` if parsing fails.
        """
        warnings: list[str] = []

        if raw is None:
            warnings.append("Amount is None")
            return None, warnings

        if isinstance(raw, bool):
            warnings.append("Unexpected amount type: bool")
            return None, warnings

        if not isinstance(raw, str):
            try:
                value = float(raw)
            except (TypeError, ValueError):
                warnings.append(f"Unexpected amount type: {type(raw).__name__}")
                return None, warnings
            if math.isnan(value) or math.isinf(value):
                warnings.append(f"Non-finite amount: {raw!r}")
            return value, warnings

        text = raw.strip()
        if not text:
            warnings.append("Amount is empty string")
            return None, warnings

        text = self._CURRENCY_RE.sub("", text).strip()

        m = self._PAREN_NEG_RE.match(text)
        if m:
            text = "-" + m.group(1).strip()

        text = text.replace(",", "").replace(" ", "")

        try:
            value = float(text)
        except ValueError:
            warnings.append(f"Cannot parse amount from: {raw!r}")
            return None, warnings

        logger.debug("normalize_amount: %r → %s (warnings=%s)", raw, value, warnings)
        return value, warnings


_DEFAULT = TextNormalizer()


def normalize_for_comparison(text: str) -> str:
    """Module-level shortcut for ``TextNormalizer().normalize_for_comparison``."""
    return _DEFAULT.normalize_for_comparison(text)
