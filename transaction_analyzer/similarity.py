"""
Similarity Engine.

A family of deterministic, pure comparison functions.  Every function
returns a value in ``[0, 1]`` where ``1`` means identical.

Edit distance and Jaro come from ``rapidfuzz``; the Winkler prefix bonus
is applied here so that it is granted unconditionally (``rapidfuzz``
only boosts scores above 0.7).  Dice and cosine work on bigram / word
multisets.
"""

from __future__ import annotations

import datetime as dt
import functools
import math
import re
from collections import Counter
from typing import Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence, Union

from rapidfuzz.distance import Jaro, Levenshtein

from transaction_analyzer.config import TEXT_ALGORITHMS, CompositeWeights
from transaction_analyzer.exceptions import PreconditionViolation

SimilarityFn = Callable[[str, str], float]

WeightsLike = Union[CompositeWeights, Mapping[str, float], None]

_TOKEN_RE = re.compile(r"[^\w\s]")

# Winkler: at most this many shared leading characters earn the bonus
_MAX_PREFIX = 4


# ---------------------------------------------------------------------------
# String metrics
# ---------------------------------------------------------------------------

def levenshtein_distance(a: str, b: str) -> int:
    """Minimum number of single-character edits turning *a* into *b*."""
    return Levenshtein.distance(a, b)


def levenshtein_similarity(a: str, b: str) -> float:
    """``1 − distance / max(len(a), len(b))``; two empty strings give 1.0."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / max_len


def jaro_similarity(a: str, b: str) -> float:
    """Classic Jaro similarity (matching window + transpositions)."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return Jaro.similarity(a, b)


def jaro_winkler_similarity(a: str, b: str, prefix_scale: float = 0.1) -> float:
    """Jaro plus ``prefix * prefix_scale * (1 − jaro)``.

    ``prefix`` is the number of shared leading characters, capped at 4.
    """
    jaro = jaro_similarity(a, b)
    prefix = 0
    for ch_a, ch_b in zip(a[:_MAX_PREFIX], b[:_MAX_PREFIX]):
        if ch_a != ch_b:
            break
        prefix += 1
    return jaro + prefix * prefix_scale * (1.0 - jaro)


def _bigrams(text: str) -> Counter:
    return Counter(text[i:i + 2] for i in range(len(text) - 1))


def dice_coefficient(a: str, b: str) -> float:
    """Sørensen–Dice coefficient over character bigram multisets."""
    if a == b:
        return 1.0
    if len(a) < 2 or len(b) < 2:
        return 0.0

    bigrams_a = _bigrams(a)
    bigrams_b = _bigrams(b)
    overlap = sum((bigrams_a & bigrams_b).values())
    total = sum(bigrams_a.values()) + sum(bigrams_b.values())
    return 2.0 * overlap / total


def _tokenize(text: str) -> List[str]:
    return _TOKEN_RE.sub(" ", text.lower()).split()


def cosine_similarity(a: str, b: str) -> float:
    """Cosine of the term-frequency vectors of the words in *a* and *b*."""
    words_a = Counter(_tokenize(a))
    words_b = Counter(_tokenize(b))

    if not words_a and not words_b:
        return 1.0
    if not words_a or not words_b:
        return 0.0

    dot = sum(count * words_b[word] for word, count in words_a.items())
    squares_a = sum(c * c for c in words_a.values())
    squares_b = sum(c * c for c in words_b.values())
    # One square root over an integer product: equal vectors give exactly 1
    return min(1.0, dot / math.sqrt(squares_a * squares_b))


def _coerce_weights(weights: WeightsLike) -> CompositeWeights:
    if weights is None:
        return CompositeWeights()
    if isinstance(weights, CompositeWeights):
        return weights
    defaults = CompositeWeights()
    merged = {
        "levenshtein": defaults.levenshtein,
        "jaro_winkler": defaults.jaro_winkler,
        "dice": defaults.dice,
        "cosine": defaults.cosine,
    }
    merged.update(weights)
    return CompositeWeights(**merged)


def composite_similarity(a: str, b: str, weights: WeightsLike = None) -> float:
    """Weighted sum of Levenshtein, Jaro–Winkler, Dice and cosine.

    Parameters
    ----------
    weights:
        A ``CompositeWeights`` or a partial mapping merged over the
        defaults (0.3 / 0.3 / 0.2 / 0.2).  Weights must sum to 1;
        otherwise ``PreconditionViolation`` is raised.
    """
    w = _coerce_weights(weights)
    total = math.fsum((
        levenshtein_similarity(a, b) * w.levenshtein,
        jaro_winkler_similarity(a, b) * w.jaro_winkler,
        dice_coefficient(a, b) * w.dice,
        cosine_similarity(a, b) * w.cosine,
    ))
    return min(1.0, max(0.0, total))


# ---------------------------------------------------------------------------
# Numbers and dates
# ---------------------------------------------------------------------------

def number_similarity(a: float, b: float, tolerance: float = 0.01) -> float:
    """``max(0, 1 − (|a − b| / max(|a|, |b|)) / tolerance)``.

    Two zeros are identical.  A non-positive tolerance only accepts
    exact equality.
    """
    a = float(a)
    b = float(b)
    largest = max(abs(a), abs(b))
    if largest == 0:
        return 1.0
    relative = abs(a - b) / largest
    if tolerance <= 0:
        return 1.0 if relative == 0 else 0.0
    return max(0.0, 1.0 - relative / tolerance)


def _as_datetime(value: dt.date) -> dt.datetime:
    """Aware UTC datetime for *value*; naive values are taken as UTC."""
    if not isinstance(value, dt.datetime):
        value = dt.datetime.combine(value, dt.time())
    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def days_between(d1: dt.date, d2: dt.date) -> float:
    """Absolute distance in (possibly fractional) days.

    Plain dates, naive and aware datetimes may be mixed freely.
    """
    delta = _as_datetime(d1) - _as_datetime(d2)
    return abs(delta.total_seconds()) / 86400.0


def date_similarity(d1: dt.date, d2: dt.date, tolerance_days: float = 1) -> float:
    """``max(0, 1 − days_between / tolerance_days)``."""
    days = days_between(d1, d2)
    if tolerance_days <= 0:
        return 1.0 if days == 0 else 0.0
    return max(0.0, 1.0 - days / tolerance_days)


# ---------------------------------------------------------------------------
# Algorithm registry and helpers
# ---------------------------------------------------------------------------

_ALGORITHMS: Dict[str, SimilarityFn] = {
    "levenshtein": levenshtein_similarity,
    "jaro-winkler": jaro_winkler_similarity,
    "dice": dice_coefficient,
    "cosine": cosine_similarity,
    "composite": composite_similarity,
}


def get_similarity_function(
    name: str, composite_weights: WeightsLike = None
) -> SimilarityFn:
    """Look up a string metric by name.

    ``composite_weights`` only applies to ``"composite"``.
    """
    try:
        fn = _ALGORITHMS[name]
    except KeyError:
        raise PreconditionViolation(
            f"Unknown similarity algorithm {name!r}. "
            f"Must be one of {TEXT_ALGORITHMS}."
        ) from None

    if name == "composite" and composite_weights is not None:
        weights = _coerce_weights(composite_weights)
        return functools.partial(composite_similarity, weights=weights)
    return fn


class SimilarityResult(NamedTuple):
    candidate: str
    similarity: float
    index: int


def find_most_similar(
    target: str,
    candidates: Sequence[str],
    algorithm: str = "composite",
) -> Optional[SimilarityResult]:
    """Return the candidate most similar to *target*.

    With no candidates the result is ``None``.  When every candidate
    scores 0 the first one is returned.
    """
    if not candidates:
        return None

    fn = get_similarity_function(algorithm)
    best = SimilarityResult(candidates[0], 0.0, 0)
    for index, candidate in enumerate(candidates):
        score = fn(target, candidate)
        if score > best.similarity:
            best = SimilarityResult(candidate, score, index)
    return best


def cluster_similar_strings(
    strings: Sequence[str],
    threshold: float = 0.8,
    algorithm: str = "composite",
) -> List[List[str]]:
    """Greedy single-pass clustering.

    Each unassigned string seeds a cluster and absorbs every later
    unassigned string whose similarity to the seed reaches *threshold*.
    """
    fn = get_similarity_function(algorithm)
    clusters: List[List[str]] = []
    assigned = [False] * len(strings)

    for i, seed in enumerate(strings):
        if assigned[i]:
            continue
        assigned[i] = True
        cluster = [seed]
        for j in range(i + 1, len(strings)):
            if not assigned[j] and fn(seed, strings[j]) >= threshold:
                cluster.append(strings[j])
                assigned[j] = True
        clusters.append(cluster)

    return clusters
