"""
Record Builder.

Reads raw transaction rows from several formats (dicts, JSON, CSV,
pandas DataFrame) into ``TransactionRecord`` objects, and serialises
analysis output back to JSON / CSV.

Column names are matched case-insensitively.  Both English names and the
Spanish column names of statement exports are understood:

=========  ==========================================
field      accepted columns
=========  ==========================================
id         ``id``
text       ``text``, ``description``, ``descripcion``,
           ``concept``, ``concepto`` (first non-empty)
amount     ``amount``, ``monto``
date       ``date``, ``fecha``
type       ``type``, ``tipo``
category   ``category``, ``categoria`` (optional)
=========  ==========================================
"""

from __future__ import annotations

import csv
import datetime as dt
import json
from io import StringIO
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from transaction_analyzer.logging_setup import get_logger
from transaction_analyzer.normalizer import TextNormalizer
from transaction_analyzer.schema import (
    AnalysisOutput,
    DuplicateMatch,
    TransactionRecord,
    TransactionType,
)

logger = get_logger("record_builder")

_TEXT_KEYS = ("text", "description", "descripcion", "concept", "concepto")
_AMOUNT_KEYS = ("amount", "monto")
_DATE_KEYS = ("date", "fecha")
_TYPE_KEYS = ("type", "tipo")
_CATEGORY_KEYS = ("category", "categoria")


def _first(row: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_date(raw: Any) -> dt.date:
    """Accept ``date`` / ``datetime`` objects and ISO-8601 strings."""
    if isinstance(raw, dt.date):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        raise ValueError(f"Cannot parse date from: {raw!r}")
    text = raw.strip()
    try:
        return dt.date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return dt.datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"Cannot parse date from: {raw!r}") from None


class RecordBuilder:
    """Builds ``TransactionRecord`` lists and serialises analysis output."""

    def __init__(self, normalizer: Optional[TextNormalizer] = None) -> None:
        self._normalizer = normalizer or TextNormalizer()

    # ------------------------------------------------------------------ #
    # Input readers: produce [TransactionRecord, ...]
    # ------------------------------------------------------------------ #

    def read_dicts(self, rows: Iterable[Mapping[str, Any]]) -> List[TransactionRecord]:
        """Read from an iterable of dict-like rows.

        Raises
        ------
        ValueError
            If a row lacks an id, amount, date or type, or one of them
            cannot be parsed.  The message names the row index.
        """
        records: List[TransactionRecord] = []
        for index, raw_row in enumerate(rows):
            row = {str(k).strip().lower(): v for k, v in raw_row.items()}
            try:
                records.append(self._build_record(row))
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Row {index}: {exc}") from exc
        logger.debug("read_dicts: built %d records", len(records))
        return records

    def _build_record(self, row: Dict[str, Any]) -> TransactionRecord:
        raw_id = row.get("id")
        if raw_id is None or raw_id == "":
            raise ValueError("missing 'id'")

        raw_amount = _first(row, _AMOUNT_KEYS)
        amount, warnings = self._normalizer.normalize_amount(raw_amount)
        if amount is None:
            raise ValueError("; ".join(warnings) or "missing amount")

        raw_date = _first(row, _DATE_KEYS)
        if raw_date is None:
            raise ValueError("missing date")

        raw_type = _first(row, _TYPE_KEYS)
        if raw_type is None:
            raise ValueError("missing type")

        text = _first(row, _TEXT_KEYS)
        category = _first(row, _CATEGORY_KEYS)

        return TransactionRecord(
            id=int(raw_id),
            text=str(text) if text is not None else "",
            amount=amount,
            date=parse_date(raw_date),
            type=TransactionType.parse(raw_type),
            category=str(category).strip() if category is not None else None,
        )

    def read_json(self, source: Union[str, Path]) -> List[TransactionRecord]:
        """Read from a JSON file or JSON string.

        Supports two shapes:
        * Array of row objects ``[{...}, ...]``
        * Object with a ``transactions`` array ``{"transactions": [...]}``
        """
        if isinstance(source, Path) or (
            isinstance(source, str) and not source.lstrip().startswith(("{", "["))
        ):
            with open(Path(source), encoding="utf-8") as fh:
                data = json.load(fh)
        else:
            data = json.loads(source)

        if isinstance(data, dict) and isinstance(data.get("transactions"), list):
            data = data["transactions"]

        if not isinstance(data, list):
            raise ValueError(f"Unsupported JSON root type: {type(data).__name__}")

        rows = []
        for item in data:
            if isinstance(item, dict):
                rows.append(item)
            else:
                logger.warning("Skipping unrecognised JSON array element: %r", item)
        return self.read_dicts(rows)

    def read_csv(self, source: Union[str, Path]) -> List[TransactionRecord]:
        """Read from a CSV file or CSV string with a header row."""
        if isinstance(source, Path) or (
            isinstance(source, str) and "\n" not in source and Path(source).exists()
        ):
            with open(Path(source), encoding="utf-8", newline="") as fh:
                rows = list(csv.DictReader(fh))
        else:
            rows = list(csv.DictReader(StringIO(source)))
        return self.read_dicts(rows)

    def read_dataframe(self, df: Any) -> List[TransactionRecord]:
        """Read from a pandas DataFrame with one row per transaction."""
        try:
            import pandas as pd  # noqa: F811
        except ImportError as exc:
            raise ImportError(
                "pandas is required to use read_dataframe"
            ) from exc

        if not isinstance(df, pd.DataFrame):
            raise TypeError(f"Expected pandas DataFrame, got {type(df).__name__}")

        rows = df.where(df.notna(), None).to_dict(orient="records")
        return self.read_dicts(rows)

    # ------------------------------------------------------------------ #
    # Output writers
    # ------------------------------------------------------------------ #

    @staticmethod
    def to_json(output: AnalysisOutput, indent: int = 2) -> str:
        """Serialise ``AnalysisOutput`` to a JSON string."""
        return json.dumps(output.to_dict(), indent=indent, ensure_ascii=False)

    @staticmethod
    def duplicates_to_csv(matches: Sequence[DuplicateMatch]) -> str:
        """Serialise duplicate matches to CSV text."""
        buf = StringIO()
        writer = csv.writer(buf)
        writer.writerow([
            "first_id", "second_id", "score", "confidence", "reasons",
        ])
        for m in matches:
            writer.writerow([
                m.first.id,
                m.second.id,
                round(m.score, 4),
                m.confidence.value,
                "; ".join(m.reasons),
            ])
        return buf.getvalue()
