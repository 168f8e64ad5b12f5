from __future__ import annotations

import json
import logging
import math
import os
import re
import unicodedata
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd


logger = logging.getLogger(__name__)

PROJECT_DIR = Path(__file__).resolve().parents[1]
DATA_DIR = PROJECT_DIR / "data"
DOCS_DIR = PROJECT_DIR / "docs"
DEFAULT_EXCEL_PATH = os.environ.get("EXCEL_PATH", "data/data.xlsx")
STATIC_DATA_PATH = DOCS_DIR / "data.json"

QUARTER_COL = "Quartal"
CATEGORY_COL = "Kategorie"
VALUE_COL = "Anzahl Anschlüsse"

QUARTER_PATTERN = re.compile(r"^(\d{4})\s*-?\s*Q([1-4])\s*$", re.IGNORECASE)
NUMBER_STRIP_CHARS = ("'", "’", " ")

Number = Union[int, float]


class SourceUnavailableError(FileNotFoundError):
    """Raised when a workbook or published data file is not where it was expected."""


class WorkbookError(ValueError):
    pass


@dataclass(frozen=True)
class QuarterRow:
    quarter: str
    category: str
    value: Number


@dataclass(frozen=True)
class QuarterValues:
    quarter: str
    values: Dict[str, Number] = field(default_factory=dict)


@dataclass(frozen=True)
class AggregatedDataset:
    excel_path: str
    quarters: Tuple[str, ...] = ()
    categories: Tuple[str, ...] = ()
    series: Tuple[QuarterValues, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "excelPath": self.excel_path,
            "quarters": list(self.quarters),
            "categories": list(self.categories),
            "series": [{"quarter": s.quarter, "values": dict(s.values)} for s in self.series],
        }

    def to_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=indent)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "AggregatedDataset":
        """Rebuild a dataset from its JSON form, densifying anything missing with 0."""
        if not isinstance(payload, Mapping):
            raise ValueError("dataset payload must be a JSON object")
        quarters = tuple(str(q) for q in payload.get("quarters") or [])
        categories = tuple(str(c) for c in payload.get("categories") or [])
        by_quarter: Dict[str, Mapping[str, Any]] = {}
        for entry in payload.get("series") or []:
            if isinstance(entry, Mapping) and isinstance(entry.get("values"), Mapping):
                by_quarter[str(entry.get("quarter"))] = entry["values"]
        series = tuple(
            QuarterValues(
                quarter=q,
                values={c: coerce_value(by_quarter.get(q, {}).get(c)) for c in categories},
            )
            for q in quarters
        )
        return cls(
            excel_path=str(payload.get("excelPath") or ""),
            quarters=quarters,
            categories=categories,
            series=series,
        )


def parse_quarter_order(value: object) -> float:
    """Map '2020-Q1' / '2020Q1' / '2020 - q1' to year*4 + (quarter-1); anything else sorts last."""
    match = QUARTER_PATTERN.match(str(value).strip())
    if not match:
        return math.inf
    return int(match.group(1)) * 4 + (int(match.group(2)) - 1)


def quarter_sort_key(value: str) -> Tuple[float, str]:
    return parse_quarter_order(value), value


def category_sort_key(value: str) -> Tuple[str, str, str]:
    # Accent and case insensitive first, lowercase before uppercase on ties.
    decomposed = unicodedata.normalize("NFKD", value)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()
    return base, value.swapcase(), value


def _is_missing(value: object) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _as_number(value: float) -> Number:
    if float(value).is_integer():
        return int(value)
    return float(value)


def coerce_value(value: object) -> Number:
    if _is_missing(value):
        return 0
    if isinstance(value, (int, float, np.integer, np.floating)) and not isinstance(value, (bool, np.bool_)):
        number = float(value)
    else:
        text = str(value)
        for ch in NUMBER_STRIP_CHARS:
            text = text.replace(ch, "")
        if not text or "_" in text:
            return 0
        try:
            number = float(text)
        except ValueError:
            return 0
    if not math.isfinite(number):
        return 0
    return _as_number(number)


def _clean_label(value: object) -> Optional[str]:
    if _is_missing(value):
        return None
    s = str(value).strip()
    return s or None


def normalize_row(
    row: Mapping[str, Any],
    quarter_col: str = QUARTER_COL,
    category_col: str = CATEGORY_COL,
    value_col: str = VALUE_COL,
) -> Optional[QuarterRow]:
    quarter = _clean_label(row.get(quarter_col))
    category = _clean_label(row.get(category_col))
    if quarter is None or category is None:
        return None
    return QuarterRow(quarter=quarter, category=category, value=coerce_value(row.get(value_col)))


def aggregate_rows(rows: Iterable[Mapping[str, Any]], excel_path: str = "") -> AggregatedDataset:
    records: List[Tuple[str, str, float]] = []
    skipped = 0
    for row in rows:
        normalized = normalize_row(row)
        if normalized is None:
            skipped += 1
            continue
        records.append((normalized.quarter, normalized.category, float(normalized.value)))
    if skipped:
        logger.debug("Skipped %d rows without quarter or category", skipped)
    if not records:
        return AggregatedDataset(excel_path=excel_path)

    facts = pd.DataFrame(records, columns=["quarter", "category", "value"])
    # Canonical row order keeps float sums identical for any permutation of the input.
    facts = facts.sort_values(["quarter", "category", "value"], kind="mergesort")
    totals = facts.groupby(["quarter", "category"], sort=False)["value"].sum()

    quarters = sorted(facts["quarter"].unique().tolist(), key=quarter_sort_key)
    categories = sorted(facts["category"].unique().tolist(), key=category_sort_key)
    matrix = totals.unstack("category").reindex(index=quarters, columns=categories).fillna(0.0)

    series = tuple(
        QuarterValues(quarter=q, values={c: _as_number(matrix.at[q, c]) for c in categories})
        for q in quarters
    )
    return AggregatedDataset(
        excel_path=excel_path,
        quarters=tuple(quarters),
        categories=tuple(categories),
        series=series,
    )


# ---------------- Loaders ----------------
def resolve_excel_path(raw: str) -> Path:
    cleaned = (raw or "").strip().replace("\\", "/")
    return Path(cleaned).expanduser()


def read_sheet_rows(path: Path) -> List[Dict[str, Any]]:
    if not path.is_file():
        raise SourceUnavailableError(
            f"Excel not found: {path}. Put your file at data/data.xlsx (recommended) or set EXCEL_PATH."
        )
    with pd.ExcelFile(path) as xls:
        if not xls.sheet_names:
            raise WorkbookError("Workbook has no sheets.")
        # Cells reach normalize_row as stored: "NA"/"None" stay text, int labels stay ints.
        df = xls.parse(xls.sheet_names[0], dtype=object, keep_default_na=False, na_values=[""])
    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records")


def read_quarter_data(excel_path: str) -> AggregatedDataset:
    path = resolve_excel_path(excel_path)
    rows = read_sheet_rows(path)
    dataset = aggregate_rows(rows, excel_path=excel_path)
    logger.info(
        "Aggregated %d rows from %s into %d quarters x %d categories",
        len(rows),
        path,
        len(dataset.quarters),
        len(dataset.categories),
    )
    return dataset


def file_signature(path: Path) -> Tuple[str, float, int]:
    stat = path.stat()
    return str(path.resolve()), stat.st_mtime, stat.st_size


@lru_cache(maxsize=8)
def _load_cached(signature: Tuple[str, float, int], excel_path: str) -> AggregatedDataset:
    return read_quarter_data(excel_path)


def load_quarter_data(excel_path: str) -> AggregatedDataset:
    """Like read_quarter_data, but skips re-parsing a workbook that has not changed on disk."""
    path = resolve_excel_path(excel_path)
    if not path.is_file():
        return read_quarter_data(excel_path)
    return _load_cached(file_signature(path), excel_path)


def load_static_dataset(path: Path = STATIC_DATA_PATH) -> AggregatedDataset:
    if not path.is_file():
        raise SourceUnavailableError(f"Static data.json not found: {path}. Run the pages build first.")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid data.json: {exc}") from exc
    return AggregatedDataset.from_dict(payload)
