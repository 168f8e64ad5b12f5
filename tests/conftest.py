# Shared pytest fixtures
from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable

import pandas as pd
import pytest

from core.data import CATEGORY_COL, QUARTER_COL, VALUE_COL, AggregatedDataset, aggregate_rows
from core.playback import PollingScheduler
from core.preferences import MemoryStorage, PreferenceStore


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_row(quarter, category, value) -> dict:
    return {QUARTER_COL: quarter, CATEGORY_COL: category, VALUE_COL: value}


def quarter_labels(count: int, first_year: int = 2015) -> list[str]:
    return [f"{first_year + i // 4}-Q{i % 4 + 1}" for i in range(count)]


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def scheduler(clock: FakeClock) -> PollingScheduler:
    return PollingScheduler(clock=clock)


@pytest.fixture()
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture()
def prefs(storage: MemoryStorage) -> PreferenceStore:
    return PreferenceStore(storage)


@pytest.fixture()
def dataset_factory() -> Callable[..., AggregatedDataset]:
    def _make(quarter_count: int = 20, categories: Iterable[str] = ("A", "B", "C")) -> AggregatedDataset:
        rows = [
            make_row(q, c, (i + 1) * 10 + j)
            for i, q in enumerate(quarter_labels(quarter_count))
            for j, c in enumerate(categories)
        ]
        return aggregate_rows(rows, excel_path="test.xlsx")

    return _make


@pytest.fixture()
def write_workbook(tmp_path: Path) -> Callable[..., Path]:
    def _write(rows: list[dict], name: str = "data.xlsx") -> Path:
        path = tmp_path / name
        with pd.ExcelWriter(path) as writer:
            pd.DataFrame(rows, columns=[QUARTER_COL, CATEGORY_COL, VALUE_COL]).to_excel(
                writer, sheet_name="Daten", index=False
            )
        return path

    return _write
