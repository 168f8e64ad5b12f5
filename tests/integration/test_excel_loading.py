from __future__ import annotations

import json

import pandas as pd
import pytest

from conftest import make_row
from core import data as data_module
from core.data import (
    SourceUnavailableError,
    load_quarter_data,
    load_static_dataset,
    read_quarter_data,
    resolve_excel_path,
)
from core.pages import build_pages, main


@pytest.fixture()
def workbook(write_workbook):
    return write_workbook(
        [
            make_row("2021-Q1", "Kupfer", 10),
            make_row("2020-Q4", "Glasfaser", "1'500"),
            make_row("2020-Q4", "Glasfaser", 500),
            make_row(None, "Kupfer", 999),
            make_row("2020-Q4", "Kupfer", None),
        ]
    )


def test_read_quarter_data_from_first_sheet(workbook):
    ds = read_quarter_data(str(workbook))
    assert ds.excel_path == str(workbook)
    assert ds.quarters == ("2020-Q4", "2021-Q1")
    assert ds.categories == ("Glasfaser", "Kupfer")
    assert ds.series[0].values == {"Glasfaser": 2000, "Kupfer": 0}
    assert ds.series[1].values == {"Glasfaser": 0, "Kupfer": 10}


def test_only_first_sheet_is_read(tmp_path):
    path = tmp_path / "two-sheets.xlsx"
    with pd.ExcelWriter(path) as writer:
        pd.DataFrame([make_row("2020-Q1", "A", 1)]).to_excel(writer, sheet_name="Erste", index=False)
        pd.DataFrame([make_row("2020-Q1", "B", 2)]).to_excel(writer, sheet_name="Zweite", index=False)
    assert read_quarter_data(str(path)).categories == ("A",)


def test_na_like_text_labels_are_kept(write_workbook):
    path = write_workbook(
        [
            make_row("2020-Q1", "NA", 1),
            make_row("2020-Q1", "None", 2),
            make_row("2020-Q1", "A", 3),
            make_row("2020-Q1", "", 4),
        ]
    )
    ds = read_quarter_data(str(path))
    assert ds.categories == ("A", "NA", "None")
    assert ds.series[0].values == {"A": 3, "NA": 1, "None": 2}


def test_integer_labels_keep_their_text_when_other_cells_are_blank(write_workbook):
    path = write_workbook([make_row("2020-Q1", 1, 5), make_row("2020-Q1", None, 2)])
    ds = read_quarter_data(str(path))
    assert ds.categories == ("1",)
    assert ds.series[0].values == {"1": 5}


def test_missing_workbook_names_the_path(tmp_path):
    missing = tmp_path / "nope.xlsx"
    with pytest.raises(SourceUnavailableError) as info:
        read_quarter_data(str(missing))
    assert str(missing) in str(info.value)
    assert "EXCEL_PATH" in str(info.value)


def test_resolve_excel_path_normalizes_separators():
    assert resolve_excel_path(" data\\data.xlsx ").as_posix() == "data/data.xlsx"


def test_load_quarter_data_caches_until_file_changes(workbook, write_workbook, monkeypatch):
    calls = []
    real = data_module.read_quarter_data

    def counting(path):
        calls.append(path)
        return real(path)

    monkeypatch.setattr(data_module, "read_quarter_data", counting)
    data_module._load_cached.cache_clear()
    first = load_quarter_data(str(workbook))
    second = load_quarter_data(str(workbook))
    assert first == second
    assert len(calls) == 1

    write_workbook([make_row("2022-Q1", "Neu", 1)] * 20)
    assert load_quarter_data(str(workbook)).categories == ("Neu",)
    assert len(calls) == 2


def test_build_pages_writes_static_site(workbook, tmp_path):
    docs = tmp_path / "docs"
    defaults = tmp_path / "published-defaults.json"
    defaults.write_text(json.dumps({"colorsByCategory": {"Kupfer": "#B87333"}, "categoryOrder": ["Kupfer"]}))

    written = build_pages(str(workbook), docs_dir=docs, published_defaults_src=defaults)

    names = sorted(p.name for p in written)
    assert names == [".nojekyll", "data.json", "index.html", "published-defaults.json"]
    dataset = load_static_dataset(docs / "data.json")
    assert dataset.quarters == ("2020-Q4", "2021-Q1")
    html = (docs / "index.html").read_text(encoding="utf-8")
    assert "window_start" in html
    assert "#B87333" in html


def test_build_pages_without_published_defaults(workbook, tmp_path):
    written = build_pages(str(workbook), docs_dir=tmp_path / "docs", published_defaults_src=tmp_path / "absent.json")
    assert "published-defaults.json" not in {p.name for p in written}


def test_build_pages_missing_workbook(tmp_path):
    with pytest.raises(SourceUnavailableError):
        build_pages(str(tmp_path / "missing.xlsx"), docs_dir=tmp_path / "docs")
    assert not (tmp_path / "docs").exists()


def test_pages_cli_exit_codes(workbook, tmp_path):
    assert main(["--excel", str(tmp_path / "missing.xlsx"), "--docs-dir", str(tmp_path / "out")]) == 1
    assert main(["--excel", str(workbook), "--docs-dir", str(tmp_path / "out")]) == 0
    assert (tmp_path / "out" / "data.json").is_file()


def test_load_static_dataset_missing(tmp_path):
    with pytest.raises(SourceUnavailableError):
        load_static_dataset(tmp_path / "data.json")
