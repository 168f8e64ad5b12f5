from __future__ import annotations

import json

import pytest

from api.tool import TOOL_DEFINITION, TOOL_NAME, dataset_from_tool_result, quarter_data_tool
from conftest import make_row
from core.data import SourceUnavailableError


def test_tool_definition():
    assert TOOL_DEFINITION["name"] == TOOL_NAME == "quarter_data"
    assert TOOL_DEFINITION["inputSchema"]["properties"] == {"excelPath": {"type": "string"}}


def test_tool_returns_dataset_as_text_block(write_workbook):
    path = write_workbook([make_row("2020-Q1", "A", 4), make_row("2020-Q1", "A", 6)])
    result = quarter_data_tool({"excelPath": f"  {path}  "})
    assert len(result["content"]) == 1
    block = result["content"][0]
    assert block["type"] == "text"
    payload = json.loads(block["text"])
    assert payload["excelPath"] == str(path)
    assert payload["series"] == [{"quarter": "2020-Q1", "values": {"A": 10}}]

    dataset = dataset_from_tool_result(result)
    assert dataset.quarters == ("2020-Q1",)


def test_tool_missing_workbook(tmp_path):
    with pytest.raises(SourceUnavailableError, match="Excel not found"):
        quarter_data_tool({"excelPath": str(tmp_path / "missing.xlsx")})


@pytest.mark.parametrize(
    "result",
    [
        {},
        {"content": []},
        {"content": [{"type": "image", "data": "..."}]},
        {"content": [{"type": "text", "text": ""}]},
    ],
)
def test_dataset_from_tool_result_requires_text(result):
    with pytest.raises(ValueError, match="no text content"):
        dataset_from_tool_result(result)
