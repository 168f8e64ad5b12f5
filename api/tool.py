from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

from core.data import DEFAULT_EXCEL_PATH, AggregatedDataset, load_quarter_data


logger = logging.getLogger(__name__)

TOOL_NAME = "quarter_data"
TOOL_DEFINITION: Dict[str, Any] = {
    "name": TOOL_NAME,
    "title": "Quarter data",
    "description": "Load quarterly stacked series data from an Excel file.",
    "inputSchema": {
        "type": "object",
        "properties": {"excelPath": {"type": "string"}},
    },
}


def quarter_data_tool(arguments: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Tool-call handler: the aggregated dataset as a single text content block."""
    raw = (arguments or {}).get("excelPath")
    excel_path = raw.strip() if isinstance(raw, str) and raw.strip() else DEFAULT_EXCEL_PATH
    dataset = load_quarter_data(excel_path)
    logger.info("%s served %d quarters from %s", TOOL_NAME, len(dataset.quarters), excel_path)
    return {"content": [{"type": "text", "text": dataset.to_json()}]}


def dataset_from_tool_result(result: Mapping[str, Any]) -> AggregatedDataset:
    content = result.get("content") if isinstance(result, Mapping) else None
    text = next(
        (c.get("text") for c in content or [] if isinstance(c, Mapping) and c.get("type") == "text"),
        None,
    )
    if not text:
        raise ValueError("Tool returned no text content.")
    return AggregatedDataset.from_dict(json.loads(text))
