from __future__ import annotations

from typing import Dict, List, Union

from pydantic import BaseModel, Field


class QuarterSeriesModel(BaseModel):
    quarter: str
    values: Dict[str, Union[int, float]] = Field(default_factory=dict)


class QuarterDataResponse(BaseModel):
    excelPath: str
    quarters: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    series: List[QuarterSeriesModel] = Field(default_factory=list)


class PublishedDefaultsResponse(BaseModel):
    colorsByCategory: Dict[str, str] = Field(default_factory=dict)
    categoryOrder: List[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    error: str
