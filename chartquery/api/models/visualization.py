from __future__ import annotations

from enum import Enum
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _CaseInsensitiveEnum(str, Enum):
    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            wanted = value.strip().replace("_", "").replace(" ", "").lower()
            for member in cls:
                if member.value.lower() == wanted:
                    return member
        return None


class ResponseType(_CaseInsensitiveEnum):
    CHART = "Chart"
    TABLE = "Table"
    TEXT = "Text"
    MIXED = "Mixed"


class ChartType(_CaseInsensitiveEnum):
    LINE = "Line"
    AREA = "Area"
    COLUMN = "Column"
    BAR = "Bar"
    PIE = "Pie"
    DONUT = "Donut"
    RADIAL_BAR = "RadialBar"
    SCATTER = "Scatter"
    BUBBLE = "Bubble"
    HEATMAP = "Heatmap"
    TREEMAP = "Treemap"
    CANDLESTICK = "Candlestick"
    BOX_PLOT = "BoxPlot"
    RADAR = "Radar"
    POLAR_AREA = "PolarArea"
    RANGE_BAR = "RangeBar"
    FUNNEL = "Funnel"


class TextFormatType(_CaseInsensitiveEnum):
    PLAIN = "Plain"
    NUMBER = "Number"
    CURRENCY = "Currency"
    PERCENTAGE = "Percentage"
    MARKDOWN = "Markdown"
    SUMMARY = "Summary"


class ColumnDataType(_CaseInsensitiveEnum):
    STRING = "String"
    NUMBER = "Number"
    CURRENCY = "Currency"
    PERCENTAGE = "Percentage"
    DATE = "Date"
    DATETIME = "DateTime"
    BOOLEAN = "Boolean"
    LINK = "Link"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VisualizationRecommendation(_CamelModel):
    """Coarse hint from the recommender; column indices are not trusted."""

    response_type: ResponseType
    chart_type: Optional[ChartType] = None
    title: str = "Query Results"
    reasoning: str = ""
    category_column_index: Optional[int] = None
    value_column_indices: Optional[List[int]] = None
    text_format: Optional[TextFormatType] = None
    data_insight: Optional[str] = None

    @field_validator("value_column_indices", mode="before")
    @classmethod
    def _single_index_to_list(cls, value):
        if isinstance(value, int):
            return [value]
        return value


class ChartSeries(_CamelModel):
    name: str
    data: List[Any] = Field(default_factory=list)


class ChartPayload(_CamelModel):
    chart_type: ChartType
    renderer_type: str
    title: str
    categories: List[str] = Field(default_factory=list)
    series: List[ChartSeries] = Field(default_factory=list)
    # Pie-family charts carry slices as parallel labels/values.
    labels: List[str] = Field(default_factory=list)
    values: List[Union[int, float]] = Field(default_factory=list)
    horizontal: bool = False
    height: int = 350


class TableColumn(_CamelModel):
    key: str
    display_name: str
    data_type: ColumnDataType = ColumnDataType.STRING
    sortable: bool = True


class TablePayload(_CamelModel):
    columns: List[TableColumn]
    enable_pagination: bool = False
    page_size: int = 10
    enable_sorting: bool = True
    enable_filtering: bool = False
    enable_export: bool = True


class SingleValueMetadata(_CamelModel):
    numeric_value: Optional[float] = None
    unit: Optional[str] = None


class TextPayload(_CamelModel):
    content: str
    format_type: TextFormatType = TextFormatType.PLAIN
    is_single_value: bool = False
    single_value_metadata: Optional[SingleValueMetadata] = None
    use_markdown: bool = False
    highlights: Optional[List[str]] = None


class SecondaryPayload(_CamelModel):
    order: int
    response_type: ResponseType
    chart: Optional[ChartPayload] = None


class VisualizationResponse(_CamelModel):
    response_type: ResponseType
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str
    chart: Optional[ChartPayload] = None
    table: Optional[TablePayload] = None
    text: Optional[TextPayload] = None
    secondary: Optional[List[SecondaryPayload]] = None

    @property
    def title(self) -> str:
        if self.response_type is ResponseType.CHART and self.chart is not None:
            return self.chart.title
        return {
            ResponseType.TABLE: "Data Table",
            ResponseType.TEXT: "Query Result",
            ResponseType.MIXED: "Analysis Results",
        }.get(self.response_type, "Data Visualization")
