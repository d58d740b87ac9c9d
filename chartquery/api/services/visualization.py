from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from chartquery.api.models.pipeline import Row
from chartquery.api.models.visualization import (
    ChartPayload,
    ChartSeries,
    ChartType,
    ResponseType,
    SecondaryPayload,
    SingleValueMetadata,
    TableColumn,
    TablePayload,
    TextFormatType,
    TextPayload,
    VisualizationRecommendation,
    VisualizationResponse,
)
from chartquery.utils.formatting import (
    all_numeric_labels,
    category_label,
    format_value,
    humanize_column_name,
    infer_column_type,
    infer_unit,
    is_boolean_like,
    is_number,
    parse_numeric_label,
    to_number,
)

logger = logging.getLogger(__name__)

MAX_VERTICAL_CATEGORIES = 15
MIN_LINE_CATEGORIES = 9
TABLE_PAGE_SIZE = 10
PAGINATION_THRESHOLD = 10
FILTERING_THRESHOLD = 20
FALLBACK_MAX_COLUMNS = 4
FALLBACK_MAX_ROWS = 50
CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.3

PIE_FAMILY = {ChartType.PIE, ChartType.DONUT, ChartType.RADIAL_BAR, ChartType.POLAR_AREA}
POINT_FAMILY = {ChartType.SCATTER, ChartType.BUBBLE}

RENDERER_TYPES = {
    ChartType.COLUMN: "bar",
    ChartType.BAR: "bar",
    ChartType.LINE: "line",
    ChartType.AREA: "area",
    ChartType.PIE: "pie",
    ChartType.DONUT: "donut",
    ChartType.SCATTER: "scatter",
    ChartType.BUBBLE: "bubble",
    ChartType.HEATMAP: "heatmap",
    ChartType.TREEMAP: "treemap",
    ChartType.RADIAL_BAR: "radialBar",
    ChartType.RADAR: "radar",
    ChartType.POLAR_AREA: "polarArea",
}


def fallback_recommendation(columns: Sequence[str], rows: Sequence[Row]) -> VisualizationRecommendation:
    """Shape-only recommendation used when nothing better is available."""
    if not rows:
        return VisualizationRecommendation(
            response_type=ResponseType.TEXT,
            title="Query Result",
            reasoning="Query returned no rows",
            text_format=TextFormatType.PLAIN,
        )
    if len(columns) == 1 and len(rows) == 1:
        return VisualizationRecommendation(
            response_type=ResponseType.TEXT,
            title="Query Result",
            reasoning="Single value result",
            text_format=TextFormatType.PLAIN,
        )
    if len(columns) > FALLBACK_MAX_COLUMNS or len(rows) > FALLBACK_MAX_ROWS:
        return VisualizationRecommendation(
            response_type=ResponseType.TABLE,
            title="Query Results",
            reasoning="Multiple columns or many rows are best shown in a table",
        )
    return VisualizationRecommendation(
        response_type=ResponseType.CHART,
        chart_type=ChartType.COLUMN,
        title="Data Visualization",
        reasoning="Default column chart for structured data",
        category_column_index=0,
        value_column_indices=[1],
    )


def _category_index(recommendation: VisualizationRecommendation, columns: Sequence[str]) -> int:
    index = recommendation.category_column_index
    if index is None or not 0 <= index < len(columns):
        return 0
    return index


def _value_indices(recommendation: VisualizationRecommendation, columns: Sequence[str]) -> List[int]:
    requested = recommendation.value_column_indices or []
    indices = list(dict.fromkeys(i for i in requested if 0 <= i < len(columns)))
    if not indices and len(columns) > 1:
        indices = [1]
    return indices


def _first_non_null(rows: Sequence[Row], column: str) -> Any:
    for row in rows:
        value = row.get(column)
        if value is not None:
            return value
    return None


def _series_value(value: Any) -> Any:
    number = to_number(value)
    if number is not None:
        return number
    return None if value is None else category_label(value)


class VisualizationSynthesizer:
    """Turns a recommendation plus the full row set into a renderable response.

    The recommendation only says what kind of view to build; everything concrete
    (series, labels, table schema, formatted text) is derived here from the rows.
    Failures never escape ``build``: they degrade to a low-confidence fallback.
    """

    def build(
        self,
        recommendation: VisualizationRecommendation,
        columns: Sequence[str],
        rows: Sequence[Row],
    ) -> VisualizationResponse:
        try:
            return self._build(recommendation, list(columns), list(rows))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Visualization synthesis failed, using fallback: %s", exc)
            return self.build_fallback(columns, rows, reason=str(exc))

    def _build(
        self,
        recommendation: VisualizationRecommendation,
        columns: List[str],
        rows: List[Row],
    ) -> VisualizationResponse:
        logger.info("Building %s visualization from recommendation", recommendation.response_type.value)
        recommendation = self.adjust_chart_type(recommendation, columns, rows)

        if recommendation.response_type is ResponseType.CHART:
            return VisualizationResponse(
                response_type=ResponseType.CHART,
                confidence=CONFIDENCE,
                reasoning=recommendation.reasoning,
                chart=self.build_chart(recommendation, columns, rows),
            )
        if recommendation.response_type is ResponseType.TABLE:
            return VisualizationResponse(
                response_type=ResponseType.TABLE,
                confidence=CONFIDENCE,
                reasoning=recommendation.reasoning,
                table=self.build_table(columns, rows),
            )
        if recommendation.response_type is ResponseType.TEXT:
            return VisualizationResponse(
                response_type=ResponseType.TEXT,
                confidence=CONFIDENCE,
                reasoning=recommendation.reasoning,
                text=self.build_text(recommendation, columns, rows),
            )
        return self._mixed_response(recommendation, columns, rows)

    def build_fallback(
        self,
        columns: Sequence[str],
        rows: Sequence[Row],
        reason: Optional[str] = None,
    ) -> VisualizationResponse:
        columns, rows = list(columns), list(rows)
        recommendation = fallback_recommendation(columns, rows)
        reasoning = f"Fallback: {recommendation.reasoning}"
        if reason:
            reasoning += f" (synthesis error: {reason})"
        try:
            response = self._build(recommendation, columns, rows)
        except Exception as exc:  # noqa: BLE001
            logger.error("Fallback visualization failed, returning plain table: %s", exc)
            response = VisualizationResponse(
                response_type=ResponseType.TABLE,
                confidence=FALLBACK_CONFIDENCE,
                reasoning=reasoning,
                table=TablePayload(
                    columns=[TableColumn(key=column, display_name=column) for column in columns],
                    enable_pagination=len(rows) > FILTERING_THRESHOLD,
                ),
            )
        return response.model_copy(update={"confidence": FALLBACK_CONFIDENCE, "reasoning": reasoning})

    def adjust_chart_type(
        self,
        recommendation: VisualizationRecommendation,
        columns: Sequence[str],
        rows: Sequence[Row],
    ) -> VisualizationRecommendation:
        """Swap Column/Bar for a better fit when the category count demands it.

        Returns a copy; the recommendation passed in is left untouched.
        """
        if recommendation.response_type not in (ResponseType.CHART, ResponseType.MIXED):
            return recommendation
        if recommendation.chart_type not in (ChartType.COLUMN, ChartType.BAR) or not columns:
            return recommendation

        category = columns[_category_index(recommendation, columns)]
        distinct = list(dict.fromkeys(category_label(row.get(category)) for row in rows))
        count = len(distinct)
        logger.info(
            "Post-processing chart type: current=%s, unique categories=%d",
            recommendation.chart_type.value,
            count,
        )

        old_type = recommendation.chart_type
        if count > MAX_VERTICAL_CATEGORIES:
            if old_type is ChartType.BAR:
                return recommendation
            new_type = ChartType.BAR
            note = f"(Adjusted from {old_type.value} to horizontal bar chart due to {count} categories)"
        elif count >= MIN_LINE_CATEGORIES and all_numeric_labels(distinct):
            new_type = ChartType.LINE
            note = f"(Adjusted from {old_type.value} to line chart for sequential numeric data with {count} points)"
        else:
            return recommendation

        logger.info("Converted %s to %s chart for %d categories", old_type.value, new_type.value, count)
        reasoning = f"{recommendation.reasoning} {note}".strip()
        return recommendation.model_copy(update={"chart_type": new_type, "reasoning": reasoning})

    def build_chart(
        self,
        recommendation: VisualizationRecommendation,
        columns: Sequence[str],
        rows: Sequence[Row],
    ) -> ChartPayload:
        chart_type = recommendation.chart_type
        if chart_type is None:
            raise ValueError("Chart type not specified in recommendation")

        if chart_type in PIE_FAMILY:
            labels, values = self._pie_slices(recommendation, columns, rows)
            data: Dict[str, Any] = {"labels": labels, "values": values}
        elif chart_type in POINT_FAMILY:
            data = {"series": self._point_series(recommendation, columns, rows)}
        else:
            categories, series = self._category_series(recommendation, columns, rows)
            data = {"categories": categories, "series": series}

        return ChartPayload(
            chart_type=chart_type,
            renderer_type=RENDERER_TYPES.get(chart_type, "bar"),
            title=recommendation.title,
            horizontal=chart_type is ChartType.BAR,
            **data,
        )

    def _category_series(
        self,
        recommendation: VisualizationRecommendation,
        columns: Sequence[str],
        rows: Sequence[Row],
    ) -> Tuple[List[str], List[ChartSeries]]:
        if not columns:
            return [], []
        category = columns[_category_index(recommendation, columns)]
        value_columns = [columns[i] for i in _value_indices(recommendation, columns)]
        labels = [category_label(row.get(category)) for row in rows]

        points: List[Tuple[str, List[Any]]]
        if len(set(labels)) != len(labels):
            totals: Dict[str, Dict[str, float]] = {}
            for label, row in zip(labels, rows):
                group = totals.setdefault(label, {})
                for column in value_columns:
                    number = to_number(row.get(column))
                    if number is not None:
                        group[column] = group.get(column, 0.0) + number
            points = [
                (label, [group.get(column, 0.0) for column in value_columns])
                for label, group in totals.items()
            ]
            logger.info("Aggregated %d rows into %d categories", len(rows), len(points))
        else:
            points = [
                (label, [_series_value(row.get(column)) for column in value_columns])
                for label, row in zip(labels, rows)
            ]

        if all_numeric_labels(label for label, _ in points):
            points.sort(key=lambda point: parse_numeric_label(point[0]))

        categories = [label for label, _ in points]
        series = [
            ChartSeries(name=column, data=[values[position] for _, values in points])
            for position, column in enumerate(value_columns)
        ]
        return categories, series

    def _pie_slices(
        self,
        recommendation: VisualizationRecommendation,
        columns: Sequence[str],
        rows: Sequence[Row],
    ) -> Tuple[List[str], List[Union[int, float]]]:
        if not columns or not rows:
            return [], []
        category = columns[_category_index(recommendation, columns)]
        value_indices = _value_indices(recommendation, columns)
        value_column = columns[value_indices[0]] if value_indices else None

        if is_boolean_like(row.get(category) for row in rows):
            return self._count_by(category, rows)

        if len(rows) == 1 and len(columns) > 1:
            labels: List[str] = []
            values: List[Union[int, float]] = []
            for column in columns:
                number = to_number(rows[0].get(column))
                if number is not None:
                    labels.append(column)
                    values.append(number)
            return labels, values

        if value_column is not None and value_column != category and self._looks_pre_aggregated(rows, value_column):
            labels, values = [], []
            for row in rows:
                number = to_number(row.get(value_column))
                if number is not None:
                    labels.append(category_label(row.get(category)))
                    values.append(number)
            return labels, values

        return self._count_by(category, rows)

    @staticmethod
    def _count_by(column: str, rows: Sequence[Row]) -> Tuple[List[str], List[int]]:
        counts: Dict[str, int] = {}
        for row in rows:
            label = category_label(row.get(column))
            counts[label] = counts.get(label, 0) + 1
        return list(counts), list(counts.values())

    @staticmethod
    def _looks_pre_aggregated(rows: Sequence[Row], column: str) -> bool:
        # Values above 1 in most rows read as counts/totals rather than per-row flags.
        numbers = [to_number(row.get(column)) for row in rows]
        above_one = sum(1 for number in numbers if number is not None and number > 1)
        return above_one * 2 > len(rows)

    def _point_series(
        self,
        recommendation: VisualizationRecommendation,
        columns: Sequence[str],
        rows: Sequence[Row],
    ) -> List[ChartSeries]:
        points: List[Dict[str, Any]] = []
        value_indices = _value_indices(recommendation, columns)
        if columns and value_indices:
            x_column = columns[_category_index(recommendation, columns)]
            y_column = columns[value_indices[0]]
            for row in rows:
                x, y = row.get(x_column), row.get(y_column)
                if x is None or y is None:
                    continue
                points.append({"x": _series_value(x), "y": _series_value(y)})
        return [ChartSeries(name="Data Points", data=points)]

    def build_table(self, columns: Sequence[str], rows: Sequence[Row]) -> TablePayload:
        return TablePayload(
            columns=[
                TableColumn(
                    key=column,
                    display_name=humanize_column_name(column),
                    data_type=infer_column_type(column, _first_non_null(rows, column)),
                )
                for column in columns
            ],
            enable_pagination=len(rows) > PAGINATION_THRESHOLD,
            page_size=TABLE_PAGE_SIZE,
            enable_sorting=True,
            enable_filtering=len(rows) > FILTERING_THRESHOLD,
            enable_export=True,
        )

    def build_text(
        self,
        recommendation: VisualizationRecommendation,
        columns: Sequence[str],
        rows: Sequence[Row],
    ) -> TextPayload:
        format_type = recommendation.text_format or TextFormatType.PLAIN
        highlights = [recommendation.data_insight] if recommendation.data_insight else None

        if len(rows) == 1 and columns:
            value = rows[0].get(columns[0])
            metadata = None
            if is_number(value):
                metadata = SingleValueMetadata(numeric_value=float(value), unit=infer_unit(columns[0]))
            return TextPayload(
                content=format_value(value, format_type),
                format_type=format_type,
                is_single_value=True,
                single_value_metadata=metadata,
                highlights=highlights,
            )

        if recommendation.data_insight:
            content = recommendation.data_insight
        elif not rows:
            content = "No results found."
        else:
            content = f"Query returned {len(rows)} rows across {len(columns)} columns."
        return TextPayload(content=content, format_type=format_type, highlights=highlights)

    def _mixed_response(
        self,
        recommendation: VisualizationRecommendation,
        columns: Sequence[str],
        rows: Sequence[Row],
    ) -> VisualizationResponse:
        text = TextPayload(
            content=recommendation.data_insight or "Analysis complete",
            format_type=TextFormatType.SUMMARY,
            use_markdown=True,
        )
        secondary: List[SecondaryPayload] = []
        if recommendation.chart_type is not None:
            secondary.append(
                SecondaryPayload(
                    order=1,
                    response_type=ResponseType.CHART,
                    chart=self.build_chart(recommendation, columns, rows),
                )
            )
        return VisualizationResponse(
            response_type=ResponseType.MIXED,
            confidence=CONFIDENCE,
            reasoning=recommendation.reasoning,
            text=text,
            secondary=secondary,
        )
