from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import ValidationError

try:
    from groq import Groq  # Groq client
except ImportError:  # pragma: no cover - optional dependency
    Groq = None  # type: ignore

try:
    from openai import OpenAI  # OpenAI unified client (>=1.x)
except ImportError:  # pragma: no cover - optional dependency
    OpenAI = None  # type: ignore

from chartquery.api.config import AgentOptions, Settings, get_settings
from chartquery.api.models.catalog import SchemaCatalog
from chartquery.api.models.pipeline import QueryIntent, Row
from chartquery.api.models.visualization import VisualizationRecommendation
from chartquery.api.services.errors import AgentFailureError
from chartquery.utils.sanitizer import strip_code_fences

logger = logging.getLogger(__name__)

ERROR_TOKEN = "ERROR:"

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

_DIALECTS = {
    "top": "T-SQL (SQL Server). Limit rows with SELECT TOP 1000",
    "limit": "ANSI SQL as understood by SQLite/PostgreSQL. Limit rows with LIMIT 1000",
}


class ReasoningAgents(Protocol):
    """The three upstream reasoning roles the pipeline depends on."""

    def select_tables(self, question: str, catalog: SchemaCatalog) -> QueryIntent:
        ...

    def generate_sql(self, question: str, intent: QueryIntent, catalog: SchemaCatalog) -> str:
        ...

    def recommend_visualization(
        self,
        question: str,
        sql: str,
        columns: Sequence[str],
        sample_rows: Sequence[Row],
        total_rows: int,
    ) -> VisualizationRecommendation:
        ...


def check_error_token(agent: str, reply: Optional[str]) -> str:
    """Return the trimmed reply, raising when the agent answered with ``ERROR: reason``."""
    text = (reply or "").strip()
    if not text:
        raise AgentFailureError(agent, "empty response")
    if text[: len(ERROR_TOKEN)].upper() == ERROR_TOKEN:
        reason = text[len(ERROR_TOKEN):].strip() or "no reason given"
        raise AgentFailureError(agent, reason)
    return text


def parse_json_reply(agent: str, reply: Optional[str]) -> Dict[str, Any]:
    text = strip_code_fences(check_error_token(agent, reply))
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Tolerate chatter around the object.
        match = _JSON_OBJECT.search(text)
        if not match:
            raise AgentFailureError(agent, "response was not valid JSON")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise AgentFailureError(agent, f"response was not valid JSON ({exc.msg})") from exc
    if not isinstance(data, dict):
        raise AgentFailureError(agent, "expected a JSON object")
    return data


class LLMAgents:
    """Chat-completion backed agents using Groq or OpenAI, chosen by ``llm.provider``."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        llm = self._settings.llm
        if not llm or not llm.api_key:
            raise ValueError("LLM API key is not configured in config.yml (llm.api_key)")

        if llm.provider == "groq":
            if Groq is None:
                raise RuntimeError("groq package not installed; add 'groq' to the project dependencies")
            self._client = Groq(api_key=llm.api_key)
        elif llm.provider == "openai":
            if OpenAI is None:
                raise RuntimeError("openai package not installed; add 'openai' to the project dependencies")
            self._client = OpenAI(api_key=llm.api_key)
        else:
            raise ValueError(f"Unsupported LLM provider: {llm.provider}")

        self._provider = llm.provider
        self._model = llm.model
        self._options = llm.agents
        self._dialect = _DIALECTS[self._settings.pipeline.row_limit_style]
        logger.info("LLM agents using provider='%s' model='%s'", self._provider, self._model)

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def model(self) -> str:
        return self._model

    def select_tables(self, question: str, catalog: SchemaCatalog) -> QueryIntent:
        prompt = TABLE_SELECTION_PROMPT.format(
            max_tables=self._settings.pipeline.max_tables,
            schema=catalog.describe_tables(),
            question=question,
        )
        reply = self._complete("table selector", prompt, self._options.table_selection, json_mode=True)
        data = parse_json_reply("table selector", reply)
        try:
            intent = QueryIntent.model_validate(data)
        except ValidationError as exc:
            raise AgentFailureError("table selector", f"unexpected response shape: {exc.errors()[0]['msg']}") from exc
        logger.info("Table selector intent='%s' tables=%s", intent.intent, intent.tables)
        return intent

    def generate_sql(self, question: str, intent: QueryIntent, catalog: SchemaCatalog) -> str:
        prompt = SQL_GENERATION_PROMPT.format(
            dialect=self._dialect,
            question=question,
            intent=intent.intent or question,
            tables=", ".join(intent.tables),
            relationships=intent.relationships or "none stated",
            schema=catalog.describe_detailed(intent.tables),
        )
        reply = self._complete("query generator", prompt, self._options.query_generation)
        sql = strip_code_fences(check_error_token("query generator", reply))
        logger.info("Generated SQL: %s", sql)
        return sql

    def recommend_visualization(
        self,
        question: str,
        sql: str,
        columns: Sequence[str],
        sample_rows: Sequence[Row],
        total_rows: int,
    ) -> VisualizationRecommendation:
        prompt = VISUALIZATION_PROMPT.format(
            question=question,
            sql=sql,
            total_rows=total_rows,
            columns=json.dumps(list(columns)),
            sample_size=len(sample_rows),
            sample=json.dumps(list(sample_rows), indent=2, default=str),
        )
        reply = self._complete("visualization recommender", prompt, self._options.visualization, json_mode=True)
        data = parse_json_reply("visualization recommender", reply)
        try:
            recommendation = VisualizationRecommendation.model_validate(data)
        except ValidationError as exc:
            raise AgentFailureError(
                "visualization recommender",
                f"unexpected response shape: {exc.errors()[0]['msg']}",
            ) from exc
        logger.info(
            "Recommendation: type=%s chart=%s reasoning=%s",
            recommendation.response_type.value,
            recommendation.chart_type.value if recommendation.chart_type else None,
            recommendation.reasoning,
        )
        return recommendation

    def _complete(self, agent: str, prompt: str, options: AgentOptions, json_mode: bool = False) -> str:
        kwargs: Dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        messages: List[Dict[str, str]] = [
            {"role": "system", "content": SYSTEM_PROMPTS[agent]},
            {"role": "user", "content": prompt},
        ]
        try:
            completion = self._client.chat.completions.create(
                messages=messages,
                model=self._model,
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                **kwargs,
            )
        except Exception as exc:  # noqa: BLE001 - provider SDKs raise their own hierarchies
            logger.error("%s call to %s failed: %s", agent, self._provider, exc)
            raise AgentFailureError(agent, f"LLM provider error: {exc}") from exc
        content = completion.choices[0].message.content or ""
        logger.debug("%s raw response: %s", agent, content)
        return content


SYSTEM_PROMPTS = {
    "table selector": "You map questions about a database onto the tables that can answer them. Reply with JSON only.",
    "query generator": (
        "You write a single read-only SELECT statement. Reply with SQL only, no commentary. "
        "If the question cannot be answered from the schema reply 'ERROR: <reason>'."
    ),
    "visualization recommender": "You choose how query results should be presented. Reply with JSON only.",
}

TABLE_SELECTION_PROMPT = """
Pick the tables (at most {max_tables}) needed to answer the question, choosing ONLY from this list:
{schema}

Question: "{question}"

Guidelines:
- Table names must be copied exactly as listed.
- When a table has foreign keys (FK ->), include the referenced parent tables too.
- If the question is ambiguous, prefer including a table over leaving it out.
- If nothing fits well, choose the closest tables and say so in the intent.

Respond with a JSON object:
{{
  "intent": "what the user wants to find out",
  "tables": ["TableName"],
  "relationships": "how the tables join",
  "complexity": "Simple|Medium|Complex"
}}
"""

SQL_GENERATION_PROMPT = """
Write one SELECT statement in {dialect}.

Question: "{question}"
Intent: {intent}
Tables: {tables}
Relationships: {relationships}

Schema:
{schema}

Guidelines:
1. Use explicit JOIN syntax and clear column aliases.
2. Every selected column must be grouped or aggregated when GROUP BY is used.
3. Use only columns that appear in the schema above.
4. Never use reserved words (IF, ELSE, CASE, END, ...) as table aliases.
5. Questions about "how many users ..." want counts of users, not sums of amounts.
6. Return the SQL only.

If the query cannot be written, respond with:
ERROR: <specific reason, mentioning the available columns where helpful>
"""

VISUALIZATION_PROMPT = """
Recommend how to present this query result.

Question: {question}
SQL: {sql}
Total rows: {total_rows}
Columns: {columns}

Sample data (first {sample_size} rows):
{sample}

Choose "Text" for a single value (one row, one column) such as a count, sum, average or percentage.
Choose "Table" when the user asks for a table/list/details, when there are more than 4 columns, or for
raw records and text-heavy data.
Choose "Chart" for comparisons, trends and shares:
- Column for up to 10 categories, Bar for more or for long labels, Line for ordered ranges
- Line or Area for trends over time
- Pie or Donut for parts of a whole with at most 10 items
- Scatter for two numeric measures
Choose "Mixed" when a short written summary plus a chart tells the story best.

Respond with a JSON object, for example:
{{
  "responseType": "Chart",
  "chartType": "Column",
  "title": "Users by Filing Status",
  "reasoning": "Comparing counts across 6 categories",
  "categoryColumnIndex": 0,
  "valueColumnIndices": [1],
  "textFormat": null,
  "dataInsight": "Married Filing Jointly has the highest count with 342 users"
}}
textFormat is one of Plain, Number, Currency, Percentage when responseType is Text.
"""
