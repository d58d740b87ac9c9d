"""
Read-only guard for generated SQL.

This is a keyword/pattern filter in front of the executor, not a parser: it keeps
obviously dangerous text away from the database and makes sure every statement is
row-limited. It does not judge whether the query is logically correct.
"""
from __future__ import annotations

import logging
import re

from chartquery.api.models.pipeline import ValidatedQuery
from chartquery.api.services.errors import UnsafeSqlError, UnsafeSqlRule
from chartquery.utils.sanitizer import strip_code_fences

logger = logging.getLogger(__name__)

DEFAULT_ROW_LIMIT = 1000

FORBIDDEN_KEYWORDS = (
    "DROP", "DELETE", "UPDATE", "INSERT", "ALTER", "CREATE", "TRUNCATE", "EXEC", "EXECUTE",
)

_FORBIDDEN_RE = {
    keyword: re.compile(rf"\b{keyword}\b", re.IGNORECASE) for keyword in FORBIDDEN_KEYWORDS
}
_STARTS_WITH_SELECT = re.compile(r"^SELECT\b", re.IGNORECASE)
_ROW_LIMIT_RE = re.compile(
    r"\bTOP\s*\(?\s*\d+"
    r"|\bLIMIT\s+\d+"
    r"|\bFETCH\s+(?:FIRST|NEXT)\s+\d+",
    re.IGNORECASE,
)
# DISTINCT/ALL must precede TOP in T-SQL.
_SELECT_HEAD = re.compile(r"^SELECT(\s+(?:DISTINCT|ALL)\b)?\s*", re.IGNORECASE)


class SqlSafetyValidator:
    def __init__(self, default_limit: int = DEFAULT_ROW_LIMIT, limit_style: str = "top") -> None:
        if limit_style not in {"top", "limit"}:
            raise ValueError(f"Unsupported row limit style: {limit_style}")
        self._default_limit = default_limit
        self._limit_style = limit_style

    def validate(self, raw: str) -> ValidatedQuery:
        sql = strip_code_fences(raw or "")
        if not sql:
            raise UnsafeSqlError(UnsafeSqlRule.EMPTY, "Generated SQL is empty")

        if not _STARTS_WITH_SELECT.match(sql):
            raise UnsafeSqlError(UnsafeSqlRule.NOT_SELECT, "Generated SQL must be a SELECT statement")

        injected = False
        if not _ROW_LIMIT_RE.search(sql):
            sql = self._inject_limit(sql)
            injected = True

        for keyword, pattern in _FORBIDDEN_RE.items():
            if pattern.search(sql):
                raise UnsafeSqlError(
                    UnsafeSqlRule.FORBIDDEN_KEYWORD,
                    f"SQL contains forbidden operation: {keyword}",
                    keyword=keyword,
                )

        terminators = sql.count(";")
        if terminators > 1 or (terminators == 1 and not sql.endswith(";")):
            raise UnsafeSqlError(UnsafeSqlRule.MULTIPLE_STATEMENTS, "SQL contains multiple statements")

        if "--" in sql and "'" in sql:
            raise UnsafeSqlError(
                UnsafeSqlRule.COMMENT_INJECTION,
                "SQL contains potentially dangerous comment pattern",
            )

        if injected:
            logger.info("Injected default row limit of %d", self._default_limit)
        return ValidatedQuery(sql=sql, original=raw, row_limit_injected=injected)

    def _inject_limit(self, sql: str) -> str:
        if self._limit_style == "top":
            return _SELECT_HEAD.sub(
                lambda match: f"SELECT{(match.group(1) or '').upper()} TOP {self._default_limit} ",
                sql,
                count=1,
            )
        body = sql.rstrip()
        terminator = ""
        if body.endswith(";"):
            body, terminator = body[:-1].rstrip(), ";"
        # New line so a trailing `--` comment cannot swallow the clause.
        return f"{body}\nLIMIT {self._default_limit}{terminator}"
