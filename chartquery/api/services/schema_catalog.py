from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import inspect, literal_column, select
from sqlalchemy import table as sql_table
from sqlalchemy.engine import Connection
from sqlalchemy.engine.reflection import Inspector
from sqlalchemy.exc import SQLAlchemyError

from chartquery.api.config import get_settings
from chartquery.api.database import get_connection, redact
from chartquery.api.models.catalog import (
    ColumnDescriptor,
    RelationshipEdge,
    SchemaCatalog,
    TableDescriptor,
)
from chartquery.api.models.pipeline import normalize_cell
from chartquery.api.services.cache import TTLCache

logger = logging.getLogger(__name__)

_CATALOG_KEY = "schema_catalog"
_SAMPLE_ROWS = 3


class SchemaCatalogProvider:
    """Reflects the database into a ``SchemaCatalog`` and caches it with a TTL."""

    def __init__(self, connection_string: str, cache: TTLCache | None = None) -> None:
        self._connection_string = connection_string
        settings = get_settings()
        self._cache = cache or TTLCache(
            ttl_seconds=settings.cache.ttl_seconds,
            max_size=settings.cache.max_size,
        )

    def get_catalog(self) -> SchemaCatalog:
        return self._cache.get_or_load(_CATALOG_KEY, self._load)

    def refresh(self) -> SchemaCatalog:
        catalog = self._load()
        self._cache.set(_CATALOG_KEY, catalog)
        return catalog

    def _load(self) -> SchemaCatalog:
        logger.info("Refreshing schema catalog for %s", redact(self._connection_string))
        try:
            with get_connection(self._connection_string) as conn:
                catalog = self.analyze_database(conn)
        except SQLAlchemyError as exc:
            logger.error("Schema reflection failed: %s", exc)
            raise RuntimeError(f"Failed to load database schema: {exc}") from exc
        logger.info(
            "Schema catalog loaded: %d tables, %d relationships",
            len(catalog.tables),
            len(catalog.relationships),
        )
        return catalog

    def analyze_database(self, conn: Connection) -> SchemaCatalog:
        inspector = inspect(conn)
        tables: List[TableDescriptor] = []
        relationships: List[RelationshipEdge] = []

        for schema_name, table_name in self._table_names(inspector):
            foreign_keys = inspector.get_foreign_keys(table_name, schema=schema_name)
            fk_targets: Dict[str, str] = {}
            for fk in foreign_keys:
                referred = fk.get("referred_table")
                if not referred:
                    continue
                constrained = fk.get("constrained_columns", [])
                referred_columns = fk.get("referred_columns", [])
                for from_column, to_column in zip(constrained, referred_columns):
                    fk_targets[from_column] = referred
                    relationships.append(
                        RelationshipEdge(
                            from_table=table_name,
                            from_column=from_column,
                            to_table=referred,
                            to_column=to_column,
                        )
                    )

            pk = inspector.get_pk_constraint(table_name, schema=schema_name) or {}
            primary_keys = set(pk.get("constrained_columns") or [])
            columns = [
                self._describe_column(column, primary_keys, fk_targets)
                for column in inspector.get_columns(table_name, schema=schema_name)
            ]
            tables.append(
                TableDescriptor(
                    name=table_name,
                    schema_name=schema_name,
                    description=self._table_comment(inspector, table_name, schema_name) or f"Table {table_name}",
                    columns=columns,
                    sample_values=self._fetch_sample_values(conn, table_name),
                )
            )

        return SchemaCatalog.from_tables(tables, relationships)

    def _table_names(self, inspector: Inspector) -> List[tuple]:
        default_schema = inspector.default_schema_name
        return [(default_schema, name) for name in inspector.get_table_names()]

    def _table_comment(self, inspector: Inspector, table: str, schema: Optional[str]) -> Optional[str]:
        try:
            return (inspector.get_table_comment(table, schema=schema) or {}).get("text")
        except NotImplementedError:
            return None

    def _describe_column(
        self,
        column: Dict[str, Any],
        primary_keys: set,
        fk_targets: Dict[str, str],
    ) -> ColumnDescriptor:
        name = column["name"]
        column_type = column["type"]
        return ColumnDescriptor(
            name=name,
            data_type=str(column_type),
            is_nullable=bool(column.get("nullable", True)),
            is_primary_key=name in primary_keys,
            is_foreign_key=name in fk_targets,
            referenced_table=fk_targets.get(name),
            max_length=getattr(column_type, "length", None),
            description=column.get("comment") or "",
        )

    def _fetch_sample_values(self, conn: Connection, table: str) -> List[str]:
        # Each dialect renders its own TOP/LIMIT, so only a few rows leave the server.
        query = select(literal_column("*")).select_from(sql_table(table)).limit(_SAMPLE_ROWS)
        result = conn.execute(query)
        try:
            rows = result.mappings().fetchmany(_SAMPLE_ROWS)
        finally:
            result.close()
        samples: List[str] = []
        for row in rows:
            rendered = ", ".join(f"{key}={normalize_cell(value)}" for key, value in row.items())
            samples.append(f"{{{rendered}}}")
        return samples
