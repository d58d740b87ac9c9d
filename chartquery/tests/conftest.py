from __future__ import annotations

from typing import List, Optional, Sequence

import pytest
from sqlalchemy import create_engine, text

from chartquery.api.config import get_settings
from chartquery.api.models.catalog import (
    ColumnDescriptor,
    RelationshipEdge,
    SchemaCatalog,
    TableDescriptor,
)
from chartquery.api.models.pipeline import QueryIntent, Row
from chartquery.api.models.visualization import VisualizationRecommendation


class FakeAgents:
    """Deterministic stand-in for the LLM agents."""

    def __init__(
        self,
        tables: Sequence[str] = ("Orders",),
        sql: str = "SELECT Region, Amount FROM Orders",
        recommendation: Optional[VisualizationRecommendation] = None,
        table_error: Optional[Exception] = None,
        sql_error: Optional[Exception] = None,
        recommend_error: Optional[Exception] = None,
    ) -> None:
        self.tables = list(tables)
        self.sql = sql
        self.recommendation = recommendation or VisualizationRecommendation(
            response_type="Table",
            title="Results",
            reasoning="fake",
        )
        self.table_error = table_error
        self.sql_error = sql_error
        self.recommend_error = recommend_error
        self.calls: List[str] = []
        self.seen_intent: Optional[QueryIntent] = None
        self.sample_size: Optional[int] = None
        self.total_rows: Optional[int] = None

    def select_tables(self, question, catalog) -> QueryIntent:
        self.calls.append("select_tables")
        if self.table_error:
            raise self.table_error
        return QueryIntent(intent=question, tables=self.tables, complexity="simple")

    def generate_sql(self, question, intent, catalog) -> str:
        self.calls.append("generate_sql")
        self.seen_intent = intent
        if self.sql_error:
            raise self.sql_error
        return self.sql

    def recommend_visualization(self, question, sql, columns, sample_rows: Sequence[Row], total_rows: int):
        self.calls.append("recommend_visualization")
        self.sample_size = len(sample_rows)
        self.total_rows = total_rows
        if self.recommend_error:
            raise self.recommend_error
        return self.recommendation


@pytest.fixture()
def fake_agents() -> FakeAgents:
    return FakeAgents()


@pytest.fixture()
def sales_db(tmp_path) -> str:
    db_path = tmp_path / "sales.db"
    engine = create_engine(f"sqlite:///{db_path}")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE Regions (Id INTEGER PRIMARY KEY, Name TEXT NOT NULL)"))
        conn.execute(
            text(
                """
                CREATE TABLE Customers (
                    Id INTEGER PRIMARY KEY,
                    Name TEXT NOT NULL,
                    RegionId INTEGER REFERENCES Regions(Id),
                    Signed7216 TEXT
                )
                """
            )
        )
        conn.execute(
            text(
                """
                CREATE TABLE Orders (
                    Id INTEGER PRIMARY KEY,
                    CustomerId INTEGER NOT NULL REFERENCES Customers(Id),
                    Region TEXT,
                    Amount REAL,
                    OrderDate TEXT
                )
                """
            )
        )
        conn.execute(text("INSERT INTO Regions (Id, Name) VALUES (1, 'North'), (2, 'South')"))
        conn.execute(
            text(
                """
                INSERT INTO Customers (Id, Name, RegionId, Signed7216) VALUES
                    (1, 'Ada', 1, 'true'),
                    (2, 'Ben', 1, 'true'),
                    (3, 'Cy', 2, 'true'),
                    (4, 'Di', 2, 'false')
                """
            )
        )
        for order_id in range(1, 251):
            conn.execute(
                text(
                    "INSERT INTO Orders (Id, CustomerId, Region, Amount, OrderDate) "
                    "VALUES (:id, :customer, :region, :amount, :date)"
                ),
                {
                    "id": order_id,
                    "customer": (order_id % 4) + 1,
                    "region": "North" if order_id % 2 else "South",
                    "amount": float(order_id),
                    "date": f"2024-01-{(order_id % 28) + 1:02d}",
                },
            )
    engine.dispose()
    return f"sqlite:///{db_path}"


@pytest.fixture()
def settings_file(tmp_path, monkeypatch, sales_db):
    """Point the app at a config.yml that targets the throwaway SQLite database."""
    config_path = tmp_path / "config.yml"
    config_path.write_text(
        "\n".join(
            [
                "database:",
                "  connection_string: ${SALES_DB_URL}",
                "pipeline:",
                "  row_limit_style: limit",
                "  batch_size: 100",
                "logging:",
                "  level: DEBUG",
            ]
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("SALES_DB_URL", sales_db)
    monkeypatch.setenv("CONFIG_PATH", str(config_path))
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture()
def sample_catalog() -> SchemaCatalog:
    regions = TableDescriptor(
        name="Regions",
        columns=[
            ColumnDescriptor(name="Id", data_type="INTEGER", is_primary_key=True, is_nullable=False),
            ColumnDescriptor(name="Name", data_type="TEXT", is_nullable=False),
        ],
    )
    customers = TableDescriptor(
        name="Customers",
        columns=[
            ColumnDescriptor(name="Id", data_type="INTEGER", is_primary_key=True),
            ColumnDescriptor(name="RegionId", data_type="INTEGER", is_foreign_key=True, referenced_table="Regions"),
        ],
    )
    orders = TableDescriptor(
        name="Orders",
        columns=[
            ColumnDescriptor(name="Id", data_type="INTEGER", is_primary_key=True),
            ColumnDescriptor(name="CustomerId", data_type="INTEGER", is_foreign_key=True, referenced_table="Customers"),
            ColumnDescriptor(name="Amount", data_type="REAL"),
        ],
    )
    extras = [TableDescriptor(name=name) for name in ("Products", "Invoices", "Payments", "Shipments")]
    return SchemaCatalog.from_tables(
        [regions, customers, orders, *extras],
        [RelationshipEdge(from_table="Orders", from_column="CustomerId", to_table="Customers", to_column="Id")],
    )
