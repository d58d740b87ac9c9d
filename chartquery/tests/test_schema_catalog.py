from __future__ import annotations

import pytest
from sqlalchemy import create_engine, event, text

from chartquery.api.database import get_engine
from chartquery.api.models.catalog import ColumnDescriptor
from chartquery.api.services.cache import TTLCache
from chartquery.api.services.schema_catalog import SchemaCatalogProvider


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_reflects_tables_columns_and_foreign_keys(sales_db):
    catalog = SchemaCatalogProvider(sales_db).get_catalog()

    assert set(catalog.table_names()) == {"Regions", "Customers", "Orders"}
    orders = catalog.find_table("orders")
    by_name = {column.name: column for column in orders.columns}
    assert by_name["Id"].is_primary_key is True
    assert by_name["CustomerId"].is_foreign_key is True
    assert by_name["CustomerId"].referenced_table == "Customers"
    assert by_name["CustomerId"].is_nullable is False
    assert catalog.parents_of("Orders") == ["Customers"]
    assert catalog.parents_of("Customers") == ["Regions"]
    assert len(orders.sample_values) > 0


def test_describe_detailed_marks_keys(sales_db):
    catalog = SchemaCatalogProvider(sales_db).get_catalog()
    text_block = catalog.describe_detailed(["Orders"])
    assert "Table: Orders" in text_block
    assert "[PRIMARY KEY]" in text_block
    assert "[FK -> Customers]" in text_block
    assert "Orders.CustomerId -> Customers.Id" in text_block


def test_describe_detailed_warns_on_unknown_tables(sales_db):
    catalog = SchemaCatalogProvider(sales_db).get_catalog()
    text_block = catalog.describe_detailed(["Nope"])
    assert "WARNING: None of the requested tables were found" in text_block
    assert "Regions" in text_block


def test_catalog_is_cached_until_ttl_expires(sales_db):
    clock = FakeClock()
    provider = SchemaCatalogProvider(sales_db, cache=TTLCache(ttl_seconds=60, clock=clock))
    first = provider.get_catalog()

    engine = create_engine(sales_db)
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE Products (Id INTEGER PRIMARY KEY)"))
    engine.dispose()

    assert provider.get_catalog() is first
    clock.now = 61
    refreshed = provider.get_catalog()
    assert refreshed is not first
    assert "Products" in refreshed.table_names()
    # the old snapshot is untouched
    assert "Products" not in first.table_names()


def test_refresh_forces_reload(sales_db):
    provider = SchemaCatalogProvider(sales_db)
    first = provider.get_catalog()
    assert provider.refresh() is not first


def test_foreign_key_column_requires_target():
    with pytest.raises(ValueError):
        ColumnDescriptor(name="CustomerId", data_type="INTEGER", is_foreign_key=True)


def test_ttl_cache_evicts_oldest():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=10, max_size=2, clock=clock)
    cache.set("a", 1)
    clock.now = 1
    cache.set("b", 2)
    cache.set("c", 3)
    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_sample_values_query_is_row_limited(sales_db):
    statements = []

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    engine = get_engine(sales_db)
    event.listen(engine, "before_cursor_execute", record)
    try:
        catalog = SchemaCatalogProvider(sales_db).get_catalog()
    finally:
        event.remove(engine, "before_cursor_execute", record)

    sample_queries = [statement for statement in statements if statement.startswith("SELECT *")]
    assert len(sample_queries) == 3
    assert all("LIMIT" in statement for statement in sample_queries)
    orders = catalog.find_table("Orders")
    assert len(orders.sample_values) == 3
    assert orders.sample_values[0].startswith("{Id=1, CustomerId=")
