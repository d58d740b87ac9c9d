from __future__ import annotations

import pytest

from chartquery.api.models.pipeline import QueryIntent
from chartquery.api.services.errors import NoValidTablesError
from chartquery.api.services.table_selection import TableSelectionValidator


def _intent(*tables: str) -> QueryIntent:
    return QueryIntent(intent="test", tables=list(tables), relationships="", complexity="Medium")


def test_case_insensitive_match_uses_catalog_spelling(sample_catalog):
    result = TableSelectionValidator().validate(_intent("regions"), sample_catalog)
    assert result.tables == ["Regions"]


def test_unknown_tables_are_dropped(sample_catalog, caplog):
    result = TableSelectionValidator().validate(_intent("Products", "Ghosts"), sample_catalog)
    assert result.tables == ["Products"]
    assert "Ghosts" in caplog.text


def test_parents_are_appended_transitively(sample_catalog):
    result = TableSelectionValidator().validate(_intent("Orders"), sample_catalog)
    assert result.tables == ["Orders", "Customers", "Regions"]


def test_parents_only_added_while_under_cap(sample_catalog):
    result = TableSelectionValidator().validate(
        _intent("Products", "Invoices", "Payments", "Shipments", "Orders"),
        sample_catalog,
    )
    assert result.tables == ["Products", "Invoices", "Payments", "Shipments", "Orders"]


def test_truncates_to_five(sample_catalog):
    result = TableSelectionValidator().validate(
        _intent("Products", "Invoices", "Payments", "Shipments", "Regions", "Orders", "Customers"),
        sample_catalog,
    )
    assert result.tables == ["Products", "Invoices", "Payments", "Shipments", "Regions"]


def test_duplicates_collapse(sample_catalog):
    result = TableSelectionValidator().validate(_intent("Regions", "REGIONS", "regions"), sample_catalog)
    assert result.tables == ["Regions"]


def test_no_valid_tables_lists_available(sample_catalog):
    with pytest.raises(NoValidTablesError) as exc_info:
        TableSelectionValidator().validate(_intent("Ghosts", "Phantoms"), sample_catalog)
    error = exc_info.value
    assert error.available_tables == sample_catalog.table_names()
    assert error.message.startswith("Could not identify any valid tables for your query.")
    assert "Orders" in error.message
    assert error.to_dict()["stage"] == "table-selection"


@pytest.mark.parametrize(
    "proposed",
    [
        ("Orders",),
        ("customers", "Ghosts"),
        ("Products", "Invoices", "Payments", "Shipments", "Regions", "Orders"),
        ("Payments", "orders", "Orders"),
    ],
)
def test_output_is_subset_bounded_unique_and_idempotent(sample_catalog, proposed):
    validator = TableSelectionValidator()
    once = validator.validate(_intent(*proposed), sample_catalog)
    twice = validator.validate(once, sample_catalog)

    assert set(once.tables) <= set(sample_catalog.table_names())
    assert len(once.tables) <= 5
    assert len(once.tables) == len(set(once.tables))
    assert twice == once


def test_input_intent_is_not_mutated(sample_catalog):
    intent = _intent("orders")
    TableSelectionValidator().validate(intent, sample_catalog)
    assert intent.tables == ["orders"]


def test_custom_cap(sample_catalog):
    result = TableSelectionValidator(max_tables=2).validate(_intent("Orders"), sample_catalog)
    assert result.tables == ["Orders", "Customers"]
