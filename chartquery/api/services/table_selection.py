from __future__ import annotations

import logging
from typing import List

from chartquery.api.models.catalog import SchemaCatalog
from chartquery.api.models.pipeline import QueryIntent
from chartquery.api.services.errors import NoValidTablesError

logger = logging.getLogger(__name__)

MAX_TABLES = 5


class TableSelectionValidator:
    """Reconciles an agent's proposed tables with the catalog.

    Names are matched case-insensitively and rewritten to the catalog's spelling,
    unknown names are dropped, the list is capped, and foreign-key parents are
    appended while there is room. Running it on its own output changes nothing.
    """

    def __init__(self, max_tables: int = MAX_TABLES) -> None:
        self._max_tables = max_tables

    def validate(self, intent: QueryIntent, catalog: SchemaCatalog) -> QueryIntent:
        selected: List[str] = []
        invalid: List[str] = []

        for proposed in intent.tables:
            table = catalog.find_table(proposed)
            if table is None:
                invalid.append(proposed)
            elif table.name not in selected:
                selected.append(table.name)

        if invalid:
            logger.warning("Dropping tables not present in the catalog: %s", ", ".join(invalid))

        if len(selected) > self._max_tables:
            logger.warning(
                "Table selection proposed %d tables, truncating to %d",
                len(selected),
                self._max_tables,
            )
            selected = selected[: self._max_tables]

        if not selected:
            logger.error("No valid tables identified for intent: %s", intent.intent)
            raise NoValidTablesError(catalog.table_names())

        self._include_parents(selected, catalog)
        logger.info("Validated table selection: %s", ", ".join(selected))
        return intent.model_copy(update={"tables": selected})

    def _include_parents(self, selected: List[str], catalog: SchemaCatalog) -> None:
        # `selected` grows while iterating so parents of parents are considered too.
        index = 0
        while index < len(selected) and len(selected) < self._max_tables:
            table_name = selected[index]
            for parent in catalog.parents_of(table_name):
                if len(selected) >= self._max_tables:
                    break
                parent_table = catalog.find_table(parent)
                if parent_table is None or parent_table.name in selected:
                    continue
                logger.info("Auto-including parent table %s referenced by %s", parent_table.name, table_name)
                selected.append(parent_table.name)
            index += 1
