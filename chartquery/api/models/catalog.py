from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ColumnDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    data_type: str
    is_nullable: bool = True
    is_primary_key: bool = False
    is_foreign_key: bool = False
    referenced_table: Optional[str] = None
    max_length: Optional[int] = None
    description: str = ""

    @model_validator(mode="after")
    def _foreign_key_has_target(self) -> "ColumnDescriptor":
        if self.is_foreign_key and not (self.referenced_table or "").strip():
            raise ValueError(f"Foreign key column '{self.name}' must name its referenced table")
        return self


class TableDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    schema_name: Optional[str] = None
    description: str = ""
    columns: List[ColumnDescriptor] = Field(default_factory=list)
    sample_values: List[str] = Field(default_factory=list)

    def foreign_key_parents(self) -> List[str]:
        """Referenced tables in column order, without duplicates."""
        parents: List[str] = []
        for column in self.columns:
            if column.is_foreign_key and column.referenced_table and column.referenced_table not in parents:
                parents.append(column.referenced_table)
        return parents


class RelationshipEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_table: str
    from_column: str
    to_table: str
    to_column: str


class SchemaCatalog(BaseModel):
    """Immutable snapshot of the database structure.

    A refresh builds a new catalog and swaps it in; nothing mutates a catalog that
    readers may already hold.
    """

    model_config = ConfigDict(frozen=True)

    tables: Dict[str, TableDescriptor] = Field(default_factory=dict)
    relationships: List[RelationshipEdge] = Field(default_factory=list)
    refreshed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_tables(
        cls,
        tables: Iterable[TableDescriptor],
        relationships: Iterable[RelationshipEdge] = (),
    ) -> "SchemaCatalog":
        return cls(tables={table.name: table for table in tables}, relationships=list(relationships))

    def table_names(self) -> List[str]:
        return [table.name for table in self.tables.values()]

    def find_table(self, name: str) -> Optional[TableDescriptor]:
        if not name:
            return None
        wanted = name.strip().lower()
        for key, table in self.tables.items():
            if key.lower() == wanted:
                return table
        return None

    def parents_of(self, table_name: str) -> List[str]:
        """Parent tables via FK columns first, then relationship edges."""
        table = self.find_table(table_name)
        parents = table.foreign_key_parents() if table else []
        for edge in self.relationships:
            if edge.from_table.lower() == table_name.lower() and edge.to_table not in parents:
                parents.append(edge.to_table)
        return parents

    def describe_tables(self) -> str:
        if not self.tables:
            return "No tables found in database. Please check your connection string."
        lines = ["Available tables in the database:"]
        for table in self.tables.values():
            lines.append(f"- {table.name}: {table.description}")
        return "\n".join(lines)

    def describe_detailed(self, table_names: Iterable[str]) -> str:
        if not self.tables:
            return "No schema information available. Database connection may not be configured."

        requested = list(table_names)
        lines: List[str] = []
        found = 0
        for name in requested:
            table = self.find_table(name)
            if table is None:
                continue
            found += 1
            lines.append(f"Table: {table.name}")
            lines.append(f"Description: {table.description}")
            lines.append("Columns:")
            for column in table.columns:
                entry = f"  - {column.name} ({column.data_type}"
                if column.max_length:
                    entry += f"({column.max_length})"
                entry += ")"
                if column.is_primary_key:
                    entry += " [PRIMARY KEY]"
                if column.is_foreign_key:
                    entry += f" [FK -> {column.referenced_table}]"
                if not column.is_nullable:
                    entry += " [NOT NULL]"
                lines.append(entry)
            if table.sample_values:
                lines.append(f"Sample values: {', '.join(table.sample_values[:5])}")
            lines.append("")

        if found == 0:
            available = self.table_names()
            lines.append("WARNING: None of the requested tables were found in the database.")
            lines.append(f"Available tables are: {', '.join(available[:10])}")
            if len(available) > 10:
                lines.append(f"... and {len(available) - 10} more tables")

        wanted = {name.lower() for name in requested}
        edges = [
            edge for edge in self.relationships
            if edge.from_table.lower() in wanted or edge.to_table.lower() in wanted
        ]
        if edges:
            lines.append("Relationships:")
            for edge in edges:
                lines.append(f"  - {edge.from_table}.{edge.from_column} -> {edge.to_table}.{edge.to_column}")
        return "\n".join(lines)
