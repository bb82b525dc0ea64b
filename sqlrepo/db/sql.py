"""
SQL templates for generic repositories.
Challenge: Same four statements for every table, rendered once per repository.
Design: Names are double-quoted (case preserved); values are always bound parameters.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import TextClause, bindparam, text

# Characters refused in string ids on the batched IN (...) path
UNSAFE_ID_CHARACTERS = ("'", '"', "\x00")


class UnsafeIdentifierValue(ValueError):
    """An id value that must not reach the batched delete statement."""


def quote_identifier(name: str) -> str:
    """Wrap a schema/table/column name in double quotes. No other escaping is applied."""
    return f'"{name}"'


def validate_batch_ids(ids) -> list:
    """
    Check ids before they are used in DELETE ... IN (...).
    Accepts ints, strings, UUIDs and Decimals; rejects None, bools, other objects
    and strings containing quote or NUL characters.
    """
    checked = []
    for value in ids:
        if value is None or isinstance(value, bool):
            raise UnsafeIdentifierValue(f"Invalid id in batch: {value!r}")
        if isinstance(value, str):
            if any(ch in value for ch in UNSAFE_ID_CHARACTERS):
                raise UnsafeIdentifierValue(f"Id contains a forbidden character: {value!r}")
        elif not isinstance(value, (int, UUID, Decimal)):
            raise UnsafeIdentifierValue(f"Unsupported id type in batch: {type(value).__name__}")
        checked.append(value)
    return checked


@dataclass(frozen=True)
class SqlTemplates:
    """Pre-rendered statements for one table."""

    schema_name: str
    table_name: str
    id_column_name: str
    select_all: str = field(init=False)
    select_by_id: str = field(init=False)
    delete_all: str = field(init=False)
    delete_by_id: str = field(init=False)
    delete_by_ids: str = field(init=False)

    def __post_init__(self):
        table = self.qualified_table
        id_column = quote_identifier(self.id_column_name)
        # frozen dataclass: assign derived fields through object.__setattr__
        object.__setattr__(self, "select_all", f"SELECT * FROM {table}")
        object.__setattr__(self, "select_by_id", f"SELECT * FROM {table} WHERE {id_column} = :id")
        object.__setattr__(self, "delete_all", f"DELETE FROM {table}")
        object.__setattr__(self, "delete_by_id", f"DELETE FROM {table} WHERE {id_column} = :id")
        object.__setattr__(self, "delete_by_ids", f"DELETE FROM {table} WHERE {id_column} IN :ids")

    @property
    def qualified_table(self) -> str:
        return f"{quote_identifier(self.schema_name)}.{quote_identifier(self.table_name)}"

    def delete_by_ids_statement(self) -> TextClause:
        """DELETE ... IN :ids with an expanding parameter (renders as IN (?, ?, ...))."""
        return text(self.delete_by_ids).bindparams(bindparam("ids", expanding=True))
