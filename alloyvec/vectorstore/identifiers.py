"""
Safe SQL identifiers.

Table, schema and column names are interpolated into SQL text; they can
never be bind parameters. Identifier is the only way such a name reaches a
query, and it can only be built from a string matching IDENTIFIER_PATTERN.
Values always go through asyncpg parameters instead.
"""

import re

from alloyvec.errors import ConfigurationError

# NAMEDATALEN - 1
MAX_IDENTIFIER_LENGTH = 63

# Unquoted PostgreSQL identifier, at most MAX_IDENTIFIER_LENGTH bytes
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


class Identifier(str):
    """
    A validated SQL identifier.

    Example:
        table = Identifier("documents")
        sql = f"SELECT * FROM {table.quoted}"  # SELECT * FROM "documents"
    """

    __slots__ = ()

    def __new__(cls, value: str) -> "Identifier":
        if isinstance(value, Identifier):
            return value
        if not isinstance(value, str) or not IDENTIFIER_PATTERN.match(value):
            raise ConfigurationError(f"Invalid SQL identifier: {value!r}")
        return super().__new__(cls, value)

    @property
    def quoted(self) -> str:
        """Double-quoted form for SQL text."""
        return f'"{self}"'


def qualified(schema: str, table: str) -> str:
    """Render a schema-qualified table reference, e.g. "public"."documents"."""
    return f"{Identifier(schema).quoted}.{Identifier(table).quoted}"
