"""
Statement builders for pg_compute.

All SQL text the engine sends is produced here:
- Schema and metadata table DDL
- Metadata row select / insert / delete (bound parameters)
- ``create or replace function`` DDL for plv8 routines
- ``select <schema>.<name>(...)`` invocation statements

Table schema (one per target schema):
    pg_compute:
        - name TEXT NOT NULL
        - args TEXT (empty string for zero-arg functions)
        - body_hashcode TEXT
        - PRIMARY KEY (name, args)

Invariants:
    - The schema identifier is always quoted
    - Invocation arguments are embedded literals, not bound parameters
"""

from __future__ import annotations

from typing import Iterable

METADATA_TABLE_NAME = "pg_compute"
SCRIPT_LANGUAGE = "plv8"

_METADATA_COLUMNS = (
    "(name text NOT NULL,"
    " args text,"
    " body_hashcode text,"
    " PRIMARY KEY(name, args))"
)


def quote_ident(name: str) -> str:
    """Quote an identifier following PostgreSQL rules.

    Example:
        >>> quote_ident('my"schema')
        '"my""schema"'
    """
    return '"' + name.replace('"', '""') + '"'


def dollar_quote(body: str) -> str:
    """Wrap a routine body in a dollar-quoted string literal.

    Uses ``$$`` unless the body itself contains it.
    """
    tag = "$$"
    n = 0
    while tag in body:
        n += 1
        tag = f"$pgc{n}$"
    return f"{tag}{body}{tag}"


class Statements:
    """Statement factory bound to one target schema.

    Example:
        >>> stmts = Statements("public")
        >>> stmts.invoke("sum", ["1", "2"])
        'select "public".sum(1,2);'
    """

    def __init__(self, schema: str, language: str = SCRIPT_LANGUAGE) -> None:
        self.schema = schema
        self.quoted_schema = quote_ident(schema)
        self.language = language
        self.metadata_table = f"{self.quoted_schema}.{METADATA_TABLE_NAME}"

    def create_schema(self) -> str:
        return f"CREATE SCHEMA IF NOT EXISTS {self.quoted_schema}"

    def create_metadata_table(self) -> str:
        return f"CREATE TABLE IF NOT EXISTS {self.metadata_table}{_METADATA_COLUMNS}"

    def select_metadata(self) -> str:
        return f"SELECT name, args, body_hashcode FROM {self.metadata_table}"

    def insert_metadata(self) -> str:
        return f"INSERT INTO {self.metadata_table} VALUES($1, $2, $3)"

    def delete_metadata(self) -> str:
        return f"DELETE FROM {self.metadata_table} WHERE name = $1 AND coalesce(args, '') = $2"

    def create_function(self, name: str, args_signature: str, body: str) -> str:
        """``create or replace function`` DDL for a plv8 routine.

        Args:
            name: Function name
            args_signature: Comma-joined ``"<param> <type>"`` list, or ""
            body: Routine body text
        """
        return (
            f"create or replace function {self.quoted_schema}.{name}({args_signature})"
            f" returns JSON as {dollar_quote(body)} language {self.language};"
        )

    def invoke(self, name: str, literals: Iterable[str]) -> str:
        """Invocation statement with literal arguments."""
        return f"select {self.quoted_schema}.{name}({','.join(literals)});"
