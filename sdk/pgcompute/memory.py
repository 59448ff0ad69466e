"""
In-memory data store for testing pg_compute.

This module provides a PostgreSQL stand-in for:
- Unit tests
- Local development without a database

It understands exactly the statements pg_compute emits: schema and
metadata table DDL, metadata select/insert/delete, ``create [or replace]
function`` and ``select <schema>.<name>(<literals>)``. Invocation follows
PostgreSQL's overload resolution and literal coercion closely enough to
reproduce its errors ("function ... does not exist", "invalid input
syntax for type integer"). Routine bodies are executed by a runtime
callable supplied by the test, standing in for plv8.

Invariants:
    - All data is lost when the object is dropped
    - transaction() rolls every change back if the block raises
    - The metadata table enforces its (name, args) primary key

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep the surface compatible with DataStoreConnection
    - Add testing helpers rather than special-casing the engine
"""

from __future__ import annotations

import copy
import datetime
import json
import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Set, Tuple

logger = logging.getLogger(__name__)

# (routine name, body, arguments by parameter name) -> JSON-compatible value
ScriptRuntime = Callable[[str, str, Dict[str, Any]], Any]

_IDENT = r'(?:"(?:[^"]|"")+"|\w+)'

_CREATE_SCHEMA = re.compile(rf"^CREATE\s+SCHEMA\s+IF\s+NOT\s+EXISTS\s+({_IDENT})\s*;?$", re.I)
_CREATE_TABLE = re.compile(
    rf"^CREATE\s+TABLE\s+IF\s+NOT\s+EXISTS\s+({_IDENT})\.pg_compute\s*\(.*\)\s*;?$", re.I | re.S
)
_SELECT_META = re.compile(rf"^SELECT\s+.+\s+FROM\s+({_IDENT})\.pg_compute\s*;?$", re.I | re.S)
_INSERT_META = re.compile(rf"^INSERT\s+INTO\s+({_IDENT})\.pg_compute\s+VALUES", re.I)
_DELETE_META = re.compile(rf"^DELETE\s+FROM\s+({_IDENT})\.pg_compute\s+WHERE", re.I)
_CREATE_FUNCTION = re.compile(
    rf"^create\s+(or\s+replace\s+)?function\s+(?:({_IDENT})\.)?(\w+)\s*\((.*?)\)"
    r"\s+returns\s+json\s+as\s+(\$\w*\$)(.*)\5\s+language\s+(\w+)\s*;?$",
    re.I | re.S,
)
_INVOKE = re.compile(rf"^select\s+(?:({_IDENT})\.)?(\w+)\s*\((.*)\)\s*;?$", re.I | re.S)
_INT_LITERAL = re.compile(r"^[+-]?\d+$")
_NUMERIC_LITERAL = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")

# Type name aliases, folded to PostgreSQL's canonical names
_TYPE_ALIASES = {
    "int": "integer",
    "int4": "integer",
    "integer": "integer",
    "int8": "bigint",
    "bigint": "bigint",
    "float4": "real",
    "real": "real",
    "float8": "double precision",
    "double precision": "double precision",
    "bool": "boolean",
    "boolean": "boolean",
    "text": "text",
    "varchar": "text",
    "date": "date",
}

# Implicit casts available to typed literals
_IMPLICIT = {
    "integer": {"integer", "bigint", "real", "double precision"},
    "bigint": {"bigint", "real", "double precision"},
    "numeric": {"real", "double precision"},
    "boolean": {"boolean"},
}

_MIN_INT32 = -(2**31)
_MAX_INT32 = 2**31 - 1


class InMemoryDataStoreError(Exception):
    """Error raised by the in-memory store, shaped like asyncpg errors.

    Attributes:
        sqlstate: PostgreSQL SQLSTATE code
    """

    def __init__(self, message: str, sqlstate: str = "XX000") -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


@dataclass
class Routine:
    """A function created in the store."""

    schema: str
    name: str
    params: Tuple[Tuple[str, str], ...]
    body: str
    language: str

    @property
    def arg_types(self) -> Tuple[str, ...]:
        return tuple(t for _, t in self.params)


@dataclass
class _State:
    schemas: Set[str] = field(default_factory=lambda: {"public"})
    # schema -> {(name, args): body_hashcode}
    tables: Dict[str, Dict[Tuple[str, str], str]] = field(default_factory=dict)
    # (schema, lower name) -> overloads
    routines: Dict[Tuple[str, str], List[Routine]] = field(default_factory=dict)


def _unquote(ident: Optional[str]) -> str:
    if ident is None:
        return "public"
    if ident.startswith('"'):
        return ident[1:-1].replace('""', '"')
    return ident.lower()


def _split_top_level(text: str) -> List[str]:
    """Split on commas outside single quotes."""
    parts: List[str] = []
    current: List[str] = []
    quoted = False
    for ch in text:
        if ch == "'":
            quoted = not quoted
        if ch == "," and not quoted:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    tail = "".join(current).strip()
    if tail or parts:
        parts.append(tail)
    return parts


def _parse_params(text: str) -> Tuple[Tuple[str, str], ...]:
    params = []
    for part in _split_top_level(text):
        if not part:
            continue
        name, _, type_name = part.partition(" ")
        type_name = " ".join(type_name.lower().split())
        params.append((name, _TYPE_ALIASES.get(type_name, type_name)))
    return tuple(params)


def _classify_literal(literal: str) -> Tuple[str, Any]:
    if literal.startswith("'") and literal.endswith("'") and len(literal) >= 2:
        return "unknown", literal[1:-1]
    lowered = literal.lower()
    if lowered in ("true", "false"):
        return "boolean", lowered == "true"
    if _INT_LITERAL.match(literal):
        value = int(literal)
        if _MIN_INT32 <= value <= _MAX_INT32:
            return "integer", value
        return "bigint", value
    if _NUMERIC_LITERAL.match(literal):
        return "numeric", float(literal)
    raise InMemoryDataStoreError(f'syntax error at or near "{literal}"', sqlstate="42601")


def _coerce(value: Any, literal_type: str, target: str) -> Any:
    """Convert a literal to the parameter type, as an implicit cast would."""
    if literal_type != "unknown":
        return float(value) if target in ("real", "double precision") else value

    text = value
    try:
        if target in ("integer", "bigint"):
            return int(text.strip())
        if target in ("real", "double precision"):
            return float(text)
        if target == "boolean":
            lowered = text.strip().lower()
            if lowered in ("t", "true", "yes", "on", "1"):
                return True
            if lowered in ("f", "false", "no", "off", "0"):
                return False
            raise ValueError(text)
        if target == "date":
            return datetime.date.fromisoformat(text.strip()[:10]).isoformat()
    except ValueError:
        raise InMemoryDataStoreError(
            f'invalid input syntax for type {target}: "{text}"', sqlstate="22P02"
        ) from None
    return text


class InMemoryDataStore:
    """In-memory stand-in for an asyncpg connection to PostgreSQL + plv8.

    Attributes:
        statements: Every statement received, in order (with BEGIN /
            COMMIT / ROLLBACK markers for transactions)
        closed: Whether close() was called

    Example:
        >>> store = InMemoryDataStore(runtime=lambda name, body, kw: kw["a"] + kw["b"])
        >>> compute = PgCompute()
        >>> await compute.init(store)
        >>> await compute.run(store, sum_fn, 1, 2)
        3
    """

    def __init__(self, runtime: Optional[ScriptRuntime] = None) -> None:
        """Initialize an empty store.

        Args:
            runtime: Executes routine bodies on invocation
        """
        self.runtime = runtime
        self.statements: List[str] = []
        self.closed = False
        self._state = _State()
        self._failures: List[Tuple[str, InMemoryDataStoreError]] = []

    # -- asyncpg connection surface ---------------------------------------

    async def execute(self, query: str, *args: Any) -> str:
        """Run a statement, return a PostgreSQL-style status string."""
        self._record(query)
        query = query.strip()

        m = _CREATE_SCHEMA.match(query)
        if m:
            self._state.schemas.add(_unquote(m.group(1)))
            return "CREATE SCHEMA"

        m = _CREATE_TABLE.match(query)
        if m:
            schema = self._require_schema(m.group(1))
            self._state.tables.setdefault(schema, {})
            return "CREATE TABLE"

        m = _INSERT_META.match(query)
        if m:
            table = self._require_table(m.group(1))
            name, fn_args, body_hashcode = args
            key = (name, fn_args)
            if key in table:
                raise InMemoryDataStoreError(
                    'duplicate key value violates unique constraint "pg_compute_pkey"',
                    sqlstate="23505",
                )
            table[key] = body_hashcode
            return "INSERT 0 1"

        m = _DELETE_META.match(query)
        if m:
            table = self._require_table(m.group(1))
            deleted = table.pop((args[0], args[1]), None)
            if deleted is None and args[1] == "":
                # coalesce(args, '') also matches NULL
                deleted = table.pop((args[0], None), None)
            return f"DELETE {0 if deleted is None else 1}"

        m = _CREATE_FUNCTION.match(query)
        if m:
            self._create_function(m)
            return "CREATE FUNCTION"

        raise InMemoryDataStoreError(f"unsupported statement: {query[:60]}", sqlstate="0A000")

    async def fetch(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        """Run a query, return rows as dicts."""
        self._record(query)
        query = query.strip()

        m = _SELECT_META.match(query)
        if m:
            table = self._require_table(m.group(1))
            return [
                {"name": name, "args": fn_args, "body_hashcode": body_hashcode}
                for (name, fn_args), body_hashcode in table.items()
            ]

        m = _INVOKE.match(query)
        if m:
            return self._invoke(_unquote(m.group(1)), m.group(2), m.group(3))

        raise InMemoryDataStoreError(f"unsupported query: {query[:60]}", sqlstate="0A000")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryDataStore]:
        """Atomic block; state is restored if the block raises."""
        snapshot = copy.deepcopy(self._state)
        self.statements.append("BEGIN")
        try:
            yield self
        except BaseException:
            self._state = snapshot
            self.statements.append("ROLLBACK")
            raise
        self.statements.append("COMMIT")

    async def close(self) -> None:
        self.closed = True

    # -- testing helpers ---------------------------------------------------

    def inject_failure(self, match: str, message: str = "injected failure", sqlstate: str = "XX000") -> None:
        """Fail the next statement containing ``match`` (case-insensitive)."""
        self._failures.append((match.lower(), InMemoryDataStoreError(message, sqlstate)))

    def metadata_rows(self, schema: str = "public") -> List[Dict[str, str]]:
        """Rows of the pg_compute table in a schema."""
        return [
            {"name": name, "args": fn_args, "body_hashcode": body_hashcode}
            for (name, fn_args), body_hashcode in self._state.tables.get(schema, {}).items()
        ]

    def routines(self, schema: str = "public") -> List[Routine]:
        """All routines created in a schema."""
        return [
            r for (s, _), overloads in self._state.routines.items() if s == schema for r in overloads
        ]

    def has_schema(self, schema: str) -> bool:
        return schema in self._state.schemas

    def ddl_statements(self) -> List[str]:
        """Statements that created or replaced a function."""
        return [s for s in self.statements if s.lstrip().lower().startswith("create or replace function")]

    def invocations(self) -> List[str]:
        """Invocation statements received."""
        return [s for s in self.statements if s.lstrip().lower().startswith("select ") and "pg_compute" not in s]

    # -- internals -----------------------------------------------------------

    def _record(self, query: str) -> None:
        if self.closed:
            raise InMemoryDataStoreError("connection is closed", sqlstate="08003")
        self.statements.append(query)
        lowered = query.lower()
        for i, (match, error) in enumerate(self._failures):
            if match in lowered:
                del self._failures[i]
                raise error

    def _require_schema(self, ident: str) -> str:
        schema = _unquote(ident)
        if schema not in self._state.schemas:
            raise InMemoryDataStoreError(f'schema "{schema}" does not exist', sqlstate="3F000")
        return schema

    def _require_table(self, ident: str) -> Dict[Tuple[str, str], str]:
        schema = _unquote(ident)
        table = self._state.tables.get(schema)
        if table is None:
            raise InMemoryDataStoreError(
                f'relation "{schema}.pg_compute" does not exist', sqlstate="42P01"
            )
        return table

    def _create_function(self, m: re.Match) -> None:
        or_replace, schema_ident, name, params_text, _, body, language = m.groups()
        schema = self._require_schema(schema_ident) if schema_ident else "public"
        routine = Routine(
            schema=schema,
            name=name.lower(),
            params=_parse_params(params_text),
            body=body,
            language=language.lower(),
        )

        overloads = self._state.routines.setdefault((schema, routine.name), [])
        for i, existing in enumerate(overloads):
            if existing.arg_types == routine.arg_types:
                if not or_replace:
                    raise InMemoryDataStoreError(
                        f'function "{routine.name}" already exists with same argument types',
                        sqlstate="42723",
                    )
                overloads[i] = routine
                break
        else:
            overloads.append(routine)
        logger.debug(f"Created routine {schema}.{routine.name}{routine.arg_types}")

    def _resolve(self, schema: str, name: str, literal_types: List[str]) -> Routine:
        overloads = [
            r
            for r in self._state.routines.get((schema, name), [])
            if len(r.params) == len(literal_types)
        ]
        best: Optional[Routine] = None
        best_exact = -1
        for routine in overloads:
            exact = 0
            for lit_type, param_type in zip(literal_types, routine.arg_types):
                if lit_type == param_type:
                    exact += 1
                elif lit_type != "unknown" and param_type not in _IMPLICIT.get(lit_type, set()):
                    break
            else:
                if exact > best_exact:
                    best, best_exact = routine, exact

        if best is None:
            shown = ", ".join(literal_types)
            raise InMemoryDataStoreError(
                f"function {schema}.{name}({shown}) does not exist", sqlstate="42883"
            )
        return best

    def _invoke(self, schema: str, name: str, args_text: str) -> List[Dict[str, Any]]:
        name = name.lower()
        literals = [_classify_literal(lit) for lit in _split_top_level(args_text) if lit]
        routine = self._resolve(schema, name, [t for t, _ in literals])

        kwargs = {
            param_name: _coerce(value, lit_type, param_type)
            for (lit_type, value), (param_name, param_type) in zip(literals, routine.params)
        }

        if self.runtime is None:
            raise InMemoryDataStoreError("no script runtime configured", sqlstate="0A000")
        try:
            result = self.runtime(routine.name, routine.body, kwargs)
        except InMemoryDataStoreError:
            raise
        except Exception as e:
            raise InMemoryDataStoreError(f"Error: {e}", sqlstate="XX000") from e

        return [{name: json.dumps(result, default=str)}]


class InMemoryPool:
    """Pool over one InMemoryDataStore, counting checkouts.

    Every acquired "connection" is the shared store, so all checkouts see
    the same data.
    """

    def __init__(self, store: InMemoryDataStore) -> None:
        self.store = store
        self.acquired = 0
        self.released = 0

    @property
    def in_use(self) -> int:
        return self.acquired - self.released

    async def acquire(self) -> InMemoryDataStore:
        self.acquired += 1
        return self.store

    async def release(self, connection: InMemoryDataStore) -> None:
        if connection is not self.store:
            raise InMemoryDataStoreError("connection does not belong to this pool")
        self.released += 1
