"""
Argument type mapping for pg_compute.

This module maps Python argument values to PostgreSQL parameter types
and renders them as literals for generated statements:
- BackingType: The supported backing store types
- TypeMapper: Per-engine classification and rendering

Invariants:
    - Classification is pure and deterministic (no I/O)
    - bool is checked before int (bool is an int subclass)
    - Integers inside the signed 32-bit range map to INT32, others to INT64
    - Strings are single-quoted without further escaping

How to change safely:
    - Changing a type name changes every argument signature that uses it,
      which redeploys every function taking that type under AUTO
    - Add new kinds at the end of BackingType
"""

from __future__ import annotations

import datetime
import math
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .errors import UnsupportedArgumentType

MIN_INT32 = -(2**31)
MAX_INT32 = 2**31 - 1


class BackingType(Enum):
    """Backing store types an argument can be classified as."""

    INT32 = "int32"
    INT64 = "int64"
    FLOAT = "float"
    BOOL = "bool"
    STRING = "string"
    DATE = "date"


# PostgreSQL type names used in argument signatures and DDL
DEFAULT_TYPE_NAMES: Dict[BackingType, str] = {
    BackingType.INT32: "int4",
    BackingType.INT64: "int8",
    BackingType.FLOAT: "float4",
    BackingType.BOOL: "bool",
    BackingType.STRING: "text",
    BackingType.DATE: "date",
}


def _kind_of(value: Any) -> str:
    if value is None:
        return "null"
    if callable(value):
        return "function"
    return type(value).__name__


class TypeMapper:
    """Classifies argument values and renders them as SQL literals.

    Each PgCompute instance owns its own mapper, so engines configured
    with different type names never share state.

    Example:
        >>> mapper = TypeMapper()
        >>> mapper.classify(7)
        <BackingType.INT32: 'int32'>
        >>> mapper.sql_type(BackingType.INT32)
        'int4'
        >>> mapper.render("world", BackingType.STRING)
        "'world'"
    """

    def __init__(self, type_names: Optional[Mapping[BackingType, str]] = None) -> None:
        """Initialize the mapper.

        Args:
            type_names: Overrides for the PostgreSQL type name of each
                backing type (merged over DEFAULT_TYPE_NAMES)
        """
        self._type_names = dict(DEFAULT_TYPE_NAMES)
        if type_names:
            self._type_names.update(type_names)

    def classify(self, value: Any, param_name: Optional[str] = None) -> BackingType:
        """Classify a runtime value.

        Args:
            value: Argument value
            param_name: Parameter the value is bound to (for error context)

        Returns:
            The backing type of the value

        Raises:
            UnsupportedArgumentType: If the value has no backing type
        """
        if isinstance(value, bool):
            return BackingType.BOOL

        if isinstance(value, int):
            if MIN_INT32 <= value <= MAX_INT32:
                return BackingType.INT32
            return BackingType.INT64

        if isinstance(value, Decimal):
            if value.is_finite() and value == value.to_integral_value():
                return self.classify(int(value), param_name)
            return BackingType.FLOAT

        if isinstance(value, float):
            return BackingType.FLOAT

        if isinstance(value, str):
            return BackingType.STRING

        # datetime is a date subclass
        if isinstance(value, datetime.date):
            return BackingType.DATE

        raise UnsupportedArgumentType(_kind_of(value), param_name)

    def sql_type(self, backing_type: BackingType) -> str:
        """PostgreSQL type name for a backing type."""
        return self._type_names[backing_type]

    def render(self, value: Any, backing_type: BackingType) -> str:
        """Render a value as literal text for embedding in a statement.

        Args:
            value: Argument value
            backing_type: Type returned by classify() for the value

        Returns:
            Literal SQL text
        """
        if backing_type is BackingType.BOOL:
            return "true" if value else "false"

        if backing_type in (BackingType.INT32, BackingType.INT64):
            return str(int(value))

        if backing_type is BackingType.FLOAT:
            if isinstance(value, Decimal):
                if value.is_nan():
                    return "'NaN'"
                if value.is_infinite():
                    return "'Infinity'" if value > 0 else "'-Infinity'"
                return str(value)
            if math.isnan(value):
                return "'NaN'"
            if math.isinf(value):
                return "'Infinity'" if value > 0 else "'-Infinity'"
            return repr(float(value))

        if backing_type is BackingType.DATE:
            if isinstance(value, datetime.datetime):
                value = value.date()
            return f"'{value.isoformat()}'"

        # No escaping beyond quoting; string arguments are embedded as-is
        return f"'{value}'"

    def bind(self, param_name: str, value: Any) -> ArgumentTypeBinding:
        """Classify one argument and pair it with its parameter."""
        backing_type = self.classify(value, param_name)
        return ArgumentTypeBinding(
            param_name=param_name,
            backing_type=backing_type,
            sql_type=self.sql_type(backing_type),
            literal=self.render(value, backing_type),
        )


@dataclass(frozen=True)
class ArgumentTypeBinding:
    """One argument bound to its parameter for a single invocation.

    Attributes:
        param_name: Declared parameter name
        backing_type: Classified type of the runtime value
        sql_type: PostgreSQL type name
        literal: Rendered literal text
    """

    param_name: str
    backing_type: BackingType
    sql_type: str
    literal: str

    @property
    def declaration(self) -> str:
        """``"<param> <type>"`` as used in argument signatures."""
        return f"{self.param_name} {self.sql_type}"
