"""
Function descriptors for pg_compute.

A database function is described explicitly by its name, its ordered
parameter names and its plv8 (JavaScript) body text. Descriptors can be
built three ways:

    >>> FunctionSignature("sum", ("a", "b"), " return a + b; ")
    >>> FunctionSignature.from_source("function sum(a, b) { return a + b; }")
    >>> @plv8_function(" return a + b; ")
    ... def sum(a, b): ...

Invariants:
    - name is never empty; anonymous functions cannot be deployed
    - params keep declaration order
    - body is kept byte-for-byte (the fingerprint is whitespace sensitive)
    - Extraction never executes anything
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Union

from .errors import AnonymousFunctionNotSupported, PgComputeError

_POSITIONAL_KINDS = (
    inspect.Parameter.POSITIONAL_ONLY,
    inspect.Parameter.POSITIONAL_OR_KEYWORD,
)


@dataclass(frozen=True)
class FunctionSignature:
    """Identity and body of one deployable function.

    Attributes:
        name: Function name as declared (PostgreSQL folds it to lower case)
        params: Ordered parameter names
        body: Exact plv8 source text of the function body
    """

    name: str
    params: Tuple[str, ...]
    body: str

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise AnonymousFunctionNotSupported()
        # Accept any sequence, store a tuple
        object.__setattr__(self, "params", tuple(self.params))

    @property
    def arity(self) -> int:
        """Number of declared parameters."""
        return len(self.params)

    @property
    def result_column(self) -> str:
        """Result column name of ``select <schema>.<name>(...)``."""
        return self.name.lower()

    @classmethod
    def from_source(cls, source: str) -> FunctionSignature:
        """Build a descriptor from JavaScript function source text.

        The name is the identifier after ``function``, the parameters sit
        between the first ``(`` and ``)``, and the body is the text strictly
        between the first ``{`` after the parameter list and the last ``}``.

        Args:
            source: JavaScript ``function name(a, b) { ... }`` text

        Returns:
            FunctionSignature for the source

        Raises:
            AnonymousFunctionNotSupported: If the function has no name
            PgComputeError: If the text is not a function definition
        """
        open_paren = source.find("(")
        close_paren = source.find(")", open_paren + 1)
        if open_paren < 0 or close_paren < 0:
            raise PgComputeError(
                "Not a function definition: missing parameter list",
                code="INVALID_FUNCTION_SOURCE",
                details={"source": source[:80]},
            )

        head = source[:open_paren].split()
        if "function" not in head:
            # Arrow functions and bare expressions have no declared name
            raise AnonymousFunctionNotSupported(source[:80])
        name_parts = head[head.index("function") + 1:]
        name = name_parts[0].lstrip("*") if name_parts else ""
        if not name:
            raise AnonymousFunctionNotSupported(source[:80])

        params = []
        for raw in source[open_paren + 1:close_paren].split(","):
            param = raw.split("=", 1)[0].strip()
            if param:
                params.append(param)

        open_brace = source.find("{", close_paren)
        close_brace = source.rfind("}")
        if open_brace < 0 or close_brace < open_brace:
            raise PgComputeError(
                f"Function '{name}' has no body",
                code="INVALID_FUNCTION_SOURCE",
                details={"function": name},
            )

        return cls(name=name, params=tuple(params), body=source[open_brace + 1:close_brace])

    @classmethod
    def from_callable(
        cls,
        func: Callable[..., Any],
        body: str,
        name: Optional[str] = None,
    ) -> FunctionSignature:
        """Build a descriptor from a Python stub and a plv8 body.

        The stub is never called; only its name and positional parameters
        are read.
        """
        func_name = name if name is not None else getattr(func, "__name__", "")
        if not func_name or func_name == "<lambda>":
            raise AnonymousFunctionNotSupported(repr(func))

        params = tuple(
            p.name
            for p in inspect.signature(func).parameters.values()
            if p.kind in _POSITIONAL_KINDS
        )
        return cls(name=func_name, params=params, body=body)


def plv8_function(
    body: str,
    name: Optional[str] = None,
) -> Callable[[Callable[..., Any]], FunctionSignature]:
    """Decorator turning a Python stub into a FunctionSignature.

    Example:
        >>> @plv8_function("return (a + b) * c;")
        ... def weighted_sum(a, b, c): ...
        >>> weighted_sum.params
        ('a', 'b', 'c')
    """

    def decorator(func: Callable[..., Any]) -> FunctionSignature:
        return FunctionSignature.from_callable(func, body, name=name)

    return decorator


def extract(func: Union[FunctionSignature, str]) -> FunctionSignature:
    """Derive the signature of a function value.

    Args:
        func: A FunctionSignature or JavaScript function source text

    Returns:
        FunctionSignature

    Raises:
        AnonymousFunctionNotSupported: If the function has no name
        TypeError: If func is neither a descriptor nor source text
    """
    if isinstance(func, FunctionSignature):
        return func
    if isinstance(func, str):
        return FunctionSignature.from_source(func)
    raise TypeError(
        f"Expected FunctionSignature or function source, got {type(func).__name__}"
    )
