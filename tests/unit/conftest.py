"""
Shared fixtures for unit tests.

Routine bodies are executed by a small table of Python equivalents,
standing in for plv8.
"""

import pytest

from pgcompute import FunctionSignature
from pgcompute.memory import InMemoryDataStore, InMemoryPool

SUM = FunctionSignature("sum", ("a", "b"), " return a + b; ")
SUM_V2 = FunctionSignature("sum", ("a", "b"), " return (a + b) * 10; ")
TEST_SUM = FunctionSignature("plv8TestSum", (), "\n    let a = 2;\n    let b = 3;\n    return a + b;\n")
GREET = FunctionSignature("greet", ("str",), " return 'Hello ' + str; ")

BODIES = {
    "return a + b;": lambda a, b: a + b,
    "return (a + b) * 10;": lambda a, b: (a + b) * 10,
    "let a = 2;\n    let b = 3;\n    return a + b;": lambda: 5,
    "return 'Hello ' + str;": lambda str: "Hello " + str,
    "let b = a + 5; return b;": lambda a: a + 5,
    "return {total: a + b, ok: true};": lambda a, b: {"total": a + b, "ok": True},
}


def run_body(name, body, kwargs):
    """Execute a routine body through its Python equivalent."""
    return BODIES[body.strip()](**kwargs)


@pytest.fixture
def store():
    """Fresh in-memory data store."""
    return InMemoryDataStore(runtime=run_body)


@pytest.fixture
def pool(store):
    """Pool over the store."""
    return InMemoryPool(store)
