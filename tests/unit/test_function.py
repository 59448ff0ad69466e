"""
Unit tests for function descriptors.

Tests cover:
- FunctionSignature construction
- Parsing JavaScript function source
- The plv8_function decorator
"""

import pytest

from pgcompute import AnonymousFunctionNotSupported, FunctionSignature, PgComputeError, plv8_function
from pgcompute.function import extract


class TestFunctionSignature:
    """Tests for FunctionSignature."""

    def test_basic_properties(self):
        """Arity and result column derive from the declaration."""
        sig = FunctionSignature("plv8TestSum", ["a", "b"], "return a + b;")

        assert sig.params == ("a", "b")
        assert sig.arity == 2
        assert sig.result_column == "plv8testsum"

    def test_empty_name_rejected(self):
        """A descriptor needs a name."""
        with pytest.raises(AnonymousFunctionNotSupported):
            FunctionSignature("", (), "return 1;")

    def test_immutable(self):
        """Descriptors are frozen."""
        sig = FunctionSignature("f", (), "return 1;")

        with pytest.raises(AttributeError):
            sig.name = "g"


class TestFromSource:
    """Tests for FunctionSignature.from_source."""

    def test_named_function(self):
        """Name, parameters and body are read from the source."""
        sig = FunctionSignature.from_source("function sum(a, b) { return a + b; }")

        assert sig.name == "sum"
        assert sig.params == ("a", "b")
        assert sig.body == " return a + b; "

    def test_body_spans_to_last_brace(self):
        """Nested braces stay in the body."""
        source = "function pick(a) {\n  if (a) { return 1; }\n  return {v: a};\n}"

        sig = FunctionSignature.from_source(source)

        assert sig.body == "\n  if (a) { return 1; }\n  return {v: a};\n"

    def test_zero_params(self):
        """A function without parameters has arity zero."""
        sig = FunctionSignature.from_source("function now() { return Date.now(); }")

        assert sig.params == ()
        assert sig.arity == 0

    def test_default_values_stripped(self):
        """Parameter defaults are not part of the parameter name."""
        sig = FunctionSignature.from_source("function f(a, b = 2) { return a + b; }")

        assert sig.params == ("a", "b")

    def test_async_prefix(self):
        """Modifiers before ``function`` are ignored."""
        sig = FunctionSignature.from_source("async function load(id) { return id; }")

        assert sig.name == "load"

    @pytest.mark.parametrize(
        "source",
        [
            "function (a) { return a; }",
            "(a, b) => { return a + b; }",
            "function(a) { return a; }",
        ],
    )
    def test_anonymous(self, source):
        """Anonymous and arrow functions are rejected."""
        with pytest.raises(AnonymousFunctionNotSupported):
            FunctionSignature.from_source(source)

    def test_not_a_function(self):
        """Text without a parameter list is rejected."""
        with pytest.raises(PgComputeError) as exc_info:
            FunctionSignature.from_source("return 1;")

        assert exc_info.value.code == "INVALID_FUNCTION_SOURCE"

    def test_missing_body(self):
        """A declaration without a body is rejected."""
        with pytest.raises(PgComputeError) as exc_info:
            FunctionSignature.from_source("function f(a);")

        assert exc_info.value.code == "INVALID_FUNCTION_SOURCE"


class TestDecorator:
    """Tests for plv8_function and extract."""

    def test_decorator_reads_stub(self):
        """The stub's name and positional parameters are used."""

        @plv8_function("return (a + b) * c;")
        def weighted_sum(a, b, c):
            ...

        assert isinstance(weighted_sum, FunctionSignature)
        assert weighted_sum.name == "weighted_sum"
        assert weighted_sum.params == ("a", "b", "c")
        assert weighted_sum.body == "return (a + b) * c;"

    def test_decorator_name_override(self):
        """An explicit name replaces the stub name."""

        @plv8_function("return 1;", name="plv8One")
        def one():
            ...

        assert one.name == "plv8One"
        assert one.result_column == "plv8one"

    def test_keyword_only_params_ignored(self):
        """Only positional parameters become routine parameters."""

        @plv8_function("return a;")
        def f(a, *, debug=False):
            ...

        assert f.params == ("a",)

    def test_lambda_rejected(self):
        """Lambdas have no usable name."""
        with pytest.raises(AnonymousFunctionNotSupported):
            plv8_function("return a;")(lambda a: None)

    def test_extract(self):
        """extract() accepts descriptors and source text only."""
        sig = FunctionSignature("f", (), "return 1;")

        assert extract(sig) is sig
        assert extract("function g(x) { return x; }").name == "g"
        with pytest.raises(TypeError):
            extract(42)
