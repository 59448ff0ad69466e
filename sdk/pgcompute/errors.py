"""
Error types for pg_compute.

This module defines all exception types raised by the engine:
- PgComputeError: Base exception
- AnonymousFunctionNotSupported: Function descriptor has no name
- ArgumentCountMismatch: Call arity differs from declared parameters
- UnsupportedArgumentType: Argument value has no backing type
- InitializationFailed: Schema or metadata table could not be prepared
- DeploymentFailed: DDL or metadata write failed
- InvocationFailed: The invocation statement was rejected
- ManualDeploymentMissing: MANUAL mode and the routine does not exist
- ManualDeploymentMismatch: MANUAL mode and the recorded routine differs

Invariants:
    - All errors inherit from PgComputeError
    - Wrapping errors keep the underlying message text verbatim
    - Errors include context (function name, counts, kinds) for debugging
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class PgComputeError(Exception):
    """Base exception for all pg_compute errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "PG_COMPUTE_ERROR"
        self.details = details or {}


class EngineNotInitialized(PgComputeError):
    """run() was called before init()."""

    def __init__(self) -> None:
        super().__init__(
            "PgCompute is not initialized. Call init() before run()",
            code="NOT_INITIALIZED",
        )


class AnonymousFunctionNotSupported(PgComputeError):
    """A function without a name cannot be deployed or looked up."""

    def __init__(self, source: Optional[str] = None) -> None:
        super().__init__(
            "Anonymous functions are not supported. Give the function a name",
            code="ANONYMOUS_FUNCTION",
            details={"source": source},
        )


class ArgumentCountMismatch(PgComputeError):
    """Number of call arguments differs from the declared parameter count."""

    def __init__(self, function_name: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Function arguments mismatch for '{function_name}'. "
            f"Expected {expected}, received {actual}",
            code="ARGUMENT_COUNT_MISMATCH",
            details={
                "function": function_name,
                "expected": expected,
                "actual": actual,
            },
        )
        self.function_name = function_name
        self.expected = expected
        self.actual = actual


class UnsupportedArgumentType(PgComputeError):
    """Argument value cannot be mapped to a backing store type."""

    def __init__(self, observed_kind: str, param_name: Optional[str] = None) -> None:
        msg = f"Unsupported argument type: {observed_kind}"
        if param_name:
            msg += f" (parameter '{param_name}')"
        super().__init__(
            msg,
            code="UNSUPPORTED_ARGUMENT_TYPE",
            details={"observed_kind": observed_kind, "param": param_name},
        )
        self.observed_kind = observed_kind
        self.param_name = param_name


class InitializationFailed(PgComputeError):
    """Schema or metadata table could not be created or loaded."""

    def __init__(self, schema: str, cause: BaseException) -> None:
        super().__init__(
            f"Failed to initialize pg_compute. Reason:\n{cause}",
            code="INITIALIZATION_FAILED",
            details={"schema": schema},
        )
        self.schema = schema
        self.sqlstate = getattr(cause, "sqlstate", None)


class DeploymentFailed(PgComputeError):
    """Creating the routine or writing its metadata row failed.

    The original error is chained as ``__cause__`` and its text is kept
    in the message.
    """

    def __init__(self, function_name: str, args_signature: str, cause: BaseException) -> None:
        super().__init__(
            f"Failed to deploy function '{function_name}({args_signature})'. Reason:\n{cause}",
            code="DEPLOYMENT_FAILED",
            details={"function": function_name, "args": args_signature},
        )
        self.function_name = function_name
        self.args_signature = args_signature
        self.sqlstate = getattr(cause, "sqlstate", None)


class InvocationFailed(PgComputeError):
    """The data store rejected the invocation statement.

    The message is the data store's own error text, untranslated, so
    callers can match on it (e.g. "invalid input syntax for type integer").
    """

    def __init__(
        self,
        function_name: str,
        statement: str,
        cause: BaseException,
        code: str = "INVOCATION_FAILED",
    ) -> None:
        sqlstate = getattr(cause, "sqlstate", None)
        super().__init__(
            str(cause),
            code=code,
            details={
                "function": function_name,
                "statement": statement,
                "sqlstate": sqlstate,
            },
        )
        self.function_name = function_name
        self.statement = statement
        self.sqlstate = sqlstate


class ManualDeploymentMissing(InvocationFailed):
    """MANUAL mode: the routine was never created on the database side."""

    def __init__(self, function_name: str, statement: str, cause: BaseException) -> None:
        super().__init__(
            function_name,
            statement,
            cause,
            code="MANUAL_DEPLOYMENT_MISSING",
        )


class ManualDeploymentMismatch(PgComputeError):
    """MANUAL mode: the recorded routine disagrees with the local definition.

    Never corrected automatically; the operator redeploys by hand.
    """

    def __init__(
        self,
        function_name: str,
        expected_args: str,
        recorded_args: str,
        expected_fingerprint: str,
        recorded_fingerprint: str,
    ) -> None:
        super().__init__(
            f"Function '{function_name}' differs from its manual deployment: "
            f"local ({expected_args}) {expected_fingerprint}, "
            f"recorded ({recorded_args}) {recorded_fingerprint}",
            code="MANUAL_DEPLOYMENT_MISMATCH",
            details={
                "function": function_name,
                "expected_args": expected_args,
                "recorded_args": recorded_args,
                "expected_fingerprint": expected_fingerprint,
                "recorded_fingerprint": recorded_fingerprint,
            },
        )
        self.function_name = function_name
