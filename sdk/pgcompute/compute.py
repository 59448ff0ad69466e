"""
PgCompute: run plv8 functions defined in application code.

This module provides the invocation engine:
- Derives the function's signature and argument types
- Deploys or redeploys the routine through the Deployment ledger
- Issues ``select <schema>.<name>(<literals>)`` and unwraps the result

Example:
    >>> compute = PgCompute()
    >>> await compute.init(pool)
    >>> @plv8_function("return a + b;")
    ... def sum(a, b): ...
    >>> await compute.run(pool, sum, 1, 2)
    3

Invariants:
    - Argument count is checked before any connection is acquired
    - One connection serves both the deploy and the invocation of a run
    - A pooled connection is released exactly once on every exit path
    - Database errors from the invocation are surfaced untranslated
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, List, Mapping, Optional, Union

from .config import DeploymentConfig
from .connection import DataStoreConnection, as_connection_source, checkout
from .deployment import Deployment, DeploymentMode, DeploymentRecord
from .errors import (
    ArgumentCountMismatch,
    EngineNotInitialized,
    InvocationFailed,
    ManualDeploymentMissing,
)
from .function import FunctionSignature, extract
from .types import TypeMapper

logger = logging.getLogger(__name__)

# SQLSTATE undefined_function
UNDEFINED_FUNCTION = "42883"


class PgCompute:
    """Engine that deploys and invokes plv8 functions.

    Attributes:
        deployment_mode: How routines are deployed (fixed at construction)
        schema: Schema holding the routines and the pg_compute table
        type_mapper: Argument classifier/renderer owned by this engine
    """

    def __init__(
        self,
        deployment_mode: DeploymentMode = DeploymentMode.AUTO,
        schema: str = "public",
        type_mapper: Optional[TypeMapper] = None,
    ) -> None:
        """Initialize the engine.

        Args:
            deployment_mode: Deployment mode
            schema: Target schema name
            type_mapper: Custom type mapper (a fresh default one otherwise)
        """
        self.deployment_mode = deployment_mode
        self.schema = schema
        self.type_mapper = type_mapper or TypeMapper()
        self._deployment: Optional[Deployment] = None

    @classmethod
    def from_config(cls, config: DeploymentConfig) -> PgCompute:
        """Create an engine from deployment configuration."""
        return cls(deployment_mode=config.mode, schema=config.schema)

    async def init(self, client: Any) -> None:
        """Prepare the schema and load the deployment ledger.

        Calling init() again starts a new session: functions are
        re-checked against the database on their next run.

        Args:
            client: asyncpg connection, pool, or ConnectionSource

        Raises:
            ValueError: If client is None
            InitializationFailed: If the schema or metadata table cannot be
                prepared
        """
        source = as_connection_source(client)
        deployment = Deployment(self.deployment_mode, self.schema)

        async with checkout(source) as connection:
            await deployment.initialize(connection)

        self._deployment = deployment
        logger.info(
            "PgCompute initialized",
            extra={"schema": self.schema, "mode": self.deployment_mode.value},
        )

    async def run(
        self,
        client: Any,
        func: Union[FunctionSignature, str],
        *args: Any,
    ) -> Any:
        """Execute a plv8 function in the database.

        Args:
            client: asyncpg connection, pool, or ConnectionSource
            func: Function descriptor or JavaScript function source
            *args: Argument values, one per declared parameter

        Returns:
            The function's JSON result decoded to Python values

        Raises:
            EngineNotInitialized: If init() was not called
            AnonymousFunctionNotSupported: If the function has no name
            ArgumentCountMismatch: If len(args) differs from the parameter count
            UnsupportedArgumentType: If an argument has no backing type
            DeploymentFailed: If deploying the routine fails
            ManualDeploymentMismatch: MANUAL mode, recorded deployment differs
            ManualDeploymentMissing: MANUAL mode, routine does not exist
            InvocationFailed: If the database rejects the invocation
        """
        deployment = self._deployment
        if deployment is None:
            raise EngineNotInitialized()

        signature = extract(func)
        if len(args) != signature.arity:
            raise ArgumentCountMismatch(signature.name, signature.arity, len(args))

        bindings = [self.type_mapper.bind(p, v) for p, v in zip(signature.params, args)]
        args_signature = ", ".join(b.declaration for b in bindings)
        stmt = deployment.statements.invoke(signature.name, [b.literal for b in bindings])

        source = as_connection_source(client)
        async with checkout(source) as connection:
            await deployment.ensure_deployed(
                connection, signature.name, args_signature, signature.body
            )
            rows = await self._invoke(connection, signature, stmt)

        return self._unwrap(rows, signature)

    def deployed_functions(self) -> List[DeploymentRecord]:
        """Snapshot of the deployment ledger (empty before init())."""
        if self._deployment is None:
            return []
        return self._deployment.records()

    async def _invoke(
        self,
        connection: DataStoreConnection,
        signature: FunctionSignature,
        stmt: str,
    ) -> List[Mapping[str, Any]]:
        logger.debug(f"Executing: {stmt}")
        try:
            return await connection.fetch(stmt)
        except asyncio.TimeoutError:
            raise
        except Exception as e:
            if (
                self.deployment_mode is DeploymentMode.MANUAL
                and getattr(e, "sqlstate", None) == UNDEFINED_FUNCTION
            ):
                raise ManualDeploymentMissing(signature.name, stmt, e) from e
            raise InvocationFailed(signature.name, stmt, e) from e

    @staticmethod
    def _unwrap(rows: List[Mapping[str, Any]], signature: FunctionSignature) -> Any:
        # A routine that returns no row is a bug in the routine itself
        value = rows[0][signature.result_column]
        if isinstance(value, str):
            # asyncpg hands json columns back as text
            return json.loads(value)
        return value
