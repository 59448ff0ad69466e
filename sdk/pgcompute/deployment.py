"""
Deployment ledger for pg_compute.

The ledger decides whether the plv8 routine behind a function is absent,
stale or current, and brings the database in line with the local
definition according to the deployment mode:
- DeploymentMode: AUTO, MANUAL or DEV
- DeploymentRecord: One row of the pg_compute metadata table
- Deployment: The in-memory index plus the deploy/redeploy logic

The in-memory index is a write-through cache of the metadata table,
loaded fully by initialize() and updated after every committed deploy.
It is grouped by function name first: a record stored under a name with
a different argument signature means "redeploy", not "add an overload".

Invariants:
    - Routine DDL, metadata delete and metadata insert commit atomically
    - The index changes only after the transaction commits
    - A function verified once is not re-hashed again in this session
      (a change made by another process is seen only after a restart)
    - MANUAL never issues DDL and never writes metadata

How to change safely:
    - Keep the fingerprint algorithm stable; stored rows depend on it
    - Any new mode must define its behavior for every branch in
      ensure_deployed()
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional

from .connection import DataStoreConnection
from .errors import DeploymentFailed, InitializationFailed, ManualDeploymentMismatch
from .fingerprint import fingerprint
from .sql import Statements

logger = logging.getLogger(__name__)


class DeploymentMode(Enum):
    """Deployment mode for database functions."""

    # Deploy if absent, redeploy when the implementation changes
    AUTO = "auto"
    # Functions are created by hand on the database side; never deploy.
    # A recorded pg_compute row is still compared, so a stale row fails
    # with ManualDeploymentMismatch until it is updated or removed
    MANUAL = "manual"
    # Redeploy before every call, for iterative development
    DEV = "dev"

    @classmethod
    def from_str(cls, value: str) -> DeploymentMode:
        """Convert a case-insensitive name to a DeploymentMode.

        Raises:
            ValueError: If value is not a valid mode
        """
        for mode in cls:
            if mode.value == value.lower():
                return mode
        valid = [m.value for m in cls]
        raise ValueError(f"Invalid deployment mode '{value}'. Valid modes: {valid}")


@dataclass
class DeploymentRecord:
    """Last known deployment of one (function, argument signature) pair.

    Attributes:
        function_name: Function name as declared
        args_signature: Comma-joined ``"<param> <type>"`` list, "" if zero-arg
        body_fingerprint: MD5 hex digest of the deployed body
        verified: Checked against the local definition in this session
            (never persisted)
    """

    function_name: str
    args_signature: str
    body_fingerprint: str
    verified: bool = False


class Deployment:
    """Deployment ledger for one target schema.

    Thread safety:
        Deploys of the same function name are serialized with a per-name
        asyncio lock. Lookups are lock-free. Two engines (or processes)
        deploying the same new function concurrently can still collide on
        the metadata primary key; that surfaces as DeploymentFailed.

    Example:
        >>> deployment = Deployment(DeploymentMode.AUTO, "public")
        >>> await deployment.initialize(conn)
        >>> await deployment.ensure_deployed(conn, "sum", "a int4, b int4", " return a + b; ")
    """

    def __init__(
        self,
        mode: DeploymentMode = DeploymentMode.AUTO,
        schema: str = "public",
    ) -> None:
        """Initialize an empty ledger.

        Args:
            mode: Deployment mode (immutable for the ledger's lifetime)
            schema: Target schema for routines and the metadata table
        """
        self._mode = mode
        self._schema = schema
        self._statements = Statements(schema)
        self._records: Dict[str, Dict[str, DeploymentRecord]] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._initialized = False

    @property
    def mode(self) -> DeploymentMode:
        return self._mode

    @property
    def schema(self) -> str:
        return self._schema

    @property
    def statements(self) -> Statements:
        return self._statements

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, connection: DataStoreConnection) -> None:
        """Create the schema and metadata table, then load the index.

        Re-initializing starts a new session: the index is reloaded and
        every verified flag is cleared.

        Raises:
            InitializationFailed: If DDL or the metadata load fails
        """
        logger.debug(
            f"Initializing '{self._mode.value}' deployment mode for schema '{self._schema}'"
        )
        try:
            await connection.execute(self._statements.create_schema())
            await connection.execute(self._statements.create_metadata_table())
            await self._load(connection)
        except asyncio.TimeoutError:
            raise
        except Exception as e:
            logger.error(f"Failed to initialize schema '{self._schema}': {e}", exc_info=True)
            raise InitializationFailed(self._schema, e) from e

        self._initialized = True

    async def _load(self, connection: DataStoreConnection) -> None:
        rows = await connection.fetch(self._statements.select_metadata())

        records: Dict[str, Dict[str, DeploymentRecord]] = {}
        for row in rows:
            args = row["args"] or ""
            records.setdefault(row["name"], {})[args] = DeploymentRecord(
                function_name=row["name"],
                args_signature=args,
                body_fingerprint=row["body_hashcode"],
            )
        self._records = records

        logger.debug(f"Loaded {len(rows)} deployment records from {self._statements.metadata_table}")

    def lookup(self, function_name: str, args_signature: str = "") -> Optional[DeploymentRecord]:
        """Find the record a deploy of this function would compare against.

        Returns the record with the exact signature if present, otherwise
        the most recently recorded signature under the same name.
        """
        by_args = self._records.get(function_name)
        if not by_args:
            return None
        exact = by_args.get(args_signature)
        if exact is not None:
            return exact
        return list(by_args.values())[-1]

    def is_verified(self, function_name: str) -> bool:
        """Whether the function was already checked in this session."""
        return any(r.verified for r in self._records.get(function_name, {}).values())

    def records(self) -> List[DeploymentRecord]:
        """Snapshot of all known records."""
        return [replace(r) for by_args in self._records.values() for r in by_args.values()]

    async def ensure_deployed(
        self,
        connection: DataStoreConnection,
        function_name: str,
        args_signature: Optional[str],
        body: str,
    ) -> None:
        """Make sure the routine matches the local definition.

        Args:
            connection: Working connection
            function_name: Function name
            args_signature: Comma-joined ``"<param> <type>"`` list; None or
                "" for zero-arg functions
            body: Function body text

        Raises:
            DeploymentFailed: If DDL or the metadata write fails
            ManualDeploymentMismatch: MANUAL mode and the recorded
                deployment of this function differs from the local one
        """
        args_signature = args_signature or ""

        if self._mode is DeploymentMode.MANUAL:
            self._check_manual(function_name, args_signature, body)
            return

        if self._mode is DeploymentMode.AUTO and self.is_verified(function_name):
            logger.debug(
                f"Skipping function impl check. Function '{function_name}' "
                "has already been verified during this session."
            )
            return

        body_fingerprint = fingerprint(body)

        async with self._locks[function_name]:
            # Another coroutine may have finished the same deploy meanwhile
            if self._mode is DeploymentMode.AUTO and self.is_verified(function_name):
                return

            existing = self.lookup(function_name, args_signature)

            if existing is None:
                await self._deploy(connection, function_name, args_signature, body, body_fingerprint)
                logger.info(
                    f"Function '{function_name}' has been deployed",
                    extra={"function": function_name, "args": args_signature, "schema": self._schema},
                )
            elif (
                self._mode is DeploymentMode.DEV
                or existing.args_signature != args_signature
                or existing.body_fingerprint != body_fingerprint
            ):
                await self._deploy(
                    connection,
                    function_name,
                    args_signature,
                    body,
                    body_fingerprint,
                    replaced=existing,
                )
                logger.info(
                    f"Function '{function_name}' has been redeployed",
                    extra={"function": function_name, "args": args_signature, "schema": self._schema},
                )
            else:
                logger.debug(f"Function '{function_name}' exists")

            # Routines only change on restart, so one check per session is enough
            self._records[function_name][args_signature].verified = True

    def _check_manual(self, function_name: str, args_signature: str, body: str) -> None:
        existing = self.lookup(function_name, args_signature)
        if existing is None:
            logger.debug(
                f"Skipping the validation of '{function_name}' for the 'manual' deployment mode"
            )
            return

        body_fingerprint = fingerprint(body)
        if (
            existing.args_signature != args_signature
            or existing.body_fingerprint != body_fingerprint
        ):
            raise ManualDeploymentMismatch(
                function_name,
                expected_args=args_signature,
                recorded_args=existing.args_signature,
                expected_fingerprint=body_fingerprint,
                recorded_fingerprint=existing.body_fingerprint,
            )

    async def _deploy(
        self,
        connection: DataStoreConnection,
        function_name: str,
        args_signature: str,
        body: str,
        body_fingerprint: str,
        replaced: Optional[DeploymentRecord] = None,
    ) -> None:
        """Create or replace the routine and its metadata row in one transaction."""
        stmt = self._statements.create_function(function_name, args_signature, body)

        try:
            async with connection.transaction():
                await connection.execute(stmt)
                if replaced is not None:
                    await connection.execute(
                        self._statements.delete_metadata(),
                        function_name,
                        replaced.args_signature,
                    )
                await connection.execute(
                    self._statements.insert_metadata(),
                    function_name,
                    args_signature,
                    body_fingerprint,
                )
        except asyncio.TimeoutError:
            raise
        except Exception as e:
            logger.error(
                f"Failed to deploy function '{function_name}({args_signature})': {e}",
                exc_info=True,
            )
            raise DeploymentFailed(function_name, args_signature, e) from e

        by_args = self._records.setdefault(function_name, {})
        if replaced is not None:
            by_args.pop(replaced.args_signature, None)
        by_args[args_signature] = DeploymentRecord(
            function_name=function_name,
            args_signature=args_signature,
            body_fingerprint=body_fingerprint,
        )
