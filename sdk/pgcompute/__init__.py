"""
pg_compute - run database functions defined in application code.

Server-side logic is written as plv8 (JavaScript) function bodies next to
the code that uses it. pg_compute deploys each function as a PostgreSQL
routine, keeps it in sync with the local definition, and invokes it by
name with typed arguments:
- PgCompute: The invocation engine
- DeploymentMode: AUTO, MANUAL or DEV deployment
- FunctionSignature / plv8_function: Function descriptors

Example:
    >>> import asyncpg
    >>> from pgcompute import PgCompute, plv8_function
    >>>
    >>> @plv8_function("return a + b;")
    ... def sum(a, b): ...
    >>>
    >>> pool = await asyncpg.create_pool(dsn)
    >>> compute = PgCompute()
    >>> await compute.init(pool)
    >>> await compute.run(pool, sum, 1, 2)
    3

Invariants:
    - A function is identified by (name, argument signature)
    - A changed body is redeployed on the first run after init() (AUTO)
    - MANUAL mode never creates or replaces routines

Version: 1.0.0
"""

__version__ = "1.0.0"

from .compute import PgCompute
from .config import ComputeConfig, DatabaseConfig, DeploymentConfig, LoggingConfig
from .connection import (
    ConnectionSource,
    PoolConnectionSource,
    SingleConnectionSource,
    create_pool,
)
from .deployment import Deployment, DeploymentMode, DeploymentRecord
from .errors import (
    AnonymousFunctionNotSupported,
    ArgumentCountMismatch,
    DeploymentFailed,
    EngineNotInitialized,
    InitializationFailed,
    InvocationFailed,
    ManualDeploymentMismatch,
    ManualDeploymentMissing,
    PgComputeError,
    UnsupportedArgumentType,
)
from .fingerprint import fingerprint
from .function import FunctionSignature, plv8_function
from .types import BackingType, TypeMapper

__all__ = [
    # Version
    "__version__",
    # Engine
    "PgCompute",
    "Deployment",
    "DeploymentMode",
    "DeploymentRecord",
    # Functions
    "FunctionSignature",
    "plv8_function",
    "fingerprint",
    # Types
    "BackingType",
    "TypeMapper",
    # Connections
    "ConnectionSource",
    "SingleConnectionSource",
    "PoolConnectionSource",
    "create_pool",
    # Config
    "ComputeConfig",
    "DatabaseConfig",
    "DeploymentConfig",
    "LoggingConfig",
    # Errors
    "PgComputeError",
    "EngineNotInitialized",
    "AnonymousFunctionNotSupported",
    "ArgumentCountMismatch",
    "UnsupportedArgumentType",
    "InitializationFailed",
    "DeploymentFailed",
    "InvocationFailed",
    "ManualDeploymentMissing",
    "ManualDeploymentMismatch",
]
