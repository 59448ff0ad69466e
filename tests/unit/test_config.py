"""
Unit tests for configuration and logging setup.
"""

import logging

import json_log_formatter
import pytest

from pgcompute import ComputeConfig, DatabaseConfig, DeploymentConfig, DeploymentMode, LoggingConfig, PgCompute
from pgcompute.logging_config import setup_logging


class TestConfigFromEnv:
    """Tests for loading configuration from the environment."""

    def test_defaults(self, monkeypatch):
        """Unset variables fall back to defaults."""
        for name in (
            "PGCOMPUTE_DSN",
            "PGCOMPUTE_POOL_MIN",
            "PGCOMPUTE_POOL_MAX",
            "PGCOMPUTE_COMMAND_TIMEOUT",
            "PGCOMPUTE_DEPLOYMENT_MODE",
            "PGCOMPUTE_SCHEMA",
            "LOG_LEVEL",
            "LOG_FORMAT",
        ):
            monkeypatch.delenv(name, raising=False)

        config = ComputeConfig.from_env()

        assert config.database.min_pool_size == 1
        assert config.database.max_pool_size == 10
        assert config.database.command_timeout is None
        assert config.deployment.mode is DeploymentMode.AUTO
        assert config.deployment.schema == "public"
        assert config.logging.log_format == "text"

    def test_overrides(self, monkeypatch):
        """Variables override defaults."""
        monkeypatch.setenv("PGCOMPUTE_DSN", "postgresql://app:secret@db:5432/app")
        monkeypatch.setenv("PGCOMPUTE_POOL_MAX", "4")
        monkeypatch.setenv("PGCOMPUTE_COMMAND_TIMEOUT", "2.5")
        monkeypatch.setenv("PGCOMPUTE_DEPLOYMENT_MODE", "MANUAL")
        monkeypatch.setenv("PGCOMPUTE_SCHEMA", "tracker")
        monkeypatch.setenv("LOG_FORMAT", "json")

        config = ComputeConfig.from_env()

        assert config.database.dsn == "postgresql://app:secret@db:5432/app"
        assert config.database.max_pool_size == 4
        assert config.database.command_timeout == 2.5
        assert config.deployment.mode is DeploymentMode.MANUAL
        assert config.deployment.schema == "tracker"
        assert config.logging.log_format == "json"

    def test_invalid_mode(self, monkeypatch):
        """An unknown deployment mode is rejected."""
        monkeypatch.setenv("PGCOMPUTE_DEPLOYMENT_MODE", "eventually")

        with pytest.raises(ValueError, match="Invalid deployment mode"):
            ComputeConfig.from_env()


class TestValidate:
    """Tests for ComputeConfig.validate."""

    def test_default_is_valid(self):
        ComputeConfig().validate()

    @pytest.mark.parametrize(
        "config",
        [
            ComputeConfig(database=DatabaseConfig(dsn="")),
            ComputeConfig(database=DatabaseConfig(min_pool_size=-1)),
            ComputeConfig(database=DatabaseConfig(min_pool_size=5, max_pool_size=2)),
            ComputeConfig(deployment=DeploymentConfig(schema="")),
            ComputeConfig(logging=LoggingConfig(log_format="xml")),
        ],
    )
    def test_invalid(self, config):
        with pytest.raises(ValueError):
            config.validate()

    def test_redacted_dsn(self):
        """The password never appears in the redacted DSN."""
        config = DatabaseConfig(dsn="postgresql://app:secret@db:5432/app")

        assert config.redacted_dsn == "postgresql://app:***@db:5432/app"
        assert DatabaseConfig(dsn="postgresql://db/app").redacted_dsn == "postgresql://db/app"

    def test_engine_from_config(self):
        """Engines take mode and schema from deployment config."""
        compute = PgCompute.from_config(DeploymentConfig(mode=DeploymentMode.DEV, schema="tracker"))

        assert compute.deployment_mode is DeploymentMode.DEV
        assert compute.schema == "tracker"


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = root.handlers[:], root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        setup_logging(LoggingConfig(log_level="DEBUG", log_format="json"))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_text_format(self):
        setup_logging(LoggingConfig(log_level="warning", log_format="text"))

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("asyncpg").level == logging.WARNING
