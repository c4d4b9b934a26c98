"""Observability for ec2-cli: loguru configuration."""

from .logging import (
    LogConfig,
    LogLevel,
    default_log_file,
    logging_session,
    setup_logging,
    teardown_logging,
    verbosity_level,
)

__all__ = [
    "LogConfig",
    "LogLevel",
    "default_log_file",
    "logging_session",
    "setup_logging",
    "teardown_logging",
    "verbosity_level",
]
