"""Logging configuration for ec2-cli.

Library logging is disabled until configured, so importing ec2cli never
writes to the caller's stderr. The console sink is human oriented (one
line per event, the emitting component in its own column); the optional
file sink writes JSON lines for later inspection of a failed ``up``.

Example:
    with logging_session(LogConfig.from_env(verbosity=1)):
        provision(profile, "alpha")
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from loguru import logger

from ec2cli.config import state_dir

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

LOG_LEVEL_ENV = "EC2_CLI_LOG"
LOG_FILE_ENV = "EC2_CLI_LOG_FILE"
DEFAULT_LOG_FILE_NAME = "ec2-cli.log"

_VERBOSITY_LEVELS: tuple[LogLevel, ...] = ("WARNING", "INFO", "DEBUG", "TRACE")

# Resource identifiers shown after the message on the console.
_RESOURCE_KEYS = ("name", "instance_id", "region", "role", "profile")

CONSOLE_FORMAT = (
    "<dim>{time:HH:mm:ss}</dim> "
    "<level>{level: <7}</level> "
    "<cyan>{extra[component]: <14}</cyan> "
    "<level>{message}</level>"
    "<dim>{extra[_resources]}</dim>"
)


def _patch(record: Any) -> None:
    extra = record["extra"]
    extra.setdefault("component", "ec2cli")
    found = [f"{k}={extra[k]}" for k in _RESOURCE_KEYS if k in extra]
    extra["_resources"] = f"  ({', '.join(found)})" if found else ""


def verbosity_level(verbosity: int) -> LogLevel:
    """Map a ``-v`` count to a console level: 0 -> WARNING ... 3+ -> TRACE."""
    return _VERBOSITY_LEVELS[max(0, min(verbosity, len(_VERBOSITY_LEVELS) - 1))]


def default_log_file() -> Path:
    return state_dir() / DEFAULT_LOG_FILE_NAME


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum console level.
        file: JSON-lines log file. None disables file logging.
        console: Whether to log to stderr.
        rotation: File rotation policy (e.g., "10 MB").
        retention: Number of rotated files to keep.
    """

    level: LogLevel = "WARNING"
    file: Path | None = None
    console: bool = True
    rotation: str = "10 MB"
    retention: int = 5

    @classmethod
    def from_env(cls, verbosity: int = 0) -> LogConfig:
        """Build a config from a ``-v`` count, overridden by the environment.

        ``EC2_CLI_LOG`` sets the console level by name. ``EC2_CLI_LOG_FILE``
        enables the file sink: a path, or ``1`` for the default location
        under the XDG state directory.
        """
        level = os.environ.get(LOG_LEVEL_ENV, "").upper() or verbosity_level(verbosity)
        if level not in _VERBOSITY_LEVELS + ("ERROR",):
            level = verbosity_level(verbosity)

        raw_file = os.environ.get(LOG_FILE_ENV, "")
        file: Path | None = None
        if raw_file == "1":
            file = default_log_file()
        elif raw_file:
            file = Path(raw_file)
        return cls(level=level, file=file)


def setup_logging(config: LogConfig) -> list[int]:
    """Install sinks for ``config`` and return their handler ids."""
    logger.remove()
    logger.configure(patcher=_patch)
    logger.enable("ec2cli")

    handler_ids: list[int] = []
    if config.console:
        handler_ids.append(
            logger.add(
                sys.stderr,
                level=config.level,
                format=CONSOLE_FORMAT,
                colorize=True,
                filter="ec2cli",
            )
        )

    if config.file is not None:
        config.file.parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(
            logger.add(
                config.file,
                level="DEBUG",
                serialize=True,
                filter="ec2cli",
                rotation=config.rotation,
                retention=config.retention,
                diagnose=False,
            )
        )
    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("ec2cli")


@contextmanager
def logging_session(config: LogConfig) -> Iterator[list[int]]:
    """Enable logging for the duration of the block."""
    handler_ids = setup_logging(config)
    try:
        yield handler_ids
    finally:
        teardown_logging(handler_ids)
