"""Loguru sinks for sortie.

Every sortie module logs through a bound loguru logger, but the package is
disabled until ``setup_logging`` installs sinks.

Example:
    handlers = setup_logging(LogConfig(level="DEBUG", file="run/sortie.log"))
    try:
        ...
    finally:
        teardown_logging(handlers)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from loguru import logger

logger.disable("sortie")

type LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"]

# Markup is stripped by loguru for sinks that are not colorized.
FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "{name}:{line}<dim>{extra[_ctx]}</dim> - <level>{message}</level>"
)


def _format_context(record: Any) -> None:
    """Render bound context (component, provider, flight, cluster, machine) as ``[k=v ...]``."""
    extra = record["extra"]
    parts = [f"{k}={v}" for k, v in extra.items() if not k.startswith("_")]
    extra["_ctx"] = f" [{' '.join(parts)}]" if parts else ""


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where sortie logs go.

    The file sink always records DEBUG; ``level`` applies to the console.
    """

    level: LogLevel = "INFO"
    file: str | None = ".sortie/sortie.log"
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Replace loguru's sinks with sortie's and return the new handler ids."""
    logger.remove()
    logger.configure(patcher=_format_context)
    logger.enable("sortie")

    handlers: list[int] = []
    if config.console:
        handlers.append(
            logger.add(sys.stderr, level=config.level, format=FORMAT, colorize=True, filter="sortie")
        )
    if config.file:
        path = Path(config.file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logger.add(
                path,
                level="DEBUG",
                format=FORMAT,
                colorize=False,
                rotation=config.rotation,
                retention=config.retention,
                diagnose=False,
                filter="sortie",
            )
        )
    return handlers


def teardown_logging(handlers: list[int]) -> None:
    for handler in handlers:
        logger.remove(handler)
    logger.disable("sortie")


__all__ = ["LogConfig", "LogLevel", "setup_logging", "teardown_logging"]
