"""Logging configuration for kubepool.

Structured logging via loguru. The library stays silent until a caller
(normally the CLI) installs sinks with :func:`setup_logging`.

Modules bind their context once and log with brace-style fields::

    log = logger.bind(component="provisioner", provider="contabo")
    log.bind(cluster_id=cluster_id).info("Claimed instance {iid}", iid=iid)

which renders as::

    14:02:11.348 | INFO     | provisioner c1/1001 - Claimed instance 1001
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from loguru import logger

logger.disable("kubepool")

type LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "TRACE"]

_LOCATION_KEYS = ("cluster_id", "node_id")
_DETAIL_KEYS = ("instance_id", "host", "provider", "version")


def _scope(record: Any) -> str:
    """Render ``component cluster/node [key=value ...]`` from bound extras."""
    extra = record["extra"]
    parts = [str(extra.get("component", record["name"]))]
    location = "/".join(str(extra[k]) for k in _LOCATION_KEYS if k in extra)
    if location:
        parts.append(location)
    details = " ".join(f"{k}={extra[k]}" for k in _DETAIL_KEYS if k in extra)
    if details:
        parts.append(f"[{details}]")
    return " ".join(parts)


CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[_scope]}</cyan> - "
    "<level>{message}</level>"
)

FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[_scope]} | "
    "{name}:{function}:{line} - {message}"
)


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Where kubepool logs go.

    Attributes:
        level: Minimum console level. The file sink always records DEBUG.
        file: Log file path; empty disables the file sink.
        console: Log to stderr.
        rotation: loguru rotation policy for the file sink.
        retention: Rotated files kept.
    """

    level: LogLevel = "INFO"
    file: str = ".kubepool/kubepool.log"
    console: bool = True
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Install kubepool sinks; returns handler ids for :func:`teardown_logging`."""
    logger.remove()
    logger.configure(patcher=lambda r: r["extra"].update(_scope=_scope(r)))
    logger.enable("kubepool")

    sinks: list[int] = []
    if config.console:
        sinks.append(
            logger.add(
                sys.stderr,
                level=config.level,
                format=CONSOLE_FORMAT,
                colorize=True,
                filter="kubepool",
            )
        )
    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        sinks.append(
            logger.add(
                config.file,
                level="DEBUG",
                format=FILE_FORMAT,
                filter="kubepool",
                rotation=config.rotation,
                retention=config.retention,
                compression="zip",
                diagnose=False,
            )
        )
    return sinks


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable("kubepool")
