"""Loguru sink setup for the library and the CLI."""

import sys
from pathlib import Path
from typing import Any

from loguru import logger

from .config import LOG_FILE


def _add_console_sink(level: str) -> str:
    logger.add(
        sys.stderr,
        level=level,
        format="<level>{level:<8}</level> | <cyan>{extra[agent]}</cyan> | <level>{message}</level>",
    )
    return f"console (stderr, {level})"


def _add_file_sink(
    level: str,
    path: str | Path = LOG_FILE,
    rotation: str = "10 MB",
    retention: int = 3,
) -> str:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        str(path),
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {extra[agent]} | {name}:{function}:{line} - {message}",
        rotation=rotation,
        retention=retention,
    )
    return f"file ({path}, {level})"


_SINK_TYPES = {
    "console": _add_console_sink,
    "file": _add_file_sink,
}

_DEFAULT_SINKS: list[dict[str, Any]] = [
    {"type": "console", "level": "WARNING"},
    {"type": "file"},
]


def setup_logging(
    level: str = "INFO",
    sinks: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Configure logging sinks. Returns a description of each registered sink."""
    logger.remove()
    logger.configure(extra={"agent": "-"})

    if sinks is None:
        sinks = _DEFAULT_SINKS

    descriptions: list[str] = []
    for config in sinks:
        sink_type = config.get("type", "")
        add_sink = _SINK_TYPES.get(sink_type)
        if add_sink is None:
            logger.warning(f"Unknown log sink type: {sink_type!r}")
            continue

        kwargs = {k: v for k, v in config.items() if k not in ("type", "level")}
        descriptions.append(add_sink(config.get("level", level), **kwargs))

    return descriptions
