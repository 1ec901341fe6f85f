import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_LOG_PATH = ".prose_prime/prose_prime.log"

# Third-party libraries that log through the standard library.
_STDLIB_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")

_CONSOLE_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"


@dataclass(frozen=True)
class SinkSpec:
    """One entry of the ``LogConsumers`` config list."""

    kind: str
    level: str
    path: str = DEFAULT_LOG_PATH
    rotation: str = "10 MB"
    retention: int = 3
    serialize: bool = False

    @classmethod
    def from_config(cls, config: dict[str, Any], default_level: str) -> "SinkSpec":
        return cls(
            kind=str(config.get("type", "")).strip().lower(),
            level=str(config.get("level", default_level)).upper(),
            path=str(config.get("path", DEFAULT_LOG_PATH)),
            rotation=str(config.get("rotation", "10 MB")),
            retention=int(config.get("retention", 3)),
            serialize=bool(config.get("serialize", False)),
        )

    def describe(self) -> str:
        if self.kind == "console":
            return f"console (stderr, {self.level})"
        fmt = "jsonl" if self.serialize else "text"
        return f"file ({self.path}, {fmt}, {self.level})"


_DEFAULT_SINKS = [
    {"type": "console"},
    {"type": "file"},
]


class _InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def _add_sink(spec: SinkSpec) -> None:
    if spec.kind == "console":
        logger.add(sys.stderr, level=spec.level, format=_CONSOLE_FORMAT)
        return
    Path(spec.path).parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        spec.path,
        level=spec.level,
        format=_FILE_FORMAT,
        rotation=spec.rotation,
        retention=spec.retention,
        serialize=spec.serialize,
    )


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace loguru's sinks with the configured ones and route SDK loggers into them.

    Returns a description of each sink that was added.
    """
    logger.remove()

    descriptions: list[str] = []
    for config in consumers if consumers is not None else _DEFAULT_SINKS:
        spec = SinkSpec.from_config(config, level)
        if spec.kind not in ("console", "file"):
            logger.warning(f"Unknown log consumer type: {spec.kind!r}")
            continue
        _add_sink(spec)
        descriptions.append(spec.describe())

    handler = _InterceptHandler()
    for name in _STDLIB_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [handler]
        std_logger.propagate = False
        std_logger.setLevel(logging.WARNING)

    return descriptions
