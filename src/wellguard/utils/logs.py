"""Logging setup for the CLI and per-run backup log files."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from rich.logging import RichHandler

RUN_LOG_FORMAT = "[%(asctime)s] %(message)s"
RUN_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(verbose: bool = False) -> None:
    """Route ``wellguard`` loggers to the terminal through rich."""
    root = logging.getLogger("wellguard")
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        handler = RichHandler(show_path=False, markup=False, rich_tracebacks=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(handler)


@contextmanager
def attach_run_log(
    path: Path,
    fmt: str = RUN_LOG_FORMAT,
    logger_name: str = "wellguard",
) -> Iterator[Path]:
    """Tee every record of ``logger_name`` into ``path`` for the duration."""
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(fmt, datefmt=RUN_LOG_DATEFMT))
    handler.setLevel(logging.DEBUG)
    target = logging.getLogger(logger_name)
    if target.level == logging.NOTSET or target.level > logging.INFO:
        target.setLevel(logging.INFO)
    target.addHandler(handler)
    try:
        yield path
    finally:
        target.removeHandler(handler)
        handler.close()
