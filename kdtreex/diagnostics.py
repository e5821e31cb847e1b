from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator

import psutil

from kdtreex import config as kx_config


@dataclass
class OperationLog:
    """Metadata collected while an operation runs, emitted on exit."""

    operation: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def add_metadata(self, **values: Any) -> None:
        self.metadata.update(values)


def _format_value(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.3f}"
    return str(value)


@contextmanager
def log_operation(
    logger: logging.Logger,
    operation: str,
    *,
    level: int = logging.INFO,
) -> Iterator[OperationLog]:
    """Time an operation and log a single ``op=<name>`` record when it finishes.

    CPU and RSS deltas are sampled through ``psutil`` when diagnostics are
    enabled in the runtime configuration; otherwise they read ``NA``. Nothing
    is sampled when ``logger`` would drop the record anyway.
    """

    op_log = OperationLog(operation=operation)
    if not logger.isEnabledFor(level):
        yield op_log
        return

    diagnostics = kx_config.runtime_config().enable_diagnostics
    process = psutil.Process() if diagnostics else None
    cpu_before = process.cpu_times().user if process is not None else None
    rss_before = process.memory_info().rss if process is not None else None
    start = time.perf_counter()
    try:
        yield op_log
    finally:
        wall_ms = (time.perf_counter() - start) * 1e3
        if process is not None:
            cpu_user_ms = f"{(process.cpu_times().user - cpu_before) * 1e3:.3f}"
            rss_delta = str(process.memory_info().rss - rss_before)
        else:
            cpu_user_ms = "NA"
            rss_delta = "NA"
        extras = " ".join(
            f"{key}={_format_value(value)}" for key, value in op_log.metadata.items()
        )
        message = (
            f"op={operation} wall_ms={wall_ms:.3f} "
            f"cpu_user_ms={cpu_user_ms} rss_delta={rss_delta}"
        )
        if extras:
            message = f"{message} {extras}"
        logger.log(level, message)


__all__ = ["OperationLog", "log_operation"]
