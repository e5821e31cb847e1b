from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

_LOGGER = logging.getLogger("kdtreex")

_SUPPORTED_METRICS = {"l1", "l2", "l2_simple", "so2", "so3"}
_DEFAULT_METRIC = "l2"
_DEFAULT_LEAF_MAX_SIZE = 10
_DEFAULT_ARENA_CHUNK_NODES = 1024


def _bool_from_env(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    value = value.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_optional_int(raw: str | None) -> int | None:
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid integer value '{raw}'") from exc


def _parse_metric(value: str | None) -> str:
    if value is None:
        return _DEFAULT_METRIC
    metric = value.strip().lower() or _DEFAULT_METRIC
    if metric not in _SUPPORTED_METRICS:
        raise ValueError(
            f"Unsupported metric '{metric}'. Expected one of {_SUPPORTED_METRICS}."
        )
    return metric


def _parse_positive_int(raw: str | None, *, name: str, default: int) -> int:
    value = _parse_optional_int(raw)
    if value is None:
        return default
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value}")
    return value


@dataclass(frozen=True)
class RuntimeConfig:
    log_level: str
    enable_diagnostics: bool
    enable_numba: bool
    metric: str
    leaf_max_size: int
    arena_chunk_nodes: int
    arena_max_nodes: int | None

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        log_level = os.getenv("KDTREEX_LOG_LEVEL", "INFO").upper()
        enable_diagnostics = _bool_from_env(
            os.getenv("KDTREEX_ENABLE_DIAGNOSTICS"), default=True
        )
        enable_numba = _bool_from_env(os.getenv("KDTREEX_ENABLE_NUMBA"), default=False)
        metric = _parse_metric(os.getenv("KDTREEX_METRIC"))
        leaf_max_size = _parse_positive_int(
            os.getenv("KDTREEX_LEAF_MAX_SIZE"),
            name="KDTREEX_LEAF_MAX_SIZE",
            default=_DEFAULT_LEAF_MAX_SIZE,
        )
        arena_chunk_nodes = _parse_positive_int(
            os.getenv("KDTREEX_ARENA_CHUNK_NODES"),
            name="KDTREEX_ARENA_CHUNK_NODES",
            default=_DEFAULT_ARENA_CHUNK_NODES,
        )
        raw_max_nodes = _parse_optional_int(os.getenv("KDTREEX_ARENA_MAX_NODES"))
        if raw_max_nodes is None or raw_max_nodes <= 0:
            arena_max_nodes = None
        else:
            arena_max_nodes = raw_max_nodes
        return cls(
            log_level=log_level,
            enable_diagnostics=enable_diagnostics,
            enable_numba=enable_numba,
            metric=metric,
            leaf_max_size=leaf_max_size,
            arena_chunk_nodes=arena_chunk_nodes,
            arena_max_nodes=arena_max_nodes,
        )


def _configure_logging(level: str) -> None:
    logger = logging.getLogger("kdtreex")
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(level)
        formatter = logging.Formatter("%(levelname)s %(name)s: %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)


@dataclass
class RuntimeContext:
    """Active runtime configuration plus one-time side effects."""

    config: RuntimeConfig
    _activated: bool = False

    def activate(self) -> None:
        if self._activated:
            return
        _configure_logging(self.config.log_level)
        self._activated = True


_CONTEXT_CACHE: Optional[RuntimeContext] = None


def runtime_context() -> RuntimeContext:
    """Return the cached runtime context, constructing it if necessary."""

    global _CONTEXT_CACHE
    if _CONTEXT_CACHE is None:
        context = RuntimeContext(config=RuntimeConfig.from_env())
        context.activate()
        _CONTEXT_CACHE = context
    return _CONTEXT_CACHE


def runtime_config() -> RuntimeConfig:
    return runtime_context().config


def current_runtime_context() -> RuntimeContext | None:
    return _CONTEXT_CACHE


def configure_runtime(config: RuntimeConfig) -> RuntimeContext:
    """Force the active runtime context to use ``config`` instead of env defaults."""

    global _CONTEXT_CACHE
    context = RuntimeContext(config=config)
    context.activate()
    _CONTEXT_CACHE = context
    return context


def reset_runtime_context() -> None:
    """Clear the cached runtime context (used in tests)."""

    global _CONTEXT_CACHE
    _CONTEXT_CACHE = None


def describe_runtime() -> Dict[str, Any]:
    """Return a serialisable view of the active runtime configuration."""

    config = runtime_config()
    return {
        "log_level": config.log_level,
        "enable_diagnostics": config.enable_diagnostics,
        "enable_numba": config.enable_numba,
        "metric": config.metric,
        "leaf_max_size": config.leaf_max_size,
        "arena_chunk_nodes": config.arena_chunk_nodes,
        "arena_max_nodes": config.arena_max_nodes,
    }


__all__ = [
    "RuntimeConfig",
    "RuntimeContext",
    "runtime_context",
    "runtime_config",
    "current_runtime_context",
    "configure_runtime",
    "reset_runtime_context",
    "describe_runtime",
]
