import logging

import numpy as np
import pytest

from kdtreex import ArrayDataSource, DynamicIndex, StaticIndex
from kdtreex import config as kx_config
from kdtreex.diagnostics import log_operation
from kdtreex.logging import get_logger
from tests.utils.datasets import gaussian_points


@pytest.fixture(autouse=True)
def _reset_runtime(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("KDTREEX_ENABLE_DIAGNOSTICS", raising=False)
    kx_config.reset_runtime_context()
    yield
    kx_config.reset_runtime_context()


def _messages(caplog: pytest.LogCaptureFixture, operation: str):
    return [record.message for record in caplog.records if f"op={operation}" in record.message]


def test_static_build_emits_resource_log(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="kdtreex.api.static")
    points = gaussian_points(np.random.default_rng(0), 50, 2)

    StaticIndex.build(ArrayDataSource(points))

    records = _messages(caplog, "static_build")
    assert records, "expected static_build operation log"
    message = records[-1]
    assert "wall_ms=" in message
    assert "cpu_user_ms=" in message
    assert "rss_delta=" in message
    assert "points=50" in message
    assert "metric=l2" in message


def test_disabled_diagnostics_skip_resource_sampling(
    caplog: pytest.LogCaptureFixture, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("KDTREEX_ENABLE_DIAGNOSTICS", "0")
    kx_config.reset_runtime_context()
    caplog.set_level(logging.INFO, logger="kdtreex.api.static")

    StaticIndex.build(ArrayDataSource(gaussian_points(np.random.default_rng(1), 20, 2)))

    message = _messages(caplog, "static_build")[-1]
    assert "cpu_user_ms=NA" in message
    assert "rss_delta=NA" in message


def test_queries_log_at_debug(caplog: pytest.LogCaptureFixture) -> None:
    points = gaussian_points(np.random.default_rng(2), 40, 2)
    index = StaticIndex.build(ArrayDataSource(points))

    caplog.set_level(logging.INFO, logger="kdtreex.queries.search")
    index.knn_search(points[0], 3)
    assert not _messages(caplog, "tree_query")

    caplog.set_level(logging.DEBUG, logger="kdtreex.queries.search")
    index.knn_search(points[0], 3)
    records = [record for record in caplog.records if "op=tree_query" in record.message]
    assert records
    assert records[-1].levelno == logging.DEBUG
    assert records[-1].name == "kdtreex.queries.search"
    assert "results=3" in records[-1].message
    assert "truncated=False" in records[-1].message


def test_dynamic_and_persistence_operations_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="kdtreex.api")
    points = gaussian_points(np.random.default_rng(3), 12, 2)
    source = ArrayDataSource(points)

    dynamic = DynamicIndex.build(source)
    static = StaticIndex.build(source)
    StaticIndex.from_bytes(static.to_bytes(), source)

    insert = _messages(caplog, "dynamic_insert")[-1]
    assert "inserted=12" in insert
    assert "levels=" in insert
    assert _messages(caplog, "static_save")
    assert "bytes=" in _messages(caplog, "static_save")[-1]
    assert _messages(caplog, "static_load")
    assert dynamic.num_points == 12


def test_log_operation_collects_metadata(caplog: pytest.LogCaptureFixture) -> None:
    logger = get_logger("tests.diagnostics")
    caplog.set_level(logging.INFO, logger=logger.name)

    with log_operation(logger, "unit") as op_log:
        op_log.add_metadata(items=3, ratio=0.5)

    message = _messages(caplog, "unit")[-1]
    assert message.startswith("op=unit wall_ms=")
    assert message.endswith("items=3 ratio=0.500")


def test_log_operation_is_silent_below_level(caplog: pytest.LogCaptureFixture) -> None:
    logger = get_logger("tests.quiet")
    caplog.set_level(logging.WARNING, logger=logger.name)

    with log_operation(logger, "quiet") as op_log:
        op_log.add_metadata(items=1)

    assert not _messages(caplog, "quiet")


def test_get_logger_namespaces_under_package():
    assert get_logger().name == "kdtreex"
    assert get_logger("core.tree").name == "kdtreex.core.tree"
    assert get_logger("kdtreex.api").name == "kdtreex.api"
