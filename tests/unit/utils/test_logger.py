"""
Test structured logging setup.
"""
import json

import pytest
import structlog
from structlog.contextvars import bound_contextvars
from structlog.testing import capture_logs

from delta_neutral.utils.logger import configure_logging, get_logger, log_position_event, log_risk_event


@pytest.fixture
def reset_structlog():
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


def test_json_lines_carry_bound_context(capsys, reset_structlog):
    configure_logging("INFO")
    logger = get_logger("delta_neutral.keeper")

    with bound_contextvars(position_id="pos-1", status="active"):
        logger.info("keeper_swept", reason="looks_good")
    logger.debug("filtered_out")

    lines = capsys.readouterr().out.strip().splitlines()
    assert len(lines) == 1
    event = json.loads(lines[0])
    assert event["event"] == "keeper_swept"
    assert event["position_id"] == "pos-1"
    assert event["status"] == "active"
    assert event["logger"] == "delta_neutral.keeper"
    assert event["level"] == "info"
    assert "timestamp" in event


def test_context_is_dropped_after_the_block(capsys, reset_structlog):
    configure_logging("INFO")
    logger = get_logger("delta_neutral.keeper")

    with bound_contextvars(position_id="pos-1"):
        pass
    logger.info("after")

    event = json.loads(capsys.readouterr().out.strip())
    assert "position_id" not in event


def test_position_event_name(reset_structlog):
    with capture_logs() as logs:
        log_position_event(get_logger("delta_neutral.engine"), "opened", "pos-1", "mAAPL", cdp_idx=1)

    assert logs == [{
        "event": "position_opened",
        "logger": "delta_neutral.engine",
        "position_id": "pos-1",
        "mirror_asset": "mAAPL",
        "cdp_idx": 1,
        "log_level": "info",
    }]


def test_risk_event_severity_levels(reset_structlog):
    logger = get_logger("delta_neutral.engine")
    with capture_logs() as logs:
        log_risk_event(logger, "preemptive_close", "critical", "CDP treated as closed")
        log_risk_event(logger, "oracle", "warning", "price stale")

    assert [entry["log_level"] for entry in logs] == ["error", "warning"]
