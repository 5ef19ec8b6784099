"""日志配置：JSON 结构化字段、request_id 注入与格式切换。"""

import json
import logging

from app.packages.query_tree.core.config import Settings
from app.packages.query_tree.core.logger import (
    JsonFormatter,
    RequestIdFilter,
    build_logging_config,
    get_logger,
    set_request_id,
)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("app.query_tree.mutations", logging.INFO, __file__, 1, "Moved node %s", ("q_1",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_request_id_and_node_fields():
    record = _record(node_id="q_1", action="move")
    set_request_id("rid-1")
    try:
        RequestIdFilter().filter(record)
    finally:
        set_request_id(None)

    payload = json.loads(JsonFormatter().format(record))
    assert payload["msg"] == "Moved node q_1"
    assert payload["request_id"] == "rid-1"
    assert payload["node_id"] == "q_1"
    assert payload["action"] == "move"
    assert "parent_id" not in payload


def test_request_id_defaults_to_none_outside_requests():
    record = _record()
    RequestIdFilter().filter(record)
    assert record.request_id is None


def test_logging_config_formatters():
    text = build_logging_config(Settings(LOG_JSON=False))
    assert text["handlers"]["console"]["formatter"] == "color"
    assert text["handlers"]["file"]["formatter"] == "text"
    assert text["loggers"]["app"]["propagate"] is False

    structured = build_logging_config(Settings(LOG_JSON=True, LOG_LEVEL="DEBUG"))
    assert structured["handlers"]["console"]["formatter"] == "json"
    assert structured["handlers"]["file"]["formatter"] == "json"
    assert structured["root"]["level"] == "DEBUG"


def test_module_loggers_live_under_app():
    assert get_logger("query_tree.client").name == "app.query_tree.client"
