"""Log output shape for both formatters.

Declined ledger operations only leave a trace in the log, so the JSON
lines have to carry the user and request as top-level keys.
"""

from __future__ import annotations

import json
import logging
import sys

from rewards_service.core.logging import (
    RequestContextFilter,
    _ContainerFormatter,
    _JsonFormatter,
    request_id_var,
    user_id_var,
)

LEDGER = "rewards_service.services.points_ledger"


def _record(
    msg: str = "Awarded %d points",
    args: tuple = (50,),
    level: int = logging.INFO,
    exc_info=None,
    **fields,
) -> logging.LogRecord:
    record = logging.LogRecord(
        name=LEDGER,
        level=level,
        pathname="points_ledger.py",
        lineno=300,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )
    for key, value in fields.items():
        setattr(record, key, value)
    return record


def test_json_line_has_core_keys() -> None:
    parsed = json.loads(_JsonFormatter().format(_record()))
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == LEDGER
    assert parsed["message"] == "Awarded 50 points"
    assert parsed["timestamp"]


def test_json_line_lifts_context_fields() -> None:
    record = _record(user_id="learner-9", operation="spend", status_code=409)
    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["user_id"] == "learner-9"
    assert parsed["operation"] == "spend"
    assert parsed["status_code"] == 409


def test_json_line_omits_unset_context() -> None:
    parsed = json.loads(_JsonFormatter().format(_record()))
    assert "user_id" not in parsed
    assert "duration_ms" not in parsed


def test_json_line_carries_store_failure_traceback() -> None:
    try:
        raise TimeoutError("store timed out")
    except TimeoutError:
        record = _record(
            "Store failure during %s", ("award",), logging.ERROR, sys.exc_info()
        )
    parsed = json.loads(_JsonFormatter().format(record))
    assert "TimeoutError: store timed out" in parsed["exception"]


def test_container_line_is_plain_text() -> None:
    output = _ContainerFormatter().format(_record())
    assert "INFO" in output
    assert LEDGER in output
    assert output.rstrip().endswith("Awarded 50 points")
    assert not output.lstrip().startswith("{")


def test_container_line_locates_warnings() -> None:
    record = _record("Spend rejected user=%s", ("u1",), logging.WARNING)
    assert "[points_ledger.py:300]" in _ContainerFormatter().format(record)


def test_context_filter_copies_bound_ids() -> None:
    record = _record()
    req_token = request_id_var.set("req-7")
    user_token = user_id_var.set("learner-42")
    try:
        RequestContextFilter().filter(record)
    finally:
        request_id_var.reset(req_token)
        user_id_var.reset(user_token)

    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["request_id"] == "req-7"
    assert parsed["user_id"] == "learner-42"


def test_context_filter_keeps_explicit_user_id() -> None:
    record = _record(user_id="explicit")
    token = user_id_var.set("from-header")
    try:
        RequestContextFilter().filter(record)
    finally:
        user_id_var.reset(token)
    assert record.user_id == "explicit"  # type: ignore[attr-defined]
