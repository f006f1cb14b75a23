import json
import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from resell_tracker.core.logging import JsonLogFormatter
from resell_tracker.middlewares import owner_ctx_var, request_id_ctx_var, session_ctx_var


def _record(message="hello", **extra):
    record = logging.LogRecord("resell_tracker.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_tags_request_owner_and_session():
    tokens = [
        (request_id_ctx_var, request_id_ctx_var.set("req-1")),
        (owner_ctx_var, owner_ctx_var.set("user_1")),
        (session_ctx_var, session_ctx_var.set("sess_1")),
    ]
    try:
        payload = json.loads(JsonLogFormatter().format(_record(extra_data={"outcome": "trial_started"})))
    finally:
        for var, token in reversed(tokens):
            var.reset(token)

    assert payload["message"] == "hello"
    assert payload["level"] == "INFO"
    assert payload["request_id"] == "req-1"
    assert payload["owner_id"] == "user_1"
    assert payload["session_id"] == "sess_1"
    assert payload["outcome"] == "trial_started"
    assert payload["timestamp"].endswith("Z")


def test_formatter_omits_empty_context():
    payload = json.loads(JsonLogFormatter().format(_record()))
    assert "owner_id" not in payload
    assert "session_id" not in payload
    assert "request_id" not in payload
