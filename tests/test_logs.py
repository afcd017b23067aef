import json
import logging

from agentd.logs import JsonFormatter, log_conversation
from agentd.sessions.schema import Message
from conftest import tool_call


def test_json_formatter():
    record = logging.LogRecord("agentd.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "hello world"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "agentd.test"


def test_log_conversation_respects_watermark(caplog):
    messages = [
        Message(ts="2030-01-01T00:00:00.000001+00:00", role="user", content="old"),
        Message(ts="2030-01-01T00:00:00.000002+00:00", role="assistant", tool_calls=[tool_call("c1", "echo")]),
        Message(ts="2030-01-01T00:00:00.000003+00:00", role="tool", content="new", tool_call_id="c1"),
    ]
    with caplog.at_level(logging.DEBUG, logger="agentd.logs"):
        count = log_conversation(4, messages, since="2030-01-01T00:00:00.000001+00:00")

    assert count == 2
    text = caplog.text
    assert "old" not in text
    assert "tool call echo" in text
    assert "tool result #c1" in text
