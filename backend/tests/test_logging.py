import json
import logging

from backend.replai.core.logging import JsonFormatter


def test_health_trace_header(client):
    r = client.get('/health')
    assert r.status_code == 200
    # middleware should attach trace id
    assert 'X-Trace-Id' in r.headers
    r2 = client.get('/health', headers={'X-Trace-Id': 'abc123'})
    assert r2.headers['X-Trace-Id'] == 'abc123'


def test_json_formatter_keeps_known_extras():
    record = logging.LogRecord("replai.test", logging.INFO, __file__, 1, "tick_complete", None, None)
    record.mailbox = "me@example.com"
    record.replied = 2
    record.unrelated = "dropped"
    line = json.loads(JsonFormatter().format(record))
    assert line["msg"] == "tick_complete"
    assert line["mailbox"] == "me@example.com" and line["replied"] == 2
    assert "unrelated" not in line


def test_error_envelope(client):
    r = client.get('/api/no-such-route')
    assert r.status_code == 404
    assert r.json() == {"error": "Not Found"}
