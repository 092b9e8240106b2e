import pytest
import requests

import reporter
from models import Verdict
from reporter import DeliveryError, build_verdict, errored_verdict, send_verdict

AKIA = "AKIA[0-9A-Z]{16}"


def test_any_positive_count_fails():
    v = build_verdict({AKIA: 1, "password": 0}, "run-abc", "http://runtask.test/")
    assert v.status == "failed"
    assert AKIA in v.message
    assert "Matches: 1" in v.message
    assert "password" not in v.message
    assert v.url == "http://runtask.test/runs/run-abc"


def test_zero_counts_or_empty_pass():
    for counts in ({}, {AKIA: 0}):
        v = build_verdict(counts, "run-abc", "http://runtask.test")
        assert v.status == "passed"
        assert v.message == "Configured patterns not found"


def test_failed_message_is_sorted():
    v = build_verdict({"b": 1, "a": 3}, "run-abc", "http://x")
    assert v.message.splitlines() == ["Pattern: a, Matches: 3", "Pattern: b, Matches: 1"]


def test_document_shape():
    doc = Verdict("passed", "ok", "http://x/runs/r").to_document()
    assert doc == {"data": {"type": "task-results", "attributes": {"status": "passed", "message": "ok", "url": "http://x/runs/r"}}}
    assert Verdict("failed").to_document()["data"]["attributes"] == {"status": "failed"}


def test_errored_verdict():
    v = errored_verdict("request failed with status code: 403", "run-abc", "http://x")
    assert v.status == "failed"
    assert v.message.startswith("Run task could not evaluate this run: ")
    assert "403" in v.message


def test_send_verdict_patches_callback(monkeypatch, fake_response):
    seen = {}

    def _fake_patch(url, json=None, headers=None, timeout=None, verify=None):
        seen.update(url=url, json=json, headers=headers, timeout=timeout)
        return fake_response(200, text="{}")

    monkeypatch.setattr(reporter.requests, "patch", _fake_patch)
    v = Verdict("failed", "Pattern: x, Matches: 1\n", "http://x/runs/run-abc")
    send_verdict("https://tfc.test/callback/1", "tok-9", v, timeout_s=4)

    assert seen["url"] == "https://tfc.test/callback/1"
    assert seen["json"] == v.to_document()
    assert seen["headers"]["Authorization"] == "Bearer tok-9"
    assert seen["headers"]["Content-Type"] == "application/vnd.api+json"
    assert seen["timeout"] == 4


def test_send_verdict_non_2xx(monkeypatch, fake_response, caplog):
    monkeypatch.setattr(reporter.requests, "patch", lambda *a, **k: fake_response(422, text='{"errors":["bad"]}'))
    with pytest.raises(DeliveryError) as ei:
        send_verdict("https://tfc.test/cb", "tok", Verdict("passed"))
    assert ei.value.status_code == 422
    assert "bad" in ei.value.body
    assert '{"errors":["bad"]}' in caplog.text


def test_send_verdict_transport_error(monkeypatch):
    def _boom(*a, **k):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(reporter.requests, "patch", _boom)
    with pytest.raises(DeliveryError, match="refused"):
        send_verdict("https://tfc.test/cb", "tok", Verdict("passed"))
