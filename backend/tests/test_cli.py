"""CLI tests against a faked HTTP backend."""

from __future__ import annotations

import json
from typing import Any

import pytest
import requests
from typer.testing import CliRunner

from docvector.cli import main

runner = CliRunner()


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code
        self.text = json.dumps(payload)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self) -> Any:
        return self.payload


@pytest.fixture
def calls(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    recorded: list[dict[str, Any]] = []

    def fake_request(method: str, url: str, timeout: float, **kwargs: Any) -> FakeResponse:
        recorded.append({"method": method, "url": url, **kwargs})
        return FakeResponse({"ok": True})

    monkeypatch.setattr(main.requests, "request", fake_request)
    monkeypatch.delenv("DOCVEC_HOST", raising=False)
    return recorded


def test_query_sends_only_given_options(calls: list[dict[str, Any]]) -> None:
    result = runner.invoke(
        main.app,
        ["query", "load config", "--k", "3", "--type", "code", "--type", "docs", "--no-rerank", "--min", "0.2"],
    )
    assert result.exit_code == 0, result.output
    (call,) = calls
    assert call["method"] == "POST"
    assert call["url"] == "http://127.0.0.1:5173/search"
    assert call["json"] == {"q": "load config", "k": 3, "min": 0.2, "types": ["code", "docs"], "rerank": False}
    assert '"ok": true' in result.output


def test_index_routes(calls: list[dict[str, Any]]) -> None:
    assert runner.invoke(main.app, ["index", "--force"]).exit_code == 0
    assert runner.invoke(main.app, ["index", "--file", "src/app.py"]).exit_code == 0
    assert calls[0]["url"].endswith("/index")
    assert calls[0]["json"] == {"force": True, "background": False}
    assert calls[1]["url"].endswith("/index/file")
    assert calls[1]["json"] == {"path": "src/app.py"}


def test_host_override_and_env(calls: list[dict[str, Any]], monkeypatch: pytest.MonkeyPatch) -> None:
    runner.invoke(main.app, ["status", "--host", "http://example:9000/"])
    monkeypatch.setenv("DOCVEC_HOST", "http://env-host:1234")
    runner.invoke(main.app, ["stats"])
    assert calls[0]["url"] == "http://example:9000/index/status"
    assert calls[1]["url"] == "http://env-host:1234/stats"


def test_clear_requires_confirmation(calls: list[dict[str, Any]]) -> None:
    aborted = runner.invoke(main.app, ["clear"], input="n\n")
    assert aborted.exit_code == 1
    assert calls == []
    confirmed = runner.invoke(main.app, ["clear", "--yes"])
    assert confirmed.exit_code == 0
    assert calls[0]["json"] == {"confirm": True}


def test_incoherence_payload(calls: list[dict[str, Any]]) -> None:
    runner.invoke(main.app, ["incoherence", "src/app.py", "--min-severity", "0.5", "--limit", "3"])
    runner.invoke(main.app, ["incoherence"])
    assert calls[0]["json"] == {"path": "src/app.py", "min_severity": 0.5, "limit": 3}
    assert calls[1]["json"] == {"path": None, "min_severity": 0.0}


def test_error_responses_exit_nonzero(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        main.requests,
        "request",
        lambda method, url, timeout, **kwargs: FakeResponse({"detail": "busy"}, status_code=409),
    )
    result = runner.invoke(main.app, ["pause"])
    assert result.exit_code == 1
    assert "409" in result.output


def test_unreachable_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(method: str, url: str, timeout: float, **kwargs: Any) -> FakeResponse:
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(main.requests, "request", refuse)
    result = runner.invoke(main.app, ["similar", "abc"])
    assert result.exit_code == 1
    assert "Could not reach docvector" in result.output
