"""Integration test for the fetch -> normalize -> log flow.

Exercises the pipeline end to end without real API calls: the HTTP
transport is faked, everything else is the production code path.
"""
import json
import sys
from pathlib import Path

import pytest
import requests

# Add repo root and scripts to path
REPO_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(REPO_ROOT))
sys.path.insert(0, str(REPO_ROOT / "scripts"))

from reply_normalizer import fetcher
from reply_normalizer.api_logger import APILogger
from reply_normalizer.normalization import FALLBACK_MESSAGE

import ask
import normalize_responses


# Completions the way DeepSeek actually returns them
RAW_COMPLETIONS = [
    ("Plain answer.", "Plain answer."),
    ('```json\n{"answer": "**Fenced** answer"}\n```', "Fenced answer"),
    (json.dumps({"answer": json.dumps({"answer": "Double encoded"})}), "Double encoded"),
    ("<｜begin▁of▁sentence｜>Token wrapped<｜end▁of▁sentence｜>", "Token wrapped"),
    (json.dumps({"result": {"answer": "Single field"}}), "Single field"),
    ("null", FALLBACK_MESSAGE),
    ("", FALLBACK_MESSAGE),
]


class FakeResponse:
    status_code = 200
    ok = True
    headers = {}

    def __init__(self, content):
        self._body = {"choices": [{"message": {"content": content}}]}
        self.text = json.dumps(self._body)

    def json(self):
        return self._body


@pytest.fixture
def fake_deepseek(monkeypatch):
    """Serve queued completion contents from a fake DeepSeek endpoint."""
    queue = []

    def post(url, **kwargs):
        return FakeResponse(queue.pop(0))

    monkeypatch.setattr(fetcher, "DEEPSEEK_API_KEY", "test-key")
    monkeypatch.setattr(fetcher.requests, "post", post)
    return queue


class TestFullPipeline:
    """Integration tests for the full answer pipeline."""

    def test_answers_are_cleaned_and_logged(self, fake_deepseek, tmp_path):
        api_logger = APILogger(log_dir=tmp_path, session_id="it", enable_console_logging=False)
        fake_deepseek.extend(raw for raw, _ in RAW_COMPLETIONS)

        answers = [fetcher.get_answer(f"question {i}", api_logger=api_logger) for i in range(len(RAW_COMPLETIONS))]

        assert answers == [expected for _, expected in RAW_COMPLETIONS]

        summary = api_logger.get_summary()
        assert summary["total_calls"] == len(RAW_COMPLETIONS)
        assert summary["failed_calls"] == 0
        assert summary["fallback_answers"] == 2

        records = [
            json.loads(line)
            for line in api_logger.get_log_file_path().read_text(encoding="utf-8").splitlines()
        ]
        assert [r["normalized"] for r in records] == answers

    def test_call_logs_can_be_renormalized(self, fake_deepseek, tmp_path):
        """A session's JSONL log replays through the batch script unchanged."""
        api_logger = APILogger(log_dir=tmp_path, session_id="replay", enable_console_logging=False)
        fake_deepseek.extend(raw for raw, _ in RAW_COMPLETIONS)
        for i in range(len(RAW_COMPLETIONS)):
            fetcher.get_answer(f"q{i}", api_logger=api_logger)

        output = tmp_path / "out" / "normalized.jsonl"
        stats = normalize_responses.normalize_file(api_logger.get_log_file_path(), output, verbose=False)

        assert stats == {"records": len(RAW_COMPLETIONS), "fallback_answers": 2, "failed_calls": 0}
        records = [json.loads(line) for line in output.read_text(encoding="utf-8").splitlines()]
        for record in records:
            assert record["fallback_used"] == (record["normalized"] == FALLBACK_MESSAGE)
        assert [r["normalized"] for r in records] == [expected for _, expected in RAW_COMPLETIONS]


class TestScripts:

    def test_normalize_responses_accepts_plain_lines(self, tmp_path):
        source = tmp_path / "raw.jsonl"
        source.write_text(
            "\n".join([
                json.dumps({"id": 1, "response": '{"answer": "*ok*"}'}),
                "not json at all",
                json.dumps({"id": 3, "response": None}),
                "",
            ]),
            encoding="utf-8",
        )
        output = tmp_path / "normalized.jsonl"

        assert normalize_responses.main([str(source), str(output), "--quiet"]) == 0

        records = [json.loads(line) for line in output.read_text(encoding="utf-8").splitlines()]
        assert [r["normalized"] for r in records] == ["ok", "not json at all", FALLBACK_MESSAGE]
        assert records[0]["id"] == 1
        assert records[2]["fallback_used"] is True

    def test_normalize_responses_missing_input(self, tmp_path, capsys):
        assert normalize_responses.main([str(tmp_path / "nope.jsonl"), str(tmp_path / "o.jsonl")]) == 1
        assert "Input file not found" in capsys.readouterr().err

    def test_ask_prints_answer(self, fake_deepseek, capsys):
        fake_deepseek.append('{"answer": "**Yes**"}')

        assert ask.main(["Is it approved?", "--no-log-file"]) == 0
        assert capsys.readouterr().out.strip() == "Yes"

    def test_ask_reports_fetch_failure(self, monkeypatch, capsys):
        class Failing:
            status_code = 500
            ok = False
            headers = {}
            text = "internal error"

        monkeypatch.setattr(fetcher, "DEEPSEEK_API_KEY", "test-key")
        monkeypatch.setattr(fetcher.requests, "post", lambda url, **kwargs: Failing())

        assert ask.main(["hello", "--no-log-file"]) == 1
        assert "DeepSeek failed: 500" in capsys.readouterr().err

    def test_ask_reports_connection_error(self, monkeypatch, capsys):
        def refuse(url, **kwargs):
            raise requests.ConnectionError("connection refused")

        monkeypatch.setattr(fetcher, "DEEPSEEK_API_KEY", "test-key")
        monkeypatch.setattr(fetcher.requests, "post", refuse)
        monkeypatch.setattr(fetcher.time, "sleep", lambda s: None)

        assert ask.main(["hello", "--no-log-file"]) == 1
        assert "Error: connection refused" in capsys.readouterr().err

    def test_normalize_responses_skips_failed_calls(self, tmp_path, capsys):
        source = tmp_path / "calls.jsonl"
        source.write_text(
            "\n".join([
                json.dumps({"call_id": "a", "success": True, "response": '{"answer": "Fine"}'}),
                json.dumps({"call_id": "b", "success": False, "response": None, "error": "DeepSeek failed: 500"}),
            ]),
            encoding="utf-8",
        )
        output = tmp_path / "normalized.jsonl"

        stats = normalize_responses.normalize_file(source, output, verbose=False)

        assert stats == {"records": 1, "fallback_answers": 0, "failed_calls": 1}
        records = [json.loads(line) for line in output.read_text(encoding="utf-8").splitlines()]
        assert [r["call_id"] for r in records] == ["a"]
        assert records[0]["normalized"] == "Fine"

        assert normalize_responses.main([str(source), str(output)]) == 0
        assert "Failed calls skipped: 1" in capsys.readouterr().out
