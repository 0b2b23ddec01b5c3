from __future__ import annotations

import json

import pytest

from docassist.cli import main
from docassist.config import reset_settings_cache
from docassist.service import reset_assistant_cache


@pytest.fixture
def fresh_assistant(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("VECTOR_STORE", "memory")
    monkeypatch.setenv("EMBEDDING_PROVIDER", "hashing")
    monkeypatch.setenv("GENERATION_PROVIDER", "extractive")
    monkeypatch.delenv("FALLBACK_ANSWER", raising=False)
    reset_settings_cache()
    reset_assistant_cache()
    yield
    reset_settings_cache()
    reset_assistant_cache()


def test_ask_ingests_files_and_prints_answer(fresh_assistant, tmp_path, capsys) -> None:
    notes = tmp_path / "notes.txt"
    notes.write_text("The library closes at eight on weekdays.", encoding="utf-8")

    exit_code = main(["ask", "When does the library close?", str(notes), "--caller", "cli-user"])

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert "eight" in payload["answer"]
    assert payload["fallback"] is False
    assert payload["citations"][0]["sequence"] == 0


def test_ask_reports_failed_files(fresh_assistant, tmp_path, capsys) -> None:
    image = tmp_path / "scan.png"
    image.write_bytes(b"\x89PNG\r\n")

    exit_code = main(["ask", "Anything?", str(image)])

    assert exit_code == 0
    captured = capsys.readouterr()
    assert "scan.png: failed" in captured.err
    assert json.loads(captured.out)["citations"] == []


def test_unknown_command_exits_with_usage() -> None:
    with pytest.raises(SystemExit):
        main(["explode"])
