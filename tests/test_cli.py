from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from ctxrag import cli


def test_db_override_distinguishes_urls_and_directories(tmp_path: Path) -> None:
    assert cli.db_override("http://chroma.internal:8001") == {
        "chroma_host": "chroma.internal",
        "chroma_port": 8001,
        "chroma_ssl": False,
    }
    assert cli.db_override("https://chroma.example.com")["chroma_port"] == 443
    assert cli.db_override(str(tmp_path)) == {"chroma_host": None, "chroma_persist_dir": tmp_path}


def test_global_flags_override_settings() -> None:
    args = cli.parse_args(
        ["--model", "llama3", "--embed", "nomic-embed-text", "--ollama", "http://gpu:11434", "generate",
         "--document", "doc.pdf", "--chunk-size", "400", "--overlap", "40", "--collection", "manuals"]
    )
    settings = cli.settings_from_args(args)

    assert settings.generator_model == "llama3"
    assert settings.embedding_model == "nomic-embed-text"
    assert settings.ollama_url == "http://gpu:11434"
    assert (settings.chunk_size, settings.chunk_overlap, settings.collection) == (400, 40, "manuals")


def test_command_is_required() -> None:
    with pytest.raises(SystemExit):
        cli.parse_args([])


def test_generate_then_chat_offline(tmp_path: Path, capsys, monkeypatch) -> None:
    document = tmp_path / "fruit.txt"
    document.write_text(
        "Apples grow in orchards and taste sweet.\n\n"
        "Bananas ripen in warm tropical climates.\n\n"
        "Cherries bloom early in the spring season.",
        encoding="utf-8",
    )
    db = str(tmp_path / "db")

    code = cli.main(["--offline", "--db", db, "generate", "--document", str(document), "--chunk-size", "60"])

    assert code == 0
    report = json.loads(capsys.readouterr().out)
    assert (report["document_id"], report["stored"], report["failed"]) == ("fruit.txt", 3, 0)

    answers = iter(["Where do apples grow?", ""])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))

    assert cli.main(["--offline", "--db", db, "chat"]) == 0
    assert "Based on the provided documents:" in capsys.readouterr().out


def test_generate_reports_config_errors(tmp_path: Path, capsys) -> None:
    document = tmp_path / "fruit.txt"
    document.write_text("text", encoding="utf-8")

    code = cli.main(
        ["--offline", "--db", str(tmp_path / "db"), "generate", "--document", str(document),
         "--chunk-size", "10", "--overlap", "10"]
    )

    assert code == 1
    assert "error:" in capsys.readouterr().err


def test_generate_builds_dependencies_off_the_event_loop(tmp_path: Path, monkeypatch, capsys) -> None:
    document = tmp_path / "fruit.txt"
    document.write_text("Apples grow in orchards and taste sweet.", encoding="utf-8")
    threads: list[threading.Thread] = []
    real_build = cli.build_dependencies

    def recording_build(settings):
        threads.append(threading.current_thread())
        return real_build(settings)

    monkeypatch.setattr(cli, "build_dependencies", recording_build)

    code = cli.main(["--offline", "--db", str(tmp_path / "db"), "generate", "--document", str(document)])

    assert code == 0
    assert threads and threads[0] is not threading.main_thread()
