from __future__ import annotations

import pytest

from ctxrag.config import get_settings
from ctxrag.errors import ConfigError


def test_defaults_follow_local_ollama_setup():
    settings = get_settings({})
    assert settings.ollama_url == "http://localhost:11434"
    assert settings.generator_model == "gemma3:12b"
    assert settings.embedding_model == "paraphrase-multilingual"
    assert settings.embedding_dim == 768
    assert settings.web_port == 3003
    assert settings.top_k == 5
    assert not settings.offline


def test_environment_variables_are_prefixed(monkeypatch):
    monkeypatch.setenv("CTXRAG_CHUNK_SIZE", "900")
    monkeypatch.setenv("CTXRAG_OFFLINE", "true")
    settings = get_settings({"environment": "test"})
    assert settings.chunk_size == 900
    assert settings.offline
    assert settings.is_test


@pytest.mark.parametrize(
    "override",
    [
        {"chunk_size": 0},
        {"chunk_overlap": -1},
        {"chunk_size": 100, "chunk_overlap": 100},
        {"max_workers": 0},
        {"retry_attempts": 0},
    ],
)
def test_validate_chunking_rejects_bad_parameters(override):
    with pytest.raises(ConfigError):
        get_settings(override).validate_chunking()
