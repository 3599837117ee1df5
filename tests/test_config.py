from __future__ import annotations

import pytest
from pydantic import ValidationError

from kbchat.config import Settings, get_settings


def test_defaults_match_reference_pipeline():
    settings = Settings()
    assert settings.chunk_size == 600
    assert settings.chunk_overlap == 50
    assert settings.similarity_threshold == 0.7
    assert settings.top_k == 5
    assert settings.embedding_model == "text-embedding-3-large"
    assert settings.embedding_dim == 3072
    assert settings.completion_model == "gpt-4o-mini"
    assert settings.max_tokens == 1000
    assert settings.log_capacity == 1000


def test_override_does_not_touch_cached_settings():
    overridden = get_settings({"top_k": 9, "environment": "test"})
    assert overridden.top_k == 9
    assert overridden.is_test
    assert get_settings() is get_settings()


def test_allowed_extensions_accepts_comma_separated_string():
    settings = Settings(allowed_extensions="PDF, .txt,md")
    assert settings.allowed_extensions_tuple == (".pdf", ".txt", ".md")


def test_upload_limit_in_bytes():
    settings = Settings(max_upload_size_mb=2)
    assert settings.max_upload_bytes == 2 * 1024 * 1024


def test_embedding_defaults_follow_provider():
    huggingface = Settings(embedding_provider="huggingface")
    assert (huggingface.embedding_model, huggingface.embedding_dim) == ("BAAI/bge-small-en-v1.5", 384)
    openai = Settings(embedding_provider="openai")
    assert (openai.embedding_model, openai.embedding_dim) == ("text-embedding-3-large", 3072)


def test_explicit_embedding_model_is_kept():
    settings = Settings(embedding_provider="huggingface", embedding_model="intfloat/e5-small-v2", embedding_dim=384)
    assert settings.embedding_model == "intfloat/e5-small-v2"


@pytest.mark.parametrize(("chunk_size", "chunk_overlap"), [(100, 100), (50, 80), (0, 0)])
def test_invalid_chunking_is_rejected(chunk_size: int, chunk_overlap: int):
    with pytest.raises(ValidationError):
        Settings(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
