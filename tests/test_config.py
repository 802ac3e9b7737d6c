"""Tests for configuration objects."""

from __future__ import annotations

from pathlib import Path

import pytest

from policyaudit.config import DEFAULT_DB_PATH, DEFAULT_INDEX_PATH, AppConfig, RetrievalConfig
from policyaudit.embedding.encoder import DEFAULT_GEMINI_MODEL, DEFAULT_LOCAL_MODEL


class TestAppConfig:
    """Test AppConfig."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        config = AppConfig()

        assert config.db_path == DEFAULT_DB_PATH
        assert config.index_path == DEFAULT_INDEX_PATH
        assert config.provider == "gemini"
        assert config.model_name == DEFAULT_GEMINI_MODEL
        assert config.api_key == ""

    def test_api_key_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GOOGLE_API_KEY", "env-key")
        assert AppConfig().api_key == "env-key"
        assert AppConfig(api_key="explicit").api_key == "explicit"

    def test_local_provider_model(self) -> None:
        assert AppConfig(provider="local").model_name == DEFAULT_LOCAL_MODEL
        assert AppConfig(provider="local", model_name="mini").model_name == "mini"

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown embedding provider"):
            AppConfig(provider="openai")

    def test_resolve_relative_paths(self, tmp_path: Path) -> None:
        config = AppConfig(db_path=Path("data/p.db"), index_path=Path("data/i.json"), api_key="")
        assert config.resolve_db_path(tmp_path) == tmp_path / "data/p.db"
        assert config.resolve_index_path(tmp_path) == tmp_path / "data/i.json"
        assert config.resolve_db_path() == Path("data/p.db")

    def test_resolve_absolute_paths(self, tmp_path: Path) -> None:
        absolute = tmp_path / "abs.db"
        config = AppConfig(db_path=absolute, api_key="")
        assert config.resolve_db_path(Path("/elsewhere")) == absolute


class TestRetrievalConfig:
    """Test RetrievalConfig."""

    def test_defaults(self) -> None:
        config = RetrievalConfig()

        assert config.top_k == 80
        assert config.radius == 3
        assert config.base_weight == 0.25
        assert config.char_budget == 200_000
        assert config.max_blocks == 100
        assert config.sent_window == 2
        assert config.max_sent_chars == 600
        assert config.concurrency == 4
        assert config.min_chunks == 5
        assert config.overage_factor == 1.1
        assert config.overage_chunks == 10
        assert config.fallback_pages == 20
        assert config.dedup_prefix_chars == 160

    @pytest.mark.parametrize(
        "field",
        ["top_k", "char_budget", "max_blocks", "max_sent_chars", "concurrency", "fallback_pages", "dedup_prefix_chars"],
    )
    def test_positive_fields(self, field: str) -> None:
        with pytest.raises(ValueError, match=field):
            RetrievalConfig(**{field: 0})

    @pytest.mark.parametrize("field", ["radius", "sent_window", "min_chunks", "overage_chunks"])
    def test_non_negative_fields(self, field: str) -> None:
        assert getattr(RetrievalConfig(**{field: 0}), field) == 0
        with pytest.raises(ValueError, match=field):
            RetrievalConfig(**{field: -1})

    def test_overage_factor(self) -> None:
        with pytest.raises(ValueError):
            RetrievalConfig(overage_factor=0.9)

    def test_frozen(self) -> None:
        config = RetrievalConfig()
        with pytest.raises(AttributeError):
            config.top_k = 5  # type: ignore[misc]
