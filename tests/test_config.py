"""Tests for Settings -- env prefix, credential aliases, limit validation."""

import pytest
from pydantic import ValidationError

from helm.config import DEFAULT_SYSTEM_PROMPT, Settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for name in ("ANTHROPIC_API_KEY", "ANTHROPIC_AUTH_TOKEN", "HELM_MAX_ITERATIONS", "HELM_MODEL"):
        monkeypatch.delenv(name, raising=False)
    # Keep a developer's .env out of the picture
    monkeypatch.chdir(tmp_path)


class TestSettings:
    def test_defaults(self):
        settings = Settings()

        assert settings.max_iterations == 25
        assert settings.history_max_messages == 30
        assert settings.tool_result_max_bytes == 50_000
        assert settings.system_prompt == DEFAULT_SYSTEM_PROMPT
        assert settings.anthropic_api_key == ""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("HELM_MAX_ITERATIONS", "40")
        monkeypatch.setenv("HELM_MODEL", "claude-haiku-4-5")

        settings = Settings()

        assert settings.max_iterations == 40
        assert settings.model == "claude-haiku-4-5"

    def test_unprefixed_credentials(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-api-123")
        monkeypatch.setenv("ANTHROPIC_AUTH_TOKEN", "token-456")

        settings = Settings()

        assert settings.anthropic_api_key == "sk-ant-api-123"
        assert settings.anthropic_auth_token == "token-456"

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("HELM_MAX_CONVERSATIONS=7\n", encoding="utf-8")

        assert Settings().max_conversations == 7

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_iterations": 0},
            {"history_max_messages": 2},
            {"tool_result_max_bytes": 100},
        ],
    )
    def test_invalid_limits_rejected(self, overrides):
        with pytest.raises(ValidationError):
            Settings(**overrides)
