import os
from pathlib import Path

import pytest

from authflow.config import ClientConfig
from authflow.models.errors import ConfigurationError


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Strip AUTHFLOW_* variables and keep .env lookups inside tmp_path."""
    for name in list(os.environ):
        if name.startswith("AUTHFLOW_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    yield monkeypatch
    # load_dotenv writes os.environ directly
    for name in list(os.environ):
        if name.startswith("AUTHFLOW_"):
            del os.environ[name]


class TestClientConfig:
    def test_defaults(self, clean_env) -> None:
        config = ClientConfig.from_env()

        assert config.client_id is None
        assert config.redirect_uri == "http://127.0.0.1:8080/callback"
        assert config.use_pkce is True
        assert config.use_basic_auth is False
        assert config.timeout == 300.0

    def test_reads_prefixed_environment(self, clean_env) -> None:
        # Arrange
        clean_env.setenv("AUTHFLOW_CLIENT_ID", "my-app")
        clean_env.setenv("AUTHFLOW_SCOPE", "openid email, profile")
        clean_env.setenv("AUTHFLOW_USE_PKCE", "false")
        clean_env.setenv("AUTHFLOW_USE_BASIC_AUTH", "yes")
        clean_env.setenv("AUTHFLOW_TOKEN_PATH", "/tmp/token.json")
        clean_env.setenv("AUTHFLOW_TIMEOUT", "12.5")

        # Act
        config = ClientConfig.from_env()

        # Assert
        assert config.client_id == "my-app"
        assert config.scope == ("openid", "email", "profile")
        assert config.use_pkce is False
        assert config.use_basic_auth is True
        assert config.token_path == Path("/tmp/token.json")
        assert config.timeout == 12.5

    def test_custom_prefix(self, clean_env) -> None:
        clean_env.setenv("MYAPP_CLIENT_ID", "other")

        assert ClientConfig.from_env(prefix="MYAPP_").client_id == "other"

    def test_overrides_win_and_none_is_ignored(self, clean_env) -> None:
        clean_env.setenv("AUTHFLOW_CLIENT_ID", "from-env")
        clean_env.setenv("AUTHFLOW_TOKEN_URL", "https://env.example/token")

        config = ClientConfig.from_env(client_id="from-flag", token_url=None)

        assert config.client_id == "from-flag"
        assert config.token_url == "https://env.example/token"

    def test_reads_dotenv_file(self, clean_env, tmp_path: Path) -> None:
        # Arrange
        env_file = tmp_path / "settings.env"
        env_file.write_text(
            "AUTHFLOW_CLIENT_ID=dotenv-app\nAUTHFLOW_ACCESS_TYPE=offline\n"
        )

        # Act
        config = ClientConfig.from_env(env_file=env_file)

        # Assert
        assert config.client_id == "dotenv-app"
        assert config.access_type == "offline"

    def test_environment_wins_over_dotenv(self, clean_env, tmp_path: Path) -> None:
        (tmp_path / ".env").write_text("AUTHFLOW_CLIENT_ID=dotenv-app\n")
        clean_env.setenv("AUTHFLOW_CLIENT_ID", "env-app")

        assert ClientConfig.from_env().client_id == "env-app"

    def test_invalid_boolean(self, clean_env) -> None:
        clean_env.setenv("AUTHFLOW_USE_PKCE", "maybe")

        with pytest.raises(ConfigurationError, match="use_pkce"):
            ClientConfig.from_env()

    def test_invalid_timeout(self, clean_env) -> None:
        clean_env.setenv("AUTHFLOW_TIMEOUT", "soon")

        with pytest.raises(ConfigurationError):
            ClientConfig.from_env()

    def test_require_names_missing_variables(self) -> None:
        config = ClientConfig(client_id="my-app")

        with pytest.raises(ConfigurationError) as exc_info:
            config.require("client_id", "token_url", "token_path")

        message = str(exc_info.value)
        assert "AUTHFLOW_TOKEN_URL" in message
        assert "AUTHFLOW_TOKEN_PATH" in message
        assert "AUTHFLOW_CLIENT_ID" not in message
