"""Tests for shared configuration and logging helpers."""


class TestSettings:
    """Tests for YAML and environment configuration."""

    def test_defaults_when_file_missing(self, tmp_path):
        """Test that a missing config file gives the defaults."""
        from shared.config import Settings

        settings = Settings.from_yaml(tmp_path / "missing.yaml")

        assert settings.bridge.service_id == 247
        assert settings.oauth.access_token_minutes == 60
        assert settings.oauth.authorization_code_minutes == 10
        assert settings.oauth.refresh_token_days == 30
        assert settings.oauth.default_scope == "smapi"
        assert settings.bridge.request_timeout_seconds == 10.0

    def test_nested_groups_from_yaml(self, tmp_path):
        """Test loading nested settings groups."""
        from shared.config import Settings

        path = tmp_path / "settings.yaml"
        path.write_text(
            "log_level: DEBUG\n"
            "bridge:\n"
            "  service_name: Den\n"
            "  external_url: https://music.example/\n"
            "server:\n"
            "  enable_audit: false\n"
        )

        settings = Settings.from_yaml(path)

        assert settings.log_level == "DEBUG"
        assert settings.bridge.service_name == "Den"
        assert settings.bridge.base_url == "https://music.example"
        assert settings.server.enable_audit is False

    def test_unused_keys_ignored(self, tmp_path):
        """Test that stray top-level keys such as debug are not settings."""
        from shared.config import Settings

        path = tmp_path / "settings.yaml"
        path.write_text("environment: production\ndebug: true\n")

        settings = Settings.from_yaml(path)

        assert settings.environment == "production"
        assert "debug" not in Settings.model_fields
        assert not hasattr(settings, "debug")

    def test_environment_override(self, monkeypatch):
        """Test that group settings read their env prefix."""
        from shared.config import OAuthSettings

        monkeypatch.setenv("OAUTH_ACCESS_TOKEN_MINUTES", "15")

        assert OAuthSettings().access_token_minutes == 15


class TestLogging:
    """Tests for logging processors."""

    def test_mask_secrets(self):
        """Test that credential values are masked."""
        from shared.logging import MASK, mask_secrets

        event = mask_secrets(None, "info", {
            "event": "Tokens issued",
            "user": "alice",
            "access_token": "abc.def",
            "code": "xyz",
            "password": "",
        })

        assert event["user"] == "alice"
        assert event["access_token"] == MASK
        assert event["code"] == MASK
        assert event["password"] == ""
