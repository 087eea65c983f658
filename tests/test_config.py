"""Tests for TerminalConfig."""

from polyterminal.config import TerminalConfig


class TestTerminalConfig:
    """Tests for TerminalConfig."""

    def test_defaults_validate(self):
        """Test default configuration is valid."""
        config = TerminalConfig()
        assert config.validate() == []
        assert config.poll_interval_ms == 2000
        assert config.max_reconnect_attempts == 5
        assert config.effective_ledger_capacity == 100

    def test_from_env(self, monkeypatch):
        """Test environment variables override defaults."""
        monkeypatch.setenv("FUNCTIONS_URL", "https://example.test/functions/v1")
        monkeypatch.setenv("POLL_INTERVAL_MS", "500")
        monkeypatch.setenv("WHALE_ONLY", "true")
        monkeypatch.setenv("MAX_RECONNECT_ATTEMPTS", "3")

        config = TerminalConfig.from_env()

        assert config.functions_url == "https://example.test/functions/v1"
        assert config.poll_interval_ms == 500
        assert config.whale_only is True
        assert config.max_reconnect_attempts == 3
        assert config.effective_ledger_capacity == 500

    def test_from_env_file(self, monkeypatch, tmp_path):
        """Test .env values load but do not override the environment."""
        env_file = tmp_path / ".env"
        env_file.write_text("CATALOG_ORDER=liquidity\nLOG_LEVEL=WARNING\n")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        # Registered so the value loaded from the file is removed afterwards
        monkeypatch.setenv("CATALOG_ORDER", "")
        monkeypatch.delenv("CATALOG_ORDER")

        config = TerminalConfig.from_env_file(str(env_file))

        assert config.catalog_order == "liquidity"
        assert config.log_level == "DEBUG"

    def test_from_missing_env_file(self):
        """Test a missing .env file falls back to the environment."""
        config = TerminalConfig.from_env_file("/nonexistent/.env")
        assert isinstance(config, TerminalConfig)

    def test_validate_errors(self):
        """Test invalid values are reported."""
        config = TerminalConfig(
            poll_interval_ms=10,
            ledger_capacity=0,
            reconnect_base_delay_ms=2000,
            reconnect_max_delay_ms=1000,
            max_reconnect_attempts=-1,
        )
        errors = config.validate()
        assert len(errors) == 4
        assert any("POLL_INTERVAL_MS" in e for e in errors)
        assert any("RECONNECT_MAX_DELAY_MS" in e for e in errors)
