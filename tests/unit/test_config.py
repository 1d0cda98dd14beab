"""Unit tests for service configuration checks."""

import pytest

from src.config import config, validate_config_for_service


@pytest.mark.unit
class TestServerConfig:
    """Test startup validation of the spin service settings."""

    def test_defaults_are_valid(self):
        validate_config_for_service("server")

    def test_default_bet_outside_bounds(self, monkeypatch):
        monkeypatch.setattr(config, "default_bet", 1.0)

        with pytest.raises(ValueError, match="DEFAULT_BET 1.0"):
            validate_config_for_service("server")

    def test_default_paylines_out_of_range(self, monkeypatch):
        monkeypatch.setattr(config, "default_paylines", 0)

        with pytest.raises(ValueError, match="DEFAULT_PAYLINES"):
            validate_config_for_service("server")

    def test_errors_are_collected(self, monkeypatch):
        monkeypatch.setattr(config, "min_bet", 0.6)
        monkeypatch.setattr(config, "default_network", "base")

        with pytest.raises(ValueError) as exc_info:
            validate_config_for_service("server")

        message = str(exc_info.value)
        assert "MIN_BET must not exceed MAX_BET" in message
        assert "DEFAULT_NETWORK 'base'" in message
        assert "DEFAULT_BET" in message
