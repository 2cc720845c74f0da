"""
Tests for environment-driven settings.
"""

import pytest

from budgetblocks.config import AppSettings, Settings, StorageSettings, validate_all_settings


class TestSettings:
    """Tests for the settings classes."""

    def test_defaults(self, monkeypatch):
        """Test defaults when nothing is configured."""
        monkeypatch.delenv("UNDO_HISTORY_LIMIT", raising=False)
        settings = AppSettings(_env_file=None)
        assert settings.undo_history_limit == 50
        assert settings.default_attribution_rule == "end-month"
        assert settings.base_types_list == ["Checking", "Savings", "Credit", "Loan", "Vault", "Goal"]

    def test_storage_prefix(self, monkeypatch):
        """Test storage settings read the prefixed variables."""
        monkeypatch.setenv("BUDGET_BLOCKS_STORAGE_PATH", "/tmp/budget.json")
        monkeypatch.setenv("BUDGET_BLOCKS_STORAGE_WRITE_THROUGH", "false")
        storage = StorageSettings()
        assert storage.path == "/tmp/budget.json"
        assert storage.write_through is False

    def test_list_settings_are_split(self, monkeypatch):
        """Test comma-separated lists are trimmed."""
        monkeypatch.setenv("FLOW_TYPES", "Transfer, Gift ,,")
        assert Settings().app.flow_types_list == ["Transfer", "Gift"]

    def test_log_level_normalized(self, monkeypatch):
        """Test the log level is upper-cased."""
        monkeypatch.setenv("LOG_LEVEL", " debug ")
        assert AppSettings().log_level == "DEBUG"

    def test_unknown_attribution_rule(self, monkeypatch):
        """Test unknown attribution rules are rejected."""
        monkeypatch.setenv("DEFAULT_ATTRIBUTION_RULE", "mid-month")
        with pytest.raises(ValueError):
            AppSettings()


class TestValidateAllSettings:
    """Tests for the startup check."""

    def test_all_valid(self, monkeypatch):
        """Test a clean environment passes."""
        monkeypatch.delenv("BUDGET_BLOCKS_STORAGE_INDENT", raising=False)
        monkeypatch.delenv("UNDO_HISTORY_LIMIT", raising=False)
        results = validate_all_settings()
        assert results["storage"] is True
        assert results["app"] is True

    def test_invalid_values_reported(self, monkeypatch):
        """Test out-of-range values are reported with their error."""
        monkeypatch.setenv("BUDGET_BLOCKS_STORAGE_INDENT", "20")
        monkeypatch.setenv("UNDO_HISTORY_LIMIT", "0")
        results = validate_all_settings()
        assert results["storage"] is False
        assert results["app"] is False
        assert "storage_error" in results


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
