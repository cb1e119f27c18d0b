# tests/test_secret_store.py
"""
Tests for the settings-backed provider API key store.
"""

from unittest.mock import patch

from quotesync.secret_store import SettingsSecretStore


class TestSettingsSecretStore:

    def test_keys_are_case_insensitive(self):
        store = SettingsSecretStore({"open_exchange_rates": "abc"})

        assert store.get_secret("OPEN_EXCHANGE_RATES") == "abc"
        assert store.get_secret(" Open_Exchange_Rates ") == "abc"

    def test_missing_key(self):
        assert SettingsSecretStore({}).get_secret("YAHOO") is None

    def test_runtime_key_shadows_configured(self):
        store = SettingsSecretStore({"OPEN_EXCHANGE_RATES": "from-env"})

        store.set_secret("open_exchange_rates", "runtime")

        assert store.get_secret("OPEN_EXCHANGE_RATES") == "runtime"

    def test_delete(self):
        store = SettingsSecretStore({"OPEN_EXCHANGE_RATES": "abc"})

        store.delete_secret("OPEN_EXCHANGE_RATES")
        store.delete_secret("NEVER_SET")

        assert store.get_secret("OPEN_EXCHANGE_RATES") is None

    def test_defaults_to_settings(self):
        with patch("quotesync.secret_store.settings") as mock_settings:
            mock_settings.provider_api_keys = {"OPEN_EXCHANGE_RATES": "configured"}
            store = SettingsSecretStore()

        assert store.get_secret("OPEN_EXCHANGE_RATES") == "configured"

    def test_does_not_share_state_with_source(self):
        source = {"OPEN_EXCHANGE_RATES": "abc"}
        store = SettingsSecretStore(source)

        store.set_secret("OPEN_EXCHANGE_RATES", "changed")

        assert source["OPEN_EXCHANGE_RATES"] == "abc"
