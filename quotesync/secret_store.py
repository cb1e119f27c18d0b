# quotesync/secret_store.py
"""
Provider API key storage.

Keys are read from settings.provider_api_keys (PROVIDER_API_KEYS env var,
JSON map of provider id -> key). Keys set at runtime live in memory only
and shadow the configured ones until deleted.
"""

import logging
import threading

from quotesync.config import settings

logger = logging.getLogger(__name__)


class SettingsSecretStore:
    """
    SecretStoreProtocol backed by settings plus an in-memory overlay.

    Example:
        store = SettingsSecretStore()
        store.set_secret("OPEN_EXCHANGE_RATES", "abc123")
        store.get_secret("open_exchange_rates")   # "abc123"
    """

    def __init__(self, secrets: dict[str, str] | None = None) -> None:
        initial = settings.provider_api_keys if secrets is None else secrets
        self._secrets = {self._key(k): v for k, v in initial.items()}
        self._lock = threading.Lock()

    @staticmethod
    def _key(key: str) -> str:
        return key.strip().upper()

    def get_secret(self, key: str) -> str | None:
        with self._lock:
            return self._secrets.get(self._key(key))

    def set_secret(self, key: str, value: str) -> None:
        with self._lock:
            self._secrets[self._key(key)] = value
        logger.info(f"API key for '{self._key(key)}' updated")

    def delete_secret(self, key: str) -> None:
        with self._lock:
            self._secrets.pop(self._key(key), None)
