"""Keyring-backed storage for the server API key."""

import logging
import os
from typing import Optional

import keyring
import keyring.errors

log = logging.getLogger(__name__)

KEY_API_KEY = "api_key"


def _keyring_service_name() -> str:
    """Use a separate keyring namespace when PHOTOSYNC_CONFIG_DIR is set (tests, second profile)."""
    if os.environ.get("PHOTOSYNC_CONFIG_DIR", "").strip():
        return "PhotoSync-Custom"
    return "PhotoSync"


class ApiKeyStore:
    """
    Keeps the API key in the OS keyring (Windows Credential Manager, macOS Keychain,
    Linux Secret Service). PHOTOSYNC_API_KEY in the environment takes precedence.
    """

    def get(self) -> Optional[str]:
        """Return the API key, or None if neither env nor keyring has one."""
        env = os.environ.get("PHOTOSYNC_API_KEY", "").strip()
        if env:
            return env
        try:
            stored = keyring.get_password(_keyring_service_name(), KEY_API_KEY)
        except Exception as e:
            log.warning("Could not read stored API key: %s", e)
            return None
        return stored or None

    def set(self, api_key: str) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("API key cannot be empty")
        keyring.set_password(_keyring_service_name(), KEY_API_KEY, api_key.strip())

    def clear(self) -> None:
        try:
            keyring.delete_password(_keyring_service_name(), KEY_API_KEY)
        except keyring.errors.PasswordDeleteError:
            pass
