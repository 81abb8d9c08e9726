"""Server credentials: password in the OS keyring, the rest in config."""

from __future__ import annotations

import logging

import keyring
import keyring.errors

from timelog_provider.services.config_manager import ConfigManager

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "tfs-timelog-provider"


class CredentialManager:
    """Store and look up the credentials used to reach the server.

    The password (or personal access token) lives in the OS keyring,
    keyed by server URL and username.  The URL and username are
    non-secret and go to the :class:`ConfigManager`.
    """

    def __init__(self, config: ConfigManager) -> None:
        self._config = config

    @property
    def server_url(self) -> str:
        """Return the stored collection URL."""
        return str(self._config.get("server_url", ""))

    @property
    def username(self) -> str:
        """Return the stored username (may be empty for token auth)."""
        return str(self._config.get("username", ""))

    @property
    def is_configured(self) -> bool:
        """Return True when a server URL is set."""
        return bool(self.server_url)

    def login(self, url: str, username: str, password: str) -> None:
        """Persist credentials for *url*; the password goes to the keyring."""
        url = url.rstrip("/")
        keyring.set_password(KEYRING_SERVICE, _account(url, username), password)
        self._config.update({"server_url": url, "username": username})
        logger.info("Credentials stored for %s", url)

    def get_password(self) -> str | None:
        """Retrieve the password for the stored URL and username."""
        if not self.is_configured:
            return None
        return keyring.get_password(KEYRING_SERVICE, _account(self.server_url, self.username))

    def logout(self) -> None:
        """Forget the stored password, URL and username."""
        logger.info("Clearing stored credentials")
        if self.is_configured:
            try:
                keyring.delete_password(KEYRING_SERVICE, _account(self.server_url, self.username))
            except keyring.errors.PasswordDeleteError:
                pass
        self._config.update({"server_url": "", "username": ""})


def _account(url: str, username: str) -> str:
    return f"{username}@{url}"
