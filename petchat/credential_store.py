"""
Where the chat client gets its bearer token.

ChatSession reads the token once per connect from a TokenProvider. The
token comes from PETCHAT_TOKEN when set, otherwise from whatever
``petchat token set`` saved last: a file under ~/.petchat by default, or
the OS keychain with PETCHAT_CREDENTIAL_STORE=keyring.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import keyring
import keyring.backends.fail
import keyring.errors

from petchat import config

logger = logging.getLogger("petchat")

KEYRING_SERVICE = "petchat"
KEYRING_USERNAME = "token"

TOKEN_DIR = Path.home() / ".petchat"
TOKEN_FILE = TOKEN_DIR / "token"


class TokenProvider(ABC):
    """Anything that can hand out the current bearer token."""

    @abstractmethod
    def get_token(self) -> Optional[str]:
        """Return the token, or None when the user is not signed in."""


class StaticTokenProvider(TokenProvider):
    """A provider that always returns the same token."""

    def __init__(self, token: Optional[str]):
        self._token = token or None

    def get_token(self) -> Optional[str]:
        return self._token


class TokenStore(TokenProvider):
    """A token saved between runs of the CLI."""

    name = ""

    @abstractmethod
    def save(self, token: str) -> None: ...

    @abstractmethod
    def clear(self) -> bool:
        """Forget the token. Returns False if there was none."""


class PlaintextTokenStore(TokenStore):
    """The token on a single line of ~/.petchat/token, mode 0600."""

    name = "plaintext"

    def save(self, token: str) -> None:
        TOKEN_DIR.mkdir(parents=True, exist_ok=True)
        # Owner-only from creation, so the token is never world-readable
        fd = os.open(TOKEN_FILE, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(token + "\n")
        os.chmod(TOKEN_FILE, 0o600)

    def get_token(self) -> Optional[str]:
        try:
            token = TOKEN_FILE.read_text().strip()
        except FileNotFoundError:
            return None
        return token or None

    def clear(self) -> bool:
        try:
            TOKEN_FILE.unlink()
        except FileNotFoundError:
            return False
        return True


class KeyringTokenStore(TokenStore):
    """The token as the petchat/token secret in the OS keychain."""

    name = "keyring"

    def save(self, token: str) -> None:
        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, token)

    def get_token(self) -> Optional[str]:
        try:
            return keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME) or None
        except keyring.errors.KeyringError as e:
            # A locked or unreachable keychain reads as signed out
            logger.warning(f"Token store: keychain read failed: {e}")
            return None

    def clear(self) -> bool:
        try:
            keyring.delete_password(KEYRING_SERVICE, KEYRING_USERNAME)
        except keyring.errors.PasswordDeleteError:
            return False
        return True


def keychain_available() -> bool:
    """False when keyring resolved to its no-op backend (headless Linux)."""
    return not isinstance(keyring.get_keyring(), keyring.backends.fail.Keyring)


def get_token_store() -> TokenStore:
    """The store named by PETCHAT_CREDENTIAL_STORE, or the file store."""
    if config.CREDENTIAL_STORE == "keyring":
        if keychain_available():
            return KeyringTokenStore()
        logger.warning("Token store: no usable keychain, using ~/.petchat/token instead")
    elif config.CREDENTIAL_STORE != "plaintext":
        logger.warning(f"Token store: unknown store {config.CREDENTIAL_STORE!r}, using plaintext")
    return PlaintextTokenStore()


def get_token_provider() -> TokenProvider:
    """PETCHAT_TOKEN if set, otherwise the configured store."""
    if config.TOKEN:
        return StaticTokenProvider(config.TOKEN)
    return get_token_store()
