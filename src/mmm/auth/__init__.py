"""
Authentication module for mmm

Password login with the terminal echo disabled while the password is
typed, and an optional access token kept in the OS keyring so later runs
can skip the prompt.
"""

from typing import Callable, Optional
import json
import logging

import click
import keyring
from keyring.errors import KeyringError

from ..config import Settings
from ..core.errors import AuthError
from ..core.storage import StateStore, StorageError

logger = logging.getLogger(__name__)


def prompt_password() -> str:
    """Read a password with echo disabled; click restores the terminal on every exit path"""
    return click.prompt("Password", hide_input=True, prompt_suffix=": ")


class TokenManager:
    """Keeps a user's access token in the OS keyring"""

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.service_name = "mmm"
        self.key_name = f"token_{user_id}"

    def save(self, access_token: str, device_id: Optional[str], homeserver: Optional[str]) -> bool:
        """Save a login to the keyring"""
        data = json.dumps({
            'access_token': access_token,
            'device_id': device_id,
            'homeserver': homeserver,
        })
        try:
            keyring.set_password(self.service_name, self.key_name, data)
            return True
        except KeyringError as e:
            logger.warning("Could not save login to keyring: %s", e)
            return False

    def load(self) -> Optional[dict]:
        """Load a saved login, None if there is none"""
        try:
            data = keyring.get_password(self.service_name, self.key_name)
        except KeyringError as e:
            logger.warning("Could not read keyring: %s", e)
            return None
        if not data:
            return None

        try:
            login = json.loads(data)
        except ValueError:
            logger.warning("Ignoring unreadable login saved for %s", self.user_id)
            return None
        if not isinstance(login, dict) or not login.get('access_token'):
            return None
        return login

    def delete(self) -> bool:
        """Forget the saved login"""
        try:
            keyring.delete_password(self.service_name, self.key_name)
            return True
        except KeyringError as e:
            logger.debug("Could not delete saved login: %s", e)
            return False


class PasswordAuth:
    """Logs a MatrixSession in, from the keyring if possible, else by password"""

    def __init__(
        self,
        session,
        settings: Optional[Settings] = None,
        store: Optional[StateStore] = None,
        tokens: Optional[TokenManager] = None,
        prompt: Callable[[], str] = prompt_password,
    ):
        self.session = session
        self.settings = settings or Settings()
        self.store = store
        self.tokens = tokens if tokens is not None else TokenManager(session.user_id)
        self.prompt = prompt

    async def authenticate(self) -> str:
        """Log in and return the device ID. Raises AuthError when every attempt fails."""
        if self.settings.remember_login and await self._restore():
            return self.session.device_id

        device_id = await self._load_device_id()

        for attempt in range(1, self.settings.login_attempts + 1):
            password = self.prompt()
            try:
                device_id = await self.session.login(password, device_id=device_id)
                break
            except AuthError as e:
                logger.error("Login failed (attempt %d of %d): %s", attempt, self.settings.login_attempts, e)
        else:
            raise AuthError(f"Could not log in as {self.session.user_id}")

        await self._save_device_id(device_id)
        if self.settings.remember_login:
            self.tokens.save(self.session.access_token, device_id, self.session.homeserver)
        return device_id

    async def _restore(self) -> bool:
        login = self.tokens.load()
        if not login:
            return False
        if login.get('homeserver') and login['homeserver'] != self.session.homeserver:
            logger.info("Saved login is for %s, ignoring it", login['homeserver'])
            return False

        self.session.restore(login['access_token'], login.get('device_id'))
        try:
            await self.session.whoami()
        except AuthError as e:
            logger.info("Saved login no longer valid: %s", e)
            self.session.restore(None, None)
            self.tokens.delete()
            return False

        logger.info("Restored saved login for %s", self.session.user_id)
        return True

    async def _load_device_id(self) -> Optional[str]:
        if self.store is None:
            return None
        try:
            return await self.store.load_device_id()
        except StorageError as e:
            logger.warning("%s", e)
            return None

    async def _save_device_id(self, device_id: Optional[str]) -> None:
        if self.store is None or not device_id:
            return
        try:
            await self.store.save_device_id(device_id)
        except StorageError as e:
            logger.warning("%s", e)


__all__ = ['PasswordAuth', 'TokenManager', 'prompt_password']
