"""Dashboard service users.

A fresh instance has a single ``admin`` user whose password is ``admin``.
That account is flagged until the password is changed; the flag is
reported, not enforced.
"""

import asyncio
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Any

from scrapestack.adapters.logging import get_logger
from scrapestack.core.errors import AuthenticationError, ConfigError
from scrapestack.core.ports import StateStoragePort

logger = get_logger(__name__)

DEFAULT_USERNAME = "admin"
DEFAULT_PASSWORD = "admin"
PBKDF2_ITERATIONS = 260_000

_KIND = "user"


def hash_password(password: str, salt: bytes | None = None) -> dict[str, Any]:
    salt = salt or secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PBKDF2_ITERATIONS)
    return {
        "algorithm": "pbkdf2_sha256",
        "iterations": PBKDF2_ITERATIONS,
        "salt": salt.hex(),
        "hash": digest.hex(),
    }


def verify_password(password: str, stored: dict[str, Any]) -> bool:
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode(),
        bytes.fromhex(stored["salt"]),
        int(stored["iterations"]),
    )
    return hmac.compare_digest(digest.hex(), stored["hash"])


@dataclass(frozen=True)
class User:
    username: str
    must_change_password: bool = False


class UserStore:
    """Users persisted in a StateStoragePort.

    Args:
        storage: Document store; users survive restarts if it does.
    """

    def __init__(self, storage: StateStoragePort) -> None:
        self._storage = storage

    async def ensure_default(self) -> None:
        """Seed admin/admin on an empty store."""
        if await self._storage.list(_KIND):
            return
        password = await asyncio.to_thread(hash_password, DEFAULT_PASSWORD)
        await self._storage.put(
            _KIND,
            DEFAULT_USERNAME,
            {
                "username": DEFAULT_USERNAME,
                "password": password,
                "must_change_password": True,
            },
        )
        logger.warning(
            "Created default user %r with the default password; change it",
            DEFAULT_USERNAME,
        )

    async def authenticate(self, username: str, password: str) -> User:
        """Check credentials.

        Raises:
            AuthenticationError: Unknown user or wrong password.
        """
        await self.ensure_default()
        doc = await self._storage.get(_KIND, username)
        if doc is None:
            raise AuthenticationError("invalid username or password")
        # PBKDF2 is CPU bound; keep it off the event loop
        if not await asyncio.to_thread(verify_password, password, doc["password"]):
            raise AuthenticationError("invalid username or password")
        return User(username, bool(doc.get("must_change_password")))

    async def change_password(self, username: str, old: str, new: str) -> User:
        """Replace a password after checking the current one.

        Raises:
            AuthenticationError: ``old`` is wrong.
            ConfigError: ``new`` is empty or equal to ``old``.
        """
        await self.authenticate(username, old)
        if not new:
            raise ConfigError("new password must not be empty", "password")
        if new == old:
            raise ConfigError(
                "new password must differ from the current one", "password"
            )
        hashed = await asyncio.to_thread(hash_password, new)
        await self._storage.put(
            _KIND,
            username,
            {
                "username": username,
                "password": hashed,
                "must_change_password": False,
            },
        )
        logger.info("Password changed for %r", username)
        return User(username, must_change_password=False)
