"""
Static credential allowlists for the token endpoint (client_credentials and password grants).
Secrets from the environment are bcrypt-hashed once at startup; plaintext is not kept.
"""
import base64
import binascii
import hashlib
import logging
from dataclasses import dataclass

import bcrypt

from chat_gateway.config import RoleSecret

logger = logging.getLogger(__name__)


def _prehash(secret: str) -> bytes:
    # bcrypt only reads 72 bytes; digest first so every byte of the secret counts
    return base64.b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


def hash_secret(secret: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(_prehash(secret), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_secret(plain: str, hashed: str) -> bool:
    return bcrypt.checkpw(_prehash(plain), hashed.encode("utf-8"))


@dataclass(frozen=True)
class ClientCredential:
    client_id: str
    secret_hash: str
    role: str


@dataclass(frozen=True)
class UserCredential:
    username: str
    password_hash: str
    role: str


class CredentialStore:
    """Read-only lookup over the configured clients and users."""

    def __init__(self, clients: list[ClientCredential], users: list[UserCredential], rounds: int = 12) -> None:
        self._clients = {c.client_id: c for c in clients}
        self._users = {u.username: u for u in users}
        # Compared against on unknown identifiers so a miss costs the same as a wrong secret
        self._dummy_hash = hash_secret("unknown-identifier", rounds)

    @classmethod
    def from_settings(cls, clients: tuple[RoleSecret, ...], users: tuple[RoleSecret, ...], rounds: int = 12) -> "CredentialStore":
        store = cls(
            [ClientCredential(c.identifier, hash_secret(c.secret, rounds), c.role) for c in clients],
            [UserCredential(u.identifier, hash_secret(u.secret, rounds), u.role) for u in users],
            rounds,
        )
        logger.info(
            "Loaded credentials: clients=%s users=%s",
            [c.role for c in clients],
            [u.role for u in users],
        )
        return store

    @property
    def has_clients(self) -> bool:
        return bool(self._clients)

    @property
    def has_users(self) -> bool:
        return bool(self._users)

    def authenticate_client(self, client_id: str, client_secret: str) -> ClientCredential | None:
        client = self._clients.get(client_id)
        if not verify_secret(client_secret, client.secret_hash if client else self._dummy_hash):
            return None
        return client

    def authenticate_user(self, username: str, password: str) -> UserCredential | None:
        user = self._users.get(username)
        if not verify_secret(password, user.password_hash if user else self._dummy_hash):
            return None
        return user


def parse_basic_auth(header_value: str | None) -> tuple[str, str] | None:
    """Parse 'Basic <base64(client_id:client_secret)>'. Returns (client_id, client_secret) or None."""
    if not header_value or not header_value.strip().lower().startswith("basic "):
        return None
    try:
        decoded = base64.b64decode(header_value.strip()[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    client_id, _, client_secret = decoded.partition(":")
    return client_id.strip(), client_secret
