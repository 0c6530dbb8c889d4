"""
RSA key pair for signing access tokens. Generated in memory at startup; never written to disk.
The KeyManager is created by the app factory and passed to the issuer, the verifier and the JWKS route.
"""
import base64
import hashlib
import logging

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey, generate_private_key

logger = logging.getLogger(__name__)

_KEY_BITS = 2048
_PUBLIC_EXPONENT = 65537
_KID_LENGTH = 16


class KeyNotInitializedError(RuntimeError):
    """Raised when key material is requested before generate_key_pair()."""


def _b64url_uint(value: int) -> str:
    """Unsigned big-endian integer as unpadded base64url (JWK n/e)."""
    raw = value.to_bytes((value.bit_length() + 7) // 8, "big")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def key_id_for(public_key: RSAPublicKey) -> str:
    """Derive kid from SHA-256 of the DER SubjectPublicKeyInfo; stable for one key pair."""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()[:_KID_LENGTH]


def public_key_to_jwk(public_key: RSAPublicKey, kid: str) -> dict:
    numbers = public_key.public_numbers()
    return {
        "kty": "RSA",
        "use": "sig",
        "alg": "RS256",
        "kid": kid,
        "n": _b64url_uint(numbers.n),
        "e": _b64url_uint(numbers.e),
    }


class KeyManager:
    """Holds the process signing key pair. Written once at startup, read-only afterwards."""

    def __init__(self, key_bits: int = _KEY_BITS) -> None:
        if key_bits < 2048:
            raise ValueError("RSA keys shorter than 2048 bits are not supported")
        self._key_bits = key_bits
        self._private_key: RSAPrivateKey | None = None
        self._kid: str | None = None

    @property
    def initialized(self) -> bool:
        return self._private_key is not None

    def generate_key_pair(self) -> None:
        """
        Generate a fresh pair, replacing any previous one.
        Tokens signed with the old key stay well-formed but no longer verify.
        """
        private_key = generate_private_key(_PUBLIC_EXPONENT, self._key_bits)
        kid = key_id_for(private_key.public_key())
        self._private_key, self._kid = private_key, kid
        logger.info("Generated RSA signing key pair (kid=%s, bits=%s)", kid, self._key_bits)

    def _require(self) -> RSAPrivateKey:
        if self._private_key is None:
            raise KeyNotInitializedError("Key pair not initialized. Call generate_key_pair() first.")
        return self._private_key

    @property
    def private_key(self) -> RSAPrivateKey:
        return self._require()

    @property
    def public_key(self) -> RSAPublicKey:
        return self._require().public_key()

    @property
    def kid(self) -> str:
        self._require()
        return self._kid

    def get_jwks(self) -> dict:
        """JWKS with exactly one entry: the current public key."""
        return {"keys": [public_key_to_jwk(self.public_key, self.kid)]}
