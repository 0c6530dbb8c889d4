"""
Bearer token verification for protected routes.
Tokens are verified against the in-process KeyManager public key; no JWKS fetch is needed here.
"""
import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Annotated, Callable, Mapping

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from chat_gateway.audit import EVENT_AUTH_REJECTED, OUTCOME_FAIL, get_client_ip, log_audit
from chat_gateway.config import Settings
from chat_gateway.database import get_db
from chat_gateway.deps import get_clock, get_key_manager, get_settings
from chat_gateway.keys import KeyManager

logger = logging.getLogger(__name__)

_REQUIRED_CLAIMS = ["exp", "iat", "sub"]


@dataclass(frozen=True)
class AccessTokenClaims:
    """Verified access token claims; read-only, lives for one request."""
    issuer: str | None
    subject: str
    audience: str | list[str] | None
    issued_at: int
    expires_at: int
    role: str | None
    scope: str | None
    raw: Mapping

    @classmethod
    def from_payload(cls, payload: dict) -> "AccessTokenClaims":
        return cls(
            issuer=payload.get("iss"),
            subject=payload["sub"],
            audience=payload.get("aud"),
            issued_at=payload["iat"],
            expires_at=payload["exp"],
            role=payload.get("role"),
            scope=payload.get("scope"),
            raw=MappingProxyType(dict(payload)),
        )


class TokenVerifier:
    """
    Signature, issuer and audience are checked by PyJWT; the validity window is checked here
    against the injected clock. A token is valid for nbf <= now < exp.
    """

    def __init__(self, key_manager: KeyManager, settings: Settings, clock: Callable[[], float] = time.time) -> None:
        self.key_manager = key_manager
        self.settings = settings
        self.clock = clock

    def verify(self, token: str) -> AccessTokenClaims:
        """Raises jwt.ExpiredSignatureError, jwt.ImmatureSignatureError or another jwt.InvalidTokenError."""
        payload = jwt.decode(
            token,
            self.key_manager.public_key,
            algorithms=["RS256"],
            audience=self.settings.audience,
            issuer=self.settings.issuer,
            options={
                "verify_exp": False,
                "verify_nbf": False,
                "verify_iat": False,
                "require": _REQUIRED_CLAIMS,
            },
        )
        try:
            expires_at = float(payload["exp"])
            not_before = float(payload["nbf"]) if "nbf" in payload else None
        except (TypeError, ValueError) as e:
            raise jwt.DecodeError("exp and nbf must be numeric") from e

        now = self.clock()
        if not_before is not None and now < not_before:
            raise jwt.ImmatureSignatureError("The token is not yet valid (nbf)")
        if now >= expires_at:
            raise jwt.ExpiredSignatureError("Signature has expired")
        return AccessTokenClaims.from_payload(payload)


def get_token_verifier(
    key_manager: Annotated[KeyManager, Depends(get_key_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
    clock=Depends(get_clock),
) -> TokenVerifier:
    return TokenVerifier(key_manager, settings, clock)


def _unauthorized(description: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": "unauthorized", "error_description": description},
        headers={"WWW-Authenticate": "Bearer"},
    )


def extract_bearer_token(authorization: str | None) -> str:
    """Require exactly 'Bearer <token>' (two space-separated parts, scheme case-sensitive)."""
    if not authorization:
        raise _unauthorized("Missing Authorization header")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer":
        raise _unauthorized("Invalid Authorization header format. Expected: Bearer <token>")
    if not parts[1]:
        raise _unauthorized("Missing access token")
    return parts[1]


def verify_request(
    authorization: str | None,
    verifier: TokenVerifier,
) -> AccessTokenClaims:
    token = extract_bearer_token(authorization)
    try:
        return verifier.verify(token)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.ImmatureSignatureError:
        raise _unauthorized("Token not yet valid")
    except jwt.InvalidTokenError as e:
        logger.debug("JWT verification failed: %s", e)
        raise _unauthorized("Invalid or malformed token")


def get_claims(
    request: Request,
    verifier: Annotated[TokenVerifier, Depends(get_token_verifier)],
    db: Annotated[Session, Depends(get_db)],
    authorization: Annotated[str | None, Header()] = None,
) -> AccessTokenClaims:
    """Dependency: valid Bearer token -> claims, also exposed on request.state.auth for this request."""
    try:
        claims = verify_request(authorization, verifier)
    except HTTPException as exc:
        log_audit(
            db,
            EVENT_AUTH_REJECTED,
            reason=exc.detail["error_description"][:64],
            ip=get_client_ip(request),
            outcome=OUTCOME_FAIL,
        )
        raise
    request.state.auth = claims
    return claims


def require_role(*roles: str):
    """Dependency factory: require one of the given roles in the access token."""

    def _check(claims: Annotated[AccessTokenClaims, Depends(get_claims)]) -> AccessTokenClaims:
        if claims.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "insufficient_role",
                    "error_description": f"Role '{' or '.join(roles)}' required",
                },
            )
        return claims

    return Depends(_check)


RequireAuth = Depends(get_claims)
RequireAdmin = require_role("admin")
