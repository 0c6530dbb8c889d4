"""
Token endpoint (POST /oauth/token). client_credentials and password grants against the static allowlists.
Issues RS256 access tokens carrying the matched role.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, ClassVar

import jwt
from fastapi import APIRouter, Depends, Form, HTTPException, Request
from sqlalchemy.orm import Session

from chat_gateway.audit import (
    EVENT_TOKEN_DENIED,
    EVENT_TOKEN_ISSUED,
    OUTCOME_FAIL,
    get_client_ip,
    log_audit,
)
from chat_gateway.config import Settings
from chat_gateway.credentials import CredentialStore, parse_basic_auth
from chat_gateway.database import get_db
from chat_gateway.deps import get_clock, get_credential_store, get_key_manager, get_settings
from chat_gateway.keys import KeyManager

logger = logging.getLogger(__name__)
router = APIRouter()


def oauth_error(status_code: int, error: str, description: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error, "error_description": description})


@dataclass(frozen=True)
class Principal:
    """Authenticated caller of a grant: subject goes to `sub`, role to the `role` claim."""
    subject: str
    role: str


@dataclass(frozen=True)
class ClientCredentialsGrant:
    grant_type: ClassVar[str] = "client_credentials"
    required_fields: ClassVar[tuple[str, ...]] = ("client_id", "client_secret")
    unconfigured_description: ClassVar[str] = "OAuth server configuration error: No clients configured"

    client_id: str
    client_secret: str

    @staticmethod
    def is_configured(store: CredentialStore) -> bool:
        return store.has_clients

    def authenticate(self, store: CredentialStore) -> Principal:
        client = store.authenticate_client(self.client_id, self.client_secret)
        if client is None:
            # Same message for unknown client_id and wrong secret
            raise oauth_error(401, "invalid_client", "Invalid client credentials")
        return Principal(subject=client.client_id, role=client.role)


@dataclass(frozen=True)
class PasswordGrant:
    grant_type: ClassVar[str] = "password"
    required_fields: ClassVar[tuple[str, ...]] = ("username", "password")
    unconfigured_description: ClassVar[str] = "OAuth server configuration error: No users configured"

    username: str
    password: str

    @staticmethod
    def is_configured(store: CredentialStore) -> bool:
        return store.has_users

    def authenticate(self, store: CredentialStore) -> Principal:
        user = store.authenticate_user(self.username, self.password)
        if user is None:
            raise oauth_error(401, "invalid_grant", "Invalid username or password")
        return Principal(subject=user.username, role=user.role)


Grant = ClientCredentialsGrant | PasswordGrant

GRANT_TYPES: dict[str, type[ClientCredentialsGrant] | type[PasswordGrant]] = {
    ClientCredentialsGrant.grant_type: ClientCredentialsGrant,
    PasswordGrant.grant_type: PasswordGrant,
}


def parse_grant(grant_type: str | None, fields: dict[str, str | None], store: CredentialStore) -> Grant:
    """
    Resolve the grant variant and its fields. Checks run in a fixed order:
    missing grant_type, unsupported grant_type, nothing configured for the grant, missing fields.
    """
    if not grant_type:
        raise oauth_error(400, "invalid_request", "Missing required parameter: grant_type")
    grant_cls = GRANT_TYPES.get(grant_type)
    if grant_cls is None:
        supported = ", ".join(GRANT_TYPES)
        raise oauth_error(400, "invalid_grant", f"Unsupported grant type. Supported types: {supported}")
    if not grant_cls.is_configured(store):
        raise oauth_error(500, "server_error", grant_cls.unconfigured_description)
    for name in grant_cls.required_fields:
        if not fields.get(name):
            raise oauth_error(400, "invalid_request", f"Missing required parameter: {name}")
    return grant_cls(**{name: fields[name] for name in grant_cls.required_fields})


class TokenIssuer:
    """Mints signed access tokens. Stateless apart from the injected key manager and clock."""

    def __init__(self, key_manager: KeyManager, settings: Settings, clock: Callable[[], float] = time.time) -> None:
        self.key_manager = key_manager
        self.settings = settings
        self.clock = clock

    def build_claims(self, principal: Principal, scope: str | None = None) -> dict:
        now = int(self.clock())
        claims = {
            "iss": self.settings.issuer,
            "sub": principal.subject,
            "aud": self.settings.audience,
            "iat": now,
            "exp": now + self.settings.token_expires_in,
            "role": principal.role,
        }
        if scope:
            claims["scope"] = scope
        return claims

    def sign(self, claims: dict) -> str:
        token = jwt.encode(
            claims,
            self.key_manager.private_key,
            algorithm="RS256",
            headers={"kid": self.key_manager.kid, "typ": "JWT"},
        )
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        return token

    def issue(self, principal: Principal, scope: str | None = None) -> dict:
        """Token response body per RFC 6749 section 5.1."""
        access_token = self.sign(self.build_claims(principal, scope))
        response = {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": self.settings.token_expires_in,
        }
        if scope:
            response["scope"] = scope
        return response


def get_token_issuer(
    key_manager: KeyManager = Depends(get_key_manager),
    settings: Settings = Depends(get_settings),
    clock=Depends(get_clock),
) -> TokenIssuer:
    return TokenIssuer(key_manager, settings, clock)


@router.post("/oauth/token")
def token(
    request: Request,
    grant_type: str | None = Form(None),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    username: str | None = Form(None),
    password: str | None = Form(None),
    scope: str | None = Form(None),
    store: CredentialStore = Depends(get_credential_store),
    issuer: TokenIssuer = Depends(get_token_issuer),
    db: Session = Depends(get_db),
):
    """
    client_credentials: client_id + client_secret in the form, or HTTP Basic (form wins when both present).
    password: username + password.
    """
    if client_id is None and client_secret is None:
        basic = parse_basic_auth(request.headers.get("Authorization"))
        if basic:
            client_id, client_secret = basic

    fields = {
        "client_id": client_id,
        "client_secret": client_secret,
        "username": username,
        "password": password,
    }
    subject = client_id if grant_type == ClientCredentialsGrant.grant_type else username
    ip = get_client_ip(request)
    try:
        grant = parse_grant(grant_type, fields, store)
        principal = grant.authenticate(store)
    except HTTPException as exc:
        log_audit(
            db,
            EVENT_TOKEN_DENIED,
            grant_type=grant_type,
            subject=subject,
            reason=exc.detail["error"],
            ip=ip,
            outcome=OUTCOME_FAIL,
        )
        logger.info("token grant denied: grant_type=%s subject=%s error=%s", grant_type, subject, exc.detail["error"])
        raise

    response = issuer.issue(principal, scope)
    log_audit(db, EVENT_TOKEN_ISSUED, grant_type=grant.grant_type, subject=principal.subject, role=principal.role, ip=ip)
    logger.info("token issued: grant_type=%s sub=%s role=%s", grant.grant_type, principal.subject, principal.role)
    return response
