"""
Tests for Bearer verification: header parsing, signature, validity window, role gating.
"""
import jwt
import pytest
from fastapi import HTTPException

from chat_gateway.auth import TokenVerifier, extract_bearer_token
from chat_gateway.config import Settings
from chat_gateway.keys import KeyManager
from chat_gateway.token_endpoint import Principal, TokenIssuer


@pytest.fixture(scope="module")
def key_manager():
    km = KeyManager()
    km.generate_key_pair()
    return km


@pytest.fixture
def issuer(key_manager, settings, clock):
    return TokenIssuer(key_manager, settings, clock)


@pytest.fixture
def verifier(key_manager, settings, clock):
    return TokenVerifier(key_manager, settings, clock)


def _tamper_signature(token: str, position: int) -> str:
    header, payload, signature = token.split(".")
    # The last base64url char carries padding bits, so only interior positions are guaranteed to change bytes
    ch = signature[position]
    replacement = "A" if ch != "A" else "B"
    return ".".join([header, payload, signature[:position] + replacement + signature[position + 1:]])


# --- verifier unit tests ---


def test_round_trip_preserves_claims(issuer, verifier):
    claims = issuer.build_claims(Principal("svc", "readwrite"), scope="chat.read")
    verified = verifier.verify(issuer.sign(claims))
    assert dict(verified.raw) == claims
    assert verified.subject == "svc"
    assert verified.role == "readwrite"
    assert verified.scope == "chat.read"


def test_claims_are_read_only(issuer, verifier):
    verified = verifier.verify(issuer.sign(issuer.build_claims(Principal("svc", "readonly"))))
    with pytest.raises(TypeError):
        verified.raw["role"] = "admin"
    with pytest.raises(AttributeError):
        verified.role = "admin"


def test_accepted_until_just_before_expiry(issuer, verifier, clock):
    token = issuer.sign(issuer.build_claims(Principal("svc", "readonly")))
    clock.advance(3599)
    assert verifier.verify(token).subject == "svc"


def test_rejected_exactly_at_expiry(issuer, verifier, clock):
    token = issuer.sign(issuer.build_claims(Principal("svc", "readonly")))
    clock.advance(3600)
    with pytest.raises(jwt.ExpiredSignatureError):
        verifier.verify(token)


def test_not_yet_valid(issuer, verifier, clock):
    claims = issuer.build_claims(Principal("svc", "readonly"))
    claims["nbf"] = claims["iat"] + 100
    token = issuer.sign(claims)
    with pytest.raises(jwt.ImmatureSignatureError):
        verifier.verify(token)
    clock.advance(100)
    assert verifier.verify(token).subject == "svc"


@pytest.mark.parametrize("position", [0, 1, 17, 100, 200, 300, 340])
def test_tampered_signature_never_verifies(issuer, verifier, position):
    token = issuer.sign(issuer.build_claims(Principal("svc", "admin")))
    with pytest.raises(jwt.InvalidTokenError):
        verifier.verify(_tamper_signature(token, position))


def test_token_from_another_key_is_rejected(settings, clock, verifier):
    other = KeyManager()
    other.generate_key_pair()
    token = TokenIssuer(other, settings, clock).sign(TokenIssuer(other, settings, clock).build_claims(Principal("svc", "admin")))
    with pytest.raises(jwt.InvalidSignatureError):
        verifier.verify(token)


def test_wrong_audience_is_rejected(key_manager, clock, verifier):
    foreign = TokenIssuer(key_manager, Settings(audience="someone-else"), clock)
    token = foreign.sign(foreign.build_claims(Principal("svc", "admin")))
    with pytest.raises(jwt.InvalidAudienceError):
        verifier.verify(token)


def test_unsigned_token_is_rejected(issuer, verifier):
    token = jwt.encode(issuer.build_claims(Principal("svc", "admin")), None, algorithm="none")
    with pytest.raises(jwt.InvalidTokenError):
        verifier.verify(token)


def test_missing_required_claim_is_rejected(key_manager, verifier, clock):
    token = jwt.encode({"iss": "example-app", "aud": "example-app", "exp": int(clock.now) + 60},
                       key_manager.private_key, algorithm="RS256")
    with pytest.raises(jwt.MissingRequiredClaimError):
        verifier.verify(token)


@pytest.mark.parametrize(
    "header",
    ["Basic abc", "bearer abc", "Bearer", "Bearer a b", "Token abc", "Bearer  abc"],
)
def test_malformed_headers(header):
    with pytest.raises(HTTPException) as exc_info:
        extract_bearer_token(header)
    assert exc_info.value.status_code == 401


def test_well_formed_header():
    assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"


# --- middleware behaviour through the protected chat route ---


def _chat(client, token=None, header=None):
    headers = {}
    if header is not None:
        headers["Authorization"] = header
    elif token is not None:
        headers["Authorization"] = f"Bearer {token}"
    return client.post("/authorized/minnow/chat", json={"messages": "hi"}, headers=headers)


def test_missing_header_is_401(client, upstream):
    r = _chat(client)
    assert r.status_code == 401
    assert r.json()["error_description"] == "Missing Authorization header"
    assert r.headers["www-authenticate"] == "Bearer"
    assert upstream.calls == []


def test_malformed_header_is_401(client, upstream):
    r = _chat(client, header="Token abc")
    assert r.status_code == 401
    assert "Invalid Authorization header format" in r.json()["error_description"]
    assert upstream.calls == []


def test_garbage_bearer_never_reaches_route(client, upstream):
    r = _chat(client, header="Bearer not-a-jwt-at-all")
    assert r.status_code == 401
    assert r.json() == {"error": "unauthorized", "error_description": "Invalid or malformed token"}
    assert upstream.calls == []


def test_garbage_bearer_with_invalid_body_is_still_401(client, upstream):
    r = client.post("/authorized/minnow/chat", json={}, headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401
    assert upstream.calls == []


def test_expired_token_is_distinguished(client, clock, get_token, upstream):
    token = get_token()
    clock.advance(3600)
    r = _chat(client, token=token)
    assert r.status_code == 401
    assert r.json()["error_description"] == "Token has expired"
    assert upstream.calls == []


def test_valid_token_reaches_route(client, get_token, upstream):
    r = _chat(client, token=get_token())
    assert r.status_code == 200
    assert len(upstream.calls) == 1


def test_token_from_previous_app_instance_is_rejected(make_client, get_token):
    token = get_token()
    other = make_client()
    r = _chat(other, token=token)
    assert r.status_code == 401
    assert r.json()["error_description"] == "Invalid or malformed token"


# --- role gating ---


def test_audit_requires_admin_role(client, get_token):
    assert client.get("/audit").status_code == 401
    r = client.get("/audit", headers={"Authorization": f"Bearer {get_token('ro-client', 'ro-secret')}"})
    assert r.status_code == 403
    assert r.json()["error"] == "insufficient_role"


def test_audit_lists_rejections_for_admin(client, get_token):
    _chat(client, header="Bearer junk")
    r = client.get(
        "/audit",
        params={"event_type": "auth_rejected"},
        headers={"Authorization": f"Bearer {get_token()}"},
    )
    assert r.status_code == 200
    events = r.json()
    assert events and all(e["event_type"] == "auth_rejected" for e in events)
    assert events[0]["outcome"] == "fail"
