"""
Pytest configuration for chat_gateway. In-memory SQLite for the audit log, cheap bcrypt,
and no role credentials leaking in from the developer's environment.
"""
import copy
import os

# database.py binds its engine at import, so this must run before any chat_gateway import
os.environ["AUDIT_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["OAUTH_BCRYPT_ROUNDS"] = "4"
os.environ["LITELLM_CONFIG_PATH"] = "/nonexistent/litellm_config.yaml"
for _role in ("READONLY", "READWRITE", "ADMIN"):
    for _prefix in ("OAUTH_CLIENT_ID", "OAUTH_CLIENT_SECRET", "OAUTH_USERNAME", "OAUTH_PASSWORD"):
        os.environ.pop(f"{_prefix}_{_role}", None)

import pytest
from fastapi.testclient import TestClient

from chat_gateway.config import RoleSecret, Settings
from chat_gateway.main import create_app
from chat_gateway.model_allowlist import ModelAllowlist

CLIENTS = (
    RoleSecret("ro-client", "ro-secret", "readonly"),
    RoleSecret("rw-client", "rw-secret", "readwrite"),
    RoleSecret("admin-client", "admin-secret", "admin"),
)
USERS = (
    RoleSecret("alice", "alice-pass", "readonly"),
    RoleSecret("root", "root-pass", "admin"),
)


class FakeClock:
    """Settable time source shared by the issuer and the verifier."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedUpstream:
    """
    Stand-in for the completion service. Replies are consumed in order; the last one repeats.
    A reply that is an exception instance is raised instead of returned.
    """

    def __init__(self, *replies) -> None:
        self.replies = list(replies)
        self.calls: list[dict] = []

    async def chat_completions(self, payload: dict) -> dict:
        self.calls.append(copy.deepcopy(payload))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


def final_reply(text: str = "done") -> dict:
    return {
        "id": "chatcmpl-final",
        "object": "chat.completion",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": text}, "finish_reason": "stop"}],
    }


def tool_call_reply(name: str = "get_user", call_id: str = "call_1", arguments: str = "{}") -> dict:
    return {
        "id": "chatcmpl-tools",
        "object": "chat.completion",
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {"id": call_id, "type": "function", "function": {"name": name, "arguments": arguments}}
                    ],
                },
                "finish_reason": "tool_calls",
            }
        ],
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(clients=CLIENTS, users=USERS, bcrypt_rounds=4, token_expires_in=3600)


@pytest.fixture
def upstream():
    return ScriptedUpstream(final_reply("hello"))


@pytest.fixture
def make_client(settings, clock, upstream):
    """Factory: start an app (lifespan included) with test collaborators; overrides via kwargs."""
    clients = []

    def _make(**overrides):
        kwargs = {
            "upstream": upstream,
            "clock": clock,
            "model_allowlist": ModelAllowlist([]),
        }
        kwargs.update(overrides)
        app_settings = kwargs.pop("settings", settings)
        tc = TestClient(create_app(app_settings, **kwargs))
        tc.__enter__()
        clients.append(tc)
        return tc

    yield _make
    for tc in clients:
        tc.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()


@pytest.fixture
def get_token(client):
    def _get(client_id: str = "admin-client", client_secret: str = "admin-secret", **extra) -> str:
        r = client.post(
            "/oauth/token",
            data={"grant_type": "client_credentials", "client_id": client_id, "client_secret": client_secret, **extra},
        )
        assert r.status_code == 200, r.text
        return r.json()["access_token"]

    return _get


@pytest.fixture
def scripted():
    """Expose the reply builders and ScriptedUpstream to test modules."""

    class _Scripted:
        Upstream = ScriptedUpstream
        final = staticmethod(final_reply)
        tool_call = staticmethod(tool_call_reply)

    return _Scripted
