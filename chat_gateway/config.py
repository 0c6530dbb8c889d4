"""
Gateway configuration. All values come from the environment; no secrets in this file.
load_settings() reads os.environ at call time so tests can monkeypatch the env before building an app.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path

# Roles, in the order their env vars are read
ROLES = ("readonly", "readwrite", "admin")

DEFAULT_PROMPTS_DIR = Path(__file__).resolve().parent / "domains"


@dataclass(frozen=True)
class RoleSecret:
    """One (identifier, secret, role) triple as configured; hashed later by credentials.py."""
    identifier: str
    secret: str = field(repr=False)
    role: str


@dataclass(frozen=True)
class Settings:
    host: str = "127.0.0.1"
    port: int = 3000

    # Upstream LiteLLM proxy (OpenAI-compatible)
    litellm_server_url: str = "http://localhost:4000"
    litellm_api_key: str | None = field(default=None, repr=False)
    litellm_config_path: str = "litellm_config.yaml"
    upstream_timeout_seconds: float = 300.0

    # Access token claims and lifetime
    issuer: str = "example-app"
    audience: str = "example-app"
    token_expires_in: int = 3600

    clients: tuple[RoleSecret, ...] = ()
    users: tuple[RoleSecret, ...] = ()
    bcrypt_rounds: int = 12

    max_tool_iterations: int = 10
    prompts_dir: Path = DEFAULT_PROMPTS_DIR
    log_level: str = "INFO"


def _role_pairs(id_prefix: str, secret_prefix: str) -> tuple[RoleSecret, ...]:
    """Read one id/secret pair per role; pairs with an empty half are left out of the active set."""
    pairs = []
    for role in ROLES:
        identifier = os.environ.get(f"{id_prefix}_{role.upper()}", "").strip()
        secret = os.environ.get(f"{secret_prefix}_{role.upper()}", "")
        if identifier and secret:
            pairs.append(RoleSecret(identifier=identifier, secret=secret, role=role))
    return tuple(pairs)


def load_settings() -> Settings:
    return Settings(
        host=os.environ.get("HOST", "127.0.0.1"),
        port=int(os.environ.get("PORT", "3000")),
        litellm_server_url=os.environ.get("LITELLM_SERVER_URL", "http://localhost:4000").rstrip("/"),
        litellm_api_key=os.environ.get("LITELLM_API_KEY") or None,
        litellm_config_path=os.environ.get("LITELLM_CONFIG_PATH", "litellm_config.yaml"),
        upstream_timeout_seconds=float(os.environ.get("UPSTREAM_TIMEOUT_SECONDS", "300")),
        issuer=os.environ.get("OAUTH_ISSUER", "example-app"),
        audience=os.environ.get("OAUTH_AUDIENCE", "example-app"),
        token_expires_in=int(os.environ.get("OAUTH_TOKEN_EXPIRES_IN", "3600")),
        clients=_role_pairs("OAUTH_CLIENT_ID", "OAUTH_CLIENT_SECRET"),
        users=_role_pairs("OAUTH_USERNAME", "OAUTH_PASSWORD"),
        bcrypt_rounds=int(os.environ.get("OAUTH_BCRYPT_ROUNDS", "12")),
        max_tool_iterations=int(os.environ.get("MAX_TOOL_ITERATIONS", "10")),
        prompts_dir=Path(os.environ.get("PROMPTS_DIR") or DEFAULT_PROMPTS_DIR),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
    )


# SQLite audit log (not part of Settings: the engine is bound at import, like any SQLAlchemy module)
DATABASE_URL = os.environ.get("AUDIT_DATABASE_URL", "sqlite:///./gateway_audit.db")
