"""
Chat gateway: OAuth2 token issuance, JWKS, Bearer-protected chat routes in front of a LiteLLM proxy.
Port 3000 by default.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exception_handlers import http_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from chat_gateway.admin import router as admin_router
from chat_gateway.chat import router as chat_router
from chat_gateway.config import Settings, load_settings
from chat_gateway.credentials import CredentialStore
from chat_gateway.database import init_db
from chat_gateway.keys import KeyManager, KeyNotInitializedError
from chat_gateway.model_allowlist import ModelAllowlist
from chat_gateway.orchestrator import ChatOrchestrator, CompletionService
from chat_gateway.prompts import PromptResolver
from chat_gateway.token_endpoint import router as token_router
from chat_gateway.tools import ToolRegistry, default_registry
from chat_gateway.upstream import UpstreamClient
from chat_gateway.well_known import router as well_known_router

logger = logging.getLogger(__name__)


async def _oauth_http_exception_handler(request: Request, exc: StarletteHTTPException):
    """OAuth-style errors ({error, error_description}) are returned at top level, not under `detail`."""
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(exc.detail, status_code=exc.status_code, headers=getattr(exc, "headers", None))
    return await http_exception_handler(request, exc)


async def _validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = jsonable_encoder(exc.errors())
    summary = ", ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}" for err in errors
    )
    return JSONResponse(
        {"error": "invalid_request", "error_description": summary or "Invalid request", "errors": errors},
        status_code=400,
    )


async def _key_not_initialized_handler(request: Request, exc: KeyNotInitializedError):
    logger.error("Signing key requested before initialization")
    return JSONResponse({"error": "server_error", "error_description": str(exc)}, status_code=500)


def create_app(
    settings: Settings | None = None,
    *,
    key_manager: KeyManager | None = None,
    credentials: CredentialStore | None = None,
    upstream: CompletionService | None = None,
    tools: ToolRegistry | None = None,
    model_allowlist: ModelAllowlist | None = None,
    clock=None,
) -> FastAPI:
    """
    Build the app with its process-wide collaborators. Anything not passed in is built from settings;
    the key pair and credential hashes are produced in the lifespan, before the first request.
    """
    settings = settings or load_settings()
    key_manager = key_manager or KeyManager()
    owns_upstream = upstream is None
    if upstream is None:
        upstream = UpstreamClient(
            settings.litellm_server_url,
            api_key=settings.litellm_api_key,
            timeout_seconds=settings.upstream_timeout_seconds,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create audit tables, generate the signing key, hash configured credentials."""
        init_db()
        if not key_manager.initialized:
            key_manager.generate_key_pair()
        if app.state.credentials is None:
            app.state.credentials = CredentialStore.from_settings(
                settings.clients, settings.users, settings.bcrypt_rounds
            )
        if app.state.model_allowlist is None:
            app.state.model_allowlist = ModelAllowlist.from_file(settings.litellm_config_path)
        missing = app.state.prompts.missing()
        if missing:
            logger.warning("No prompt text for %s; those requests will fail", missing)
        yield
        if owns_upstream:
            await upstream.close()

    app = FastAPI(title="Chat Gateway", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.key_manager = key_manager
    app.state.credentials = credentials
    app.state.model_allowlist = model_allowlist
    app.state.clock = clock or time.time
    app.state.prompts = PromptResolver(settings.prompts_dir)
    app.state.orchestrator = ChatOrchestrator(
        upstream,
        tools if tools is not None else default_registry(),
        max_iterations=settings.max_tool_iterations,
    )

    app.add_exception_handler(StarletteHTTPException, _oauth_http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(KeyNotInitializedError, _key_not_initialized_handler)

    app.include_router(token_router, tags=["oauth"])
    app.include_router(well_known_router, tags=["well-known"])
    app.include_router(admin_router)
    app.include_router(chat_router, tags=["chat"])

    @app.get("/health")
    def health():
        """Liveness probe."""
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, _settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host=_settings.host, port=_settings.port)
