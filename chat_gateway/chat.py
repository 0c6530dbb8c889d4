"""
Chat endpoints. POST /{level}/chat is open; POST /authorized/{level}/chat requires a Bearer token.
`level` is one of the fish labels (minnow, shark) that map to the standard and enhanced prompts.
"""
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field, field_validator

from chat_gateway.auth import AccessTokenClaims, get_claims
from chat_gateway.deps import get_model_allowlist, get_orchestrator, get_prompt_resolver
from chat_gateway.model_allowlist import ModelAllowlist
from chat_gateway.orchestrator import ChatOrchestrator, ChatTurn, ToolCallLimitExceeded, normalize_messages
from chat_gateway.prompts import LABEL_TO_LEVEL, Domain, LevelLabel, PromptLookupError, PromptResolver
from chat_gateway.tools import ToolContext
from chat_gateway.upstream import UpstreamError

logger = logging.getLogger(__name__)
router = APIRouter()

_ALLOWED_QUERY_PARAMS = {"domain", "model"}


class ChatRequest(BaseModel):
    messages: list[ChatTurn] = Field(min_length=1)

    @field_validator("messages", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        return normalize_messages(value)


def _reject_unknown_query_params(request: Request) -> None:
    unknown = sorted(set(request.query_params) - _ALLOWED_QUERY_PARAMS)
    if unknown:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "invalid_request",
                "error_description": f"Unrecognized query parameter(s): {', '.join(unknown)}",
            },
        )


async def _handle_chat(
    request: Request,
    level: LevelLabel,
    domain: Domain,
    model: str | None,
    body: ChatRequest,
    claims: AccessTokenClaims | None,
) -> dict:
    _reject_unknown_query_params(request)
    allowlist: ModelAllowlist = get_model_allowlist(request)
    if model and not allowlist.is_allowed(model):
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_request", "error_description": f"Model '{model}' is not allowed"},
        )

    resolver: PromptResolver = get_prompt_resolver(request)
    try:
        system_prompt = resolver.get_system_prompt(domain, LABEL_TO_LEVEL[level])
    except PromptLookupError as e:
        logger.error("Prompt lookup failed: %s", e)
        raise HTTPException(status_code=500, detail={"error": "server_error", "error_description": str(e)})

    orchestrator: ChatOrchestrator = get_orchestrator(request)
    try:
        conversation = await orchestrator.run(
            system_prompt,
            body.messages,
            model=model,
            context=ToolContext(claims=claims),
        )
    except UpstreamError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={
                "error": "upstream_error",
                "error_description": f"LiteLLM server error ({e.status_code})",
                "upstream_body": e.body,
            },
        )
    except ToolCallLimitExceeded as e:
        raise HTTPException(
            status_code=500,
            detail={"error": "tool_call_limit_exceeded", "error_description": str(e)},
        )
    return conversation.final_response


@router.post("/{level}/chat")
async def chat(
    request: Request,
    level: LevelLabel,
    body: ChatRequest,
    domain: Annotated[Domain, Query()] = Domain.GENERAL,
    model: Annotated[str | None, Query()] = None,
):
    """Unauthenticated chat; the get_user tool reports that no user is signed in."""
    return await _handle_chat(request, level, domain, model, body, claims=None)


@router.post("/authorized/{level}/chat")
async def authorized_chat(
    request: Request,
    level: LevelLabel,
    body: ChatRequest,
    claims: Annotated[AccessTokenClaims, Depends(get_claims)],
    domain: Annotated[Domain, Query()] = Domain.GENERAL,
    model: Annotated[str | None, Query()] = None,
):
    """Same as /{level}/chat behind Bearer verification; tools see the caller's claims."""
    return await _handle_chat(request, level, domain, model, body, claims=claims)
