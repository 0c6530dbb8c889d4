"""
Tools the model may call during a chat request, and the registry that runs them.
Handlers receive a ToolContext holding the verified claims of the current request only.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from chat_gateway.auth import AccessTokenClaims

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolContext:
    claims: AccessTokenClaims | None = None


ToolHandler = Callable[[dict[str, Any], ToolContext], Any]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    handler: ToolHandler
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def to_openai(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Model-supplied arguments arrive as a JSON string; anything unparseable becomes {}."""
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


class ToolRegistry:
    def __init__(self, tools: list[ToolDefinition] | None = None) -> None:
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def catalog(self) -> list[dict[str, Any]]:
        """OpenAI-style `tools` array for the upstream request."""
        return [tool.to_openai() for tool in self._tools.values()]

    def execute(self, name: str, arguments: dict[str, Any], context: ToolContext) -> str:
        """Run one tool and return its result as a JSON string. Unknown names yield an error payload."""
        tool = self._tools.get(name) if isinstance(name, str) else None
        if tool is None:
            logger.info("Model requested unknown tool: %s", name)
            return json.dumps({"error": "Unknown tool", "message": f"Tool '{name}' is not available"})
        try:
            result = tool.handler(arguments, context)
        except Exception as e:
            logger.exception("Tool %s failed", name)
            return json.dumps({"error": "Tool execution failed", "message": str(e)})
        return result if isinstance(result, str) else json.dumps(result)


def _iso(timestamp: int | None) -> str | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def get_user(arguments: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    claims = context.claims
    if claims is None:
        return {
            "error": "No authenticated user",
            "message": "This endpoint requires authentication to retrieve user information",
        }
    return {
        "userId": claims.subject,
        "role": claims.role or "unknown",
        "issuer": claims.issuer,
        "audience": claims.audience,
        "issuedAt": _iso(claims.issued_at),
        "expiresAt": _iso(claims.expires_at),
        "scope": claims.scope,
    }


GET_USER = ToolDefinition(
    name="get_user",
    description=(
        "Get information about the current authenticated user including their ID, role, and token details"
    ),
    handler=get_user,
)


def default_registry() -> ToolRegistry:
    return ToolRegistry([GET_USER])
