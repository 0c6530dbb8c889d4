"""
Chat orchestration: system prompt + caller turns -> upstream, resolving tool calls in a bounded loop.

The loop is a two-state machine (AWAITING_MODEL <-> EXECUTING_TOOLS) with two terminal states.
Each upstream call counts as one iteration; when the ceiling is reached without a final answer the
request fails with ToolCallLimitExceeded. Nothing here outlives a single request.
"""
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict

from chat_gateway.tools import ToolContext, ToolRegistry, parse_arguments
from chat_gateway.upstream import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_ITERATIONS = 10


class ChatTurn(BaseModel):
    """One caller-supplied message. Extra keys are dropped; role and content must be strings."""
    model_config = ConfigDict(extra="ignore")

    role: str
    content: str


def normalize_messages(value: Any) -> Any:
    """
    Accept a list of turns, a bare string, or a JSON-encoded string of turns.
    A JSON string that decodes to one object is wrapped in a list; a string that is not a JSON
    list/object is treated as a single user message. Lists are returned untouched so that
    validation can report bad items instead of dropping them.
    """
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return [{"role": "user", "content": value}]
        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict):
            return [parsed]
        return [{"role": "user", "content": value}]
    if value is None or isinstance(value, dict):
        # Nothing to coerce; let validation reject it
        return value
    return [{"role": "user", "content": str(value)}]


class CompletionService(Protocol):
    async def chat_completions(self, payload: dict[str, Any]) -> dict[str, Any]: ...


class LoopState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    COMPLETED = "completed"
    LIMIT_EXCEEDED = "limit_exceeded"


class ToolCallLimitExceeded(Exception):
    def __init__(self, max_iterations: int) -> None:
        super().__init__(f"Maximum tool call iterations ({max_iterations}) reached")
        self.max_iterations = max_iterations


@dataclass
class Conversation:
    """Request-scoped state of one orchestration run."""
    messages: list[dict[str, Any]]
    state: LoopState = LoopState.AWAITING_MODEL
    upstream_calls: int = 0
    tool_invocations: int = 0
    pending_tool_calls: list[dict[str, Any]] = field(default_factory=list)
    final_response: dict[str, Any] | None = None


def _first_message(data: dict[str, Any]) -> dict[str, Any]:
    choices = data.get("choices") if isinstance(data, dict) else None
    if not choices or not isinstance(choices, list) or not isinstance(choices[0], dict):
        return {}
    message = choices[0].get("message") or {}
    if not isinstance(message, dict):
        raise UpstreamError(502, f"Upstream returned a malformed message: {message!r}")
    return message


def _tool_calls(message: dict[str, Any]) -> list[dict[str, Any]]:
    tool_calls = message.get("tool_calls") or []
    if not isinstance(tool_calls, list) or not all(isinstance(c, dict) for c in tool_calls):
        raise UpstreamError(502, f"Upstream returned malformed tool_calls: {tool_calls!r}")
    return tool_calls


class ChatOrchestrator:
    def __init__(
        self,
        upstream: CompletionService,
        tools: ToolRegistry,
        max_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be >= 1")
        self.upstream = upstream
        self.tools = tools
        self.max_iterations = max_iterations

    def initial_messages(self, system_prompt: str, turns: list[ChatTurn]) -> list[dict[str, Any]]:
        return [{"role": "system", "content": system_prompt}, *(t.model_dump() for t in turns)]

    def _payload(self, conversation: Conversation, model: str | None) -> dict[str, Any]:
        payload: dict[str, Any] = {"messages": conversation.messages}
        catalog = self.tools.catalog()
        if catalog:
            payload["tools"] = catalog
            payload["tool_choice"] = "auto"
        if model:
            payload["model"] = model
        return payload

    async def _await_model(self, conversation: Conversation, model: str | None) -> None:
        """
        One upstream call. A reply without tool calls completes the conversation. A reply with
        tool calls moves to EXECUTING_TOOLS, unless this was the last allowed call: then it moves
        to LIMIT_EXCEEDED and the requested tools are dropped unexecuted, since their results
        could not be sent back. Malformed message or tool_calls shapes raise UpstreamError(502).
        """
        conversation.upstream_calls += 1
        data = await self.upstream.chat_completions(self._payload(conversation, model))
        message = _first_message(data)
        tool_calls = _tool_calls(message)
        if not tool_calls:
            conversation.final_response = data
            conversation.state = LoopState.COMPLETED
            return
        if conversation.upstream_calls >= self.max_iterations:
            # Tools requested on the last allowed call are not executed
            conversation.state = LoopState.LIMIT_EXCEEDED
            return
        conversation.messages.append(
            {"role": "assistant", "content": message.get("content"), "tool_calls": tool_calls}
        )
        conversation.pending_tool_calls = list(tool_calls)
        conversation.state = LoopState.EXECUTING_TOOLS

    def _execute_tools(self, conversation: Conversation, context: ToolContext) -> None:
        for tool_call in conversation.pending_tool_calls:
            function = tool_call.get("function")
            if not isinstance(function, dict):
                function = {}
            name = function.get("name")
            arguments = parse_arguments(function.get("arguments"))
            result = self.tools.execute(name, arguments, context)
            conversation.tool_invocations += 1
            conversation.messages.append(
                {"role": "tool", "tool_call_id": tool_call.get("id"), "content": result}
            )
        conversation.pending_tool_calls = []
        conversation.state = LoopState.AWAITING_MODEL

    async def run(
        self,
        system_prompt: str,
        turns: list[ChatTurn],
        *,
        model: str | None = None,
        context: ToolContext | None = None,
    ) -> Conversation:
        """Drive the conversation to COMPLETED, or raise ToolCallLimitExceeded / UpstreamError."""
        context = context or ToolContext()
        conversation = Conversation(messages=self.initial_messages(system_prompt, turns))
        while True:
            if conversation.state is LoopState.AWAITING_MODEL:
                await self._await_model(conversation, model)
            elif conversation.state is LoopState.EXECUTING_TOOLS:
                self._execute_tools(conversation, context)
            elif conversation.state is LoopState.COMPLETED:
                logger.debug(
                    "chat completed: upstream_calls=%s tool_invocations=%s",
                    conversation.upstream_calls,
                    conversation.tool_invocations,
                )
                return conversation
            else:
                logger.warning("tool call limit reached after %s upstream calls", conversation.upstream_calls)
                raise ToolCallLimitExceeded(self.max_iterations)
