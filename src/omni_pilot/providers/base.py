"""
base.py - Provider capability interface and response types

Every backend implements the same two-method capability:

    send(conversation, schema, on_chunk=None, cancel=None) -> ProviderResponse
    supports_structured_calls() -> bool

and returns one of two reply shapes: ``ToolInvocation`` (structured mode,
the backend returned a validated call to a declared tool) or ``PlainText``
(prompt-embedded mode, the action is JSON somewhere in the text).
"""

from __future__ import annotations

import json
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from omni_pilot.core.cancel import CancellationToken
from omni_pilot.core.conversation import ConversationMessage, ToolOutcome
from omni_pilot.core.errors import (
    AuthError,
    NetworkError,
    ProviderError,
    QuotaError,
    RateLimitedError,
    RequestError,
)

ChunkCallback = Callable[[str], None]


# =============================================================================
# Response shapes
# =============================================================================


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class ToolInvocation:
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    text: str = ""


@dataclass(frozen=True)
class PlainText:
    text: str


ModelReply = ToolInvocation | PlainText


@dataclass(frozen=True)
class ProviderResponse:
    reply: ModelReply
    usage: Usage = Usage()
    elapsed: float = 0.0
    model: str = ""

    @property
    def tokens_per_second(self) -> float:
        if self.elapsed <= 0:
            return 0.0
        return self.usage.output_tokens / self.elapsed


@dataclass(frozen=True)
class ActionSchema:
    """What the model is allowed to do, in both encodings.

    Attributes:
        system_prompt: Role and screen context, used with ``tools``
        tools: Machine-checkable declarations, one per action
        action_prompt: The same catalogue in prose, for prompt-embedded mode
    """

    system_prompt: str
    tools: list[dict[str, Any]]
    action_prompt: str

    @property
    def tool_names(self) -> list[str]:
        return [t["name"] for t in self.tools]


# =============================================================================
# Capability
# =============================================================================


@runtime_checkable
class Provider(Protocol):
    name: str

    def supports_structured_calls(self) -> bool: ...

    async def send(
        self,
        conversation: Sequence[ConversationMessage],
        schema: ActionSchema,
        on_chunk: ChunkCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> ProviderResponse: ...

    async def aclose(self) -> None: ...


# =============================================================================
# Shared helpers
# =============================================================================


def format_outcome(outcome: ToolOutcome) -> str:
    """Outcome text as the model reads it."""
    if outcome.success:
        return f"Action succeeded: {outcome.message}" if outcome.message else "Action succeeded"
    detail = outcome.message or outcome.error or "unknown error"
    return f"Action failed: {detail}"


def invocation_as_json(name: str, args: dict[str, Any]) -> str:
    """Render an invocation the way prompt-embedded models are asked to answer."""
    return json.dumps({"action": name, **args}, ensure_ascii=False)


def _retry_after(headers: Any, default: float) -> float:
    raw = headers.get("retry-after") if headers is not None else None
    try:
        return float(raw) if raw is not None else default
    except ValueError:
        return default


def error_for_status(status: int, body: str, headers: Any = None) -> ProviderError:
    """Map an HTTP failure onto the error taxonomy."""
    detail = body.strip()[:500] or f"HTTP {status}"
    lowered = detail.lower()
    if status in (401, 403):
        return AuthError(f"Authentication failed: {detail}", status_code=status)
    if status == 402 or "quota" in lowered or "billing" in lowered or "credit" in lowered:
        return QuotaError(f"Quota exhausted: {detail}", status_code=status)
    if status == 429:
        return RateLimitedError(f"Rate limited: {detail}", wait_seconds=_retry_after(headers, 30.0))
    if status >= 500:
        return NetworkError(f"Server error {status}: {detail}", status_code=status)
    return RequestError(f"Request rejected ({status}): {detail}", status_code=status)


__all__ = [
    "ActionSchema",
    "ChunkCallback",
    "ModelReply",
    "PlainText",
    "Provider",
    "ProviderResponse",
    "ToolInvocation",
    "Usage",
    "error_for_status",
    "format_outcome",
    "invocation_as_json",
]
