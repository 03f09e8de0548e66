"""
anthropic.py - Claude through the Anthropic Messages API

Structured mode: every action is declared as a tool and the model answers
with a ``tool_use`` block. With ``structured_calls: false`` the tools are
left out and the prose catalogue is used instead, like the HTTP backends.

Streaming uses ``AsyncAnthropic.messages.stream``: text deltas go to the
chunk callback as they arrive, the response is final at ``message_stop``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from typing import Any

import anthropic
import httpx
from anthropic import AsyncAnthropic

from omni_pilot.config.logging import get_logger
from omni_pilot.config.models import ProviderConfig
from omni_pilot.core.cancel import CancellationToken
from omni_pilot.core.conversation import (
    OMITTED_IMAGE_MARKER,
    AssistantText,
    AssistantToolInvocation,
    ConversationMessage,
    ToolOutcome,
    UserTurn,
)
from omni_pilot.core.errors import AuthError, NetworkError

from .base import (
    ActionSchema,
    ChunkCallback,
    PlainText,
    ProviderResponse,
    ToolInvocation,
    Usage,
    error_for_status,
    format_outcome,
    invocation_as_json,
)

log = get_logger("omni_pilot.providers.anthropic")


def _user_blocks(turn: UserTurn) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    if turn.image:
        blocks.append(
            {
                "type": "image",
                "source": {"type": "base64", "media_type": turn.media_type, "data": turn.image},
            }
        )
    text = f"{turn.text}\n{OMITTED_IMAGE_MARKER}" if turn.image_omitted else turn.text
    blocks.append({"type": "text", "text": text})
    return blocks


def build_messages(
    conversation: Sequence[ConversationMessage], structured: bool
) -> list[dict[str, Any]]:
    """Conversation in Messages API shape.

    Consecutive messages of one role are merged. Invocations become
    ``tool_use`` blocks only in structured mode and only when their outcome
    is present; otherwise both sides are sent as text.
    """
    answered = {
        m.invocation_id for m in conversation if isinstance(m, ToolOutcome) and m.invocation_id
    }
    messages: list[dict[str, Any]] = []

    def push(role: str, blocks: list[dict[str, Any]]) -> None:
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].extend(blocks)
        else:
            messages.append({"role": role, "content": list(blocks)})

    for message in conversation:
        match message:
            case UserTurn():
                push("user", _user_blocks(message))
            case AssistantText():
                push("assistant", [{"type": "text", "text": message.text}])
            case AssistantToolInvocation():
                blocks: list[dict[str, Any]] = []
                if message.text:
                    blocks.append({"type": "text", "text": message.text})
                if structured and message.invocation_id in answered:
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": message.invocation_id,
                            "name": message.tool_name,
                            "input": message.args,
                        }
                    )
                else:
                    text = invocation_as_json(message.tool_name, message.args)
                    blocks.append({"type": "text", "text": text})
                push("assistant", blocks)
            case ToolOutcome():
                if structured and message.invocation_id:
                    push(
                        "user",
                        [
                            {
                                "type": "tool_result",
                                "tool_use_id": message.invocation_id,
                                "content": format_outcome(message),
                                "is_error": not message.success,
                            }
                        ],
                    )
                else:
                    push("user", [{"type": "text", "text": format_outcome(message)}])
    return messages


class AnthropicProvider:
    """Unified Claude client for the run loop."""

    name = "anthropic"

    def __init__(self, config: ProviderConfig, client: AsyncAnthropic | None = None):
        """Initialize the provider.

        Args:
            config: Backend settings; the key comes from api_key or api_key_env
            client: Preconfigured client (tests pass a stand-in)
        """
        self.config = config
        self.model = config.resolved_model
        self.structured = config.structured_calls

        if client is None:
            api_key = config.resolve_api_key()
            if not api_key:
                raise AuthError(
                    f"No Anthropic API key (set {config.api_key_env or 'ANTHROPIC_API_KEY'})"
                )
            client = AsyncAnthropic(
                api_key=api_key,
                base_url=config.resolved_base_url,
                timeout=httpx.Timeout(config.response_timeout, connect=config.connect_timeout),
                max_retries=0,
            )
        self.client = client

    def supports_structured_calls(self) -> bool:
        return self.structured

    async def send(
        self,
        conversation: Sequence[ConversationMessage],
        schema: ActionSchema,
        on_chunk: ChunkCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> ProviderResponse:
        api_kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.config.max_tokens,
            "messages": build_messages(conversation, self.structured),
        }
        if self.structured:
            api_kwargs["system"] = schema.system_prompt
            api_kwargs["tools"] = schema.tools
            api_kwargs["tool_choice"] = {"type": "any"}
        else:
            api_kwargs["system"] = schema.action_prompt

        log.debug(
            "provider.request",
            model=self.model,
            messages=len(api_kwargs["messages"]),
            structured=self.structured,
        )
        started = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._stream(api_kwargs, on_chunk, cancel),
                timeout=self.config.response_timeout,
            )
        except TimeoutError as e:
            raise NetworkError(
                f"No complete response within {self.config.response_timeout}s"
            ) from e
        except anthropic.APIStatusError as e:
            raise error_for_status(e.status_code, str(e.message), e.response.headers) from e
        except anthropic.APIConnectionError as e:
            raise NetworkError(f"Anthropic connection failed: {e}") from e

        return ProviderResponse(
            response[0], usage=response[1], elapsed=time.monotonic() - started, model=self.model
        )

    async def _stream(
        self,
        api_kwargs: dict[str, Any],
        on_chunk: ChunkCallback | None,
        cancel: CancellationToken | None,
    ) -> tuple[ToolInvocation | PlainText, Usage]:
        stopped = False
        async with self.client.messages.stream(**api_kwargs) as stream:
            async for event in stream:
                if event.type == "message_stop":
                    stopped = True
                    break
                if event.type == "content_block_delta" and event.delta.type == "text_delta":
                    if on_chunk is not None:
                        on_chunk(event.delta.text)
                if cancel is not None:
                    cancel.raise_if_stopped()
            if not stopped:
                raise NetworkError("Stream ended before message_stop")
            final = await stream.get_final_message()

        usage = Usage(
            input_tokens=final.usage.input_tokens or 0,
            output_tokens=final.usage.output_tokens or 0,
        )
        text = "".join(block.text for block in final.content if block.type == "text")
        for block in final.content:
            if block.type == "tool_use":
                invocation = ToolInvocation(
                    id=block.id, name=block.name, args=dict(block.input or {}), text=text
                )
                log.debug("provider.tool_use", name=block.name, id=block.id)
                return invocation, usage
        return PlainText(text), usage

    async def aclose(self) -> None:
        await self.client.close()


__all__ = ["AnthropicProvider", "build_messages"]
