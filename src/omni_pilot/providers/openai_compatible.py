"""
openai_compatible.py - Chat Completions backends (OpenAI, vLLM, LM Studio, ...)

Prompt-embedded mode only: the action catalogue goes into the system
message and the model answers with free text containing one JSON object.
The body streams as server-sent events and ends with ``data: [DONE]``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from contextlib import aclosing
from typing import Any

import httpx

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
from omni_pilot.core.errors import NetworkError

from .base import (
    ActionSchema,
    ChunkCallback,
    PlainText,
    ProviderResponse,
    Usage,
    format_outcome,
    invocation_as_json,
)
from .http import StreamingHTTPClient
from .streams import SSEDecoder

log = get_logger("omni_pilot.providers.openai")


def build_messages(
    conversation: Sequence[ConversationMessage], system_prompt: str
) -> list[dict[str, Any]]:
    """Conversation in Chat Completions shape, images as data URIs."""
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for message in conversation:
        match message:
            case UserTurn():
                text = message.text
                if message.image_omitted:
                    text = f"{text}\n{OMITTED_IMAGE_MARKER}"
                content: list[dict[str, Any]] = [{"type": "text", "text": text}]
                if message.image:
                    content.append(
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:{message.media_type};base64,{message.image}"
                            },
                        }
                    )
                messages.append({"role": "user", "content": content})
            case AssistantText():
                messages.append({"role": "assistant", "content": message.text})
            case AssistantToolInvocation():
                messages.append(
                    {
                        "role": "assistant",
                        "content": invocation_as_json(message.tool_name, message.args),
                    }
                )
            case ToolOutcome():
                messages.append({"role": "user", "content": format_outcome(message)})
    return messages


class OpenAICompatibleProvider:
    """Streaming client for any ``/v1/chat/completions`` endpoint."""

    name = "openai"

    def __init__(
        self,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.model = config.resolved_model
        headers = {"Content-Type": "application/json"}
        api_key = config.resolve_api_key()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.http = StreamingHTTPClient(
            config.resolved_base_url,
            headers=headers,
            connect_timeout=config.connect_timeout,
            response_timeout=config.response_timeout,
            transport=transport,
        )

    def supports_structured_calls(self) -> bool:
        return False

    async def send(
        self,
        conversation: Sequence[ConversationMessage],
        schema: ActionSchema,
        on_chunk: ChunkCallback | None = None,
        cancel: CancellationToken | None = None,
    ) -> ProviderResponse:
        payload = {
            "model": self.model,
            "messages": build_messages(conversation, schema.action_prompt),
            "max_tokens": self.config.max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        log.debug("provider.request", model=self.model, messages=len(payload["messages"]))
        started = time.monotonic()
        try:
            text, usage = await asyncio.wait_for(
                self._consume(payload, on_chunk, cancel),
                timeout=self.config.response_timeout,
            )
        except TimeoutError as e:
            raise NetworkError(
                f"No complete response within {self.config.response_timeout}s"
            ) from e

        elapsed = time.monotonic() - started
        log.debug("provider.response", model=self.model, output_tokens=usage.output_tokens)
        return ProviderResponse(PlainText(text), usage=usage, elapsed=elapsed, model=self.model)

    async def _consume(
        self,
        payload: dict[str, Any],
        on_chunk: ChunkCallback | None,
        cancel: CancellationToken | None,
    ) -> tuple[str, Usage]:
        decoder = SSEDecoder()
        parts: list[str] = []
        usage = Usage()
        finished = False

        def handle(events: list[dict[str, Any]]) -> None:
            nonlocal usage, finished
            for event in events:
                for choice in event.get("choices") or []:
                    delta = choice.get("delta") or {}
                    content = delta.get("content")
                    if content:
                        parts.append(content)
                        if on_chunk is not None:
                            on_chunk(content)
                    if choice.get("finish_reason"):
                        finished = True
                if event.get("usage"):
                    usage = Usage(
                        input_tokens=event["usage"].get("prompt_tokens") or 0,
                        output_tokens=event["usage"].get("completion_tokens") or 0,
                    )

        async with aclosing(self.http.stream_post("/v1/chat/completions", payload)) as stream:
            async for chunk in stream:
                handle(decoder.feed(chunk))
                if cancel is not None:
                    cancel.raise_if_stopped()
        handle(decoder.flush())

        if not (decoder.done or finished):
            raise NetworkError("Stream ended before the completion marker")
        return "".join(parts), usage

    async def aclose(self) -> None:
        await self.http.close()


__all__ = ["OpenAICompatibleProvider", "build_messages"]
