"""
ollama.py - Local vision models served by Ollama

Prompt-embedded mode. ``/api/chat`` streams newline-delimited JSON; the last
object carries ``"done": true`` plus the token counts.
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
from omni_pilot.core.errors import NetworkError, RequestError

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
from .streams import NDJSONDecoder

log = get_logger("omni_pilot.providers.ollama")


def build_messages(
    conversation: Sequence[ConversationMessage], system_prompt: str
) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
    for message in conversation:
        match message:
            case UserTurn():
                entry: dict[str, Any] = {"role": "user", "content": message.text}
                if message.image:
                    entry["images"] = [message.image]
                elif message.image_omitted:
                    entry["content"] = f"{message.text}\n{OMITTED_IMAGE_MARKER}"
                messages.append(entry)
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


class OllamaProvider:
    name = "ollama"

    def __init__(
        self,
        config: ProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.model = config.resolved_model
        self.http = StreamingHTTPClient(
            config.resolved_base_url,
            headers={"Content-Type": "application/json"},
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
            "stream": True,
            "options": {"num_predict": self.config.max_tokens},
        }
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
        decoder = NDJSONDecoder()
        parts: list[str] = []
        usage = Usage()

        def handle(records: list[dict[str, Any]]) -> None:
            nonlocal usage
            for record in records:
                if record.get("error"):
                    raise RequestError(f"Ollama error: {record['error']}")
                content = (record.get("message") or {}).get("content")
                if content:
                    parts.append(content)
                    if on_chunk is not None:
                        on_chunk(content)
                if record.get("done"):
                    usage = Usage(
                        input_tokens=record.get("prompt_eval_count") or 0,
                        output_tokens=record.get("eval_count") or 0,
                    )

        async with aclosing(self.http.stream_post("/api/chat", payload)) as stream:
            async for chunk in stream:
                handle(decoder.feed(chunk))
                if cancel is not None:
                    cancel.raise_if_stopped()
        handle(decoder.flush())

        if not decoder.done:
            raise NetworkError("Stream ended before the completion marker")
        return "".join(parts), usage

    async def aclose(self) -> None:
        await self.http.close()


__all__ = ["OllamaProvider", "build_messages"]
