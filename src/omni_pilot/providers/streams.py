"""
streams.py - Incremental decoders for streamed HTTP bodies

Network chunks split lines anywhere. Both decoders buffer the partial tail
and only hand out complete records:

    decoder = SSEDecoder()
    for chunk in chunks:
        for payload in decoder.feed(chunk):
            ...
    decoder.done  # True once "data: [DONE]" was seen
"""

from __future__ import annotations

import json
from typing import Any

from omni_pilot.config.logging import get_logger

log = get_logger("omni_pilot.providers.streams")

DONE_MARKER = "[DONE]"


class _LineBuffer:
    def __init__(self) -> None:
        self._buffer = ""

    def lines(self, chunk: str) -> list[str]:
        self._buffer += chunk
        *complete, self._buffer = self._buffer.split("\n")
        return [line.rstrip("\r") for line in complete]

    def flush(self) -> list[str]:
        tail, self._buffer = self._buffer, ""
        return [tail.rstrip("\r")] if tail.strip() else []


class SSEDecoder:
    """Server-sent events carrying JSON in ``data:`` lines."""

    def __init__(self) -> None:
        self._lines = _LineBuffer()
        self.done = False

    def feed(self, chunk: str) -> list[dict[str, Any]]:
        return self._parse(self._lines.lines(chunk))

    def flush(self) -> list[dict[str, Any]]:
        return self._parse(self._lines.flush())

    def _parse(self, lines: list[str]) -> list[dict[str, Any]]:
        payloads: list[dict[str, Any]] = []
        for line in lines:
            if not line.startswith("data:"):
                continue
            data = line[len("data:") :].strip()
            if data == DONE_MARKER:
                self.done = True
                continue
            try:
                payload = json.loads(data)
            except json.JSONDecodeError:
                log.debug("stream.skipped_line", text=data)
                continue
            if isinstance(payload, dict):
                payloads.append(payload)
        return payloads


class NDJSONDecoder:
    """One JSON object per line; the final object has ``"done": true``."""

    def __init__(self) -> None:
        self._lines = _LineBuffer()
        self.done = False

    def feed(self, chunk: str) -> list[dict[str, Any]]:
        return self._parse(self._lines.lines(chunk))

    def flush(self) -> list[dict[str, Any]]:
        return self._parse(self._lines.flush())

    def _parse(self, lines: list[str]) -> list[dict[str, Any]]:
        payloads: list[dict[str, Any]] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                log.debug("stream.skipped_line", text=line)
                continue
            if isinstance(payload, dict):
                if payload.get("done"):
                    self.done = True
                payloads.append(payload)
        return payloads


__all__ = ["NDJSONDecoder", "SSEDecoder"]
