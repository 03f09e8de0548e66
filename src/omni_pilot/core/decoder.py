"""
decoder.py - Turn a model reply into a typed Action

Two entry points, one per reply shape:

    decode_invocation(ToolInvocation)  structured mode; the tool name picks the variant
    decode_text(str)                   prompt-embedded mode; the first JSON object wins

Validation failures are ``DecodeError``: the run continues and the model reads
``feedback`` on its next turn. A structured call to a tool we never declared is
``UnknownActionError``, which is fatal.

Usage:
    from omni_pilot.core.decoder import decode
    action = decode(response.reply)
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from omni_pilot.providers.base import ModelReply, PlainText, ProviderResponse, ToolInvocation

from .actions import ACTION_NAMES, MAX_BATCH_SIZE, ActionBase, parse_action
from .errors import DecodeError, UnknownActionError

# Legacy single-tool encoding: {"name": "computer", "input": {"action": "click", ...}}
COMPUTER_TOOL = "computer"

_decoder = json.JSONDecoder()


# =============================================================================
# JSON extraction
# =============================================================================


def extract_json(text: str) -> dict[str, Any]:
    """Return the first well-formed JSON object embedded in ``text``.

    Surrounding prose and markdown fences are ignored. Braces inside JSON
    strings do not count, so ``{"text": "a } b"}`` is found whole.

    Raises:
        DecodeError: If no ``{`` occurs, or none starts a well-formed object
    """
    start = text.find("{")
    if start < 0:
        raise DecodeError("No JSON object found", raw=text)

    while start >= 0:
        try:
            value, _ = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)

    if text.count("{") != text.count("}"):
        raise DecodeError("Unbalanced braces", raw=text)
    raise DecodeError("Malformed JSON object", raw=text)


# =============================================================================
# Validation
# =============================================================================


def _location(loc: tuple[Any, ...]) -> str:
    parts = []
    for item in loc:
        if isinstance(item, int):
            parts.append(f"[{item}]")
        else:
            parts.append(f".{item}" if parts else str(item))
    return "".join(parts) or "action"


def _describe_errors(e: ValidationError) -> list[str]:
    problems = []
    for err in e.errors():
        kind = err["type"]
        where = _location(err["loc"])
        if kind == "union_tag_invalid":
            tag = err.get("ctx", {}).get("tag")
            if tag == "batch":
                problems.append(f"{where}: a batch cannot contain another batch")
            else:
                problems.append(f"{where}: unknown action {tag!r}")
        elif kind == "union_tag_not_found":
            problems.append(f"{where}: missing the 'action' field")
        elif kind == "too_long":
            problems.append(f"{where}: a batch holds at most {MAX_BATCH_SIZE} actions")
        else:
            problems.append(f"{where}: {err['msg']}")
    return problems


def _validate(data: dict[str, Any], raw: str) -> ActionBase:
    try:
        return parse_action(data)
    except ValidationError as e:
        problems = _describe_errors(e)
        detail = "; ".join(problems)
        feedback = (
            f"Your last action was invalid: {detail}. "
            f"Valid actions are: {', '.join(ACTION_NAMES)}. "
            "Coordinates must be non-negative integers. "
            "Respond with exactly one corrected JSON action object."
        )
        raise DecodeError(f"Invalid action: {detail}", raw=raw, feedback=feedback) from e


# =============================================================================
# Entry points
# =============================================================================


def decode_invocation(invocation: ToolInvocation) -> ActionBase:
    """Map a structured call onto an Action.

    Raises:
        UnknownActionError: The tool name is not one of the declared actions
        DecodeError: The arguments do not validate
    """
    args = dict(invocation.args)
    name = invocation.name
    if name == COMPUTER_TOOL:
        name = args.pop("action", None)
        if not isinstance(name, str):
            raise UnknownActionError(
                "The computer tool was called without an action", raw=json.dumps(invocation.args)
            )

    raw = json.dumps({"action": name, **args}, ensure_ascii=False, default=str)
    if name not in ACTION_NAMES:
        raise UnknownActionError(f"Unknown action: {name}", raw=raw)
    return _validate({**args, "action": name}, raw)


def decode_text(text: str) -> ActionBase:
    """Find the JSON object in free text and validate it.

    Raises:
        DecodeError: No usable JSON object, or it does not validate
    """
    if not text.strip():
        raise DecodeError("Empty response", raw=text)
    return _validate(extract_json(text), text)


def decode(response: ProviderResponse | ModelReply) -> ActionBase:
    """Decode either reply shape (or a whole ProviderResponse)."""
    reply = response.reply if isinstance(response, ProviderResponse) else response
    match reply:
        case ToolInvocation():
            return decode_invocation(reply)
        case PlainText(text=text):
            return decode_text(text)
    raise TypeError(f"Cannot decode {type(reply).__name__}")


__all__ = ["COMPUTER_TOOL", "decode", "decode_invocation", "decode_text", "extract_json"]
