"""
synthesis.py: narrow text-synthesis capability backed by Claude.

``synthesize`` never raises: it returns either a value validated against the
requested schema, a ``SchemaError`` when the model answered with something
that does not fit, or ``SynthesisUnavailable`` when no answer could be had.
Callers substitute their deterministic fallbacks for both failure values.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from anthropic import APIError, AsyncAnthropic, RateLimitError
from pydantic import TypeAdapter, ValidationError

logger = logging.getLogger("seo-agents")

DEFAULT_MODEL = "claude-sonnet-4-6"


@dataclass(frozen=True)
class SchemaError:
    message: str
    raw: Any = None


@dataclass(frozen=True)
class SynthesisUnavailable:
    reason: str


def failed(value: Any) -> bool:
    return isinstance(value, (SchemaError, SynthesisUnavailable))


# =============================================================================
# JSON extraction
# =============================================================================

def extract_json(text: str) -> Union[dict, list]:
    """
    First JSON document in a model reply.

    Replies may be fenced, wrapped in prose, or cut off at ``max_tokens``;
    a truncated object or array is closed and parsed. Text with no
    recoverable JSON comes back as ``{"raw_response": text}``, which
    ``Synthesizer.synthesize`` reports as a ``SchemaError`` so callers fall
    back instead of validating prose.
    """
    text = text.strip()

    # Strip markdown code fences
    if text.startswith("```"):
        text = text.split("\n", 1)[-1]
        text = text.rsplit("```", 1)[0].strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    obj_start = text.find("{")
    arr_start = text.find("[")

    if obj_start == -1 and arr_start == -1:
        return {"raw_response": text}

    if arr_start != -1 and (obj_start == -1 or arr_start < obj_start):
        start, open_c, close_c = arr_start, "[", "]"
    else:
        start, open_c, close_c = obj_start, "{", "}"

    # String-aware bracket counting
    in_string = False
    escape = False
    depth = 0
    for i in range(start, len(text)):
        ch = text[i]
        if escape:
            escape = False
            continue
        if ch == "\\" and in_string:
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == open_c:
            depth += 1
        elif ch == close_c:
            depth -= 1
            if depth == 0:
                try:
                    return json.loads(text[start : i + 1])
                except json.JSONDecodeError:
                    break

    repaired = _repair_truncated_json(text[start:])
    if repaired is not None:
        return repaired

    return {"raw_response": text}


def _repair_truncated_json(fragment: str) -> Optional[Union[dict, list]]:
    """Close an unterminated string and any open brackets, then retry the parse."""
    trimmed = fragment.rstrip()

    in_str = False
    escape = False
    for ch in trimmed:
        if escape:
            escape = False
            continue
        if ch == "\\" and in_str:
            escape = True
            continue
        if ch == '"':
            in_str = not in_str
    if in_str:
        trimmed += '"'

    trimmed = trimmed.rstrip().rstrip(",")

    stack = []
    in_str = False
    escape = False
    for ch in trimmed:
        if escape:
            escape = False
            continue
        if ch == "\\" and in_str:
            escape = True
            continue
        if ch == '"':
            in_str = not in_str
            continue
        if in_str:
            continue
        if ch in ("{", "["):
            stack.append(ch)
        elif ch == "}" and stack and stack[-1] == "{":
            stack.pop()
        elif ch == "]" and stack and stack[-1] == "[":
            stack.pop()

    closers = {"[": "]", "{": "}"}
    for opener in reversed(stack):
        trimmed += closers[opener]

    try:
        return json.loads(trimmed)
    except json.JSONDecodeError:
        return None


# =============================================================================
# Synthesizers
# =============================================================================

class Synthesizer:
    """Base capability. Subclasses only implement ``complete``."""

    available = True

    async def complete(self, prompt: str, *, system: str, max_tokens: int) -> Optional[str]:
        """Raw model text, or None when the model could not be reached."""
        raise NotImplementedError

    async def synthesize_text(
        self, prompt: str, *, system: str, max_tokens: int = 500
    ) -> Union[str, SynthesisUnavailable]:
        text = await self.complete(prompt, system=system, max_tokens=max_tokens)
        if not text or not text.strip():
            return SynthesisUnavailable("empty response")
        return text.strip()

    async def synthesize(self, prompt: str, schema: Any, *, system: str, max_tokens: int = 2000):
        text = await self.complete(prompt, system=system, max_tokens=max_tokens)
        if not text:
            return SynthesisUnavailable("no response from model")

        data = extract_json(text)
        if isinstance(data, dict) and set(data) == {"raw_response"}:
            logger.warning("Synthesis returned no JSON")
            return SchemaError("response contained no JSON", text)
        try:
            return TypeAdapter(schema).validate_python(data)
        except ValidationError as e:
            logger.warning(f"Synthesis output failed validation ({e.error_count()} errors)")
            return SchemaError(str(e), data)


class UnavailableSynthesizer(Synthesizer):
    """Used when ANTHROPIC_API_KEY is not configured."""

    available = False

    async def complete(self, prompt: str, *, system: str, max_tokens: int) -> Optional[str]:
        return None


class ClaudeSynthesizer(Synthesizer):
    def __init__(
        self,
        client: Optional[AsyncAnthropic] = None,
        model: str = DEFAULT_MODEL,
        retries: int = 3,
    ):
        self.client = client or AsyncAnthropic()
        self.model = model
        self.retries = retries

    async def complete(self, prompt: str, *, system: str, max_tokens: int) -> Optional[str]:
        """
        Call Claude with a system prompt and user prompt.
        Retries on transient failures with backoff.
        On rate-limit (429) errors, waits 30 s before retrying.
        """
        last_error = None
        for attempt in range(1, self.retries + 1):
            try:
                response = await self.client.messages.create(
                    model=self.model,
                    max_tokens=max_tokens,
                    system=system,
                    messages=[{"role": "user", "content": prompt}],
                )
            except APIError as e:
                last_error = e
                is_rate_limit = isinstance(e, RateLimitError)
                wait = 30 if is_rate_limit else 2 * attempt
                logger.warning(
                    f"Claude call attempt {attempt}/{self.retries} failed "
                    f"({'rate limit — waiting 30 s' if is_rate_limit else f'retrying in {wait} s'}): {e}"
                )
                if attempt < self.retries:
                    await asyncio.sleep(wait)
                continue

            # Tool-use and thinking blocks carry no text
            text = "".join(
                getattr(block, "text", "") or ""
                for block in (response.content or [])
                if getattr(block, "type", "") == "text"
            )
            if not text:
                logger.warning("Claude returned no text content")
                return None
            return text

        logger.error(f"Claude call failed after {self.retries} attempts: {last_error}")
        return None


def build_synthesizer(api_key: str, model: str = DEFAULT_MODEL) -> Synthesizer:
    if not api_key:
        logger.warning("ANTHROPIC_API_KEY not set — agents and action plans use rule-based fallbacks")
        return UnavailableSynthesizer()
    return ClaudeSynthesizer(AsyncAnthropic(api_key=api_key), model=model)
