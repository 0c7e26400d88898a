"""Ollama client used by the extraction collaborator.

One ``OllamaClient`` is created by the application lifespan and passed to
whoever needs it; nothing in the pipeline reaches for a module-level
client.

Supports:
  - Structured outputs via JSON Schema (``format: {schema}``)
  - Base64 images in the user message (vision model)
  - Retries with exponential backoff + jitter on transport errors,
    5xx responses and unparseable JSON
"""

import asyncio
import json
import logging
import random
import re
import time

import httpx

from app.config import (
    LLM_MAX_INPUT_CHARS,
    LLM_MAX_RETRIES,
    LLM_TIMEOUT,
    OLLAMA_BASE_URL,
    OLLAMA_MODEL,
    VISION_MODEL,
)

logger = logging.getLogger(__name__)


class ExtractionServiceError(RuntimeError):
    """The LLM service refused the call for a reason retries cannot fix."""

    user_message = "Something went wrong. Please try again."


class ExtractionAuthError(ExtractionServiceError):
    user_message = "⚠️ The AI service rejected our credentials. Please contact support."


class ExtractionRateLimitError(ExtractionServiceError):
    user_message = "⚠️ Rate limit reached. Please wait a moment and try again."


class OllamaClient:
    """Thin async wrapper over Ollama's ``/api/chat`` endpoint."""

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        model: str = OLLAMA_MODEL,
        vision_model: str = VISION_MODEL,
        timeout: float = LLM_TIMEOUT,
        max_retries: int = LLM_MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.vision_model = vision_model
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        # Per-call client: concurrent chat turns never share a closed client
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def chat_json(
        self,
        prompt: str,
        system_prompt: str = "",
        schema: dict | None = None,
        images: list[str] | None = None,
        temperature: float = 0.0,
        task_label: str = "",
    ) -> dict:
        """Send one prompt and return the parsed JSON object.

        Raises ``ExtractionAuthError`` / ``ExtractionRateLimitError`` at once
        for 401/403 and 429.  Any other failure is retried; after the last
        attempt the final error is raised as ``ExtractionServiceError``.
        """
        label = task_label or "LLM"
        if len(prompt) > LLM_MAX_INPUT_CHARS:
            logger.warning(f"[{label}] Input truncated: {len(prompt):,} → {LLM_MAX_INPUT_CHARS:,} chars")
            prompt = prompt[:LLM_MAX_INPUT_CHARS]

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        user_msg: dict = {"role": "user", "content": prompt}
        if images:
            user_msg["images"] = images
        messages.append(user_msg)

        format_param: dict | str = schema if schema else "json"
        body = {
            "model": self.vision_model if images else self.model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": temperature},
            "format": format_param,
            "think": False,
        }

        last_error: Exception | None = None
        for attempt in range(self.max_retries):
            if attempt > 0:
                backoff = min(2 ** attempt + random.uniform(0, 1), 30)
                logger.info(f"[{label}] Retry {attempt}/{self.max_retries - 1} in {backoff:.1f}s ({last_error})")
                await asyncio.sleep(backoff)

            t0 = time.time()
            try:
                async with self._client() as client:
                    response = await client.post(f"{self.base_url}/api/chat", json=body)
                    if response.status_code in (401, 403):
                        raise ExtractionAuthError(f"HTTP {response.status_code} from LLM service")
                    if response.status_code == 429:
                        raise ExtractionRateLimitError("HTTP 429 from LLM service")
                    response.raise_for_status()
                    result = response.json()
                content = (result.get("message") or {}).get("content", "")
                parsed = _parse_json_response(content)
                if not isinstance(parsed, dict):
                    raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
                logger.debug(f"[{label}] Done in {time.time() - t0:.1f}s ({len(content)} chars)")
                return parsed
            except ExtractionServiceError:
                raise
            except (json.JSONDecodeError, ValueError, KeyError) as e:
                last_error = e
                logger.warning(f"[{label}] Unparseable response on attempt {attempt + 1}: {e}")
                # Structured output failed, fall back to basic JSON mode
                body["format"] = "json"
            except httpx.HTTPError as e:
                last_error = e
                logger.warning(f"[{label}] HTTP error on attempt {attempt + 1}: {type(e).__name__}: {e}")

        raise ExtractionServiceError(f"[{label}] LLM failed after {self.max_retries} attempts: {last_error}")

    async def check_status(self) -> dict:
        """Report whether Ollama is reachable and the configured models exist."""
        try:
            async with self._client() as client:
                resp = await client.get(f"{self.base_url}/api/tags")
                resp.raise_for_status()
                names = [m.get("name", "") for m in resp.json().get("models", [])]
        except httpx.HTTPError as e:
            return {"status": "offline", "error": str(e)}
        return {
            "status": "online",
            "model_available": any(self.model in n for n in names),
            "vision_model_available": any(self.vision_model in n for n in names),
        }


# ═══════════════════════════════════════════════════
# JSON RECOVERY
# ═══════════════════════════════════════════════════

_THINK_BLOCK_RE = re.compile(r'<think>.*?</think>', re.DOTALL)
_CODE_BLOCK_RE = re.compile(r'```(?:json)?\s*\n?(.*?)```', re.DOTALL)


def _parse_json_response(text: str):
    """Extract and parse JSON from LLM response text.

    Strategies, in order:
      1. Direct parse
      2. Markdown code block extraction
      3. Outermost ``{...}`` scan
      4. Repair of trailing commas / unclosed braces
    """
    if not text or not text.strip():
        raise json.JSONDecodeError("Empty response", "", 0)

    text = _THINK_BLOCK_RE.sub("", text).strip()
    if not text:
        raise json.JSONDecodeError("Empty response after stripping think blocks", "", 0)

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    for match in _CODE_BLOCK_RE.finditer(text):
        block = match.group(1).strip()
        if block.startswith("{"):
            try:
                return json.loads(block)
            except json.JSONDecodeError:
                continue

    start = text.find("{")
    end = text.rfind("}")
    while start >= 0 and end > start:
        try:
            return json.loads(text[start:end + 1])
        except json.JSONDecodeError:
            start = text.find("{", start + 1)

    repaired = _attempt_json_repair(text)
    if repaired is not None:
        return repaired

    raise json.JSONDecodeError("No valid JSON found in response", text[:200], 0)


def _attempt_json_repair(text: str) -> dict | None:
    """Fix trailing commas and append missing closers; ``None`` if still broken."""
    first_brace = text.find("{")
    if first_brace < 0:
        return None
    candidate = text[first_brace:]

    last_brace = candidate.rfind("}")
    if last_brace >= 0:
        candidate = candidate[: last_brace + 1]

    candidate = re.sub(r",\s*}", "}", candidate)
    candidate = re.sub(r",\s*]", "]", candidate)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    opens = open_sq = 0
    in_string = escape = False
    for ch in candidate:
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            opens += 1
        elif ch == "}":
            opens -= 1
        elif ch == "[":
            open_sq += 1
        elif ch == "]":
            open_sq -= 1

    if opens > 0 or open_sq > 0:
        candidate += "]" * max(open_sq, 0) + "}" * max(opens, 0)
        candidate = re.sub(r",\s*}", "}", candidate)
        candidate = re.sub(r",\s*]", "]", candidate)
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass
    return None
