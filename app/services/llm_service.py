"""
Generative text service backed by Ollama's /api/generate endpoint.

The rest of the pipeline only depends on a single call shape:

    await llm.complete(prompt, system) -> str

which raises ``GenerationError`` on timeout, connection failure, non-200
responses or empty output.  Callers treat every such failure as final for
that call (no retries) and switch to their deterministic fallback.

The module also hosts the tolerant JSON parser used on model output, since
small local models routinely wrap JSON in markdown fences or leave trailing
commas behind.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, List, Optional, Tuple

import httpx

from app.config import settings
from app.services.errors import GenerationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Main service class
# ---------------------------------------------------------------------------

class OllamaLLMService:
    """
    Generative text client via Ollama /api/generate.

    Limits concurrency with a process-wide semaphore so that several
    documents processing at once cannot flood the model server.
    """

    # Shared across instances; sized from settings on first use
    _semaphore: Optional[asyncio.Semaphore] = None

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.base_url = base_url or settings.OLLAMA_BASE_URL
        self.model = model or settings.OLLAMA_LLM_MODEL
        self.timeout_seconds = float(timeout or settings.OLLAMA_TIMEOUT)
        self.timeout = httpx.Timeout(self.timeout_seconds, connect=10.0)

    @classmethod
    def _get_semaphore(cls) -> asyncio.Semaphore:
        if cls._semaphore is None:
            cls._semaphore = asyncio.Semaphore(settings.LLM_MAX_CONCURRENT)
        return cls._semaphore

    # ------------------------------------------------------------------
    # Core call
    # ------------------------------------------------------------------

    async def complete(
        self,
        prompt: str,
        system: str = "",
        max_tokens: int = 2000,
        temperature: float = 0.3,
    ) -> str:
        """
        POST to Ollama /api/generate and return the response text.

        Raises:
            GenerationError: timeout, connection error, HTTP error, or an
                             empty completion.
        """
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "num_predict": max_tokens,
                "temperature": temperature,
            },
        }
        if system:
            payload["system"] = system

        async with self._get_semaphore():
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(f"{self.base_url}/api/generate", json=payload)
            except httpx.TimeoutException as exc:
                logger.error("complete: request timed out after %.0f s", self.timeout_seconds)
                raise GenerationError(f"generation timed out after {self.timeout_seconds:.0f}s") from exc
            except httpx.HTTPError as exc:
                logger.error("complete: connection error — %s", exc)
                raise GenerationError(f"generation request failed: {exc}") from exc

        if resp.status_code != 200:
            logger.error(
                "complete: Ollama returned HTTP %d: %s",
                resp.status_code,
                resp.text[:300],
            )
            raise GenerationError(f"Ollama returned HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError as exc:
            logger.error("complete: Ollama returned a non-JSON body: %s", resp.text[:300])
            raise GenerationError("Ollama returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise GenerationError("Ollama returned an unexpected body")

        text = (body.get("response") or "").strip()
        if not text:
            raise GenerationError("empty completion")
        return text

    async def list_models(self) -> Optional[List[str]]:
        """Model names served by Ollama, or None when it cannot be reached."""
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                resp = await client.get(f"{self.base_url}/api/tags")
        except httpx.HTTPError as exc:
            logger.warning("Ollama unreachable: %s", exc)
            return None
        if resp.status_code != 200:
            logger.warning("Ollama /api/tags returned HTTP %d", resp.status_code)
            return None
        return [m.get("name", "") for m in resp.json().get("models", [])]

    async def check_health(self) -> bool:
        return await self.list_models() is not None

    def has_model(self, available: List[str]) -> bool:
        """True when the configured model (any tag of it) is in *available*."""
        family = self.model.split(":")[0]
        return any(name == self.model or name.startswith(family) for name in available)


# ---------------------------------------------------------------------------
# Robust JSON parsing
# ---------------------------------------------------------------------------

def parse_json_robust(response: str) -> Tuple[bool, Any]:
    """
    Try multiple strategies to parse JSON from potentially messy LLM output.

    Handles:
    - Markdown code fences (```json … ```, ``` … ```)
    - Trailing commas before ] or }
    - Python-style True / False / None
    - Surrounding prose — finds the first balanced {...} or [...] block

    Returns ``(success, parsed_value)``.
    """
    if not response:
        return False, None

    text = response.strip()

    # Strategy 1: direct parse
    ok, val = _try_json(text)
    if ok:
        return True, val

    # Strategy 2: strip markdown code fences
    stripped = strip_code_fences(text)
    if stripped != text:
        ok, val = _try_json(stripped)
        if ok:
            return True, val
        text = stripped  # work on stripped version from here

    # Strategy 3: fix common JSON mangling
    fixed = _fix_json_issues(text)
    ok, val = _try_json(fixed)
    if ok:
        return True, val

    # Strategy 4: extract JSON structure from surrounding prose
    for bracket_pair in (("{", "}"), ("[", "]")):
        fragment = _extract_json_structure(text, *bracket_pair)
        if fragment:
            ok, val = _try_json(fragment)
            if ok:
                return True, val
            ok, val = _try_json(_fix_json_issues(fragment))
            if ok:
                return True, val

    logger.warning(
        "parse_json_robust: all strategies failed. Preview: %s",
        response[:400],
    )
    return False, None


def _try_json(text: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return False, None


def strip_code_fences(text: str) -> str:
    """Remove ```json / ``` delimiters that LLMs often wrap output in."""
    text = re.sub(r"^```(?:json|javascript|text)?\s*\n?", "", text.strip(), flags=re.IGNORECASE)
    text = re.sub(r"\n?```\s*$", "", text)
    return text.strip()


def _fix_json_issues(text: str) -> str:
    """Repair the most common JSON mangling patterns from LLMs."""
    # Trailing commas before ] or }
    text = re.sub(r",(\s*[}\]])", r"\1", text)
    # Python → JSON literals
    text = re.sub(r"\bTrue\b", "true", text)
    text = re.sub(r"\bFalse\b", "false", text)
    text = re.sub(r"\bNone\b", "null", text)
    return text.strip()


def _extract_json_structure(text: str, open_b: str, close_b: str) -> str:
    """
    Find the first complete balanced open_b … close_b structure in *text*.
    Returns the matched fragment, or empty string if not found.
    """
    start = text.find(open_b)
    if start == -1:
        return ""

    depth = 0
    in_string = False
    escape_next = False

    for i, ch in enumerate(text[start:], start=start):
        if escape_next:
            escape_next = False
            continue
        if ch == "\\" and in_string:
            escape_next = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == open_b:
            depth += 1
        elif ch == close_b:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return ""
