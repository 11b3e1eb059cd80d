"""
Content moderation client (OpenAI-compatible ``/v1/moderations``).

``moderate(text)`` returns True when the text is flagged.  Any failure, be it
a disabled service, a network error or an unexpected payload, raises
``ModerationUnavailableError``; the content validator decides that such
failures are not fatal.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from app.config import settings
from app.services.errors import ModerationUnavailableError

logger = logging.getLogger(__name__)


class ModerationService:
    """Thin httpx client for a hosted moderation endpoint."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.url = url or settings.MODERATION_URL
        self.api_key = settings.MODERATION_API_KEY if api_key is None else api_key
        self.timeout = float(timeout or settings.MODERATION_TIMEOUT)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def moderate(self, text: str) -> bool:
        if not self.enabled:
            raise ModerationUnavailableError("moderation is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={"input": text},
                )
        except httpx.HTTPError as exc:
            raise ModerationUnavailableError(f"moderation request failed: {exc}") from exc

        if resp.status_code != 200:
            raise ModerationUnavailableError(
                f"moderation returned HTTP {resp.status_code}: {resp.text[:200]}"
            )

        try:
            results = resp.json()["results"]
            return bool(results[0]["flagged"])
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise ModerationUnavailableError(f"unexpected moderation payload: {exc}") from exc
