"""
Content checks applied to extracted text before any structuring work.

Order: length → English check → moderation.  Length and language failures
reject the upload; a moderation outage is logged and ignored so a degraded
moderation dependency never blocks uploads.  A *flagged* result still
rejects.
"""
from __future__ import annotations

import logging
import re
from typing import Optional, Protocol

from app.config import settings
from app.services.errors import (
    ContentPolicyError,
    ContentTooLongError,
    ModerationUnavailableError,
    UnsupportedLanguageError,
)

logger = logging.getLogger(__name__)

ENGLISH_STOPWORDS = frozenset(
    {"the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by"}
)
MIN_STOPWORD_HITS = 3

_WORD_RE = re.compile(r"[a-z]+")


class Moderator(Protocol):
    async def moderate(self, text: str) -> bool: ...


class ContentValidator:
    """Enforces length, language and moderation constraints on extracted text."""

    def __init__(
        self,
        moderation: Moderator,
        max_chars: Optional[int] = None,
        moderation_sample_chars: Optional[int] = None,
        language_check_min_chars: Optional[int] = None,
    ) -> None:
        self.moderation = moderation
        self.max_chars = max_chars or settings.MAX_CONTENT_CHARS
        self.moderation_sample_chars = moderation_sample_chars or settings.MODERATION_SAMPLE_CHARS
        self.language_check_min_chars = (
            settings.LANGUAGE_CHECK_MIN_CHARS
            if language_check_min_chars is None
            else language_check_min_chars
        )

    async def validate(self, text: str) -> None:
        """
        Raise on content that must not be processed.

        Raises:
            ContentTooLongError:      more than ``max_chars`` characters.
            UnsupportedLanguageError: fewer than 3 distinct English stopwords.
            ContentPolicyError:       moderation flagged the opening sample.
        """
        if len(text) > self.max_chars:
            raise ContentTooLongError(
                "Document content is too long. Please limit to approximately "
                f"{self.max_chars // 10:,} words."
            )

        if len(text) > self.language_check_min_chars and not looks_english(text):
            raise UnsupportedLanguageError(
                "Only English documents are supported. Please upload an English document."
            )

        try:
            flagged = await self.moderation.moderate(text[: self.moderation_sample_chars])
        except ModerationUnavailableError as exc:
            logger.warning("Content moderation unavailable, continuing: %s", exc)
            return
        except Exception as exc:
            logger.warning("Content moderation failed, continuing: %s", exc, exc_info=True)
            return

        if flagged:
            raise ContentPolicyError("Document content violates our content policy.")


def looks_english(text: str) -> bool:
    """True when *text* contains at least 3 distinct stopwords as whole words."""
    words = set(_WORD_RE.findall(text.lower()))
    return len(ENGLISH_STOPWORDS & words) >= MIN_STOPWORD_HITS
