"""
Exception taxonomy for the document → mind map → quiz pipeline.

Input-rejection errors are raised synchronously while an upload is handled
and carry the HTTP status the routers translate them into.  Everything else
is internal: generation and structuring errors trigger fallbacks, lifecycle
errors guard the terminal states.
"""
from __future__ import annotations

from fastapi import status


# ---------------------------------------------------------------------------
# Input rejection (upload time, no Document is created)
# ---------------------------------------------------------------------------

class InputRejectedError(Exception):
    """Base class for uploads that cannot be turned into a Document."""

    status_code: int = status.HTTP_422_UNPROCESSABLE_ENTITY


class UnsupportedTypeError(InputRejectedError):
    status_code = status.HTTP_400_BAD_REQUEST


class PageLimitError(InputRejectedError):
    pass


class ExtractionError(InputRejectedError):
    pass


class FileTooLargeError(ExtractionError):
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class ContentTooLongError(InputRejectedError):
    pass


class UnsupportedLanguageError(InputRejectedError):
    pass


class ContentPolicyError(InputRejectedError):
    pass


# ---------------------------------------------------------------------------
# External services
# ---------------------------------------------------------------------------

class GenerationError(Exception):
    """The generative text service failed, timed out, or returned nothing."""


class ModerationUnavailableError(Exception):
    """The moderation service is disabled or could not be reached."""


# ---------------------------------------------------------------------------
# Pipeline internals
# ---------------------------------------------------------------------------

class StructuringError(Exception):
    """The model's outline could not be turned into a usable node tree."""


class StructuringParseError(StructuringError):
    """The model's response was not parseable as structured data."""


class InvalidTransitionError(Exception):
    """A lifecycle transition was attempted from a terminal state."""


class AttemptValidationError(ValueError):
    """A submitted attempt is malformed (e.g. blank answer)."""


class DocumentNotFoundError(LookupError):
    """No document with the given id is visible to the caller."""


class DocumentNotReadyError(Exception):
    """The document has not reached ``completed`` yet."""


class QuestionNotFoundError(LookupError):
    """An attempt references a question that does not exist."""


class FlashcardNotFoundError(LookupError):
    """No flashcard with the given id is visible to the caller."""
