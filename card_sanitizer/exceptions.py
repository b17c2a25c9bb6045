"""
Custom exception hierarchy for card intake.

Each exception type maps to one of the three failure kinds of the pipeline.
They are raised INSIDE components and converted at the public boundary:
the validator turns them into `None`/`False` plus a logged finding, the
sanitizer turns them into the minimal empty card.
"""

from __future__ import annotations


class CardPipelineError(Exception):
    """Base exception for all card intake failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class MalformedInputError(CardPipelineError):
    """The payload is unparseable or has the wrong shape."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("MALFORMED_INPUT", message, details)


class OversizeInputError(CardPipelineError):
    """The payload exceeds a configured byte or count ceiling."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("OVERSIZE_INPUT", message, details)


class SanitizationFault(CardPipelineError):
    """The sanitizer met a value it cannot safely classify."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("SANITIZATION_FAULT", message, details)
