"""
Primitive sanitizers — one value in, one safe value out.

These are the leaves every other component is built on. Each function:
  - Re-checks the runtime type of its input (never trusts the caller)
  - Returns a safe value or a "nothing" value ("" / None), never raises
  - Is idempotent: running it on its own output changes nothing

Markup is handled by bleach (all tags stripped, leftovers entity-escaped),
e-mail syntax by email-validator, URLs by urllib.parse plus an allowlist.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional
from urllib.parse import quote, unquote, urlsplit

import bleach
from email_validator import EmailNotValidError, validate_email

logger = logging.getLogger(__name__)


# ─── Constants ───────────────────────────────────────────────────────

HTTP_SCHEMES: tuple[str, ...] = ("http", "https")
LINK_SCHEMES: tuple[str, ...] = ("http", "https", "mailto")

BLOCKED_SCHEMES: frozenset[str] = frozenset({
    "javascript", "data", "vbscript", "file", "about", "livescript",
})

DEFAULT_URL_LENGTH = 2048
DEFAULT_EMAIL_LENGTH = 320

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_INLINE_WHITESPACE = re.compile(r"[^\S\n]+")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")

# Script-bearing scheme tokens that must not survive even in plain text.
_DANGEROUS_TEXT_TOKENS = re.compile(
    r"(?:java|vb|live)script\s*:|data\s*:\s*text/html", re.IGNORECASE
)

# After truncation: an '&' that lost its closing ';' is a cut entity.
_PARTIAL_ENTITY = re.compile(r"&[#a-zA-Z0-9]*$")

_SUSPICIOUS_URL_PATTERNS = re.compile(
    r"<script|<iframe|(?:java|vb|live)script\s*:|data\s*:\s*text/html"
    r"|eval\s*\(|expression\s*\(",
    re.IGNORECASE,
)
_URL_FORBIDDEN_CHARS = re.compile(r"[\s\x00-\x1f\x7f]")

# Everything else (quotes, angle brackets, non-ASCII) gets percent-encoded.
_URL_SAFE_CHARS = ":/?#[]@!$&()*+,;=%~"


# ─── Text ────────────────────────────────────────────────────────────


def escape_markup(value: object) -> str:
    """Neutralize markup in a plain-text value.

    Steps:
      1. Drop NUL and other control characters (newlines and tabs survive)
      2. Strip every HTML tag with bleach; stray '<', '>' and '&' come back
         entity-escaped, existing entities are preserved
      3. Remove script-bearing scheme tokens until none remain
         ("javajavascript:script:" collapses fully)
      4. Normalize whitespace runs and trim
    """
    if not isinstance(value, str):
        return ""

    text = _CONTROL_CHARS.sub("", value)
    text = bleach.clean(text, tags=set(), attributes={}, strip=True, strip_comments=True)

    while _DANGEROUS_TEXT_TOKENS.search(text):
        text = _DANGEROUS_TEXT_TOKENS.sub("", text)

    text = _INLINE_WHITESPACE.sub(" ", text)
    text = _EXCESS_NEWLINES.sub("\n\n", text)
    return text.strip()


def truncate(text: str, max_length: int) -> str:
    """Cut `text` to at most `max_length` characters.

    Never leaves half an HTML entity ("&am") dangling at the end — a later
    escape pass would otherwise turn it into "&amp;am" and break idempotence.
    """
    if max_length <= 0:
        return ""
    if len(text) <= max_length:
        return text
    cut = _PARTIAL_ENTITY.sub("", text[:max_length])
    return cut.rstrip()


def sanitize_text(value: object, max_length: int) -> str:
    """Escape, then truncate — so the cap bounds the FINAL length."""
    return truncate(escape_markup(value), max_length)


def sanitize_identifier(value: object, max_length: int) -> Optional[str]:
    """Keep a node identity only when it is a non-empty string or an integer."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        cleaned = sanitize_text(value, max_length)
        return cleaned or None
    return None


# ─── E-mail ──────────────────────────────────────────────────────────


def sanitize_email(value: object, max_length: int = DEFAULT_EMAIL_LENGTH) -> Optional[str]:
    """Validate an e-mail address; return it trimmed and lowercased, else None."""
    if not isinstance(value, str):
        return None

    candidate = value.strip()
    if not candidate or len(candidate) > max_length:
        return None

    try:
        validated = validate_email(candidate, check_deliverability=False)
    except EmailNotValidError as e:
        logger.debug("Rejected e-mail address: %s", e)
        return None

    return validated.normalized.strip().lower()


def sanitize_email_list(
    value: object, max_length: int = DEFAULT_EMAIL_LENGTH
) -> Optional[str | list[str]]:
    """cc/bcc style value: a single address or a list of them.

    A single invalid address yields None; invalid list entries are dropped.
    """
    if isinstance(value, str):
        return sanitize_email(value, max_length)
    if isinstance(value, (list, tuple)):
        cleaned = (sanitize_email(entry, max_length) for entry in value)
        return [email for email in cleaned if email is not None]
    return None


# ─── URLs ────────────────────────────────────────────────────────────


def sanitize_url(
    value: object,
    allowed_schemes: Iterable[str] = HTTP_SCHEMES,
    max_length: int = DEFAULT_URL_LENGTH,
) -> Optional[str]:
    """Allow-list a URL by scheme; return it percent-encoded, else None.

    Rejects:
      - non-strings, empty or over-long values
      - embedded whitespace / control characters
      - script-bearing patterns anywhere in the URL (query strings included)
      - javascript:, data:, vbscript:, file:, about: and any scheme not allowed
      - http(s) URLs without a host, mailto: URLs without a valid address
      - anything urllib cannot split
    """
    if not isinstance(value, str):
        return None

    candidate = value.strip()
    if not candidate or len(candidate) > max_length:
        return None
    if _URL_FORBIDDEN_CHARS.search(candidate):
        return None
    if _SUSPICIOUS_URL_PATTERNS.search(candidate):
        logger.warning("Rejected URL with script-bearing content")
        return None

    try:
        parsed = urlsplit(candidate)
        hostname = parsed.hostname
    except ValueError:
        return None

    scheme = parsed.scheme.lower()
    if scheme in BLOCKED_SCHEMES:
        logger.warning("Rejected URL with blocked scheme '%s'", scheme)
        return None
    if scheme not in {s.lower() for s in allowed_schemes}:
        return None

    if scheme == "mailto":
        if sanitize_email(unquote(parsed.path)) is None:
            return None
    elif not hostname:
        return None

    return quote(candidate, safe=_URL_SAFE_CHARS)


def sanitize_link(value: object, max_length: int = DEFAULT_URL_LENGTH) -> Optional[str]:
    """Field links additionally allow mailto:."""
    return sanitize_url(value, LINK_SCHEMES, max_length)
