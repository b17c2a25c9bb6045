"""
Pydantic models for card data — the typed view at the END of the pipeline.

Every transform in this package works on the JSON form of a card (plain
dicts and lists) because `metadata` and field values are open-ended. Once a
card has been validated, sanitized and identified it is lifted into the
models below, where the polymorphic tags are closed enums.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr

# JSON form of a card as it flows through the transforms.
CardPayload = dict[str, Any]


# ─── Severity Levels ────────────────────────────────────────────────


class Severity(str, Enum):
    """Severity of a validation finding."""

    ERROR = "ERROR"  # Card MUST be rejected
    WARNING = "WARNING"  # Accepted, but something was repaired or dropped
    INFO = "INFO"


# ─── Validation Finding ─────────────────────────────────────────────


class ValidationFinding(BaseModel):
    """A single validation finding with severity, machine-readable code, and details."""

    severity: Severity
    code: str  # Machine-readable, e.g. "OVERSIZE_INPUT"
    field: str  # Path of the node this relates to, e.g. "sections[2].fields"
    message: str
    details: dict = Field(default_factory=dict)


# ─── Node Tags ──────────────────────────────────────────────────────


class NodeKind(str, Enum):
    """Kinds of node in a card tree; the sanitizer has one rule per kind."""

    CARD = "card"
    SECTION = "section"
    FIELD = "field"
    ITEM = "item"
    ACTION = "action"


class SectionType(str, Enum):
    INFO = "info"
    TIMELINE = "timeline"
    TABLE = "table"
    LIST = "list"
    ANALYTICS = "analytics"
    CUSTOM = "custom"


class ActionKind(str, Enum):
    MAIL = "mail"
    WEBSITE = "website"
    AGENT = "agent"
    QUESTION = "question"
    PRIMARY = "primary"
    SECONDARY = "secondary"


SECTION_TYPES: frozenset[str] = frozenset(t.value for t in SectionType)
ACTION_KINDS: frozenset[str] = frozenset(k.value for k in ActionKind)


# ─── Card Tree ──────────────────────────────────────────────────────

FieldValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr, dict[str, Any], list[Any], None]


class _Node(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CardField(_Node):
    id: Optional[str] = None
    label: Optional[str] = None
    title: Optional[str] = None
    value: FieldValue = None
    description: Optional[str] = None
    link: Optional[str] = None
    email: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class CardItem(_Node):
    id: Optional[str] = None
    title: str
    description: Optional[str] = None
    value: FieldValue = None
    metadata: Optional[dict[str, Any]] = None


class CardSection(_Node):
    id: Optional[str] = None
    title: str
    type: SectionType
    subtitle: Optional[str] = None
    description: Optional[str] = None
    fields: Optional[list[CardField]] = None
    items: Optional[list[CardItem]] = None
    metadata: Optional[dict[str, Any]] = None


class EmailContact(_Node):
    name: str = ""
    email: str = ""
    role: str = ""


class EmailConfig(_Node):
    contact: Optional[EmailContact] = None
    to: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    cc: Union[str, list[str], None] = None
    bcc: Union[str, list[str], None] = None


class CardAction(_Node):
    id: Optional[str] = None
    label: str
    kind: ActionKind = ActionKind.PRIMARY
    icon: Optional[str] = None
    url: Optional[str] = None
    email: Optional[EmailConfig] = None
    metadata: Optional[dict[str, Any]] = None


class Card(_Node):
    """A validated, sanitized and identified card."""

    id: Optional[str] = None
    title: str
    subtitle: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[list[str]] = None
    columns: Optional[int] = None
    sections: list[CardSection] = Field(default_factory=list)
    actions: Optional[list[CardAction]] = None
    metadata: Optional[dict[str, Any]] = None

    @classmethod
    def from_payload(cls, payload: CardPayload) -> Card:
        return cls.model_validate(payload)

    def to_payload(self) -> CardPayload:
        """Back to the JSON form, omitting unset optional keys."""
        return self.model_dump(mode="json", exclude_none=True)


# ─── Structural Diagnostics ─────────────────────────────────────────


class ParseDiagnostic(BaseModel):
    """Why a parsed payload failed the card shape check."""

    has_title: bool
    has_sections: bool
    sections_type: str  # JSON type name, or "undefined" when missing
    keys: list[str] = Field(default_factory=list)
    preview: str = ""


class ParseOutcome(BaseModel):
    """Detailed result of parsing and shape-checking one raw payload."""

    card: Optional[CardPayload] = None
    findings: list[ValidationFinding] = Field(default_factory=list)
    diagnostic: Optional[ParseDiagnostic] = None
    repaired: bool = False
    repairs: list[str] = Field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        """Message of the first ERROR finding, if any."""
        for finding in self.findings:
            if finding.severity == Severity.ERROR:
                return finding.message
        return None


# ─── Pipeline Report ────────────────────────────────────────────────


class CardReport(BaseModel):
    """The final output of the single-card pipeline."""

    card_id: Optional[str] = None
    is_valid: bool
    findings: list[ValidationFinding] = Field(default_factory=list)
    card: Optional[Card] = None
    repaired: bool = False
    original_hash: str = ""  # SHA-256 of the raw payload for audit trail


# ─── Batch Results ──────────────────────────────────────────────────


class InvalidEntry(BaseModel):
    index: int
    error: str
    preview: str = ""


class BatchValidationResult(BaseModel):
    valid: list[CardPayload] = Field(default_factory=list)
    invalid: list[InvalidEntry] = Field(default_factory=list)
    success_rate: float = 0.0  # Percentage, 0-100


class MergeResult(BaseModel):
    merged: list[CardPayload] = Field(default_factory=list)
    duplicate_count: int = 0
    duplicates: dict[str, int] = Field(default_factory=dict)  # id -> later copies dropped
    unidentified_count: int = 0


class DuplicateGroup(BaseModel):
    title: str
    count: int
    indices: list[int] = Field(default_factory=list)


class DedupResult(BaseModel):
    unique: list[CardPayload] = Field(default_factory=list)
    duplicates: list[DuplicateGroup] = Field(default_factory=list)


class CollectionStats(BaseModel):
    total_cards: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    total_sections: int = 0
    avg_sections_per_card: float = 0.0
    cards_with_actions: int = 0


class CollectionAnalysis(BaseModel):
    valid_cards: list[CardPayload] = Field(default_factory=list)
    invalid_count: int = 0
    stats: CollectionStats = Field(default_factory=CollectionStats)
    duplicates: list[DuplicateGroup] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)
