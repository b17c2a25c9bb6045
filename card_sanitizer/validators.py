"""
Structural validation engine — shape and ceilings, independent of content safety.

Two layers:
  - Shape predicates (`is_valid_card`, `is_valid_section`, ...) — pure,
    lenient about legacy keys, never raise.
  - Structure checks (`check_*`) — each takes a parsed card and returns a
    list of ValidationFinding objects (empty = all clear). They are
    aggregated by `collect_structure_findings()`.

`StructuralValidator` wraps both for raw text:
  raw text → size ceiling (before parsing) → strict JSON parse → shape check
  → ONE repair attempt → canonical card dict, or None plus a logged diagnostic.

Nothing in here raises to the caller. Every failure is a `None`/`False`
return plus a finding.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Optional, cast

from .config import CardLimits, get_settings
from .exceptions import CardPipelineError, MalformedInputError, OversizeInputError
from .models import (
    SECTION_TYPES,
    CardPayload,
    ParseDiagnostic,
    ParseOutcome,
    Severity,
    ValidationFinding,
)

logger = logging.getLogger(__name__)


# ─── Constants ───────────────────────────────────────────────────────

TITLE_KEY = "title"
ALTERNATE_TITLE_KEY = "cardTitle"

_FIELD_VALUE_TYPES = (str, int, float, bool, Mapping, list, type(None))

_MISSING = object()


# ─── Shape Predicates ────────────────────────────────────────────────


def is_valid_card(obj: object) -> bool:
    """A card needs a string title (either key) and, if present, a list of sections."""
    if not isinstance(obj, Mapping):
        return False

    has_title = isinstance(obj.get(TITLE_KEY), str) or isinstance(
        obj.get(ALTERNATE_TITLE_KEY), str
    )
    if "sections" not in obj:
        # Sections can be added later
        return has_title
    return has_title and isinstance(obj["sections"], list)


def is_valid_section(obj: object) -> bool:
    if not isinstance(obj, Mapping):
        return False
    section_type = obj.get("type")
    # Tags arrive as arbitrary JSON; lists and objects are unhashable.
    if not isinstance(section_type, str):
        return False
    return isinstance(obj.get("title"), str) and section_type in SECTION_TYPES


def is_valid_field(obj: object) -> bool:
    """Fields need a label or title, and a value of a renderable type."""
    if not isinstance(obj, Mapping):
        return False
    has_label = isinstance(obj.get("label"), str) or isinstance(obj.get("title"), str)
    return has_label and "value" in obj and isinstance(obj["value"], _FIELD_VALUE_TYPES)


def is_valid_item(obj: object) -> bool:
    return isinstance(obj, Mapping) and isinstance(obj.get("title"), str)


def is_valid_action(obj: object) -> bool:
    return isinstance(obj, Mapping) and isinstance(obj.get("label"), str)


# ─── Helpers ─────────────────────────────────────────────────────────


def json_type_name(value: object = _MISSING) -> str:
    """Name a Python value by its JSON type ("undefined" when missing)."""
    if value is _MISSING:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def nesting_depth(value: object, stop_after: int | None = None) -> int:
    """Container nesting depth of a JSON value (scalars are 0).

    Iterative, so hostile nesting cannot exhaust the interpreter stack.
    Stops early once `stop_after` is exceeded.
    """
    deepest = 0
    stack: list[tuple[object, int]] = [(value, 1)]
    while stack:
        current, level = stack.pop()
        if isinstance(current, Mapping):
            children: Any = current.values()
        elif isinstance(current, (list, tuple)):
            children = current
        else:
            continue
        deepest = max(deepest, level)
        if stop_after is not None and deepest > stop_after:
            return deepest
        stack.extend((child, level + 1) for child in children)
    return deepest


def repair_card(obj: object) -> tuple[Optional[CardPayload], list[str]]:
    """Single-pass, best-effort repair. Returns (repaired copy, rules applied).

    Rules (the complete set):
      1. Rename the alternate title key `cardTitle` to `title`
      2. Default a missing or null `sections` collection to []
    The input is never modified.
    """
    if not isinstance(obj, Mapping):
        return None, []

    card = dict(obj)
    repairs: list[str] = []

    if not isinstance(card.get(TITLE_KEY), str) and isinstance(card.get(ALTERNATE_TITLE_KEY), str):
        card[TITLE_KEY] = card.pop(ALTERNATE_TITLE_KEY)
        repairs.append(f"renamed '{ALTERNATE_TITLE_KEY}' to '{TITLE_KEY}'")

    if card.get("sections") is None:
        card["sections"] = []
        repairs.append("defaulted missing sections to []")

    return card, repairs


def _error(code: str, field: str, message: str, **details: Any) -> ValidationFinding:
    return ValidationFinding(
        severity=Severity.ERROR, code=code, field=field, message=message, details=details
    )


# ─── Structure Checks ────────────────────────────────────────────────


def collect_structure_findings(card: object, limits: CardLimits) -> list[ValidationFinding]:
    """Run ALL structure checks and collect findings.

    Stops at the first check that reports an error: a root that is not a
    card, or a collection over its ceiling, is not worth walking further.
    """
    for check in (check_root_shape, check_section_count, check_action_count):
        early = check(card, limits)
        if early:
            return early

    findings: list[ValidationFinding] = []
    findings.extend(check_sections(card, limits))
    findings.extend(check_actions(card, limits))
    if not findings:
        findings.extend(check_metadata_depth(card, limits))
    return findings


def check_root_shape(card: object, limits: CardLimits) -> list[ValidationFinding]:
    """The root must be a card and its sections must be an actual list."""
    if not is_valid_card(card):
        return [_error("INVALID_CARD_SHAPE", "card", "Object is not a valid card.")]

    sections = cast(Mapping, card).get("sections", _MISSING)
    if not isinstance(sections, list):
        return [
            _error(
                "MISSING_SECTIONS",
                "sections",
                "Card has no sections list.",
                sections_type=json_type_name(sections),
            )
        ]
    return []


def check_section_count(card: Mapping, limits: CardLimits) -> list[ValidationFinding]:
    count = len(card["sections"])
    if count > limits.max_sections:
        return [
            _error(
                "SECTION_LIMIT_EXCEEDED",
                "sections",
                f"Card has {count} sections, exceeding limit of {limits.max_sections}.",
                count=count,
                limit=limits.max_sections,
            )
        ]
    return []


def check_action_count(card: Mapping, limits: CardLimits) -> list[ValidationFinding]:
    actions = card.get("actions")
    if actions is None:
        return []
    if not isinstance(actions, list):
        return [
            _error(
                "INVALID_ACTIONS",
                "actions",
                "Card actions must be a list.",
                actions_type=json_type_name(actions),
            )
        ]
    if len(actions) > limits.max_actions:
        return [
            _error(
                "ACTION_LIMIT_EXCEEDED",
                "actions",
                f"Card has {len(actions)} actions, exceeding limit of {limits.max_actions}.",
                count=len(actions),
                limit=limits.max_actions,
            )
        ]
    return []


def check_sections(card: Mapping, limits: CardLimits) -> list[ValidationFinding]:
    """Every section, field and item against its shape rule and ceiling."""
    findings: list[ValidationFinding] = []

    for s_index, section in enumerate(card["sections"]):
        path = f"sections[{s_index}]"
        if not is_valid_section(section):
            findings.append(_error("INVALID_SECTION", path, "Section needs a title and a known type."))
            continue

        findings.extend(
            _check_collection(
                section.get("fields"), f"{path}.fields", limits.max_fields_per_section,
                "FIELD", is_valid_field,
            )
        )
        findings.extend(
            _check_collection(
                section.get("items"), f"{path}.items", limits.max_items_per_section,
                "ITEM", is_valid_item,
            )
        )

        if findings:
            # One bad section is enough to reject; don't walk the rest.
            break

    return findings


def check_actions(card: Mapping, limits: CardLimits) -> list[ValidationFinding]:
    findings: list[ValidationFinding] = []
    for index, action in enumerate(card.get("actions") or []):
        if not is_valid_action(action):
            findings.append(_error("INVALID_ACTION", f"actions[{index}]", "Action needs a label."))
    return findings


def check_metadata_depth(card: Mapping, limits: CardLimits) -> list[ValidationFinding]:
    """Open-ended values (metadata, object field values) stay within the depth ceiling."""
    limit = limits.max_metadata_depth
    findings: list[ValidationFinding] = []

    for path, value in _open_values(card):
        depth = nesting_depth(value, stop_after=limit)
        if depth > limit:
            findings.append(
                _error(
                    "METADATA_TOO_DEEP",
                    path,
                    f"Nested value deeper than {limit} levels.",
                    limit=limit,
                )
            )
    return findings


def _check_collection(
    nodes: object, path: str, ceiling: int, kind: str, predicate: Any
) -> list[ValidationFinding]:
    if nodes is None:
        return []
    if not isinstance(nodes, list):
        return [_error(f"INVALID_{kind}S", path, f"{kind.title()}s must be a list.")]
    if len(nodes) > ceiling:
        return [
            _error(
                f"{kind}_LIMIT_EXCEEDED",
                path,
                f"Section has {len(nodes)} {kind.lower()}s, exceeding limit of {ceiling}.",
                count=len(nodes),
                limit=ceiling,
            )
        ]
    for index, node in enumerate(nodes):
        if not predicate(node):
            return [_error(f"INVALID_{kind}", f"{path}[{index}]", f"Invalid {kind.lower()}.")]
    return []


def _open_values(card: Mapping):
    """Yield (path, value) for every metadata map and object-typed value."""
    yield from _metadata_of(card, "")

    for s_index, section in enumerate(card.get("sections") or []):
        s_path = f"sections[{s_index}]"
        yield from _metadata_of(section, f"{s_path}.")
        for kind in ("fields", "items"):
            for index, node in enumerate(section.get(kind) or []):
                n_path = f"{s_path}.{kind}[{index}]"
                yield from _metadata_of(node, f"{n_path}.")
                if isinstance(node.get("value"), (Mapping, list)):
                    yield f"{n_path}.value", node["value"]

    for index, action in enumerate(card.get("actions") or []):
        yield from _metadata_of(action, f"actions[{index}].")


def _metadata_of(node: Mapping, prefix: str):
    # `meta` is the legacy spelling the sanitizer still accepts.
    for key in ("metadata", "meta"):
        if node.get(key) is not None:
            yield f"{prefix}{key}", node[key]


# ─── Validator ───────────────────────────────────────────────────────


class StructuralValidator:
    """Parses raw payloads and checks card structure against configured ceilings.

    Usage:
        validator = StructuralValidator(limits)
        card = validator.parse_and_validate(raw_json)
        if card is not None and validator.validate_structure_deep(card):
            ...
    """

    def __init__(self, limits: CardLimits | None = None):
        self.limits = limits or get_settings()

    # ─── Raw payloads ───────────────────────────────────────────────

    def parse_and_validate(self, raw_text: object) -> Optional[CardPayload]:
        """Parse and shape-check a raw payload; None on any failure."""
        return self.parse_and_validate_detailed(raw_text).card

    def parse_and_validate_detailed(self, raw_text: object) -> ParseOutcome:
        """Like `parse_and_validate`, but also reports findings and repairs."""
        try:
            parsed = self._load_json(raw_text)
        except CardPipelineError as e:
            logger.warning("%s", e, extra={"error_code": e.code, **_log_extra(e.details)})
            return ParseOutcome(findings=[_error(e.code, "payload", str(e), **e.details)])
        except Exception as e:  # noqa: BLE001
            logger.error("Unexpected error parsing payload: %s", type(e).__name__)
            return ParseOutcome(
                findings=[_error("MALFORMED_INPUT", "payload", "Payload could not be parsed.")]
            )

        return self._check_shape(parsed)

    def _load_json(self, raw_text: object) -> Any:
        """Steps 1-3: reject empty input, enforce the byte ceiling, parse strictly."""
        if not isinstance(raw_text, str) or not raw_text.strip():
            raise MalformedInputError("Empty or non-text payload.")

        # The ceiling is enforced BEFORE the parser ever sees the payload.
        limit = self.limits.max_payload_bytes
        size = len(raw_text) if len(raw_text) > limit else len(
            raw_text.encode("utf-8", errors="replace")
        )
        if size > limit:
            raise OversizeInputError(
                f"Payload size ({size} bytes) exceeds maximum allowed size ({limit} bytes).",
                {"size_bytes": size, "limit": limit},
            )

        try:
            return json.loads(raw_text, parse_constant=_reject_constant)
        except json.JSONDecodeError as e:
            raise MalformedInputError(
                f"JSON parse failed: {e.msg} at position {e.pos}",
                {"offset": e.pos, "line": e.lineno, "column": e.colno},
            ) from e
        except ValueError as e:
            raise MalformedInputError(f"JSON parse failed: {e}") from e
        except RecursionError as e:
            raise MalformedInputError("JSON parse failed: nesting too deep") from e

    def _check_shape(self, parsed: Any) -> ParseOutcome:
        """Step 4: shape check, one repair attempt, one re-check."""
        if is_valid_card(parsed):
            card, _ = repair_card(parsed)  # canonicalize accepted legacy keys
            return ParseOutcome(card=card)

        diagnostic = self.diagnose(parsed)
        logger.warning(
            "Parsed JSON does not match card structure: %s",
            diagnostic.model_dump(),
            extra={"error_code": "INVALID_CARD_SHAPE"},
        )

        repaired, repairs = repair_card(parsed)
        if repaired is None or not repairs or not is_valid_card(repaired):
            return ParseOutcome(
                diagnostic=diagnostic,
                repairs=repairs,
                findings=[
                    _error(
                        "INVALID_CARD_SHAPE",
                        "card",
                        "Parsed JSON does not match card structure.",
                        **diagnostic.model_dump(),
                    )
                ],
            )

        logger.warning("Fixed common issues in card structure: %s", ", ".join(repairs))
        return ParseOutcome(
            card=repaired,
            diagnostic=diagnostic,
            repaired=True,
            repairs=repairs,
            findings=[
                ValidationFinding(
                    severity=Severity.WARNING,
                    code="SHAPE_REPAIRED",
                    field="card",
                    message=f"Card structure repaired: {', '.join(repairs)}.",
                    details={"repairs": repairs},
                )
            ],
        )

    def diagnose(self, parsed: Any) -> ParseDiagnostic:
        """Summarize why a parsed value is not a card."""
        mapping = parsed if isinstance(parsed, Mapping) else {}
        try:
            preview = json.dumps(parsed, ensure_ascii=False, default=str)
        except (TypeError, ValueError, RecursionError):
            preview = repr(parsed)
        return ParseDiagnostic(
            has_title=isinstance(mapping.get(TITLE_KEY), str)
            or isinstance(mapping.get(ALTERNATE_TITLE_KEY), str),
            has_sections=isinstance(mapping.get("sections"), list),
            sections_type=json_type_name(mapping.get("sections", _MISSING)),
            keys=[str(key) for key in mapping.keys()],
            preview=preview[: self.limits.preview_length],
        )

    # ─── Parsed cards ───────────────────────────────────────────────

    def structure_findings(self, card: object) -> list[ValidationFinding]:
        return collect_structure_findings(card, self.limits)

    def validate_structure_deep(self, card: object) -> bool:
        """Every section/field/item/action against shape rules and ceilings."""
        try:
            findings = self.structure_findings(card)
        except Exception as e:  # noqa: BLE001
            logger.error("Error validating card structure: %s", type(e).__name__)
            return False

        errors = [f for f in findings if f.severity == Severity.ERROR]
        for finding in errors:
            logger.warning(
                "%s (%s)", finding.message, finding.field, extra={"error_code": finding.code}
            )
        return not errors


# ─── Internal Helpers ────────────────────────────────────────────────


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant '{name}'")


def _log_extra(details: dict) -> dict:
    return {"size_bytes": details["size_bytes"]} if "size_bytes" in details else {}


# ─── Functional API ──────────────────────────────────────────────────


def parse_and_validate(raw_text: object, limits: CardLimits | None = None) -> Optional[CardPayload]:
    return StructuralValidator(limits).parse_and_validate(raw_text)


def validate_structure_deep(card: object, limits: CardLimits | None = None) -> bool:
    return StructuralValidator(limits).validate_structure_deep(card)
