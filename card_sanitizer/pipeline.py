"""
Main card pipeline — orchestrates the full intake of one raw payload.

Flow:
  ┌─────────────┐
  │ Raw payload │
  └──────┬──────┘
         │
  ┌──────▼──────┐
  │ Parse +     │   ← Byte ceiling first, strict JSON, one repair
  │ Shape check │
  └──────┬──────┘
         │
  ┌──────▼──────┐
  │ Deep check  │   ← Counts, ceilings, per-node shape
  └──────┬──────┘
         │
  ┌──────▼──────┐
  │  Sanitize   │   ← Markup, URLs, e-mail, closed tags
  └──────┬──────┘
         │
  ┌──────▼──────┐
  │  Identify   │   ← IDs for every node
  └──────┬──────┘
         │
  ┌──────▼──────┐
  │   Report    │   ← Typed card + findings + pass/fail
  └─────────────┘

Design principles:
  - Every stage gets a fresh copy; the caller's data is never mutated.
  - Stages are composed here, never inside each other.
  - The raw payload is SHA-256 hashed for audit trail.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Optional

from pydantic import ValidationError

from .config import CardLimits, get_settings
from .exceptions import SanitizationFault
from .identity import IdFactory, ensure_ids, generate_id
from .models import Card, CardReport, Severity, ValidationFinding
from .sanitizer import CardSanitizer
from .validators import StructuralValidator

logger = logging.getLogger(__name__)


class CardPipeline:
    """Orchestrates the full card intake workflow.

    Usage:
        pipeline = CardPipeline()
        report = pipeline.run(raw_json)
        if not report.is_valid:
            # card is rejected, do not render
            for finding in report.findings:
                print(finding)
    """

    def __init__(
        self,
        limits: CardLimits | None = None,
        validator: StructuralValidator | None = None,
        sanitizer: CardSanitizer | None = None,
        id_factory: IdFactory = generate_id,
    ):
        self.limits = limits or get_settings()
        self.validator = validator or StructuralValidator(self.limits)
        self.sanitizer = sanitizer or CardSanitizer(self.limits)
        self.id_factory = id_factory

    def run(self, raw_text: str) -> CardReport:
        """Execute the full pipeline on one raw payload.

        Args:
            raw_text: The untrusted JSON text.

        Returns:
            CardReport with findings and pass/fail verdict.
        """
        # ── Step 0: Audit hash of original input ────────────────────
        raw_bytes = raw_text.encode("utf-8", errors="replace") if isinstance(raw_text, str) else b""
        doc_hash = hashlib.sha256(raw_bytes).hexdigest()

        # ── Step 1: Parse + shape check ─────────────────────────────
        outcome = self.validator.parse_and_validate_detailed(raw_text)
        findings: list[ValidationFinding] = list(outcome.findings)
        if outcome.card is None:
            return CardReport(is_valid=False, findings=findings, original_hash=doc_hash)

        # ── Step 2: Deep structure check ────────────────────────────
        findings += self.validator.structure_findings(outcome.card)
        if _has_errors(findings):
            return self._rejected(findings, outcome.repaired, doc_hash)

        # ── Step 3: Sanitize (a fault rejects the card) ─────────────
        try:
            sanitized = self.sanitizer.sanitize_strict(outcome.card)
        except SanitizationFault as e:
            logger.error("Sanitization fault: %s", e, extra={"error_code": e.code})
            findings.append(_fault_finding(str(e), e.details))
            return self._rejected(findings, outcome.repaired, doc_hash)
        except Exception as e:  # noqa: BLE001 -- run() reports, never raises
            logger.error(
                "Unexpected %s during sanitization", type(e).__name__,
                extra={"error_code": "SANITIZATION_FAULT"},
            )
            findings.append(_fault_finding("Card could not be sanitized.", {}))
            return self._rejected(findings, outcome.repaired, doc_hash)

        # ── Step 4: Assign identities ───────────────────────────────
        identified = ensure_ids(sanitized, self.id_factory)

        # ── Step 5: Lift into the typed model ───────────────────────
        try:
            card = Card.from_payload(identified)
        except ValidationError as e:
            logger.error("Sanitized card failed model validation: %s", e.error_count())
            findings.append(
                _fault_finding(
                    "Sanitized card does not match the card model.",
                    {"errors": e.error_count()},
                )
            )
            return self._rejected(findings, outcome.repaired, doc_hash)

        return CardReport(
            card_id=card.id,
            is_valid=True,
            findings=findings,
            card=card,
            repaired=outcome.repaired,
            original_hash=doc_hash,
        )

    def process(self, raw_text: str) -> Optional[Card]:
        """Shortcut: the finished card, or None when the payload is rejected."""
        report = self.run(raw_text)
        if not report.is_valid:
            logger.info(
                "Card rejected with %d finding(s)", len(report.findings),
                extra={"error_code": report.findings[0].code if report.findings else None},
            )
        return report.card

    @staticmethod
    def _rejected(findings: list[ValidationFinding], repaired: bool, doc_hash: str) -> CardReport:
        return CardReport(
            is_valid=False,
            findings=findings,
            repaired=repaired,
            original_hash=doc_hash,
        )


def _has_errors(findings: list[ValidationFinding]) -> bool:
    return any(f.severity == Severity.ERROR for f in findings)


def _fault_finding(message: str, details: dict) -> ValidationFinding:
    return ValidationFinding(
        severity=Severity.ERROR,
        code="SANITIZATION_FAULT",
        field="card",
        message=message,
        details=details,
    )
