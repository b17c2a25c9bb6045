"""
Batch collection analysis — the per-card pipeline applied across many payloads.

Each item is processed independently: one bad payload never stops the batch,
and there is no shared state between items. Callers that need to avoid long
blocking runs chunk their input lists themselves.

Cross-item reports:
  - merge by identity (first occurrence wins)
  - case-insensitive duplicate titles
  - aggregate stats and a short list of heuristic issues
"""

from __future__ import annotations

import copy
import json
import logging
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from typing import Optional

from .config import CardLimits, get_settings
from .exceptions import MalformedInputError, OversizeInputError
from .identity import has_identity, strip_ids
from .models import (
    BatchValidationResult,
    CardPayload,
    CollectionAnalysis,
    CollectionStats,
    DedupResult,
    DuplicateGroup,
    InvalidEntry,
    MergeResult,
)
from .sanitizer import CardSanitizer
from .validators import ALTERNATE_TITLE_KEY, StructuralValidator

logger = logging.getLogger(__name__)


class BatchCollectionAnalyzer:
    """Validates, sanitizes and analyzes collections of card payloads.

    Usage:
        analyzer = BatchCollectionAnalyzer()
        analysis = analyzer.analyze_collection(raw_payloads)
        for issue in analysis.issues:
            print(issue)
    """

    def __init__(
        self,
        validator: StructuralValidator | None = None,
        sanitizer: CardSanitizer | None = None,
        limits: CardLimits | None = None,
    ):
        self.limits = limits or (validator.limits if validator else get_settings())
        self.validator = validator or StructuralValidator(self.limits)
        self.sanitizer = sanitizer or CardSanitizer(self.limits)

    # ─── Validation / Sanitization ──────────────────────────────────

    def validate_many(self, raw_list: Sequence[object]) -> BatchValidationResult:
        """Parse + shape-check + deep structure check every payload."""
        valid: list[CardPayload] = []
        invalid: list[InvalidEntry] = []

        for index, raw in enumerate(raw_list):
            outcome = self.validator.parse_and_validate_detailed(raw)
            error = outcome.error
            if outcome.card is not None:
                error = self._structure_error(outcome.card)

            if error is None and outcome.card is not None:
                valid.append(outcome.card)
            else:
                logger.info("Card #%d rejected: %s", index, error, extra={"index": index})
                invalid.append(
                    InvalidEntry(
                        index=index,
                        error=error or "Invalid card structure.",
                        preview=self._preview(raw),
                    )
                )

        total = len(raw_list)
        success_rate = round(len(valid) / total * 100, 2) if total else 0.0
        return BatchValidationResult(valid=valid, invalid=invalid, success_rate=success_rate)

    def sanitize_many(self, cards: Iterable[object]) -> list[CardPayload]:
        """Sanitize every card, dropping the ones the sanitizer cannot handle."""
        result: list[CardPayload] = []
        for index, card in enumerate(cards):
            try:
                result.append(self.sanitizer.sanitize_strict(card))
            except Exception as e:  # noqa: BLE001 -- one bad card never stops the batch
                logger.warning(
                    "Dropping card #%d: sanitization failed (%s)", index, type(e).__name__,
                    extra={"index": index, "error_code": getattr(e, "code", "SANITIZATION_FAULT")},
                )
        return result

    # ─── Cross-item Reports ─────────────────────────────────────────

    def merge(self, *collections: Iterable[object]) -> MergeResult:
        """Merge identified cards by ID. First occurrence wins."""
        merged: list[CardPayload] = []
        seen: set[str] = set()
        duplicates: dict[str, int] = {}
        unidentified = 0

        for collection in collections:
            for card in collection:
                if not isinstance(card, Mapping):
                    logger.warning("Skipping non-card entry of type %s", type(card).__name__)
                    continue

                if not has_identity(card.get("id")):
                    unidentified += 1
                    merged.append(copy.deepcopy(dict(card)))
                    continue

                key = str(card["id"])
                if key in seen:
                    duplicates[key] = duplicates.get(key, 0) + 1
                    continue
                seen.add(key)
                merged.append(copy.deepcopy(dict(card)))

        if unidentified:
            logger.warning("%d cards without an ID were merged without deduplication", unidentified)

        return MergeResult(
            merged=merged,
            duplicate_count=sum(duplicates.values()),
            duplicates=duplicates,
            unidentified_count=unidentified,
        )

    def deduplicate_by_title(self, cards: Sequence[CardPayload]) -> DedupResult:
        """Group by case-insensitive title; keep the first card of each group."""
        groups: dict[str, list[int]] = {}
        for index, card in enumerate(cards):
            groups.setdefault(_title_key(card), []).append(index)

        unique = [copy.deepcopy(cards[indices[0]]) for indices in groups.values()]
        duplicates = [
            DuplicateGroup(title=_title_of(cards[indices[0]]), count=len(indices), indices=indices)
            for indices in groups.values()
            if len(indices) > 1
        ]
        return DedupResult(unique=unique, duplicates=duplicates)

    def stats(self, cards: Sequence[CardPayload]) -> CollectionStats:
        by_type: Counter[str] = Counter()
        total_sections = 0
        with_actions = 0

        for card in cards:
            card_type = card.get("type")
            by_type[card_type if isinstance(card_type, str) and card_type else "unknown"] += 1

            sections = card.get("sections")
            if isinstance(sections, list):
                total_sections += len(sections)

            actions = card.get("actions")
            if isinstance(actions, list) and actions:
                with_actions += 1

        total = len(cards)
        return CollectionStats(
            total_cards=total,
            by_type=dict(by_type),
            total_sections=total_sections,
            avg_sections_per_card=round(total_sections / total, 2) if total else 0.0,
            cards_with_actions=with_actions,
        )

    def analyze_collection(self, raw_list: Sequence[object]) -> CollectionAnalysis:
        """Validate → sanitize → stats + duplicate titles + heuristic issues."""
        validation = self.validate_many(raw_list)
        cards = self.sanitize_many(validation.valid)
        stats = self.stats(cards)
        dedup = self.deduplicate_by_title(cards)

        issues: list[str] = []
        if not raw_list:
            issues.append("Collection is empty")
        if validation.invalid:
            issues.append(f"{len(validation.invalid)} invalid cards found")
        if len(cards) < len(validation.valid):
            issues.append(f"{len(validation.valid) - len(cards)} cards failed sanitization")
        if dedup.duplicates:
            issues.append(f"{len(dedup.duplicates)} duplicate title groups found")
        if cards and stats.cards_with_actions == 0:
            issues.append("No cards have actions defined")
        empty = sum(1 for card in cards if not card.get("sections"))
        if empty:
            issues.append(f"{empty} cards have no sections")

        return CollectionAnalysis(
            valid_cards=cards,
            invalid_count=len(validation.invalid),
            stats=stats,
            duplicates=dedup.duplicates,
            issues=issues,
        )

    # ─── Import / Export ────────────────────────────────────────────

    def export_as_json_array(
        self, cards: Iterable[CardPayload], strip_identity: bool = True
    ) -> str:
        """Serialize cards as one JSON array. IDs are stripped by default."""
        payload = [strip_ids(card) if strip_identity else card for card in cards]
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def split_json_array(self, raw_text: str) -> list[str]:
        """Turn one JSON array file into per-card raw payloads.

        A single JSON object is returned as a one-element list.

        Raises:
            OversizeInputError: if the text exceeds the payload ceiling.
            MalformedInputError: if the text is not a JSON array or object.
        """
        size = len(raw_text.encode("utf-8", errors="replace"))
        if size > self.limits.max_payload_bytes:
            raise OversizeInputError(
                f"Collection size ({size} bytes) exceeds maximum allowed size "
                f"({self.limits.max_payload_bytes} bytes).",
                {"size_bytes": size},
            )
        try:
            parsed = json.loads(raw_text)
        except (ValueError, RecursionError) as e:
            raise MalformedInputError(f"Collection is not valid JSON: {e}") from e

        if isinstance(parsed, list):
            return [json.dumps(item, ensure_ascii=False) for item in parsed]
        if isinstance(parsed, dict):
            return [raw_text]
        raise MalformedInputError("Collection must be a JSON array or object.")

    # ─── Internal Helpers ───────────────────────────────────────────

    def _structure_error(self, card: CardPayload) -> Optional[str]:
        try:
            findings = self.validator.structure_findings(card)
        except Exception as e:  # noqa: BLE001
            logger.error("Structure check failed: %s", type(e).__name__)
            return "Card structure could not be checked."
        return findings[0].message if findings else None

    def _preview(self, raw: object) -> str:
        text = raw if isinstance(raw, str) else repr(raw)
        return text[: min(self.limits.preview_length, 100)]


def _title_of(card: Mapping) -> str:
    title = card.get("title")
    if not isinstance(title, str):
        title = card.get(ALTERNATE_TITLE_KEY)
    return title if isinstance(title, str) else ""


def _title_key(card: Mapping) -> str:
    return _title_of(card).strip().casefold()


# ─── Functional API ──────────────────────────────────────────────────


def analyze_collection(
    raw_list: Sequence[object], limits: CardLimits | None = None
) -> CollectionAnalysis:
    return BatchCollectionAnalyzer(limits=limits).analyze_collection(raw_list)
