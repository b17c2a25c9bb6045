"""
Recursive sanitizer — the content-safety pass over a whole card tree.

Contract:
  - `sanitize()` ALWAYS returns a card. It never returns None, never raises,
    and never mutates its input (the tree is deep-copied first).
  - Every node kind has its own rule (see `CardSanitizer.rules`); every rule
    re-checks runtime types instead of trusting that validation already ran.
  - Only known keys survive. Unknown keys are dropped, never copied through.
  - Fail-closed: if anything unexpected happens mid-walk, the whole call
    returns the minimal empty card `{"title": "", "sections": []}`.

The primitive sanitizers (text, URL, link, e-mail) are constructor
arguments, so callers can swap them without any ambient lookup.
"""

from __future__ import annotations

import copy
import logging
import math
from collections.abc import Mapping
from functools import partial
from typing import Any, Callable, Optional

from .config import CardLimits, get_settings
from .exceptions import SanitizationFault
from .models import ACTION_KINDS, SECTION_TYPES, ActionKind, CardPayload, NodeKind, SectionType
from .primitives import (
    HTTP_SCHEMES,
    sanitize_email,
    sanitize_identifier,
    sanitize_link,
    sanitize_text,
    sanitize_url,
)

logger = logging.getLogger(__name__)

TextSanitizer = Callable[[object, int], str]
ValueSanitizer = Callable[[object], Optional[str]]
NodeRule = Callable[[Mapping, str], CardPayload]

# Keys that poison JS object prototypes downstream.
FORBIDDEN_KEYS: frozenset[str] = frozenset({"__proto__", "constructor", "prototype"})


def minimal_card() -> CardPayload:
    """The safest possible card: what every failure path returns."""
    return {"title": "", "sections": []}


class CardSanitizer:
    """Walks a card tree applying per-node-type rules.

    Usage:
        sanitizer = CardSanitizer(limits)
        safe = sanitizer.sanitize(untrusted_card)
    """

    def __init__(
        self,
        limits: CardLimits | None = None,
        text_sanitizer: TextSanitizer = sanitize_text,
        url_sanitizer: ValueSanitizer | None = None,
        link_sanitizer: ValueSanitizer | None = None,
        email_sanitizer: ValueSanitizer | None = None,
    ):
        self.limits = limits or get_settings()
        self._text = text_sanitizer
        self._url = url_sanitizer or partial(
            sanitize_url, allowed_schemes=HTTP_SCHEMES, max_length=self.limits.max_url_length
        )
        self._link = link_sanitizer or partial(
            sanitize_link, max_length=self.limits.max_url_length
        )
        self._email = email_sanitizer or partial(
            sanitize_email, max_length=self.limits.max_email_length
        )
        self.rules: dict[NodeKind, NodeRule] = {
            NodeKind.CARD: self._sanitize_card_node,
            NodeKind.SECTION: self._sanitize_section,
            NodeKind.FIELD: self._sanitize_field,
            NodeKind.ITEM: self._sanitize_item,
            NodeKind.ACTION: self._sanitize_action,
        }

    # ─── Public API ─────────────────────────────────────────────────

    def sanitize(self, card: object) -> CardPayload:
        """Fail-closed sanitize: any internal failure yields `minimal_card()`."""
        try:
            return self.sanitize_strict(card)
        except SanitizationFault as e:
            logger.error(
                "Sanitization fault, returning minimal empty card: %s", e,
                extra={"error_code": e.code, "node": e.details.get("path")},
            )
        except Exception as e:  # noqa: BLE001 -- nothing may escape this boundary
            logger.error(
                "Unexpected %s during sanitization, returning minimal empty card",
                type(e).__name__,
                extra={"error_code": "SANITIZATION_FAULT"},
            )
        return minimal_card()

    def sanitize_strict(self, card: object) -> CardPayload:
        """Same walk as `sanitize`, but faults propagate to the caller."""
        if not isinstance(card, Mapping):
            raise SanitizationFault(
                f"Card must be a mapping, got {type(card).__name__}", {"path": "card"}
            )
        snapshot = copy.deepcopy(dict(card))
        return self._sanitize_node(NodeKind.CARD, snapshot, "card")

    def sanitize_object(self, value: Any, path: str = "metadata", depth: int = 1) -> Any:
        """Sanitize an open-ended value (metadata, object field values).

        Strings are escaped and truncated, numbers/booleans/None pass through,
        mappings and lists recurse. Anything else cannot be classified and
        raises SanitizationFault.
        """
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            if not math.isfinite(value):
                raise SanitizationFault("Non-finite number", {"path": path})
            return value
        if isinstance(value, str):
            return self._text(value, self.limits.max_metadata_string_length)

        if isinstance(value, (Mapping, list, tuple)) and depth > self.limits.max_metadata_depth:
            raise SanitizationFault(
                f"Nested value exceeds depth {self.limits.max_metadata_depth}",
                {"path": path, "depth": depth},
            )

        if isinstance(value, Mapping):
            result: dict[str, Any] = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise SanitizationFault(
                        f"Non-string key of type {type(key).__name__}", {"path": path}
                    )
                if key in FORBIDDEN_KEYS:
                    continue
                clean_key = self._text(key, self.limits.max_metadata_string_length)
                result[clean_key] = self.sanitize_object(item, path, depth + 1)
            return result

        if isinstance(value, (list, tuple)):
            return [self.sanitize_object(item, path, depth + 1) for item in value]

        raise SanitizationFault(
            f"Unclassifiable value of type {type(value).__name__}", {"path": path}
        )

    # ─── Dispatch ───────────────────────────────────────────────────

    def _sanitize_node(self, kind: NodeKind, node: Mapping, path: str) -> CardPayload:
        return self.rules[kind](node, path)

    def _sanitize_children(self, kind: NodeKind, nodes: object, path: str) -> list[CardPayload]:
        """Sanitize a node collection; non-mapping entries are dropped."""
        if nodes is None:
            return []
        if not isinstance(nodes, (list, tuple)):
            logger.warning(
                "Dropping %s collection of type %s", kind.value, type(nodes).__name__,
                extra={"node": path},
            )
            return []

        result: list[CardPayload] = []
        for index, node in enumerate(nodes):
            child_path = f"{path}[{index}]"
            if not isinstance(node, Mapping):
                logger.warning("Dropping non-mapping %s", kind.value, extra={"node": child_path})
                continue
            result.append(self._sanitize_node(kind, node, child_path))
        return result

    # ─── Node Rules ─────────────────────────────────────────────────

    def _sanitize_card_node(self, card: Mapping, path: str) -> CardPayload:
        limits = self.limits
        title = card.get("title")
        if not isinstance(title, str):
            title = card.get("cardTitle")

        out: CardPayload = {"title": self._text(title, limits.max_card_title_length)}
        self._copy_identifier(card, out)
        subtitle = card.get("subtitle")
        if not isinstance(subtitle, str):
            subtitle = card.get("cardSubtitle")
        if isinstance(subtitle, str):
            out["subtitle"] = self._text(subtitle, limits.max_card_subtitle_length)

        card_type = card.get("type")
        if not isinstance(card_type, str):
            card_type = card.get("cardType")
        if isinstance(card_type, str):
            out["type"] = self._text(card_type, limits.max_card_type_length)

        self._copy_text(card, out, "description", limits.max_description_length)

        tags = card.get("tags")
        if isinstance(tags, (list, tuple)):
            out["tags"] = [
                self._text(tag, limits.max_tag_length)
                for tag in tags[: limits.max_tags]
                if isinstance(tag, str)
            ]

        columns = card.get("columns")
        if isinstance(columns, int) and not isinstance(columns, bool) and 1 <= columns <= 4:
            out["columns"] = columns

        out["sections"] = self._sanitize_children(NodeKind.SECTION, card.get("sections"), "sections")
        if "actions" in card:
            out["actions"] = self._sanitize_children(NodeKind.ACTION, card.get("actions"), "actions")

        self._copy_metadata(card, out, path)
        return out

    def _sanitize_section(self, section: Mapping, path: str) -> CardPayload:
        limits = self.limits
        out: CardPayload = {
            "title": self._text(section.get("title"), limits.max_section_title_length),
            "type": _closed_tag(section.get("type"), SECTION_TYPES, SectionType.INFO.value, path),
        }
        self._copy_identifier(section, out)
        self._copy_text(section, out, "subtitle", limits.max_section_subtitle_length)
        self._copy_text(section, out, "description", limits.max_section_description_length)

        if "fields" in section:
            out["fields"] = self._sanitize_children(
                NodeKind.FIELD, section.get("fields"), f"{path}.fields"
            )
        if "items" in section:
            out["items"] = self._sanitize_children(
                NodeKind.ITEM, section.get("items"), f"{path}.items"
            )

        self._copy_metadata(section, out, path)
        return out

    def _sanitize_field(self, field: Mapping, path: str) -> CardPayload:
        limits = self.limits
        out: CardPayload = {}
        self._copy_identifier(field, out)
        self._copy_text(field, out, "label", limits.max_field_label_length)
        self._copy_text(field, out, "title", limits.max_field_label_length)

        if "value" in field:
            out["value"] = self._sanitize_value(field["value"], limits.max_field_value_length, path)

        self._copy_text(field, out, "description", limits.max_field_description_length)

        if "link" in field:
            link = self._link(field["link"])
            if link:
                out["link"] = link
            else:
                logger.warning("Dropped unsafe link", extra={"node": path})

        if "email" in field:
            email = self._email(field["email"])
            if email:
                out["email"] = email
            else:
                logger.warning("Dropped invalid e-mail", extra={"node": path})

        self._copy_metadata(field, out, path)
        return out

    def _sanitize_item(self, item: Mapping, path: str) -> CardPayload:
        limits = self.limits
        out: CardPayload = {"title": self._text(item.get("title"), limits.max_item_title_length)}
        self._copy_identifier(item, out)
        self._copy_text(item, out, "description", limits.max_item_description_length)

        if "value" in item:
            out["value"] = self._sanitize_value(item["value"], limits.max_item_value_length, path)

        self._copy_metadata(item, out, path)
        return out

    def _sanitize_action(self, action: Mapping, path: str) -> CardPayload:
        limits = self.limits
        kind = action.get("kind")
        if kind is None:
            kind = action.get("type")

        out: CardPayload = {
            "label": self._text(action.get("label"), limits.max_action_label_length),
            "kind": _closed_tag(kind, ACTION_KINDS, ActionKind.PRIMARY.value, path),
        }
        self._copy_identifier(action, out)
        self._copy_text(action, out, "icon", limits.max_action_icon_length)

        # `action` is the legacy name for the target URL.
        target_key = "url" if "url" in action else "action"
        if target_key in action:
            url = self._url(action[target_key])
            if url:
                out["url"] = url
            else:
                logger.warning("Dropped unsafe action URL", extra={"node": path})

        email_config = action.get("email")
        if isinstance(email_config, Mapping):
            out["email"] = self._sanitize_email_config(email_config)

        self._copy_metadata(action, out, path)
        return out

    def _sanitize_email_config(self, config: Mapping) -> CardPayload:
        """Mail action payload: contact, subject, body, to/cc/bcc."""
        limits = self.limits
        out: CardPayload = {}

        contact = config.get("contact")
        if isinstance(contact, Mapping):
            out["contact"] = {
                "name": self._text(contact.get("name"), limits.max_field_label_length),
                "email": self._email(contact.get("email")) or "",
                "role": self._text(contact.get("role"), limits.max_field_label_length),
            }

        if "to" in config:
            to = self._email(config["to"])
            if to:
                out["to"] = to

        self._copy_text(config, out, "subject", limits.max_email_subject_length)
        self._copy_text(config, out, "body", limits.max_email_body_length)

        for key in ("cc", "bcc"):
            if key not in config:
                continue
            recipients = self._email_list(config[key])
            if recipients is not None:
                out[key] = recipients

        return out

    # ─── Helpers ────────────────────────────────────────────────────

    def _sanitize_value(self, value: Any, max_length: int, path: str) -> Any:
        """Field/item value: string → text rule; number/bool pass; objects recurse."""
        if isinstance(value, str):
            return self._text(value, max_length)
        return self.sanitize_object(value, f"{path}.value")

    def _email_list(self, value: object) -> Optional[str | list[str]]:
        if isinstance(value, str):
            return self._email(value)
        if isinstance(value, (list, tuple)):
            cleaned = (self._email(entry) for entry in value)
            return [email for email in cleaned if email]
        return None

    def _copy_text(self, source: Mapping, out: CardPayload, key: str, max_length: int) -> None:
        value = source.get(key)
        if isinstance(value, str):
            out[key] = self._text(value, max_length)

    def _copy_identifier(self, source: Mapping, out: CardPayload) -> None:
        ident = sanitize_identifier(source.get("id"), self.limits.max_id_length)
        if ident is not None:
            out["id"] = ident

    def _copy_metadata(self, source: Mapping, out: CardPayload, path: str) -> None:
        metadata = source.get("metadata")
        if metadata is None:
            metadata = source.get("meta")  # legacy key
        if metadata is None:
            return
        if not isinstance(metadata, Mapping):
            logger.warning(
                "Dropped metadata of type %s", type(metadata).__name__, extra={"node": path}
            )
            return
        out["metadata"] = self.sanitize_object(metadata, f"{path}.metadata")


def _closed_tag(value: object, allowed: frozenset[str], default: str, path: str) -> str:
    """Map a raw tag onto a closed enum, falling back to `default`."""
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in allowed:
            return normalized
    if value is not None:
        logger.warning("Unknown tag replaced with '%s'", default, extra={"node": path})
    return default


# ─── Functional API ──────────────────────────────────────────────────


def sanitize_card(card: object, limits: CardLimits | None = None) -> CardPayload:
    """Fail-closed sanitize of a single card with the default primitives."""
    return CardSanitizer(limits).sanitize(card)
