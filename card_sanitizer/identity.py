"""
Node identity — assign IDs after sanitizing, strip them before diffing/export.

Two ID schemes, deliberately scoped:
  - The card root gets a random, time-salted ID (`card_<epoch-ms>_<random>`)
    so cards stay distinguishable across collections.
  - Nested nodes get deterministic path IDs, unique within their parent:
        section_<s>, field_<s>_<f>, item_<s>_<i>, action_<a>
    A path ID that collides with an ID a sibling already carries gets a
    numeric suffix (`field_0_1_2`).

Existing non-empty IDs are never overwritten. `id` keys inside metadata are
removed so they cannot be confused with node identities.
"""

from __future__ import annotations

import copy
import re
import secrets
import time
from collections.abc import Mapping
from typing import Any, Callable, TypeVar

from .exceptions import MalformedInputError
from .models import CardPayload

T = TypeVar("T")

IdFactory = Callable[[str], str]

DEFAULT_ID_PREFIX = "item"
RANDOM_STRING_LENGTH = 7

_UNSAFE_PREFIX_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


# ─── Public API ──────────────────────────────────────────────────────


def generate_id(prefix: str = DEFAULT_ID_PREFIX) -> str:
    """Unique ID in the form `<prefix>_<epoch-ms>_<random>`.

    Example:
        generate_id("card")  →  "card_1718031234567_3f9a0c1"
    """
    if not isinstance(prefix, str) or not prefix.strip():
        prefix = DEFAULT_ID_PREFIX
    safe_prefix = _UNSAFE_PREFIX_CHARS.sub("_", prefix)
    random_part = secrets.token_hex(4)[:RANDOM_STRING_LENGTH]
    return f"{safe_prefix}_{int(time.time() * 1000)}_{random_part}"


def has_identity(value: object) -> bool:
    """A non-blank string or an integer counts as an identity."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and bool(value.strip())


def strip_ids(value: T) -> T:
    """Deep copy of `value` with every `id` key removed at every level.

    Works on cards, sections, lists of anything. Everything that is not a
    key named `id` is left structurally untouched.
    """
    if isinstance(value, Mapping):
        return {key: strip_ids(item) for key, item in value.items() if key != "id"}  # type: ignore[return-value]
    if isinstance(value, list):
        return [strip_ids(item) for item in value]  # type: ignore[return-value]
    if isinstance(value, tuple):
        return tuple(strip_ids(item) for item in value)  # type: ignore[return-value]
    return copy.deepcopy(value)


def ensure_ids(card: Mapping, id_factory: IdFactory = generate_id) -> CardPayload:
    """Return a copy of `card` where every card/section/field/item/action has an ID.

    Args:
        card: A card dict (ideally already validated and sanitized).
        id_factory: Produces the root card ID from a prefix.

    Raises:
        MalformedInputError: if `card` is not a mapping.
    """
    if not isinstance(card, Mapping):
        raise MalformedInputError(
            f"ensure_ids: card must be a mapping, got {type(card).__name__}"
        )

    result: CardPayload = copy.deepcopy(dict(card))
    if not has_identity(result.get("id")):
        result["id"] = id_factory("card")
    _strip_metadata_ids(result)

    sections = result.get("sections")
    if isinstance(sections, list):
        _assign_sibling_ids(sections, lambda s: f"section_{s}")
        for s_index, section in enumerate(sections):
            if not isinstance(section, dict):
                continue
            _strip_metadata_ids(section)
            for key, prefix in (("fields", "field"), ("items", "item")):
                children = section.get(key)
                if isinstance(children, list):
                    _assign_sibling_ids(
                        children, lambda c, s=s_index, p=prefix: f"{p}_{s}_{c}"
                    )

    actions = result.get("actions")
    if isinstance(actions, list):
        _assign_sibling_ids(actions, lambda a: f"action_{a}")

    return result


# ─── Internal Helpers ────────────────────────────────────────────────


def _assign_sibling_ids(nodes: list[Any], make_id: Callable[[int], str]) -> None:
    """Fill missing IDs in place (on an already-copied list), unique among siblings."""
    taken = {
        str(node["id"])
        for node in nodes
        if isinstance(node, dict) and has_identity(node.get("id"))
    }

    for index, node in enumerate(nodes):
        if not isinstance(node, dict):
            continue
        if not has_identity(node.get("id")):
            base = make_id(index)
            candidate, suffix = base, 1
            while candidate in taken:
                candidate = f"{base}_{suffix}"
                suffix += 1
            node["id"] = candidate
            taken.add(candidate)
        _strip_metadata_ids(node)


def _strip_metadata_ids(node: dict) -> None:
    if "metadata" in node:
        node["metadata"] = strip_ids(node["metadata"])
