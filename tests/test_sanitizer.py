"""
Tests for the recursive card sanitizer.

Covers the per-node rule table AND the whole-tree properties:
idempotence, injection containment, length bounds, fail-closed, no mutation.

Run: pytest tests/ -v
"""

from __future__ import annotations

import copy
from typing import Any
from unittest.mock import patch

import pytest

from card_sanitizer.config import CardLimits
from card_sanitizer.exceptions import SanitizationFault
from card_sanitizer.models import NodeKind
from card_sanitizer.sanitizer import CardSanitizer, minimal_card, sanitize_card


# ─── Test Data ───────────────────────────────────────────────────────


def _make_card(**overrides: Any) -> dict[str, Any]:
    """Factory for a realistic card touching every node kind."""
    card: dict[str, Any] = {
        "id": "card-1",
        "title": "Acme <b>Corp</b>",
        "subtitle": "Key   account",
        "type": "company",
        "description": "R&D partner since 2019",
        "tags": ["enterprise", "<i>vip</i>", 42],
        "columns": 2,
        "sections": [
            {
                "title": "Contacts",
                "type": "info",
                "fields": [
                    {"label": "Website", "value": "acme-corp.com", "link": "https://acme-corp.com"},
                    {"label": "Owner", "value": "Jane Doe", "email": "Jane.Doe@Acme-Corp.com"},
                    {"label": "Revenue", "value": 1250000},
                    {"label": "Details", "value": {"employees": 120, "note": "<b>big</b>"}},
                ],
            },
            {
                "title": "History",
                "type": "timeline",
                "items": [
                    {"title": "Signed MSA", "description": "Q1", "value": "2024-01-15"},
                ],
            },
        ],
        "actions": [
            {"label": "Visit", "type": "website", "url": "https://acme-corp.com/?q=<x>"},
            {
                "label": "Email",
                "type": "mail",
                "email": {
                    "contact": {"name": "Jane", "email": "jane@acme-corp.com", "role": "Owner"},
                    "subject": "Hello",
                    "cc": ["ops@acme-corp.com", "bogus"],
                },
            },
        ],
        "metadata": {"source": "crm", "nested": {"score": 0.9, "flags": [True, None]}},
    }
    card.update(overrides)
    return card


def _all_strings(value: Any):
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for key, item in value.items():
            yield key
            yield from _all_strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _all_strings(item)


INJECTIONS = [
    "<script>alert(1)</script>",
    '<img src=x onerror="alert(1)">',
    "<iframe src=javascript:alert(1)></iframe>",
    "javascript:alert(document.cookie)",
    "<svg/onload=alert(1)>",
]


# ═══════════════════════════════════════════════════════════════════════
# CARD RULE
# ═══════════════════════════════════════════════════════════════════════


class TestCardRule:
    def test_strips_markup_from_title(self):
        assert sanitize_card(_make_card())["title"] == "Acme Corp"

    def test_collapses_subtitle_whitespace(self):
        assert sanitize_card(_make_card())["subtitle"] == "Key account"

    def test_legacy_title_key(self):
        result = sanitize_card({"cardTitle": "Legacy", "sections": []})
        assert result == {"title": "Legacy", "sections": []}

    def test_legacy_card_type_key(self):
        result = sanitize_card({"title": "T", "cardType": "person", "sections": []})
        assert result["type"] == "person"

    def test_legacy_subtitle_key(self):
        result = sanitize_card({"cardTitle": "T", "cardSubtitle": "<b>Sub</b>", "sections": []})
        assert result["subtitle"] == "Sub"
        assert "cardSubtitle" not in result

    def test_subtitle_wins_over_legacy_subtitle(self):
        result = sanitize_card({"title": "T", "subtitle": "New", "cardSubtitle": "Old"})
        assert result["subtitle"] == "New"

    def test_missing_title_becomes_empty(self):
        assert sanitize_card({"sections": []})["title"] == ""

    def test_missing_sections_become_empty_list(self):
        assert sanitize_card({"title": "T"})["sections"] == []

    def test_unknown_keys_dropped(self):
        result = sanitize_card(_make_card(onclick="steal()", __proto__={"admin": True}))
        assert "onclick" not in result
        assert "__proto__" not in result

    def test_non_string_tags_dropped(self):
        assert sanitize_card(_make_card())["tags"] == ["enterprise", "vip"]

    def test_tag_count_capped(self, small_limits):
        limits = small_limits.model_copy(update={"max_tags": 2})
        result = CardSanitizer(limits).sanitize(_make_card(tags=["a", "b", "c", "d"]))
        assert result["tags"] == ["a", "b"]

    @pytest.mark.parametrize("columns", [0, 5, "2", True, 1.5])
    def test_invalid_columns_dropped(self, columns):
        assert "columns" not in sanitize_card(_make_card(columns=columns))

    def test_title_length_capped(self):
        assert len(sanitize_card(_make_card(title="A" * 500))["title"]) == 200

    def test_integer_id_becomes_string(self):
        assert sanitize_card(_make_card(id=17))["id"] == "17"

    def test_boolean_id_dropped(self):
        assert "id" not in sanitize_card(_make_card(id=True))

    @pytest.mark.parametrize("ident", ["", "<b></b>", None, 1.5, ["a"]])
    def test_unusable_id_dropped(self, ident):
        assert "id" not in sanitize_card(_make_card(id=ident))

    def test_ids_go_through_identifier_primitive(self):
        with patch("card_sanitizer.sanitizer.sanitize_identifier", return_value="fixed") as ident:
            result = sanitize_card(_make_card())
        assert result["id"] == "fixed"
        assert ident.call_args_list[0].args == ("card-1", 128)


# ═══════════════════════════════════════════════════════════════════════
# SECTION / FIELD / ITEM RULES
# ═══════════════════════════════════════════════════════════════════════


class TestSectionRule:
    def test_unknown_type_defaults_to_info(self):
        card = _make_card(sections=[{"title": "S", "type": "carousel"}])
        assert sanitize_card(card)["sections"][0]["type"] == "info"

    def test_type_normalized(self):
        card = _make_card(sections=[{"title": "S", "type": " Timeline "}])
        assert sanitize_card(card)["sections"][0]["type"] == "timeline"

    def test_non_mapping_sections_dropped(self):
        card = _make_card(sections=[{"title": "S", "type": "info"}, "junk", 7, None])
        assert len(sanitize_card(card)["sections"]) == 1

    def test_non_list_sections_become_empty(self):
        assert sanitize_card(_make_card(sections="oops"))["sections"] == []


class TestFieldRule:
    def _fields(self, card):
        return sanitize_card(card)["sections"][0]["fields"]

    def test_safe_link_kept(self):
        assert self._fields(_make_card())[0]["link"] == "https://acme-corp.com"

    def test_javascript_link_dropped(self):
        card = _make_card(
            sections=[{"title": "S", "type": "info", "fields": [
                {"label": "x", "value": "y", "link": "javascript:alert(1)"},
            ]}]
        )
        assert "link" not in self._fields(card)[0]

    def test_mailto_link_kept(self):
        card = _make_card(
            sections=[{"title": "S", "type": "info", "fields": [
                {"label": "x", "value": "y", "link": "mailto:jane@acme-corp.com"},
            ]}]
        )
        assert self._fields(card)[0]["link"] == "mailto:jane@acme-corp.com"

    def test_email_normalized(self):
        assert self._fields(_make_card())[1]["email"] == "jane.doe@acme-corp.com"

    def test_invalid_email_dropped(self):
        card = _make_card(
            sections=[{"title": "S", "type": "info", "fields": [
                {"label": "x", "value": "y", "email": "not-an-email"},
            ]}]
        )
        assert "email" not in self._fields(card)[0]

    def test_numeric_value_passes_through(self):
        assert self._fields(_make_card())[2]["value"] == 1250000

    def test_object_value_recursively_sanitized(self):
        assert self._fields(_make_card())[3]["value"] == {"employees": 120, "note": "big"}


class TestItemRule:
    def test_item_keeps_known_keys(self):
        item = sanitize_card(_make_card())["sections"][1]["items"][0]
        assert item == {"title": "Signed MSA", "description": "Q1", "value": "2024-01-15"}

    def test_item_without_title_gets_empty_title(self):
        card = _make_card(sections=[{"title": "S", "type": "list", "items": [{"value": 1}]}])
        assert sanitize_card(card)["sections"][0]["items"][0]["title"] == ""


# ═══════════════════════════════════════════════════════════════════════
# ACTION RULE
# ═══════════════════════════════════════════════════════════════════════


class TestActionRule:
    def _actions(self, **overrides):
        return sanitize_card(_make_card(**overrides))["actions"]

    def test_legacy_type_becomes_kind(self):
        assert self._actions()[0]["kind"] == "website"

    def test_unknown_kind_defaults_to_primary(self):
        actions = self._actions(actions=[{"label": "Go", "kind": "teleport"}])
        assert actions[0]["kind"] == "primary"

    def test_url_percent_encoded(self):
        assert self._actions()[0]["url"] == "https://acme-corp.com/?q=%3Cx%3E"

    @pytest.mark.parametrize(
        "url", ["javascript:alert(1)", "data:text/html;base64,PHNjcmlwdD4=", "ftp://acme-corp.com"]
    )
    def test_unsafe_url_dropped(self, url):
        actions = self._actions(actions=[{"label": "Go", "kind": "website", "url": url}])
        assert "url" not in actions[0]

    def test_legacy_action_target_becomes_url(self):
        actions = self._actions(
            actions=[{"label": "go", "type": "website", "action": "https://a.com"}]
        )
        assert actions[0] == {"label": "go", "kind": "website", "url": "https://a.com"}

    def test_url_wins_over_legacy_action_target(self):
        actions = self._actions(
            actions=[{"label": "go", "url": "https://new.com", "action": "https://old.com"}]
        )
        assert actions[0]["url"] == "https://new.com"

    @pytest.mark.parametrize("target", ["javascript:alert(1)", "mailto:a@b.com", "/relative"])
    def test_legacy_action_target_needs_http(self, target):
        actions = self._actions(actions=[{"label": "go", "action": target}])
        assert "url" not in actions[0]
        assert "action" not in actions[0]

    def test_email_config_sanitized(self):
        email = self._actions()[1]["email"]
        assert email["contact"] == {"name": "Jane", "email": "jane@acme-corp.com", "role": "Owner"}
        assert email["subject"] == "Hello"
        assert email["cc"] == ["ops@acme-corp.com"]

    def test_invalid_contact_email_becomes_empty(self):
        actions = self._actions(
            actions=[{"label": "Mail", "kind": "mail", "email": {"contact": {"email": "nope"}}}]
        )
        assert actions[0]["email"]["contact"]["email"] == ""

    def test_actions_absent_stays_absent(self):
        card = _make_card()
        del card["actions"]
        assert "actions" not in sanitize_card(card)


# ═══════════════════════════════════════════════════════════════════════
# METADATA
# ═══════════════════════════════════════════════════════════════════════


class TestMetadata:
    def test_nested_values_kept(self):
        result = sanitize_card(_make_card())
        assert result["metadata"] == {
            "source": "crm",
            "nested": {"score": 0.9, "flags": [True, None]},
        }

    def test_forbidden_keys_dropped(self):
        result = sanitize_card(
            _make_card(metadata={"__proto__": {"admin": True}, "constructor": 1, "ok": "yes"})
        )
        assert result["metadata"] == {"ok": "yes"}

    def test_legacy_meta_folded_into_metadata(self):
        card = _make_card()
        del card["metadata"]
        card["meta"] = {"source": "import"}
        result = sanitize_card(card)
        assert result["metadata"] == {"source": "import"}
        assert "meta" not in result

    def test_non_mapping_metadata_dropped(self):
        assert "metadata" not in sanitize_card(_make_card(metadata=["a", "b"]))

    def test_metadata_strings_escaped(self):
        result = sanitize_card(_make_card(metadata={"<b>k</b>": "<script>x</script>v"}))
        for text in _all_strings(result["metadata"]):
            assert "<" not in text


# ═══════════════════════════════════════════════════════════════════════
# FAIL-CLOSED
# ═══════════════════════════════════════════════════════════════════════


class TestFailClosed:
    @pytest.mark.parametrize("value", [None, "card", 42, ["title"]])
    def test_non_mapping_yields_minimal_card(self, value):
        assert sanitize_card(value) == minimal_card()

    def test_non_finite_number_yields_minimal_card(self):
        assert sanitize_card(_make_card(metadata={"x": float("nan")})) == minimal_card()

    def test_unclassifiable_value_yields_minimal_card(self):
        assert sanitize_card(_make_card(metadata={"x": object()})) == minimal_card()

    def test_too_deep_metadata_yields_minimal_card(self, small_limits):
        deep = {"a": {"b": {"c": {"d": {"e": 1}}}}}
        assert CardSanitizer(small_limits).sanitize(_make_card(metadata=deep)) == minimal_card()

    def test_raising_text_sanitizer_yields_minimal_card(self):
        def boom(value, max_length):
            raise RuntimeError("primitive exploded")

        assert CardSanitizer(text_sanitizer=boom).sanitize(_make_card()) == minimal_card()

    def test_strict_mode_propagates(self):
        with pytest.raises(SanitizationFault):
            CardSanitizer().sanitize_strict("not a card")


# ═══════════════════════════════════════════════════════════════════════
# TREE PROPERTIES
# ═══════════════════════════════════════════════════════════════════════


class TestProperties:
    def test_rule_table_is_exhaustive(self):
        assert set(CardSanitizer().rules) == set(NodeKind)

    def test_idempotent(self):
        once = sanitize_card(_make_card())
        assert sanitize_card(once) == once

    def test_idempotent_on_truncated_entities(self):
        once = sanitize_card(_make_card(title="&" * 300, description="a & b " * 400))
        assert sanitize_card(once) == once

    def test_input_never_mutated(self):
        card = _make_card()
        snapshot = copy.deepcopy(card)
        sanitize_card(card)
        assert card == snapshot

    def test_output_does_not_alias_input(self):
        card = _make_card()
        result = sanitize_card(card)
        result["metadata"]["nested"]["score"] = 0
        assert card["metadata"]["nested"]["score"] == 0.9

    @pytest.mark.parametrize("payload", INJECTIONS)
    def test_injection_contained_everywhere(self, payload):
        card = _make_card(
            title=payload,
            subtitle=payload,
            description=payload,
            tags=[payload],
            sections=[{
                "title": payload,
                "type": "info",
                "fields": [{"label": payload, "value": payload, "link": payload}],
                "items": [{"title": payload, "value": {payload: payload}}],
            }],
            actions=[{"label": payload, "kind": "website", "url": payload}],
            metadata={payload: payload},
        )
        result = sanitize_card(card)
        for text in _all_strings(result):
            assert "<" not in text
            assert "javascript:" not in text.lower()

    def test_every_string_within_cap(self):
        limits = CardLimits()
        card = _make_card(
            title="x" * 1000,
            description="y" * 5000,
            sections=[{"title": "z" * 1000, "type": "info", "fields": [
                {"label": "l" * 1000, "value": "v" * 5000},
            ]}],
        )
        result = CardSanitizer(limits).sanitize(card)
        assert len(result["title"]) <= limits.max_card_title_length
        assert len(result["description"]) <= limits.max_description_length
        section = result["sections"][0]
        assert len(section["title"]) <= limits.max_section_title_length
        assert len(section["fields"][0]["label"]) <= limits.max_field_label_length
        assert len(section["fields"][0]["value"]) <= limits.max_field_value_length
