"""
Tests for environment-driven limits.

Run: pytest tests/ -v
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from card_sanitizer.config import CardLimits


class TestCardLimits:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("CARD_MAX_SECTIONS", raising=False)
        limits = CardLimits(_env_file=None)
        assert limits.max_payload_bytes == 1024 * 1024
        assert limits.max_sections == 20
        assert limits.max_fields_per_section == 50
        assert limits.max_actions == 10
        assert limits.max_card_title_length == 200
        assert limits.max_description_length == 1000

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("CARD_MAX_SECTIONS", "5")
        assert CardLimits(_env_file=None).max_sections == 5

    def test_ceilings_must_be_positive(self):
        with pytest.raises(ValidationError):
            CardLimits(_env_file=None, max_sections=0)
