"""Pytest configuration — ensures the project root is importable."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent))

from card_sanitizer.config import CardLimits  # noqa: E402


@pytest.fixture
def small_limits() -> CardLimits:
    """Tight ceilings so limit tests don't need megabyte-sized fixtures."""
    return CardLimits(
        max_payload_bytes=512,
        max_sections=3,
        max_fields_per_section=2,
        max_items_per_section=2,
        max_actions=2,
        max_metadata_depth=4,
        max_card_title_length=20,
    )
