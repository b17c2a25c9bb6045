"""Card limits — environment-driven ceilings via pydantic-settings.

Every size, count and length ceiling the pipeline enforces lives here.
Components never look these up on their own: callers pass a `CardLimits`
instance in explicitly, defaulting to the cached `get_settings()`.

Environment variables use the `CARD_` prefix, e.g. `CARD_MAX_SECTIONS=30`.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class CardLimits(BaseSettings):
    """Size, count and length ceilings for card payloads."""

    model_config = SettingsConfigDict(
        env_prefix="CARD_", env_file=".env", case_sensitive=False, extra="ignore"
    )

    # ── Payload / collection ceilings ───────────────────────────────
    max_payload_bytes: int = Field(default=1024 * 1024, gt=0)
    max_sections: int = Field(default=20, gt=0)
    max_fields_per_section: int = Field(default=50, gt=0)
    max_items_per_section: int = Field(default=100, gt=0)
    max_actions: int = Field(default=10, gt=0)
    max_metadata_depth: int = Field(default=32, gt=0)

    # ── Card ────────────────────────────────────────────────────────
    max_card_title_length: int = 200
    max_card_subtitle_length: int = 300
    max_description_length: int = 1000
    max_card_type_length: int = 50
    max_tag_length: int = 50
    max_tags: int = 20

    # ── Section ─────────────────────────────────────────────────────
    max_section_title_length: int = 100
    max_section_subtitle_length: int = 200
    max_section_description_length: int = 500

    # ── Field / Item ────────────────────────────────────────────────
    max_field_label_length: int = 100
    max_field_description_length: int = 500
    max_field_value_length: int = 1000
    max_item_title_length: int = 200
    max_item_description_length: int = 500
    max_item_value_length: int = 1000

    # ── Action ──────────────────────────────────────────────────────
    max_action_label_length: int = 100
    max_action_icon_length: int = 50
    max_email_subject_length: int = 100
    max_email_body_length: int = 5000

    # ── Misc ────────────────────────────────────────────────────────
    max_metadata_string_length: int = 1000
    max_id_length: int = 128
    max_url_length: int = 2048
    max_email_length: int = 320
    preview_length: int = 200

    # Observability
    log_level: str = "INFO"
    log_format: str = "text"


@lru_cache
def get_settings() -> CardLimits:
    return CardLimits()
