"""
Pydantic schemas for trigger definitions loaded from outside the database
(catalog files, admin exports).
"""

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator


class TriggerDefinition(BaseModel):
    trigger_key: str = Field(min_length=1, max_length=80)
    display_name: str = Field(min_length=1, max_length=200)
    trigger_type: str = "therapeutic_interchange"
    detection_keywords: list[str] = Field(default_factory=list)
    exclude_keywords: list[str] = Field(default_factory=list)
    keyword_match_mode: str = "any"
    recommended_drug: str | None = None
    recommended_ndc: str | None = None
    expected_qty: Decimal | None = Field(None, gt=0)
    expected_days_supply: int | None = Field(None, gt=0)
    default_profit: Decimal | None = None
    annual_fills: int | None = Field(None, ge=1, le=52)
    priority: int = 5
    clinical_rationale: str | None = None

    # ── Scope ──
    bin_inclusions: list[str] = Field(default_factory=list)
    bin_exclusions: list[str] = Field(default_factory=list)
    group_inclusions: list[str] = Field(default_factory=list)
    group_exclusions: list[str] = Field(default_factory=list)
    contract_prefix_exclusions: list[str] = Field(default_factory=list)
    pharmacy_inclusions: list[str] = Field(default_factory=list)
    if_has_keywords: list[str] = Field(default_factory=list)
    if_not_has_keywords: list[str] = Field(default_factory=list)

    is_enabled: bool = True

    @field_validator("keyword_match_mode")
    @classmethod
    def _lower_mode(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator(
        "detection_keywords", "exclude_keywords", "if_has_keywords", "if_not_has_keywords",
        "bin_inclusions", "bin_exclusions", "group_inclusions", "group_exclusions",
        "contract_prefix_exclusions", "pharmacy_inclusions",
    )
    @classmethod
    def _drop_blank(cls, values: list[str]) -> list[str]:
        return [v.strip() for v in values if v and v.strip()]
