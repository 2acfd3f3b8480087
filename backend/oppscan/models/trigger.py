from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, Integer, Numeric, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from oppscan.database import Base, JSONType


class Trigger(Base):
    """A drug-switch rule. Authored externally; the scanner only reads it."""

    __tablename__ = "triggers"

    id: Mapped[int] = mapped_column(primary_key=True)
    trigger_key: Mapped[str] = mapped_column(String(80), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(200))
    trigger_type: Mapped[str] = mapped_column(String(40), default="therapeutic_interchange")
    detection_keywords: Mapped[list] = mapped_column(JSONType, default=list)
    exclude_keywords: Mapped[list] = mapped_column(JSONType, default=list)
    keyword_match_mode: Mapped[str] = mapped_column(String(5), default="any")  # "any" | "all"
    recommended_drug: Mapped[str | None] = mapped_column(String(200), nullable=True)
    recommended_ndc: Mapped[str | None] = mapped_column(String(15), nullable=True)
    expected_qty: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    expected_days_supply: Mapped[int | None] = mapped_column(Integer, nullable=True)
    default_profit: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    annual_fills: Mapped[int | None] = mapped_column(Integer, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=5)
    clinical_rationale: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Payer / pharmacy scope
    bin_inclusions: Mapped[list] = mapped_column(JSONType, default=list)
    bin_exclusions: Mapped[list] = mapped_column(JSONType, default=list)
    group_inclusions: Mapped[list] = mapped_column(JSONType, default=list)
    group_exclusions: Mapped[list] = mapped_column(JSONType, default=list)
    contract_prefix_exclusions: Mapped[list] = mapped_column(JSONType, default=list)
    pharmacy_inclusions: Mapped[list] = mapped_column(JSONType, default=list)

    # Patient drug-history conditions
    if_has_keywords: Mapped[list] = mapped_column(JSONType, default=list)
    if_not_has_keywords: Mapped[list] = mapped_column(JSONType, default=list)

    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
