from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, Integer, Numeric, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from oppscan.database import Base


class CoverageRecord(Base):
    """Per-payer coverage evidence for one trigger.

    `insurance_group` is stored normalized; an empty string means the record
    covers every group under the BIN, so the unique constraint works on
    databases that treat NULLs as distinct.
    """

    __tablename__ = "coverage_records"
    __table_args__ = (
        UniqueConstraint("trigger_id", "insurance_bin", "insurance_group", name="uq_coverage_trigger_bin_group"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    trigger_id: Mapped[int] = mapped_column(ForeignKey("triggers.id", ondelete="CASCADE"), index=True)
    insurance_bin: Mapped[str] = mapped_column(String(10), index=True)
    insurance_group: Mapped[str] = mapped_column(String(30), default="")
    coverage_status: Mapped[str] = mapped_column(String(10), default="unknown")  # "verified" | "excluded" | "unknown"
    verified_claim_count: Mapped[int] = mapped_column(Integer, default=0)
    matched_claim_count: Mapped[int] = mapped_column(Integer, default=0)
    profit_per_fill: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)  # median
    best_drug_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    best_ndc: Mapped[str | None] = mapped_column(String(15), nullable=True)

    # Admin overrides (survive rescans)
    is_excluded: Mapped[bool] = mapped_column(Boolean, default=False)
    is_manual_override: Mapped[bool] = mapped_column(Boolean, default=False)
    manual_profit: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    manual_drug_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    manual_ndc: Mapped[str | None] = mapped_column(String(15), nullable=True)
    manual_note: Mapped[str | None] = mapped_column(String(500), nullable=True)

    verified_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
