from datetime import datetime
from decimal import Decimal

from sqlalchemy import String, DateTime, Numeric, Text, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column

from oppscan.database import Base


class Opportunity(Base):
    __tablename__ = "opportunities"

    id: Mapped[int] = mapped_column(primary_key=True)
    opportunity_id: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    pharmacy_id: Mapped[int] = mapped_column(ForeignKey("pharmacies.id"), index=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), index=True)
    trigger_id: Mapped[int | None] = mapped_column(ForeignKey("triggers.id"), nullable=True, index=True)  # NULL = legacy import
    prescription_id: Mapped[int | None] = mapped_column(ForeignKey("prescriptions.id"), nullable=True)
    opportunity_type: Mapped[str] = mapped_column(String(40), default="therapeutic_interchange")
    current_drug_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    current_ndc: Mapped[str | None] = mapped_column(String(15), nullable=True)
    recommended_drug_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    recommended_ndc: Mapped[str | None] = mapped_column(String(15), nullable=True)
    insurance_bin: Mapped[str | None] = mapped_column(String(10), nullable=True)
    insurance_group: Mapped[str | None] = mapped_column(String(30), nullable=True)
    potential_margin_gain: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)  # per fill / month
    annual_margin_gain: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    coverage_confidence: Mapped[str] = mapped_column(String(10), default="unknown")  # "verified" | "likely" | "unknown" | "excluded"
    status: Mapped[str] = mapped_column(String(20), default="Not Submitted", index=True)
    prescriber_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    prescriber_npi: Mapped[str | None] = mapped_column(String(10), nullable=True)
    clinical_rationale: Mapped[str | None] = mapped_column(Text, nullable=True)
    staff_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    scan_batch_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())


class MergeReview(Base):
    """Duplicate that could not be removed because staff already acted on it."""

    __tablename__ = "merge_reviews"

    id: Mapped[int] = mapped_column(primary_key=True)
    kept_opportunity_id: Mapped[str] = mapped_column(String(40), index=True)
    duplicate_opportunity_id: Mapped[str] = mapped_column(String(40), index=True)
    dedup_key: Mapped[str] = mapped_column(String(300))
    reason: Mapped[str] = mapped_column(String(500))
    status: Mapped[str] = mapped_column(String(20), default="pending")  # "pending" | "resolved"
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
