from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import String, Date, DateTime, Integer, Numeric, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from oppscan.database import Base, JSONType


class Prescription(Base):
    """One dispensing event ("claim"). Written by ingestion, read-only here."""

    __tablename__ = "prescriptions"

    id: Mapped[int] = mapped_column(primary_key=True)
    claim_id: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    pharmacy_id: Mapped[int] = mapped_column(ForeignKey("pharmacies.id"), index=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), index=True)
    dispensed_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    drug_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    ndc: Mapped[str | None] = mapped_column(String(15), nullable=True, index=True)
    quantity_dispensed: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    days_supply: Mapped[int | None] = mapped_column(Integer, nullable=True)
    insurance_bin: Mapped[str | None] = mapped_column(String(10), nullable=True, index=True)
    insurance_group: Mapped[str | None] = mapped_column(String(30), nullable=True)
    contract_id: Mapped[str | None] = mapped_column(String(30), nullable=True)
    plan_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    prescriber_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    prescriber_npi: Mapped[str | None] = mapped_column(String(10), nullable=True)
    insurance_pay: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    patient_pay: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    acquisition_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    raw_data: Mapped[dict] = mapped_column(JSONType, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    patient: Mapped["Patient"] = relationship(foreign_keys=[patient_id])
    pharmacy: Mapped["Pharmacy"] = relationship(foreign_keys=[pharmacy_id])


# Needed for relationship resolution
from oppscan.models.pharmacy import Pharmacy, Patient  # noqa: E402, F811
