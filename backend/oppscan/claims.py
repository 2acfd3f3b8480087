"""
Scan-time view of a claim.

Prescriptions are read once per scan and copied into ScanClaim so that the
pure matching/normalizing/resolving code never touches a session, and so the
patient's primary insurance can stand in when the claim has none.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal


def normalize_bin(value: str | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_group(value: str | None) -> str | None:
    if value is None:
        return None
    text = str(value).strip().upper()
    return text or None


@dataclass(frozen=True)
class ScanClaim:
    id: int
    claim_id: str
    pharmacy_id: int
    patient_id: int
    drug_name: str | None
    ndc: str | None = None
    quantity_dispensed: Decimal | None = None
    days_supply: int | None = None
    insurance_bin: str | None = None
    insurance_group: str | None = None
    contract_id: str | None = None
    prescriber_name: str | None = None
    prescriber_npi: str | None = None
    insurance_pay: Decimal | None = None
    patient_pay: Decimal | None = None
    acquisition_cost: Decimal | None = None
    raw_data: dict = field(default_factory=dict)
    dispensed_date: date | None = None

    @property
    def payer_key(self) -> tuple[str | None, str | None]:
        return self.insurance_bin, self.insurance_group

    @classmethod
    def from_prescription(cls, rx, patient=None) -> "ScanClaim":
        """Copy a Prescription row, falling back to the patient's primary insurance.

        The fallback only applies when the claim has no BIN at all; a claim
        with a BIN but no group keeps its own (BIN, no group) identity.
        """
        ins_bin = normalize_bin(rx.insurance_bin)
        ins_group = normalize_group(rx.insurance_group)
        if ins_bin is None and patient is not None:
            ins_bin = normalize_bin(patient.primary_insurance_bin)
            ins_group = normalize_group(patient.primary_insurance_group)

        dispensed = rx.dispensed_date
        if dispensed is None and rx.created_at is not None:
            dispensed = rx.created_at.date()

        return cls(
            id=rx.id,
            claim_id=rx.claim_id,
            pharmacy_id=rx.pharmacy_id,
            patient_id=rx.patient_id,
            drug_name=rx.drug_name,
            ndc=rx.ndc,
            quantity_dispensed=rx.quantity_dispensed,
            days_supply=rx.days_supply,
            insurance_bin=ins_bin,
            insurance_group=ins_group,
            contract_id=rx.contract_id,
            prescriber_name=rx.prescriber_name,
            prescriber_npi=rx.prescriber_npi,
            insurance_pay=rx.insurance_pay,
            patient_pay=rx.patient_pay,
            acquisition_cost=rx.acquisition_cost,
            raw_data=dict(rx.raw_data or {}),
            dispensed_date=dispensed,
        )
