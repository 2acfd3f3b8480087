"""Builders for transient models, scan claims and seeded rows."""

import itertools
from datetime import date, datetime, timedelta
from decimal import Decimal

from oppscan.claims import ScanClaim
from oppscan.models import Opportunity, Patient, Pharmacy, Prescription, Trigger

AS_OF = date(2026, 6, 1)

_claim_ids = itertools.count(1)


def trigger_fields(**overrides) -> dict:
    fields = {
        "trigger_key": "lancet_switch",
        "display_name": "Lancet switch",
        "trigger_type": "therapeutic_interchange",
        "detection_keywords": ["LANCET"],
        "exclude_keywords": [],
        "keyword_match_mode": "any",
        "recommended_drug": "PURE COMFORT LANCET",
        "recommended_ndc": "11111111111",
        "expected_qty": None,
        "expected_days_supply": None,
        "default_profit": Decimal("20.00"),
        "annual_fills": 12,
        "priority": 5,
        "clinical_rationale": None,
        "bin_inclusions": [],
        "bin_exclusions": [],
        "group_inclusions": [],
        "group_exclusions": [],
        "contract_prefix_exclusions": [],
        "pharmacy_inclusions": [],
        "if_has_keywords": [],
        "if_not_has_keywords": [],
        "is_enabled": True,
    }
    fields.update(overrides)
    return fields


def make_trigger(**overrides) -> Trigger:
    overrides.setdefault("id", 1)
    return Trigger(**trigger_fields(**overrides))


def make_claim(**overrides) -> ScanClaim:
    n = next(_claim_ids)
    fields = {
        "id": n,
        "claim_id": f"C{n}",
        "pharmacy_id": 1,
        "patient_id": 1,
        "drug_name": "PURE COMFORT LANCET",
        "ndc": "22222222222",
        "quantity_dispensed": Decimal("100"),
        "days_supply": 30,
        "insurance_bin": "004336",
        "insurance_group": "XYZ",
        "prescriber_name": "DR SMITH",
        "raw_data": {"gross_profit": "45.00"},
        "dispensed_date": AS_OF - timedelta(days=10),
    }
    fields.update(overrides)
    return ScanClaim(**fields)


def make_opportunity(**overrides) -> Opportunity:
    fields = {
        "id": 1,
        "opportunity_id": "OPP-1",
        "pharmacy_id": 1,
        "patient_id": 1,
        "trigger_id": 1,
        "current_drug_name": "ACCU CHEK LANCET",
        "recommended_drug_name": "PURE COMFORT LANCET",
        "annual_margin_gain": Decimal("100.00"),
        "status": "Not Submitted",
        "prescriber_name": "DR SMITH",
        "created_at": datetime(2026, 1, 1),
    }
    fields.update(overrides)
    return Opportunity(**fields)


# ── Seeding (caller owns the transaction) ────────────────────────────────────

async def seed_pharmacy(session, code: str = "PH1", is_active: bool = True) -> Pharmacy:
    pharmacy = Pharmacy(pharmacy_code=code, name=f"Pharmacy {code}", is_active=is_active)
    session.add(pharmacy)
    await session.flush()
    return pharmacy


async def seed_patient(session, pharmacy: Pharmacy, **overrides) -> Patient:
    patient = Patient(pharmacy_id=pharmacy.id, **overrides)
    session.add(patient)
    await session.flush()
    return patient


async def seed_prescription(session, pharmacy: Pharmacy, patient: Patient, **overrides) -> Prescription:
    n = next(_claim_ids)
    fields = {
        "claim_id": f"RX{n}",
        "dispensed_date": AS_OF - timedelta(days=5),
        "drug_name": "PURE COMFORT LANCET",
        "ndc": "22222222222",
        "quantity_dispensed": Decimal("100"),
        "days_supply": 30,
        "insurance_bin": "004336",
        "insurance_group": "XYZ",
        "prescriber_name": "DR SMITH",
        "raw_data": {"gross_profit": "45.00"},
    }
    fields.update(overrides)
    rx = Prescription(pharmacy_id=pharmacy.id, patient_id=patient.id, **fields)
    session.add(rx)
    await session.flush()
    return rx


async def seed_trigger(session, **overrides) -> Trigger:
    trigger = Trigger(**trigger_fields(**overrides))
    session.add(trigger)
    await session.flush()
    return trigger


async def seed_opportunity(session, pharmacy: Pharmacy, patient: Patient, **overrides) -> Opportunity:
    n = next(_claim_ids)
    fields = {
        "opportunity_id": f"OPP-T{n}",
        "trigger_id": None,
        "current_drug_name": "ACCU CHEK LANCET",
        "recommended_drug_name": "PURE COMFORT LANCET",
        "potential_margin_gain": Decimal("10.00"),
        "annual_margin_gain": Decimal("120.00"),
        "coverage_confidence": "unknown",
        "status": "Not Submitted",
        "prescriber_name": "DR SMITH",
    }
    fields.update(overrides)
    opportunity = Opportunity(pharmacy_id=pharmacy.id, patient_id=patient.id, **fields)
    session.add(opportunity)
    await session.flush()
    return opportunity
