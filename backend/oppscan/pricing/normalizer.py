"""
Financial Normalizer

Turns one claim's profit into profit per standard fill so that a 90-day fill
and a 30-day fill of the same product are comparable.

Claims arrive from several pharmacy systems that spell the profit column
differently; that is a permanent property of the input, so the variants are
listed here rather than cleaned up upstream.
"""

import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

# Tried in order; the first non-zero value wins
PROFIT_FIELDS = (
    "gross_profit", "Gross Profit", "grossprofit", "GrossProfit",
    "net_profit", "Net Profit", "netprofit", "NetProfit",
    "adj_profit", "Adj Profit", "adjprofit", "AdjProfit",
    "Adjusted Profit", "adjusted_profit",
)

INSURANCE_PAY_FIELDS = ("insurance_pay", "Insurance Pay", "InsurancePay", "ins_paid", "Insurance Paid")
PATIENT_PAY_FIELDS = ("patient_pay", "Patient Pay", "PatientPay", "copay", "Copay")
ACQUISITION_COST_FIELDS = ("acquisition_cost", "Acquisition Cost", "AcquisitionCost", "Actual Cost", "actual_cost")

STANDARD_FILL_DAYS = 30

# (minimum quantity exclusive, estimated days supply), checked top-down
DAYS_SUPPLY_BREAKPOINTS = (
    (60, 90),
    (34, 60),
)


def parse_money(value) -> Decimal | None:
    """Parse "$1,234.50", " 12 ", 12.5 or Decimal; None when unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return Decimal(str(value))
    text = str(value).replace("$", "").replace(",", "").strip()
    if not text:
        return None
    if text.startswith("(") and text.endswith(")"):
        text = "-" + text[1:-1]
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def _first_value(payload: dict, fields: tuple[str, ...]) -> Decimal | None:
    for key in fields:
        parsed = parse_money(payload.get(key))
        if parsed is not None:
            return parsed
    return None


def resolve_raw_profit(claim) -> Decimal | None:
    """Profit for the whole fill as recorded, before normalization.

    Explicit profit fields first; otherwise insurance pay + patient pay -
    acquisition cost, taking claim columns before payload keys. A computed
    value of exactly zero means "nothing usable", not "no profit".
    """
    payload = getattr(claim, "raw_data", None) or {}

    for key in PROFIT_FIELDS:
        parsed = parse_money(payload.get(key))
        if parsed is not None and parsed != 0:
            return parsed

    insurance_pay = getattr(claim, "insurance_pay", None)
    if insurance_pay is None:
        insurance_pay = _first_value(payload, INSURANCE_PAY_FIELDS)
    patient_pay = getattr(claim, "patient_pay", None)
    if patient_pay is None:
        patient_pay = _first_value(payload, PATIENT_PAY_FIELDS)
    cost = getattr(claim, "acquisition_cost", None)
    if cost is None:
        cost = _first_value(payload, ACQUISITION_COST_FIELDS)

    if cost is not None and (insurance_pay is not None or patient_pay is not None):
        computed = Decimal(insurance_pay or 0) + Decimal(patient_pay or 0) - Decimal(cost)
        if computed != 0:
            return computed

    # Some exports only carry a total price
    price = parse_money(payload.get("Price"))
    if price is not None and cost is not None:
        computed = price - Decimal(cost)
        if computed != 0:
            return computed

    return None


def effective_days_supply(days_supply, quantity) -> int:
    """Recorded days supply, or an estimate from the dispensed quantity."""
    if days_supply is not None and int(days_supply) > 0:
        return int(days_supply)
    qty = parse_money(quantity) or Decimal(0)
    for min_qty, days in DAYS_SUPPLY_BREAKPOINTS:
        if qty > min_qty:
            return days
    return STANDARD_FILL_DAYS


def fill_multiple(quantity: Decimal, days_supply: int, expected_qty=None) -> int:
    """How many standard fills one dispensing event represents (>= 1)."""
    expected = parse_money(expected_qty)
    if expected is not None and expected > 0:
        ratio = (Decimal(quantity) / expected).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        return max(int(ratio), 1)
    return max(math.ceil(days_supply / STANDARD_FILL_DAYS), 1)


def normalize(claim, trigger) -> Decimal | None:
    """Profit per standard fill, or None when the claim carries no usable signal.

    Never returns zero or a negative number: a missing quantity or a
    non-positive profit is "no data", and averaging it in as 0 drags every
    aggregate down.
    """
    quantity = parse_money(getattr(claim, "quantity_dispensed", None))
    if quantity is None or quantity <= 0:
        return None

    profit = resolve_raw_profit(claim)
    if profit is None or profit <= 0:
        return None

    days = effective_days_supply(getattr(claim, "days_supply", None), quantity)
    multiple = fill_multiple(quantity, days, getattr(trigger, "expected_qty", None))
    return profit / multiple
