"""Plan selector — maps an order amount to a payment-platform plan.

Bands are ordered by min_price. Each band ends one cent below the next
band's min_price and the last band is unbounded, so every non-negative
amount (quantized to cents) falls in exactly one band. Bands whose plan id
is not configured are skipped; when nothing matches, the designated default
plan is returned. The selector never returns "no plan".
"""

import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from flask import current_app

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# (min_price, config key holding the plan id, display name)
DEFAULT_BANDS = [
    (Decimal("0"), "PLAN_ID_STARTER", "Starter"),
    (Decimal("500"), "PLAN_ID_STANDARD", "Standard"),
    (Decimal("1000"), "PLAN_ID_PREMIUM", "Premium"),
    (Decimal("2000"), "PLAN_ID_VIP", "VIP"),
]


@dataclass(frozen=True)
class Plan:
    plan_id: str
    plan_name: str


@dataclass(frozen=True)
class PlanBand:
    min_price: Decimal
    max_price: Optional[Decimal]  # None = unbounded
    plan_id: Optional[str]
    plan_name: str

    def contains(self, amount):
        if amount < self.min_price:
            return False
        return self.max_price is None or amount <= self.max_price


def parse_amount(value):
    """Best-effort parse of a caller-supplied amount into major units.

    Strips currency symbols, spaces and other formatting ("$997",
    "1 997,50 руб."). Anything that still fails to parse becomes 0.
    The result is never negative and is quantized to cents.
    """
    if value is None:
        return Decimal("0.00")
    if isinstance(value, (int, Decimal)):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        # Trailing marks come from suffixes like "руб."
        cleaned = re.sub(r"[^\d.,]", "", str(value)).rstrip(".,")
        if "," in cleaned and "." in cleaned:
            # The rightmost separator is the decimal mark: "1,997.50", "1.997,50"
            mark = "," if cleaned.rfind(",") > cleaned.rfind(".") else "."
            group = "." if mark == "," else ","
            head, _, tail = cleaned.rpartition(mark)
            cleaned = f"{head.replace(group, '')}.{tail}"
        elif "," in cleaned:
            # "997,50" uses a decimal comma; "1,997" groups thousands
            head, _, tail = cleaned.rpartition(",")
            if len(tail) in (1, 2) and "," not in head:
                cleaned = f"{head}.{tail}"
            else:
                cleaned = cleaned.replace(",", "")
        try:
            amount = Decimal(cleaned)
        except InvalidOperation:
            logger.warning(f"Unparseable amount {value!r}, treating as 0")
            return Decimal("0.00")
    if not amount.is_finite() or amount < 0:
        return Decimal("0.00")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def build_bands(band_defs):
    """Build a gap-free band list from (min_price, plan_id, plan_name) tuples.

    The lowest band always starts at 0 and the highest is unbounded.
    """
    ordered = sorted(
        ((Decimal(str(min_price)), plan_id, plan_name) for min_price, plan_id, plan_name in band_defs),
        key=lambda band_def: band_def[0],
    )
    bands = []
    for index, (min_price, plan_id, plan_name) in enumerate(ordered):
        if index == 0:
            min_price = Decimal("0")
        if index + 1 < len(ordered):
            max_price = ordered[index + 1][0] - CENT
        else:
            max_price = None
        bands.append(PlanBand(
            min_price=min_price.quantize(CENT),
            max_price=max_price,
            plan_id=plan_id or None,
            plan_name=plan_name,
        ))
    return bands


class PlanTable:
    """Immutable, ordered set of price bands plus a fallback plan."""

    def __init__(self, bands, default_plan):
        if not default_plan or not default_plan.plan_id:
            raise ValueError("A default plan id is required")
        self.bands = tuple(bands)
        self.default_plan = default_plan

    def select(self, amount):
        amount = parse_amount(amount)
        for band in self.bands:
            if band.plan_id and band.contains(amount):
                return Plan(band.plan_id, band.plan_name)
        logger.info(f"No configured band for amount {amount}, using default plan")
        return self.default_plan


def select_plan(amount, table):
    """Return the Plan for `amount` (major currency units)."""
    return table.select(amount)


def load_plan_table(config):
    """Build the PlanTable from app config (PLAN_BANDS JSON or built-in bands)."""
    raw = config.get("PLAN_BANDS")
    if raw:
        entries = json.loads(raw) if isinstance(raw, str) else raw
        band_defs = [
            (entry.get("min_price", 0), entry.get("plan_id"), entry.get("plan_name", ""))
            for entry in entries
        ]
    else:
        band_defs = [
            (min_price, config.get(key), name)
            for min_price, key, name in DEFAULT_BANDS
        ]
    default_plan = Plan(
        config.get("PAYMENT_DEFAULT_PLAN_ID") or "",
        config.get("PAYMENT_DEFAULT_PLAN_NAME") or "Standard",
    )
    return PlanTable(build_bands(band_defs), default_plan)


def get_plan_table():
    """Return the app's PlanTable, built once on first use."""
    table = current_app.extensions.get("plan_table")
    if table is None:
        table = load_plan_table(current_app.config)
        current_app.extensions["plan_table"] = table
    return table
