"""Price selection and charge calculation.

Amounts are integers in the currency's minor unit. Every function here is
pure: the result depends only on the arguments.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from xbs.business.catalog.schemas import SUPPORTED_CURRENCIES, PlanRead, PriceCreate, PriceRead, PriceTier
from xbs.core.errors import ValidationError


class PriceDefinition(Protocol):
    unit_amount: int
    pricing_model: str
    tiers: list[PriceTier] | None


def normalize_currency(currency: str) -> str:
    return currency.strip().upper()


def resolve_price(plan: PlanRead, currency: str) -> PriceRead | None:
    """Return the plan's price for ``currency``; ``None`` when the plan is not sold in it."""
    wanted = normalize_currency(currency)
    return next((price for price in plan.prices if price.currency == wanted), None)


def calculate_price(price: PriceDefinition, quantity: int = 1) -> int:
    model = price.pricing_model or "flat"
    if model == "flat":
        return price.unit_amount
    if quantity <= 0:
        return 0
    if model == "per_unit":
        return price.unit_amount * quantity
    if model == "tiered":
        return _graduated_amount(price.tiers or [], quantity)
    if model == "volume":
        return _volume_amount(price.tiers or [], quantity)
    raise ValidationError(f"unsupported pricing_model: {model}")


def _graduated_amount(tiers: Sequence[PriceTier], quantity: int) -> int:
    total = 0
    remaining = quantity
    lower_bound = 0
    for index, tier in enumerate(tiers):
        if remaining <= 0:
            break
        is_last = index == len(tiers) - 1
        if tier.up_to is None or is_last:
            # units above a bounded last tier stay at its rate
            units = remaining
        else:
            units = min(remaining, tier.up_to - lower_bound)
            lower_bound = tier.up_to
        if units <= 0:
            continue
        total += units * tier.unit_amount
        if tier.flat_amount:
            total += tier.flat_amount
        remaining -= units
    return total


def _volume_amount(tiers: Sequence[PriceTier], quantity: int) -> int:
    if not tiers:
        return 0
    tier = next((row for row in tiers if row.up_to is None or quantity <= row.up_to), tiers[-1])
    return quantity * tier.unit_amount + (tier.flat_amount or 0)


def validate_tiers(tiers: Sequence[PriceTier]) -> None:
    last_up_to = 0
    for index, tier in enumerate(tiers, start=1):
        if tier.unit_amount < 0:
            raise ValidationError(f"Tier {index}: unit_amount must be non-negative")
        if tier.flat_amount is not None and tier.flat_amount < 0:
            raise ValidationError(f"Tier {index}: flat_amount must be non-negative")
        if tier.up_to is None:
            if index != len(tiers):
                raise ValidationError("Only the last tier can have up_to = null (infinity)")
            continue
        if tier.up_to <= last_up_to:
            raise ValidationError(f"Tier {index}: up_to must be greater than previous tier")
        last_up_to = tier.up_to


def validate_price_definition(price: PriceCreate) -> None:
    if normalize_currency(price.currency) not in SUPPORTED_CURRENCIES:
        raise ValidationError(f"Invalid currency: {price.currency}. Supported: {', '.join(SUPPORTED_CURRENCIES)}")
    if price.unit_amount < 0:
        raise ValidationError("unit_amount must be a non-negative integer")
    if price.pricing_model in {"tiered", "volume"}:
        if not price.tiers:
            raise ValidationError("Tiers are required for tiered/volume pricing")
        validate_tiers(price.tiers)
