# Overview: Service-layer operations for pricing; subtotal, tax, shipping and total computation.

"""
Pricing Calculator

WHY: Totals are computed server-side from catalog prices and reference
data. Client-supplied prices are display hints only.

ORDER OF OPERATIONS:
1. subtotal = sum(unit_price x quantity)
2. shipping = active ShippingPrice for the resolved region, else 0
3. tax      = subtotal x (sum of active TaxPrice rates), half-up to the centavo
4. total    = subtotal + tax + shipping

All money is integer centavos; rates are basis points (1200 = 12.00%).
"""

from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Iterable

from ..extensions import db
from ..models import ShippingPrice, TaxPrice
from storefront.time_utils import format_cents
from .region_service import priceable_regions, resolve_region


class PricingError(Exception):
    """Raised for invalid pricing input."""
    pass


@dataclass(frozen=True)
class PriceLine:
    unit_price_cents: int
    quantity: int


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal_cents: int
    tax_rate_bps: int
    tax_cents: int
    shipping_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        data = asdict(self)
        data.update({
            "subtotal": format_cents(self.subtotal_cents),
            "tax": format_cents(self.tax_cents),
            "shipping": format_cents(self.shipping_cents),
            "total": format_cents(self.total_cents),
            "tax_rate_percent": f"{self.tax_rate_bps / 100:.2f}",
        })
        return data


@dataclass(frozen=True)
class Quote:
    region: str
    breakdown: PriceBreakdown
    shipping_configured: bool

    def to_dict(self) -> dict:
        return {
            "region": self.region,
            "shipping_configured": self.shipping_configured,
            **self.breakdown.to_dict(),
        }


def _round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounding half up (non-negative inputs)."""
    return (numerator + denominator // 2) // denominator


def compute_tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    """
    Tax on a subtotal at a basis-point rate.

    Example: 130000 centavos at 1200 bps -> 15600 centavos.
    """
    if subtotal_cents <= 0 or tax_rate_bps <= 0:
        return 0
    return _round_half_up_div(subtotal_cents * tax_rate_bps, 10_000)


def calculate_totals(
    lines: Iterable[PriceLine],
    shipping_cents: int,
    tax_rate_bps: int,
) -> PriceBreakdown:
    """Compute a PriceBreakdown from lines, a shipping fee and a tax rate."""
    subtotal = 0
    for line in lines:
        if line.quantity < 1:
            raise PricingError("Quantity must be at least 1")
        if line.unit_price_cents < 0:
            raise PricingError("Unit price cannot be negative")
        subtotal += line.unit_price_cents * line.quantity

    shipping = max(0, int(shipping_cents or 0))
    rate = max(0, int(tax_rate_bps or 0))
    tax = compute_tax_cents(subtotal, rate)

    return PriceBreakdown(
        subtotal_cents=subtotal,
        tax_rate_bps=rate,
        tax_cents=tax,
        shipping_cents=shipping,
        total_cents=subtotal + tax + shipping,
    )


# =============================================================================
# REFERENCE DATA LOOKUPS
# =============================================================================

def active_tax_rate_bps() -> int:
    """Sum of all active TaxPrice rates."""
    total = (
        db.session.query(db.func.coalesce(db.func.sum(TaxPrice.rate_bps), 0))
        .filter(TaxPrice.is_active.is_(True))
        .scalar()
    )
    return int(total or 0)


def shipping_price_for_region(region: str) -> ShippingPrice | None:
    """Active ShippingPrice for a region tag, or None."""
    return (
        db.session.query(ShippingPrice)
        .filter(ShippingPrice.region == region, ShippingPrice.is_active.is_(True))
        .first()
    )


def quote_for_address(lines: Iterable[PriceLine], city: str | None, province: str | None, config) -> Quote:
    """
    Resolve the region for an address and price the lines against it.

    Args:
        lines: PriceLine items
        city, province: destination
        config: CommerceConfig (origin city/province and default region)
    """
    region = resolve_region(
        city,
        province,
        origin_city=config.origin_city,
        origin_province=config.origin_province,
        default_region=config.default_region,
    )
    shipping = shipping_price_for_region(region)
    breakdown = calculate_totals(
        lines,
        shipping_cents=shipping.price_cents if shipping else 0,
        tax_rate_bps=active_tax_rate_bps(),
    )
    return Quote(region=region, breakdown=breakdown, shipping_configured=shipping is not None)


# =============================================================================
# ADMIN: REFERENCE DATA MAINTENANCE
# =============================================================================

def upsert_shipping_price(region: str, price_cents: int, is_active: bool = True, config=None) -> ShippingPrice:
    """
    Create or update the shipping price for a region tag.

    Accepted tags are the ones resolve_region can produce for the store
    origin in config, so a same-province origin such as "bohol" is priceable.
    """
    region = (region or "").strip().lower()
    if not region:
        raise PricingError("region is required")
    allowed = priceable_regions(
        config.origin_province if config else None,
        config.default_region if config else None,
    )
    if region not in allowed:
        raise PricingError(f"Unknown region: {region}")
    if price_cents is None or int(price_cents) < 0:
        raise PricingError("price_cents must be a non-negative integer")

    row = db.session.query(ShippingPrice).filter_by(region=region).first()
    if row is None:
        row = ShippingPrice(region=region)
        db.session.add(row)
    row.price_cents = int(price_cents)
    row.is_active = bool(is_active)
    db.session.commit()
    return row


def upsert_tax_price(name: str, rate_bps: int, is_active: bool = True) -> TaxPrice:
    name = (name or "").strip()
    if not name:
        raise PricingError("name is required")
    if rate_bps is None or int(rate_bps) < 0 or int(rate_bps) > 10_000:
        raise PricingError("rate_bps must be between 0 and 10000")

    row = db.session.query(TaxPrice).filter_by(name=name).first()
    if row is None:
        row = TaxPrice(name=name)
        db.session.add(row)
    row.rate_bps = int(rate_bps)
    row.is_active = bool(is_active)
    db.session.commit()
    return row


def delete_shipping_price(shipping_price_id: int) -> None:
    row = db.session.get(ShippingPrice, shipping_price_id)
    if row is None:
        raise PricingError(f"Shipping price {shipping_price_id} not found")
    db.session.delete(row)
    db.session.commit()


def delete_tax_price(tax_price_id: int) -> None:
    row = db.session.get(TaxPrice, tax_price_id)
    if row is None:
        raise PricingError(f"Tax price {tax_price_id} not found")
    db.session.delete(row)
    db.session.commit()
