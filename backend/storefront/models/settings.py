from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z, format_cents


class ShippingPrice(db.Model):
    """Flat shipping fee per region tag (local, cebu, luzon, visayas, mindanao, ...)."""
    __tablename__ = "shipping_prices"
    __table_args__ = (
        db.UniqueConstraint("region", name="uq_shipping_prices_region"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    region = db.Column(db.String(64), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "region": self.region,
            "price_cents": self.price_cents,
            "price": format_cents(self.price_cents),
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }


class TaxPrice(db.Model):
    """
    Named tax rate in basis points (1200 = 12.00%).

    All active rows are summed into the effective tax rate.
    """
    __tablename__ = "tax_prices"
    __table_args__ = (
        db.UniqueConstraint("name", name="uq_tax_prices_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    rate_bps = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "rate_bps": self.rate_bps,
            "rate_percent": f"{self.rate_bps / 100:.2f}",
            "is_active": self.is_active,
            "updated_at": to_utc_z(self.updated_at),
        }
