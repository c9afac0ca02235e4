from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z, format_cents


# =============================================================================
# PURCHASE STATUS / TYPE (CONSTANTS)
# =============================================================================

PURCHASE_PENDING = "pending"
PURCHASE_PROCESSING = "processing"
PURCHASE_SHIPPED = "shipped"
PURCHASE_DELIVERED = "delivered"
PURCHASE_COMPLETED = "completed"
PURCHASE_CANCELLED = "cancelled"
PURCHASE_FAILED = "failed"

PURCHASE_STATUSES = (
    PURCHASE_PENDING,
    PURCHASE_PROCESSING,
    PURCHASE_SHIPPED,
    PURCHASE_DELIVERED,
    PURCHASE_COMPLETED,
    PURCHASE_CANCELLED,
    PURCHASE_FAILED,
)

PURCHASE_TYPE_PRODUCT = "product"
PURCHASE_TYPE_TICKET = "ticket"


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_PENDING = "pending"
PAYMENT_PROCESSING = "processing"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_EXPIRED = "expired"


class Purchase(db.Model):
    """
    Order aggregate for products or event tickets.

    WHY: Totals are computed once at creation and stored. The address
    snapshot also records the tax rate, tax amount and shipping amount used,
    so later edits to TaxPrice/ShippingPrice never alter historical orders.

    Status is only changed through purchase_service / webhook_service, which
    guard each transition with a conditional UPDATE on the current status.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.Index("ix_purchases_user_status", "user_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    event_id = db.Column(db.Integer, db.ForeignKey("events.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, default=PURCHASE_TYPE_PRODUCT)
    status = db.Column(db.String(16), nullable=False, default=PURCHASE_PENDING, index=True)

    # All amounts in centavos
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    # street/barangay/city/province/zipcode/region/shipping_amount/tax_amount/tax_rate
    shipping_address = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("purchases", lazy=True))
    event = db.relationship("Event")

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "event_id": self.event_id,
            "type": self.type,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "total": format_cents(self.total_cents),
            "shipping_address": self.shipping_address,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseItem(db.Model):
    """Line on a purchase; unit price is captured at purchase time."""
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.CheckConstraint("quantity >= 1", name="ck_purchase_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    # NULL for ticket lines
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)
    description = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    purchase = db.relationship("Purchase", backref=db.backref("items", lazy=True, order_by="PurchaseItem.id"))
    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "variant_id": self.variant_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "unit_price": format_cents(self.unit_price_cents),
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    Single payment attempt against a Purchase.

    Gateway identifiers:
    - payment_intent_id: PayMongo payment intent (pi_...)
    - transaction_id: checkout session (cs_...) or payment (pay_...) id
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_intent", "payment_intent_id"),
        db.Index("ix_payments_transaction", "transaction_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="PHP")
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)
    payment_method = db.Column(db.String(32), nullable=True)

    payment_intent_id = db.Column(db.String(128), nullable=True)
    transaction_id = db.Column(db.String(128), nullable=True)

    failure_code = db.Column(db.String(64), nullable=True)
    failure_message = db.Column(db.String(255), nullable=True)

    gateway_metadata = db.Column("metadata", db.JSON, nullable=True)

    payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    purchase = db.relationship(
        "Purchase",
        backref=db.backref("payments", lazy=True, cascade="all, delete-orphan"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "amount_cents": self.amount_cents,
            "amount": format_cents(self.amount_cents),
            "currency": self.currency,
            "status": self.status,
            "payment_method": self.payment_method,
            "payment_intent_id": self.payment_intent_id,
            "transaction_id": self.transaction_id,
            "failure_code": self.failure_code,
            "failure_message": self.failure_message,
            "payment_date": to_utc_z(self.payment_date) if self.payment_date else None,
            "created_at": to_utc_z(self.created_at),
        }
