from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Notification(db.Model):
    """In-app notification for a single user."""
    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_user_read", "user_id", "is_read"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    # order, payment, event, system
    type = db.Column(db.String(32), nullable=False, default="system")

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    action_url = db.Column(db.String(255), nullable=True)
    action_text = db.Column(db.String(64), nullable=True)
    data = db.Column("metadata", db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "read": self.is_read,
            "read_at": to_utc_z(self.read_at) if self.read_at else None,
            "action_url": self.action_url,
            "action_text": self.action_text,
            "metadata": self.data,
            "created_at": to_utc_z(self.created_at),
        }
