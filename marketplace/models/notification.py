"""
Freelance Escrow Marketplace
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from marketplace.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_EVENT_KINDS = {
    "proposal_submitted",
    "counter_offer",
    "proposal_accepted",
    "proposal_rejected",
    "proposal_withdrawn",
    "payment_submitted",
    "escrow_verified",
    "release_requested",
    "payment_released",
    "escrow_disputed",
    "escrow_refunded",
    "project_in_review",
    "project_cancelled",
    "deliverable_submitted",
    "deliverable_approved",
    "deliverable_revision_requested",
    "deliverable_rejected",
    "milestone_completed",
    "milestone_approved",
    "milestone_changes_requested",
}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. user_id is the identity-provider id.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    event_kind = db.Column(db.String(50), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    payload = db.Column(db.JSON, default=dict)
    project_id = db.Column(db.Integer, nullable=True, index=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_kind": self.event_kind,
            "title": self.title,
            "payload": self.payload or {},
            "project_id": self.project_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.event_kind} → user {self.user_id}>"
