"""
Freelance Escrow Marketplace
Escrow ledger log.

Models:
    - EscrowTransaction: append-only audit entry for every escrow movement

The escrow *state* lives on Project; this table is the history an admin
reads when reconciling off-platform payments.
"""

from datetime import datetime, timezone

from marketplace.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ESCROW_TRANSACTION_TYPES = frozenset({
    "escrow_initialized",
    "payment_submitted",
    "payment_verified",
    "release_requested",
    "payment_released",
    "refund_issued",
    "dispute_opened",
})


class EscrowTransaction(db.Model):
    """
    Escrow history entry.

    Business rules:
    - One row per transition; a payment-proof re-submission updates the
      existing 'payment_submitted' row instead of appending.
    - performed_by is the identity-provider user id of the actor.
    """

    __tablename__ = "escrow_transactions"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    transaction_type = db.Column(db.String(30), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=True)
    transaction_reference = db.Column(db.String(500), nullable=True,
                                      comment="Proof reference or external payout id")
    payment_method = db.Column(db.String(50), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    performed_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "transaction_type IN ('escrow_initialized','payment_submitted','payment_verified',"
            "'release_requested','payment_released','refund_issued','dispute_opened')",
            name="ck_escrow_transaction_type",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "transaction_type": self.transaction_type,
            "amount": float(self.amount) if self.amount is not None else None,
            "transaction_reference": self.transaction_reference,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "performed_by": self.performed_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
