"""
Freelance Escrow Marketplace
Deliverable domain models - submitted work and its review cycle.

Models:
    - Deliverable:          a unit of submitted work
    - DeliverableRevision:  a client's change request against a deliverable

Lifecycle states:
    Deliverable:  submitted → under_review
                  submitted | under_review → approved | needs_revision | rejected
                  needs_revision → submitted
                  approved, rejected are terminal
    Revision:     pending → completed
"""

import enum
from datetime import datetime, timezone

from marketplace.models import db


# ── Constants ────────────────────────────────────────────────────────────────


class DeliverableStatus(str, enum.Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    NEEDS_REVISION = "needs_revision"
    APPROVED = "approved"
    REJECTED = "rejected"


DELIVERABLE_TRANSITIONS = {
    DeliverableStatus.SUBMITTED:      {DeliverableStatus.UNDER_REVIEW, DeliverableStatus.APPROVED,
                                       DeliverableStatus.NEEDS_REVISION, DeliverableStatus.REJECTED},
    DeliverableStatus.UNDER_REVIEW:   {DeliverableStatus.APPROVED, DeliverableStatus.NEEDS_REVISION,
                                       DeliverableStatus.REJECTED},
    DeliverableStatus.NEEDS_REVISION: {DeliverableStatus.SUBMITTED},
    DeliverableStatus.APPROVED:       set(),
    DeliverableStatus.REJECTED:       set(),
}

REVISION_STATUSES = {"pending", "completed"}


def validate_deliverable_transition(old_status, new_status):
    """Return True if Deliverable status transition is valid."""
    return DeliverableStatus(new_status) in DELIVERABLE_TRANSITIONS.get(DeliverableStatus(old_status), set())


def deliverable_sources_for(new_status):
    """Return every deliverable status from which ``new_status`` is reachable in one step."""
    target = DeliverableStatus(new_status)
    return tuple(s.value for s, targets in DELIVERABLE_TRANSITIONS.items() if target in targets)


class Deliverable(db.Model):
    """
    Submitted work item.

    revision_number starts at 1 and grows by one for every revision request,
    so it always equals 1 + number of needs_revision transitions.
    """

    __tablename__ = "deliverables"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    file_reference = db.Column(db.String(500), nullable=True, comment="File-storage reference")
    is_final = db.Column(db.Boolean, nullable=False, default=False,
                         comment="Freelancer marks the final hand-over; moves project to in_review")

    status = db.Column(
        db.String(20), nullable=False, default=DeliverableStatus.SUBMITTED.value, index=True,
        comment="submitted | under_review | needs_revision | approved | rejected",
    )
    revision_number = db.Column(db.Integer, nullable=False, default=1)

    submitted_by = db.Column(db.Integer, nullable=False)
    submitted_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    reviewed_by = db.Column(db.Integer, nullable=True)
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    review_note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('submitted','under_review','needs_revision','approved','rejected')",
            name="ck_deliverable_status",
        ),
        db.CheckConstraint("revision_number >= 1", name="ck_deliverable_revision_number"),
    )

    revisions = db.relationship(
        "DeliverableRevision", backref="deliverable", lazy="dynamic",
        cascade="all, delete-orphan", order_by="DeliverableRevision.id",
    )

    def to_dict(self, include_revisions=True):
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "file_reference": self.file_reference,
            "is_final": self.is_final,
            "status": self.status,
            "revision_number": self.revision_number,
            "submitted_by": self.submitted_by,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "review_note": self.review_note,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_revisions:
            result["revisions"] = [r.to_dict() for r in self.revisions]
        return result


class DeliverableRevision(db.Model):
    """Client change request; marked completed when the freelancer resubmits."""

    __tablename__ = "deliverable_revisions"

    id = db.Column(db.Integer, primary_key=True)
    deliverable_id = db.Column(
        db.Integer, db.ForeignKey("deliverables.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    requested_by = db.Column(db.Integer, nullable=False)
    revision_notes = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.CheckConstraint("status IN ('pending','completed')", name="ck_deliverable_revision_status"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "deliverable_id": self.deliverable_id,
            "requested_by": self.requested_by,
            "revision_notes": self.revision_notes,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
