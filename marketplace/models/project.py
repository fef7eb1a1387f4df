"""
Freelance Escrow Marketplace
Project domain model - the engagement root.

Models:
    - Project: a client's posted job; owns its proposals, deliverables and
      milestones by reference, and carries the escrow figures derived from
      the accepted proposal

Architecture:
    Project ──1:N──▶ Proposal ──1:N──▶ ProposalOffer
    Project ──1:N──▶ Deliverable ──1:N──▶ DeliverableRevision
    Project ──1:N──▶ Milestone
    Project ──1:N──▶ EscrowTransaction

Lifecycle states:
    Project:  open → in_progress → in_review → completed
              open | in_progress | in_review → cancelled
    Escrow:   pending_payment → payment_submitted → verified_held
              → pending_release → released
              any non-released → disputed | refunded ; disputed → refunded
"""

import enum
from datetime import datetime, timezone

from marketplace.models import db


# ── Constants ────────────────────────────────────────────────────────────────


class ProjectStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class EscrowStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    PAYMENT_SUBMITTED = "payment_submitted"
    VERIFIED_HELD = "verified_held"
    PENDING_RELEASE = "pending_release"
    RELEASED = "released"
    DISPUTED = "disputed"
    REFUNDED = "refunded"


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

PROJECT_TRANSITIONS = {
    ProjectStatus.OPEN:        {ProjectStatus.IN_PROGRESS, ProjectStatus.CANCELLED},
    ProjectStatus.IN_PROGRESS: {ProjectStatus.IN_REVIEW, ProjectStatus.CANCELLED},
    ProjectStatus.IN_REVIEW:   {ProjectStatus.COMPLETED, ProjectStatus.CANCELLED},
    ProjectStatus.COMPLETED:   set(),
    ProjectStatus.CANCELLED:   set(),
}

ESCROW_TRANSITIONS = {
    EscrowStatus.PENDING_PAYMENT: {
        EscrowStatus.PAYMENT_SUBMITTED, EscrowStatus.DISPUTED, EscrowStatus.REFUNDED,
    },
    EscrowStatus.PAYMENT_SUBMITTED: {
        EscrowStatus.VERIFIED_HELD, EscrowStatus.DISPUTED, EscrowStatus.REFUNDED,
    },
    EscrowStatus.VERIFIED_HELD: {
        EscrowStatus.PENDING_RELEASE, EscrowStatus.DISPUTED, EscrowStatus.REFUNDED,
    },
    EscrowStatus.PENDING_RELEASE: {
        EscrowStatus.RELEASED, EscrowStatus.DISPUTED, EscrowStatus.REFUNDED,
    },
    # A dispute is adjudicated by an admin; the only way out is a refund
    EscrowStatus.DISPUTED: {EscrowStatus.REFUNDED},
    EscrowStatus.RELEASED: set(),
    EscrowStatus.REFUNDED: set(),
}

# Escrow states that still hold (or await) client money
LIVE_ESCROW_STATUSES = frozenset(
    s.value for s, targets in ESCROW_TRANSITIONS.items() if targets
)


def validate_project_transition(old_status, new_status):
    """Return True if Project status transition is valid."""
    return ProjectStatus(new_status) in PROJECT_TRANSITIONS.get(ProjectStatus(old_status), set())


def project_sources_for(new_status):
    """Return every project status from which ``new_status`` is reachable in one step."""
    target = ProjectStatus(new_status)
    return tuple(s.value for s, targets in PROJECT_TRANSITIONS.items() if target in targets)


def validate_escrow_transition(old_status, new_status):
    """Return True if escrow status transition is valid."""
    if old_status is None:
        return False
    return EscrowStatus(new_status) in ESCROW_TRANSITIONS.get(EscrowStatus(old_status), set())


def escrow_sources_for(new_status):
    """Return every escrow status from which ``new_status`` is reachable in one step."""
    target = EscrowStatus(new_status)
    return tuple(s.value for s, targets in ESCROW_TRANSITIONS.items() if target in targets)


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return float(value) if value is not None else None


class Project(db.Model):
    """
    Client-posted project.

    Business rules:
    - escrow_amount == freelancer_payout_amount + platform_fee_amount once set.
    - freelancer_id / accepted_proposal_id stay null until a proposal is accepted.
    - status only moves along PROJECT_TRANSITIONS; escrow_status along
      ESCROW_TRANSITIONS. Both are written by conditional updates in the
      service layer, never by blind assignment.
    """

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, nullable=False, index=True, comment="Identity-provider user id")
    freelancer_id = db.Column(db.Integer, nullable=True, index=True, comment="Set on proposal acceptance")
    accepted_proposal_id = db.Column(db.Integer, nullable=True, comment="Back-reference to the accepted Proposal")

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    budget_min = db.Column(db.Numeric(12, 2), nullable=True)
    budget_max = db.Column(db.Numeric(12, 2), nullable=True)
    deadline = db.Column(db.Date, nullable=True)
    estimated_duration = db.Column(db.String(100), nullable=True)
    required_skills = db.Column(db.JSON, default=list)

    status = db.Column(
        db.String(20), nullable=False, default=ProjectStatus.OPEN.value, index=True,
        comment="open | in_progress | in_review | completed | cancelled",
    )

    # Escrow
    escrow_status = db.Column(db.String(30), nullable=True, index=True)
    escrow_amount = db.Column(db.Numeric(12, 2), nullable=True)
    platform_fee_percentage = db.Column(db.Numeric(5, 2), nullable=True)
    platform_fee_amount = db.Column(db.Numeric(12, 2), nullable=True)
    freelancer_payout_amount = db.Column(db.Numeric(12, 2), nullable=True)
    payment_proof_reference = db.Column(db.String(500), nullable=True, comment="File-storage reference, never raw bytes")
    payment_method = db.Column(db.String(50), nullable=True)
    payment_submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escrow_verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escrow_verified_by = db.Column(db.Integer, nullable=True)
    contact_shared_at = db.Column(db.DateTime(timezone=True), nullable=True)
    release_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escrow_released_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escrow_released_by = db.Column(db.Integer, nullable=True)
    release_transaction_reference = db.Column(db.String(200), nullable=True)

    # Cancellation
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('open','in_progress','in_review','completed','cancelled')",
            name="ck_project_status",
        ),
        db.CheckConstraint(
            "escrow_status IS NULL OR escrow_status IN ('pending_payment','payment_submitted',"
            "'verified_held','pending_release','released','disputed','refunded')",
            name="ck_project_escrow_status",
        ),
    )

    proposals = db.relationship(
        "Proposal", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Proposal.created_at",
    )
    deliverables = db.relationship(
        "Deliverable", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Deliverable.created_at",
    )
    milestones = db.relationship(
        "Milestone", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="Milestone.id",
    )
    escrow_transactions = db.relationship(
        "EscrowTransaction", backref="project", lazy="dynamic",
        cascade="all, delete-orphan", order_by="EscrowTransaction.id",
    )

    def escrow_to_dict(self, include_proof=True):
        result = {
            "escrow_status": self.escrow_status,
            "escrow_amount": _money(self.escrow_amount),
            "platform_fee_percentage": _money(self.platform_fee_percentage),
            "platform_fee_amount": _money(self.platform_fee_amount),
            "freelancer_payout_amount": _money(self.freelancer_payout_amount),
            "payment_proof_reference": self.payment_proof_reference,
            "payment_method": self.payment_method,
            "payment_submitted_at": _iso(self.payment_submitted_at),
            "escrow_verified_at": _iso(self.escrow_verified_at),
            "escrow_verified_by": self.escrow_verified_by,
            "contact_shared_at": _iso(self.contact_shared_at),
            "release_requested_at": _iso(self.release_requested_at),
            "escrow_released_at": _iso(self.escrow_released_at),
            "escrow_released_by": self.escrow_released_by,
            "release_transaction_reference": self.release_transaction_reference,
        }
        if not include_proof:
            result.pop("payment_proof_reference")
        return result

    def to_dict(self, include_children=False, escrow_view=None):
        """
        Serialize the project.

        ``escrow_view`` controls the escrow block: ``"full"`` for the client and
        admins, ``"party"`` for the assigned freelancer (no payment proof
        reference), ``None`` to leave it out.
        """
        result = {
            "id": self.id,
            "client_id": self.client_id,
            "freelancer_id": self.freelancer_id,
            "accepted_proposal_id": self.accepted_proposal_id,
            "title": self.title,
            "description": self.description,
            "budget_min": _money(self.budget_min),
            "budget_max": _money(self.budget_max),
            "deadline": _iso(self.deadline),
            "estimated_duration": self.estimated_duration,
            "required_skills": self.required_skills or [],
            "status": self.status,
            "cancelled_at": _iso(self.cancelled_at),
            "cancellation_reason": self.cancellation_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            # Aggregated stats
            "proposal_count": self.proposals.count(),
            "deliverable_count": self.deliverables.count(),
            "milestone_count": self.milestones.count(),
        }
        if escrow_view:
            result["escrow"] = self.escrow_to_dict(include_proof=escrow_view == "full")
        if include_children:
            result["proposals"] = [p.to_dict() for p in self.proposals]
            result["deliverables"] = [d.to_dict() for d in self.deliverables]
            result["milestones"] = [m.to_dict() for m in self.milestones]
        return result

    def __repr__(self):
        return f"<Project {self.id}: {self.title!r} [{self.status}]>"
