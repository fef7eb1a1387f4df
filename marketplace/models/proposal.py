"""
Freelance Escrow Marketplace
Proposal domain models - freelancer bids and their negotiation trail.

Models:
    - Proposal:       a freelancer's bid on a Project
    - ProposalOffer:  one counter-offer round (append-only negotiation history)

Lifecycle states:
    Proposal:  pending → negotiating → final_offer
               pending | negotiating | final_offer → accepted | rejected | withdrawn
               accepted, rejected, withdrawn are terminal
"""

import enum
from datetime import datetime, timezone

from marketplace.models import db


# ── Constants ────────────────────────────────────────────────────────────────

# Hard ceiling of counter-offer rounds per proposal, across both parties
MAX_NEGOTIATION_ROUNDS = 2


class ProposalStatus(str, enum.Enum):
    PENDING = "pending"
    NEGOTIATING = "negotiating"
    FINAL_OFFER = "final_offer"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


OPEN_PROPOSAL_STATUSES = (
    ProposalStatus.PENDING.value,
    ProposalStatus.NEGOTIATING.value,
    ProposalStatus.FINAL_OFFER.value,
)

TERMINAL_PROPOSAL_STATUSES = (
    ProposalStatus.ACCEPTED.value,
    ProposalStatus.REJECTED.value,
    ProposalStatus.WITHDRAWN.value,
)

PROPOSAL_TRANSITIONS = {
    ProposalStatus.PENDING:     {ProposalStatus.NEGOTIATING, ProposalStatus.ACCEPTED,
                                 ProposalStatus.REJECTED, ProposalStatus.WITHDRAWN},
    ProposalStatus.NEGOTIATING: {ProposalStatus.FINAL_OFFER, ProposalStatus.ACCEPTED,
                                 ProposalStatus.REJECTED, ProposalStatus.WITHDRAWN},
    ProposalStatus.FINAL_OFFER: {ProposalStatus.ACCEPTED, ProposalStatus.REJECTED,
                                 ProposalStatus.WITHDRAWN},
    ProposalStatus.ACCEPTED:    set(),
    ProposalStatus.REJECTED:    set(),
    ProposalStatus.WITHDRAWN:   set(),
}


def validate_proposal_transition(old_status, new_status):
    """Return True if Proposal status transition is valid."""
    return ProposalStatus(new_status) in PROPOSAL_TRANSITIONS.get(ProposalStatus(old_status), set())


def proposal_sources_for(new_status):
    """Return every proposal status from which ``new_status`` is reachable in one step."""
    target = ProposalStatus(new_status)
    return tuple(s.value for s, targets in PROPOSAL_TRANSITIONS.items() if target in targets)


def status_after_counter(negotiation_count):
    """Status a proposal lands in once ``negotiation_count`` rounds have been used."""
    if negotiation_count == 1:
        return ProposalStatus.NEGOTIATING
    return ProposalStatus.FINAL_OFFER


class Proposal(db.Model):
    """
    Freelancer bid on a project.

    Business rules:
    - original_budget is the first offer and is never rewritten.
    - negotiation_count never exceeds MAX_NEGOTIATION_ROUNDS.
    - At most one accepted proposal per project; the partial unique index
      below backs up the service-level check.
    - At most one open (pending/negotiating/final_offer) proposal per
      freelancer per project, enforced by a second partial unique index.
    """

    __tablename__ = "proposals"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    freelancer_id = db.Column(db.Integer, nullable=False, index=True)

    cover_letter = db.Column(db.Text, nullable=False, default="")
    proposed_budget = db.Column(db.Numeric(12, 2), nullable=False)
    original_budget = db.Column(db.Numeric(12, 2), nullable=False)
    estimated_duration = db.Column(db.String(100), nullable=True)

    status = db.Column(
        db.String(20), nullable=False, default=ProposalStatus.PENDING.value, index=True,
        comment="pending | negotiating | final_offer | accepted | rejected | withdrawn",
    )
    negotiation_count = db.Column(db.Integer, nullable=False, default=0)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','negotiating','final_offer','accepted','rejected','withdrawn')",
            name="ck_proposal_status",
        ),
        db.CheckConstraint(
            f"negotiation_count >= 0 AND negotiation_count <= {MAX_NEGOTIATION_ROUNDS}",
            name="ck_proposal_negotiation_count",
        ),
        db.Index(
            "uq_proposals_one_accepted_per_project", "project_id",
            unique=True,
            sqlite_where=db.text("status = 'accepted'"),
            postgresql_where=db.text("status = 'accepted'"),
        ),
        db.Index(
            "uq_proposals_one_active_per_freelancer", "project_id", "freelancer_id",
            unique=True,
            sqlite_where=db.text("status IN ('pending','negotiating','final_offer')"),
            postgresql_where=db.text("status IN ('pending','negotiating','final_offer')"),
        ),
    )

    offers = db.relationship(
        "ProposalOffer", backref="proposal", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ProposalOffer.round_number",
    )

    @property
    def is_terminal(self):
        return self.status in TERMINAL_PROPOSAL_STATUSES

    @property
    def rounds_remaining(self):
        return max(MAX_NEGOTIATION_ROUNDS - (self.negotiation_count or 0), 0)

    def to_dict(self, include_history=True):
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "freelancer_id": self.freelancer_id,
            "cover_letter": self.cover_letter,
            "proposed_budget": float(self.proposed_budget) if self.proposed_budget is not None else None,
            "original_budget": float(self.original_budget) if self.original_budget is not None else None,
            "estimated_duration": self.estimated_duration,
            "status": self.status,
            "negotiation_count": self.negotiation_count,
            "rounds_remaining": self.rounds_remaining,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_history:
            result["negotiation_history"] = [o.to_dict() for o in self.offers]
        return result

    def __repr__(self):
        return f"<Proposal {self.id} project={self.project_id} [{self.status}]>"


class ProposalOffer(db.Model):
    """
    One counter-offer round. Rows are never updated or deleted.

    (proposal_id, round_number) is unique so two racing counter-offers can
    never both claim the same round.
    """

    __tablename__ = "proposal_offers"

    id = db.Column(db.Integer, primary_key=True)
    proposal_id = db.Column(
        db.Integer, db.ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    round_number = db.Column(db.Integer, nullable=False)
    actor_id = db.Column(db.Integer, nullable=False)
    actor_role = db.Column(db.String(20), nullable=False, comment="client | freelancer")
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    estimated_duration = db.Column(db.String(100), nullable=True)
    note = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("proposal_id", "round_number", name="uq_proposal_offer_round"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "proposal_id": self.proposal_id,
            "round": self.round_number,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "amount": float(self.amount) if self.amount is not None else None,
            "estimated_duration": self.estimated_duration,
            "note": self.note,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
