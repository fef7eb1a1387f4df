"""
Freelance Escrow Marketplace
Invitation domain models - client-initiated entry points into the proposal funnel.

Models:
    - ProjectInvitation: a client asks a freelancer to bid on an open project
    - QuoteRequest: a client asks a freelancer to price work that is not
      posted as a project yet

Lifecycle states:
    ProjectInvitation:  pending → accepted | declined
    QuoteRequest:       pending → quoted | declined | withdrawn
"""

import enum
from datetime import datetime, timezone

from marketplace.models import db


# ── Constants ────────────────────────────────────────────────────────────────


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class QuoteStatus(str, enum.Enum):
    PENDING = "pending"
    QUOTED = "quoted"
    DECLINED = "declined"
    WITHDRAWN = "withdrawn"


INVITATION_TRANSITIONS = {
    InvitationStatus.PENDING:  {InvitationStatus.ACCEPTED, InvitationStatus.DECLINED},
    InvitationStatus.ACCEPTED: set(),
    InvitationStatus.DECLINED: set(),
}

QUOTE_TRANSITIONS = {
    QuoteStatus.PENDING:   {QuoteStatus.QUOTED, QuoteStatus.DECLINED, QuoteStatus.WITHDRAWN},
    QuoteStatus.QUOTED:    set(),
    QuoteStatus.DECLINED:  set(),
    QuoteStatus.WITHDRAWN: set(),
}


def validate_invitation_transition(old_status, new_status):
    """Return True if ProjectInvitation status transition is valid."""
    return InvitationStatus(new_status) in INVITATION_TRANSITIONS.get(InvitationStatus(old_status), set())


def validate_quote_transition(old_status, new_status):
    """Return True if QuoteRequest status transition is valid."""
    return QuoteStatus(new_status) in QUOTE_TRANSITIONS.get(QuoteStatus(old_status), set())


def invitation_sources_for(new_status):
    """Return every invitation status from which ``new_status`` is reachable in one step."""
    target = InvitationStatus(new_status)
    return tuple(s.value for s, targets in INVITATION_TRANSITIONS.items() if target in targets)


def quote_sources_for(new_status):
    """Return every quote request status from which ``new_status`` is reachable in one step."""
    target = QuoteStatus(new_status)
    return tuple(s.value for s, targets in QUOTE_TRANSITIONS.items() if target in targets)


def _iso(value):
    return value.isoformat() if value else None


def _money(value):
    return float(value) if value is not None else None


class ProjectInvitation(db.Model):
    """
    Client invitation to bid.

    Business rules:
    - One invitation per (project, freelancer); re-inviting is rejected.
    - Accepting does not create a proposal; the freelancer still submits one.
      Submitting a proposal while invited accepts a pending invitation.
    """

    __tablename__ = "project_invitations"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    client_id = db.Column(db.Integer, nullable=False)
    freelancer_id = db.Column(db.Integer, nullable=False, index=True)
    message = db.Column(db.Text, nullable=True)

    status = db.Column(
        db.String(20), nullable=False, default=InvitationStatus.PENDING.value, index=True,
        comment="pending | accepted | declined",
    )
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("project_id", "freelancer_id", name="uq_invitation_project_freelancer"),
        db.CheckConstraint(
            "status IN ('pending','accepted','declined')",
            name="ck_invitation_status",
        ),
    )

    project = db.relationship("Project", backref=db.backref("invitations", lazy="dynamic",
                                                           cascade="all, delete-orphan"))

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "project_title": self.project.title if self.project else None,
            "client_id": self.client_id,
            "freelancer_id": self.freelancer_id,
            "message": self.message,
            "status": self.status,
            "responded_at": _iso(self.responded_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<ProjectInvitation {self.id}: project={self.project_id} freelancer={self.freelancer_id} [{self.status}]>"


class QuoteRequest(db.Model):
    """Direct pricing request from a client to one freelancer."""

    __tablename__ = "quote_requests"

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, nullable=False, index=True)
    freelancer_id = db.Column(db.Integer, nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=False)
    budget_min = db.Column(db.Numeric(12, 2), nullable=True)
    budget_max = db.Column(db.Numeric(12, 2), nullable=True)
    deadline = db.Column(db.Date, nullable=True)
    required_skills = db.Column(db.JSON, default=list)

    status = db.Column(
        db.String(20), nullable=False, default=QuoteStatus.PENDING.value, index=True,
        comment="pending | quoted | declined | withdrawn",
    )
    quoted_amount = db.Column(db.Numeric(12, 2), nullable=True)
    quoted_duration = db.Column(db.String(100), nullable=True)
    response_note = db.Column(db.Text, nullable=True)
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','quoted','declined','withdrawn')",
            name="ck_quote_status",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "client_id": self.client_id,
            "freelancer_id": self.freelancer_id,
            "title": self.title,
            "description": self.description,
            "budget_min": _money(self.budget_min),
            "budget_max": _money(self.budget_max),
            "deadline": _iso(self.deadline),
            "required_skills": self.required_skills or [],
            "status": self.status,
            "quoted_amount": _money(self.quoted_amount),
            "quoted_duration": self.quoted_duration,
            "response_note": self.response_note,
            "responded_at": _iso(self.responded_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<QuoteRequest {self.id}: {self.title!r} [{self.status}]>"
