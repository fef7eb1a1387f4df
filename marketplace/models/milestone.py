"""
Freelance Escrow Marketplace
Milestone domain model - informational progress checklist.

Models:
    - Milestone: a checkpoint agreed between client and freelancer

Lifecycle states:
    Milestone:  pending → in_progress → completed → approved
                completed | approved → in_progress (client requests changes)

Milestones never gate escrow; they only describe progress.
"""

import enum
from datetime import date, datetime, timezone

from marketplace.models import db


# ── Constants ────────────────────────────────────────────────────────────────


class MilestoneStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"


MILESTONE_TRANSITIONS = {
    MilestoneStatus.PENDING:     {MilestoneStatus.IN_PROGRESS},
    MilestoneStatus.IN_PROGRESS: {MilestoneStatus.COMPLETED},
    MilestoneStatus.COMPLETED:   {MilestoneStatus.APPROVED, MilestoneStatus.IN_PROGRESS},
    MilestoneStatus.APPROVED:    {MilestoneStatus.IN_PROGRESS},
}


def validate_milestone_transition(old_status, new_status):
    """Return True if Milestone status transition is valid."""
    return MilestoneStatus(new_status) in MILESTONE_TRANSITIONS.get(MilestoneStatus(old_status), set())


def milestone_sources_for(new_status):
    """Return every milestone status from which ``new_status`` is reachable in one step."""
    target = MilestoneStatus(new_status)
    return tuple(s.value for s, targets in MILESTONE_TRANSITIONS.items() if target in targets)


class Milestone(db.Model):
    """Project checkpoint with its own review cycle."""

    __tablename__ = "milestones"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    due_date = db.Column(db.Date, nullable=True)
    created_by = db.Column(db.Integer, nullable=False)

    status = db.Column(
        db.String(20), nullable=False, default=MilestoneStatus.PENDING.value, index=True,
        comment="pending | in_progress | completed | approved",
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','in_progress','completed','approved')",
            name="ck_milestone_status",
        ),
    )

    @property
    def is_overdue(self):
        if not self.due_date:
            return False
        if self.status in (MilestoneStatus.COMPLETED.value, MilestoneStatus.APPROVED.value):
            return False
        return self.due_date < date.today()

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "created_by": self.created_by,
            "status": self.status,
            "is_overdue": self.is_overdue,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Milestone {self.id}: {self.title!r} [{self.status}]>"
