"""
Milestone Tracker - Service Layer.

Milestones are an informational checklist shared by the two parties of a
project. They have their own small status cycle and never gate the escrow.

    start            (freelancer)  pending → in_progress
    complete         (freelancer)  in_progress → completed
    approve          (client)      completed → approved
    request_changes  (client)      completed | approved → in_progress
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone

from marketplace.auth import CLIENT, FREELANCER, Actor, require_party, require_user
from marketplace.core.exceptions import InvalidStateError, ValidationError
from marketplace.models import db
from marketplace.models.milestone import (
    Milestone,
    MilestoneStatus,
    milestone_sources_for,
    validate_milestone_transition,
)
from marketplace.models.project import Project, ProjectStatus
from marketplace.services.helpers.state_guard import get_or_raise, transition
from marketplace.services.notification import NotificationService
from marketplace.utils.helpers import db_commit_or_raise, parse_date

logger = logging.getLogger(__name__)

CLOSED_PROJECT_STATUSES = (ProjectStatus.COMPLETED.value, ProjectStatus.CANCELLED.value)


def _now():
    return datetime.now(timezone.utc)


def _require_project_active(project: Project):
    if project.status in CLOSED_PROJECT_STATUSES:
        raise InvalidStateError(
            "Project", project.id,
            expected=tuple(s.value for s in ProjectStatus if s.value not in CLOSED_PROJECT_STATUSES),
            actual=project.status,
        )


def _move(milestone: Milestone, actor: Actor, to_status, values=None, *, only_from=None):
    """
    Apply one table transition and commit.

    ``only_from`` narrows the table's source states for operations that
    cover a single edge (``start`` is pending → in_progress only).
    """
    expected = milestone_sources_for(to_status)
    if only_from is not None:
        expected = tuple(s for s in expected if s in only_from)
    if milestone.status not in expected or not validate_milestone_transition(milestone.status, to_status):
        raise InvalidStateError("Milestone", milestone.id, expected=expected, actual=milestone.status)
    from_status = milestone.status
    transition(
        Milestone, milestone.id,
        expected=(from_status,),
        values={"status": to_status, **(values or {})},
        entity="Milestone",
    )
    db_commit_or_raise()
    logger.info(
        "Milestone %s: %s → %s", milestone.id, from_status, to_status,
        extra={
            "milestone_id": milestone.id, "project_id": milestone.project_id,
            "from_status": from_status, "to_status": to_status,
            "actor_id": actor.id, "actor_role": actor.role,
        },
    )
    return milestone


def create(project_id: int, actor: Actor, title: str, description: str = "", due_date=None) -> Milestone:
    """Either party adds a milestone to a project that is still running."""
    project = get_or_raise(Project, project_id)
    require_party(actor, [project.client_id, project.freelancer_id], action="add milestones",
                  allow_admin=False, entity="Project", entity_id=project.id)
    title = str(title or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    _require_project_active(project)

    milestone = Milestone(
        project_id=project.id,
        title=title,
        description=str(description or ""),
        due_date=parse_date(due_date, "due_date"),
        created_by=actor.id,
        status=MilestoneStatus.PENDING.value,
    )
    db.session.add(milestone)
    db_commit_or_raise()
    logger.info("Milestone %s created on project %s", milestone.id, project.id,
                extra={"milestone_id": milestone.id, "project_id": project.id, "actor_id": actor.id})
    return milestone


def start(milestone_id: int, actor: Actor) -> Milestone:
    milestone = get_or_raise(Milestone, milestone_id)
    require_user(actor, milestone.project.freelancer_id, role=FREELANCER, action="start milestones",
                 entity="Milestone", entity_id=milestone.id)
    return _move(milestone, actor, MilestoneStatus.IN_PROGRESS.value,
                 only_from=(MilestoneStatus.PENDING.value,))


def complete(milestone_id: int, actor: Actor) -> Milestone:
    milestone = get_or_raise(Milestone, milestone_id)
    require_user(actor, milestone.project.freelancer_id, role=FREELANCER, action="complete milestones",
                 entity="Milestone", entity_id=milestone.id)
    _move(milestone, actor, MilestoneStatus.COMPLETED.value, {"completed_at": _now()})
    NotificationService.notify(milestone.project.client_id, "milestone_completed", {
        "project_id": milestone.project_id, "milestone_id": milestone.id,
    })
    return milestone


def approve(milestone_id: int, actor: Actor) -> Milestone:
    milestone = get_or_raise(Milestone, milestone_id)
    require_user(actor, milestone.project.client_id, role=CLIENT, action="approve milestones",
                 entity="Milestone", entity_id=milestone.id)
    _move(milestone, actor, MilestoneStatus.APPROVED.value, {"approved_at": _now()})
    NotificationService.notify(milestone.project.freelancer_id, "milestone_approved", {
        "project_id": milestone.project_id, "milestone_id": milestone.id,
    })
    return milestone


def request_changes(milestone_id: int, actor: Actor, note: str | None = None) -> Milestone:
    milestone = get_or_raise(Milestone, milestone_id)
    require_user(actor, milestone.project.client_id, role=CLIENT, action="request milestone changes",
                 entity="Milestone", entity_id=milestone.id)
    _move(milestone, actor, MilestoneStatus.IN_PROGRESS.value, {"completed_at": None, "approved_at": None},
          only_from=(MilestoneStatus.COMPLETED.value, MilestoneStatus.APPROVED.value))
    NotificationService.notify(milestone.project.freelancer_id, "milestone_changes_requested", {
        "project_id": milestone.project_id, "milestone_id": milestone.id, "note": note,
    })
    return milestone


def list_for_project(project_id: int, actor: Actor) -> dict:
    """Milestones plus per-status counts and how many are overdue."""
    project = get_or_raise(Project, project_id)
    milestones = project.milestones.all()
    counts = Counter(m.status for m in milestones)
    summary = {s.value: counts.get(s.value, 0) for s in MilestoneStatus}
    summary["total"] = len(milestones)
    summary["overdue"] = sum(1 for m in milestones if m.is_overdue)
    return {"milestones": milestones, "summary": summary}
