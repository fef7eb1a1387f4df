"""
Project Lifecycle Coordinator - Service Layer.

Business logic for:
    - Project creation (client)
    - Cross-entity hooks fired by the other services:
        on_proposal_accepted  → freelancer assigned, escrow opened
        on_escrow_verified    → open → in_progress
        on_escrow_released    → in_review → completed
    - submit_for_review (freelancer): in_progress → in_review
    - Cancellation (client while unpaid, admin while pre-release)
    - Read surface: get / list / open projects

Hooks never commit; the service that fired them owns the transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import update

from marketplace.auth import ADMIN, CLIENT, FREELANCER, Actor, require_role, require_user
from marketplace.core.exceptions import InvalidStateError, UnauthorizedError, ValidationError
from marketplace.models import db
from marketplace.models.project import (
    LIVE_ESCROW_STATUSES,
    EscrowStatus,
    Project,
    ProjectStatus,
    project_sources_for,
    validate_project_transition,
)
from marketplace.models.proposal import OPEN_PROPOSAL_STATUSES, Proposal, ProposalStatus
from marketplace.services import escrow_service
from marketplace.services.helpers.state_guard import get_or_raise, transition
from marketplace.services.notification import NotificationService
from marketplace.utils.helpers import db_commit_or_raise, parse_date, parse_money

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = project_sources_for(ProjectStatus.CANCELLED)
ESCROW_OUTCOMES = (EscrowStatus.REFUNDED.value, EscrowStatus.DISPUTED.value)


def _now():
    return datetime.now(timezone.utc)


def _log_project_transition(project_id, from_status, to_status, actor=None):
    logger.info(
        "Project %s: %s → %s", project_id, from_status, to_status,
        extra={
            "project_id": project_id, "from_status": from_status, "to_status": to_status,
            "actor_id": getattr(actor, "id", None), "actor_role": getattr(actor, "role", None),
        },
    )


def _move_project(project, actor, to_status, values=None):
    if not validate_project_transition(project.status, to_status):
        raise InvalidStateError("Project", project.id,
                                expected=project_sources_for(to_status), actual=project.status)
    from_status = project.status
    transition(
        Project, project.id,
        expected=(from_status,),
        values={"status": to_status, **(values or {})},
        entity="Project",
    )
    _log_project_transition(project.id, from_status, to_status, actor)
    return from_status


# ── Create ───────────────────────────────────────────────────────────────────


def create_project(actor: Actor, data: dict) -> Project:
    """Create an ``open`` project owned by the calling client."""
    require_role(actor, CLIENT, action="post projects")

    title = str(data.get("title", "") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    if len(title) > 200:
        raise ValidationError("title must be at most 200 characters", details={"title": "too long"})

    budget_min = parse_money(data.get("budget_min"), "budget_min", positive=False, allow_none=True)
    budget_max = parse_money(data.get("budget_max"), "budget_max", positive=False, allow_none=True)
    if budget_min is not None and budget_max is not None and budget_min > budget_max:
        raise ValidationError(
            "budget_min must not exceed budget_max",
            details={"budget_min": str(budget_min), "budget_max": str(budget_max)},
        )

    skills = data.get("required_skills") or []
    if not isinstance(skills, list) or not all(isinstance(s, str) for s in skills):
        raise ValidationError("required_skills must be a list of strings",
                              details={"required_skills": "invalid"})

    project = Project(
        client_id=actor.id,
        title=title,
        description=str(data.get("description", "") or ""),
        budget_min=budget_min,
        budget_max=budget_max,
        deadline=parse_date(data.get("deadline"), "deadline"),
        estimated_duration=(str(data["estimated_duration"]).strip()
                            if data.get("estimated_duration") else None),
        required_skills=[s.strip() for s in skills if s.strip()],
        status=ProjectStatus.OPEN.value,
    )
    db.session.add(project)
    db_commit_or_raise()
    logger.info("Project %s created by client %s", project.id, actor.id,
                extra={"project_id": project.id, "actor_id": actor.id, "to_status": project.status})
    return project


# ── Coordinator hooks (no commit) ────────────────────────────────────────────


def on_proposal_accepted(project: Project, proposal: Proposal, actor: Actor):
    """Assign the freelancer and open the escrow at the accepted budget."""
    transition(
        Project, project.id,
        expected=(ProjectStatus.OPEN.value,),
        values={"freelancer_id": proposal.freelancer_id, "accepted_proposal_id": proposal.id},
        entity="Project",
    )
    escrow_service.initialize(project, proposal.proposed_budget, performed_by=actor.id)
    logger.info(
        "Freelancer %s assigned to project %s", proposal.freelancer_id, project.id,
        extra={"project_id": project.id, "proposal_id": proposal.id, "actor_id": actor.id},
    )


def on_escrow_verified(project: Project, actor: Actor):
    """Escrow is held: work can start."""
    if project.accepted_proposal_id is None or project.freelancer_id is None:
        raise InvalidStateError(
            "Project", project.id, expected=(ProjectStatus.OPEN.value,), actual=project.status,
            message=f"Project id={project.id} has no accepted proposal",
        )
    _move_project(project, actor, ProjectStatus.IN_PROGRESS.value)


def on_escrow_released(project: Project, actor: Actor):
    """Freelancer has been paid: the engagement is complete."""
    _move_project(project, actor, ProjectStatus.COMPLETED.value)


def mark_in_review_in_session(project: Project, actor: Actor):
    """in_progress → in_review. No commit."""
    _move_project(project, actor, ProjectStatus.IN_REVIEW.value)


def cancel_in_session(project: Project, actor: Actor, reason: str | None = None):
    """
    Cancel a non-terminal project and reject its open proposals. No commit.

    Returns the freelancer ids whose proposals were rejected.
    """
    rejected_freelancers = [
        p.freelancer_id for p in project.proposals.filter(Proposal.status.in_(OPEN_PROPOSAL_STATUSES))
    ]
    now = _now()
    _move_project(project, actor, ProjectStatus.CANCELLED.value, {
        "cancelled_at": now,
        "cancellation_reason": reason,
    })
    db.session.execute(
        update(Proposal)
        .where(Proposal.project_id == project.id, Proposal.status.in_(OPEN_PROPOSAL_STATUSES))
        .values(status=ProposalStatus.REJECTED.value, decided_at=now)
        .execution_options(synchronize_session=False)
    )
    for proposal in project.proposals:
        db.session.expire(proposal)
    return rejected_freelancers


# ── Transitions ──────────────────────────────────────────────────────────────


def submit_for_review(project_id: int, actor: Actor) -> Project:
    """Assigned freelancer signals the work is ready for approval."""
    project = get_or_raise(Project, project_id)
    require_user(actor, project.freelancer_id, role=FREELANCER, action="submit the project for review",
                 entity="Project", entity_id=project.id)
    mark_in_review_in_session(project, actor)
    db_commit_or_raise()

    NotificationService.notify(project.client_id, "project_in_review", {"project_id": project.id})
    return project


def cancel(project_id: int, actor: Actor, reason: str | None = None, escrow_outcome: str | None = None) -> Project:
    """
    Cancel a project.

    - Client: only while ``open`` and before any payment is claimed
      (escrow null or pending_payment).
    - Admin: any pre-release project. When the escrow still holds (or awaits
      verification of) client money, ``escrow_outcome`` must say whether it
      is refunded or disputed.
    """
    project = get_or_raise(Project, project_id)
    escrow_status = project.escrow_status

    if actor.role == CLIENT:
        require_user(actor, project.client_id, role=CLIENT, action="cancel this project",
                     entity="Project", entity_id=project.id)
        if project.status != ProjectStatus.OPEN.value:
            raise InvalidStateError("Project", project.id,
                                    expected=(ProjectStatus.OPEN.value,), actual=project.status)
        if escrow_status not in (None, EscrowStatus.PENDING_PAYMENT.value):
            raise InvalidStateError(
                "Escrow", project.id, expected=(None, EscrowStatus.PENDING_PAYMENT.value),
                actual=escrow_status,
                message="A payment has been submitted; only an admin can cancel this project now",
            )
        if escrow_outcome is not None:
            raise ValidationError("escrow_outcome can only be set by an admin",
                                  details={"escrow_outcome": escrow_outcome})
    elif actor.role == ADMIN:
        if project.status not in CANCELLABLE_STATUSES:
            raise InvalidStateError("Project", project.id,
                                    expected=CANCELLABLE_STATUSES, actual=project.status)
        holds_money = (escrow_status in LIVE_ESCROW_STATUSES
                       and escrow_status != EscrowStatus.PENDING_PAYMENT.value)
        if holds_money and escrow_outcome not in ESCROW_OUTCOMES:
            raise ValidationError(
                "escrow_outcome must be 'refunded' or 'disputed' while the escrow is live",
                details={"escrow_outcome": escrow_outcome, "escrow_status": escrow_status},
            )
    else:
        raise UnauthorizedError(
            "Only the project's client or an admin can cancel a project",
            actor_id=actor.id, actor_role=actor.role, required="client/admin",
            entity="Project", entity_id=project.id,
        )

    note = reason or "Project cancelled"
    if escrow_status == EscrowStatus.PENDING_PAYMENT.value:
        escrow_service.refund_in_session(project, actor, note)
    elif escrow_outcome == EscrowStatus.REFUNDED.value and escrow_status in LIVE_ESCROW_STATUSES:
        escrow_service.refund_in_session(project, actor, note)
    elif escrow_outcome == EscrowStatus.DISPUTED.value and escrow_status not in (
        None, EscrowStatus.DISPUTED.value, EscrowStatus.REFUNDED.value,
    ):
        escrow_service.open_dispute_in_session(project, actor, note)

    rejected = cancel_in_session(project, actor, reason)
    db_commit_or_raise()

    payload = {"project_id": project.id, "reason": reason}
    NotificationService.notify_many(
        [project.client_id if actor.id != project.client_id else None, project.freelancer_id],
        "project_cancelled", payload,
    )
    NotificationService.notify_many(rejected, "proposal_rejected", payload)
    return project


# ── Reads ────────────────────────────────────────────────────────────────────


def get_project(project_id: int, actor: Actor) -> Project:
    return get_or_raise(Project, project_id)


def list_projects(actor: Actor, *, status=None, client_id=None, freelancer_id=None,
                  limit=50, offset=0):
    """Filtered project listing, newest first. Returns (items, total)."""
    q = Project.query
    if status:
        if status not in {s.value for s in ProjectStatus}:
            raise ValidationError(f"Unknown project status '{status}'", details={"status": status})
        q = q.filter(Project.status == status)
    if client_id is not None:
        q = q.filter(Project.client_id == client_id)
    if freelancer_id is not None:
        q = q.filter(Project.freelancer_id == freelancer_id)
    total = q.count()
    items = q.order_by(Project.created_at.desc(), Project.id.desc()).offset(offset).limit(limit).all()
    return items, total


def list_open_projects(limit=50, offset=0):
    """Projects still accepting proposals, newest first."""
    q = Project.query.filter(Project.status == ProjectStatus.OPEN.value,
                             Project.accepted_proposal_id.is_(None))
    return q.order_by(Project.created_at.desc(), Project.id.desc()).offset(offset).limit(limit).all()
