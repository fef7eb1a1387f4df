"""
Invitations & Quote Requests - Service Layer.

Client-initiated entry points into the proposal funnel:
    - invite             (client)      pending invitation to bid on an open project
    - accept / decline   (freelancer)  pending → accepted | declined
    - request_quote      (client)      direct pricing request to one freelancer
    - respond_to_quote   (freelancer)  pending → quoted
    - decline_quote      (freelancer)  pending → declined
    - withdraw_quote     (client)      pending → withdrawn

Invitations never bypass the open marketplace: any freelancer may still bid,
and an invited freelancer who submits a proposal accepts the invitation in
the same transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from marketplace.auth import ADMIN, CLIENT, FREELANCER, Actor, require_party, require_role, require_user
from marketplace.core.exceptions import AlreadyAcceptedError, InvalidStateError, ValidationError
from marketplace.models import db
from marketplace.models.invitation import (
    InvitationStatus,
    ProjectInvitation,
    QuoteRequest,
    QuoteStatus,
    invitation_sources_for,
    quote_sources_for,
    validate_invitation_transition,
    validate_quote_transition,
)
from marketplace.models.project import Project, ProjectStatus
from marketplace.services.helpers.state_guard import get_or_raise, transition
from marketplace.services.notification import NotificationService
from marketplace.utils.helpers import db_commit_or_raise, parse_date, parse_money

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def _freelancer_id(value, actor: Actor) -> int:
    try:
        freelancer_id = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError("freelancer_id must be a user id", details={"freelancer_id": value}) from exc
    if freelancer_id <= 0 or freelancer_id == actor.id:
        raise ValidationError("freelancer_id must be another user's id", details={"freelancer_id": value})
    return freelancer_id


def _require_project_open(project: Project):
    if project.status != ProjectStatus.OPEN.value:
        raise InvalidStateError("Project", project.id,
                                expected=(ProjectStatus.OPEN.value,), actual=project.status)
    if project.accepted_proposal_id is not None:
        raise AlreadyAcceptedError(project.id, accepted_proposal_id=project.accepted_proposal_id)


def _move_invitation(invitation: ProjectInvitation, actor: Actor, to_status: InvitationStatus):
    if not validate_invitation_transition(invitation.status, to_status):
        raise InvalidStateError("Invitation", invitation.id,
                                expected=invitation_sources_for(to_status), actual=invitation.status)
    from_status = invitation.status
    transition(
        ProjectInvitation, invitation.id,
        expected=(from_status,),
        values={"status": to_status.value, "responded_at": _now()},
        entity="Invitation",
    )
    db_commit_or_raise()
    logger.info(
        "Invitation %s: %s → %s", invitation.id, from_status, to_status.value,
        extra={"project_id": invitation.project_id, "from_status": from_status,
               "to_status": to_status.value, "actor_id": actor.id, "actor_role": actor.role},
    )


def _move_quote(quote: QuoteRequest, actor: Actor, to_status: QuoteStatus, values=None):
    if not validate_quote_transition(quote.status, to_status):
        raise InvalidStateError("QuoteRequest", quote.id,
                                expected=quote_sources_for(to_status), actual=quote.status)
    from_status = quote.status
    transition(
        QuoteRequest, quote.id,
        expected=(from_status,),
        values={"status": to_status.value, **(values or {})},
        entity="QuoteRequest",
    )
    db_commit_or_raise()
    logger.info(
        "Quote request %s: %s → %s", quote.id, from_status, to_status.value,
        extra={"from_status": from_status, "to_status": to_status.value,
               "actor_id": actor.id, "actor_role": actor.role},
    )


# ═════════════════════════════════════════════════════════════════════════════
# Project invitations
# ═════════════════════════════════════════════════════════════════════════════


def invite(project_id: int, actor: Actor, freelancer_id, message: str | None = None) -> ProjectInvitation:
    """Project client invites one freelancer to bid."""
    project = get_or_raise(Project, project_id)
    require_user(actor, project.client_id, role=CLIENT, action="invite freelancers",
                 entity="Project", entity_id=project.id)
    freelancer_id = _freelancer_id(freelancer_id, actor)
    _require_project_open(project)

    invitation = ProjectInvitation(
        project_id=project.id,
        client_id=actor.id,
        freelancer_id=freelancer_id,
        message=(str(message).strip() or None) if message else None,
        status=InvitationStatus.PENDING.value,
    )
    db.session.add(invitation)
    try:
        db_commit_or_raise()
    except IntegrityError as exc:
        raise InvalidStateError(
            "Invitation", None, expected=(), actual=None,
            message=f"Freelancer {freelancer_id} was already invited to project id={project.id}",
        ) from exc
    logger.info("Freelancer %s invited to project %s", freelancer_id, project.id,
                extra={"project_id": project.id, "actor_id": actor.id, "to_status": invitation.status})

    NotificationService.notify(freelancer_id, "project_invitation", {
        "project_id": project.id, "invitation_id": invitation.id, "client_id": actor.id,
    })
    return invitation


def accept_invitation(invitation_id: int, actor: Actor) -> ProjectInvitation:
    """Invited freelancer signals interest. The project must still be open."""
    invitation = get_or_raise(ProjectInvitation, invitation_id, "Invitation")
    require_user(actor, invitation.freelancer_id, role=FREELANCER, action="answer this invitation",
                 entity="Invitation", entity_id=invitation.id)
    _require_project_open(invitation.project)
    _move_invitation(invitation, actor, InvitationStatus.ACCEPTED)

    NotificationService.notify(invitation.client_id, "invitation_accepted", {
        "project_id": invitation.project_id, "invitation_id": invitation.id, "freelancer_id": actor.id,
    })
    return invitation


def decline_invitation(invitation_id: int, actor: Actor) -> ProjectInvitation:
    invitation = get_or_raise(ProjectInvitation, invitation_id, "Invitation")
    require_user(actor, invitation.freelancer_id, role=FREELANCER, action="answer this invitation",
                 entity="Invitation", entity_id=invitation.id)
    _move_invitation(invitation, actor, InvitationStatus.DECLINED)

    NotificationService.notify(invitation.client_id, "invitation_declined", {
        "project_id": invitation.project_id, "invitation_id": invitation.id, "freelancer_id": actor.id,
    })
    return invitation


def accept_pending_in_session(project_id: int, freelancer_id: int) -> int:
    """Mark a pending invitation accepted because the freelancer bid. No commit."""
    return db.session.execute(
        update(ProjectInvitation)
        .where(ProjectInvitation.project_id == project_id,
               ProjectInvitation.freelancer_id == freelancer_id,
               ProjectInvitation.status == InvitationStatus.PENDING.value)
        .values(status=InvitationStatus.ACCEPTED.value, responded_at=_now())
        .execution_options(synchronize_session=False)
    ).rowcount


def list_for_project(project_id: int, actor: Actor):
    project = get_or_raise(Project, project_id)
    require_party(actor, [project.client_id], action="view invitations",
                  entity="Project", entity_id=project.id)
    return project.invitations.order_by(ProjectInvitation.id).all()


def list_for_freelancer(actor: Actor, status: str | None = None):
    require_role(actor, FREELANCER, action="list their invitations")
    q = ProjectInvitation.query.filter(ProjectInvitation.freelancer_id == actor.id)
    if status:
        if status not in {s.value for s in InvitationStatus}:
            raise ValidationError(f"Unknown invitation status '{status}'", details={"status": status})
        q = q.filter(ProjectInvitation.status == status)
    return q.order_by(ProjectInvitation.created_at.desc(), ProjectInvitation.id.desc()).all()


# ═════════════════════════════════════════════════════════════════════════════
# Quote requests
# ═════════════════════════════════════════════════════════════════════════════


def request_quote(actor: Actor, freelancer_id, data: dict) -> QuoteRequest:
    """Client asks one freelancer to price a piece of work."""
    require_role(actor, CLIENT, action="request quotes")
    freelancer_id = _freelancer_id(freelancer_id, actor)

    title = str(data.get("title", "") or "").strip()
    description = str(data.get("description", "") or "").strip()
    if not title or not description:
        raise ValidationError(
            "title and description are required",
            details={k: "required" for k, v in (("title", title), ("description", description)) if not v},
        )
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

    quote = QuoteRequest(
        client_id=actor.id,
        freelancer_id=freelancer_id,
        title=title[:200],
        description=description,
        budget_min=budget_min,
        budget_max=budget_max,
        deadline=parse_date(data.get("deadline"), "deadline"),
        required_skills=[s.strip() for s in skills if s.strip()],
        status=QuoteStatus.PENDING.value,
    )
    db.session.add(quote)
    db_commit_or_raise()
    logger.info("Quote request %s sent to freelancer %s", quote.id, freelancer_id,
                extra={"actor_id": actor.id, "to_status": quote.status})

    NotificationService.notify(freelancer_id, "quote_requested", {"quote_request_id": quote.id,
                                                                  "client_id": actor.id})
    return quote


def respond_to_quote(quote_id: int, actor: Actor, amount, duration=None, note: str | None = None) -> QuoteRequest:
    quote = get_or_raise(QuoteRequest, quote_id, "QuoteRequest")
    require_user(actor, quote.freelancer_id, role=FREELANCER, action="answer this quote request",
                 entity="QuoteRequest", entity_id=quote.id)
    quoted = parse_money(amount, "quoted_amount")
    _move_quote(quote, actor, QuoteStatus.QUOTED, {
        "quoted_amount": quoted,
        "quoted_duration": (str(duration).strip() or None) if duration else None,
        "response_note": note or None,
        "responded_at": _now(),
    })

    NotificationService.notify(quote.client_id, "quote_received", {
        "quote_request_id": quote.id, "freelancer_id": actor.id, "amount": float(quoted),
    })
    return quote


def decline_quote(quote_id: int, actor: Actor, reason: str | None = None) -> QuoteRequest:
    quote = get_or_raise(QuoteRequest, quote_id, "QuoteRequest")
    require_user(actor, quote.freelancer_id, role=FREELANCER, action="answer this quote request",
                 entity="QuoteRequest", entity_id=quote.id)
    _move_quote(quote, actor, QuoteStatus.DECLINED, {"response_note": reason or None, "responded_at": _now()})

    NotificationService.notify(quote.client_id, "quote_declined", {
        "quote_request_id": quote.id, "freelancer_id": actor.id, "reason": reason,
    })
    return quote


def withdraw_quote(quote_id: int, actor: Actor) -> QuoteRequest:
    quote = get_or_raise(QuoteRequest, quote_id, "QuoteRequest")
    require_user(actor, quote.client_id, role=CLIENT, action="withdraw this quote request",
                 entity="QuoteRequest", entity_id=quote.id)
    _move_quote(quote, actor, QuoteStatus.WITHDRAWN)

    NotificationService.notify(quote.freelancer_id, "quote_withdrawn", {"quote_request_id": quote.id})
    return quote


def get_quote(quote_id: int, actor: Actor) -> QuoteRequest:
    quote = get_or_raise(QuoteRequest, quote_id, "QuoteRequest")
    require_party(actor, [quote.client_id, quote.freelancer_id], action="view this quote request",
                  entity="QuoteRequest", entity_id=quote.id)
    return quote


def list_quotes(actor: Actor, status: str | None = None):
    """Clients see the requests they sent, freelancers the ones they received, admins all."""
    q = QuoteRequest.query
    if actor.role == CLIENT:
        q = q.filter(QuoteRequest.client_id == actor.id)
    elif actor.role == FREELANCER:
        q = q.filter(QuoteRequest.freelancer_id == actor.id)
    else:
        require_role(actor, ADMIN, action="list quote requests")
    if status:
        if status not in {s.value for s in QuoteStatus}:
            raise ValidationError(f"Unknown quote status '{status}'", details={"status": status})
        q = q.filter(QuoteRequest.status == status)
    return q.order_by(QuoteRequest.created_at.desc(), QuoteRequest.id.desc()).all()
