"""
Proposal Negotiation Engine - Service Layer.

Business logic for:
    - Submission:     freelancer bids on an open project
    - Counter-offers: either party, at most MAX_NEGOTIATION_ROUNDS in total
                      (alternation is not required)
    - Acceptance:     client picks one proposal; siblings are rejected and the
                      coordinator opens the escrow, all in one transaction
    - Decline / withdraw
    - Reads:          single proposal, per project, per freelancer, history

Acceptance race safety:
    1. conditional claim on the Project row
       (accepted_proposal_id IS NULL AND status = 'open')
    2. conditional update of the proposal to 'accepted'
    3. partial unique index on proposals(project_id) WHERE status='accepted'
    Whichever fails, the session is rolled back and the loser sees
    AlreadyAcceptedError (or the precise state error).

Submission touches the same Project row under the same predicate, so a bid
either commits before an acceptance (and is rejected with its siblings) or
fails with AlreadyAcceptedError. Duplicate bids by one freelancer hit the
partial unique index on proposals(project_id, freelancer_id) and surface as
InvalidStateError.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from marketplace.auth import CLIENT, FREELANCER, Actor, require_role, require_user
from marketplace.core.exceptions import (
    AlreadyAcceptedError,
    InvalidStateError,
    NegotiationLimitExceededError,
    StaleStateError,
    UnauthorizedError,
    ValidationError,
)
from marketplace.models import db
from marketplace.models.project import Project, ProjectStatus
from marketplace.models.proposal import (
    MAX_NEGOTIATION_ROUNDS,
    OPEN_PROPOSAL_STATUSES,
    Proposal,
    ProposalOffer,
    ProposalStatus,
    proposal_sources_for,
    status_after_counter,
    validate_proposal_transition,
)
from marketplace.services import invitation_service, project_service
from marketplace.services.helpers.state_guard import get_or_raise, transition
from marketplace.services.notification import NotificationService
from marketplace.utils.helpers import db_commit_or_raise, parse_money

logger = logging.getLogger(__name__)


def _now():
    return datetime.now(timezone.utc)


def _require_project_open(project: Project):
    if project.status != ProjectStatus.OPEN.value:
        raise InvalidStateError("Project", project.id,
                                expected=(ProjectStatus.OPEN.value,), actual=project.status)


def _require_proposal_open(proposal: Proposal):
    if proposal.is_terminal:
        raise InvalidStateError("Proposal", proposal.id,
                                expected=OPEN_PROPOSAL_STATUSES, actual=proposal.status)


def _move_proposal(proposal: Proposal, to_status: str, values=None, extra_criteria=()):
    """Table-checked conditional update of one proposal. No commit; returns the old status."""
    if not validate_proposal_transition(proposal.status, to_status):
        raise InvalidStateError("Proposal", proposal.id,
                                expected=proposal_sources_for(to_status), actual=proposal.status)
    from_status = proposal.status
    transition(
        Proposal, proposal.id,
        expected=(from_status,),
        values={"status": to_status, **(values or {})},
        entity="Proposal",
        extra_criteria=extra_criteria,
    )
    return from_status


def _project_claim_error(project_id):
    """Explain why a project could no longer be claimed: accepted elsewhere or moved on."""
    current = db.session.get(Project, project_id)
    db.session.refresh(current)
    if current.accepted_proposal_id is not None:
        return AlreadyAcceptedError(project_id, accepted_proposal_id=current.accepted_proposal_id)
    return StaleStateError("Project", project_id, expected=(ProjectStatus.OPEN.value,), actual=current.status)


def _duplicate_proposal_error(project_id, freelancer_id, existing=None):
    return InvalidStateError(
        "Proposal", existing.id if existing is not None else None,
        expected=(), actual=existing.status if existing is not None else None,
        message=f"Freelancer {freelancer_id} already has an active proposal on project id={project_id}",
    )


def _ensure_no_active_proposal(project_id, freelancer_id):
    existing = (
        Proposal.query
        .filter(Proposal.project_id == project_id,
                Proposal.freelancer_id == freelancer_id,
                Proposal.status.in_(OPEN_PROPOSAL_STATUSES))
        .first()
    )
    if existing is not None:
        raise _duplicate_proposal_error(project_id, freelancer_id, existing)


def _log_proposal_transition(proposal, from_status, to_status, actor):
    logger.info(
        "Proposal %s: %s → %s", proposal.id, from_status, to_status,
        extra={
            "proposal_id": proposal.id, "project_id": proposal.project_id,
            "from_status": from_status, "to_status": to_status,
            "actor_id": actor.id, "actor_role": actor.role,
        },
    )


def _clean_duration(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


# ── Submit ───────────────────────────────────────────────────────────────────


def submit(project_id: int, actor: Actor, budget, duration=None, pitch: str = "") -> Proposal:
    """Freelancer bids on an open project. Creates a ``pending`` proposal."""
    require_role(actor, FREELANCER, action="submit proposals")
    project = get_or_raise(Project, project_id)

    amount = parse_money(budget, "proposed_budget")
    pitch = str(pitch or "").strip()
    if not pitch:
        raise ValidationError("cover_letter is required", details={"cover_letter": "required"})

    _require_project_open(project)
    if project.accepted_proposal_id is not None:
        raise AlreadyAcceptedError(project.id, accepted_proposal_id=project.accepted_proposal_id)
    _ensure_no_active_proposal(project.id, actor.id)

    proposal = Proposal(
        project_id=project.id,
        freelancer_id=actor.id,
        cover_letter=pitch,
        proposed_budget=amount,
        original_budget=amount,
        estimated_duration=_clean_duration(duration),
        status=ProposalStatus.PENDING.value,
        negotiation_count=0,
    )
    project_id = project.id
    try:
        db.session.add(proposal)
        # Same predicate as the accept claim: no bid commits after its siblings were rejected
        claimed = db.session.execute(
            update(Project)
            .where(Project.id == project_id,
                   Project.status == ProjectStatus.OPEN.value,
                   Project.accepted_proposal_id.is_(None))
            .values(updated_at=_now())
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            db.session.rollback()
            raise _project_claim_error(project_id)
        invitation_service.accept_pending_in_session(project_id, actor.id)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Concurrent duplicate proposal by freelancer %s on project %s", actor.id, project_id,
                       extra={"project_id": project_id, "actor_id": actor.id})
        raise _duplicate_proposal_error(project_id, actor.id) from exc
    except Exception:
        db.session.rollback()
        raise
    logger.info("Proposal %s submitted on project %s", proposal.id, project.id,
                extra={"proposal_id": proposal.id, "project_id": project.id,
                       "actor_id": actor.id, "to_status": proposal.status})

    NotificationService.notify(project.client_id, "proposal_submitted", {
        "project_id": project.id, "proposal_id": proposal.id,
        "freelancer_id": actor.id, "amount": float(amount),
    })
    return proposal


# ── Counter-offer ────────────────────────────────────────────────────────────


def counter_offer(proposal_id: int, actor: Actor, new_budget, note: str | None = None,
                  new_duration=None) -> Proposal:
    """
    Record one negotiation round by either party.

    Raises:
        InvalidStateError: proposal terminal or project no longer open.
        NegotiationLimitExceededError: both rounds already used.
        ValidationError: budget <= 0, or neither budget nor duration changes.
    """
    proposal = get_or_raise(Proposal, proposal_id)
    project = proposal.project

    if actor.role == CLIENT:
        require_user(actor, project.client_id, role=CLIENT, action="counter this proposal",
                     entity="Proposal", entity_id=proposal.id)
    elif actor.role == FREELANCER:
        require_user(actor, proposal.freelancer_id, role=FREELANCER, action="counter this proposal",
                     entity="Proposal", entity_id=proposal.id)
    else:
        raise UnauthorizedError(
            "Only the project's client or the proposing freelancer can make counter-offers",
            actor_id=actor.id, actor_role=actor.role, required="client/freelancer",
            entity="Proposal", entity_id=proposal.id,
        )

    _require_proposal_open(proposal)
    count = proposal.negotiation_count or 0
    if count >= MAX_NEGOTIATION_ROUNDS:
        raise NegotiationLimitExceededError(proposal.id, limit=MAX_NEGOTIATION_ROUNDS, count=count)
    _require_project_open(project)

    if new_budget is None:
        amount = proposal.proposed_budget
    else:
        amount = parse_money(new_budget, "new_budget")
    duration = _clean_duration(new_duration)
    budget_changed = amount != proposal.proposed_budget
    duration_changed = duration is not None and duration != proposal.estimated_duration
    if not budget_changed and not duration_changed:
        raise ValidationError(
            "A counter-offer must change the budget or the estimated duration",
            details={"new_budget": str(amount), "new_duration": duration},
        )

    new_count = count + 1
    to_status = status_after_counter(new_count).value
    values = {
        "negotiation_count": new_count,
        "proposed_budget": amount,
    }
    if duration_changed:
        values["estimated_duration"] = duration

    from_status = _move_proposal(proposal, to_status, values,
                                 extra_criteria=(Proposal.negotiation_count == count,))
    db.session.add(ProposalOffer(
        proposal_id=proposal.id,
        round_number=new_count,
        actor_id=actor.id,
        actor_role=actor.role,
        amount=amount,
        estimated_duration=duration if duration_changed else proposal.estimated_duration,
        note=(note or None),
    ))
    try:
        db_commit_or_raise()
    except IntegrityError as exc:
        raise StaleStateError("Proposal", proposal.id,
                              expected=(from_status,), actual=proposal.status) from exc
    _log_proposal_transition(proposal, from_status, to_status, actor)

    recipient = proposal.freelancer_id if actor.role == CLIENT else project.client_id
    NotificationService.notify(recipient, "counter_offer", {
        "project_id": project.id, "proposal_id": proposal.id, "round": new_count,
        "amount": float(amount), "rounds_remaining": MAX_NEGOTIATION_ROUNDS - new_count,
    })
    return proposal


# ── Accept ───────────────────────────────────────────────────────────────────


def accept(proposal_id: int, actor: Actor) -> Proposal:
    """
    Client accepts one proposal.

    One transaction: claim the project, accept the proposal, reject every
    other open proposal, assign the freelancer and open the escrow.
    """
    proposal = get_or_raise(Proposal, proposal_id)
    project = proposal.project
    require_user(actor, project.client_id, role=CLIENT, action="accept proposals",
                 entity="Proposal", entity_id=proposal.id)

    if project.accepted_proposal_id is not None:
        raise AlreadyAcceptedError(project.id, accepted_proposal_id=project.accepted_proposal_id)
    _require_project_open(project)
    _require_proposal_open(proposal)

    now = _now()
    project_id = project.id
    try:
        claimed = db.session.execute(
            update(Project)
            .where(Project.id == project_id,
                   Project.status == ProjectStatus.OPEN.value,
                   Project.accepted_proposal_id.is_(None))
            .values(accepted_proposal_id=proposal.id)
            .execution_options(synchronize_session=False)
        ).rowcount
        if claimed != 1:
            db.session.rollback()
            raise _project_claim_error(project_id)

        from_status = _move_proposal(proposal, ProposalStatus.ACCEPTED.value, {"decided_at": now})
        rejected_ids = [
            p.freelancer_id for p in Proposal.query.filter(
                Proposal.project_id == project_id,
                Proposal.id != proposal.id,
                Proposal.status.in_(OPEN_PROPOSAL_STATUSES),
            )
        ]
        db.session.execute(
            update(Proposal)
            .where(Proposal.project_id == project_id,
                   Proposal.id != proposal.id,
                   Proposal.status.in_(OPEN_PROPOSAL_STATUSES))
            .values(status=ProposalStatus.REJECTED.value, decided_at=now)
            .execution_options(synchronize_session=False)
        )
        db.session.expire(project)
        project_service.on_proposal_accepted(project, proposal, actor)
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Concurrent acceptance on project %s lost the race", project_id,
                       extra={"project_id": project_id, "proposal_id": proposal_id})
        raise AlreadyAcceptedError(project_id) from exc
    except Exception:
        db.session.rollback()
        raise

    _log_proposal_transition(proposal, from_status, ProposalStatus.ACCEPTED.value, actor)

    payload = {"project_id": project_id, "proposal_id": proposal.id,
               "amount": float(proposal.proposed_budget)}
    NotificationService.notify(proposal.freelancer_id, "proposal_accepted", payload)
    NotificationService.notify_many(rejected_ids, "proposal_rejected", {"project_id": project_id})
    return proposal


# ── Decline / withdraw ───────────────────────────────────────────────────────


def decline(proposal_id: int, actor: Actor, reason: str | None = None) -> Proposal:
    """Client rejects one proposal."""
    proposal = get_or_raise(Proposal, proposal_id)
    require_user(actor, proposal.project.client_id, role=CLIENT, action="decline proposals",
                 entity="Proposal", entity_id=proposal.id)
    _require_proposal_open(proposal)

    from_status = _move_proposal(proposal, ProposalStatus.REJECTED.value, {"decided_at": _now()})
    db_commit_or_raise()
    _log_proposal_transition(proposal, from_status, ProposalStatus.REJECTED.value, actor)

    NotificationService.notify(proposal.freelancer_id, "proposal_rejected", {
        "project_id": proposal.project_id, "proposal_id": proposal.id, "reason": reason,
    })
    return proposal


def withdraw(proposal_id: int, actor: Actor) -> Proposal:
    """Freelancer pulls their own proposal."""
    proposal = get_or_raise(Proposal, proposal_id)
    require_user(actor, proposal.freelancer_id, role=FREELANCER, action="withdraw this proposal",
                 entity="Proposal", entity_id=proposal.id)
    _require_proposal_open(proposal)

    from_status = _move_proposal(proposal, ProposalStatus.WITHDRAWN.value, {"decided_at": _now()})
    db_commit_or_raise()
    _log_proposal_transition(proposal, from_status, ProposalStatus.WITHDRAWN.value, actor)

    NotificationService.notify(proposal.project.client_id, "proposal_withdrawn", {
        "project_id": proposal.project_id, "proposal_id": proposal.id,
    })
    return proposal


# ── Reads ────────────────────────────────────────────────────────────────────


def get_proposal(proposal_id: int, actor: Actor) -> Proposal:
    return get_or_raise(Proposal, proposal_id)


def list_for_project(project_id: int, actor: Actor, status: str | None = None):
    project = get_or_raise(Project, project_id)
    q = project.proposals
    if status:
        if status not in {s.value for s in ProposalStatus}:
            raise ValidationError(f"Unknown proposal status '{status}'", details={"status": status})
        q = q.filter(Proposal.status == status)
    return q.all()


def list_for_freelancer(actor: Actor, status: str | None = None):
    require_role(actor, FREELANCER, action="list their proposals")
    q = Proposal.query.filter(Proposal.freelancer_id == actor.id)
    if status:
        q = q.filter(Proposal.status == status)
    return q.order_by(Proposal.created_at.desc(), Proposal.id.desc()).all()


def negotiation_history(proposal_id: int, actor: Actor):
    proposal = get_or_raise(Proposal, proposal_id)
    return proposal.offers.all()
