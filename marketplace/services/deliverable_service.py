"""
Deliverable Review Workflow - Service Layer.

Business logic for:
    - Submission by the assigned freelancer (project in_progress | in_review)
    - Optional start_review by the client
    - Client decisions: approve / request_revision / reject
    - Resubmission after a revision request
    - Deletion by the submitter (never once approved)

A final deliverable submitted while the project is in_progress moves the
project to in_review. Approval never touches the escrow.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from marketplace.auth import CLIENT, FREELANCER, Actor, require_user
from marketplace.core.exceptions import InvalidStateError, ValidationError
from marketplace.models import db
from marketplace.models.deliverable import (
    Deliverable,
    DeliverableRevision,
    DeliverableStatus,
    deliverable_sources_for,
    validate_deliverable_transition,
)
from marketplace.models.project import Project, ProjectStatus
from marketplace.services import project_service
from marketplace.services.file_storage import get_file_storage
from marketplace.services.helpers.state_guard import get_or_raise, transition
from marketplace.services.notification import NotificationService
from marketplace.utils.helpers import db_commit_or_raise

logger = logging.getLogger(__name__)

SUBMITTABLE_PROJECT_STATUSES = (ProjectStatus.IN_PROGRESS.value, ProjectStatus.IN_REVIEW.value)


def _now():
    return datetime.now(timezone.utc)


def _require_project_accepts_work(project: Project):
    if project.status not in SUBMITTABLE_PROJECT_STATUSES:
        raise InvalidStateError("Project", project.id,
                                expected=SUBMITTABLE_PROJECT_STATUSES, actual=project.status)


def _require_transition(deliverable: Deliverable, to_status):
    if not validate_deliverable_transition(deliverable.status, to_status):
        raise InvalidStateError("Deliverable", deliverable.id,
                                expected=deliverable_sources_for(to_status), actual=deliverable.status)


def _move(deliverable: Deliverable, actor: Actor, to_status, values=None):
    _require_transition(deliverable, to_status)
    from_status = deliverable.status
    transition(
        Deliverable, deliverable.id,
        expected=(from_status,),
        values={"status": to_status, **(values or {})},
        entity="Deliverable",
    )
    logger.info(
        "Deliverable %s: %s → %s", deliverable.id, from_status, to_status,
        extra={
            "deliverable_id": deliverable.id, "project_id": deliverable.project_id,
            "from_status": from_status, "to_status": to_status,
            "actor_id": actor.id, "actor_role": actor.role,
        },
    )
    return from_status


def _maybe_enter_review(project: Project, actor: Actor, is_final: bool) -> bool:
    if is_final and project.status == ProjectStatus.IN_PROGRESS.value:
        project_service.mark_in_review_in_session(project, actor)
        return True
    return False


def _require_reviewer(deliverable: Deliverable, actor: Actor, action: str):
    """Project client only, and only while the project still takes work."""
    require_user(actor, deliverable.project.client_id, role=CLIENT, action=action,
                 entity="Deliverable", entity_id=deliverable.id)
    _require_project_accepts_work(deliverable.project)


def _store_upload(upload, project_id):
    if upload is None:
        return None
    content, filename = upload
    return get_file_storage().store(content, filename, subdir=f"deliverables/{project_id}")


def _discard_upload(reference):
    if reference:
        get_file_storage().delete(reference)


# ── Submit ───────────────────────────────────────────────────────────────────


def submit(project_id: int, actor: Actor, title: str, description: str = "",
           file_reference: str | None = None, is_final: bool = False, upload=None) -> Deliverable:
    """
    Assigned freelancer hands in a piece of work.

    ``upload`` is an optional (bytes, filename) pair stored through the file
    storage once every check has passed; its reference replaces ``file_reference``.
    """
    project = get_or_raise(Project, project_id)
    require_user(actor, project.freelancer_id, role=FREELANCER, action="submit deliverables",
                 entity="Project", entity_id=project.id)
    title = str(title or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    _require_project_accepts_work(project)
    stored = _store_upload(upload, project.id)

    deliverable = Deliverable(
        project_id=project.id,
        title=title,
        description=str(description or ""),
        file_reference=stored or file_reference or None,
        is_final=bool(is_final),
        status=DeliverableStatus.SUBMITTED.value,
        revision_number=1,
        submitted_by=actor.id,
        submitted_at=_now(),
    )
    try:
        db.session.add(deliverable)
        entered_review = _maybe_enter_review(project, actor, deliverable.is_final)
        db_commit_or_raise()
    except Exception:
        db.session.rollback()
        _discard_upload(stored)
        raise
    logger.info("Deliverable %s submitted on project %s", deliverable.id, project.id,
                extra={"deliverable_id": deliverable.id, "project_id": project.id,
                       "actor_id": actor.id, "to_status": deliverable.status})

    NotificationService.notify(project.client_id, "deliverable_submitted", {
        "project_id": project.id, "deliverable_id": deliverable.id, "is_final": deliverable.is_final,
    })
    if entered_review:
        NotificationService.notify(project.client_id, "project_in_review", {"project_id": project.id})
    return deliverable


# ── Client review ────────────────────────────────────────────────────────────


def start_review(deliverable_id: int, actor: Actor) -> Deliverable:
    """submitted → under_review."""
    deliverable = get_or_raise(Deliverable, deliverable_id)
    _require_reviewer(deliverable, actor, "review deliverables")
    _move(deliverable, actor, DeliverableStatus.UNDER_REVIEW.value)
    db_commit_or_raise()
    return deliverable


def approve(deliverable_id: int, actor: Actor, note: str | None = None) -> Deliverable:
    """Accept the work. Escrow is not released here."""
    deliverable = get_or_raise(Deliverable, deliverable_id)
    _require_reviewer(deliverable, actor, "approve deliverables")
    _move(deliverable, actor, DeliverableStatus.APPROVED.value, {
        "reviewed_by": actor.id, "reviewed_at": _now(), "review_note": note,
    })
    db_commit_or_raise()

    NotificationService.notify(deliverable.submitted_by, "deliverable_approved", {
        "project_id": deliverable.project_id, "deliverable_id": deliverable.id,
    })
    return deliverable


def request_revision(deliverable_id: int, actor: Actor, notes: str) -> Deliverable:
    """Ask for changes: → needs_revision, revision_number + 1, revision request appended."""
    deliverable = get_or_raise(Deliverable, deliverable_id)
    _require_reviewer(deliverable, actor, "request revisions")
    notes = str(notes or "").strip()
    if not notes:
        raise ValidationError("revision notes are required", details={"notes": "required"})

    _move(deliverable, actor, DeliverableStatus.NEEDS_REVISION.value, {
        "revision_number": Deliverable.revision_number + 1,
        "reviewed_by": actor.id, "reviewed_at": _now(), "review_note": notes,
    })
    db.session.add(DeliverableRevision(
        deliverable_id=deliverable.id,
        requested_by=actor.id,
        revision_notes=notes,
        status="pending",
    ))
    db_commit_or_raise()

    NotificationService.notify(deliverable.submitted_by, "deliverable_revision_requested", {
        "project_id": deliverable.project_id, "deliverable_id": deliverable.id,
        "revision_number": deliverable.revision_number, "notes": notes,
    })
    return deliverable


def reject(deliverable_id: int, actor: Actor, reason: str | None = None) -> Deliverable:
    deliverable = get_or_raise(Deliverable, deliverable_id)
    _require_reviewer(deliverable, actor, "reject deliverables")
    _move(deliverable, actor, DeliverableStatus.REJECTED.value, {
        "reviewed_by": actor.id, "reviewed_at": _now(), "review_note": reason,
    })
    db_commit_or_raise()

    NotificationService.notify(deliverable.submitted_by, "deliverable_rejected", {
        "project_id": deliverable.project_id, "deliverable_id": deliverable.id, "reason": reason,
    })
    return deliverable


# ── Freelancer follow-up ─────────────────────────────────────────────────────


def resubmit(deliverable_id: int, actor: Actor, file_reference: str | None = None,
             note: str | None = None, is_final: bool | None = None, upload=None) -> Deliverable:
    """needs_revision → submitted; pending revision requests are closed."""
    deliverable = get_or_raise(Deliverable, deliverable_id)
    require_user(actor, deliverable.submitted_by, role=FREELANCER, action="resubmit this deliverable",
                 entity="Deliverable", entity_id=deliverable.id)
    project = deliverable.project
    _require_transition(deliverable, DeliverableStatus.SUBMITTED.value)
    _require_project_accepts_work(project)
    stored = _store_upload(upload, project.id)

    values = {"submitted_at": _now()}
    if stored or file_reference:
        values["file_reference"] = stored or file_reference
    if note:
        values["description"] = note
    if is_final is not None:
        values["is_final"] = bool(is_final)
    try:
        _move(deliverable, actor, DeliverableStatus.SUBMITTED.value, values)
        now = _now()
        for revision in deliverable.revisions.filter_by(status="pending"):
            revision.status = "completed"
            revision.completed_at = now
        entered_review = _maybe_enter_review(project, actor, deliverable.is_final)
        db_commit_or_raise()
    except Exception:
        db.session.rollback()
        _discard_upload(stored)
        raise

    NotificationService.notify(project.client_id, "deliverable_submitted", {
        "project_id": project.id, "deliverable_id": deliverable.id,
        "revision_number": deliverable.revision_number,
    })
    if entered_review:
        NotificationService.notify(project.client_id, "project_in_review", {"project_id": project.id})
    return deliverable


def delete(deliverable_id: int, actor: Actor) -> None:
    """Submitter removes a deliverable that has not been approved."""
    deliverable = get_or_raise(Deliverable, deliverable_id)
    require_user(actor, deliverable.submitted_by, role=FREELANCER, action="delete this deliverable",
                 entity="Deliverable", entity_id=deliverable.id)
    if deliverable.status == DeliverableStatus.APPROVED.value:
        raise InvalidStateError(
            "Deliverable", deliverable.id,
            expected=tuple(s.value for s in DeliverableStatus if s != DeliverableStatus.APPROVED),
            actual=deliverable.status,
        )
    db.session.delete(deliverable)
    db_commit_or_raise()
    logger.info("Deliverable %s deleted", deliverable_id,
                extra={"deliverable_id": deliverable_id, "actor_id": actor.id})


# ── Reads ────────────────────────────────────────────────────────────────────


def get_deliverable(deliverable_id: int, actor: Actor) -> Deliverable:
    return get_or_raise(Deliverable, deliverable_id)


def list_for_project(project_id: int, actor: Actor):
    project = get_or_raise(Project, project_id)
    return project.deliverables.all()
