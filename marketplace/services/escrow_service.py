"""
Escrow Ledger - Service Layer.

Business logic for:
    - Fee split:           platform fee + freelancer payout == escrow amount
    - Initialisation:      opened by the coordinator when a proposal is accepted
    - Payment proof:       client claims an off-platform payment (re-submittable)
    - Verification:        admin confirms the payment; contacts are revealed
    - Release:             client requests, admin releases; project completes
    - Dispute / refund:    admin escape hatches from any pre-release state
    - Transaction log:     one EscrowTransaction per movement
    - Admin queues:        pending verifications / releases, live escrows, fee totals

Every state change is a conditional update on the expected escrow status
(see ``helpers.state_guard``). Notifications go out after the commit.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import func

from marketplace.auth import ADMIN, CLIENT, require_party, require_role, require_user
from marketplace.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from marketplace.models import db
from marketplace.models.escrow import EscrowTransaction
from marketplace.models.project import (
    LIVE_ESCROW_STATUSES,
    EscrowStatus,
    Project,
    ProjectStatus,
    escrow_sources_for,
)
from marketplace.services.file_storage import get_file_storage
from marketplace.services.helpers.state_guard import get_or_raise, transition
from marketplace.services.notification import NotificationService
from marketplace.utils.helpers import db_commit_or_raise, round_money

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM_FEE_PERCENTAGE = Decimal("5.0")


# ── Fee arithmetic ───────────────────────────────────────────────────────────


def configured_fee_percentage() -> Decimal:
    """Platform fee percentage from app config (PLATFORM_FEE_PERCENTAGE)."""
    raw = current_app.config.get("PLATFORM_FEE_PERCENTAGE", DEFAULT_PLATFORM_FEE_PERCENTAGE)
    return Decimal(str(raw))


def compute_fee_split(amount, fee_percentage) -> dict:
    """
    Split ``amount`` into platform fee and freelancer payout.

    fee    = round_half_up(amount * pct / 100, 0.01)
    payout = amount - fee

    Returns a dict of Decimals keyed like the Project escrow columns.
    """
    try:
        amount = round_money(amount)
        pct = Decimal(str(fee_percentage))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("amount and fee percentage must be numbers") from exc
    if amount <= 0:
        raise ValidationError("Escrow amount must be greater than zero", details={"amount": str(amount)})
    if pct < 0 or pct > 100:
        raise ValidationError(
            "Platform fee percentage must be between 0 and 100",
            details={"fee_percentage": str(pct)},
        )

    fee = round_money(amount * pct / Decimal("100"))
    return {
        "escrow_amount": amount,
        "platform_fee_percentage": pct,
        "platform_fee_amount": fee,
        "freelancer_payout_amount": amount - fee,
    }


# ── Internal helpers ─────────────────────────────────────────────────────────


def _now():
    return datetime.now(timezone.utc)


def _log_transaction(project_id, transaction_type, *, amount=None, reference=None,
                     payment_method=None, notes=None, performed_by=None):
    tx = EscrowTransaction(
        project_id=project_id,
        transaction_type=transaction_type,
        amount=amount,
        transaction_reference=reference,
        payment_method=payment_method,
        notes=notes,
        performed_by=performed_by,
    )
    db.session.add(tx)
    return tx


def _require_escrow_status(project, allowed):
    """Raise InvalidStateError unless the project's escrow is in ``allowed``."""
    if project.escrow_status not in allowed:
        raise InvalidStateError(
            "Escrow", project.id, expected=allowed, actual=project.escrow_status,
        )


def _move_escrow(project, actor, to_status: EscrowStatus, values=None):
    """Pre-check then conditionally move escrow to ``to_status``. No commit."""
    sources = escrow_sources_for(to_status)
    _require_escrow_status(project, sources)
    from_status = project.escrow_status
    transition(
        Project, project.id,
        expected=(from_status,),
        values={"escrow_status": to_status.value, **(values or {})},
        entity="Escrow",
        status_attr="escrow_status",
    )
    logger.info(
        "Escrow %s → %s for project %s", from_status, to_status.value, project.id,
        extra={
            "project_id": project.id, "from_status": from_status, "to_status": to_status.value,
            "actor_id": getattr(actor, "id", None), "actor_role": getattr(actor, "role", None),
        },
    )
    return from_status


def _parties(project):
    return [project.client_id, project.freelancer_id]


# ── Initialisation (called by the coordinator) ───────────────────────────────


def initialize(project, accepted_budget, fee_percentage=None, *, performed_by=None):
    """
    Open the escrow for a project at ``pending_payment``.

    Only legal while ``escrow_status`` is NULL. Does not commit: runs inside
    the proposal-acceptance transaction.
    """
    if project.escrow_status is not None:
        raise InvalidStateError(
            "Escrow", project.id, expected=(None,), actual=project.escrow_status,
            message=f"Escrow for project id={project.id} is already initialised ({project.escrow_status})",
        )
    if fee_percentage is None:
        fee_percentage = configured_fee_percentage()
    split = compute_fee_split(accepted_budget, fee_percentage)

    transition(
        Project, project.id,
        expected=(None,),
        values={"escrow_status": EscrowStatus.PENDING_PAYMENT.value, **split},
        entity="Escrow",
        status_attr="escrow_status",
    )
    _log_transaction(
        project.id, "escrow_initialized",
        amount=split["escrow_amount"],
        notes=(
            f"Fee {split['platform_fee_percentage']}%: platform {split['platform_fee_amount']}, "
            f"freelancer {split['freelancer_payout_amount']}"
        ),
        performed_by=performed_by,
    )
    logger.info(
        "Escrow initialised for project %s: amount=%s fee=%s payout=%s",
        project.id, split["escrow_amount"], split["platform_fee_amount"],
        split["freelancer_payout_amount"],
        extra={"project_id": project.id, "from_status": None,
               "to_status": EscrowStatus.PENDING_PAYMENT.value},
    )
    return split


# ── Client operations ────────────────────────────────────────────────────────


def _authorize_payment_proof(project, actor):
    require_user(actor, project.client_id, role=CLIENT, action="submit payment proof",
                 entity="Project", entity_id=project.id)
    _require_escrow_status(
        project, (EscrowStatus.PENDING_PAYMENT.value, EscrowStatus.PAYMENT_SUBMITTED.value),
    )


def submit_payment_proof(project_id, actor, proof_reference, payment_method=None, notes=None):
    """
    Record the client's proof of an off-platform payment.

    pending_payment   → payment_submitted (new log entry)
    payment_submitted → payment_submitted (reference overwritten, log entry updated)
    """
    project = get_or_raise(Project, project_id)
    _authorize_payment_proof(project, actor)
    if not proof_reference or not str(proof_reference).strip():
        raise ValidationError("proof_reference is required", details={"proof_reference": "required"})
    proof_reference = str(proof_reference).strip()
    now = _now()
    fields = {
        "payment_proof_reference": proof_reference,
        "payment_method": payment_method,
        "payment_submitted_at": now,
    }

    if project.escrow_status == EscrowStatus.PAYMENT_SUBMITTED.value:
        transition(
            Project, project.id,
            expected=(EscrowStatus.PAYMENT_SUBMITTED.value,),
            values=fields, entity="Escrow", status_attr="escrow_status",
        )
        tx = (
            EscrowTransaction.query
            .filter_by(project_id=project.id, transaction_type="payment_submitted")
            .order_by(EscrowTransaction.id.desc())
            .first()
        )
        if tx is None:
            _log_transaction(project.id, "payment_submitted", amount=project.escrow_amount,
                             reference=proof_reference, payment_method=payment_method,
                             notes=notes, performed_by=actor.id)
        else:
            tx.transaction_reference = proof_reference
            tx.payment_method = payment_method
            tx.notes = notes or "Payment proof re-submitted"
            tx.performed_by = actor.id
        db_commit_or_raise()
        logger.info("Payment proof replaced for project %s", project.id,
                    extra={"project_id": project.id, "actor_id": actor.id})
        return project

    _move_escrow(project, actor, EscrowStatus.PAYMENT_SUBMITTED, fields)
    _log_transaction(project.id, "payment_submitted", amount=project.escrow_amount,
                     reference=proof_reference, payment_method=payment_method,
                     notes=notes, performed_by=actor.id)
    db_commit_or_raise()
    return project


def upload_payment_proof(project_id, actor, data: bytes, filename: str, payment_method=None, notes=None):
    """
    Store the proof file, then record its reference via submit_payment_proof.

    The stored file is removed again if the escrow transition fails.
    """
    project = get_or_raise(Project, project_id)
    _authorize_payment_proof(project, actor)
    storage = get_file_storage()
    reference = storage.store(data, filename, subdir=f"payment-proofs/{project.id}")
    try:
        return submit_payment_proof(project_id, actor, reference, payment_method, notes)
    except Exception:
        storage.delete(reference)
        raise


def request_release(project_id, actor, note=None):
    """Client asks for payout: verified_held → pending_release (project must be in_review)."""
    project = get_or_raise(Project, project_id)
    require_user(actor, project.client_id, role=CLIENT, action="request escrow release",
                 entity="Project", entity_id=project.id)
    _require_escrow_status(project, (EscrowStatus.VERIFIED_HELD.value,))
    if project.status != ProjectStatus.IN_REVIEW.value:
        raise InvalidStateError("Project", project.id,
                                expected=(ProjectStatus.IN_REVIEW.value,), actual=project.status)

    _move_escrow(project, actor, EscrowStatus.PENDING_RELEASE, {"release_requested_at": _now()})
    _log_transaction(project.id, "release_requested", amount=project.freelancer_payout_amount,
                     notes=note, performed_by=actor.id)
    db_commit_or_raise()

    NotificationService.notify(project.freelancer_id, "release_requested", {"project_id": project.id})
    return project


# ── Admin operations ─────────────────────────────────────────────────────────


def verify(project_id, actor, admin_note=None):
    """
    Admin confirms the payment: payment_submitted → verified_held.

    Shares contact details (``contact_shared_at``) and moves the project
    open → in_progress through the coordinator.
    """
    from marketplace.services import project_service

    project = get_or_raise(Project, project_id)
    require_role(actor, ADMIN, action="verify escrow payments")
    _require_escrow_status(project, (EscrowStatus.PAYMENT_SUBMITTED.value,))
    now = _now()

    _move_escrow(project, actor, EscrowStatus.VERIFIED_HELD, {
        "escrow_verified_at": now,
        "escrow_verified_by": actor.id,
        "contact_shared_at": now,
    })
    _log_transaction(project.id, "payment_verified", amount=project.escrow_amount,
                     reference=project.payment_proof_reference,
                     payment_method=project.payment_method,
                     notes=admin_note, performed_by=actor.id)
    project_service.on_escrow_verified(project, actor)
    db_commit_or_raise()

    NotificationService.notify(project.client_id, "escrow_verified", {
        "project_id": project.id, "counterparty_id": project.freelancer_id,
    })
    NotificationService.notify(project.freelancer_id, "escrow_verified", {
        "project_id": project.id, "counterparty_id": project.client_id,
    })
    return project


def release(project_id, actor, transaction_reference=None, admin_note=None):
    """Admin pays out: pending_release → released; project completes."""
    from marketplace.services import project_service

    project = get_or_raise(Project, project_id)
    require_role(actor, ADMIN, action="release escrow")
    _require_escrow_status(project, (EscrowStatus.PENDING_RELEASE.value,))

    _move_escrow(project, actor, EscrowStatus.RELEASED, {
        "escrow_released_at": _now(),
        "escrow_released_by": actor.id,
        "release_transaction_reference": transaction_reference,
    })
    _log_transaction(project.id, "payment_released", amount=project.freelancer_payout_amount,
                     reference=transaction_reference, notes=admin_note, performed_by=actor.id)
    project_service.on_escrow_released(project, actor)
    db_commit_or_raise()

    payload = {"project_id": project.id,
               "payout": float(project.freelancer_payout_amount or 0)}
    NotificationService.notify_many(_parties(project), "payment_released", payload)
    return project


def open_dispute_in_session(project, actor, note=None):
    """Move a pre-release escrow to disputed. No commit."""
    _move_escrow(project, actor, EscrowStatus.DISPUTED)
    _log_transaction(project.id, "dispute_opened", amount=project.escrow_amount,
                     notes=note, performed_by=actor.id)


def refund_in_session(project, actor, note=None):
    """Move a pre-release (or disputed) escrow to refunded. No commit."""
    paid = project.escrow_status != EscrowStatus.PENDING_PAYMENT.value
    _move_escrow(project, actor, EscrowStatus.REFUNDED)
    _log_transaction(project.id, "refund_issued",
                     amount=project.escrow_amount if paid else None,
                     notes=note or (None if paid else "Closed before any payment was made"),
                     performed_by=actor.id)


def dispute(project_id, actor, note=None):
    """Admin flags the escrow as disputed. Project status is untouched."""
    project = get_or_raise(Project, project_id)
    require_role(actor, ADMIN, action="open an escrow dispute")
    open_dispute_in_session(project, actor, note)
    db_commit_or_raise()

    NotificationService.notify_many(_parties(project), "escrow_disputed",
                                    {"project_id": project.id, "note": note})
    return project


def refund(project_id, actor, note=None):
    """Admin refunds the client; a project that is not yet cancelled is cancelled."""
    from marketplace.services import project_service

    project = get_or_raise(Project, project_id)
    require_role(actor, ADMIN, action="refund escrow")
    refund_in_session(project, actor, note)
    if project.status != ProjectStatus.CANCELLED.value:
        project_service.cancel_in_session(project, actor, reason=note or "Escrow refunded")
    db_commit_or_raise()

    NotificationService.notify_many(_parties(project), "escrow_refunded",
                                    {"project_id": project.id, "note": note})
    return project


# ── Reads ────────────────────────────────────────────────────────────────────


def escrow_view_for(project, actor):
    """
    How much of the escrow ``actor`` may see on ``project``.

    "full" for the client and admins, "party" for the assigned freelancer
    (everything except the payment proof reference), None for anyone else.
    """
    if actor.is_admin or actor.id == project.client_id:
        return "full"
    if project.freelancer_id is not None and actor.id == project.freelancer_id:
        return "party"
    return None


def get_escrow(project_id, actor):
    project = get_or_raise(Project, project_id)
    require_party(actor, _parties(project), action="view the escrow",
                  entity="Project", entity_id=project.id)
    return project


def list_transactions(project_id, actor):
    """Escrow history for one project, oldest first."""
    project = get_or_raise(Project, project_id)
    require_party(actor, _parties(project), action="view escrow transactions",
                  entity="Project", entity_id=project.id)
    return project.escrow_transactions.all()


def payment_proof_url(project_id, actor):
    """Resolve the stored payment proof reference to a fetchable URL."""
    project = get_or_raise(Project, project_id)
    require_party(actor, [project.client_id], action="view the payment proof",
                  entity="Project", entity_id=project.id)
    if not project.payment_proof_reference:
        raise NotFoundError(resource="Payment proof", resource_id=project.id)
    return get_file_storage().resolve(project.payment_proof_reference)


def pending_verifications(actor):
    require_role(actor, ADMIN, action="view pending verifications")
    return (
        Project.query.filter_by(escrow_status=EscrowStatus.PAYMENT_SUBMITTED.value)
        .order_by(Project.payment_submitted_at.asc(), Project.id.asc())
        .all()
    )


def pending_releases(actor):
    require_role(actor, ADMIN, action="view pending releases")
    return (
        Project.query.filter_by(escrow_status=EscrowStatus.PENDING_RELEASE.value)
        .order_by(Project.release_requested_at.asc(), Project.id.asc())
        .all()
    )


def active_escrows(actor):
    """Escrows still holding or awaiting client money."""
    require_role(actor, ADMIN, action="view active escrows")
    return (
        Project.query.filter(Project.escrow_status.in_(sorted(LIVE_ESCROW_STATUSES)))
        .order_by(Project.updated_at.desc(), Project.id.desc())
        .all()
    )


def platform_fee_totals(start=None, end=None) -> dict:
    """Sum of platform fees over released escrows, optionally within [start, end]."""
    q = db.session.query(
        func.coalesce(func.sum(Project.platform_fee_amount), 0),
        func.count(Project.id),
    ).filter(Project.escrow_status == EscrowStatus.RELEASED.value)
    if start is not None:
        q = q.filter(Project.escrow_released_at >= start)
    if end is not None:
        q = q.filter(Project.escrow_released_at <= end)
    total, count = q.one()
    return {
        "total_platform_fees": round_money(total or 0),
        "released_count": count,
        "start": start.isoformat() if start else None,
        "end": end.isoformat() if end else None,
    }


def total_platform_fees(actor, start=None, end=None) -> dict:
    require_role(actor, ADMIN, action="view platform fee totals")
    return platform_fee_totals(start, end)
