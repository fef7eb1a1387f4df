"""
Escrow Blueprint - manual-verification escrow ledger.

Endpoints (party):
  POST /api/v1/projects/<id>/escrow/payment-proof      - JSON {proof_reference} or multipart file
  GET  /api/v1/projects/<id>/escrow/payment-proof      - resolved proof URL
  POST /api/v1/projects/<id>/escrow/request-release    - client
  GET  /api/v1/projects/<id>/escrow                    - escrow snapshot
  GET  /api/v1/projects/<id>/escrow/transactions       - history

Endpoints (admin):
  POST /api/v1/projects/<id>/escrow/verify|release|dispute|refund
  GET  /api/v1/admin/escrow/pending-verifications
  GET  /api/v1/admin/escrow/pending-releases
  GET  /api/v1/admin/escrow/active
  GET  /api/v1/admin/escrow/platform-fees               - ?start=YYYY-MM-DD&end=YYYY-MM-DD
"""

from datetime import datetime, time, timezone

from flask import Blueprint, jsonify, request

from marketplace.auth import current_actor
from marketplace.core.exceptions import ValidationError
from marketplace.services import escrow_service
from marketplace.utils.helpers import parse_date

escrow_bp = Blueprint("escrow_bp", __name__, url_prefix="/api/v1")


def _escrow_response(project, actor):
    view = escrow_service.escrow_view_for(project, actor)
    body = project.escrow_to_dict(include_proof=view == "full")
    body["project_id"] = project.id
    body["project_status"] = project.status
    return jsonify(body)


def _admin_row(project):
    row = project.escrow_to_dict()
    row.update({
        "project_id": project.id,
        "title": project.title,
        "project_status": project.status,
        "client_id": project.client_id,
        "freelancer_id": project.freelancer_id,
    })
    return row


# ═════════════════════════════════════════════════════════════════════════════
# Party routes
# ═════════════════════════════════════════════════════════════════════════════

@escrow_bp.route("/projects/<int:project_id>/escrow", methods=["GET"])
def get_escrow(project_id):
    actor = current_actor()
    return _escrow_response(escrow_service.get_escrow(project_id, actor), actor)


@escrow_bp.route("/projects/<int:project_id>/escrow/payment-proof", methods=["POST"])
def submit_payment_proof(project_id):
    """Accept either an uploaded file (multipart ``file``) or a JSON reference."""
    actor = current_actor()
    if request.files:
        upload = request.files.get("file")
        if upload is None or not upload.filename:
            raise ValidationError("No file selected", details={"file": "required"})
        project = escrow_service.upload_payment_proof(
            project_id, actor, upload.read(), upload.filename,
            payment_method=request.form.get("payment_method"),
            notes=request.form.get("notes"),
        )
    else:
        data = request.get_json(silent=True) or {}
        project = escrow_service.submit_payment_proof(
            project_id, actor,
            data.get("proof_reference"),
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
        )
    return _escrow_response(project, actor)


@escrow_bp.route("/projects/<int:project_id>/escrow/payment-proof", methods=["GET"])
def get_payment_proof(project_id):
    actor = current_actor()
    return jsonify({"project_id": project_id, "url": escrow_service.payment_proof_url(project_id, actor)})


@escrow_bp.route("/projects/<int:project_id>/escrow/request-release", methods=["POST"])
def request_release(project_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    project = escrow_service.request_release(project_id, actor, note=data.get("note"))
    return _escrow_response(project, actor)


@escrow_bp.route("/projects/<int:project_id>/escrow/transactions", methods=["GET"])
def list_transactions(project_id):
    actor = current_actor()
    items = escrow_service.list_transactions(project_id, actor)
    return jsonify({"items": [t.to_dict() for t in items], "total": len(items)})


# ═════════════════════════════════════════════════════════════════════════════
# Admin transitions
# ═════════════════════════════════════════════════════════════════════════════

@escrow_bp.route("/projects/<int:project_id>/escrow/verify", methods=["POST"])
def verify(project_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    project = escrow_service.verify(project_id, actor, admin_note=data.get("admin_note"))
    return _escrow_response(project, actor)


@escrow_bp.route("/projects/<int:project_id>/escrow/release", methods=["POST"])
def release(project_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    project = escrow_service.release(
        project_id, actor,
        transaction_reference=data.get("transaction_reference"),
        admin_note=data.get("admin_note"),
    )
    return _escrow_response(project, actor)


@escrow_bp.route("/projects/<int:project_id>/escrow/dispute", methods=["POST"])
def dispute(project_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    return _escrow_response(escrow_service.dispute(project_id, actor, note=data.get("note")), actor)


@escrow_bp.route("/projects/<int:project_id>/escrow/refund", methods=["POST"])
def refund(project_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    return _escrow_response(escrow_service.refund(project_id, actor, note=data.get("note")), actor)


# ═════════════════════════════════════════════════════════════════════════════
# Admin queues
# ═════════════════════════════════════════════════════════════════════════════

@escrow_bp.route("/admin/escrow/pending-verifications", methods=["GET"])
def pending_verifications():
    items = escrow_service.pending_verifications(current_actor())
    return jsonify({"items": [_admin_row(p) for p in items], "total": len(items)})


@escrow_bp.route("/admin/escrow/pending-releases", methods=["GET"])
def pending_releases():
    items = escrow_service.pending_releases(current_actor())
    return jsonify({"items": [_admin_row(p) for p in items], "total": len(items)})


@escrow_bp.route("/admin/escrow/active", methods=["GET"])
def active_escrows():
    items = escrow_service.active_escrows(current_actor())
    return jsonify({"items": [_admin_row(p) for p in items], "total": len(items)})


@escrow_bp.route("/admin/escrow/platform-fees", methods=["GET"])
def platform_fees():
    actor = current_actor()
    start_date = parse_date(request.args.get("start"), "start")
    end_date = parse_date(request.args.get("end"), "end")
    start = datetime.combine(start_date, time.min, tzinfo=timezone.utc) if start_date else None
    end = datetime.combine(end_date, time.max, tzinfo=timezone.utc) if end_date else None
    totals = escrow_service.total_platform_fees(actor, start, end)
    totals["total_platform_fees"] = float(totals["total_platform_fees"])
    return jsonify(totals)
