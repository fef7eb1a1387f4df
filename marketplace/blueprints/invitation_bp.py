"""
Invitation Blueprint - invitations to bid and direct quote requests.

Endpoints:
  POST /api/v1/projects/<id>/invitations        - invite a freelancer (client)
  GET  /api/v1/projects/<id>/invitations        - invitations sent for a project (client / admin)
  GET  /api/v1/invitations/mine                 - caller's invitations (freelancer, ?status=)
  POST /api/v1/invitations/<id>/accept          - accept (freelancer)
  POST /api/v1/invitations/<id>/decline         - decline (freelancer)

  POST /api/v1/quote-requests                   - request a quote (client)
  GET  /api/v1/quote-requests                   - sent / received / all by role (?status=)
  GET  /api/v1/quote-requests/<id>              - detail (parties / admin)
  POST /api/v1/quote-requests/<id>/respond      - send a price (freelancer)
  POST /api/v1/quote-requests/<id>/decline      - decline (freelancer)
  POST /api/v1/quote-requests/<id>/withdraw     - withdraw (client)
"""

from flask import Blueprint, jsonify, request

from marketplace.auth import current_actor
from marketplace.services import invitation_service

invitation_bp = Blueprint("invitation_bp", __name__, url_prefix="/api/v1")


# ── Invitations ──────────────────────────────────────────────────────────────


@invitation_bp.route("/projects/<int:project_id>/invitations", methods=["POST"])
def invite_freelancer(project_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    invitation = invitation_service.invite(
        project_id, actor, data.get("freelancer_id"), message=data.get("message"),
    )
    return jsonify(invitation.to_dict()), 201


@invitation_bp.route("/projects/<int:project_id>/invitations", methods=["GET"])
def list_project_invitations(project_id):
    actor = current_actor()
    items = invitation_service.list_for_project(project_id, actor)
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)})


@invitation_bp.route("/invitations/mine", methods=["GET"])
def list_my_invitations():
    actor = current_actor()
    items = invitation_service.list_for_freelancer(actor, status=request.args.get("status"))
    return jsonify({"items": [i.to_dict() for i in items], "total": len(items)})


@invitation_bp.route("/invitations/<int:invitation_id>/accept", methods=["POST"])
def accept_invitation(invitation_id):
    actor = current_actor()
    return jsonify(invitation_service.accept_invitation(invitation_id, actor).to_dict())


@invitation_bp.route("/invitations/<int:invitation_id>/decline", methods=["POST"])
def decline_invitation(invitation_id):
    actor = current_actor()
    return jsonify(invitation_service.decline_invitation(invitation_id, actor).to_dict())


# ── Quote requests ───────────────────────────────────────────────────────────


@invitation_bp.route("/quote-requests", methods=["POST"])
def request_quote():
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    quote = invitation_service.request_quote(actor, data.get("freelancer_id"), data)
    return jsonify(quote.to_dict()), 201


@invitation_bp.route("/quote-requests", methods=["GET"])
def list_quote_requests():
    actor = current_actor()
    items = invitation_service.list_quotes(actor, status=request.args.get("status"))
    return jsonify({"items": [q.to_dict() for q in items], "total": len(items)})


@invitation_bp.route("/quote-requests/<int:quote_id>", methods=["GET"])
def get_quote_request(quote_id):
    actor = current_actor()
    return jsonify(invitation_service.get_quote(quote_id, actor).to_dict())


@invitation_bp.route("/quote-requests/<int:quote_id>/respond", methods=["POST"])
def respond_to_quote(quote_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    quote = invitation_service.respond_to_quote(
        quote_id, actor,
        amount=data.get("quoted_amount"),
        duration=data.get("quoted_duration"),
        note=data.get("note"),
    )
    return jsonify(quote.to_dict())


@invitation_bp.route("/quote-requests/<int:quote_id>/decline", methods=["POST"])
def decline_quote(quote_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    return jsonify(invitation_service.decline_quote(quote_id, actor, reason=data.get("reason")).to_dict())


@invitation_bp.route("/quote-requests/<int:quote_id>/withdraw", methods=["POST"])
def withdraw_quote(quote_id):
    actor = current_actor()
    return jsonify(invitation_service.withdraw_quote(quote_id, actor).to_dict())
