"""
Proposal Blueprint - negotiation endpoints.

Endpoints:
  POST /api/v1/projects/<id>/proposals          - submit (freelancer)
  GET  /api/v1/projects/<id>/proposals          - list for project (?status=)
  GET  /api/v1/proposals/mine                   - caller's proposals (freelancer)
  GET  /api/v1/proposals/<id>                   - detail incl. negotiation history
  POST /api/v1/proposals/<id>/counter-offer     - one negotiation round (client / freelancer)
  POST /api/v1/proposals/<id>/accept            - accept (client)
  POST /api/v1/proposals/<id>/decline           - reject (client)
  POST /api/v1/proposals/<id>/withdraw          - withdraw (freelancer)
"""

from flask import Blueprint, jsonify, request

from marketplace.auth import current_actor
from marketplace.services import escrow_service, proposal_service

proposal_bp = Blueprint("proposal_bp", __name__, url_prefix="/api/v1")


@proposal_bp.route("/projects/<int:project_id>/proposals", methods=["POST"])
def submit_proposal(project_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    proposal = proposal_service.submit(
        project_id, actor,
        budget=data.get("proposed_budget"),
        duration=data.get("estimated_duration"),
        pitch=data.get("cover_letter", ""),
    )
    return jsonify(proposal.to_dict()), 201


@proposal_bp.route("/projects/<int:project_id>/proposals", methods=["GET"])
def list_project_proposals(project_id):
    actor = current_actor()
    items = proposal_service.list_for_project(project_id, actor, status=request.args.get("status"))
    return jsonify({"items": [p.to_dict() for p in items], "total": len(items)})


@proposal_bp.route("/proposals/mine", methods=["GET"])
def list_my_proposals():
    actor = current_actor()
    items = proposal_service.list_for_freelancer(actor, status=request.args.get("status"))
    return jsonify({"items": [p.to_dict() for p in items], "total": len(items)})


@proposal_bp.route("/proposals/<int:proposal_id>", methods=["GET"])
def get_proposal(proposal_id):
    actor = current_actor()
    return jsonify(proposal_service.get_proposal(proposal_id, actor).to_dict())


@proposal_bp.route("/proposals/<int:proposal_id>/counter-offer", methods=["POST"])
def counter_offer(proposal_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    proposal = proposal_service.counter_offer(
        proposal_id, actor,
        new_budget=data.get("new_budget"),
        note=data.get("note"),
        new_duration=data.get("new_duration"),
    )
    return jsonify(proposal.to_dict())


@proposal_bp.route("/proposals/<int:proposal_id>/accept", methods=["POST"])
def accept_proposal(proposal_id):
    actor = current_actor()
    proposal = proposal_service.accept(proposal_id, actor)
    project = proposal.project
    return jsonify({
        "proposal": proposal.to_dict(),
        "project": project.to_dict(escrow_view=escrow_service.escrow_view_for(project, actor)),
    })


@proposal_bp.route("/proposals/<int:proposal_id>/decline", methods=["POST"])
def decline_proposal(proposal_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    proposal = proposal_service.decline(proposal_id, actor, reason=data.get("reason"))
    return jsonify(proposal.to_dict())


@proposal_bp.route("/proposals/<int:proposal_id>/withdraw", methods=["POST"])
def withdraw_proposal(proposal_id):
    actor = current_actor()
    proposal = proposal_service.withdraw(proposal_id, actor)
    return jsonify(proposal.to_dict())
