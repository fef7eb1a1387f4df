"""
Project Blueprint.

Endpoints:
  POST /api/v1/projects                          - create (client)
  GET  /api/v1/projects                          - list (filters: status, client_id, freelancer_id, mine)
  GET  /api/v1/projects/<id>                     - detail (?include=children)
  POST /api/v1/projects/<id>/submit-for-review   - in_progress → in_review (freelancer)
  POST /api/v1/projects/<id>/cancel              - cancel (client / admin)
"""

from flask import Blueprint, jsonify, request

from marketplace.auth import CLIENT, FREELANCER, current_actor
from marketplace.services import escrow_service, project_service
from marketplace.utils.helpers import get_pagination

project_bp = Blueprint("project_bp", __name__, url_prefix="/api/v1")


def _project_dict(project, actor, include_children=False):
    return project.to_dict(include_children=include_children,
                           escrow_view=escrow_service.escrow_view_for(project, actor))


@project_bp.route("/projects", methods=["POST"])
def create_project():
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    project = project_service.create_project(actor, data)
    return jsonify(_project_dict(project, actor)), 201


@project_bp.route("/projects", methods=["GET"])
def list_projects():
    """List projects. ``mine=1`` scopes to the caller's own engagements."""
    actor = current_actor()
    limit, offset = get_pagination()
    client_id = request.args.get("client_id", type=int)
    freelancer_id = request.args.get("freelancer_id", type=int)
    if request.args.get("mine") in ("1", "true"):
        if actor.role == CLIENT:
            client_id = actor.id
        elif actor.role == FREELANCER:
            freelancer_id = actor.id
    items, total = project_service.list_projects(
        actor,
        status=request.args.get("status"),
        client_id=client_id,
        freelancer_id=freelancer_id,
        limit=limit,
        offset=offset,
    )
    return jsonify({"items": [_project_dict(p, actor) for p in items], "total": total})


@project_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    actor = current_actor()
    project = project_service.get_project(project_id, actor)
    include_children = request.args.get("include") == "children"
    return jsonify(_project_dict(project, actor, include_children=include_children))


@project_bp.route("/projects/<int:project_id>/submit-for-review", methods=["POST"])
def submit_for_review(project_id):
    actor = current_actor()
    project = project_service.submit_for_review(project_id, actor)
    return jsonify(_project_dict(project, actor))


@project_bp.route("/projects/<int:project_id>/cancel", methods=["POST"])
def cancel_project(project_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    project = project_service.cancel(
        project_id, actor,
        reason=data.get("reason"),
        escrow_outcome=data.get("escrow_outcome"),
    )
    return jsonify(_project_dict(project, actor))
