"""
Milestone Blueprint.

Endpoints:
  POST /api/v1/projects/<id>/milestones             - create (either party)
  GET  /api/v1/projects/<id>/milestones             - list + summary counts
  POST /api/v1/milestones/<id>/start                - freelancer
  POST /api/v1/milestones/<id>/complete             - freelancer
  POST /api/v1/milestones/<id>/approve              - client
  POST /api/v1/milestones/<id>/request-changes      - client
"""

from flask import Blueprint, jsonify, request

from marketplace.auth import current_actor
from marketplace.services import milestone_service

milestone_bp = Blueprint("milestone_bp", __name__, url_prefix="/api/v1")


@milestone_bp.route("/projects/<int:project_id>/milestones", methods=["POST"])
def create_milestone(project_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    milestone = milestone_service.create(
        project_id, actor,
        title=data.get("title"),
        description=data.get("description", ""),
        due_date=data.get("due_date"),
    )
    return jsonify(milestone.to_dict()), 201


@milestone_bp.route("/projects/<int:project_id>/milestones", methods=["GET"])
def list_milestones(project_id):
    actor = current_actor()
    result = milestone_service.list_for_project(project_id, actor)
    return jsonify({
        "items": [m.to_dict() for m in result["milestones"]],
        "summary": result["summary"],
    })


@milestone_bp.route("/milestones/<int:milestone_id>/start", methods=["POST"])
def start_milestone(milestone_id):
    return jsonify(milestone_service.start(milestone_id, current_actor()).to_dict())


@milestone_bp.route("/milestones/<int:milestone_id>/complete", methods=["POST"])
def complete_milestone(milestone_id):
    return jsonify(milestone_service.complete(milestone_id, current_actor()).to_dict())


@milestone_bp.route("/milestones/<int:milestone_id>/approve", methods=["POST"])
def approve_milestone(milestone_id):
    return jsonify(milestone_service.approve(milestone_id, current_actor()).to_dict())


@milestone_bp.route("/milestones/<int:milestone_id>/request-changes", methods=["POST"])
def request_milestone_changes(milestone_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    return jsonify(milestone_service.request_changes(milestone_id, actor, note=data.get("note")).to_dict())
