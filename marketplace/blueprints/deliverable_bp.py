"""
Deliverable Blueprint - submission and review cycle.

Endpoints:
  POST   /api/v1/projects/<id>/deliverables              - submit (freelancer; JSON or multipart ``file``)
  GET    /api/v1/projects/<id>/deliverables              - list with revision requests
  GET    /api/v1/deliverables/<id>                       - detail
  DELETE /api/v1/deliverables/<id>                       - delete (submitter, not once approved)
  POST   /api/v1/deliverables/<id>/start-review          - client
  POST   /api/v1/deliverables/<id>/approve               - client
  POST   /api/v1/deliverables/<id>/request-revision      - client, {notes}
  POST   /api/v1/deliverables/<id>/reject                - client, {reason}
  POST   /api/v1/deliverables/<id>/resubmit              - freelancer
"""

from flask import Blueprint, jsonify, request

from marketplace.auth import current_actor
from marketplace.services import deliverable_service

deliverable_bp = Blueprint("deliverable_bp", __name__, url_prefix="/api/v1")

_TRUTHY = {"1", "true", "yes", "on"}


def _read_submission():
    """Return (data, upload) from a JSON body or a multipart form."""
    if request.files:
        data = request.form.to_dict()
        if "is_final" in data:
            data["is_final"] = str(data["is_final"]).lower() in _TRUTHY
        upload = request.files.get("file")
        if upload is not None and upload.filename:
            return data, (upload.read(), upload.filename)
        return data, None
    return request.get_json(silent=True) or {}, None


@deliverable_bp.route("/projects/<int:project_id>/deliverables", methods=["POST"])
def submit_deliverable(project_id):
    actor = current_actor()
    data, upload = _read_submission()
    deliverable = deliverable_service.submit(
        project_id, actor,
        title=data.get("title"),
        description=data.get("description", ""),
        file_reference=data.get("file_reference"),
        is_final=bool(data.get("is_final", False)),
        upload=upload,
    )
    return jsonify(deliverable.to_dict()), 201


@deliverable_bp.route("/projects/<int:project_id>/deliverables", methods=["GET"])
def list_deliverables(project_id):
    actor = current_actor()
    items = deliverable_service.list_for_project(project_id, actor)
    return jsonify({"items": [d.to_dict() for d in items], "total": len(items)})


@deliverable_bp.route("/deliverables/<int:deliverable_id>", methods=["GET"])
def get_deliverable(deliverable_id):
    actor = current_actor()
    return jsonify(deliverable_service.get_deliverable(deliverable_id, actor).to_dict())


@deliverable_bp.route("/deliverables/<int:deliverable_id>", methods=["DELETE"])
def delete_deliverable(deliverable_id):
    actor = current_actor()
    deliverable_service.delete(deliverable_id, actor)
    return jsonify({"deleted": True, "id": deliverable_id})


@deliverable_bp.route("/deliverables/<int:deliverable_id>/start-review", methods=["POST"])
def start_review(deliverable_id):
    actor = current_actor()
    return jsonify(deliverable_service.start_review(deliverable_id, actor).to_dict())


@deliverable_bp.route("/deliverables/<int:deliverable_id>/approve", methods=["POST"])
def approve_deliverable(deliverable_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    return jsonify(deliverable_service.approve(deliverable_id, actor, note=data.get("note")).to_dict())


@deliverable_bp.route("/deliverables/<int:deliverable_id>/request-revision", methods=["POST"])
def request_revision(deliverable_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    deliverable = deliverable_service.request_revision(deliverable_id, actor, notes=data.get("notes"))
    return jsonify(deliverable.to_dict())


@deliverable_bp.route("/deliverables/<int:deliverable_id>/reject", methods=["POST"])
def reject_deliverable(deliverable_id):
    actor = current_actor()
    data = request.get_json(silent=True) or {}
    return jsonify(deliverable_service.reject(deliverable_id, actor, reason=data.get("reason")).to_dict())


@deliverable_bp.route("/deliverables/<int:deliverable_id>/resubmit", methods=["POST"])
def resubmit_deliverable(deliverable_id):
    actor = current_actor()
    data, upload = _read_submission()
    deliverable = deliverable_service.resubmit(
        deliverable_id, actor,
        file_reference=data.get("file_reference"),
        note=data.get("note"),
        is_final=data.get("is_final"),
        upload=upload,
    )
    return jsonify(deliverable.to_dict())
