"""Workspace, project and people lookups used for autocomplete."""

from flask import Blueprint, jsonify

from app.api.common import error_response, get_services

bp = Blueprint("projects", __name__, url_prefix="/api")


@bp.route("/projects", methods=["GET"])
def list_projects():
    """Projects in the workspace."""
    try:
        projects = get_services().fetcher.get_projects()
        return jsonify({"data": [
            {
                "id": p.get("id"),
                "name": p.get("name"),
                "identifier": p.get("identifier"),
            }
            for p in projects
        ]})
    except Exception as e:
        return error_response(e)


@bp.route("/people", methods=["GET"])
def list_people():
    """Workspace members as name/id pairs."""
    try:
        return jsonify({"data": get_services().fetcher.get_people()})
    except Exception as e:
        return error_response(e)


@bp.route("/workspace", methods=["GET"])
def workspace_details():
    try:
        return jsonify({"data": get_services().fetcher.get_workspace_details()})
    except Exception as e:
        return error_response(e)
