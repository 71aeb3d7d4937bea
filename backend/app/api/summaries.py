"""Daily summary API endpoints."""

from datetime import datetime, timezone

from flask import Blueprint, request, jsonify

from app.api.common import NO_ACTIVITY_MESSAGE, error_response, get_services, missing_params
from services.team_summary import format_team_data_for_prompt

bp = Blueprint("summaries", __name__, url_prefix="/api/summaries")


def get_date_key():
    """The ``date`` query param, defaulting to today (UTC)."""
    return request.args.get("date") or datetime.now(timezone.utc).strftime("%Y-%m-%d")


@bp.route("/person", methods=["GET"])
def person_summary():
    """One person's work on one day, grouped by project.

    Query params:
        - name: Person name (required, fuzzy matched)
        - date: Optional YYYY-MM-DD, defaults to today
        - project: Optional project name, identifier or id
    """
    name = request.args.get("name")
    if not name:
        return missing_params("name")

    try:
        summary = get_services().summaries.person_daily_summary(
            name, get_date_key(), request.args.get("project")
        )
    except Exception as e:
        return error_response(e)

    response = {"data": summary}
    if not summary["projects"]:
        response["message"] = NO_ACTIVITY_MESSAGE
    return jsonify(response)


@bp.route("/team", methods=["GET"])
def team_summary():
    """Every member of a project on one day.

    Query params:
        - project: Project name, identifier or id (required)
        - date: Optional YYYY-MM-DD, defaults to today

    Returns:
        - Per-member completed / in progress / todo / comments
        - Cycle completion text
        - The plain text block used for prompt generation
    """
    project = request.args.get("project")
    if not project:
        return missing_params("project")

    try:
        summary = get_services().summaries.team_daily_summary(project, get_date_key())
    except Exception as e:
        return error_response(e)

    summary["prompt"] = format_team_data_for_prompt(summary["members"])
    response = {"data": summary}
    if not any(_has_activity(m) for m in summary["members"]):
        response["message"] = NO_ACTIVITY_MESSAGE
    return jsonify(response)


def _has_activity(member: dict) -> bool:
    return any(member.get(key) for key in ("completed", "inProgress", "todo", "comments"))
