"""Team activity API endpoints."""

from datetime import datetime, timedelta, timezone

from flask import Blueprint, request, jsonify

from app.api.common import NO_ACTIVITY_MESSAGE, error_response, get_services, missing_params
from services.plane_helpers import parse_timestamp
from services.team_summary import get_date_range

bp = Blueprint("activities", __name__, url_prefix="/api/activities")

DATE_ONLY_LENGTH = len("YYYY-MM-DD")


def parse_end(end_value: str):
    """A bare date as ``end_date`` covers that whole day."""
    if len(end_value) == DATE_ONLY_LENGTH:
        _, end_date = get_date_range(end_value)
        return end_date
    return parse_timestamp(end_value)


def parse_window(start_value: str, end_value: str) -> tuple:
    """Turn the start_date/end_date query params into a UTC window."""
    start_date = parse_timestamp(start_value)
    end_date = parse_end(end_value)

    if start_date is None or end_date is None:
        raise ValueError("start_date and end_date must be ISO dates or timestamps")
    if start_date > end_date:
        raise ValueError("start_date must not be after end_date")
    return start_date, end_date


def parse_days_window(days_value: str, end_value: str = None) -> tuple:
    """The ``days`` whole UTC days ending with ``end_value`` (default today).

    ``days=7`` with end_date 2024-10-31 covers 2024-10-25 through 2024-10-31.
    """
    try:
        days = int(days_value)
    except (TypeError, ValueError):
        raise ValueError(f"days must be a whole number, got {days_value!r}") from None
    if days < 1:
        raise ValueError("days must be at least 1")

    end_day = end_value or datetime.now(timezone.utc).strftime("%Y-%m-%d")
    if len(end_day) != DATE_ONLY_LENGTH:
        raise ValueError("end_date must be a YYYY-MM-DD date when days is given")
    day_start, day_end = get_date_range(end_day)
    return day_start - timedelta(days=days - 1), day_end


@bp.route("", methods=["GET"])
def list_activities():
    """Every activity record in a date window.

    Each call is its own reporting run and starts a fresh cache session.

    Query params:
        - start_date: ISO date or timestamp (required unless days is given)
        - end_date: ISO date or timestamp (required unless days is given)
        - days: Optional number of whole days ending on end_date (default today),
          e.g. days=7 for a weekly report; not combined with start_date
        - project: Optional project name, identifier or id
        - actor: Optional person name (fuzzy matched)

    Returns:
        Records sorted by time, oldest first
    """
    start_value = request.args.get("start_date")
    end_value = request.args.get("end_date")
    days_value = request.args.get("days")

    if days_value is not None and start_value:
        return jsonify({"error": "Pass either start_date or days, not both"}), 400
    if days_value is None and (not start_value or not end_value):
        return missing_params("start_date", "end_date")

    try:
        if days_value is not None:
            start_date, end_date = parse_days_window(days_value, end_value)
        else:
            start_date, end_date = parse_window(start_value, end_value)
        records = get_services().activities.run_activity_report(
            start_date,
            end_date,
            request.args.get("project"),
            request.args.get("actor")
        )
    except Exception as e:
        return error_response(e)

    records.sort(key=lambda r: r.time.timestamp() if r.time else 0)
    response = {"data": [r.to_dict() for r in records]}
    if not records:
        response["message"] = NO_ACTIVITY_MESSAGE
    return jsonify(response)


@bp.route("/snapshot", methods=["GET"])
def work_items_snapshot():
    """Current state of every work item, grouped by state category."""
    try:
        snapshot = get_services().activities.get_work_items_snapshot()
        return jsonify({"data": snapshot})
    except Exception as e:
        return error_response(e)
