"""Debug API endpoints for inspecting the cache."""

from flask import Blueprint, request, jsonify

from app.api.common import error_response, get_services

bp = Blueprint("debug", __name__, url_prefix="/api/debug")


@bp.route("/cache", methods=["GET"])
def cache_stats():
    """Current session plus entry counts and TTLs per cache store."""
    return jsonify({"data": get_services().cache.stats()})


@bp.route("/cache/clear", methods=["POST"])
def clear_cache():
    """Drop cached data.

    Query params:
        - scope: "all" (default) or "activities" for per-item history only
    """
    scope = request.args.get("scope", "all")
    cache = get_services().cache

    try:
        if scope == "activities":
            cache.clear_activity_caches()
        elif scope == "all":
            cache.clear_all()
        else:
            raise ValueError(f"Unknown cache scope: {scope}")
    except Exception as e:
        return error_response(e)

    return jsonify({"data": {"cleared": scope, "stats": cache.stats()}})
