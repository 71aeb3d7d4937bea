"""Helpers shared by the API blueprints."""

from flask import current_app, jsonify

from services.plane_errors import NotInitializedError, PlaneApiError, RateLimitedError

NO_ACTIVITY_MESSAGE = "No activity found"


def get_services():
    """The PlaneServices graph built by create_app()."""
    return current_app.extensions["plane"]


def error_response(error: Exception):
    """Map an exception raised by the service layer to a JSON error reply."""
    if isinstance(error, NotInitializedError):
        status = 503
    elif isinstance(error, RateLimitedError):
        status = 429
    elif isinstance(error, PlaneApiError):
        status = 502
    elif isinstance(error, ValueError):
        status = 400
    else:
        current_app.logger.exception("Unhandled error")
        status = 500

    if status != 500:
        current_app.logger.warning(f"Request failed ({status}): {error}")
    return jsonify({"error": str(error)}), status


def missing_params(*names):
    return jsonify({"error": f"Missing required parameter(s): {', '.join(names)}"}), 400
