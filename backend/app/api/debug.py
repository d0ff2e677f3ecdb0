"""Debug API endpoints for troubleshooting."""

from flask import Blueprint, current_app, jsonify

from services.errors import NoWorkingDaysError, SprintNotFoundError

bp = Blueprint("debug", __name__, url_prefix="/api/debug")


@bp.route("/sprints/<sprint_id>/baseline", methods=["GET"])
def get_baseline(sprint_id):
    """Show the day-zero baseline and where it came from."""
    try:
        data = current_app.config["SNAPSHOT_SERVICE"].baseline_for(sprint_id)
        return jsonify({"data": data})
    except SprintNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except NoWorkingDaysError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        return jsonify({"error": str(e)}), 500


@bp.route("/sprints/<sprint_id>/working-days", methods=["GET"])
def get_working_days(sprint_id):
    """List the sprint's working days and the team-wide days off removed from it."""
    try:
        data = current_app.config["SNAPSHOT_SERVICE"].working_days_for(sprint_id)
        return jsonify({"data": data})
    except SprintNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except NoWorkingDaysError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        return jsonify({"error": str(e)}), 500
