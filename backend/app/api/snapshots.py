"""Snapshot API endpoints: stored rows, rebuild triggers and live capture."""

from flask import Blueprint, current_app, jsonify, request

from services.errors import SprintNotFoundError
from services.work_fields import business_today, parse_date

bp = Blueprint("snapshots", __name__, url_prefix="/api/snapshots")


def _service():
    return current_app.config["SNAPSHOT_SERVICE"]


def _backfill():
    return current_app.config["BACKFILL"]


def _today():
    return business_today(current_app.config["SETTINGS"].sprint_timezone)


def _requested_date(name="date"):
    """Optional YYYY-MM-DD query parameter. Raises ValueError when malformed."""
    raw = request.args.get(name)
    if not raw:
        return None
    parsed = parse_date(raw)
    if parsed is None:
        raise ValueError(f"Invalid {name}: {raw}")
    return parsed


@bp.route("/<sprint_id>", methods=["GET"])
def get_snapshots(sprint_id):
    """Stored snapshot rows of a sprint, oldest first."""
    try:
        sprint = _service().get_sprint(sprint_id)
        rows = current_app.config["STORE"].get_snapshots(sprint.id)
        return jsonify({
            "data": {
                "sprint": sprint.to_dict(),
                "snapshots": [r.to_dict() for r in rows]
            }
        })
    except SprintNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception as e:
        return jsonify({"error": str(e)}), 500


@bp.route("/<sprint_id>/recompute", methods=["POST"])
def recompute_sprint(sprint_id):
    """Rebuild one sprint now. Optional ?asOf=YYYY-MM-DD stops the series there."""
    try:
        as_of = _requested_date("asOf")
        _service().get_sprint(sprint_id)
        report = _backfill().recompute_sprint(sprint_id, as_of=as_of)
        return jsonify({"data": report.to_dict()})
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except SprintNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception as e:
        return jsonify({"error": str(e)}), 500


@bp.route("/recompute-open", methods=["POST"])
def recompute_open():
    """Rebuild every active sprint up to today."""
    try:
        today = _requested_date() or _today()
        report = _backfill().recompute_open_sprints(today)
        return jsonify({"data": report.to_dict()})
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        return jsonify({"error": str(e)}), 500


@bp.route("/rebuild-history", methods=["POST"])
def rebuild_history():
    """Full history rebuild. Body: {"sprintIds": ["..."]}."""
    body = request.get_json(silent=True) or {}
    sprint_ids = body.get("sprintIds")

    if not isinstance(sprint_ids, list) or not sprint_ids:
        return jsonify({"error": "sprintIds must be a non-empty list"}), 400

    try:
        report = _backfill().rebuild_history([str(s) for s in sprint_ids])
        return jsonify({"data": report.to_dict()})
    except Exception as e:
        return jsonify({"error": str(e)}), 500


@bp.route("/<sprint_id>/live", methods=["POST"])
def capture_live(sprint_id):
    """Today's row for one sprint (or ?date=YYYY-MM-DD)."""
    try:
        today = _requested_date() or _today()
        _service().get_sprint(sprint_id)
        report = _backfill().capture_live(sprint_id, today)
        return jsonify({"data": report.to_dict()})
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except SprintNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception as e:
        return jsonify({"error": str(e)}), 500


@bp.route("/live", methods=["POST"])
def capture_live_all():
    """Today's row for every active sprint."""
    try:
        today = _requested_date() or _today()
        report = _backfill().capture_live_snapshots(today)
        return jsonify({"data": report.to_dict()})
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception as e:
        return jsonify({"error": str(e)}), 500
