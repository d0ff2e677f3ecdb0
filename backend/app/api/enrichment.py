"""Enrichment API endpoints: pull revision history from Azure DevOps."""

from flask import Blueprint, current_app, request, jsonify

from services import tracker_client
from services.enrichment import enrich_remaining_history
from services.errors import SprintNotFoundError

bp = Blueprint("enrichment", __name__, url_prefix="/api/enrichment")


def get_azure_credentials():
    """Extract Azure DevOps credentials from request headers."""
    org_url = request.headers.get("X-Azure-Org-Url", "").rstrip("/")
    pat = request.headers.get("X-Azure-Pat")
    project = request.headers.get("X-Azure-Project") or None

    if not all([org_url, pat]):
        return None, None, None

    return org_url, pat, project


@bp.route("/<sprint_id>", methods=["POST"])
def enrich_sprint(sprint_id):
    """Fill historical remaining-work fields for a sprint's items."""
    org_url, pat, project = get_azure_credentials()

    if not org_url:
        return jsonify({"error": "Missing Azure DevOps credentials in headers"}), 401

    try:
        service = current_app.config["SNAPSHOT_SERVICE"]
        sprint = service.get_sprint(sprint_id)
        store = current_app.config["STORE"]
        items = store.get_work_items(sprint.id, include_removed=False)

        result = enrich_remaining_history(
            store,
            items,
            fetch_revisions=lambda item_id: tracker_client.get_revisions(
                org_url, pat, item_id, project
            ),
            settings=service.settings,
        )
        return jsonify({"data": result.to_dict()})
    except SprintNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception as e:
        return jsonify({"error": str(e)}), 500
