"""Azure DevOps client for work item revision history.

Uses user-provided credentials (organization URL + personal access token).
"""

from typing import Optional
import requests

from services.models import CHANGED_DATE_FIELD, Revision

API_VERSION = "7.0"
PAGE_SIZE = 200


def make_tracker_request(org_url: str, pat: str, endpoint: str, params: dict = None) -> dict:
    """Make authenticated GET request to the Azure DevOps REST API.

    Args:
        org_url: Organization (or collection) URL, e.g. https://dev.azure.com/acme
        pat: Personal access token
        endpoint: API path starting with /_apis/
        params: Optional query parameters

    Returns:
        Response JSON

    Raises:
        requests.exceptions.RequestException: on transport or HTTP errors
    """
    query = {"api-version": API_VERSION}
    query.update(params or {})
    response = requests.get(
        f"{org_url.rstrip('/')}{endpoint}",
        auth=("", pat),  # PAT goes in the password slot
        headers={"Accept": "application/json"},
        params=query,
        timeout=30
    )
    response.raise_for_status()
    return response.json()


def parse_revision(work_item_id: int, entry: dict) -> Revision:
    fields = entry.get("fields", {}) or {}
    return Revision(
        work_item_id=work_item_id,
        rev=int(entry.get("rev", 0)),
        changed_date=fields.get(CHANGED_DATE_FIELD),
        fields=dict(fields),
    )


def get_revisions(org_url: str, pat: str, work_item_id: int,
                  project: Optional[str] = None) -> list:
    """Get every revision of a work item, oldest first.

    Args:
        org_url: Organization URL
        pat: Personal access token
        work_item_id: Work item id
        project: Optional project name to scope the request

    Returns:
        List of Revision records ordered by revision number.
    """
    prefix = f"/{project}" if project else ""
    endpoint = f"{prefix}/_apis/wit/workItems/{work_item_id}/revisions"

    revisions = []
    skip = 0
    while True:
        data = make_tracker_request(
            org_url, pat, endpoint, params={"$top": PAGE_SIZE, "$skip": skip}
        )
        page = data.get("value", [])
        revisions.extend(parse_revision(work_item_id, entry) for entry in page)
        if len(page) < PAGE_SIZE:
            break
        skip += PAGE_SIZE

    return sorted(revisions, key=lambda r: r.rev)
