"""Tests for historical-field enrichment and the tracker client."""

import pytest
from unittest.mock import Mock, patch
import sys
import os

import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from services import tracker_client
from services.enrichment import derive_history_fields, enrich_remaining_history
from services.models import REMAINING_WORK_FIELD


class TestDeriveHistoryFields:
    """Test initial / last / done extraction."""

    def test_planned_reestimated_and_closed(self, make_revision):
        revisions = [
            make_revision(1, 1, "2024-01-01T09:00:00Z", remaining=8, state="To Do"),
            make_revision(1, 2, "2024-01-02T09:00:00Z", remaining=5),
            make_revision(1, 3, "2024-01-03T09:00:00Z", remaining=0, state="Done"),
        ]
        assert derive_history_fields(revisions) == (8, 5, 5)

    def test_closed_without_remaining_change(self, make_revision):
        revisions = [
            make_revision(1, 1, "2024-01-01T09:00:00Z", remaining=4),
            make_revision(1, 2, "2024-01-03T09:00:00Z", state="Closed"),
        ]
        assert derive_history_fields(revisions) == (4, 4, 4)

    def test_never_estimated(self, make_revision):
        revisions = [make_revision(1, 1, "2024-01-01T09:00:00Z", state="To Do")]
        assert derive_history_fields(revisions) == (None, None, None)


class TestEnrichRemainingHistory:
    """Test best-effort enrichment over many items."""

    def test_updates_from_store_revisions(self, store, planned_task, late_task):
        result = enrich_remaining_history(store, [planned_task, late_task])
        assert result.updated == 2
        items = {i.id: i for i in store.get_work_items("sprint-1")}
        assert items[1].initial_remaining_work == 8
        assert items[1].last_remaining_work == 3
        assert items[1].done_remaining_work == 8
        assert items[2].last_remaining_work == 5

    def test_second_run_is_unchanged(self, store, planned_task):
        enrich_remaining_history(store, [planned_task])
        refreshed = store.get_work_items("sprint-1")[0]
        result = enrich_remaining_history(store, [refreshed])
        assert result.unchanged == 1
        assert result.updated == 0

    def test_fetch_failure_is_skipped(self, store, planned_task, late_task,
                                      late_task_revisions):
        def fetch(item_id):
            if item_id == 1:
                raise requests.exceptions.ConnectionError("tracker down")
            return late_task_revisions

        result = enrich_remaining_history(store, [planned_task, late_task], fetch)
        assert result.to_dict() == {"updated": 1, "unchanged": 0, "failed": 1}
        assert store.get_work_items("sprint-1")[0].initial_remaining_work is None


class TestTrackerClient:
    """Test the Azure DevOps revisions client."""

    @patch("services.tracker_client.requests.get")
    def test_get_revisions(self, mock_get):
        mock_get.return_value = Mock(
            status_code=200,
            json=lambda: {
                "count": 2,
                "value": [
                    {"id": 7, "rev": 2, "fields": {
                        "System.ChangedDate": "2024-01-02T09:00:00Z",
                        REMAINING_WORK_FIELD: 3,
                    }},
                    {"id": 7, "rev": 1, "fields": {
                        "System.ChangedDate": "2024-01-01T09:00:00Z",
                        REMAINING_WORK_FIELD: 5,
                    }},
                ]
            }
        )

        revisions = tracker_client.get_revisions(
            "https://dev.azure.com/acme/", "pat-123", 7, project="Proj"
        )

        assert [r.rev for r in revisions] == [1, 2]
        assert revisions[0].changed_date == "2024-01-01T09:00:00Z"
        assert revisions[1].get(REMAINING_WORK_FIELD) == 3
        args, kwargs = mock_get.call_args
        assert args[0] == "https://dev.azure.com/acme/Proj/_apis/wit/workItems/7/revisions"
        assert kwargs["auth"] == ("", "pat-123")
        assert kwargs["timeout"] == 30

    @patch("services.tracker_client.PAGE_SIZE", 2)
    @patch("services.tracker_client.requests.get")
    def test_pages_until_short_page(self, mock_get):
        def page(revs):
            return Mock(json=lambda: {"value": [{"rev": r, "fields": {}} for r in revs]})

        mock_get.side_effect = [page([1, 2]), page([3])]

        revisions = tracker_client.get_revisions("https://dev.azure.com/acme", "pat", 7)

        assert [r.rev for r in revisions] == [1, 2, 3]
        assert mock_get.call_count == 2
        assert mock_get.call_args[1]["params"]["$skip"] == 2

    @patch("services.tracker_client.requests.get")
    def test_http_error_propagates(self, mock_get):
        response = Mock()
        response.raise_for_status.side_effect = requests.exceptions.HTTPError("401")
        mock_get.return_value = response

        with pytest.raises(requests.exceptions.HTTPError):
            tracker_client.get_revisions("https://dev.azure.com/acme", "bad", 7)
