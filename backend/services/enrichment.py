"""Best-effort enrichment of historical remaining-work fields.

The live path falls back on ``last_remaining_work`` and
``done_remaining_work`` when an item's current fields are blank; those come
from here.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from services.revisions import date_revisions
from services.settings import Settings
from services.work_fields import is_done_like

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentResult:
    updated: int = 0
    unchanged: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {"updated": self.updated, "unchanged": self.unchanged, "failed": self.failed}


def derive_history_fields(revisions, settings: Optional[Settings] = None) -> tuple:
    """(initial, last, done) remaining hours from an item's revisions.

    initial: first positive value; last: most recent positive value;
    done: the remaining value carried when the item first turned done-like.
    Any of them may be None.
    """
    settings = settings or Settings()
    initial = None
    last = None
    done = None
    remaining = None

    for revision in date_revisions(revisions, settings.sprint_timezone):
        if revision.remaining is not None:
            if revision.remaining > 0:
                if initial is None:
                    initial = revision.remaining
                last = revision.remaining
            prior = remaining
            remaining = revision.remaining
        else:
            prior = remaining
        if done is None and is_done_like(revision.state, settings.done_like_states):
            # The closing revision usually zeroes remaining; keep what it had before
            candidates = [v for v in (prior, remaining) if v is not None and v > 0]
            done = candidates[0] if candidates else None

    return initial, last, done


def enrich_remaining_history(store, items: Iterable, fetch_revisions: Optional[Callable] = None,
                             settings: Optional[Settings] = None) -> EnrichmentResult:
    """Fill the historical fields of each item from its revisions.

    Args:
        store: SnapshotStore receiving the updates
        items: Work items to enrich
        fetch_revisions: Callable item_id -> revisions. Defaults to the store.
        settings: Optional settings

    Returns:
        EnrichmentResult with per-item outcome counts. A failing item is
        logged and skipped; it is not retried.
    """
    settings = settings or Settings()
    if fetch_revisions is None:
        def fetch_revisions(item_id):
            return store.get_revisions([item_id]).get(item_id, [])

    result = EnrichmentResult()
    for item in items:
        try:
            revisions = fetch_revisions(item.id)
        except Exception as e:
            logger.warning(f"Could not fetch revisions for item {item.id}: {e}")
            result.failed += 1
            continue

        initial, last, done = derive_history_fields(revisions, settings)
        if (initial, last, done) == (
            item.initial_remaining_work, item.last_remaining_work, item.done_remaining_work
        ):
            result.unchanged += 1
            continue

        store.update_history_fields(item.id, initial, last, done)
        result.updated += 1

    logger.info(
        f"Enriched {result.updated} items ({result.unchanged} unchanged, {result.failed} failed)"
    )
    return result
