"""Tests for daily aggregation and the ideal line."""

from datetime import date
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from services.aggregator import aggregate, ideal_curve
from services.calendar import business_days
from services.replay import DailyDeltas, replay_sprint

DAYS = business_days(date(2024, 1, 1), date(2024, 1, 12))


class TestIdealCurve:
    """Test the reactive ideal line."""

    def test_starts_at_baseline_and_ends_at_zero(self):
        ideal = ideal_curve(8, [0.0] * 10)
        assert ideal[0] == 8
        assert ideal[-1] == 0
        assert ideal == sorted(ideal, reverse=True)

    def test_scope_added_raises_line(self):
        flat = ideal_curve(8, [0.0] * 10)
        grown = ideal_curve(8, [0.0, 5.0] + [0.0] * 8)
        assert grown[1] > flat[1]
        assert grown[-1] == 0

    def test_never_negative(self):
        ideal = ideal_curve(4, [0.0, -50.0, 0.0, 0.0])
        assert min(ideal) == 0

    def test_empty(self):
        assert ideal_curve(10, []) == []


class TestAggregate:
    """Test accumulation of deltas into series."""

    def test_scenario_completion_then_reopen(self, sprint, planned_task, late_task,
                                             planned_task_revisions, late_task_revisions):
        """Baseline 8, 5h added on day 2, 8h done on day 3, 3h reopened on day 5."""
        deltas = replay_sprint(
            sprint, [planned_task, late_task],
            {1: planned_task_revisions, 2: late_task_revisions}, DAYS,
        )
        series = aggregate(8, deltas, DAYS)

        assert series.total_work[:5] == (8, 13, 13, 13, 13)
        assert series.remaining[:5] == (8, 13, 5, 5, 8)
        assert series.completed[:5] == (0, 0, 8, 8, 5)
        assert series.scope_added[1] == 5
        assert sum(series.scope_removed) == 0
        assert series.ideal[0] == 8
        assert series.ideal[1] == 12
        assert series.ideal[-1] == 0

    def test_completion_has_no_scope_effect(self):
        deltas = DailyDeltas.zeros(3)
        deltas.completed[1] = 5
        series = aggregate(10, deltas, DAYS[:3])
        assert series.total_work == (10, 10, 10)
        assert series.remaining == (10, 5, 5)

    def test_clamped_at_zero(self):
        deltas = DailyDeltas.zeros(3)
        deltas.scope_removed[1] = 30
        deltas.completed[2] = 4
        series = aggregate(10, deltas, DAYS[:3])
        assert series.total_work == (10, 0, 0)
        assert series.remaining == (10, 0, 0)
        assert min(series.completed) >= 0

    def test_rounds_half_up_at_the_end(self):
        deltas = DailyDeltas.zeros(2)
        deltas.scope_added[1] = 0.25
        series = aggregate(2.25, deltas, DAYS[:2])
        assert series.total_work == (2, 3)
