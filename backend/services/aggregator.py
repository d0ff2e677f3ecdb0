"""Daily aggregation of replayed deltas into burndown series."""

from dataclasses import dataclass

from services.replay import DailyDeltas
from services.work_fields import round_half_up


@dataclass(frozen=True)
class BurndownSeries:
    days: tuple
    total_work: tuple
    remaining: tuple
    completed: tuple
    ideal: tuple
    scope_added: tuple
    scope_removed: tuple

    def __len__(self) -> int:
        return len(self.days)


def ideal_curve(baseline: float, net_scope: list) -> list:
    """Reactive ideal line.

    Starts at the baseline; on each later day the net scope change is applied
    and the cursor burns an even share of what is left over the remaining
    days, so the line re-levels after scope churn instead of staying fixed
    to day one.
    """
    count = len(net_scope)
    if count == 0:
        return []

    cursor = float(baseline)
    ideal = [round_half_up(max(0.0, cursor))]
    for i in range(1, count):
        cursor = max(0.0, cursor + net_scope[i])
        steps_remaining = count - i
        cursor = max(0.0, cursor - cursor / steps_remaining)
        ideal.append(round_half_up(cursor))
    return ideal


def aggregate(baseline: float, deltas: DailyDeltas, days: list) -> BurndownSeries:
    """Accumulate per-day deltas into total, remaining and ideal series.

    The remaining curve comes only from replayed events; it is never forced
    to match the items' current remaining values.
    """
    scope_accum = float(baseline)
    remaining_accum = float(baseline)
    total_work = []
    remaining = []
    completed = []

    for i in range(len(days)):
        net = deltas.net_scope(i)
        scope_accum = max(0.0, scope_accum + net)
        remaining_accum = max(0.0, remaining_accum + net - deltas.completed[i])
        day_total = round_half_up(scope_accum)
        day_remaining = round_half_up(remaining_accum)
        total_work.append(day_total)
        remaining.append(day_remaining)
        completed.append(max(0, day_total - day_remaining))

    ideal = ideal_curve(baseline, [deltas.net_scope(i) for i in range(len(days))])

    return BurndownSeries(
        days=tuple(days),
        total_work=tuple(total_work),
        remaining=tuple(remaining),
        completed=tuple(completed),
        ideal=tuple(ideal),
        scope_added=tuple(max(0, round_half_up(v)) for v in deltas.scope_added),
        scope_removed=tuple(max(0, round_half_up(v)) for v in deltas.scope_removed),
    )
