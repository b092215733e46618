"""Band-level reduction of sampled squads.

Turns per-entry metrics into averages and distributions, and raw picks into
ownership, captaincy and formation counts. All reductions are sums and counts,
so the (unordered) output of the fetch pool gives the same result in any order.
"""

import math
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from fplanner.services.cohort_sampler import Band
from fplanner.services.fpl_client import EntryPicks, Pick
from fplanner.services.team_metrics import METRIC_KEYS, EntryMetrics

BENCH_START_POSITION = 12


@dataclass(slots=True)
class BandSummary:
    """Aggregated planner metrics for one band in one gameweek."""

    key: str
    label: str
    max_rank: int
    sample_size: int
    attempted: int
    averages: dict[str, float | None]
    distributions: dict[str, list[float]]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BandSummary":
        return cls(
            key=data["key"],
            label=data.get("label", data["key"]),
            max_rank=data.get("max_rank", 0),
            sample_size=data.get("sample_size", 0),
            attempted=data.get("attempted", 0),
            averages=dict(data.get("averages", {})),
            distributions={k: list(v) for k, v in data.get("distributions", {}).items()},
        )


@dataclass(slots=True)
class PlayerPickStats:
    """How often one player appears in a band's sampled squads."""

    element: int
    ownership: int = 0
    captain_count: int = 0
    vice_captain_count: int = 0
    bench_count: int = 0
    multiplier_sum: int = 0


@dataclass(slots=True)
class PicksAggregate:
    """Ownership-side output for one band in one gameweek."""

    players: list[PlayerPickStats] = field(default_factory=list)
    formations: dict[str, int] = field(default_factory=dict)
    sample_size: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PicksAggregate":
        return cls(
            players=[PlayerPickStats(**p) for p in data.get("players", [])],
            formations=dict(data.get("formations", {})),
            sample_size=data.get("sample_size", 0),
        )


def build_band_summary(
    band: Band, metrics: Sequence[EntryMetrics], attempted: int
) -> BandSummary:
    """Reduce per-entry metrics to band averages and distributions.

    Non-finite values are left out. A metric with no values averages to None,
    never 0.
    """
    distributions: dict[str, list[float]] = {key: [] for key in METRIC_KEYS}

    for entry in metrics:
        for key in METRIC_KEYS:
            value = entry.get(key)
            if (
                isinstance(value, (int, float))
                and not isinstance(value, bool)
                and math.isfinite(value)
            ):
                distributions[key].append(float(value))

    averages: dict[str, float | None] = {
        key: (sum(values) / len(values) if values else None)
        for key, values in distributions.items()
    }

    return BandSummary(
        key=band.key,
        label=band.label,
        max_rank=band.max_rank,
        sample_size=len(metrics),
        attempted=attempted,
        averages=averages,
        distributions=distributions,
    )


def derive_formation(picks: Iterable[Pick]) -> str:
    """Formation string from squad position slots.

    Slots 1-2 count as defenders, slot 3 as midfield and slot 4 as attack,
    matching the planner dashboard's existing convention.
    """
    defenders = midfielders = forwards = 0
    for pick in picks:
        if pick.position <= 2:
            defenders += 1
        elif pick.position == 3:
            midfielders += 1
        elif pick.position == 4:
            forwards += 1
    return f"{defenders}-{midfielders}-{forwards}"


def aggregate_picks(raw_picks: Iterable[EntryPicks]) -> PicksAggregate:
    """Count ownership, captaincy, bench slots and formations across squads."""
    players: dict[int, PlayerPickStats] = {}
    formations: Counter[str] = Counter()
    sample_size = 0

    for entry in raw_picks:
        sample_size += 1
        formations[derive_formation(entry.picks)] += 1

        for pick in entry.picks:
            stats = players.get(pick.element)
            if stats is None:
                stats = players[pick.element] = PlayerPickStats(element=pick.element)

            stats.ownership += 1
            if pick.is_captain:
                stats.captain_count += 1
            if pick.is_vice_captain:
                stats.vice_captain_count += 1
            if pick.position >= BENCH_START_POSITION:
                stats.bench_count += 1
            stats.multiplier_sum += pick.multiplier

    ranked = sorted(players.values(), key=lambda p: (-p.ownership, p.element))
    return PicksAggregate(players=ranked, formations=dict(formations), sample_size=sample_size)
