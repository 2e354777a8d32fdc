from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence

from .loader import RecordSet
from .records import Lap, Race

QUALIFYING_MAX_ROUND = 4
CONSECUTIVE_LAPS = 3


@dataclass(frozen=True)
class ConsecutiveWindow:
    total: float
    start_index: int
    end_lap: Lap


@dataclass(frozen=True)
class SeedingEntry:
    pilot_id: str
    name: str
    best_consecutive: float
    best_lap: float
    race_id: str


def best_consecutive(laps: Sequence[Lap], size: int = CONSECUTIVE_LAPS) -> ConsecutiveWindow | None:
    """Fastest run of ``size`` consecutive laps, or None with too few laps.

    ``laps`` must already be valid laps in lap-number order.
    """
    if len(laps) < size:
        return None
    best: ConsecutiveWindow | None = None
    for start in range(len(laps) - size + 1):
        total = sum(lap.length or 0.0 for lap in laps[start:start + size])
        if best is None or total < best.total:
            best = ConsecutiveWindow(total=total, start_index=start, end_lap=laps[start + size - 1])
    return best


def qualifying_races(races: Iterable[Race], max_round: int = QUALIFYING_MAX_ROUND) -> List[Race]:
    return [
        race
        for race in races
        if race.is_time_trial and race.round_number is not None and race.round_number <= max_round
    ]


def compute_seeding(records: RecordSet) -> List[SeedingEntry]:
    """Rank pilots by their best three consecutive time-trial laps."""

    names = records.pilot_names()
    best: Dict[str, SeedingEntry] = {}
    for race in qualifying_races(records.races):
        for pilot_id, laps in race.valid_laps_by_pilot().items():
            window = best_consecutive(laps)
            if window is None:
                continue
            current = best.get(pilot_id)
            if current is not None and current.best_consecutive <= window.total:
                continue
            best[pilot_id] = SeedingEntry(
                pilot_id=pilot_id,
                name=names.get(pilot_id, "Unknown"),
                best_consecutive=window.total,
                best_lap=min(lap.length or 0.0 for lap in laps),
                race_id=race.race_id,
            )

    return sorted(best.values(), key=lambda entry: (entry.best_consecutive, entry.pilot_id))


def seeding_positions(seeding: Sequence[SeedingEntry]) -> Dict[str, int]:
    """Map pilot ID to its 1-based seeding position."""
    return {entry.pilot_id: position for position, entry in enumerate(seeding, start=1)}
