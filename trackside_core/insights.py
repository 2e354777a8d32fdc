from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .config import DEFAULT_GROUP_SIZE
from .loader import RecordSet
from .records import RACE_EVENT_TYPE, TIME_TRIAL_EVENT_TYPE, Race, lap_consistency
from .seeding import CONSECUTIVE_LAPS, ConsecutiveWindow, best_consecutive, qualifying_races

CLOSE_GAP_SECONDS = 0.5
RECENT_ROUNDS = 3


# ----------------------------------------------------------------------
# Fastest lap rankings


@dataclass(frozen=True)
class FastestLapRanking:
    position: int
    group: int
    pilot_id: str
    pilot_name: str
    fastest_lap: float
    round_number: int | None
    best_consecutive: float | None = None
    hole_shot: float | None = None
    hole_shot_round: int | None = None


def fastest_lap_rankings(records: RecordSet, group_size: int = DEFAULT_GROUP_SIZE) -> List[FastestLapRanking]:
    """Rank pilots by their fastest single time-trial lap in rounds 1-4."""

    names = records.pilot_names()
    fastest: Dict[str, Tuple[float, int | None]] = {}
    consecutive: Dict[str, Tuple[ConsecutiveWindow, int | None]] = {}

    for race in qualifying_races(records.races):
        for pilot_id, laps in race.valid_laps_by_pilot().items():
            race_best = min(lap.length or 0.0 for lap in laps)
            if pilot_id not in fastest or race_best < fastest[pilot_id][0]:
                fastest[pilot_id] = (race_best, race.round_number)

            window = best_consecutive(laps)
            if window is not None and (pilot_id not in consecutive or window.total < consecutive[pilot_id][0].total):
                consecutive[pilot_id] = (window, race.round_number)

    ordered = sorted(fastest.items(), key=lambda item: (item[1][0], item[0]))
    size = max(1, group_size)
    rankings: List[FastestLapRanking] = []
    for position, (pilot_id, (lap_time, round_number)) in enumerate(ordered, start=1):
        best_total = hole_shot = hole_shot_round = None
        if pilot_id in consecutive:
            window, window_round = consecutive[pilot_id]
            best_total = window.total
            end_time = window.end_lap.race_time
            if end_time is not None and end_time - window.total > 0:
                hole_shot = end_time - window.total
                hole_shot_round = window_round
        rankings.append(
            FastestLapRanking(
                position=position,
                group=math.ceil(position / size),
                pilot_id=pilot_id,
                pilot_name=names.get(pilot_id, "Unknown"),
                fastest_lap=lap_time,
                round_number=round_number,
                best_consecutive=best_total,
                hole_shot=hole_shot,
                hole_shot_round=hole_shot_round,
            )
        )
    return rankings


# ----------------------------------------------------------------------
# Hole shot analysis


@dataclass(frozen=True)
class HoleShotObservation:
    pilot_id: str
    pilot_name: str
    race_id: str
    round_number: int | None
    race_number: int | None
    start_lap: int
    window_time: float
    race_time: float
    hole_shot: float


@dataclass(frozen=True)
class HoleShotRanking:
    position: int
    pilot_id: str
    pilot_name: str
    best_hole_shot: float
    improvements: int
    average_hole_shot: float


@dataclass(frozen=True)
class HoleShotAnalysis:
    rankings: List[HoleShotRanking] = field(default_factory=list)
    all_hole_shots: List[HoleShotObservation] = field(default_factory=list)


def hole_shot_analysis(records: RecordSet) -> HoleShotAnalysis:
    """Time spent before each three-lap run, across every race."""

    names = records.pilot_names()
    observations: List[HoleShotObservation] = []
    for race in records.races:
        for pilot_id, laps in race.valid_laps_by_pilot().items():
            if len(laps) < CONSECUTIVE_LAPS:
                continue
            for start in range(len(laps) - CONSECUTIVE_LAPS + 1):
                window = laps[start:start + CONSECUTIVE_LAPS]
                window_time = sum(lap.length or 0.0 for lap in window)
                race_time = window[-1].race_time
                if race_time is None or not 0 < window_time < race_time:
                    continue
                observations.append(
                    HoleShotObservation(
                        pilot_id=pilot_id,
                        pilot_name=names.get(pilot_id, "Unknown"),
                        race_id=race.race_id,
                        round_number=race.round_number,
                        race_number=race.race_number,
                        start_lap=window[0].lap_number,
                        window_time=window_time,
                        race_time=race_time,
                        hole_shot=race_time - window_time,
                    )
                )

    per_pilot: Dict[str, List[float]] = {}
    for observation in observations:
        per_pilot.setdefault(observation.pilot_id, []).append(observation.hole_shot)

    ordered = sorted(per_pilot.items(), key=lambda item: (min(item[1]), item[0]))
    rankings = [
        HoleShotRanking(
            position=position,
            pilot_id=pilot_id,
            pilot_name=names.get(pilot_id, "Unknown"),
            best_hole_shot=min(values),
            improvements=len(values),
            average_hole_shot=sum(values) / len(values),
        )
        for position, (pilot_id, values) in enumerate(ordered, start=1)
    ]
    return HoleShotAnalysis(rankings=rankings, all_hole_shots=observations)


# ----------------------------------------------------------------------
# Performance gaps


@dataclass(frozen=True)
class PerformanceGap:
    position: int
    pilot_id: str
    pilot_name: str
    lap_time: float
    gap_to_leader: float
    gap_to_previous: float
    gap_percentage: float
    is_close: bool


@dataclass(frozen=True)
class PerformanceGaps:
    gaps: List[PerformanceGap] = field(default_factory=list)
    close_competition: List[PerformanceGap] = field(default_factory=list)
    biggest_gap: PerformanceGap | None = None


def performance_gaps(rankings: Sequence[FastestLapRanking]) -> PerformanceGaps:
    if not rankings:
        return PerformanceGaps()

    leader = rankings[0]
    gaps = [
        PerformanceGap(
            position=leader.position,
            pilot_id=leader.pilot_id,
            pilot_name=leader.pilot_name,
            lap_time=leader.fastest_lap,
            gap_to_leader=0.0,
            gap_to_previous=0.0,
            gap_percentage=0.0,
            is_close=False,
        )
    ]
    for previous, current in zip(rankings, rankings[1:]):
        gap_to_previous = current.fastest_lap - previous.fastest_lap
        gaps.append(
            PerformanceGap(
                position=current.position,
                pilot_id=current.pilot_id,
                pilot_name=current.pilot_name,
                lap_time=current.fastest_lap,
                gap_to_leader=current.fastest_lap - leader.fastest_lap,
                gap_to_previous=gap_to_previous,
                gap_percentage=gap_to_previous / previous.fastest_lap * 100,
                is_close=gap_to_previous < CLOSE_GAP_SECONDS,
            )
        )

    chasers = gaps[1:]
    return PerformanceGaps(
        gaps=gaps,
        close_competition=[gap for gap in chasers if gap.is_close],
        biggest_gap=max(chasers, key=lambda gap: gap.gap_to_previous) if chasers else None,
    )


# ----------------------------------------------------------------------
# Personal bests


@dataclass(frozen=True)
class PersonalBestEntry:
    time: float
    round_number: int | None
    race_number: int | None
    race_id: str
    improvement: float | None
    index: int


@dataclass(frozen=True)
class RoundForm:
    round_number: int | None
    best_lap: float
    average_lap: float
    laps: int


@dataclass(frozen=True)
class PilotProgress:
    pilot_id: str
    pilot_name: str
    current_pb: float
    pb_count: int
    total_improvement: float
    average_time: float
    consistency: float | None
    personal_bests: List[PersonalBestEntry] = field(default_factory=list)
    recent_form: List[RoundForm] = field(default_factory=list)
    total_rounds: int = 0


def chronological(races: Sequence[Race]) -> List[Race]:
    return sorted(
        races,
        key=lambda race: (
            race.round_number is None,
            race.round_number or 0,
            race.race_number is None,
            race.race_number or 0,
            race.race_id,
        ),
    )


def personal_bests(records: RecordSet) -> List[PilotProgress]:
    """Track each pilot's personal-best lap as the event progresses."""

    names = records.pilot_names()
    current: Dict[str, float] = {}
    history: Dict[str, List[PersonalBestEntry]] = {}
    all_laps: Dict[str, List[float]] = {}
    rounds: Dict[str, Dict[Optional[int], List[float]]] = {}

    for index, race in enumerate(chronological(records.races)):
        for pilot_id, laps in race.valid_laps_by_pilot().items():
            times = [lap.length or 0.0 for lap in laps]
            all_laps.setdefault(pilot_id, []).extend(times)
            rounds.setdefault(pilot_id, {}).setdefault(race.round_number, []).extend(times)

            race_best = min(times)
            previous = current.get(pilot_id)
            if previous is not None and race_best >= previous:
                continue
            current[pilot_id] = race_best
            history.setdefault(pilot_id, []).append(
                PersonalBestEntry(
                    time=race_best,
                    round_number=race.round_number,
                    race_number=race.race_number,
                    race_id=race.race_id,
                    improvement=None if previous is None else previous - race_best,
                    index=index,
                )
            )

    progress: List[PilotProgress] = []
    for pilot_id, entries in history.items():
        times = all_laps[pilot_id]
        pilot_rounds = rounds[pilot_id]
        recent = list(pilot_rounds.items())[-RECENT_ROUNDS:]
        progress.append(
            PilotProgress(
                pilot_id=pilot_id,
                pilot_name=names.get(pilot_id, "Unknown"),
                current_pb=current[pilot_id],
                pb_count=len(entries),
                total_improvement=entries[0].time - current[pilot_id],
                average_time=sum(times) / len(times),
                consistency=lap_consistency(times),
                personal_bests=entries,
                recent_form=[
                    RoundForm(
                        round_number=round_number,
                        best_lap=min(round_times),
                        average_lap=sum(round_times) / len(round_times),
                        laps=len(round_times),
                    )
                    for round_number, round_times in recent
                ],
                total_rounds=len(pilot_rounds),
            )
        )

    progress.sort(key=lambda item: (item.current_pb, item.pilot_id))
    return progress


# ----------------------------------------------------------------------
# Event summary


@dataclass(frozen=True)
class EventSummary:
    total_pilots: int
    total_races: int
    race_count: int
    time_trial_count: int
    total_laps: int
    average_laps_per_race: float
    fastest_lap: float | None
    fastest_pilot: str | None
    completion_rate: float
    dnf_rate: float
    average_consistency: float | None

    @property
    def race_breakdown(self) -> str:
        return f"{self.race_count} races, {self.time_trial_count} time trials"


def event_summary(records: RecordSet) -> EventSummary:
    names = records.pilot_names()
    lap_times: Dict[str, List[float]] = {}
    fastest: Tuple[float, str] | None = None
    for race in records.races:
        for lap in race.laps:
            if not lap.is_valid or lap.length is None:
                continue
            lap_times.setdefault(lap.pilot_id, []).append(lap.length)
            if fastest is None or lap.length < fastest[0]:
                fastest = (lap.length, lap.pilot_id)

    race_results = [
        result
        for race in records.races
        for result in race.results
        if result.result_type in (None, RACE_EVENT_TYPE)
    ]
    dnfs = sum(1 for result in race_results if result.dnf)
    total_laps = sum(len(times) for times in lap_times.values())
    consistencies = [
        value
        for value in (lap_consistency(times) for times in lap_times.values() if len(times) > 1)
        if value is not None
    ]

    return EventSummary(
        total_pilots=len(records.pilots),
        total_races=len(records.races),
        race_count=sum(1 for race in records.races if race.event_type == RACE_EVENT_TYPE),
        time_trial_count=sum(1 for race in records.races if race.event_type == TIME_TRIAL_EVENT_TYPE),
        total_laps=total_laps,
        average_laps_per_race=total_laps / len(records.races) if records.races else 0.0,
        fastest_lap=fastest[0] if fastest else None,
        fastest_pilot=names.get(fastest[1], "Unknown") if fastest else None,
        completion_rate=(len(race_results) - dnfs) / len(race_results) * 100 if race_results else 0.0,
        dnf_rate=dnfs / len(race_results) * 100 if race_results else 0.0,
        average_consistency=sum(consistencies) / len(consistencies) if consistencies else None,
    )
