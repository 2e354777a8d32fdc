from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from .grading import UNKNOWN_GRADE, GradeAssignment, RoundStructure, assign_grades
from .loader import RecordSet
from .records import RACE_EVENT_TYPE, Result, lap_consistency
from .seeding import SeedingEntry, compute_seeding

STARTING_POINTS = 20

CorrectedPointsTable = Dict[str, Dict[str, int]]


def points_for_rank(rank: int) -> int:
    """Points for a 0-based global rank: 20, 19, ... 1, then 0."""
    return max(0, STARTING_POINTS - rank)


def global_ranking(structure: RoundStructure) -> List[Result]:
    """Results of a graded round, grade-major, DNF-next, position-minor."""

    grades = {assignment.race_id: assignment.grade for assignment in structure.assignments}
    races = sorted(structure.races, key=lambda race: grades.get(race.race_id, UNKNOWN_GRADE))
    ranking: List[Result] = []
    for race in races:
        ranking.extend(
            sorted(
                race.results,
                key=lambda result: (result.dnf, result.position is None, result.position or 0),
            )
        )
    return ranking


def corrected_round_points(structure: RoundStructure) -> Dict[str, int]:
    points: Dict[str, int] = {}
    for rank, result in enumerate(global_ranking(structure)):
        # a pilot listed twice keeps their better rank
        points.setdefault(result.pilot_id, points_for_rank(rank))
    return points


def corrected_points_table(structures: Sequence[RoundStructure]) -> CorrectedPointsTable:
    return {
        structure.round_id: corrected_round_points(structure)
        for structure in structures
        if structure.is_racing_round and structure.round_id is not None
    }


@dataclass(frozen=True)
class Standing:
    position: int
    pilot_id: str
    pilot_name: str
    points: int
    recorded_points: int
    races: int
    wins: int
    podiums: int
    dnfs: int
    best_lap: float | None
    average_lap: float | None
    consistency: float | None


@dataclass(frozen=True)
class EnhancedStandings:
    standings: List[Standing] = field(default_factory=list)
    race_structure: List[RoundStructure] = field(default_factory=list)
    grade_assignments: List[GradeAssignment] = field(default_factory=list)
    corrected_points: CorrectedPointsTable = field(default_factory=dict)
    seeding: List[SeedingEntry] = field(default_factory=list)


def build_enhanced_standings(records: RecordSet) -> EnhancedStandings:
    """Season standings built from the corrected cross-grade points."""

    seeding = compute_seeding(records)
    structures = assign_grades(records, seeding)
    corrected = corrected_points_table(structures)

    names = records.pilot_names()
    pilot_ids = list(names)
    for race in records.races:
        for result in race.results:
            if result.pilot_id not in names:
                pilot_ids.append(result.pilot_id)
    pilot_ids = list(dict.fromkeys(pilot_ids))

    totals = {pilot_id: 0 for pilot_id in pilot_ids}
    for round_points in corrected.values():
        for pilot_id, value in round_points.items():
            totals[pilot_id] = totals.get(pilot_id, 0) + value

    race_results: Dict[str, List[Result]] = {pilot_id: [] for pilot_id in pilot_ids}
    lap_times: Dict[str, List[float]] = {pilot_id: [] for pilot_id in pilot_ids}
    for race in records.races:
        if race.event_type == RACE_EVENT_TYPE:
            for result in race.results:
                race_results.setdefault(result.pilot_id, []).append(result)
        for lap in race.laps:
            if lap.is_valid and lap.length is not None:
                lap_times.setdefault(lap.pilot_id, []).append(lap.length)

    rows = []
    for pilot_id in totals:
        results = race_results.get(pilot_id, [])
        times = lap_times.get(pilot_id, [])
        rows.append(
            {
                "pilot_id": pilot_id,
                "pilot_name": names.get(pilot_id, "Unknown"),
                "points": totals[pilot_id],
                "recorded_points": sum(result.points for result in results),
                "races": len(results),
                "wins": sum(1 for result in results if result.position == 1 and not result.dnf),
                "podiums": sum(1 for result in results if result.position is not None and result.position <= 3 and not result.dnf),
                "dnfs": sum(1 for result in results if result.dnf),
                "best_lap": min(times) if times else None,
                "average_lap": sum(times) / len(times) if times else None,
                "consistency": lap_consistency(times),
            }
        )

    rows.sort(key=lambda row: (-row["points"], -row["wins"], row["pilot_name"].lower(), row["pilot_id"]))
    standings = [Standing(position=index, **row) for index, row in enumerate(rows, start=1)]

    return EnhancedStandings(
        standings=standings,
        race_structure=structures,
        grade_assignments=[assignment for structure in structures for assignment in structure.assignments],
        corrected_points=corrected,
        seeding=seeding,
    )
