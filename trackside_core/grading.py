from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .loader import RecordSet
from .records import RACE_EVENT_TYPE, Race
from .seeding import SeedingEntry, compute_seeding, seeding_positions

UNSEEDED_POSITION = 999
UNKNOWN_GRADE = "U"


@dataclass(frozen=True)
class GradeAssignment:
    race_id: str
    round_id: str | None
    round_number: int | None
    race_number: int | None
    grade: str
    seeding_positions: Dict[str, int] = field(default_factory=dict)
    average_position: float | None = None


@dataclass(frozen=True)
class RoundStructure:
    """How one round's races were graded."""

    round_id: str | None
    round_number: int | None
    event_type: str | None
    is_racing_round: bool
    pilots_per_grade: int | None
    races: List[Race] = field(default_factory=list)
    assignments: List[GradeAssignment] = field(default_factory=list)

    def grade_of(self, race_id: str) -> str:
        for assignment in self.assignments:
            if assignment.race_id == race_id:
                return assignment.grade
        return UNKNOWN_GRADE


def round_key(race: Race) -> str | None:
    if race.round_id:
        return race.round_id
    if race.round_number is not None:
        return str(race.round_number)
    return None


def group_by_round(races: Sequence[Race]) -> Dict[Optional[str], List[Race]]:
    rounds: Dict[Optional[str], List[Race]] = {}
    for race in races:
        rounds.setdefault(round_key(race), []).append(race)
    return rounds


def is_racing_round(races: Sequence[Race]) -> bool:
    """A round is graded when it holds results and is either split or a Race round."""
    if not any(race.has_results for race in races):
        return False
    if len(races) > 1:
        return True
    return any(race.event_type == RACE_EVENT_TYPE for race in races)


def pilots_per_grade(total_seeded: int, num_races: int) -> int:
    if num_races <= 0:
        return max(1, total_seeded)
    return max(1, math.ceil(total_seeded / num_races))


def grade_for_average(average: float, per_grade: int) -> str:
    if average <= per_grade:
        return "A"
    if average <= 2 * per_grade:
        return "B"
    if average <= 3 * per_grade:
        return "C"
    return "D"


def grade_for_race_number(race_number: int | None) -> str:
    if race_number is None or not 1 <= race_number <= 26:
        return UNKNOWN_GRADE
    return chr(ord("A") + race_number - 1)


def _grade_race(race: Race, positions: Dict[str, int], per_grade: int, key: str | None) -> GradeAssignment:
    participants = race.participants()
    seeded = {pilot_id: positions[pilot_id] for pilot_id in participants if pilot_id in positions}
    if seeded:
        average = sum(positions.get(pilot_id, UNSEEDED_POSITION) for pilot_id in participants) / len(participants)
        grade = grade_for_average(average, per_grade)
    else:
        average = None
        grade = grade_for_race_number(race.race_number)
    return GradeAssignment(
        race_id=race.race_id,
        round_id=key,
        round_number=race.round_number,
        race_number=race.race_number,
        grade=grade,
        seeding_positions=seeded,
        average_position=average,
    )


def assign_grades(records: RecordSet, seeding: Sequence[SeedingEntry] | None = None) -> List[RoundStructure]:
    """Grade the races of every racing round against the qualifying seeding."""

    if seeding is None:
        seeding = compute_seeding(records)
    positions = seeding_positions(seeding)

    structures: List[RoundStructure] = []
    for key, races in group_by_round(records.races).items():
        races = sorted(races, key=lambda race: (race.race_number is None, race.race_number or 0, race.race_id))
        round_number = next((race.round_number for race in races if race.round_number is not None), None)
        event_type = next((race.event_type for race in races if race.event_type), None)

        if key is None:
            structures.append(
                RoundStructure(
                    round_id=None,
                    round_number=None,
                    event_type=event_type,
                    is_racing_round=False,
                    pilots_per_grade=None,
                    races=races,
                    assignments=[
                        GradeAssignment(
                            race_id=race.race_id,
                            round_id=None,
                            round_number=None,
                            race_number=race.race_number,
                            grade=UNKNOWN_GRADE,
                        )
                        for race in races
                    ],
                )
            )
            continue

        if not is_racing_round(races):
            structures.append(
                RoundStructure(
                    round_id=key,
                    round_number=round_number,
                    event_type=event_type,
                    is_racing_round=False,
                    pilots_per_grade=None,
                    races=races,
                )
            )
            continue

        per_grade = pilots_per_grade(len(positions), len(races))
        structures.append(
            RoundStructure(
                round_id=key,
                round_number=round_number,
                event_type=event_type,
                is_racing_round=True,
                pilots_per_grade=per_grade,
                races=races,
                assignments=[_grade_race(race, positions, per_grade, key) for race in races],
            )
        )

    structures.sort(key=lambda s: (s.round_number is None, s.round_number or 0, s.round_id or ""))
    return structures
