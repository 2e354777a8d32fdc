from pathlib import Path
from typing import List, Tuple

from trackside_core import DataStore, Settings, build_enhanced_standings
from trackside_core.grading import GradeAssignment, RoundStructure
from trackside_core.points import corrected_round_points, global_ranking, points_for_rank
from trackside_core.records import Race, Result


def _race(race_id: str, rows: List[Tuple[str, int, bool]]) -> Race:
    return Race(
        race_id=race_id,
        race_number=None,
        round_id="r2",
        round_number=2,
        event_type="Race",
        results=[
            Result(pilot_id=pilot_id, race_id=race_id, position=position, dnf=dnf)
            for pilot_id, position, dnf in rows
        ],
    )


def _structure(graded: List[Tuple[Race, str]]) -> RoundStructure:
    return RoundStructure(
        round_id="r2",
        round_number=2,
        event_type="Race",
        is_racing_round=True,
        pilots_per_grade=4,
        races=[race for race, _ in graded],
        assignments=[
            GradeAssignment(race_id=race.race_id, round_id="r2", round_number=2, race_number=None, grade=grade)
            for race, grade in graded
        ],
    )


def test_dnf_sinks_within_its_own_grade() -> None:
    structure = _structure(
        [
            (_race("hb", [("Z", 1, False)]), "B"),
            (_race("ha", [("Y", 2, True), ("X", 1, False)]), "A"),
        ]
    )

    assert [result.pilot_id for result in global_ranking(structure)] == ["X", "Y", "Z"]
    assert corrected_round_points(structure) == {"X": 20, "Y": 19, "Z": 18}


def test_points_floor_at_zero() -> None:
    assert points_for_rank(0) == 20
    assert points_for_rank(19) == 1
    assert points_for_rank(20) == 0
    assert points_for_rank(35) == 0


def test_large_round_gives_zero_beyond_twenty() -> None:
    rows = [(f"p{i:02d}", i, False) for i in range(1, 25)]
    points = corrected_round_points(_structure([(_race("ha", rows), "A")]))

    assert points["p01"] == 20
    assert points["p20"] == 1
    assert [points[f"p{i}"] for i in range(21, 25)] == [0, 0, 0, 0]
    assert all(isinstance(value, int) and value >= 0 for value in points.values())


def test_last_non_dnf_pilot_gets_twenty_minus_rank() -> None:
    rows = [("a", 1, False), ("b", 2, False), ("c", 3, False), ("d", 4, True)]
    points = corrected_round_points(_structure([(_race("ha", rows), "A")]))

    assert points["c"] == 18
    assert points["d"] == 17


def test_enhanced_standings_for_sample_event(data_root: Path) -> None:
    records = DataStore(Settings(data_path=data_root)).load_event("club-night")
    standings = build_enhanced_standings(records)

    assert [entry.pilot_id for entry in standings.seeding] == ["p1", "p2", "p3", "p4"]
    assert {a.race_id: a.grade for a in standings.grade_assignments} == {"h1": "A", "h2": "B"}
    assert standings.corrected_points == {"r2": {"p2": 20, "p1": 19, "p3": 18, "p4": 17}}

    rows = {row.pilot_id: row for row in standings.standings}
    assert [row.pilot_id for row in standings.standings] == ["p2", "p1", "p3", "p4"]
    assert rows["p2"].position == 1
    assert rows["p2"].wins == 1
    assert rows["p4"].dnfs == 1
    assert rows["p4"].podiums == 0
    assert rows["p2"].recorded_points == 4
    assert rows["p1"].best_lap == 19.0

    racing = [s for s in standings.race_structure if s.is_racing_round]
    assert [s.round_id for s in racing] == ["r2"]
    assert racing[0].pilots_per_grade == 2
