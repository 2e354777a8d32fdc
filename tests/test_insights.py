from pathlib import Path
from statistics import pstdev
from typing import Dict, List

import pytest

from trackside_core import DataStore, Settings
from trackside_core.insights import (
    event_summary,
    fastest_lap_rankings,
    hole_shot_analysis,
    performance_gaps,
    personal_bests,
)
from trackside_core.loader import SourceFile, aggregate_files


def _race(race_id: str, round_number: int, race_number: int, laps: Dict[str, List[float]], event_type: str = "TimeTrial") -> SourceFile:
    raw_laps = [
        {"Pilot": pilot_id, "LapNumber": number, "LengthSeconds": length}
        for pilot_id, lengths in laps.items()
        for number, length in enumerate(lengths, start=1)
    ]
    payload = [
        {
            "ID": race_id,
            "RoundNumber": round_number,
            "RaceNumber": race_number,
            "EventType": event_type,
            "Laps": raw_laps,
        }
    ]
    return SourceFile(f"{race_id}/Race.json", payload)


def _pilots(*names: str) -> SourceFile:
    return SourceFile("Pilots.json", [{"ID": name, "Name": name.title()} for name in names])


def test_fastest_lap_and_consecutive_come_from_different_races() -> None:
    records = aggregate_files(
        [
            _race("tt1", 1, 1, {"A": [10.0, 10.0, 10.0]}),
            _race("tt2", 2, 1, {"A": [9.0, 9.0, 9.0]}),
            _race("tt9", 9, 1, {"A": [5.0, 5.0, 5.0]}),
        ]
    )
    rankings = fastest_lap_rankings(records)

    assert len(rankings) == 1
    assert rankings[0].fastest_lap == pytest.approx(9.0)
    assert rankings[0].best_consecutive == pytest.approx(27.0)
    assert rankings[0].round_number == 2


def test_fastest_lap_rankings_groups_and_hole_shot() -> None:
    records = aggregate_files(
        [
            _pilots("a", "b", "c"),
            _race("tt1", 1, 1, {"a": [12.0, 10.0, 10.0, 9.0], "b": [9.3, 9.9], "c": [10.5, 11.0]}),
            _race("h1", 1, 2, {"b": [8.0, 8.0]}, event_type="Race"),
        ]
    )
    rankings = fastest_lap_rankings(records, group_size=2)

    assert [(row.pilot_id, row.position, row.group) for row in rankings] == [("a", 1, 1), ("b", 2, 1), ("c", 3, 2)]
    assert rankings[0].pilot_name == "A"
    assert rankings[0].best_consecutive == pytest.approx(29.0)
    assert rankings[0].hole_shot == pytest.approx(12.0)
    assert rankings[0].hole_shot_round == 1
    assert rankings[1].best_consecutive is None
    assert rankings[1].hole_shot is None


def test_hole_shot_analysis_uses_every_race() -> None:
    records = aggregate_files(
        [
            _race("tt1", 1, 1, {"a": [12.0, 10.0, 10.0, 10.0]}),
            _race("h1", 6, 1, {"a": [5.0, 10.0, 10.0, 10.0], "b": [3.0, 10.0, 10.0, 10.0]}, event_type="Race"),
            _race("h2", 6, 2, {"c": [10.0, 10.0]}, event_type="Race"),
        ]
    )
    analysis = hole_shot_analysis(records)

    assert all(item.hole_shot > 0 for item in analysis.all_hole_shots)
    assert all(item.window_time < item.race_time for item in analysis.all_hole_shots)
    assert [(row.pilot_id, row.best_hole_shot) for row in analysis.rankings] == [("b", 3.0), ("a", 5.0)]
    ranking_a = analysis.rankings[1]
    assert ranking_a.improvements == 2
    assert ranking_a.average_hole_shot == pytest.approx(8.5)
    assert {item.race_id for item in analysis.all_hole_shots} == {"tt1", "h1"}


def test_performance_gaps_from_rankings() -> None:
    records = aggregate_files(
        [_race("tt1", 1, 1, {"a": [9.0, 9.5], "b": [9.3, 9.9], "c": [10.5, 11.0]})]
    )
    result = performance_gaps(fastest_lap_rankings(records))

    leader, second, third = result.gaps
    assert (leader.gap_to_leader, leader.gap_to_previous, leader.gap_percentage, leader.is_close) == (0.0, 0.0, 0.0, False)
    assert second.gap_to_previous == pytest.approx(0.3)
    assert second.is_close is True
    assert third.gap_to_leader == pytest.approx(1.5)
    assert third.gap_percentage == pytest.approx(1.2 / 9.3 * 100)
    assert third.is_close is False
    assert [gap.pilot_id for gap in result.close_competition] == ["b"]
    assert result.biggest_gap is not None and result.biggest_gap.pilot_id == "c"


def test_performance_gaps_empty() -> None:
    result = performance_gaps([])

    assert result.gaps == []
    assert result.biggest_gap is None


def test_personal_best_progression() -> None:
    records = aggregate_files(
        [
            _race("r1", 1, 1, {"a": [10.0, 10.0, 10.0]}),
            _race("r1b", 1, 2, {"b": [250.0]}),
            _race("r2", 2, 1, {"a": [10.5, 11.0]}, event_type="Race"),
            _race("r3", 3, 1, {"a": [9.5, 10.0]}, event_type="Race"),
            _race("r4", 4, 1, {"a": [9.8]}, event_type="Race"),
        ]
    )
    progress = personal_bests(records)

    assert [item.pilot_id for item in progress] == ["a"]
    pilot = progress[0]
    assert pilot.current_pb == pytest.approx(9.5)
    assert pilot.pb_count == 2
    assert pilot.total_improvement == pytest.approx(0.5)
    assert [(entry.race_id, entry.index) for entry in pilot.personal_bests] == [("r1", 0), ("r3", 3)]
    assert pilot.personal_bests[0].improvement is None
    assert pilot.personal_bests[1].improvement == pytest.approx(0.5)
    assert [form.round_number for form in pilot.recent_form] == [2, 3, 4]
    assert pilot.total_rounds == 4

    laps = [10.0, 10.0, 10.0, 10.5, 11.0, 9.5, 10.0, 9.8]
    mean = sum(laps) / len(laps)
    assert pilot.average_time == pytest.approx(mean)
    assert pilot.consistency == pytest.approx(pstdev(laps) / mean * 100)


def test_personal_bests_sorted_by_current_pb() -> None:
    records = aggregate_files(
        [_race("r1", 1, 1, {"slow": [12.0], "fast": [9.0], "mid": [10.0]})]
    )

    assert [item.pilot_id for item in personal_bests(records)] == ["fast", "mid", "slow"]


def test_event_summary_for_sample_event(data_root: Path) -> None:
    records = DataStore(Settings(data_path=data_root)).load_event("club-night")
    summary = event_summary(records)

    assert summary.total_pilots == 4
    assert summary.total_races == 4
    assert summary.race_breakdown == "2 races, 2 time trials"
    assert summary.total_laps == 19
    assert summary.fastest_lap == pytest.approx(18.5)
    assert summary.fastest_pilot == "Bruno"
    assert summary.completion_rate == pytest.approx(75.0)
    assert summary.dnf_rate == pytest.approx(25.0)
