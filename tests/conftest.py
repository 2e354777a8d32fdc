from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Tuple

import pytest


def write_json(path: Path, payload: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def detected_race(
    race_id: str,
    round_id: str,
    race_number: int,
    laps: Dict[str, List[float]],
) -> Dict[str, Any]:
    """Race record in the timing software's layout: laps point at detections."""

    detections: List[Dict[str, Any]] = []
    race_laps: List[Dict[str, Any]] = []
    for pilot_id, lengths in laps.items():
        for lap_number, length in enumerate(lengths, start=1):
            detection_id = f"{race_id}-{pilot_id}-{lap_number}"
            detections.append({"ID": detection_id, "Pilot": pilot_id, "Valid": True})
            race_laps.append(
                {
                    "ID": f"lap-{detection_id}",
                    "Detection": detection_id,
                    "LapNumber": lap_number,
                    "LengthSeconds": length,
                }
            )
    return {
        "ID": race_id,
        "RaceNumber": race_number,
        "Round": round_id,
        "Event": "ev1",
        "Valid": True,
        "Laps": race_laps,
        "Detections": detections,
    }


def placings(race_id: str, rows: List[Tuple[str, int, bool]]) -> List[Dict[str, Any]]:
    return [
        {
            "ID": f"{race_id}-{pilot_id}",
            "Pilot": pilot_id,
            "Race": race_id,
            "Position": position,
            "Points": max(0, 5 - position),
            "DNF": dnf,
            "ResultType": "Race",
        }
        for pilot_id, position, dnf in rows
    ]


@pytest.fixture
def data_root(tmp_path: Path) -> Path:
    """A data directory holding one complete event folder named ``club-night``."""

    event_dir = tmp_path / "club-night"
    write_json(
        event_dir / "Event.json",
        [
            {
                "ID": "ev1",
                "Name": "Club Night",
                "EventType": "Race",
                "Start": "2024/05/11 18:00:00",
                "PilotsRegistered": 4,
                "Races": ["tt1", "tt2", "h1", "h2"],
            }
        ],
    )
    write_json(
        event_dir / "Pilots.json",
        [
            {"ID": "p1", "Name": "Alice", "Phonetic": "alice"},
            {"ID": "p2", "Name": "Bruno", "Phonetic": "bruno"},
            {"ID": "p3", "Name": "Chen", "PhotoPath": "chen.jpg"},
            {"ID": "p4", "Name": "Dara", "TimingSensitivityPercent": 100},
        ],
    )
    write_json(
        event_dir / "Rounds.json",
        [
            {"ID": "r1", "RoundNumber": 1, "EventType": "TimeTrial", "Valid": True},
            {"ID": "r2", "RoundNumber": 2, "EventType": "Race", "Valid": True},
        ],
    )
    write_json(
        event_dir / "tt1" / "Race.json",
        [detected_race("tt1", "r1", 1, {"p1": [20.0, 20.0, 20.0], "p2": [21.0, 21.0, 21.0]})],
    )
    write_json(
        event_dir / "tt2" / "Race.json",
        [detected_race("tt2", "r1", 2, {"p3": [22.0, 22.0, 22.0], "p4": [23.0, 23.0, 23.0]})],
    )
    write_json(
        event_dir / "h1" / "Race.json",
        [detected_race("h1", "r2", 1, {"p1": [19.5, 19.0], "p2": [19.0, 18.5]})],
    )
    write_json(event_dir / "h1" / "Result.json", placings("h1", [("p2", 1, False), ("p1", 2, False)]))
    write_json(
        event_dir / "h2" / "Race.json",
        [detected_race("h2", "r2", 2, {"p3": [22.5, 22.0], "p4": [23.5]})],
    )
    write_json(event_dir / "h2" / "Result.json", placings("h2", [("p3", 1, False), ("p4", 2, True)]))
    write_json(event_dir / "notes.json", {"comment": "not a timing record"})
    (event_dir / "broken.json").write_text("{not json", encoding="utf-8")
    return tmp_path
