from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from trackside_core import Settings


@pytest.fixture
def client(data_root: Path) -> TestClient:
    return TestClient(create_app(Settings(data_path=data_root)))


def test_health_reports_data_path(client: TestClient, data_root: Path) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "dataPathFound": True, "dataPath": str(data_root)}


def test_missing_data_directory_returns_404(tmp_path: Path) -> None:
    client = TestClient(create_app(Settings(data_path=tmp_path / "missing")))

    assert client.get("/api/health").json()["dataPathFound"] is False
    assert client.get("/api/events").status_code == 404
    assert client.get("/api/data").status_code == 404


def test_list_events(client: TestClient) -> None:
    events = client.get("/api/events").json()

    assert [event["id"] for event in events] == ["club-night"]
    assert events[0]["eventType"] == "Race"


def test_event_data_includes_races_and_diagnostics(client: TestClient) -> None:
    response = client.get("/api/events/club-night")

    assert response.status_code == 200
    payload = response.json()
    assert payload["event"]["Name"] == "Club Night"
    assert len(payload["pilots"]) == 4
    races = {race["id"]: race for race in payload["races"]}
    assert races["tt1"]["result"] is None
    assert races["h1"]["roundNumber"] == 2
    assert len(races["h1"]["result"]) == 2
    assert payload["diagnostics"] == {"unknownFiles": ["notes.json"], "skippedFiles": ["broken.json"]}


def test_unknown_event_returns_404(client: TestClient) -> None:
    assert client.get("/api/events/nope").status_code == 404
    assert client.get("/api/events/nope/enhanced-standings").status_code == 404


def test_all_data_shape(client: TestClient) -> None:
    payload = client.get("/api/data").json()

    assert set(payload) == {"events", "pilots", "rounds", "races"}
    assert payload["races"][0]["eventId"] == "ev1"


def test_enhanced_standings(client: TestClient) -> None:
    payload = client.get("/api/events/club-night/enhanced-standings").json()

    assert payload["correctedPoints"] == {"r2": {"p2": 20, "p1": 19, "p3": 18, "p4": 17}}
    assert payload["standings"][0]["pilot"] == {"id": "p2", "name": "Bruno"}
    assert {item["raceId"]: item["grade"] for item in payload["gradeAssignments"]} == {"h1": "A", "h2": "B"}
    structure = {item["roundId"]: item for item in payload["raceStructure"]}
    assert structure["r1"]["isRacingRound"] is False
    assert structure["r2"]["pilotsPerGrade"] == 2
    assert payload["seeding"][0]["bestConsecutive"] == 60.0


def test_insight_endpoints(client: TestClient) -> None:
    fastest = client.get("/api/insights/fastest-lap-rankings", params={"eventId": "club-night"}).json()
    assert [row["pilot"]["id"] for row in fastest] == ["p1", "p2", "p3", "p4"]
    assert fastest[0]["fastestLapTime"] == 20.0
    assert fastest[0]["group"] == 1

    gaps = client.get("/api/insights/performance-gaps").json()
    assert gaps["gaps"][1]["gapToPrevious"] == pytest.approx(1.0)
    assert gaps["biggestGap"]["pilot"]["id"] in {"p2", "p3", "p4"}

    holes = client.get("/api/insights/hole-shot-analysis").json()
    assert holes == {"rankings": [], "allHoleShots": []}

    bests = client.get("/api/insights/personal-bests").json()
    assert bests[0]["pilotId"] == "p2"
    assert bests[0]["currentPB"] == 18.5

    summary = client.get("/api/insights/summary").json()
    assert summary["raceBreakdown"] == "2 races, 2 time trials"
