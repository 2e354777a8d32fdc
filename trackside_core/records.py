from __future__ import annotations

import datetime as dt
import re
from dataclasses import dataclass, field
from statistics import pstdev
from typing import Any, Dict, Iterable, List, Optional, Sequence

MAX_VALID_LAP_SECONDS = 200.0

RACE_EVENT_TYPE = "Race"
TIME_TRIAL_EVENT_TYPE = "TimeTrial"

_FRACTION = re.compile(r"\.(\d+)")


def is_valid_lap_time(length: float | None) -> bool:
    """A lap time counts towards statistics only when 0 < length < 200 seconds."""
    return length is not None and 0 < length < MAX_VALID_LAP_SECONDS


def lap_consistency(times: Sequence[float]) -> float | None:
    """Population standard deviation of lap times as a percentage of their mean."""
    if not times:
        return None
    mean = sum(times) / len(times)
    if mean <= 0:
        return None
    return pstdev(times) / mean * 100


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes", "y"}
    return bool(value)


def parse_timestamp(value: Any) -> dt.datetime | None:
    """Parse the timestamp strings written by the timing software.

    Both ISO 8601 and the ``2024/05/11 10:15:02.123`` form are accepted.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip().replace("/", "-")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # fromisoformat before 3.11 only takes 3 or 6 fractional digits
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        return dt.datetime.fromisoformat(text)
    except ValueError:
        return None


def _seconds_between(start: dt.datetime | None, end: dt.datetime | None) -> float | None:
    if start is None or end is None:
        return None
    if (start.tzinfo is None) != (end.tzinfo is None):
        return None
    return (end - start).total_seconds()


@dataclass(frozen=True)
class Event:
    name: str
    start: str | None = None
    event_type: str | None = None
    pilots_registered: int | None = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_json(cls, item: Dict[str, Any]) -> "Event":
        return cls(
            name=_as_str(item.get("Name")) or "",
            start=_as_str(item.get("Start")),
            event_type=_as_str(item.get("EventType")),
            pilots_registered=_as_int(item.get("PilotsRegistered")),
            raw=dict(item),
        )


@dataclass(frozen=True)
class Pilot:
    """A registered pilot. IDs are unique across an aggregation."""

    pilot_id: str
    name: str
    phonetic: str | None = None
    photo_path: str | None = None
    timing_sensitivity: int | None = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_json(cls, item: Dict[str, Any]) -> "Pilot | None":
        pilot_id = _as_str(item.get("ID"))
        if not pilot_id:
            return None
        return cls(
            pilot_id=pilot_id,
            name=_as_str(item.get("Name")) or pilot_id,
            phonetic=_as_str(item.get("Phonetic")),
            photo_path=_as_str(item.get("PhotoPath")),
            timing_sensitivity=_as_int(item.get("TimingSensitivityPercent")),
            raw=dict(item),
        )


@dataclass(frozen=True)
class Round:
    round_id: str
    round_number: int | None
    event_type: str | None
    valid: bool = True
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_json(cls, item: Dict[str, Any]) -> "Round | None":
        round_id = _as_str(item.get("ID"))
        if not round_id:
            return None
        return cls(
            round_id=round_id,
            round_number=_as_int(item.get("RoundNumber")),
            event_type=_as_str(item.get("EventType")),
            valid=_as_bool(item.get("Valid"), default=True),
            raw=dict(item),
        )


@dataclass(frozen=True)
class Lap:
    pilot_id: str
    lap_number: int
    length: float | None
    race_time: float | None = None  # cumulative race time at lap end
    detection_valid: bool = True

    @property
    def is_valid(self) -> bool:
        return self.detection_valid and is_valid_lap_time(self.length)


@dataclass(frozen=True)
class Result:
    pilot_id: str
    race_id: str | None
    position: int | None
    points: int = 0
    dnf: bool = False
    result_type: str | None = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_json(cls, item: Dict[str, Any]) -> "Result | None":
        pilot_id = _as_str(item.get("Pilot"))
        if not pilot_id:
            return None
        return cls(
            pilot_id=pilot_id,
            race_id=_as_str(item.get("Race")),
            position=_as_int(item.get("Position")),
            points=_as_int(item.get("Points")) or 0,
            dnf=_as_bool(item.get("DNF")),
            result_type=_as_str(item.get("ResultType")),
            raw=dict(item),
        )


@dataclass(frozen=True)
class Race:
    """A single heat or time trial with its laps and (optional) results."""

    race_id: str
    race_number: int | None
    round_id: str | None
    round_number: int | None
    event_type: str | None
    event_id: str | None = None
    laps: List[Lap] = field(default_factory=list)
    results: List[Result] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def has_results(self) -> bool:
        return bool(self.results)

    @property
    def is_time_trial(self) -> bool:
        return self.event_type == TIME_TRIAL_EVENT_TYPE

    def valid_laps_by_pilot(self) -> Dict[str, List[Lap]]:
        """Valid laps grouped per pilot, each list in lap-number order."""
        grouped: Dict[str, List[Lap]] = {}
        for lap in self.laps:
            if lap.is_valid:
                grouped.setdefault(lap.pilot_id, []).append(lap)
        for laps in grouped.values():
            laps.sort(key=lambda lap: lap.lap_number)
        return grouped

    def participants(self) -> List[str]:
        """Pilot IDs taking part, from results when present, else from laps."""
        source: Iterable[str]
        if self.results:
            source = (result.pilot_id for result in self.results)
        else:
            source = (lap.pilot_id for lap in self.laps)
        return list(dict.fromkeys(source))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.race_id,
            "eventId": self.event_id,
            "race": self.raw,
            "result": [result.raw for result in self.results] if self.results else None,
            "roundNumber": self.round_number,
            "eventType": self.event_type,
            "raceNumber": self.race_number,
        }


def laps_from_race(item: Dict[str, Any]) -> List[Lap]:
    """Build laps from a race record, resolving pilots through its detections."""

    detections: Dict[str, Dict[str, Any]] = {}
    for detection in item.get("Detections") or []:
        if isinstance(detection, dict) and detection.get("ID") is not None:
            detections[str(detection["ID"])] = detection

    race_start = parse_timestamp(item.get("Start"))
    pending: List[Dict[str, Any]] = []
    for index, raw_lap in enumerate(item.get("Laps") or []):
        if not isinstance(raw_lap, dict):
            continue
        detection = detections.get(str(raw_lap.get("Detection")), {})
        pilot_id = _as_str(raw_lap.get("Pilot")) or _as_str(detection.get("Pilot"))
        if not pilot_id:
            continue
        length = _as_float(raw_lap.get("LengthSeconds"))
        if length is None:
            length = _as_float(raw_lap.get("Length"))
        lap_number = _as_int(raw_lap.get("LapNumber"))
        pending.append(
            {
                "pilot_id": pilot_id,
                "lap_number": lap_number if lap_number is not None else index,
                "length": length,
                "end": parse_timestamp(raw_lap.get("EndTime")),
                "detection_valid": _as_bool(detection.get("Valid"), default=True),
            }
        )

    running: Dict[str, float] = {}
    race_times: Dict[int, float | None] = {}
    for position in sorted(range(len(pending)), key=lambda i: (pending[i]["pilot_id"], pending[i]["lap_number"])):
        lap = pending[position]
        length = lap["length"]
        if length is not None and length > 0:
            running[lap["pilot_id"]] = running.get(lap["pilot_id"], 0.0) + length
        elapsed = _seconds_between(race_start, lap["end"])
        if elapsed is None or elapsed <= 0:
            elapsed = running.get(lap["pilot_id"])
        race_times[position] = elapsed

    return [
        Lap(
            pilot_id=lap["pilot_id"],
            lap_number=lap["lap_number"],
            length=lap["length"],
            race_time=race_times[position],
            detection_valid=lap["detection_valid"],
        )
        for position, lap in enumerate(pending)
    ]


def fastest_lap(laps: Iterable[Lap]) -> Optional[float]:
    times = [lap.length for lap in laps if lap.is_valid]
    return min(times) if times else None
