"""Classify loose JSON payloads into record kinds.

The checks run in a fixed order and later checks assume every earlier one
failed, so the order below is part of the contract:

1. Exact filename match (case-insensitive) on ``event.json``, ``pilots.json``,
   ``rounds.json``, ``race.json`` or ``result.json``.
2. An empty array is ``EMPTY``.
3. For arrays, the first element is tested for, in order: event, pilots,
   rounds, race, result, then the loose pilots fallback.
4. A single object is only tested for event, race and result.
5. Anything else is ``UNKNOWN``.
"""

from __future__ import annotations

import enum
from pathlib import PurePath
from typing import Any, Callable, Dict, List, Tuple


class RecordKind(enum.Enum):
    EVENT = "event"
    PILOTS = "pilots"
    ROUNDS = "rounds"
    RACE = "race"
    RESULT = "result"
    EMPTY = "empty"
    UNKNOWN = "unknown"


FILENAME_KINDS: Dict[str, RecordKind] = {
    "event.json": RecordKind.EVENT,
    "pilots.json": RecordKind.PILOTS,
    "rounds.json": RecordKind.ROUNDS,
    "race.json": RecordKind.RACE,
    "result.json": RecordKind.RESULT,
}

PILOT_METADATA_FIELDS = ("Phonetic", "PhotoPath", "TimingSensitivityPercent")


def _has(item: Dict[str, Any], *keys: str) -> bool:
    return all(item.get(key) is not None for key in keys)


def _has_any(item: Dict[str, Any], *keys: str) -> bool:
    return any(item.get(key) is not None for key in keys)


def looks_like_event(item: Dict[str, Any]) -> bool:
    return _has(item, "Name", "EventType", "Start")


def looks_like_pilot(item: Dict[str, Any]) -> bool:
    return _has(item, "ID", "Name") and _has_any(item, *PILOT_METADATA_FIELDS)


def looks_like_round(item: Dict[str, Any]) -> bool:
    return _has(item, "RoundNumber", "EventType")


def looks_like_race(item: Dict[str, Any]) -> bool:
    if _has(item, "Laps"):
        return True
    return _has(item, "RoundNumber") and _has_any(item, "StartTime", "EndTime")


def looks_like_result(item: Dict[str, Any]) -> bool:
    return _has(item, "Position", "Pilot")


def looks_like_loose_pilot(item: Dict[str, Any]) -> bool:
    return _has(item, "ID", "Name") and not _has_any(item, "RoundNumber", "Position", "Laps")


Predicate = Callable[[Dict[str, Any]], bool]

ARRAY_CHECKS: List[Tuple[Predicate, RecordKind]] = [
    (looks_like_event, RecordKind.EVENT),
    (looks_like_pilot, RecordKind.PILOTS),
    (looks_like_round, RecordKind.ROUNDS),
    (looks_like_race, RecordKind.RACE),
    (looks_like_result, RecordKind.RESULT),
    (looks_like_loose_pilot, RecordKind.PILOTS),
]

OBJECT_CHECKS: List[Tuple[Predicate, RecordKind]] = [
    (looks_like_event, RecordKind.EVENT),
    (looks_like_race, RecordKind.RACE),
    (looks_like_result, RecordKind.RESULT),
]


def _first_match(item: Any, checks: List[Tuple[Predicate, RecordKind]]) -> RecordKind:
    if not isinstance(item, dict):
        return RecordKind.UNKNOWN
    for predicate, kind in checks:
        if predicate(item):
            return kind
    return RecordKind.UNKNOWN


def classify(payload: Any, filename: str) -> RecordKind:
    """Return the record kind of a parsed JSON payload read from ``filename``."""

    by_name = FILENAME_KINDS.get(PurePath(filename).name.lower())
    if by_name is not None:
        return by_name

    if isinstance(payload, list):
        if not payload:
            return RecordKind.EMPTY
        return _first_match(payload[0], ARRAY_CHECKS)

    return _first_match(payload, OBJECT_CHECKS)
