from __future__ import annotations

import json
import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from .classifier import RecordKind, classify, looks_like_event
from .config import Settings
from .records import Event, Pilot, Race, Result, Round, _as_bool, _as_int, _as_str, laps_from_race


logger = logging.getLogger(__name__)

RACE_FIELDS = ("Laps", "Detections", "RaceNumber", "Start", "PilotChannels", "Round", "Event")
RACE_FILENAME = "race.json"


class MissingDataRoot(FileNotFoundError):
    """The configured data directory does not exist."""


@dataclass(frozen=True)
class SourceFile:
    """One parsed JSON file, addressed relative to the scan root."""

    relative_path: str
    payload: Any

    @property
    def name(self) -> str:
        return PurePosixPath(self.relative_path).name

    @property
    def directory(self) -> str:
        parent = PurePosixPath(self.relative_path).parent.as_posix()
        return "" if parent == "." else parent

    @property
    def top_level_directory(self) -> str | None:
        parts = PurePosixPath(self.relative_path).parts
        return parts[0] if len(parts) > 1 else None


@dataclass(frozen=True)
class RecordSet:
    """Records merged from one directory snapshot."""

    events: List[Event] = field(default_factory=list)
    pilots: List[Pilot] = field(default_factory=list)
    rounds: List[Round] = field(default_factory=list)
    races: List[Race] = field(default_factory=list)
    results: List[Result] = field(default_factory=list)
    unknown_files: List[str] = field(default_factory=list)
    skipped_files: List[str] = field(default_factory=list)

    @property
    def event(self) -> Event | None:
        return next((event for event in self.events if event.name), self.events[0] if self.events else None)

    def pilot_names(self) -> Dict[str, str]:
        return {pilot.pilot_id: pilot.name for pilot in self.pilots}

    def to_payload(self) -> Dict[str, Any]:
        return {
            "events": [event.raw for event in self.events],
            "pilots": [pilot.raw for pilot in self.pilots],
            "rounds": [round_.raw for round_ in self.rounds],
            "races": [race.to_payload() for race in self.races],
        }


def _items(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        return [payload]
    return []


def _is_race_like(item: Dict[str, Any]) -> bool:
    return any(item.get(key) is not None for key in RACE_FIELDS)


def _is_race_file(source: SourceFile) -> bool:
    return source.name.lower() == RACE_FILENAME


def _race_id(item: Dict[str, Any], source: SourceFile) -> str:
    explicit = _as_str(item.get("ID"))
    if explicit:
        return explicit
    if source.directory:
        return PurePosixPath(source.directory).name
    return f"race-{_as_str(item.get('RaceNumber')) or '0'}-round-{_as_str(item.get('Round')) or '0'}"


def aggregate_files(files: Sequence[SourceFile], skipped_files: Iterable[str] = ()) -> RecordSet:
    """Classify parsed files and merge them into one record set.

    Pilots are deduplicated by ID with the last file processed winning, so
    callers control precedence through the order of ``files``.
    Races are deduplicated by canonical ID the same way, except that a copy
    never displaces the one read from a ``Race.json`` file. Races marked
    ``Valid: false`` are dropped.
    """

    by_kind: Dict[RecordKind, List[SourceFile]] = {kind: [] for kind in RecordKind}
    unknown: List[str] = []
    for source in files:
        kind = classify(source.payload, source.name)
        if kind is RecordKind.UNKNOWN:
            logger.info("Unrecognised JSON file %s; excluded from aggregation", source.relative_path)
            unknown.append(source.relative_path)
        elif kind is RecordKind.EMPTY:
            logger.debug("Empty JSON array in %s", source.relative_path)
        by_kind[kind].append(source)

    events = [
        Event.from_json(item)
        for source in by_kind[RecordKind.EVENT]
        for item in _items(source.payload)
    ]

    pilots: Dict[str, Pilot] = {}
    for source in by_kind[RecordKind.PILOTS]:
        for item in _items(source.payload):
            pilot = Pilot.from_json(item)
            if pilot is None:
                continue
            previous = pilots.get(pilot.pilot_id)
            if previous is not None and previous.name != pilot.name:
                logger.debug(
                    "Pilot %s renamed from %r to %r by %s",
                    pilot.pilot_id,
                    previous.name,
                    pilot.name,
                    source.relative_path,
                )
            pilots[pilot.pilot_id] = pilot

    rounds: List[Round] = []
    rounds_by_id: Dict[str, Round] = {}
    for source in by_kind[RecordKind.ROUNDS]:
        for item in _items(source.payload):
            round_ = Round.from_json(item)
            if round_ is None:
                continue
            rounds.append(round_)
            rounds_by_id[round_.round_id] = round_

    results: List[Result] = []
    results_by_race: Dict[str, List[Result]] = {}
    results_by_dir: Dict[str, List[Result]] = {}
    for source in by_kind[RecordKind.RESULT]:
        for item in _items(source.payload):
            result = Result.from_json(item)
            if result is None:
                continue
            results.append(result)
            if result.race_id:
                results_by_race.setdefault(result.race_id, []).append(result)
            if source.directory:
                results_by_dir.setdefault(source.directory, []).append(result)

    chosen: Dict[str, Tuple[Dict[str, Any], SourceFile]] = {}
    for source in by_kind[RecordKind.RACE]:
        for item in _items(source.payload):
            if not _is_race_like(item):
                continue
            race_id = _race_id(item, source)
            previous = chosen.get(race_id)
            if previous is not None:
                if _is_race_file(previous[1]) and not _is_race_file(source):
                    logger.debug("Ignoring copy of race %s in %s", race_id, source.relative_path)
                    continue
                logger.debug(
                    "Race %s in %s replaced by %s",
                    race_id,
                    previous[1].relative_path,
                    source.relative_path,
                )
            chosen[race_id] = (item, source)

    races: List[Race] = []
    for race_id, (item, source) in chosen.items():
        if not _as_bool(item.get("Valid"), default=True):
            logger.debug("Race %s in %s is marked invalid; skipped", race_id, source.relative_path)
            continue
        race_results = results_by_race.get(race_id)
        if race_results is None and source.directory:
            race_results = results_by_dir.get(source.directory)

        round_id = _as_str(item.get("Round"))
        round_number = _as_int(item.get("RoundNumber"))
        event_type = _as_str(item.get("EventType"))
        linked_round = rounds_by_id.get(round_id) if round_id else None
        if linked_round is not None:
            if round_number is None:
                round_number = linked_round.round_number
            if event_type is None:
                event_type = linked_round.event_type
        if round_number is None or event_type is None:
            logger.debug("Race %s has no resolvable round metadata", race_id)

        races.append(
            Race(
                race_id=race_id,
                race_number=_as_int(item.get("RaceNumber")),
                round_id=round_id,
                round_number=round_number,
                event_type=event_type,
                event_id=_as_str(item.get("Event")) or source.top_level_directory,
                laps=laps_from_race(item),
                results=list(race_results or []),
                raw=dict(item),
            )
        )

    logger.info(
        "Data loaded: %s events, %s pilots, %s races (%s with results)",
        len(events),
        len(pilots),
        len(races),
        sum(1 for race in races if race.results),
    )

    return RecordSet(
        events=events,
        pilots=list(pilots.values()),
        rounds=rounds,
        races=races,
        results=results,
        unknown_files=unknown,
        skipped_files=list(skipped_files),
    )


class DataStore:
    """Reads FPVTrackside event folders from disk into record sets."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings if settings is not None else Settings.from_env()

    def data_root(self) -> Path:
        root = self.settings.data_path
        if root is None or not root.is_dir():
            raise MissingDataRoot(f"FPVTrackside data directory not found: {root}")
        return root

    def list_events(self) -> List[Dict[str, Any]]:
        """Return a summary of every event folder directly below the data root."""
        root = self.data_root()
        events: List[Dict[str, Any]] = []
        for event_dir in sorted(root.iterdir(), key=lambda p: p.name):
            if not event_dir.is_dir():
                continue
            event = self._read_event_summary(event_dir)
            if event is None:
                continue
            events.append(
                {
                    "id": event_dir.name,
                    "name": event.name,
                    "start": event.start,
                    "eventType": event.event_type,
                    "pilotsRegistered": event.pilots_registered,
                    "path": str(event_dir),
                }
            )
        return events

    def load_event(self, event_id: str) -> RecordSet:
        root = self.data_root()
        if not event_id or event_id in {".", ".."} or "/" in event_id or "\\" in event_id:
            raise LookupError(f"Event not found: {event_id}")
        event_dir = root / event_id
        if not event_dir.is_dir():
            raise LookupError(f"Event not found: {event_id}")
        return self.aggregate(event_dir)

    def load_all(self) -> RecordSet:
        return self.aggregate(self.data_root())

    def aggregate(self, root: Path) -> RecordSet:
        """Read every JSON file below ``root`` and merge them.

        All files are read before any of them is classified.
        """
        if not root.is_dir():
            raise MissingDataRoot(f"Data directory not found: {root}")
        sources, skipped = self.read_files(root, self.discover_files(root))
        return aggregate_files(sources, skipped)

    def discover_files(self, root: Path) -> List[Path]:
        """Breadth-first walk for ``.json`` files, bounded by ``max_depth``."""
        found: List[Path] = []
        seen: set[Path] = set()
        queue: Deque[Tuple[Path, int]] = deque([(root, 0)])
        while queue:
            directory, depth = queue.popleft()
            try:
                real = directory.resolve()
                entries = sorted(directory.iterdir(), key=lambda p: p.name)
            except OSError as exc:
                logger.warning("Skipping unreadable directory %s: %s", directory, exc)
                continue
            if real in seen:
                continue
            seen.add(real)

            for entry in entries:
                if entry.is_dir():
                    if depth < self.settings.max_depth:
                        queue.append((entry, depth + 1))
                    else:
                        logger.warning("Not descending into %s: depth limit %s reached", entry, self.settings.max_depth)
                elif entry.suffix.lower() == ".json" and entry.is_file():
                    found.append(entry)
        return found

    def read_files(self, root: Path, paths: Sequence[Path]) -> Tuple[List[SourceFile], List[str]]:
        workers = max(1, min(self.settings.read_workers, len(paths) or 1))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            loaded = list(pool.map(self._read_json_file, paths))

        sources: List[SourceFile] = []
        skipped: List[str] = []
        for path, (payload, error) in zip(paths, loaded):
            relative = path.relative_to(root).as_posix()
            if error is not None:
                logger.warning("Skipping %s due to read error: %s", relative, error)
                skipped.append(relative)
                continue
            sources.append(SourceFile(relative_path=relative, payload=payload))
        return sources, skipped

    @staticmethod
    def _read_json_file(path: Path) -> Tuple[Any, Optional[str]]:
        try:
            with path.open("r", encoding="utf-8-sig") as handle:
                return json.load(handle), None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            return None, str(exc)

    def _read_event_summary(self, event_dir: Path) -> Event | None:
        for path in sorted(event_dir.glob("*.json"), key=lambda p: p.name):
            payload, error = self._read_json_file(path)
            if error is not None:
                logger.warning("Skipping %s due to read error: %s", path, error)
                continue
            if classify(payload, path.name) is not RecordKind.EVENT:
                continue
            items = [item for item in _items(payload) if looks_like_event(item) or item.get("Name")]
            if items:
                return Event.from_json(items[0])
        return None
