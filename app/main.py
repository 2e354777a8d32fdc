from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

from trackside_core import DataStore, MissingDataRoot, RecordSet, Settings, build_enhanced_standings
from trackside_core.insights import (
    FastestLapRanking,
    PerformanceGap,
    event_summary,
    fastest_lap_rankings,
    hole_shot_analysis,
    performance_gaps,
    personal_bests,
)

logger = logging.getLogger(__name__)


class PilotRefModel(BaseModel):
    id: str
    name: str


class HealthResponse(BaseModel):
    status: str
    data_path_found: bool = Field(alias="dataPathFound")
    data_path: Optional[str] = Field(default=None, alias="dataPath")

    model_config = ConfigDict(populate_by_name=True)


class EventListItemModel(BaseModel):
    id: str
    name: str
    start: Optional[str] = None
    event_type: Optional[str] = Field(default=None, alias="eventType")
    pilots_registered: Optional[int] = Field(default=None, alias="pilotsRegistered")
    path: str

    model_config = ConfigDict(populate_by_name=True)


class RaceRecordModel(BaseModel):
    id: str
    event_id: Optional[str] = Field(default=None, alias="eventId")
    race: Dict[str, Any]
    result: Optional[List[Dict[str, Any]]] = None
    round_number: Optional[int] = Field(default=None, alias="roundNumber")
    event_type: Optional[str] = Field(default=None, alias="eventType")
    race_number: Optional[int] = Field(default=None, alias="raceNumber")

    model_config = ConfigDict(populate_by_name=True)


class DiagnosticsModel(BaseModel):
    unknown_files: List[str] = Field(default_factory=list, alias="unknownFiles")
    skipped_files: List[str] = Field(default_factory=list, alias="skippedFiles")

    model_config = ConfigDict(populate_by_name=True)


class EventDataResponse(BaseModel):
    event: Optional[Dict[str, Any]] = None
    pilots: List[Dict[str, Any]]
    rounds: List[Dict[str, Any]]
    races: List[RaceRecordModel]
    diagnostics: DiagnosticsModel


class AllDataResponse(BaseModel):
    events: List[Dict[str, Any]]
    pilots: List[Dict[str, Any]]
    rounds: List[Dict[str, Any]]
    races: List[RaceRecordModel]


class FastestLapRankingModel(BaseModel):
    position: int
    group: int
    pilot: PilotRefModel
    fastest_lap_time: float = Field(alias="fastestLapTime")
    round: Optional[int] = None
    best_consecutive: Optional[float] = Field(default=None, alias="bestConsecutive")
    hole_shot: Optional[float] = Field(default=None, alias="holeShot")
    hole_shot_round: Optional[int] = Field(default=None, alias="holeShotRound")

    model_config = ConfigDict(populate_by_name=True)


class HoleShotRankingModel(BaseModel):
    position: int
    pilot: PilotRefModel
    best_hole_shot: float = Field(alias="bestHoleShot")
    improvements: int
    average_hole_shot: float = Field(alias="averageHoleShot")

    model_config = ConfigDict(populate_by_name=True)


class HoleShotObservationModel(BaseModel):
    pilot: PilotRefModel
    race_id: str = Field(alias="raceId")
    round_number: Optional[int] = Field(default=None, alias="roundNumber")
    race_number: Optional[int] = Field(default=None, alias="raceNumber")
    start_lap: int = Field(alias="startLap")
    window_time: float = Field(alias="windowTime")
    race_time: float = Field(alias="raceTime")
    hole_shot: float = Field(alias="holeShot")

    model_config = ConfigDict(populate_by_name=True)


class HoleShotAnalysisResponse(BaseModel):
    rankings: List[HoleShotRankingModel]
    all_hole_shots: List[HoleShotObservationModel] = Field(alias="allHoleShots")

    model_config = ConfigDict(populate_by_name=True)


class PerformanceGapModel(BaseModel):
    position: int
    pilot: PilotRefModel
    lap_time: float = Field(alias="lapTime")
    gap_to_leader: float = Field(alias="gapToLeader")
    gap_to_previous: float = Field(alias="gapToPrevious")
    gap_percentage: float = Field(alias="gapPercentage")
    is_close: bool = Field(alias="isClose")

    model_config = ConfigDict(populate_by_name=True)


class PerformanceGapsResponse(BaseModel):
    gaps: List[PerformanceGapModel]
    close_competition: List[PerformanceGapModel] = Field(alias="closeCompetition")
    biggest_gap: Optional[PerformanceGapModel] = Field(default=None, alias="biggestGap")

    model_config = ConfigDict(populate_by_name=True)


class PersonalBestEntryModel(BaseModel):
    time: float
    round_number: Optional[int] = Field(default=None, alias="roundNumber")
    race_number: Optional[int] = Field(default=None, alias="raceNumber")
    race_id: str = Field(alias="raceId")
    improvement: Optional[float] = None
    index: int

    model_config = ConfigDict(populate_by_name=True)


class RoundFormModel(BaseModel):
    round_number: Optional[int] = Field(default=None, alias="roundNumber")
    best_lap: float = Field(alias="bestLap")
    average_lap: float = Field(alias="averageLap")
    laps: int

    model_config = ConfigDict(populate_by_name=True)


class PilotProgressModel(BaseModel):
    pilot_id: str = Field(alias="pilotId")
    pilot_name: str = Field(alias="pilotName")
    current_pb: float = Field(alias="currentPB")
    pb_count: int = Field(alias="pbCount")
    total_improvement: float = Field(alias="totalImprovement")
    average_time: float = Field(alias="averageTime")
    consistency: Optional[float] = None
    personal_bests: List[PersonalBestEntryModel] = Field(alias="personalBests")
    recent_form: List[RoundFormModel] = Field(alias="recentForm")
    total_rounds: int = Field(alias="totalRounds")

    model_config = ConfigDict(populate_by_name=True)


class EventSummaryModel(BaseModel):
    total_pilots: int = Field(alias="totalPilots")
    total_races: int = Field(alias="totalRaces")
    race_breakdown: str = Field(alias="raceBreakdown")
    total_laps: int = Field(alias="totalLaps")
    avg_laps_per_race: float = Field(alias="avgLapsPerRace")
    fastest_lap: Optional[float] = Field(default=None, alias="fastestLap")
    fastest_pilot: Optional[str] = Field(default=None, alias="fastestPilot")
    completion_rate: float = Field(alias="completionRate")
    dnf_rate: float = Field(alias="dnfRate")
    avg_consistency: Optional[float] = Field(default=None, alias="avgConsistency")

    model_config = ConfigDict(populate_by_name=True)


class StandingModel(BaseModel):
    position: int
    pilot: PilotRefModel
    points: int
    recorded_points: int = Field(alias="recordedPoints")
    races: int
    wins: int
    podiums: int
    dnfs: int
    best_lap_time: Optional[float] = Field(default=None, alias="bestLapTime")
    avg_lap_time: Optional[float] = Field(default=None, alias="avgLapTime")
    consistency: Optional[float] = None

    model_config = ConfigDict(populate_by_name=True)


class GradeAssignmentModel(BaseModel):
    race_id: str = Field(alias="raceId")
    round_id: Optional[str] = Field(default=None, alias="roundId")
    round_number: Optional[int] = Field(default=None, alias="roundNumber")
    race_number: Optional[int] = Field(default=None, alias="raceNumber")
    grade: str
    seeding_positions: Dict[str, int] = Field(default_factory=dict, alias="seedingPositions")
    average_position: Optional[float] = Field(default=None, alias="averagePosition")

    model_config = ConfigDict(populate_by_name=True)


class StructureRaceModel(BaseModel):
    race_id: str = Field(alias="raceId")
    race_number: Optional[int] = Field(default=None, alias="raceNumber")
    grade: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class RoundStructureModel(BaseModel):
    round_id: Optional[str] = Field(default=None, alias="roundId")
    round_number: Optional[int] = Field(default=None, alias="roundNumber")
    event_type: Optional[str] = Field(default=None, alias="eventType")
    is_racing_round: bool = Field(alias="isRacingRound")
    pilots_per_grade: Optional[int] = Field(default=None, alias="pilotsPerGrade")
    races: List[StructureRaceModel]

    model_config = ConfigDict(populate_by_name=True)


class SeedingEntryModel(BaseModel):
    position: int
    pilot: PilotRefModel
    best_consecutive: float = Field(alias="bestConsecutive")
    best_lap: float = Field(alias="bestLap")
    race_id: str = Field(alias="raceId")

    model_config = ConfigDict(populate_by_name=True)


class EnhancedStandingsResponse(BaseModel):
    standings: List[StandingModel]
    race_structure: List[RoundStructureModel] = Field(alias="raceStructure")
    grade_assignments: List[GradeAssignmentModel] = Field(alias="gradeAssignments")
    corrected_points: Dict[str, Dict[str, int]] = Field(alias="correctedPoints")
    seeding: List[SeedingEntryModel]

    model_config = ConfigDict(populate_by_name=True)


def get_store(request: Request) -> DataStore:
    return request.app.state.store


def _race_models(records: RecordSet) -> List[RaceRecordModel]:
    return [RaceRecordModel(**race.to_payload()) for race in records.races]


def _load(store: DataStore, event_id: Optional[str] = None) -> RecordSet:
    try:
        if event_id:
            return store.load_event(event_id)
        return store.load_all()
    except MissingDataRoot as exc:
        raise HTTPException(
            status_code=404,
            detail="FPVTrackside data directory not found. Please ensure FPVTrackside is installed and has event data",
        ) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


def _fastest_lap_model(row: FastestLapRanking) -> FastestLapRankingModel:
    return FastestLapRankingModel(
        position=row.position,
        group=row.group,
        pilot=PilotRefModel(id=row.pilot_id, name=row.pilot_name),
        fastestLapTime=row.fastest_lap,
        round=row.round_number,
        bestConsecutive=row.best_consecutive,
        holeShot=row.hole_shot,
        holeShotRound=row.hole_shot_round,
    )


def _gap_model(gap: PerformanceGap) -> PerformanceGapModel:
    return PerformanceGapModel(
        position=gap.position,
        pilot=PilotRefModel(id=gap.pilot_id, name=gap.pilot_name),
        lapTime=gap.lap_time,
        gapToLeader=gap.gap_to_leader,
        gapToPrevious=gap.gap_to_previous,
        gapPercentage=gap.gap_percentage,
        isClose=gap.is_close,
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the API around one explicitly constructed configuration."""

    settings = settings if settings is not None else Settings.from_env()
    api = FastAPI(title="FPV Trackside Results API", version="1.0.0")
    api.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    api.state.settings = settings
    api.state.store = DataStore(settings)

    @api.get("/api/health", response_model=HealthResponse)
    def health():
        return HealthResponse(
            status="ok",
            dataPathFound=settings.data_path_found,
            dataPath=str(settings.data_path) if settings.data_path_found else None,
        )

    @api.get("/api/events", response_model=List[EventListItemModel])
    def list_events(store: DataStore = Depends(get_store)):
        try:
            events = store.list_events()
        except MissingDataRoot as exc:
            raise HTTPException(status_code=404, detail="FPVTrackside data directory not found") from exc
        return [EventListItemModel(**event) for event in events]

    @api.get("/api/events/{event_id}", response_model=EventDataResponse)
    def event_data(event_id: str, store: DataStore = Depends(get_store)):
        records = _load(store, event_id)
        event = records.event
        return EventDataResponse(
            event=event.raw if event is not None else None,
            pilots=[pilot.raw for pilot in records.pilots],
            rounds=[round_.raw for round_ in records.rounds],
            races=_race_models(records),
            diagnostics=DiagnosticsModel(
                unknownFiles=records.unknown_files,
                skippedFiles=records.skipped_files,
            ),
        )

    @api.get("/api/data", response_model=AllDataResponse)
    def all_data(store: DataStore = Depends(get_store)):
        records = _load(store)
        payload = records.to_payload()
        return AllDataResponse(
            events=payload["events"],
            pilots=payload["pilots"],
            rounds=payload["rounds"],
            races=_race_models(records),
        )

    @api.get("/api/events/{event_id}/enhanced-standings", response_model=EnhancedStandingsResponse)
    def enhanced_standings(event_id: str, store: DataStore = Depends(get_store)):
        result = build_enhanced_standings(_load(store, event_id))
        return EnhancedStandingsResponse(
            standings=[
                StandingModel(
                    position=row.position,
                    pilot=PilotRefModel(id=row.pilot_id, name=row.pilot_name),
                    points=row.points,
                    recordedPoints=row.recorded_points,
                    races=row.races,
                    wins=row.wins,
                    podiums=row.podiums,
                    dnfs=row.dnfs,
                    bestLapTime=row.best_lap,
                    avgLapTime=row.average_lap,
                    consistency=row.consistency,
                )
                for row in result.standings
            ],
            raceStructure=[
                RoundStructureModel(
                    roundId=structure.round_id,
                    roundNumber=structure.round_number,
                    eventType=structure.event_type,
                    isRacingRound=structure.is_racing_round,
                    pilotsPerGrade=structure.pilots_per_grade,
                    races=[
                        StructureRaceModel(
                            raceId=race.race_id,
                            raceNumber=race.race_number,
                            grade=structure.grade_of(race.race_id) if structure.assignments else None,
                        )
                        for race in structure.races
                    ],
                )
                for structure in result.race_structure
            ],
            gradeAssignments=[
                GradeAssignmentModel(
                    raceId=assignment.race_id,
                    roundId=assignment.round_id,
                    roundNumber=assignment.round_number,
                    raceNumber=assignment.race_number,
                    grade=assignment.grade,
                    seedingPositions=assignment.seeding_positions,
                    averagePosition=assignment.average_position,
                )
                for assignment in result.grade_assignments
            ],
            correctedPoints=result.corrected_points,
            seeding=[
                SeedingEntryModel(
                    position=position,
                    pilot=PilotRefModel(id=entry.pilot_id, name=entry.name),
                    bestConsecutive=entry.best_consecutive,
                    bestLap=entry.best_lap,
                    raceId=entry.race_id,
                )
                for position, entry in enumerate(result.seeding, start=1)
            ],
        )

    @api.get("/api/insights/fastest-lap-rankings", response_model=List[FastestLapRankingModel])
    def fastest_laps(
        eventId: Optional[str] = Query(default=None, alias="eventId"),
        store: DataStore = Depends(get_store),
    ):
        rankings = fastest_lap_rankings(_load(store, eventId), group_size=settings.group_size)
        return [_fastest_lap_model(row) for row in rankings]

    @api.get("/api/insights/hole-shot-analysis", response_model=HoleShotAnalysisResponse)
    def hole_shots(
        eventId: Optional[str] = Query(default=None, alias="eventId"),
        store: DataStore = Depends(get_store),
    ):
        analysis = hole_shot_analysis(_load(store, eventId))
        return HoleShotAnalysisResponse(
            rankings=[
                HoleShotRankingModel(
                    position=row.position,
                    pilot=PilotRefModel(id=row.pilot_id, name=row.pilot_name),
                    bestHoleShot=row.best_hole_shot,
                    improvements=row.improvements,
                    averageHoleShot=row.average_hole_shot,
                )
                for row in analysis.rankings
            ],
            allHoleShots=[
                HoleShotObservationModel(
                    pilot=PilotRefModel(id=item.pilot_id, name=item.pilot_name),
                    raceId=item.race_id,
                    roundNumber=item.round_number,
                    raceNumber=item.race_number,
                    startLap=item.start_lap,
                    windowTime=item.window_time,
                    raceTime=item.race_time,
                    holeShot=item.hole_shot,
                )
                for item in analysis.all_hole_shots
            ],
        )

    @api.get("/api/insights/performance-gaps", response_model=PerformanceGapsResponse)
    def gaps(
        eventId: Optional[str] = Query(default=None, alias="eventId"),
        store: DataStore = Depends(get_store),
    ):
        result = performance_gaps(fastest_lap_rankings(_load(store, eventId), group_size=settings.group_size))
        return PerformanceGapsResponse(
            gaps=[_gap_model(gap) for gap in result.gaps],
            closeCompetition=[_gap_model(gap) for gap in result.close_competition],
            biggestGap=_gap_model(result.biggest_gap) if result.biggest_gap is not None else None,
        )

    @api.get("/api/insights/personal-bests", response_model=List[PilotProgressModel])
    def pilot_personal_bests(
        eventId: Optional[str] = Query(default=None, alias="eventId"),
        store: DataStore = Depends(get_store),
    ):
        return [
            PilotProgressModel(
                pilotId=item.pilot_id,
                pilotName=item.pilot_name,
                currentPB=item.current_pb,
                pbCount=item.pb_count,
                totalImprovement=item.total_improvement,
                averageTime=item.average_time,
                consistency=item.consistency,
                personalBests=[
                    PersonalBestEntryModel(
                        time=entry.time,
                        roundNumber=entry.round_number,
                        raceNumber=entry.race_number,
                        raceId=entry.race_id,
                        improvement=entry.improvement,
                        index=entry.index,
                    )
                    for entry in item.personal_bests
                ],
                recentForm=[
                    RoundFormModel(
                        roundNumber=form.round_number,
                        bestLap=form.best_lap,
                        averageLap=form.average_lap,
                        laps=form.laps,
                    )
                    for form in item.recent_form
                ],
                totalRounds=item.total_rounds,
            )
            for item in personal_bests(_load(store, eventId))
        ]

    @api.get("/api/insights/summary", response_model=EventSummaryModel)
    def summary(
        eventId: Optional[str] = Query(default=None, alias="eventId"),
        store: DataStore = Depends(get_store),
    ):
        result = event_summary(_load(store, eventId))
        return EventSummaryModel(
            totalPilots=result.total_pilots,
            totalRaces=result.total_races,
            raceBreakdown=result.race_breakdown,
            totalLaps=result.total_laps,
            avgLapsPerRace=result.average_laps_per_race,
            fastestLap=result.fastest_lap,
            fastestPilot=result.fastest_pilot,
            completionRate=result.completion_rate,
            dnfRate=result.dnf_rate,
            avgConsistency=result.average_consistency,
        )

    return api


app = create_app()
