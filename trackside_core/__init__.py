"""Season reconstruction and performance insights for FPVTrackside exports."""

from .classifier import RecordKind, classify
from .config import Settings
from .loader import DataStore, MissingDataRoot, RecordSet
from .points import EnhancedStandings, build_enhanced_standings

__all__ = [
    "RecordKind",
    "classify",
    "Settings",
    "DataStore",
    "MissingDataRoot",
    "RecordSet",
    "EnhancedStandings",
    "build_enhanced_standings",
]
