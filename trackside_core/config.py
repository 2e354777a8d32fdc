from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional


logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 20
DEFAULT_GROUP_SIZE = 4
DEFAULT_READ_WORKERS = 8


def default_data_paths(env: Mapping[str, str] | None = None) -> List[Path]:
    """Locations FPVTrackside writes its event folders to, most specific first."""

    env = os.environ if env is None else env
    home = env.get("USERPROFILE") or env.get("HOME") or str(Path.home())
    candidates = [
        Path.cwd() / "Users" / "WCMRC" / "AppData" / "Local" / "FPVTrackside" / "events",
        Path(home) / "AppData" / "Local" / "FPVTrackside" / "events",
    ]
    username = env.get("USERNAME")
    if username:
        candidates.append(Path("C:/") / "Users" / username / "AppData" / "Local" / "FPVTrackside" / "events")
    return candidates


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %s", name, raw, default)
        return default
    if value < 1:
        logger.warning("Ignoring non-positive %s=%r; using %s", name, raw, default)
        return default
    return value


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, resolved once when constructed.

    Args:
        data_path: Directory holding one folder per event, or None when no
            data directory could be found.
        max_depth: Maximum directory depth walked below a scan root.
        group_size: Pilots per group in the fastest-lap rankings.
        read_workers: Threads used to read files during a scan.
    """

    data_path: Optional[Path] = None
    max_depth: int = DEFAULT_MAX_DEPTH
    group_size: int = DEFAULT_GROUP_SIZE
    read_workers: int = DEFAULT_READ_WORKERS

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if env is None else env
        explicit = env.get("TRACKSIDE_DATA_PATH", "").strip()
        if explicit:
            data_path: Optional[Path] = Path(explicit).expanduser()
        else:
            data_path = next((path for path in default_data_paths(env) if path.is_dir()), None)

        if data_path is None:
            logger.info("No FPVTrackside data directory found")
        else:
            logger.info("Using FPVTrackside data at %s", data_path)

        return cls(
            data_path=data_path,
            max_depth=_int_setting(env, "TRACKSIDE_MAX_DEPTH", DEFAULT_MAX_DEPTH),
            group_size=_int_setting(env, "TRACKSIDE_GROUP_SIZE", DEFAULT_GROUP_SIZE),
            read_workers=_int_setting(env, "TRACKSIDE_READ_WORKERS", DEFAULT_READ_WORKERS),
        )

    @property
    def data_path_found(self) -> bool:
        return self.data_path is not None and self.data_path.is_dir()
