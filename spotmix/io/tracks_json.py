from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from spotmix.model.types import Timeline, Track
from spotmix.util.validate import CURRENT_SCHEMA_VERSION, migrate_track_list, validate_tracks


def _read_data(p: Path) -> Any:
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ValueError(f"invalid YAML in {p}: {e}") from e
    return json.loads(text)


def tracks_from_data(data: Any) -> list[Track]:
    if not isinstance(data, (dict, list)):
        raise ValueError("track list must be a list or an object with a 'tracks' key")
    data = migrate_track_list(data)
    raw = data.get("tracks") or []
    if not isinstance(raw, list):
        raise ValueError("'tracks' must be a list")
    return validate_tracks([Track.from_dict(t) for t in raw if isinstance(t, dict)])


def load_tracks(path: str | Path) -> list[Track]:
    """Load a JSON/YAML track list, migrating legacy camelCase keys."""

    p = Path(path).expanduser()
    tracks = tracks_from_data(_read_data(p))

    # Relative source paths resolve against the track list's directory.
    out: list[Track] = []
    for t in tracks:
        src = Path(t.source).expanduser()
        if "://" not in t.source and not t.source.startswith("file:") and not src.is_absolute():
            t = replace(t, source=str(p.parent / src))
        out.append(t)
    return out


def save_tracks(tracks: list[Track], path: str | Path) -> str:
    out_path = Path(path).expanduser()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"schema_version": CURRENT_SCHEMA_VERSION, "tracks": [t.to_dict() for t in tracks]}
    out_path.write_text(json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return str(out_path)


def save_timeline_json(timeline: Timeline, path: str | Path) -> str:
    out_path = Path(path).expanduser()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(timeline.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return str(out_path)
