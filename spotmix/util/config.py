from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from spotmix.model.types import LoudnessTarget
from spotmix.timeline.policies import PlacementPolicy


def default_config_dir() -> Path:
    return Path.home() / ".config" / "spotmix"


def default_config_path() -> Path:
    return default_config_dir() / "config.json"


@dataclass
class EngineConfig:
    target: LoudnessTarget = field(default_factory=LoudnessTarget)
    policy: PlacementPolicy = field(default_factory=PlacementPolicy)
    decode_workers: int = 4
    ffmpeg_bin: str = "ffmpeg"
    fetch_timeout_seconds: float = 30.0
    # 0 disables the music bed fade-out
    music_fade_out_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target.to_dict(),
            "policy": self.policy.to_dict(),
            "decode_workers": self.decode_workers,
            "ffmpeg_bin": self.ffmpeg_bin,
            "fetch_timeout_seconds": self.fetch_timeout_seconds,
            "music_fade_out_seconds": self.music_fade_out_seconds,
        }

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "EngineConfig":
        base = EngineConfig()
        return EngineConfig(
            target=LoudnessTarget.from_dict(d.get("target") or {}),
            policy=PlacementPolicy.from_dict(d.get("policy") or {}),
            decode_workers=max(1, int(d.get("decode_workers", base.decode_workers) or 1)),
            ffmpeg_bin=str(d.get("ffmpeg_bin") or base.ffmpeg_bin),
            fetch_timeout_seconds=float(d.get("fetch_timeout_seconds", base.fetch_timeout_seconds)),
            music_fade_out_seconds=max(0.0, float(d.get("music_fade_out_seconds", 0.0) or 0.0)),
        )


def load_config(path: Path | None = None) -> EngineConfig:
    p = path or default_config_path()
    if not p.exists():
        return EngineConfig()
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"invalid YAML in {p}: {e}") from e
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"config must be a mapping/object: {p}")
    return EngineConfig.from_dict(data)


def save_config(cfg: EngineConfig, path: Path | None = None) -> Path:
    p = path or default_config_path()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(cfg.to_dict(), indent=2, sort_keys=True) + "\n", encoding="utf-8")
    return p
