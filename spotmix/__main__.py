from __future__ import annotations

import argparse
import json
import logging
import shutil
import sys
from dataclasses import dataclass, replace
from pathlib import Path

from spotmix import __version__
from spotmix.errors import MixdownError
from spotmix.util.config import EngineConfig, default_config_path, load_config
from spotmix.util.timecode import format_seconds

log = logging.getLogger("spotmix")


@dataclass
class DoctorResult:
    ok: bool
    notes: list[str]


def _doctor(cfg: EngineConfig) -> DoctorResult:
    notes: list[str] = []
    ok = True

    ffmpeg = shutil.which(cfg.ffmpeg_bin)
    if ffmpeg:
        notes.append(f"ffmpeg: OK ({ffmpeg})")
    else:
        ok = False
        notes.append(f"ffmpeg: MISSING ({cfg.ffmpeg_bin}; needed for MP3/AAC/OGG sources)")

    cfg_path = default_config_path()
    notes.append(f"config: {cfg_path}" + ("" if cfg_path.exists() else " (defaults)"))
    notes.append(f"python: {sys.version.split()[0]}")
    notes.append(f"platform: {sys.platform}")
    return DoctorResult(ok=ok, notes=notes)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="spotmix",
        formatter_class=argparse.RawTextHelpFormatter,
        description="spotmix: resolve an ad's track timeline and render a loudness-normalized WAV mix\n",
    )
    p.add_argument("--version", action="store_true", help="Print version and exit.")
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug).")
    p.add_argument("--no-events", action="store_true", help="Do not append to the events log.")

    sub = p.add_subparsers(dest="cmd")

    def _common(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--config", default=None, help="Engine config (.json/.yaml); default ~/.config/spotmix/config.json")

    mix = sub.add_parser("mix", help="Resolve, render and normalize a track list to WAV.")
    mix.add_argument("tracks", help="Track list (.json/.yaml)")
    mix.add_argument("--out", required=True, help="Output WAV path")
    mix.add_argument("--timeline", default=None, help="Also write the resolved timeline JSON here")
    mix.add_argument("--lufs", type=float, default=None, help="Target integrated loudness (LUFS)")
    mix.add_argument("--ceiling", type=float, default=None, help="True-peak ceiling (dBTP)")
    mix.add_argument("--sample-rate", dest="sample_rate", type=int, default=None, help="Output sample rate (Hz)")
    _common(mix)

    res = sub.add_parser("resolve", help="Print the resolved timeline as JSON.")
    res.add_argument("tracks", help="Track list (.json/.yaml)")
    _common(res)

    meas = sub.add_parser("measure", help="Print a metering report (LUFS, true peak, RMS) as JSON.")
    meas.add_argument("input", help="Audio file")
    _common(meas)

    doc = sub.add_parser("doctor", help="Check for external tools (ffmpeg).")
    _common(doc)

    return p


def _load_cfg(args: argparse.Namespace) -> EngineConfig:
    path = Path(args.config).expanduser() if getattr(args, "config", None) else None
    if path is not None and not path.exists():
        raise SystemExit(f"ERROR: config not found: {path}")
    try:
        return load_config(path)
    except ValueError as e:
        raise SystemExit(f"ERROR: bad config ({e})")


def _apply_overrides(cfg: EngineConfig, args: argparse.Namespace) -> EngineConfig:
    changes = {}
    if args.lufs is not None:
        changes["integrated_lufs"] = float(args.lufs)
    if args.ceiling is not None:
        changes["max_true_peak_dbtp"] = float(args.ceiling)
    if args.sample_rate is not None:
        changes["sample_rate"] = int(args.sample_rate)
    if not changes:
        return cfg
    try:
        return replace(cfg, target=replace(cfg.target, **changes))
    except ValueError as e:
        raise SystemExit(f"ERROR: {e}")


def _log_event(args: argparse.Namespace, event: dict) -> None:
    if args.no_events:
        return
    from spotmix.util.state_log import log_event

    try:
        log_event(event)
    except OSError as e:
        log.debug("events log not written: %s", e)


def _cmd_mix(args: argparse.Namespace) -> None:
    from spotmix.io.tracks_json import load_tracks, save_timeline_json
    from spotmix.mixdown import run_mixdown

    cfg = _apply_overrides(_load_cfg(args), args)
    tracks = load_tracks(args.tracks)
    result = run_mixdown(tracks, cfg=cfg)

    out = Path(args.out).expanduser()
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(result.audio)
    print(f"wrote {out} ({format_seconds(result.timeline.total_duration)}, {result.report.final_lufs:.2f} LUFS)")

    if args.timeline:
        print(f"wrote {save_timeline_json(result.timeline, args.timeline)}")
    for w in result.timeline.warnings:
        print(f"warning: {w}", file=sys.stderr)

    _log_event(
        args,
        {
            "cmd": "mix",
            "tracks": str(args.tracks),
            "out": str(out),
            "duration": result.timeline.total_duration,
            "loudness": result.report.to_dict(),
            "warnings": list(result.timeline.warnings),
        },
    )


def _cmd_resolve(args: argparse.Namespace) -> None:
    from spotmix.io.tracks_json import load_tracks
    from spotmix.mixdown import resolve_tracks

    timeline = resolve_tracks(load_tracks(args.tracks), cfg=_load_cfg(args))
    print(json.dumps(timeline.to_dict(), indent=2, sort_keys=True))


def _cmd_measure(args: argparse.Namespace) -> None:
    from spotmix.audio.metering import analyze_file

    cfg = _load_cfg(args)
    m = analyze_file(Path(args.input).expanduser(), sample_rate=cfg.target.sample_rate, ffmpeg_bin=cfg.ffmpeg_bin)
    print(json.dumps(m.to_dict(), indent=2, sort_keys=True))


def main(argv: list[str] | None = None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"spotmix {__version__}")
        return

    level = logging.WARNING if args.verbose <= 0 else (logging.INFO if args.verbose == 1 else logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    if args.cmd == "doctor":
        res = _doctor(_load_cfg(args))
        print(f"spotmix doctor: {'OK' if res.ok else 'MISSING_DEPS'}")
        for n in res.notes:
            print(f"- {n}")
        if not res.ok:
            print("\nLinux (Debian/Ubuntu): sudo apt-get install ffmpeg")
            print("macOS: brew install ffmpeg")
        return

    handlers = {"mix": _cmd_mix, "resolve": _cmd_resolve, "measure": _cmd_measure}
    fn = handlers.get(args.cmd)
    if fn is None:
        parser.print_help()
        return

    try:
        fn(args)
    except (MixdownError, ValueError, OSError) as e:
        raise SystemExit(f"ERROR: {e}")


if __name__ == "__main__":
    main()
