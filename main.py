import argparse, os, json, csv, logging
from typing import Dict, List, Optional

from scanner_frontend.config import ConfigError, ScannerConfig, load_config
from scanner_frontend.engine import RegistrationEngine
from scanner_frontend.icp import IcpOracle
from scanner_frontend.loader import load_scan_log, summarize_scan_log
from scanner_frontend.models import Keyframe, Scan
from scanner_common.kpi_logging import KPILogger
from scanner_common.latency import AlignmentTimer
from scanner_graph.graph import PoseGraphBackend
from scanner_ros2.record_codec import encode_registration_record

logger = logging.getLogger("scanner.replay")


def parse_args(argv: Optional[List[str]] = None):
    ap = argparse.ArgumentParser(description="Replay a recorded laser scan log through the registration front-end.")
    ap.add_argument("--scans", required=True, help="Path to scan log JSON")
    ap.add_argument("--export-path", required=True, help="Directory to write outputs")
    ap.add_argument("--config", default=None, help="Scanner options JSON (flat, {'scanner': {...}} or ROS 2 params layout)")
    ap.add_argument("--robust", choices=["none", "huber", "cauchy"], default="none", help="Robust kernel on loop-closure factors")
    ap.add_argument("--robust-k", type=float, default=None, help="Robust tuning parameter")
    ap.add_argument("--plot", action="store_true", help="Export an XY plot of the optimized keyframes")
    ap.add_argument("--log", default="INFO", help="Logging level")
    options = ap.add_argument_group("scanner options (override --config)")
    for name in ScannerConfig.option_names():
        kind = int if isinstance(getattr(ScannerConfig, name), int) else float
        options.add_argument(f"--{name.replace('_', '-')}", dest=name, type=kind, default=None)
    return ap.parse_args(argv)


def ensure_dir(p):
    os.makedirs(p, exist_ok=True)


def export_keyframes_csv(keyframes: List[Keyframe], out_path: str) -> None:
    with open(out_path, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=["id", "stamp", "x", "y", "theta"])
        w.writeheader()
        for kf in keyframes:
            w.writerow({
                "id": kf.id,
                "stamp": kf.stamp,
                "x": kf.optimized_pose.x,
                "y": kf.optimized_pose.y,
                "theta": kf.optimized_pose.theta,
            })


def export_stats_json(stats: Dict, out_path: str) -> None:
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump(stats, f, indent=2)


def run_replay(args, scans: List[Scan], config: ScannerConfig, out_dir: str) -> Dict:
    """Feed every scan through the engine, applying each record to the backend."""
    kpi_dir = os.path.join(out_dir, "kpi_metrics")
    ensure_dir(kpi_dir)
    timer = AlignmentTimer()
    robust_kind = None if args.robust == "none" else args.robust
    kpi_path = os.path.join(kpi_dir, "kpi_events.jsonl")
    with KPILogger(extra_fields={"scans": os.path.basename(args.scans)}, log_path=kpi_path,
                   emit_to_logger=False) as kpi, \
            open(os.path.join(out_dir, "records.jsonl"), "w", encoding="utf-8") as rec_fh:
        backend = PoseGraphBackend(robust_kind=robust_kind, robust_k=args.robust_k, kpi=kpi)
        engine = RegistrationEngine(backend, IcpOracle.from_config(config), config, kpi=kpi, timer=timer)
        for scan in scans:
            record = engine.process_scan(scan)
            if record is None:
                continue
            rec_fh.write(encode_registration_record(record).decode("utf-8") + "\n")
            backend.apply(record)

    keyframes = backend.keyframes()
    export_keyframes_csv(keyframes, os.path.join(out_dir, "keyframes.csv"))
    timer.export_json(os.path.join(kpi_dir, "alignment_timing.json"))
    timer.log_summary(logger)
    stats = {
        "engine": dict(engine.counts),
        "graph": dict(backend.counts),
        "keyframes": len(keyframes),
        "loop_edges": [list(e) for e in backend.loop_edges],
        "final_error": backend.error() if keyframes else 0.0,
        "config": config.as_dict(),
    }
    export_stats_json(stats, os.path.join(out_dir, "stats.json"))
    if args.plot:
        from scanner_common.viz import plot_keyframes_2d
        plot_keyframes_2d(keyframes, backend.loop_edges, os.path.join(out_dir, "keyframes_xy.png"))
    return stats


def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    logging.basicConfig(level=args.log.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    out_dir = os.path.abspath(args.export_path)
    ensure_dir(out_dir)

    overrides = {name: getattr(args, name) for name in ScannerConfig.option_names()}
    try:
        config = load_config(args.config, overrides)
    except ConfigError as exc:
        logger.error("Invalid scanner configuration: %s", exc)
        raise

    scans = load_scan_log(args.scans)
    print("Scan log:", json.dumps(summarize_scan_log(scans)))
    if not scans:
        raise ValueError("No scans found in log; nothing to replay")

    stats = run_replay(args, scans, config, out_dir)
    print("Summary:", json.dumps({
        "scans": stats["engine"]["scans"],
        "records": stats["engine"]["records"],
        "rejected": stats["engine"]["rejected"],
        "keyframes": stats["keyframes"],
        "loop_closures": stats["engine"]["loop_closures"],
    }))


if __name__ == "__main__":
    main()
