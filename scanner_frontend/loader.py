import json
import logging
from typing import Any, Dict, List, Optional

from .models import Scan

logger = logging.getLogger("scanner.loader")

_REQUIRED = ("stamp", "angle_min", "angle_increment", "range_min", "range_max", "ranges")


def _range_value(v: Any) -> float:
    # JSON has no inf; a null reading means "no return"
    if v is None:
        return float("inf")
    return float(v)


def scan_from_dict(entry: Dict[str, Any]) -> Scan:
    missing = [k for k in _REQUIRED if k not in entry]
    if missing:
        raise ValueError(f"Scan entry missing fields {missing}")
    ranges = entry["ranges"]
    if not isinstance(ranges, list):
        raise ValueError("Scan ranges must be a list")
    return Scan(
        stamp=float(entry["stamp"]),
        angle_min=float(entry["angle_min"]),
        angle_increment=float(entry["angle_increment"]),
        range_min=float(entry["range_min"]),
        range_max=float(entry["range_max"]),
        ranges=[_range_value(r) for r in ranges],
        frame_id=str(entry.get("frame_id", "")),
    )


def load_scan_log(path: str) -> List[Scan]:
    """Load a recorded scan log, skipping malformed entries. Result is sorted by stamp."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    entries = data.get("scans", []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ValueError(f"Scan log must hold a list of scans; got {type(entries).__name__}")
    scans: List[Scan] = []
    for i, entry in enumerate(entries):
        try:
            if not isinstance(entry, dict):
                raise ValueError(f"expected object, got {type(entry).__name__}")
            scans.append(scan_from_dict(entry))
        except (TypeError, ValueError) as e:
            logger.warning("Skipping scan entry %d: %s", i, e)
    scans.sort(key=lambda s: s.stamp)
    return scans


def summarize_scan_log(scans: List[Scan]) -> Dict[str, Optional[float]]:
    if not scans:
        return {"scans": 0}
    beams = [len(s.ranges) for s in scans]
    return {
        "scans": len(scans),
        "first_stamp": scans[0].stamp,
        "last_stamp": scans[-1].stamp,
        "duration_s": scans[-1].stamp - scans[0].stamp,
        "min_beams": min(beams),
        "max_beams": max(beams),
    }
