"""Alignment timing statistics."""
from __future__ import annotations

import json
import statistics
from typing import Any, Dict, Iterable, List, Optional

_PERCENTILES = (90.0, 95.0, 99.0)


def _percentile(values: List[float], pct: float) -> Optional[float]:
    """Linear-interpolated percentile of an already sorted list."""
    if not values:
        return None
    rank = min(max(pct, 0.0), 100.0) / 100.0 * (len(values) - 1)
    lower = int(rank)
    upper = min(lower + 1, len(values) - 1)
    weight = rank - lower
    return values[lower] + (values[upper] - values[lower]) * weight


def _stats(values: Iterable[float]) -> Dict[str, Optional[float]]:
    vals = sorted(values)
    if not vals:
        return {"count": 0}
    out: Dict[str, Optional[float]] = {
        "count": len(vals),
        "min": vals[0],
        "max": vals[-1],
        "mean": statistics.mean(vals),
        "median": statistics.median(vals),
    }
    for pct in _PERCENTILES:
        out[f"p{int(pct)}"] = _percentile(vals, pct)
    if len(vals) > 1:
        out["stdev"] = statistics.pstdev(vals)
    return out


class AlignmentTimer:
    """Record per-stage alignment durations (``primary`` and ``loop``)."""

    def __init__(self):
        self._events: List[Dict[str, Any]] = []

    def record(self, stage: str, duration_s: float, **metadata: Any) -> None:
        event = {"stage": stage, "duration_s": float(duration_s)}
        event.update({k: v for k, v in metadata.items() if v is not None})
        self._events.append(event)

    def durations(self, stage: Optional[str] = None) -> List[float]:
        return [ev["duration_s"] for ev in self._events if stage is None or ev["stage"] == stage]

    def summary(self) -> Dict[str, Any]:
        stages = sorted({ev["stage"] for ev in self._events})
        out: Dict[str, Any] = {"events": len(self._events), "all": _stats(self.durations())}
        for stage in stages:
            out[stage] = _stats(self.durations(stage))
        return out

    def export_json(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump({"events": self._events, "summary": self.summary()}, f, indent=2)

    def log_summary(self, logger) -> None:
        summary = self.summary()
        logger.info(
            "Alignment timing: %d events | primary mean=%.4fs | loop mean=%.4fs",
            summary["events"],
            summary.get("primary", {}).get("mean", 0.0) if summary.get("primary") else 0.0,
            summary.get("loop", {}).get("mean", 0.0) if summary.get("loop") else 0.0,
        )

    @property
    def events(self) -> List[Dict[str, Any]]:
        return list(self._events)
