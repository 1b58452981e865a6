"""Derived KPI computations over exported replay runs.

Post-processes ``kpi_metrics/kpi_events.jsonl`` and
``kpi_metrics/alignment_timing.json`` into a single summary:
- keyframe ratio (keyframes per registered scan)
- loop-closure acceptance rate
- scan rejection count
- primary-alignment fitness and alignment duration statistics

Depends only on the files written by ``main.py`` so it can run offline.
"""
from __future__ import annotations

import json
import math
import os
from typing import Any, Dict, List, Optional

from .latency import _stats


def _safe_float(x: Any) -> Optional[float]:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v):
        return None
    return v


def _read_json(path: str) -> Dict[str, Any]:
    if not os.path.exists(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        try:
            obj = json.load(f)
        except json.JSONDecodeError:
            return {}
    return obj if isinstance(obj, dict) else {}


def read_kpi_events(path: str) -> List[Dict[str, Any]]:
    """Read a JSONL event file, skipping blank or undecodable lines."""
    if not os.path.exists(path):
        return []
    out = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(obj, dict):
                out.append(obj)
    return out


def summarise_registration(events: List[Dict[str, Any]]) -> Dict[str, Any]:
    regs = [ev for ev in events if ev.get("event") == "registration"]
    attempts = [ev for ev in events if ev.get("event") == "loop_closure_attempt"]
    rejected = sum(1 for ev in events if ev.get("event") == "scan_rejected")
    keyframes = sum(1 for ev in regs if ev.get("keyframe"))
    tracked = sum(1 for ev in regs if not ev.get("first_frame"))
    accepted = sum(1 for ev in attempts if ev.get("accepted"))
    fitness = [v for v in (_safe_float(ev.get("fitness")) for ev in regs) if v is not None]
    return {
        "records": len(regs),
        "keyframes": keyframes,
        "keyframe_ratio": (keyframes / tracked) if tracked else None,
        "scans_rejected": rejected,
        "loop_closure_attempts": len(attempts),
        "loop_closures_accepted": accepted,
        "loop_closure_acceptance": (accepted / len(attempts)) if attempts else None,
        "fitness": _stats(fitness),
    }


def derive_kpis_for_run(run_dir: str) -> Dict[str, Any]:
    """Compute derived KPIs for a single output run directory."""
    kpi_dir = os.path.join(run_dir, "kpi_metrics")
    out = summarise_registration(read_kpi_events(os.path.join(kpi_dir, "kpi_events.jsonl")))
    timing = _read_json(os.path.join(kpi_dir, "alignment_timing.json"))
    if timing.get("summary"):
        out["alignment_timing"] = timing["summary"]
    return out


def write_json(path: str, obj: Dict[str, Any]) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2)
