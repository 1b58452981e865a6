"""KPI event logging for the registration front-end and reference backend."""
from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

logger = logging.getLogger("scanner.kpi")


class KPILogger:
    """Write one JSON object per event (JSONL) and optionally echo it to ``scanner.kpi``.

    ``None``-valued fields are dropped so consumers can tell "not measured"
    from a measured zero.
    """

    def __init__(
        self,
        enabled: bool = True,
        extra_fields: Optional[Dict[str, Any]] = None,
        log_path: Optional[str] = None,
        emit_to_logger: bool = True,
    ):
        self.enabled = enabled
        self._extra = dict(extra_fields or {})
        self._emit_to_logger = emit_to_logger
        self._fh = open(log_path, "w", encoding="utf-8") if log_path else None

    def __enter__(self) -> "KPILogger":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    def _emit(self, event: str, **fields: Any) -> None:
        if not self.enabled:
            return
        payload: Dict[str, Any] = {"event": event, "ts": time.time(), **self._extra}
        payload.update((k, v) for k, v in fields.items() if v is not None)
        line = json.dumps(payload, sort_keys=True)
        if self._emit_to_logger:
            logger.info("KPI %s", line)
        if self._fh is not None:
            self._fh.write(line + "\n")
            self._fh.flush()

    def scan_ingest(self, stamp: Optional[float], points: Optional[int] = None, **fields: Any) -> None:
        self._emit("scan_ingest", stamp=stamp, points=points, **fields)

    def scan_rejected(self, stamp: Optional[float], reason: str) -> None:
        self._emit("scan_rejected", stamp=stamp, reason=reason)

    def registration(
        self,
        stamp: float,
        *,
        first_frame: bool,
        keyframe: bool,
        loop_closure: bool,
        fitness: Optional[float] = None,
        last_id: Optional[int] = None,
    ) -> None:
        self._emit(
            "registration",
            stamp=stamp,
            first_frame=first_frame,
            keyframe=keyframe,
            loop_closure=loop_closure,
            fitness=fitness,
            last_id=last_id,
        )

    def loop_closure_attempt(
        self,
        last_id: int,
        closest_id: int,
        *,
        accepted: bool,
        fitness: Optional[float] = None,
        duration_s: Optional[float] = None,
    ) -> None:
        self._emit(
            "loop_closure_attempt",
            last_id=last_id,
            closest_id=closest_id,
            accepted=accepted,
            fitness=fitness,
            duration_s=duration_s,
        )

    def graph_update(self, keyframe_id: Optional[int], duration_s: float, **fields: Any) -> None:
        self._emit("graph_update", keyframe_id=keyframe_id, duration_s=duration_s, **fields)

    def close(self) -> None:
        fh, self._fh = self._fh, None
        if fh is not None:
            fh.close()
