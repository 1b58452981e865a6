"""Registration decision engine.

Per scan: query the last keyframe, align against it, vote on keyframe
creation, pace loop-closure attempts, and emit one RegistrationRecord.
The only state carried between scans is the initial-guess transform and the
loop-closure attempt counter, both instance fields.
"""
from typing import Callable, Optional, TYPE_CHECKING
import logging
import threading
import time

import numpy as np

from .config import ScannerConfig
from .geometry import matrix_to_pose2, pose2_to_matrix, relative_transform
from .keyframes import KeyframeStore
from .models import (
    AlignmentSummary, Factor, Keyframe, NewKeyframe, PoseDelta,
    RegistrationRecord, Scan,
)
from .oracle import AlignmentResult, RegistrationOracle
from .preprocess import scan_to_pointcloud
from .uncertainty import NoiseCoefficients, with_uncertainty

if TYPE_CHECKING:
    from scanner_common.kpi_logging import KPILogger
    from scanner_common.latency import AlignmentTimer

logger = logging.getLogger("scanner.engine")


def vote_for_keyframe(delta: Optional[PoseDelta], fitness: float, cfg: ScannerConfig) -> bool:
    """Return True when the scan should become a keyframe.

    A missing delta (alignment did not converge) always votes for a new
    keyframe: tracking against a keyframe we cannot relate to is unsafe.
    """
    if delta is None:
        return True
    return (fitness > cfg.fitness_keyframe_threshold
            or abs(delta.theta) > cfg.rotation_threshold
            or delta.x ** 2 + delta.y ** 2 > cfg.distance_threshold ** 2)


def _summary(result: AlignmentResult, duration_s: float) -> AlignmentSummary:
    return AlignmentSummary(
        converged=bool(result.converged),
        fitness=float(result.fitness),
        convergence_state=result.convergence_state.value,
        duration_s=duration_s,
    )


class RegistrationEngine:
    def __init__(self,
                 store: KeyframeStore,
                 oracle: RegistrationOracle,
                 config: Optional[ScannerConfig] = None,
                 scan_to_cloud: Callable[[Scan], np.ndarray] = scan_to_pointcloud,
                 coefficients: Optional[NoiseCoefficients] = None,
                 kpi: Optional["KPILogger"] = None,
                 timer: Optional["AlignmentTimer"] = None):
        self.config = (config or ScannerConfig()).validate()
        self.store = store
        self.oracle = oracle
        self.scan_to_cloud = scan_to_cloud
        self.coefficients = coefficients or NoiseCoefficients.from_config(self.config)
        self.kpi = kpi
        self.timer = timer
        self.carried_transform = np.eye(4)
        self.loop_attempt_counter = 0
        self.counts = {"scans": 0, "records": 0, "rejected": 0, "keyframes": 0,
                       "loop_attempts": 0, "loop_closures": 0, "non_converged": 0}
        self._lock = threading.Lock()

    def reset(self) -> None:
        with self._lock:
            self.carried_transform = np.eye(4)
            self.loop_attempt_counter = 0

    def _align(self, stage: str, source, target, guess, tolerance):
        t0 = time.perf_counter()
        result = self.oracle.align(source, target, guess, tolerance)
        duration = time.perf_counter() - t0
        if self.timer is not None:
            self.timer.record(stage, duration, converged=result.converged, fitness=result.fitness)
        return result, duration

    def process_scan(self, scan: Scan) -> Optional[RegistrationRecord]:
        """Run one registration cycle; returns None for a rejected scan."""
        with self._lock:
            return self._process(scan)

    def _process(self, scan: Scan) -> Optional[RegistrationRecord]:
        cfg = self.config
        self.counts["scans"] += 1
        stamp = getattr(scan, "stamp", None)
        try:
            cloud = self.scan_to_cloud(scan)
        except (TypeError, ValueError) as exc:
            self.counts["rejected"] += 1
            logger.warning("Rejecting scan at stamp %s: %s", stamp, exc)
            if self.kpi:
                self.kpi.scan_rejected(stamp, reason=str(exc))
            return None
        if self.kpi:
            self.kpi.scan_ingest(stamp, points=int(cloud.shape[0]))

        keyframe_new = NewKeyframe(stamp=scan.stamp, point_cloud=cloud, scan=scan)
        last = self.store.last_keyframe()
        if last is None:
            logger.info("No last keyframe found: assuming first keyframe (stamp %.6f)", scan.stamp)
            record = RegistrationRecord(first_frame_flag=True, keyframe_flag=False,
                                        loop_closure_flag=False, keyframe_new=keyframe_new)
            return self._emit(record)

        result, duration = self._align("primary", cloud, last.point_cloud,
                                       self.carried_transform,
                                       cfg.gicp_maximum_correspondence_distance)
        delta = None
        delta_cov = None
        if result.converged:
            delta = matrix_to_pose2(result.transform)
            delta_cov = with_uncertainty(delta, self.coefficients)
        else:
            self.counts["non_converged"] += 1
            logger.warning("RG: alignment against keyframe %d did not converge (%s)",
                           last.id, result.convergence_state.describe())

        record = RegistrationRecord(first_frame_flag=False, keyframe_flag=False,
                                    loop_closure_flag=False, keyframe_new=keyframe_new,
                                    keyframe_last=last,
                                    alignment_last=_summary(result, duration))

        if not vote_for_keyframe(delta, result.fitness, cfg):
            self.carried_transform = np.array(result.transform, dtype=float)
            logger.debug("RG: align time %.4fs fitness %.6f, no keyframe", duration, result.fitness)
            return self._emit(record)

        record.keyframe_flag = True
        record.factor_new = Factor(id_1=last.id, id_2=None, delta=delta_cov)
        self.carried_transform = np.eye(4)
        self.loop_attempt_counter += 1
        self.counts["keyframes"] += 1
        if delta is not None:
            logger.info("RG: align time %.4fs fitness %.6f (%s) delta x=%.4f y=%.4f th=%.4f",
                        duration, result.fitness, result.convergence_state.describe(),
                        delta.x, delta.y, delta.theta)

        if self.loop_attempt_counter >= cfg.loop_closure_skip:
            self._attempt_loop_closure(last, record)
        return self._emit(record)

    def _attempt_loop_closure(self, last: Keyframe, record: RegistrationRecord) -> None:
        cfg = self.config
        closest = self.store.closest_keyframe(last)
        if closest is None:
            logger.debug("LC: no closest keyframe for %d; retrying on next keyframe", last.id)
            return
        self.counts["loop_attempts"] += 1
        prior = relative_transform(pose2_to_matrix(last.optimized_pose),
                                   pose2_to_matrix(closest.optimized_pose))
        result, duration = self._align("loop", closest.point_cloud, last.point_cloud, prior,
                                       cfg.loop_maximum_correspondence_distance)
        record.alignment_loop = _summary(result, duration)
        accepted = result.converged and result.fitness < cfg.fitness_loop_threshold
        if self.kpi:
            self.kpi.loop_closure_attempt(last.id, closest.id, accepted=accepted,
                                          fitness=float(result.fitness), duration_s=duration)
        if not accepted:
            logger.info("LC: rejected %d -> %d: fitness %.6f (%s)", last.id, closest.id,
                        result.fitness, result.convergence_state.describe())
            return
        delta = matrix_to_pose2(result.transform)
        record.loop_closure_flag = True
        record.keyframe_loop = closest
        record.factor_loop = Factor(id_1=last.id, id_2=closest.id,
                                    delta=with_uncertainty(delta, self.coefficients))
        self.loop_attempt_counter = 0
        self.counts["loop_closures"] += 1
        logger.info("LC: align time %.4fs fitness %.6f (%s) %d -> %d delta x=%.4f y=%.4f th=%.4f",
                    duration, result.fitness, result.convergence_state.describe(),
                    last.id, closest.id, delta.x, delta.y, delta.theta)

    def _emit(self, record: RegistrationRecord) -> RegistrationRecord:
        self.counts["records"] += 1
        if self.kpi:
            self.kpi.registration(
                record.keyframe_new.stamp,
                first_frame=record.first_frame_flag,
                keyframe=record.keyframe_flag,
                loop_closure=record.loop_closure_flag,
                fitness=record.alignment_last.fitness if record.alignment_last else None,
                last_id=record.keyframe_last.id if record.keyframe_last else None,
            )
        return record
