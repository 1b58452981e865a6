from typing import Dict, List, Optional, Tuple
import logging
import time

import numpy as np

try:
    import gtsam
except Exception:
    gtsam = None

from scanner_frontend.keyframes import InMemoryKeyframeStore, KeyframeStore
from scanner_frontend.models import Keyframe, Pose2D, RegistrationRecord
from scanner_frontend.geometry import compose_pose2
from .isam import ISAM2Manager
from .robust import gaussian_from_covariance, robustify

logger = logging.getLogger("scanner.graph")

PRIOR_COVARIANCE = np.diag([1e-6, 1e-6, 1e-8])
# Used when the front-end could not align a new keyframe against the last one.
UNAVAILABLE_DELTA_COVARIANCE = np.diag([1.0, 1.0, 0.5])


def key_of(kid: int) -> int:
    if gtsam is None:
        raise RuntimeError("GTSAM not available; cannot build keys")
    return gtsam.symbol("k", int(kid))


def pose2_from(pose: Pose2D):
    if gtsam is None:
        raise RuntimeError("GTSAM not available; cannot build Pose2")
    return gtsam.Pose2(float(pose.x), float(pose.y), float(pose.theta))


def pose2_to_model(pose) -> Pose2D:
    return Pose2D(float(pose.x()), float(pose.y()), float(pose.theta()))


class PoseGraphBackend(KeyframeStore):
    """Reference pose-graph backend consuming registration records.

    Keyframe ids are assigned here (0, 1, 2, ...). Every accepted record is
    turned into factors and fed to iSAM2; the optimized poses of all
    keyframes are refreshed after each update so the front-end's loop-closure
    priors use the latest estimate.

    The graph is 2D (``Pose2``); the front-end already projects its deltas
    onto the ground plane.
    """

    def __init__(self,
                 store: Optional[InMemoryKeyframeStore] = None,
                 robust_kind: Optional[str] = None,
                 robust_k: Optional[float] = None,
                 relinearize_threshold: float = 0.1,
                 relinearize_skip: int = 1,
                 kpi=None):
        if gtsam is None:
            raise RuntimeError("GTSAM not available; cannot build pose graph")
        self.store = store or InMemoryKeyframeStore()
        self.isam = ISAM2Manager(relinearize_threshold=relinearize_threshold,
                                 relinearize_skip=relinearize_skip)
        self.robust_kind = robust_kind
        self.robust_k = robust_k
        self.kpi = kpi
        self.counts = {"prior": 0, "between": 0, "loop": 0, "unavailable_delta": 0}
        self.loop_edges: List[Tuple[int, int]] = []

    # KeyframeStore API
    def last_keyframe(self) -> Optional[Keyframe]:
        return self.store.last_keyframe()

    def closest_keyframe(self, reference: Keyframe) -> Optional[Keyframe]:
        return self.store.closest_keyframe(reference)

    def keyframes(self) -> List[Keyframe]:
        return list(self.store)

    def _loop_noise(self, cov: np.ndarray):
        return robustify(gaussian_from_covariance(cov), self.robust_kind, self.robust_k)

    def apply(self, record: RegistrationRecord) -> Optional[int]:
        """Consume one record; returns the id of the keyframe it created, if any."""
        if not (record.first_frame_flag or record.keyframe_flag):
            return None
        t0 = time.perf_counter()
        batch = gtsam.NonlinearFactorGraph()
        values = gtsam.Values()
        new_id = self.store.next_id()
        new = record.keyframe_new

        if record.first_frame_flag:
            pose = Pose2D()
            noise = gaussian_from_covariance(PRIOR_COVARIANCE)
            batch.add(gtsam.PriorFactorPose2(key_of(new_id), pose2_from(pose), noise))
            self.counts["prior"] += 1
        else:
            factor = record.factor_new
            last = self.store.get(factor.id_1)
            if last is None:
                raise ValueError(f"factor_new references unknown keyframe {factor.id_1}")
            if factor.delta is None:
                delta, cov = Pose2D(), UNAVAILABLE_DELTA_COVARIANCE
                self.counts["unavailable_delta"] += 1
                logger.warning("Keyframe %d added with an unavailable delta; using a weak identity factor", new_id)
            else:
                delta, cov = factor.delta.pose, factor.delta.covariance
            pose = compose_pose2(last.optimized_pose, delta)
            batch.add(gtsam.BetweenFactorPose2(key_of(last.id), key_of(new_id), pose2_from(delta),
                                               gaussian_from_covariance(cov)))
            self.counts["between"] += 1

        values.insert(key_of(new_id), pose2_from(pose))
        self.store.add(Keyframe(id=new_id, stamp=new.stamp, point_cloud=new.point_cloud,
                                optimized_pose=pose, scan=new.scan))

        if record.loop_closure_flag and record.factor_loop is not None and record.factor_loop.delta is not None:
            lf = record.factor_loop
            batch.add(gtsam.BetweenFactorPose2(key_of(lf.id_1), key_of(lf.id_2),
                                               pose2_from(lf.delta.pose),
                                               self._loop_noise(lf.delta.covariance)))
            self.counts["loop"] += 1
            self.loop_edges.append((lf.id_1, lf.id_2))
            logger.info("Loop closure factor %d -> %d added", lf.id_1, lf.id_2)

        self.isam.update(batch, values)
        self._refresh_poses()
        duration = time.perf_counter() - t0
        if self.kpi:
            self.kpi.graph_update(new_id, duration, factors=batch.size(),
                                  loop_closure=bool(record.loop_closure_flag))
        return new_id

    def _refresh_poses(self) -> None:
        estimate = self.isam.estimate
        for kf in self.store:
            key = key_of(kf.id)
            if estimate.exists(key):
                self.store.update_pose(kf.id, pose2_to_model(estimate.atPose2(key)))

    def error(self) -> float:
        return self.isam.error()

    def poses(self) -> Dict[int, Pose2D]:
        return {kf.id: kf.optimized_pose for kf in self.store}
