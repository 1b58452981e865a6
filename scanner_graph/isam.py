from typing import Optional
import logging
import time

try:
    import gtsam
except Exception:
    gtsam = None

logger = logging.getLogger("scanner.isam")


def _apply_param(params, prop: str, value, setter: Optional[str] = None) -> None:
    # Some gtsam wheels expose ISAM2Params fields as properties, others only as setters
    if hasattr(params, prop):
        try:
            setattr(params, prop, value)
            return
        except Exception:
            pass
    if setter and hasattr(params, setter):
        getattr(params, setter)(value)


class ISAM2Manager:
    """Incremental Pose2 solver: one ``update`` per keyframe record."""

    def __init__(self,
                 relinearize_threshold: float = 0.1,
                 relinearize_skip: int = 1,
                 cache_linearized: bool = True):
        if gtsam is None:
            raise RuntimeError("GTSAM not available; cannot run iSAM2")
        params = gtsam.ISAM2Params()
        _apply_param(params, "relinearizeThreshold", relinearize_threshold, "setRelinearizeThreshold")
        _apply_param(params, "relinearizeSkip", relinearize_skip, "setRelinearizeSkip")
        _apply_param(params, "cacheLinearizedFactors", cache_linearized, "setCacheLinearizedFactors")

        self.isam = gtsam.ISAM2(params)
        self._estimate = gtsam.Values()
        self.updates = 0
        self.last_update_s = 0.0

    def update(self, graph: "gtsam.NonlinearFactorGraph", initial: "gtsam.Values") -> "gtsam.Values":
        t0 = time.perf_counter()
        self.isam.update(graph, initial)
        self._estimate = self.isam.calculateEstimate()
        self.last_update_s = time.perf_counter() - t0
        self.updates += 1
        logger.debug("iSAM2 update %d: %d new factors, %d new values in %.4fs",
                     self.updates, graph.size(), initial.size(), self.last_update_s)
        return self._estimate

    @property
    def estimate(self) -> "gtsam.Values":
        return self._estimate

    def error(self) -> float:
        """Total error of every factor added so far at the current estimate."""
        return float(self.isam.getFactorsUnsafe().error(self._estimate))
