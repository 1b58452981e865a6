from dataclasses import dataclass, field
from typing import Optional, Sequence
import math

import numpy as np


@dataclass
class Scan:
    """Raw planar range scan, carried verbatim into the record."""
    stamp: float
    angle_min: float
    angle_increment: float
    range_min: float
    range_max: float
    ranges: Sequence[float]
    frame_id: str = ""


@dataclass
class Pose2D:
    x: float = 0.0
    y: float = 0.0
    theta: float = 0.0

    def to_numpy(self) -> np.ndarray:
        return np.array([self.x, self.y, self.theta], dtype=float)

    @property
    def translation_norm(self) -> float:
        return math.hypot(self.x, self.y)


# A relative transform between two scans, projected on the ground plane.
PoseDelta = Pose2D


@dataclass
class PoseDeltaWithUncertainty:
    pose: Pose2D
    covariance: np.ndarray  # 3x3 over (x, y, theta)


@dataclass
class Keyframe:
    id: int
    stamp: float
    point_cloud: np.ndarray  # (N, 3)
    optimized_pose: Pose2D = field(default_factory=Pose2D)
    scan: Optional[Scan] = None


@dataclass
class NewKeyframe:
    """Keyframe candidate; the backend assigns the id if it accepts it."""
    stamp: float
    point_cloud: np.ndarray
    scan: Optional[Scan] = None


@dataclass
class Factor:
    id_1: int
    id_2: Optional[int]  # None -> the keyframe created from this record
    delta: Optional[PoseDeltaWithUncertainty]  # None -> delta unavailable


@dataclass
class AlignmentSummary:
    converged: bool
    fitness: float
    convergence_state: str
    duration_s: float = 0.0


@dataclass
class RegistrationRecord:
    first_frame_flag: bool
    keyframe_flag: bool
    loop_closure_flag: bool
    keyframe_new: NewKeyframe
    keyframe_last: Optional[Keyframe] = None
    keyframe_loop: Optional[Keyframe] = None
    factor_new: Optional[Factor] = None
    factor_loop: Optional[Factor] = None
    alignment_last: Optional[AlignmentSummary] = None
    alignment_loop: Optional[AlignmentSummary] = None


def is_3x3_cov(mat: np.ndarray) -> bool:
    return isinstance(mat, np.ndarray) and mat.shape == (3, 3)


def to_covariance(cov_list) -> np.ndarray:
    """Convert a flat list (9) or nested list (3x3) to a 3x3 ndarray."""
    arr = np.asarray(cov_list, dtype=float)
    if arr.size == 9 and arr.ndim == 1:
        return arr.reshape(3, 3)
    if arr.ndim == 2 and arr.shape == (3, 3):
        return arr
    raise ValueError(f"Expected 9 elements for a 3x3 covariance, got shape {arr.shape} size {arr.size}")


def as_point_cloud(points) -> np.ndarray:
    """Normalise (N, 2) or (N, 3) input into a float64 (N, 3) array."""
    arr = np.asarray(points, dtype=float)
    if arr.size == 0:
        return np.zeros((0, 3), dtype=float)
    if arr.ndim != 2 or arr.shape[1] not in (2, 3):
        raise ValueError(f"Point cloud must be (N, 2) or (N, 3); got shape {arr.shape}")
    if arr.shape[1] == 2:
        arr = np.hstack([arr, np.zeros((arr.shape[0], 1))])
    return np.ascontiguousarray(arr)
