import math
from typing import List, Optional

import numpy as np
import pytest

from scanner_frontend.config import ScannerConfig
from scanner_frontend.keyframes import KeyframeStore
from scanner_frontend.models import Keyframe, Pose2D, Scan
from scanner_frontend.oracle import AlignmentResult, ConvergenceState, RegistrationOracle


# =============================================================================
# Test doubles
# =============================================================================

class ScriptedOracle(RegistrationOracle):
    """Returns queued results in order and records every call."""

    def __init__(self, results: Optional[List[AlignmentResult]] = None):
        self.results = list(results or [])
        self.calls = []

    def push(self, result: AlignmentResult) -> None:
        self.results.append(result)

    def align(self, source, target, initial_guess, correspondence_tolerance):
        self.calls.append({
            "source": source,
            "target": target,
            "initial_guess": np.array(initial_guess, dtype=float),
            "tolerance": correspondence_tolerance,
        })
        if not self.results:
            raise AssertionError("ScriptedOracle ran out of results")
        return self.results.pop(0)


class FakeStore(KeyframeStore):
    """Keyframe store with directly settable answers."""

    def __init__(self, last: Optional[Keyframe] = None, closest: Optional[Keyframe] = None):
        self.last = last
        self.closest = closest
        self.closest_queries = []

    def last_keyframe(self):
        return self.last

    def closest_keyframe(self, reference):
        self.closest_queries.append(reference.id)
        return self.closest


def translation(x: float, y: float = 0.0, theta: float = 0.0) -> np.ndarray:
    T = np.eye(4)
    T[0, 0], T[0, 1] = math.cos(theta), -math.sin(theta)
    T[1, 0], T[1, 1] = math.sin(theta), math.cos(theta)
    T[0, 3], T[1, 3] = x, y
    return T


def converged(fitness: float = 0.1, T: Optional[np.ndarray] = None) -> AlignmentResult:
    return AlignmentResult(True, fitness, np.eye(4) if T is None else T,
                           ConvergenceState.TRANSFORM_THRESHOLD)


def not_converged() -> AlignmentResult:
    return AlignmentResult(False, float("inf"), np.eye(4), ConvergenceState.NO_CORRESPONDENCES)


def make_scan(stamp: float = 0.0, n: int = 90, r: float = 2.0) -> Scan:
    return Scan(stamp=stamp, angle_min=-math.pi / 2, angle_increment=math.pi / n,
                range_min=0.1, range_max=10.0, ranges=[r] * n, frame_id="laser")


def room_cloud(n_per_wall: int = 40) -> np.ndarray:
    """Points on an asymmetric L-shaped room outline (z = 0)."""
    t = np.linspace(0.0, 1.0, n_per_wall)
    walls = [
        np.column_stack([4.0 * t, np.zeros_like(t)]),
        np.column_stack([np.full_like(t, 4.0), 2.5 * t]),
        np.column_stack([4.0 - 2.0 * t, np.full_like(t, 2.5)]),
        np.column_stack([np.full_like(t, 2.0), 2.5 + 1.5 * t]),
        np.column_stack([np.zeros_like(t), 4.0 * t]),
    ]
    pts = np.vstack(walls)
    return np.hstack([pts, np.zeros((pts.shape[0], 1))])


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def config() -> ScannerConfig:
    return ScannerConfig()


@pytest.fixture
def cloud() -> np.ndarray:
    return room_cloud()


@pytest.fixture
def last_keyframe(cloud) -> Keyframe:
    return Keyframe(id=7, stamp=1.0, point_cloud=cloud, optimized_pose=Pose2D(1.0, 2.0, 0.3))


@pytest.fixture
def scan() -> Scan:
    return make_scan(stamp=2.0)
