"""Point-to-point ICP registration oracle (numpy only).

Each iteration:
    - transform the source with the current estimate
    - match every source point to its nearest target point, dropping pairs
      farther apart than the correspondence tolerance and, when reciprocal
      matching is on, pairs whose target point has a different nearest source point
    - solve the incremental rigid transform in closed form (SVD)

Termination follows the usual ICP convergence criteria, checked in order:
iteration cap, transformation increment, absolute MSE change and relative MSE
change. The "similar" criteria only fire after
``max_iterations_similar_transforms`` consecutive similar iterations.

Fitness is the mean squared nearest-neighbour distance of the aligned
source against the whole target (lower is better).
"""
import logging
from typing import Optional, Tuple

import numpy as np

from .geometry import transform_points
from .oracle import AlignmentResult, ConvergenceState, RegistrationOracle

logger = logging.getLogger("scanner.icp")

_NN_CHUNK = 2048


def nearest_neighbours(points: np.ndarray, target: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Brute-force nearest neighbour search; returns (indices, squared distances)."""
    idx = np.empty(points.shape[0], dtype=int)
    d2 = np.empty(points.shape[0], dtype=float)
    for start in range(0, points.shape[0], _NN_CHUNK):
        block = points[start:start + _NN_CHUNK]
        diff = block[:, None, :] - target[None, :, :]
        dist = np.einsum("ijk,ijk->ij", diff, diff)
        nn = np.argmin(dist, axis=1)
        idx[start:start + block.shape[0]] = nn
        d2[start:start + block.shape[0]] = dist[np.arange(block.shape[0]), nn]
    return idx, d2


def match_correspondences(moved: np.ndarray, target: np.ndarray, max_d2: float,
                          reciprocal: bool = True) -> Tuple[np.ndarray, np.ndarray]:
    """Return (mask over source points, nearest target index per source point)."""
    idx, d2 = nearest_neighbours(moved, target)
    mask = d2 <= max_d2
    if reciprocal and np.any(mask):
        back = np.full(moved.shape[0], -1, dtype=int)
        back_idx, _ = nearest_neighbours(target[idx[mask]], moved)
        back[mask] = back_idx
        mask &= back == np.arange(moved.shape[0])
    return mask, idx


def best_fit_transform(src: np.ndarray, tgt: np.ndarray) -> np.ndarray:
    """Closed-form rigid transform (Kabsch) mapping ``src`` onto ``tgt``."""
    src_c = src.mean(axis=0)
    tgt_c = tgt.mean(axis=0)
    H = (src - src_c).T @ (tgt - tgt_c)
    U, _, Vt = np.linalg.svd(H)
    R = Vt.T @ U.T
    if np.linalg.det(R) < 0.0:
        Vt[-1, :] *= -1.0
        R = Vt.T @ U.T
    T = np.eye(4)
    T[:3, :3] = R
    T[:3, 3] = tgt_c - R @ src_c
    return T


def fitness_score(source: np.ndarray, target: np.ndarray, transform: np.ndarray) -> float:
    if source.shape[0] == 0 or target.shape[0] == 0:
        return float("inf")
    _, d2 = nearest_neighbours(transform_points(source, transform), target)
    return float(np.mean(d2))


class IcpOracle(RegistrationOracle):
    def __init__(self,
                 max_iterations: int = 50,
                 transformation_epsilon: float = 1e-8,
                 euclidean_fitness_epsilon: float = 1.0,
                 max_iterations_similar_transforms: int = 10,
                 rotation_epsilon: float = 0.99999,
                 relative_mse_epsilon: float = 1e-5,
                 min_correspondences: int = 3,
                 use_reciprocal_correspondences: bool = True):
        if max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        self.max_iterations = int(max_iterations)
        self.transformation_epsilon = float(transformation_epsilon)
        self.euclidean_fitness_epsilon = float(euclidean_fitness_epsilon)
        self.max_iterations_similar_transforms = int(max_iterations_similar_transforms)
        self.rotation_epsilon = float(rotation_epsilon)
        self.relative_mse_epsilon = float(relative_mse_epsilon)
        self.min_correspondences = int(min_correspondences)
        self.use_reciprocal_correspondences = bool(use_reciprocal_correspondences)

    @classmethod
    def from_config(cls, cfg) -> "IcpOracle":
        return cls(
            max_iterations=cfg.gicp_maximum_iterations,
            transformation_epsilon=cfg.gicp_transformation_epsilon,
            euclidean_fitness_epsilon=cfg.gicp_euclidean_fitness_epsilon,
            max_iterations_similar_transforms=cfg.gicp_max_iterations_similar_transforms,
        )

    def _is_small_increment(self, delta: np.ndarray) -> bool:
        cos_angle = 0.5 * (np.trace(delta[:3, :3]) - 1.0)
        translation_sqr = float(delta[:3, 3] @ delta[:3, 3])
        return cos_angle >= self.rotation_epsilon and translation_sqr <= self.transformation_epsilon

    def align(self,
              source: np.ndarray,
              target: np.ndarray,
              initial_guess: Optional[np.ndarray],
              correspondence_tolerance: float) -> AlignmentResult:
        source = np.asarray(source, dtype=float)
        target = np.asarray(target, dtype=float)
        transform = np.eye(4) if initial_guess is None else np.array(initial_guess, dtype=float)
        if source.shape[0] == 0 or target.shape[0] == 0:
            return AlignmentResult(False, float("inf"), transform, ConvergenceState.NO_CORRESPONDENCES)

        max_d2 = float(correspondence_tolerance) ** 2
        prev_mse: Optional[float] = None
        similar = 0
        state = ConvergenceState.NOT_CONVERGED
        iterations = 0
        while state is ConvergenceState.NOT_CONVERGED:
            moved = transform_points(source, transform)
            mask, idx = match_correspondences(moved, target, max_d2, self.use_reciprocal_correspondences)
            if int(mask.sum()) < self.min_correspondences:
                state = ConvergenceState.NO_CORRESPONDENCES
                break
            delta = best_fit_transform(moved[mask], target[idx[mask]])
            transform = delta @ transform
            iterations += 1
            # MSE of the correspondences under the updated transform
            residual = transform_points(source[mask], transform) - target[idx[mask]]
            mse = float(np.mean(np.einsum("ij,ij->i", residual, residual)))

            if iterations >= self.max_iterations:
                state = ConvergenceState.ITERATION_LIMIT
                break
            candidate = None
            if self._is_small_increment(delta):
                candidate = ConvergenceState.TRANSFORM_THRESHOLD
            elif prev_mse is not None and abs(mse - prev_mse) < self.euclidean_fitness_epsilon:
                candidate = ConvergenceState.ABSOLUTE_MSE
            elif prev_mse is not None and prev_mse > 0.0 and abs(mse - prev_mse) / prev_mse < self.relative_mse_epsilon:
                candidate = ConvergenceState.RELATIVE_MSE
            if candidate is not None:
                if similar >= self.max_iterations_similar_transforms:
                    state = candidate
                else:
                    similar += 1
            else:
                similar = 0
            prev_mse = mse

        converged = state not in (ConvergenceState.NOT_CONVERGED, ConvergenceState.NO_CORRESPONDENCES)
        fitness = fitness_score(source, target, transform)
        logger.debug("ICP %s after %d iterations, fitness=%.6f", state.value, iterations, fitness)
        return AlignmentResult(converged, fitness, transform, state, iterations)
