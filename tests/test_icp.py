import math

import numpy as np
import pytest

from scanner_frontend.config import ScannerConfig
from scanner_frontend.geometry import matrix_to_pose2, transform_points
from scanner_frontend.icp import IcpOracle, best_fit_transform, fitness_score, match_correspondences
from scanner_frontend.oracle import ConvergenceState

from conftest import room_cloud, translation


def test_best_fit_recovers_known_transform():
    src = room_cloud()
    T = translation(0.3, -0.2, 0.25)
    est = best_fit_transform(src, transform_points(src, T))
    assert np.allclose(est, T, atol=1e-9)


def test_identical_clouds_converge_at_identity():
    cloud = room_cloud()
    res = IcpOracle().align(cloud, cloud, np.eye(4), 0.05)
    assert res.converged
    assert res.fitness == pytest.approx(0.0, abs=1e-12)
    assert np.allclose(res.transform, np.eye(4), atol=1e-9)
    assert res.convergence_state in (ConvergenceState.TRANSFORM_THRESHOLD,
                                     ConvergenceState.ABSOLUTE_MSE,
                                     ConvergenceState.RELATIVE_MSE)


def test_recovers_small_motion():
    # displacement stays below half the point spacing, so the first matching is exact
    target = room_cloud(20)
    T_true = translation(0.01, 0.005, math.radians(0.2))
    # source expressed in its own frame: target = T_true * source
    source = transform_points(target, np.linalg.inv(T_true))
    res = IcpOracle(max_iterations=100).align(source, target, np.eye(4), 0.5)
    assert res.converged
    pose = matrix_to_pose2(res.transform)
    assert pose.x == pytest.approx(0.01, abs=1e-6)
    assert pose.y == pytest.approx(0.005, abs=1e-6)
    assert pose.theta == pytest.approx(math.radians(0.2), abs=1e-6)
    assert res.fitness < 1e-10


def test_initial_guess_is_used():
    target = room_cloud()
    T_true = translation(1.5, 0.0, 0.0)
    source = transform_points(target, np.linalg.inv(T_true))
    # far beyond the tolerance without a guess
    res = IcpOracle().align(source, target, T_true, 0.05)
    assert res.converged
    assert np.allclose(res.transform, T_true, atol=1e-6)


def test_no_correspondences_when_clouds_far_apart():
    cloud = room_cloud()
    far = cloud + np.array([100.0, 0.0, 0.0])
    res = IcpOracle().align(far, cloud, np.eye(4), 0.05)
    assert not res.converged
    assert res.convergence_state is ConvergenceState.NO_CORRESPONDENCES


def test_empty_input_is_not_converged():
    res = IcpOracle().align(np.zeros((0, 3)), room_cloud(), np.eye(4), 0.05)
    assert not res.converged
    assert math.isinf(res.fitness)


def test_iteration_limit_counts_as_converged():
    cloud = room_cloud()
    res = IcpOracle(max_iterations=1).align(cloud, cloud, np.eye(4), 0.05)
    assert res.converged
    assert res.convergence_state is ConvergenceState.ITERATION_LIMIT
    assert res.iterations == 1


def test_fitness_score_is_mean_squared_distance():
    target = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0]])
    source = np.array([[0.0, 0.1, 0.0], [1.0, 0.3, 0.0]])
    assert fitness_score(source, target, np.eye(4)) == pytest.approx((0.01 + 0.09) / 2)


def test_from_config():
    oracle = IcpOracle.from_config(ScannerConfig(gicp_maximum_iterations=7))
    assert oracle.max_iterations == 7
    assert oracle.max_iterations_similar_transforms == 10
    assert oracle.euclidean_fitness_epsilon == pytest.approx(1.0)


def test_reciprocal_matching_drops_one_sided_pairs():
    target = np.array([[0.0, 0.0, 0.0], [10.0, 0.0, 0.0], [0.0, 10.0, 0.0]])
    # the second source point also lands on target[0], but target[0] is closer to the first
    moved = np.array([[0.1, 0.0, 0.0], [0.3, 0.0, 0.0], [10.1, 0.0, 0.0], [0.1, 10.0, 0.0]])
    mask, idx = match_correspondences(moved, target, 1.0)
    assert mask.tolist() == [True, False, True, True]
    assert idx.tolist() == [0, 0, 1, 2]
    one_sided, _ = match_correspondences(moved, target, 1.0, reciprocal=False)
    assert one_sided.tolist() == [True, True, True, True]


def test_many_to_one_matches_leave_no_correspondences():
    target = np.array([[0.0, 0.0, 0.0], [10.0, 0.0, 0.0], [0.0, 10.0, 0.0]])
    source = np.array([[0.1, 0.0, 0.0], [0.2, 0.0, 0.0], [0.0, 0.2, 0.0]])
    res = IcpOracle().align(source, target, np.eye(4), 1.0)
    assert res.convergence_state is ConvergenceState.NO_CORRESPONDENCES
    res = IcpOracle(use_reciprocal_correspondences=False).align(source, target, np.eye(4), 1.0)
    assert res.convergence_state is not ConvergenceState.NO_CORRESPONDENCES


def test_reciprocal_matching_is_on_by_default():
    assert IcpOracle().use_reciprocal_correspondences
    assert IcpOracle.from_config(ScannerConfig()).use_reciprocal_correspondences
