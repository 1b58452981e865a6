"""Rigid-transform helpers on 4x4 homogeneous matrices."""
import math

import numpy as np

from .models import Pose2D


def wrap_angle(a: float) -> float:
    """Wrap an angle to (-pi, pi]."""
    wrapped = math.atan2(math.sin(a), math.cos(a))
    if wrapped == -math.pi:
        return math.pi
    return wrapped


def pose2_to_matrix(pose: Pose2D) -> np.ndarray:
    c, s = math.cos(pose.theta), math.sin(pose.theta)
    T = np.eye(4)
    T[0, 0], T[0, 1] = c, -s
    T[1, 0], T[1, 1] = s, c
    T[0, 3], T[1, 3] = pose.x, pose.y
    return T


def matrix_to_pose2(T: np.ndarray) -> Pose2D:
    """Project a 4x4 transform on the ground plane (x, y, yaw)."""
    T = np.asarray(T, dtype=float)
    if T.shape != (4, 4):
        raise ValueError(f"Expected a 4x4 transform, got shape {T.shape}")
    theta = math.atan2(T[1, 0], T[0, 0])
    return Pose2D(float(T[0, 3]), float(T[1, 3]), wrap_angle(theta))


def invert_transform(T: np.ndarray) -> np.ndarray:
    T = np.asarray(T, dtype=float)
    R = T[:3, :3]
    t = T[:3, 3]
    out = np.eye(4)
    out[:3, :3] = R.T
    out[:3, 3] = -R.T @ t
    return out


def relative_transform(T_a: np.ndarray, T_b: np.ndarray) -> np.ndarray:
    """Return inv(T_a) @ T_b, i.e. T_b expressed in the frame of T_a."""
    return invert_transform(T_a) @ np.asarray(T_b, dtype=float)


def compose_pose2(a: Pose2D, b: Pose2D) -> Pose2D:
    return matrix_to_pose2(pose2_to_matrix(a) @ pose2_to_matrix(b))


def transform_points(points: np.ndarray, T: np.ndarray) -> np.ndarray:
    pts = np.asarray(points, dtype=float)
    if pts.size == 0:
        return pts.reshape(0, 3)
    return pts @ T[:3, :3].T + T[:3, 3]
