"""QoS profiles for the scanner node's topics.

Profiles are plain dictionaries so parameters can be validated without
``rclpy``; :func:`to_rclpy_profile` translates them when the node creates its
publishers and subscriptions.
"""

from __future__ import annotations

from typing import Dict, Optional

DEFAULT_RELIABILITY = "reliable"
DEFAULT_DURABILITY = "volatile"
DEFAULT_DEPTH = 10

_POLICIES = {
    "reliability": ("reliable", "best_effort"),
    "durability": ("volatile", "transient_local"),
}


def default_qos_profile() -> Dict[str, object]:
    """Profile for the registration record publisher."""
    return {"reliability": DEFAULT_RELIABILITY, "durability": DEFAULT_DURABILITY, "depth": DEFAULT_DEPTH}


def sensor_qos_profile() -> Dict[str, object]:
    """Laser drivers usually publish best-effort."""
    return dict(default_qos_profile(), reliability="best_effort", depth=5)


def keyframe_qos_profile() -> Dict[str, object]:
    """Latched so a late-joining node still receives the backend's keyframes."""
    return dict(default_qos_profile(), durability="transient_local", depth=100)


def _check_policy(kind: str, value: str) -> str:
    norm = value.lower()
    if norm not in _POLICIES[kind]:
        raise ValueError(f"Unsupported {kind} policy {value!r}")
    return norm


def parse_qos_options(
    reliability: Optional[str] = None,
    durability: Optional[str] = None,
    depth: Optional[int] = None,
    base: Optional[Dict[str, object]] = None,
) -> Dict[str, object]:
    """Validate QoS settings and return a profile dictionary."""
    profile = dict(base) if base else default_qos_profile()
    if reliability:
        profile["reliability"] = _check_policy("reliability", reliability)
    if durability:
        profile["durability"] = _check_policy("durability", durability)
    if depth is not None:
        if depth <= 0:
            raise ValueError("QoS depth must be positive")
        profile["depth"] = int(depth)
    return profile


def to_rclpy_profile(profile: Dict[str, object]):
    """Build an ``rclpy.qos.QoSProfile``; requires ROS 2."""

    from rclpy.qos import QoSProfile, ReliabilityPolicy, DurabilityPolicy  # type: ignore

    reliability = str(profile.get("reliability", DEFAULT_RELIABILITY)).lower()
    durability = str(profile.get("durability", DEFAULT_DURABILITY)).lower()
    return QoSProfile(
        depth=int(profile.get("depth", DEFAULT_DEPTH)),
        reliability=(
            ReliabilityPolicy.RELIABLE if reliability == "reliable" else ReliabilityPolicy.BEST_EFFORT
        ),
        durability=(
            DurabilityPolicy.TRANSIENT_LOCAL if durability == "transient_local" else DurabilityPolicy.VOLATILE
        ),
    )
