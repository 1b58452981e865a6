"""Helpers for enabling ROS 2 simulated time on nodes (scan bag playback)."""
from __future__ import annotations

import logging
import os
from typing import Any

logger = logging.getLogger("scanner_ros2.sim_time")


def use_sim_time() -> bool:
    flag = os.environ.get("SCANNER_USE_SIM_TIME")
    if not flag:
        return False
    return flag.strip().lower() not in {"0", "false", "no"}


def configure_sim_time(node: Any) -> bool:
    """Set ``use_sim_time`` on ``node`` when requested; returns whether it was set."""
    if not use_sim_time() or node is None:
        return False
    try:
        from rclpy.parameter import Parameter  # type: ignore
    except ImportError:
        logger.warning("SCANNER_USE_SIM_TIME set but rclpy is not available")
        return False
    node.set_parameters([Parameter(name="use_sim_time", value=True)])
    return True


__all__ = ["use_sim_time", "configure_sim_time"]
