"""ROS 2 adapter around the registration engine.

Subscribes to ``sensor_msgs/LaserScan``, runs the engine once per scan and
publishes every record as a JSON ``std_msgs/UInt8MultiArray``. The backend's
keyframes arrive on a separate JSON topic and are mirrored into an
:class:`InMemoryKeyframeStore`, which is what the engine queries; an empty
mirror is the first-frame case.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager
from typing import Any, Dict, Optional

from scanner_frontend.config import ScannerConfig
from scanner_frontend.engine import RegistrationEngine
from scanner_frontend.icp import IcpOracle
from scanner_frontend.keyframes import InMemoryKeyframeStore
from scanner_frontend.models import Scan
from .qos import default_qos_profile, keyframe_qos_profile, sensor_qos_profile, to_rclpy_profile
from .record_codec import decode_keyframe, encode_registration_record
from .sim_time import configure_sim_time

logger = logging.getLogger("scanner_ros2.node")

NODE_OPTIONS = {
    "scan_topic": "/base_scan",
    "keyframe_topic": "/graph/keyframes",
    "registration_topic": "/scanner/registration",
}


class NodeStartupError(RuntimeError):
    """Raised when the ROS 2 node cannot be constructed or started."""


def stamp_to_seconds(stamp) -> float:
    return float(stamp.sec) + float(stamp.nanosec) * 1e-9


def laserscan_to_scan(msg) -> Scan:
    """Convert a ``sensor_msgs/LaserScan`` (or any object with the same fields)."""
    return Scan(
        stamp=stamp_to_seconds(msg.header.stamp),
        angle_min=float(msg.angle_min),
        angle_increment=float(msg.angle_increment),
        range_min=float(msg.range_min),
        range_max=float(msg.range_max),
        ranges=[float(r) for r in msg.ranges],
        frame_id=str(msg.header.frame_id),
    )


def split_parameters(params: Dict[str, Any]):
    """Separate node-level options (topics) from scanner options."""
    node_opts = dict(NODE_OPTIONS)
    scanner_opts: Dict[str, Any] = {}
    known = set(ScannerConfig.option_names())
    for name, value in params.items():
        if name in node_opts:
            node_opts[name] = str(value)
        elif name in known:
            scanner_opts[name] = value
    return node_opts, scanner_opts


class ScannerNode(AbstractContextManager):
    def __init__(self, node_name: str = "scanner", params: Optional[Dict[str, Any]] = None):
        self._node_name = node_name
        self._extra_params = dict(params or {})
        self._rclpy = None
        self._node = None
        self._publisher = None
        self._subscriptions = []
        self._should_shutdown = False
        self.store = InMemoryKeyframeStore()
        self.engine: Optional[RegistrationEngine] = None

    def _ensure_rclpy(self):
        try:
            import rclpy  # type: ignore
            from sensor_msgs.msg import LaserScan  # type: ignore
            from std_msgs.msg import UInt8MultiArray  # type: ignore
        except Exception as exc:  # pragma: no cover - requires ROS 2 runtime
            raise NodeStartupError(
                "ROS 2 node requested but rclpy/sensor_msgs/std_msgs are not available"
            ) from exc
        return rclpy, LaserScan, UInt8MultiArray

    def __enter__(self):  # pragma: no cover - requires ROS 2 runtime
        rclpy, LaserScan, UInt8MultiArray = self._ensure_rclpy()
        self._rclpy = rclpy
        if not rclpy.ok():
            rclpy.init()
            self._should_shutdown = True
        self._node = rclpy.create_node(
            self._node_name,
            automatically_declare_parameters_from_overrides=True,
        )
        configure_sim_time(self._node)

        params = {name: p.value for name, p in self._node.get_parameters_by_prefix("").items()}
        params.update(self._extra_params)
        node_opts, scanner_opts = split_parameters(params)
        config = ScannerConfig.from_mapping(scanner_opts)
        self.engine = RegistrationEngine(self.store, IcpOracle.from_config(config), config)

        self._msg_type = UInt8MultiArray
        self._publisher = self._node.create_publisher(
            UInt8MultiArray, node_opts["registration_topic"], to_rclpy_profile(default_qos_profile()))
        self._subscriptions.append(self._node.create_subscription(
            LaserScan, node_opts["scan_topic"], self._on_scan, to_rclpy_profile(sensor_qos_profile())))
        self._subscriptions.append(self._node.create_subscription(
            UInt8MultiArray, node_opts["keyframe_topic"], self._on_keyframe,
            to_rclpy_profile(keyframe_qos_profile())))
        logger.info("Scanner node ready: scans on %s, keyframes on %s, records on %s",
                    node_opts["scan_topic"], node_opts["keyframe_topic"], node_opts["registration_topic"])
        return self

    def _on_keyframe(self, msg):  # pragma: no cover - requires ROS 2 runtime
        try:
            kf = decode_keyframe(bytes(msg.data))
        except ValueError as exc:
            logger.warning("Failed to decode keyframe message: %s", exc)
            return
        self.store.upsert(kf)

    def handle_scan(self, scan: Scan) -> Optional[bytes]:
        """Run the engine on ``scan`` and return the encoded record (None if rejected)."""
        if self.engine is None:
            raise NodeStartupError("ScannerNode must be entered before handling scans")
        record = self.engine.process_scan(scan)
        if record is None:
            return None
        return encode_registration_record(record)

    def _on_scan(self, msg):  # pragma: no cover - requires ROS 2 runtime
        payload = self.handle_scan(laserscan_to_scan(msg))
        if payload is None:
            return
        out = self._msg_type()
        out.data = list(payload)
        self._publisher.publish(out)

    def spin(self) -> None:  # pragma: no cover - requires ROS 2 runtime
        if self._node is None:
            raise NodeStartupError("ScannerNode must be entered before spinning")
        # Single-threaded executor: one scan is processed to completion before the next
        self._rclpy.spin(self._node)

    def close(self) -> None:
        if self._node is not None:
            try:
                self._node.destroy_node()
            finally:
                self._node = None
        if self._should_shutdown and self._rclpy is not None:
            self._rclpy.shutdown()
            self._should_shutdown = False

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def main(args=None) -> None:  # pragma: no cover - requires ROS 2 runtime
    logging.basicConfig(level="INFO", format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    with ScannerNode() as node:
        try:
            node.spin()
        except KeyboardInterrupt:
            logger.info("Scanner node interrupted; shutting down")
