"""JSON serialisation of registration records and keyframes for ROS 2 transport.

The helpers avoid depending on ``rclpy`` so encode/decode logic can be
exercised in unit tests without ROS 2 available. Payloads are compact UTF-8
JSON documents carried in ``std_msgs/UInt8MultiArray`` messages.
"""

from __future__ import annotations

import json
import logging
import math
import time
import uuid
from typing import Any, Dict, List, Optional

import numpy as np

from scanner_frontend.models import (
    AlignmentSummary,
    Factor,
    Keyframe,
    NewKeyframe,
    Pose2D,
    PoseDeltaWithUncertainty,
    RegistrationRecord,
    Scan,
    as_point_cloud,
    to_covariance,
)

logger = logging.getLogger("scanner_ros2.record_codec")


def _serialise_pose(p: Pose2D) -> List[float]:
    return [float(p.x), float(p.y), float(p.theta)]


def _deserialise_pose(values) -> Pose2D:
    if values is None:
        raise ValueError("Pose payload missing")
    vals = list(map(float, values))
    if len(vals) != 3:
        raise ValueError(f"Pose payload must have 3 elements, got {len(vals)}")
    return Pose2D(*vals)


def _serialise_covariance(cov) -> List[List[float]]:
    arr = np.asarray(cov, dtype=float)
    if arr.shape == (3, 3):
        return arr.tolist()
    if arr.size == 9:
        return arr.reshape(3, 3).tolist()
    raise ValueError(f"Covariance must have 9 elements; got shape {arr.shape}")


def _serialise_cloud(cloud) -> List[List[float]]:
    return np.asarray(cloud, dtype=float).reshape(-1, 3).tolist()


def _serialise_scan(scan: Optional[Scan]) -> Optional[Dict[str, Any]]:
    if scan is None:
        return None
    return {
        "stamp": float(scan.stamp),
        "frame_id": scan.frame_id,
        "angle_min": float(scan.angle_min),
        "angle_increment": float(scan.angle_increment),
        "range_min": float(scan.range_min),
        "range_max": float(scan.range_max),
        # JSON has no inf/nan
        "ranges": [float(r) if math.isfinite(r) else None for r in scan.ranges],
    }


def _deserialise_scan(payload: Optional[Dict[str, Any]]) -> Optional[Scan]:
    if payload is None:
        return None
    try:
        return Scan(
            stamp=float(payload["stamp"]),
            angle_min=float(payload["angle_min"]),
            angle_increment=float(payload["angle_increment"]),
            range_min=float(payload["range_min"]),
            range_max=float(payload["range_max"]),
            ranges=[float("inf") if r is None else float(r) for r in payload["ranges"]],
            frame_id=str(payload.get("frame_id", "")),
        )
    except KeyError as exc:
        raise ValueError(f"Scan payload missing field {exc}") from exc


def _serialise_keyframe(kf: Optional[Keyframe]) -> Optional[Dict[str, Any]]:
    if kf is None:
        return None
    return {
        "id": int(kf.id),
        "stamp": float(kf.stamp),
        "pose": _serialise_pose(kf.optimized_pose),
        "cloud": _serialise_cloud(kf.point_cloud),
        "scan": _serialise_scan(kf.scan),
    }


def _deserialise_keyframe(payload: Optional[Dict[str, Any]]) -> Optional[Keyframe]:
    if payload is None:
        return None
    if "id" not in payload:
        raise ValueError("Keyframe payload missing id")
    return Keyframe(
        id=int(payload["id"]),
        stamp=float(payload.get("stamp", 0.0)),
        point_cloud=as_point_cloud(payload.get("cloud", [])),
        optimized_pose=_deserialise_pose(payload.get("pose")),
        scan=_deserialise_scan(payload.get("scan")),
    )


def _serialise_factor(f: Optional[Factor]) -> Optional[Dict[str, Any]]:
    if f is None:
        return None
    delta = None
    if f.delta is not None:
        delta = {
            "pose": _serialise_pose(f.delta.pose),
            "covariance": _serialise_covariance(f.delta.covariance),
        }
    return {"id_1": int(f.id_1), "id_2": None if f.id_2 is None else int(f.id_2), "delta": delta}


def _deserialise_factor(payload: Optional[Dict[str, Any]]) -> Optional[Factor]:
    if payload is None:
        return None
    if "id_1" not in payload:
        raise ValueError("Factor payload missing id_1")
    delta = payload.get("delta")
    if delta is not None:
        delta = PoseDeltaWithUncertainty(
            pose=_deserialise_pose(delta.get("pose")),
            covariance=to_covariance(delta.get("covariance")),
        )
    id_2 = payload.get("id_2")
    return Factor(id_1=int(payload["id_1"]), id_2=None if id_2 is None else int(id_2), delta=delta)


def _serialise_alignment(a: Optional[AlignmentSummary]) -> Optional[Dict[str, Any]]:
    if a is None:
        return None
    fitness = float(a.fitness)
    return {
        "converged": bool(a.converged),
        "fitness": fitness if math.isfinite(fitness) else None,
        "state": a.convergence_state,
        "duration_s": float(a.duration_s),
    }


def _deserialise_alignment(payload: Optional[Dict[str, Any]]) -> Optional[AlignmentSummary]:
    if payload is None:
        return None
    fitness = payload.get("fitness")
    return AlignmentSummary(
        converged=bool(payload.get("converged", False)),
        fitness=float("inf") if fitness is None else float(fitness),
        convergence_state=str(payload.get("state", "not_converged")),
        duration_s=float(payload.get("duration_s", 0.0)),
    )


def encode_registration_record(record: RegistrationRecord, *, version: int = 1) -> bytes:
    """Serialise a ``RegistrationRecord`` into a compact JSON payload."""

    new = record.keyframe_new
    payload: Dict[str, Any] = {
        "version": version,
        "msg_id": uuid.uuid4().hex,
        # Sender timestamps for end-to-end latency accounting on subscribers
        "send_ts_mono": float(time.perf_counter()),
        "send_ts_wall": float(time.time()),
        "record": {
            "first_frame": bool(record.first_frame_flag),
            "keyframe": bool(record.keyframe_flag),
            "loop_closure": bool(record.loop_closure_flag),
            "keyframe_new": {
                "stamp": float(new.stamp),
                "cloud": _serialise_cloud(new.point_cloud),
                "scan": _serialise_scan(new.scan),
            },
            "keyframe_last": _serialise_keyframe(record.keyframe_last),
            "keyframe_loop": _serialise_keyframe(record.keyframe_loop),
            "factor_new": _serialise_factor(record.factor_new),
            "factor_loop": _serialise_factor(record.factor_loop),
            "alignment_last": _serialise_alignment(record.alignment_last),
            "alignment_loop": _serialise_alignment(record.alignment_loop),
        },
    }
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")


def decode_registration_record(data: Any) -> RegistrationRecord:
    """Decode bytes produced by :func:`encode_registration_record`."""

    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8")
    doc = json.loads(data)
    if not isinstance(doc, dict):
        raise ValueError("Registration payload must be a JSON object")
    version = doc.get("version", 1)
    if version != 1:
        logger.warning("Unknown registration record version %s; attempting fallback decode", version)
    payload = doc.get("record")
    if not isinstance(payload, dict):
        raise ValueError("Registration payload missing 'record' object")
    new = payload.get("keyframe_new")
    if not isinstance(new, dict):
        raise ValueError("Registration payload missing keyframe_new")
    return RegistrationRecord(
        first_frame_flag=bool(payload.get("first_frame", False)),
        keyframe_flag=bool(payload.get("keyframe", False)),
        loop_closure_flag=bool(payload.get("loop_closure", False)),
        keyframe_new=NewKeyframe(
            stamp=float(new.get("stamp", 0.0)),
            point_cloud=as_point_cloud(new.get("cloud", [])),
            scan=_deserialise_scan(new.get("scan")),
        ),
        keyframe_last=_deserialise_keyframe(payload.get("keyframe_last")),
        keyframe_loop=_deserialise_keyframe(payload.get("keyframe_loop")),
        factor_new=_deserialise_factor(payload.get("factor_new")),
        factor_loop=_deserialise_factor(payload.get("factor_loop")),
        alignment_last=_deserialise_alignment(payload.get("alignment_last")),
        alignment_loop=_deserialise_alignment(payload.get("alignment_loop")),
    )


def encode_keyframe(kf: Keyframe, *, version: int = 1) -> bytes:
    """Serialise a backend keyframe for the keyframe mirror topic."""
    payload = {"version": version, "keyframe": _serialise_keyframe(kf)}
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")


def decode_keyframe(data: Any) -> Keyframe:
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8")
    doc = json.loads(data)
    if not isinstance(doc, dict):
        raise ValueError("Keyframe payload must be a JSON object")
    version = doc.get("version", 1)
    if version != 1:
        logger.warning("Unknown keyframe message version %s; attempting fallback decode", version)
    kf = _deserialise_keyframe(doc.get("keyframe"))
    if kf is None:
        raise ValueError("Keyframe payload missing 'keyframe' object")
    return kf


__all__ = [
    "encode_registration_record",
    "decode_registration_record",
    "encode_keyframe",
    "decode_keyframe",
]
