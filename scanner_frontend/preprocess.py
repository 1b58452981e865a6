"""Scan -> point cloud conversion."""
import math
from typing import NamedTuple

import numpy as np

from .models import Scan


class MalformedScanError(ValueError):
    """Raised for scans that cannot be turned into a point cloud."""


class ScanFields(NamedTuple):
    stamp: float
    angle_min: float
    angle_increment: float
    range_min: float
    range_max: float
    ranges: np.ndarray


def validate_scan(scan: Scan) -> ScanFields:
    """Coerce the numeric scan fields to floats, rejecting anything unusable."""
    if scan is None:
        raise MalformedScanError("Scan is missing")
    if scan.ranges is None or len(scan.ranges) == 0:
        raise MalformedScanError("Scan has no range readings")
    try:
        fields = ScanFields(
            stamp=float(scan.stamp),
            angle_min=float(scan.angle_min),
            angle_increment=float(scan.angle_increment),
            range_min=float(scan.range_min),
            range_max=float(scan.range_max),
            ranges=np.array([float(r) for r in scan.ranges], dtype=float),
        )
    except (TypeError, ValueError) as exc:
        raise MalformedScanError(f"Scan has a non-numeric field: {exc}") from exc
    if not math.isfinite(fields.stamp):
        raise MalformedScanError(f"Scan stamp is not finite: {scan.stamp!r}")
    if fields.angle_increment == 0 or not math.isfinite(fields.angle_increment):
        raise MalformedScanError(f"Invalid angle_increment {scan.angle_increment!r}")
    if not math.isfinite(fields.angle_min):
        raise MalformedScanError(f"Invalid angle_min {scan.angle_min!r}")
    return fields


def scan_to_pointcloud(scan: Scan) -> np.ndarray:
    """Project valid range readings into the scan plane as (N, 3) points with z = 0."""
    fields = validate_scan(scan)
    ranges = fields.ranges
    angles = fields.angle_min + fields.angle_increment * np.arange(ranges.shape[0])
    valid = np.isfinite(ranges) & (ranges >= fields.range_min) & (ranges <= fields.range_max)
    if not np.any(valid):
        raise MalformedScanError("Scan has no valid range reading")
    r = ranges[valid]
    a = angles[valid]
    return np.column_stack([r * np.cos(a), r * np.sin(a), np.zeros_like(r)])
