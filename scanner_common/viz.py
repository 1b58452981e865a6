from typing import Iterable, Tuple
import math

import numpy as np

import matplotlib
matplotlib.use("Agg")  # for headless export
import matplotlib.pyplot as plt


def keyframe_xy(keyframes) -> np.ndarray:
    coords = [[kf.optimized_pose.x, kf.optimized_pose.y, kf.optimized_pose.theta] for kf in keyframes]
    return np.asarray(coords, dtype=float).reshape(-1, 3)


def plot_keyframes_2d(keyframes, loop_edges: Iterable[Tuple[int, int]], path_png: str,
                      heading_len: float = 0.0):
    """Plot optimized keyframe poses in XY with loop-closure edges overlaid."""
    kfs = list(keyframes)
    by_id = {kf.id: kf for kf in kfs}
    xyt = keyframe_xy(kfs)
    plt.figure(figsize=(8, 6))
    if xyt.shape[0]:
        plt.plot(xyt[:, 0], xyt[:, 1], "-o", markersize=3, label="keyframes")
        if heading_len > 0.0:
            for x, y, th in xyt:
                plt.plot([x, x + heading_len * math.cos(th)], [y, y + heading_len * math.sin(th)],
                         color="gray", linewidth=0.8)
    labelled = False
    for a, b in loop_edges:
        if a not in by_id or b not in by_id:
            continue
        pa, pb = by_id[a].optimized_pose, by_id[b].optimized_pose
        plt.plot([pa.x, pb.x], [pa.y, pb.y], "r--", linewidth=1.0,
                 label=None if labelled else "loop closures")
        labelled = True
    plt.axis('equal')
    plt.xlabel("x [m]"); plt.ylabel("y [m]")
    plt.legend()
    plt.title("Keyframes (XY)")
    plt.tight_layout()
    plt.savefig(path_png, dpi=150)
    plt.close()
