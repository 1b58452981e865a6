"""scanner_frontend: registration decision layer for a 2D laser SLAM front-end.

This package provides:
- Data models for scans, keyframes, factors and registration records
- The registration decision engine (keyframe vote, loop-closure pacing,
  carried initial guess)
- A displacement-scaled uncertainty model
- The registration oracle interface and a numpy ICP implementation
- The keyframe store interface and an in-memory store
- Scan preprocessing and a JSON scan-log loader

Design intent:
The engine depends only on the oracle and store interfaces so either side
can be swapped (external aligner, remote backend, test doubles).
"""
__all__ = ["config", "engine", "geometry", "icp", "keyframes", "loader",
           "models", "oracle", "preprocess", "uncertainty"]
__version__ = "0.1.0"
