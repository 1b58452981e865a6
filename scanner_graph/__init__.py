"""scanner_graph: reference pose-graph backend for the scan registration front-end.

This package provides:
- A keyframe store that assigns ids and answers last/closest queries
- Pose2 factor construction from registration records
- An iSAM2 manager for incremental optimization
- Robust noise builders (Huber/Cauchy) for loop-closure factors
"""
__all__ = ["graph", "isam", "robust"]
__version__ = "0.1.0"
