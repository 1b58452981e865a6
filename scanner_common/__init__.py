"""Common utilities shared by the front-end, the reference backend and the ROS node.

This package hosts modules that are transport-agnostic (KPI logging,
alignment timing statistics, plotting).
"""
