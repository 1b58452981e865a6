#!/usr/bin/env python3
"""Entry point for ``ros2 run scanner_node scanner_node``.

The node logic lives in :mod:`scanner_ros2.node`; the repository root must be
importable (``pip install -e .``) in the ROS 2 Python environment.
"""
from scanner_ros2.node import main

if __name__ == '__main__':
    main()
