"""ROS 2 transport for the scan registration front-end.

JSON codecs and QoS helpers import without ``rclpy``; only
:mod:`scanner_ros2.node` needs a ROS 2 runtime, and it imports it lazily.
"""
