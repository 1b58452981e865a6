"""Launch the scan registration front-end.

Launch arguments:

* ``scan_topic``: input ``sensor_msgs/LaserScan`` topic.
* ``params_file``: optional ROS 2 parameter YAML with scanner options
  (``fitness_keyframe_threshold``, ``loop_closure_skip``, ...).
* ``use_sim_time``: set ``true`` when playing back a bag.
"""

from launch import LaunchDescription
from launch.actions import DeclareLaunchArgument, OpaqueFunction
from launch.substitutions import LaunchConfiguration
from launch_ros.actions import Node


def _scanner_node(context, *args, **kwargs):
    params = [{
        'scan_topic': LaunchConfiguration('scan_topic').perform(context),
        'use_sim_time': LaunchConfiguration('use_sim_time').perform(context).lower() == 'true',
    }]
    params_file = LaunchConfiguration('params_file').perform(context)
    if params_file:
        params.append(params_file)
    return [Node(
        package='scanner_node',
        executable='scanner_node',
        name='scanner',
        parameters=params,
        output='screen',
    )]


def generate_launch_description() -> LaunchDescription:
    return LaunchDescription([
        DeclareLaunchArgument('scan_topic', default_value='/base_scan',
                              description='LaserScan input topic'),
        DeclareLaunchArgument('params_file', default_value='',
                              description='Parameter YAML with scanner options (empty for defaults)'),
        DeclareLaunchArgument('use_sim_time', default_value='false',
                              description='Use /clock for bag playback'),
        OpaqueFunction(function=_scanner_node),
    ])
