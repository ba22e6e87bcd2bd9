"""Pose estimation and frame capture components."""

from .frame_source import CameraFrameSource, VideoFileFrameSource, iter_video_frames, validate_video_readable
from .pose_detector import AsyncPoseDetector, PoseDetector, landmarks_to_skeleton

__all__ = [
    "PoseDetector",
    "AsyncPoseDetector",
    "landmarks_to_skeleton",
    "CameraFrameSource",
    "VideoFileFrameSource",
    "iter_video_frames",
    "validate_video_readable",
]
