from __future__ import annotations

import dataclasses

import pytest

from action_tracker.recognition.types import (
    LOW_CONFIDENCE,
    NO_SUBJECT,
    STARTING,
    Joint,
    Orientation,
    Scored,
    Skeleton,
)


@pytest.mark.parametrize(
    "angle,expected",
    [
        (0, Orientation.UP),
        (90, Orientation.RIGHT),
        (180, Orientation.DOWN),
        (270, Orientation.LEFT),
        (45, Orientation.UP),
        (-90, Orientation.UP),
    ],
)
def test_orientation_from_rotation_angle(angle, expected):
    assert Orientation.from_rotation_angle(angle) is expected


@pytest.mark.parametrize(
    "confidence,text",
    [
        (0.85, "85.0 %"),
        (0.8567, "85.7 %"),
        (0.996, "100 %"),
        (1.0, "100 %"),
        (0.9949, "99.5 %"),
    ],
)
def test_confidence_text(confidence, text):
    assert Scored("target", confidence).confidence_text == text


def test_sentinels_have_no_confidence():
    for sentinel in (STARTING, NO_SUBJECT, LOW_CONFIDENCE):
        assert sentinel.confidence is None
        assert not sentinel.is_model_label
        assert sentinel.confidence_text == sentinel.label
    assert STARTING.label == "Starting Up"
    assert NO_SUBJECT.label == "No Person"
    assert LOW_CONFIDENCE.label == "Low Confidence"


def test_skeleton_is_immutable():
    points = {"nose": Joint(0.1, 0.2, 0.9)}
    skeleton = Skeleton(points)
    points["neck"] = Joint(0.3, 0.3, 0.9)

    assert len(skeleton) == 1
    with pytest.raises(TypeError):
        skeleton.joints["neck"] = Joint(0.0, 0.0, 0.0)  # type: ignore[index]
    with pytest.raises(dataclasses.FrozenInstanceError):
        skeleton.joints = {}  # type: ignore[misc]


def test_bounding_box_uses_visible_joints_only():
    skeleton = Skeleton.from_points(
        {
            "nose": (0.2, 0.9, 0.9),
            "left_ankle": (0.4, 0.1, 0.5),
            "right_wrist": (0.95, 0.5, 0.1),
        }
    )
    assert skeleton.bounding_box(0.2) == pytest.approx((0.2, 0.1, 0.4, 0.9))
    assert skeleton.area(0.2) == pytest.approx(0.16)
    assert skeleton.area(0.0) == pytest.approx(0.75 * 0.8)
    assert Skeleton({}).bounding_box() is None


def test_connections_skip_invisible_joints():
    skeleton = Skeleton.from_points(
        {
            "left_shoulder": (0.4, 0.7, 0.9),
            "left_elbow": (0.35, 0.55, 0.9),
            "left_wrist": (0.3, 0.4, 0.05),
        }
    )
    assert skeleton.connections(0.2) == [((0.4, 0.7), (0.35, 0.55))]
