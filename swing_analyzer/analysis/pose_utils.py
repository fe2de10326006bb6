"""Pose geometry utilities shared across analysis modules.

Every helper takes a `PoseResult` plus the `Topology` it is expressed in,
and treats keypoints below the confidence floor as absent: such helpers
return None instead of a number computed from an unreliable joint.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from ..config.keypoints import (
    CORE_JOINTS,
    AngleDefinition,
    SegmentDefinition,
    Topology,
)
from ..core.types import PoseResult


def joint_xy(
    pose: Optional[PoseResult], topology: Topology, joint: str, min_conf: float
) -> Optional[np.ndarray]:
    """Position of a named joint, or None when missing or unreliable."""
    if pose is None:
        return None
    kp = pose.keypoint(topology.index(joint))
    if kp is None or not kp.is_valid(min_conf):
        return None
    return np.array([kp.x, kp.y], dtype=np.float64)


def distance(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.linalg.norm(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)))


def angle_at(a: np.ndarray, vertex: np.ndarray, c: np.ndarray) -> float:
    """Angle ABC at `vertex` in degrees (0-180); 0 for a zero-length arm."""
    v1 = np.asarray(a, dtype=np.float64) - np.asarray(vertex, dtype=np.float64)
    v2 = np.asarray(c, dtype=np.float64) - np.asarray(vertex, dtype=np.float64)
    n1 = np.linalg.norm(v1)
    n2 = np.linalg.norm(v2)
    if n1 == 0 or n2 == 0:
        return 0.0
    cos = float(np.dot(v1, v2) / (n1 * n2))
    return float(np.degrees(np.arccos(np.clip(cos, -1.0, 1.0))))


def segment_length(
    pose: Optional[PoseResult], topology: Topology, segment: SegmentDefinition, min_conf: float
) -> Optional[float]:
    p1 = joint_xy(pose, topology, segment.joint1, min_conf)
    p2 = joint_xy(pose, topology, segment.joint2, min_conf)
    if p1 is None or p2 is None:
        return None
    return distance(p1, p2)


def joint_angle(
    pose: Optional[PoseResult], topology: Topology, angle: AngleDefinition, min_conf: float
) -> Optional[float]:
    p1 = joint_xy(pose, topology, angle.joint1, min_conf)
    v = joint_xy(pose, topology, angle.vertex, min_conf)
    p3 = joint_xy(pose, topology, angle.joint3, min_conf)
    if p1 is None or v is None or p3 is None:
        return None
    return angle_at(p1, v, p3)


def body_center(
    pose: Optional[PoseResult], topology: Topology, min_conf: float
) -> Optional[np.ndarray]:
    """Mean of the valid shoulders and hips; None if fewer than two are valid."""
    points = [joint_xy(pose, topology, j, min_conf) for j in CORE_JOINTS]
    points = [p for p in points if p is not None]
    if len(points) < 2:
        return None
    return np.mean(points, axis=0)


def torso_height(
    pose: Optional[PoseResult], topology: Topology, min_conf: float
) -> Optional[float]:
    """Average of left and right shoulder-to-hip distances.

    Both sides are required; callers fall back to raw pixels on None.
    """
    sides = []
    for side in ("left", "right"):
        sh = joint_xy(pose, topology, f"{side}_shoulder", min_conf)
        hip = joint_xy(pose, topology, f"{side}_hip", min_conf)
        if sh is None or hip is None:
            return None
        sides.append(distance(sh, hip))
    height = float(np.mean(sides))
    return height if height > 0 else None


def shoulder_hip_span(
    pose: Optional[PoseResult], topology: Topology, min_conf: float
) -> Optional[float]:
    """Vertical shoulder-to-hip span, left side first, right side as fallback."""
    for side in ("left", "right"):
        sh = joint_xy(pose, topology, f"{side}_shoulder", min_conf)
        hip = joint_xy(pose, topology, f"{side}_hip", min_conf)
        if sh is not None and hip is not None:
            span = abs(float(hip[1] - sh[1]))
            if span > 0:
                return span
    return None


def cosine_similarity(a: PoseResult, b: PoseResult, min_conf: float = 0.3) -> float:
    """Cosine similarity of the flattened coordinates of mutually valid joints.

    Returns 0 when the poses differ in size or share no valid joint.
    """
    if len(a) != len(b):
        return 0.0
    va = []
    vb = []
    for ka, kb in zip(a.keypoints, b.keypoints):
        if ka.is_valid(min_conf) and kb.is_valid(min_conf):
            va.extend((ka.x, ka.y))
            vb.extend((kb.x, kb.y))
    if not va:
        return 0.0
    va = np.asarray(va)
    vb = np.asarray(vb)
    na = np.linalg.norm(va)
    nb = np.linalg.norm(vb)
    if na == 0 or nb == 0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))
