"""Relative joint metrics recorded frame by frame for charting.

Three independent series are kept, all invariant to where the person stands
in the frame:

- segment lengths, normalized by torso height
- joint angles and their frame-to-frame change
- joint motion relative to the body center (position, velocity, acceleration)

Each named series is a bounded ring buffer; the oldest samples drop first.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

from ..config.keypoints import BODY_SEGMENTS, COCO_17, JOINT_ANGLES, TRACKABLE_JOINTS, Topology
from ..config.settings import JointHistoryConfig
from ..core.types import PoseResult
from .pose_utils import body_center, joint_angle, joint_xy, segment_length, torso_height


@dataclass(frozen=True)
class SegmentSample:
    frame: int
    timestamp_s: float
    length: float             # px
    normalized_length: float  # length / torso height (raw px when unknown)
    length_change: float      # ratio to previous sample, 1.0 = unchanged
    is_corrupted: bool = False


@dataclass(frozen=True)
class AngleSample:
    frame: int
    timestamp_s: float
    angle: float         # degrees, 0-180
    angle_change: float  # absolute delta from previous sample
    is_corrupted: bool = False


@dataclass(frozen=True)
class AccelerationSample:
    frame: int
    timestamp_s: float
    relative_x: float
    relative_y: float
    velocity_x: float
    velocity_y: float
    velocity: float
    acceleration_x: float
    acceleration_y: float
    acceleration: float
    is_corrupted: bool = False


class JointHistoryRecorder:
    """Accumulates per-frame relative metrics for one person."""

    def __init__(self, config: Optional[JointHistoryConfig] = None, topology: Topology = COCO_17):
        self.config = config or JointHistoryConfig()
        self.topology = topology
        self._segments: Dict[str, Deque[SegmentSample]] = {}
        self._angles: Dict[str, Deque[AngleSample]] = {}
        self._acceleration: Dict[str, Deque[AccelerationSample]] = {}

    def _series(self, store: Dict[str, Deque], name: str) -> Deque:
        series = store.get(name)
        if series is None:
            series = deque(maxlen=max(1, self.config.max_history_length))
            store[name] = series
        return series

    def record(
        self,
        pose: Optional[PoseResult],
        frame: int,
        timestamp_s: float,
        is_corrupted: bool = False,
    ) -> None:
        """Append one sample per measurable segment, angle and trackable joint.

        Args:
            pose: Pose of the tracked person, or None when nobody was detected
            frame: Frame index
            timestamp_s: Media time of the frame
            is_corrupted: Frame was flagged by the stability filter
        """
        if pose is None:
            return
        topo = self.topology
        min_conf = self.config.min_confidence

        torso = torso_height(pose, topo, min_conf)
        for seg in BODY_SEGMENTS:
            length = segment_length(pose, topo, seg, min_conf)
            if length is None:
                continue
            series = self._series(self._segments, seg.name)
            change = 1.0
            if series and series[-1].length > 0:
                change = length / series[-1].length
            series.append(SegmentSample(
                frame=frame,
                timestamp_s=timestamp_s,
                length=length,
                normalized_length=length / torso if torso else length,
                length_change=change,
                is_corrupted=is_corrupted,
            ))

        for angle_def in JOINT_ANGLES:
            angle = joint_angle(pose, topo, angle_def, min_conf)
            if angle is None:
                continue
            series = self._series(self._angles, angle_def.name)
            change = abs(angle - series[-1].angle) if series else 0.0
            series.append(AngleSample(frame, timestamp_s, angle, change, is_corrupted))

        center = body_center(pose, topo, min_conf)
        if center is None:
            return
        for display_name, joint in TRACKABLE_JOINTS:
            xy = joint_xy(pose, topo, joint, min_conf)
            if xy is None:
                continue
            rx, ry = float(xy[0] - center[0]), float(xy[1] - center[1])
            series = self._series(self._acceleration, display_name)
            vx = vy = ax = ay = 0.0
            if series:
                prev = series[-1]
                vx, vy = rx - prev.relative_x, ry - prev.relative_y
                ax, ay = vx - prev.velocity_x, vy - prev.velocity_y
            series.append(AccelerationSample(
                frame=frame,
                timestamp_s=timestamp_s,
                relative_x=rx,
                relative_y=ry,
                velocity_x=vx,
                velocity_y=vy,
                velocity=(vx * vx + vy * vy) ** 0.5,
                acceleration_x=ax,
                acceleration_y=ay,
                acceleration=(ax * ax + ay * ay) ** 0.5,
                is_corrupted=is_corrupted,
            ))

    # -- accessors --------------------------------------------------------

    def segment_history(self, name: str) -> List[SegmentSample]:
        return list(self._segments.get(name, ()))

    def angle_history(self, name: str) -> List[AngleSample]:
        return list(self._angles.get(name, ()))

    def acceleration_history(self, joint: str) -> List[AccelerationSample]:
        return list(self._acceleration.get(joint, ()))

    @property
    def segment_names(self) -> List[str]:
        return [s.name for s in BODY_SEGMENTS]

    @property
    def angle_names(self) -> List[str]:
        return [a.name for a in JOINT_ANGLES]

    @property
    def trackable_joints(self) -> List[str]:
        return [name for name, _ in TRACKABLE_JOINTS]

    def clear(self):
        self._segments.clear()
        self._angles.clear()
        self._acceleration.clear()
