"""Temporal smoothing of estimator output."""

from __future__ import annotations

from typing import Dict, List, Optional

import numpy as np

from ..config.keypoints import Topology, COCO_17
from .types import PoseResult


class KeypointSmoother:
    """
    Smooth keypoints over time using exponential moving average.

    Reduces jitter in live pose detection. Wrists and ankles move fastest
    during a swing, so they get less smoothing than the rest of the body.
    State is kept per detected person (by track id, else by list position).
    """

    FAST_JOINTS = ("left_wrist", "right_wrist", "left_ankle", "right_ankle")

    def __init__(
        self,
        smoothing_factor: float = 0.5,
        min_confidence: float = 0.3,
        topology: Topology = COCO_17,
    ):
        """
        Initialize keypoint smoother.

        Args:
            smoothing_factor: EMA factor (0-1). Higher = more smoothing, more lag.
            min_confidence: Keypoints below this keep their previous position.
            topology: Skeleton the poses are expressed in.
        """
        self.smoothing_factor = smoothing_factor
        self.fast_smoothing_factor = max(0.1, smoothing_factor - 0.3)
        self.min_confidence = min_confidence
        self._fast = {topology.index(j) for j in self.FAST_JOINTS}
        self._prev: Dict[object, np.ndarray] = {}

    def smooth(self, poses: List[PoseResult]) -> List[PoseResult]:
        """
        Apply temporal smoothing to every pose of one frame.

        Args:
            poses: Poses detected in the current frame

        Returns:
            Smoothed poses, in the same order
        """
        out = []
        seen = set()
        for i, pose in enumerate(poses):
            key = pose.track_id if pose.track_id is not None else i
            seen.add(key)
            out.append(self._smooth_one(key, pose))
        for key in list(self._prev):
            if key not in seen:
                del self._prev[key]
        return out

    def _smooth_one(self, key, pose: PoseResult) -> PoseResult:
        coords, conf = pose.as_arrays()
        prev: Optional[np.ndarray] = self._prev.get(key)
        if prev is None or prev.shape != coords.shape:
            self._prev[key] = coords.copy()
            return pose

        smoothed = np.zeros_like(coords)
        for i in range(len(coords)):
            if conf[i] >= self.min_confidence:
                factor = self.fast_smoothing_factor if i in self._fast else self.smoothing_factor
                smoothed[i] = factor * prev[i] + (1 - factor) * coords[i]
            else:
                # Keep previous position if low confidence
                smoothed[i] = prev[i]

        self._prev[key] = smoothed.copy()
        return pose.with_keypoints(
            {i: kp.moved_to(smoothed[i, 0], smoothed[i, 1]) for i, kp in enumerate(pose.keypoints)}
        )

    def reset(self):
        """Reset smoother state."""
        self._prev.clear()
