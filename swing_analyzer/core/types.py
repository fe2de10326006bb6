"""Pose data model shared by extraction and analysis."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np


class Side(Enum):
    LEFT = "left"
    RIGHT = "right"
    BOTH = "both"


class StabilityState(Enum):
    NORMAL = "normal"
    RECOVERY = "recovery"


@dataclass(frozen=True)
class Keypoint:
    """A joint position in frame pixel space."""

    x: float
    y: float
    score: Optional[float] = None

    def is_valid(self, min_confidence: float) -> bool:
        """Keypoints without a score, or below the floor, count as absent."""
        return self.score is not None and self.score >= min_confidence

    def moved_to(self, x: float, y: float, score: Optional[float] = None) -> "Keypoint":
        return Keypoint(float(x), float(y), self.score if score is None else float(score))


@dataclass(frozen=True)
class PoseResult:
    """One detected person: keypoints indexed by canonical joint id."""

    keypoints: Tuple[Keypoint, ...]
    bbox: Optional[Tuple[float, float, float, float]] = None  # x1, y1, x2, y2
    track_id: Optional[int] = None
    score: Optional[float] = None

    def __len__(self) -> int:
        return len(self.keypoints)

    def keypoint(self, idx: int) -> Optional[Keypoint]:
        if 0 <= idx < len(self.keypoints):
            return self.keypoints[idx]
        return None

    def with_keypoints(self, updates: Mapping[int, Keypoint]) -> "PoseResult":
        """Copy of this pose with some keypoints replaced."""
        if not updates:
            return self
        kps = list(self.keypoints)
        for idx, kp in updates.items():
            kps[idx] = kp
        return replace(self, keypoints=tuple(kps))

    def as_arrays(self) -> Tuple[np.ndarray, np.ndarray]:
        """(N, 2) coordinates and (N,) confidences; missing scores become 0."""
        coords = np.array([[kp.x, kp.y] for kp in self.keypoints], dtype=np.float64).reshape(-1, 2)
        conf = np.array(
            [kp.score if kp.score is not None else 0.0 for kp in self.keypoints], dtype=np.float64
        )
        return coords, conf

    @classmethod
    def from_arrays(
        cls,
        keypoints: np.ndarray,
        confidence: Optional[np.ndarray] = None,
        *,
        bbox: Optional[Sequence[float]] = None,
        track_id: Optional[int] = None,
        score: Optional[float] = None,
    ) -> "PoseResult":
        kps = []
        for i, (x, y) in enumerate(np.asarray(keypoints, dtype=np.float64).reshape(-1, 2)):
            s = None if confidence is None else float(confidence[i])
            kps.append(Keypoint(float(x), float(y), s))
        return cls(
            keypoints=tuple(kps),
            bbox=tuple(float(v) for v in bbox) if bbox is not None else None,
            track_id=track_id,
            score=score,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keypoints": [[kp.x, kp.y, kp.score] for kp in self.keypoints],
            "bbox": list(self.bbox) if self.bbox is not None else None,
            "track_id": self.track_id,
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PoseResult":
        kps = []
        for entry in data["keypoints"]:
            x, y = float(entry[0]), float(entry[1])
            s = entry[2] if len(entry) > 2 else None
            kps.append(Keypoint(x, y, None if s is None else float(s)))
        bbox = data.get("bbox")
        return cls(
            keypoints=tuple(kps),
            bbox=tuple(float(v) for v in bbox) if bbox is not None else None,
            track_id=data.get("track_id"),
            score=data.get("score"),
        )


@dataclass(frozen=True)
class PoseFrame:
    """Poses detected in one physical video frame."""

    frame_index: int
    timestamp_s: float
    poses: Tuple[PoseResult, ...] = ()

    def pose(self, index: int = 0) -> Optional[PoseResult]:
        if 0 <= index < len(self.poses):
            return self.poses[index]
        return None


# frame index -> poses in that frame
PoseMap = Mapping[int, Sequence[PoseResult]]


def frame_index_for_time(time_s: float, fps: float) -> int:
    """Frame whose presentation interval contains `time_s`."""
    if fps <= 0:
        raise ValueError("fps must be positive")
    # Small epsilon so i / fps maps back to i despite float rounding.
    return max(0, int(np.floor(time_s * fps + 1e-6)))

