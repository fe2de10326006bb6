"""Swing detection from body-relative wrist velocity.

Design goals:
- Cancel camera pan and whole-body translation: wrist positions are taken
  relative to the body-center anchor before differencing.
- Never invent data: frames without an anchor (or wrists) are gaps (None)
  all the way through smoothing, thresholding and charting.
- Prefer strong swings: peaks are pruned highest-first (NMS, then a
  velocity-greedy minimum spacing, then a ratio to the best swing), and a
  retraction of the arms toward the body does not count as a swing.

The peak-selection steps are plain functions so each can be tested and
reused on any scalar series.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..config.keypoints import COCO_17, SWING_ENDPOINTS, Topology
from ..config.settings import SwingDetectionConfig
from ..core.types import PoseMap, PoseResult, Side
from .pose_utils import body_center, joint_xy, shoulder_hip_span

logger = logging.getLogger(__name__)


# =====================================================================
# Data types
# =====================================================================

@dataclass(frozen=True)
class PeakCandidate:
    """A local maximum of the velocity series."""

    index: int  # position in the series
    frame: int
    time_s: float
    value: float


@dataclass(frozen=True)
class VelocitySample:
    """One frame of the velocity time series (None = gap)."""

    frame: int
    timestamp_s: float
    raw_velocity: Optional[float]  # left + right, unsmoothed (px/frame)
    velocity: Optional[float]      # smoothed
    left_velocity: Optional[float]
    right_velocity: Optional[float]
    # Positive = wrists extending away from the body
    radial_velocity: Optional[float]
    body_center: Optional[Tuple[float, float]]


@dataclass(frozen=True)
class SwingEvent:
    frame: int
    timestamp_s: float
    velocity: float  # smoothed combined velocity at the peak (px/frame)
    estimated_speed_kmh: float
    dominant_side: Side
    symmetry: float  # min/max of the two wrist velocities, 0-1
    confidence: float
    left_velocity: float
    right_velocity: float
    radial_velocity: Optional[float] = None


@dataclass(frozen=True)
class SwingDetectionResult:
    swings: Tuple[SwingEvent, ...] = ()
    velocity_data: Tuple[VelocitySample, ...] = ()
    total_swings: int = 0
    average_velocity: float = 0.0
    max_velocity: float = 0.0
    frames_analyzed: int = 0
    frames_with_gaps: int = 0
    video_duration_s: float = 0.0
    threshold: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# =====================================================================
# Series primitives
# =====================================================================

def moving_average(values: Sequence[Optional[float]], window: int) -> List[Optional[float]]:
    """Centered moving average over non-gap neighbours; gaps stay gaps."""
    half = max(1, int(window)) // 2
    n = len(values)
    out: List[Optional[float]] = []
    for i, v in enumerate(values):
        if v is None:
            out.append(None)
            continue
        neighbours = [
            values[j] for j in range(max(0, i - half), min(n, i + half + 1))
            if values[j] is not None
        ]
        out.append(float(sum(neighbours) / len(neighbours)))
    return out


def percentile(values: Sequence[Optional[float]], p: float) -> float:
    """Nearest-rank percentile of the non-gap values (0 when there are none)."""
    valid = sorted(v for v in values if v is not None)
    if not valid:
        return 0.0
    idx = int(np.floor(len(valid) * p / 100.0))
    return float(valid[min(idx, len(valid) - 1)])


def find_local_maxima(
    values: Sequence[Optional[float]],
    frames: Sequence[int],
    times: Sequence[float],
    min_height: float,
) -> List[PeakCandidate]:
    """Strict local maxima that reach `min_height`; gap neighbours disqualify."""
    peaks = []
    for i in range(1, len(values) - 1):
        prev, curr, nxt = values[i - 1], values[i], values[i + 1]
        if prev is None or curr is None or nxt is None:
            continue
        if curr > prev and curr > nxt and curr >= min_height:
            peaks.append(PeakCandidate(i, frames[i], times[i], float(curr)))
    return peaks


def _by_value(candidates: Sequence[PeakCandidate]) -> List[PeakCandidate]:
    # Stable: equal values keep chronological order.
    return sorted(candidates, key=lambda c: (-c.value, c.index))


def non_max_suppression(
    candidates: Sequence[PeakCandidate], window_s: float
) -> Tuple[List[PeakCandidate], List[PeakCandidate]]:
    """Keep a peak only if no higher kept peak lies within +/- `window_s`.

    Returns:
        (kept sorted by value descending, suppressed)
    """
    kept: List[PeakCandidate] = []
    suppressed: List[PeakCandidate] = []
    suppressed_idx = set()
    ordered = _by_value(candidates)
    for cand in ordered:
        if cand.index in suppressed_idx:
            suppressed.append(cand)
            continue
        kept.append(cand)
        for other in ordered:
            if other.index != cand.index and abs(other.time_s - cand.time_s) <= window_s + 1e-9:
                suppressed_idx.add(other.index)
    return kept, suppressed


def enforce_min_distance(
    candidates: Sequence[PeakCandidate], min_distance_s: float
) -> Tuple[List[PeakCandidate], List[PeakCandidate]]:
    """Velocity-greedy spacing: visit peaks highest first and keep each one
    that is at least `min_distance_s` from every peak kept so far."""
    kept: List[PeakCandidate] = []
    rejected: List[PeakCandidate] = []
    for cand in _by_value(candidates):
        if all(abs(cand.time_s - k.time_s) >= min_distance_s - 1e-9 for k in kept):
            kept.append(cand)
        else:
            rejected.append(cand)
    return kept, rejected


def filter_by_velocity_ratio(
    candidates: Sequence[PeakCandidate], min_ratio: float
) -> Tuple[List[PeakCandidate], List[PeakCandidate]]:
    """Drop peaks below `min_ratio` times the best peak."""
    if not candidates:
        return [], []
    cutoff = max(c.value for c in candidates) * min_ratio
    kept = [c for c in candidates if c.value >= cutoff]
    rejected = [c for c in candidates if c.value < cutoff]
    return kept, rejected


def pixels_to_kmh(velocity_px: float, person_height_px: float, fps: float, person_height_m: float) -> float:
    """px/frame -> km/h, scaling pixels by the person's estimated height."""
    if person_height_px <= 0:
        return 0.0
    pixels_per_meter = person_height_px / person_height_m
    return velocity_px / pixels_per_meter * fps * 3.6


# =====================================================================
# Detector
# =====================================================================

class SwingDetector:
    """Detect swings in a completed pose map.

    Detection is a pure function of (pose map, fps, config): running it again
    on the same input yields identical results.
    """

    def __init__(self, config: Optional[SwingDetectionConfig] = None, topology: Topology = COCO_17):
        self.config = config or SwingDetectionConfig()
        self.topology = topology

    def _pose(self, pose_map: PoseMap, frame: int) -> Optional[PoseResult]:
        poses = pose_map.get(frame) or ()
        idx = self.config.pose_index
        return poses[idx] if 0 <= idx < len(poses) else None

    def _wrist_motion(
        self,
        pose: PoseResult,
        prev_pose: PoseResult,
        center: np.ndarray,
        prev_center: np.ndarray,
        joint: str,
    ) -> Tuple[Optional[float], Optional[float]]:
        """(speed, radial speed) of one wrist relative to the body center."""
        min_conf = self.config.min_confidence
        cur = joint_xy(pose, self.topology, joint, min_conf)
        prev = joint_xy(prev_pose, self.topology, joint, min_conf)
        if cur is None or prev is None:
            return None, None
        rel = cur - center
        velocity = rel - (prev - prev_center)
        speed = float(np.linalg.norm(velocity))
        dist = float(np.linalg.norm(rel))
        # Direction is undefined right at the anchor.
        radial = float(np.dot(velocity, rel / dist)) if dist >= 1.0 else 0.0
        return speed, radial

    def velocity_series(self, pose_map: PoseMap, fps: float) -> Tuple[List[VelocitySample], int, List[float]]:
        """Unsmoothed velocity samples, gap count and per-frame height spans."""
        cfg = self.config
        frames = sorted(pose_map)
        samples: List[VelocitySample] = []
        gaps = 0
        spans: List[float] = []

        prev_pose: Optional[PoseResult] = None
        prev_center: Optional[np.ndarray] = None
        for i, frame in enumerate(frames):
            ts = frame / fps
            pose = self._pose(pose_map, frame)
            center = body_center(pose, self.topology, cfg.min_confidence) if pose is not None else None

            left = right = radial = None
            if center is None:
                gaps += 1
            elif prev_center is not None:
                left, left_radial = self._wrist_motion(pose, prev_pose, center, prev_center, SWING_ENDPOINTS[0])
                right, right_radial = self._wrist_motion(pose, prev_pose, center, prev_center, SWING_ENDPOINTS[1])
                if left_radial is not None or right_radial is not None:
                    radial = (left_radial or 0.0) + (right_radial or 0.0)
            elif i > 0:
                gaps += 1

            if pose is not None:
                span = shoulder_hip_span(pose, self.topology, cfg.min_confidence)
                if span is not None:
                    spans.append(span)

            combined = None
            if left is not None or right is not None:
                combined = (left or 0.0) + (right or 0.0)
            samples.append(VelocitySample(
                frame=frame,
                timestamp_s=ts,
                raw_velocity=combined,
                velocity=combined,
                left_velocity=left,
                right_velocity=right,
                radial_velocity=radial,
                body_center=(float(center[0]), float(center[1])) if center is not None else None,
            ))
            prev_pose, prev_center = pose, center
        return samples, gaps, spans

    def detect(self, pose_map: PoseMap, fps: float) -> SwingDetectionResult:
        """Detect swings.

        Args:
            pose_map: frame index -> detected poses
            fps: Frame rate the map was extracted at

        Returns:
            SwingDetectionResult; `error` is set (and `ok` False) when the map
            cannot support velocity analysis.
        """
        cfg = self.config
        frames_analyzed = len(pose_map)
        if fps <= 0:
            return SwingDetectionResult(frames_analyzed=frames_analyzed, error=f"Invalid frame rate: {fps}")
        if frames_analyzed < 2:
            return SwingDetectionResult(
                frames_analyzed=frames_analyzed,
                error="Need at least 2 frames for velocity analysis",
            )

        raw, gaps, spans = self.velocity_series(pose_map, fps)
        raw_values = [s.raw_velocity for s in raw]
        valid_count = sum(v is not None for v in raw_values)
        logger.info(
            "Tracking: %d/%d frames with velocity, %d gaps", valid_count, frames_analyzed, gaps
        )
        if valid_count == 0:
            return SwingDetectionResult(
                velocity_data=tuple(raw),
                frames_analyzed=frames_analyzed,
                frames_with_gaps=gaps,
                video_duration_s=frames_analyzed / fps,
                error="No frame has a trackable body center and wrist",
            )

        smoothed = moving_average(raw_values, cfg.smoothing_window)
        samples = [
            VelocitySample(
                frame=s.frame,
                timestamp_s=s.timestamp_s,
                raw_velocity=s.raw_velocity,
                velocity=v,
                left_velocity=s.left_velocity,
                right_velocity=s.right_velocity,
                radial_velocity=s.radial_velocity,
                body_center=s.body_center,
            )
            for s, v in zip(raw, smoothed)
        ]

        threshold = percentile(smoothed, cfg.percentile_threshold)
        candidates = find_local_maxima(
            smoothed, [s.frame for s in samples], [s.timestamp_s for s in samples], threshold
        )
        nms_kept, _ = non_max_suppression(candidates, cfg.nms_window_s)
        spaced, _ = enforce_min_distance(nms_kept, cfg.min_peak_distance_s)
        peaks, _ = filter_by_velocity_ratio(spaced, cfg.min_velocity_ratio)
        logger.info(
            "Threshold %.1f px/frame: %d candidates, %d after NMS, %d after spacing, %d after ratio",
            threshold, len(candidates), len(nms_kept), len(spaced), len(peaks),
        )

        if cfg.require_outward_motion:
            outward = [
                p for p in peaks
                if samples[p.index].radial_velocity is None
                or samples[p.index].radial_velocity >= cfg.min_radial_velocity
            ]
            if len(outward) < len(peaks):
                logger.info("Discarded %d peak(s) without outward motion", len(peaks) - len(outward))
            peaks = outward

        person_height_px = cfg.default_person_height_px
        if spans:
            person_height_px = float(np.median(spans)) * cfg.torso_to_height_ratio

        swings = tuple(
            self._make_event(samples[p.index], threshold, person_height_px, fps)
            for p in sorted(peaks, key=lambda c: c.index)
        )
        for n, swing in enumerate(swings, 1):
            logger.info(
                "Swing %d: frame %d (%.2fs) %s, %.1f km/h",
                n, swing.frame, swing.timestamp_s, swing.dominant_side.value, swing.estimated_speed_kmh,
            )

        valid = [v for v in smoothed if v is not None]
        return SwingDetectionResult(
            swings=swings,
            velocity_data=tuple(samples),
            total_swings=len(swings),
            average_velocity=float(np.mean(valid)) if valid else 0.0,
            max_velocity=float(np.max(valid)) if valid else 0.0,
            frames_analyzed=frames_analyzed,
            frames_with_gaps=gaps,
            video_duration_s=frames_analyzed / fps,
            threshold=threshold,
        )

    def _make_event(
        self, sample: VelocitySample, threshold: float, person_height_px: float, fps: float
    ) -> SwingEvent:
        cfg = self.config
        left = sample.left_velocity or 0.0
        right = sample.right_velocity or 0.0
        total = left + right
        symmetry = min(left, right) / max(left, right) if total > 0 else 0.0
        if symmetry > cfg.symmetry_both_threshold:
            side = Side.BOTH
        else:
            side = Side.LEFT if left > right else Side.RIGHT

        peak = sample.velocity or 0.0
        confidence = min(1.0, peak / (threshold * 2)) if threshold > 0 else 1.0
        return SwingEvent(
            frame=sample.frame,
            timestamp_s=sample.timestamp_s,
            velocity=peak,
            estimated_speed_kmh=pixels_to_kmh(peak, person_height_px, fps, cfg.person_height_m),
            dominant_side=side,
            symmetry=symmetry,
            confidence=confidence,
            left_velocity=left,
            right_velocity=right,
            radial_velocity=sample.radial_velocity,
        )
