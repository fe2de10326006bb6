"""Swing analyzer configuration.

All thresholds and tuning constants are centralised here so that tuning
detection never requires touching analysis code. The numbers are product
tuning values, not algorithmic truths: override them with
`dataclasses.replace` or `AnalyzerConfig.from_dict`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Tuple


def _check_unknown(cls, values: Mapping[str, Any]) -> None:
    if not isinstance(values, Mapping):
        raise ValueError(f"{cls.__name__} options must be a mapping, got {type(values).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} option(s): {', '.join(unknown)}")


# =====================================================================
# Frame-accurate extraction
# =====================================================================

@dataclass(frozen=True)
class ExtractionConfig:
    """Frame scheduling for pose extraction."""

    # Used when the frame rate cannot be measured.
    default_fps: float = 30.0
    # Measured rates snap to the nearest of these.
    common_fps: Tuple[float, ...] = (24.0, 25.0, 30.0, 50.0, 60.0, 120.0)

    # Frame-rate measurement from presented frames
    fps_sample_frames: int = 10
    fps_timeout_s: float = 1.0

    # Seek acknowledgment timeouts (precise / fallback strategy)
    seek_timeout_s: float = 0.5
    fallback_seek_timeout_s: float = 1.0

    # Hand control back to the event loop every N frames
    yield_every: int = 5

    # Pause after toggling estimator smoothing
    smoothing_settle_s: float = 0.1


# =====================================================================
# Joint stabilization (noise suppression)
# =====================================================================

@dataclass(frozen=True)
class StabilizationConfig:
    """Velocity-based locking of stationary joints."""

    enabled: bool = True
    # 0 = off, 1 = maximum
    strength: float = 0.5
    history_length: int = 5          # frames
    velocity_threshold: float = 3.0  # px/frame at strength 0
    min_confidence: float = 0.3
    # Clear histories when calls are further apart than this (paused source)
    stale_after_s: float = 0.2


# =====================================================================
# Pose stability filter ("banana frame" detection)
# =====================================================================

@dataclass(frozen=True)
class StabilityConfig:
    """Frame-to-frame corruption bounds and recovery behaviour."""

    # Relative segment length change (0.25 = 25 %)
    max_segment_change: float = 0.25
    # Absolute joint angle change per frame (degrees)
    max_angle_change: float = 25.0
    # Segments shorter than this (px) in the reference frame are not compared
    min_segment_length: float = 10.0
    # Cosine similarity to the last accepted pose below this is corrupted
    similarity_threshold: float = 0.8
    # Allowed drift of each body proportion from the baseline
    ratio_tolerance: float = 0.35
    # Accepted frames before the proportion baseline is captured; 0 disables it
    baseline_frames: int = 3

    # Consecutive in-bounds frames required to leave RECOVERY
    n_recovery: int = 4

    enable_mirror_recovery: bool = True
    # Extrapolate corrupted joints from the last two accepted frames
    enable_simulation: bool = False
    simulation_decay: float = 0.9

    # Always mirror a failing side, no state machine or counters
    mirror_only_mode: bool = False

    # Joint-loss recovery (confidence drop while the joint was valid)
    recover_lost_joints: bool = True
    recovered_score: float = 0.5
    max_recovered_frames: int = 15

    # Report cosine similarity against the last accepted pose
    track_similarity: bool = True

    min_confidence: float = 0.3


# =====================================================================
# Joint history recorder
# =====================================================================

@dataclass(frozen=True)
class JointHistoryConfig:
    max_history_length: int = 1000
    min_confidence: float = 0.3


# =====================================================================
# Swing detection
# =====================================================================

@dataclass(frozen=True)
class SwingDetectionConfig:
    """Peak extraction from the body-relative wrist velocity series."""

    # Non-maximum suppression window (seconds, either side of a peak)
    nms_window_s: float = 1.25
    # Minimum spacing between kept swings (seconds), velocity-greedy
    min_peak_distance_s: float = 1.5
    # Drop swings slower than this fraction of the best swing
    min_velocity_ratio: float = 0.33

    # Require outward (extending) wrist motion at the peak
    require_outward_motion: bool = True
    min_radial_velocity: float = 1.0  # px/frame

    min_confidence: float = 0.3
    smoothing_window: int = 3
    percentile_threshold: float = 75.0

    # min/max wrist velocity above which a swing counts as two-handed
    symmetry_both_threshold: float = 0.7

    # Pixel -> km/h conversion
    person_height_m: float = 1.75
    torso_to_height_ratio: float = 2.5
    default_person_height_px: float = 200.0

    pose_index: int = 0


# =====================================================================
# Aggregate
# =====================================================================

_SECTIONS = {
    "extraction": ExtractionConfig,
    "stabilization": StabilizationConfig,
    "stability": StabilityConfig,
    "history": JointHistoryConfig,
    "swing": SwingDetectionConfig,
}


@dataclass(frozen=True)
class AnalyzerConfig:
    """Top-level configuration aggregating all components."""

    topology: str = "coco17"
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    stabilization: StabilizationConfig = field(default_factory=StabilizationConfig)
    stability: StabilityConfig = field(default_factory=StabilityConfig)
    history: JointHistoryConfig = field(default_factory=JointHistoryConfig)
    swing: SwingDetectionConfig = field(default_factory=SwingDetectionConfig)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "AnalyzerConfig":
        """Build a config from a nested mapping; missing keys keep defaults."""
        _check_unknown(cls, values)
        cfg = cls()
        overrides: Dict[str, Any] = {}
        if "topology" in values:
            overrides["topology"] = str(values["topology"])
        for key, section_cls in _SECTIONS.items():
            section = values.get(key)
            if section is None:
                continue
            _check_unknown(section_cls, section)
            section_values = dict(section)
            if "common_fps" in section_values:
                section_values["common_fps"] = tuple(float(v) for v in section_values["common_fps"])
            overrides[key] = replace(getattr(cfg, key), **section_values)
        return replace(cfg, **overrides)


DEFAULT_CONFIG = AnalyzerConfig()
