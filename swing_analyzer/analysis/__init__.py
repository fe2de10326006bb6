from .joint_history import AccelerationSample, AngleSample, JointHistoryRecorder, SegmentSample
from .session import FrameAnalysis, PoseAnalysisSession
from .stability_filter import (
    BodyProportions,
    CorruptionReport,
    PoseStabilityFilter,
    StabilityResult,
    body_proportions,
    detect_corruption,
)
from .stabilization import JointStabilizer
from .swing_detection import (
    SwingDetectionResult,
    SwingDetector,
    SwingEvent,
    VelocitySample,
)
