from .types import Keypoint, PoseFrame, PoseMap, PoseResult, Side, StabilityState
from .media import MediaSource, PoseProvider
from .extraction import (
    ExtractionController,
    ExtractionResult,
    PresentedFrameStrategy,
    SeekFallbackStrategy,
    select_strategy,
)
from .persistence import load_pose_map, save_pose_map
from .smoother import KeypointSmoother

# NOTE: the OpenCV source and PoseEstimator depend on heavy runtime deps
# (opencv/ultralytics/torch). Keep the core package importable in
# lightweight environments (unit tests, docs).
try:
    from .video_processor import VideoMediaSource  # type: ignore
except Exception:  # pragma: no cover
    VideoMediaSource = None  # type: ignore

try:
    from .pose_estimator import PoseEstimator  # type: ignore
except Exception:  # pragma: no cover
    PoseEstimator = None  # type: ignore
