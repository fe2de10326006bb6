"""YOLO pose wrapper for pose estimation."""

import asyncio
import logging
from pathlib import Path
from typing import List

import numpy as np
from ultralytics import YOLO

from ..config.keypoints import COCO_17
from .media import PoseProvider
from .smoother import KeypointSmoother
from .types import PoseResult

logger = logging.getLogger(__name__)


class PoseEstimator(PoseProvider):
    """Wrapper for YOLO pose estimation model (COCO 17 keypoints)."""

    topology = COCO_17

    def __init__(
        self,
        model_name: str = "yolo11m-pose.pt",
        device: str = "auto",
        conf: float = 0.5,
        smoothing: float = 0.5,
    ):
        """
        Initialize pose estimator.

        Args:
            model_name: YOLO pose model name (yolo11n-pose, yolo11s-pose, yolo11m-pose, etc.)
            device: Device to run on ('auto', 'cpu', 'cuda', 'mps')
            conf: Detection confidence threshold
            smoothing: EMA factor of the live smoothing stage; 0 disables it
        """
        self.model_name = model_name
        self.device = self._resolve_device(device)
        self.conf = conf
        # Ultralytics will attempt an online download if the weight file is missing.
        # Weights kept under ./models/ are resolved first.
        self.model = YOLO(self._resolve_model_path(model_name))
        self._smoother = KeypointSmoother(smoothing_factor=smoothing, topology=self.topology)
        self._smoothing_enabled = smoothing > 0
        logger.info("Loaded %s on %s", model_name, self.device)

    def _resolve_model_path(self, model_name: str) -> str:
        p = Path(str(model_name))
        if p.exists():
            return str(p)

        # <root>/swing_analyzer/core/pose_estimator.py -> <root>/models/<weights>.pt
        root = Path(__file__).resolve().parents[2]
        candidates = [
            root / p.name,
            root / "models" / p.name,
        ]
        for cand in candidates:
            if cand.exists():
                return str(cand)

        # Fall back to whatever Ultralytics understands (may download if online).
        return str(model_name)

    def _resolve_device(self, device: str) -> str:
        """Resolve device string to actual device."""
        if device == "auto":
            import torch
            if torch.cuda.is_available():
                return "cuda"
            elif torch.backends.mps.is_available():
                return "mps"
            return "cpu"
        return device

    # -- PoseProvider ---------------------------------------------------

    @property
    def model_id(self) -> str:
        return Path(self.model_name).stem

    @property
    def smoothing_enabled(self) -> bool:
        return self._smoothing_enabled

    def set_smoothing(self, enabled: bool) -> None:
        if enabled != self._smoothing_enabled:
            self._smoother.reset()
        self._smoothing_enabled = enabled

    async def estimate(self, image: np.ndarray) -> List[PoseResult]:
        # Inference is blocking; keep the event loop responsive.
        poses = await asyncio.to_thread(self.predict, image)
        if self._smoothing_enabled:
            poses = self._smoother.smooth(poses)
        return poses

    # -- inference --------------------------------------------------------

    def predict(self, frame: np.ndarray) -> List[PoseResult]:
        """
        Run pose estimation on a single frame.

        Args:
            frame: BGR image as numpy array

        Returns:
            One PoseResult per detected person
        """
        results = self.model.predict(
            frame,
            conf=self.conf,
            device=self.device,
            verbose=False
        )

        return self._parse_results(results[0])

    def _parse_results(self, result) -> List[PoseResult]:
        """Parse YOLO results into PoseResults."""
        if result.keypoints is None or len(result.keypoints) == 0:
            return []

        keypoints_data = result.keypoints.data.cpu().numpy()  # (N, 17, 3)
        boxes = result.boxes

        poses = []
        for person_idx, kpts in enumerate(keypoints_data):
            bbox = None
            track_id = None
            score = None
            if boxes is not None and len(boxes) > person_idx:
                box = boxes[person_idx]
                bbox = box.xyxy.cpu().numpy()[0]
                score = float(box.conf.cpu().numpy()[0])
                if box.id is not None:
                    track_id = int(box.id.cpu().numpy()[0])

            poses.append(
                PoseResult.from_arrays(
                    kpts[:, :2], kpts[:, 2], bbox=bbox, track_id=track_id, score=score
                )
            )
        return poses
