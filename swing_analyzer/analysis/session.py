"""Per-video owner of the frame-sequential analysis state.

Stabilization, the stability filter and the joint history all keep private
history that is only valid for one video played forward. The session owns
them together so a video change (or disabling analysis) resets all of them
at once.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

from ..config.keypoints import Topology, get_topology
from ..config.settings import AnalyzerConfig, DEFAULT_CONFIG
from ..core.types import PoseResult, StabilityState
from .joint_history import JointHistoryRecorder
from .stability_filter import PoseStabilityFilter, StabilityResult
from .stabilization import JointStabilizer


@dataclass(frozen=True)
class FrameAnalysis:
    frame: int
    timestamp_s: float
    poses: List[PoseResult]
    stability: List[StabilityResult]

    @property
    def state(self) -> StabilityState:
        if any(r.state is StabilityState.RECOVERY for r in self.stability):
            return StabilityState.RECOVERY
        return StabilityState.NORMAL


class PoseAnalysisSession:
    """Display-path pipeline: stabilize, filter, then record history."""

    def __init__(self, config: AnalyzerConfig = DEFAULT_CONFIG, topology: Optional[Topology] = None):
        self.config = config
        self.topology = topology or get_topology(config.topology)
        self.stabilizer = JointStabilizer(config.stabilization)
        self.filter = PoseStabilityFilter(config.stability, self.topology)
        self.history = JointHistoryRecorder(config.history, self.topology)

    def process_frame(
        self,
        poses: Sequence[PoseResult],
        frame: int,
        timestamp_s: float,
        now: Optional[float] = None,
    ) -> FrameAnalysis:
        """
        Run one frame through the pipeline.

        Args:
            poses: Raw poses of the frame
            frame: Frame index
            timestamp_s: Media time of the frame
            now: Wall-clock time for the stabilizer (defaults to its clock)
        """
        stabilized = self.stabilizer.stabilize(list(poses), now=now)
        results = self.filter.process(stabilized)
        primary = self.config.swing.pose_index
        if 0 <= primary < len(results):
            self.history.record(results[primary].pose, frame, timestamp_s, results[primary].is_corrupted)
        return FrameAnalysis(frame, timestamp_s, [r.pose for r in results], results)

    def reset(self):
        self.stabilizer.reset()
        self.filter.reset()
        self.history.clear()
