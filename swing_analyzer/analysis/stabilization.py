"""Velocity-based joint stabilization.

Pose models jitter by a few pixels even when a joint is perfectly still.
Each joint keeps a short window of recent positions; when its average
inter-frame motion drops below an adaptive threshold the joint is locked to
the window mean, and released again once it clearly starts moving.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional, Tuple

import numpy as np

from ..config.settings import StabilizationConfig
from ..core.types import PoseResult

JointKey = Tuple[int, int]  # (pose index, joint index)


@dataclass
class _JointHistory:
    positions: Deque[Tuple[float, float]]
    locked: Optional[Tuple[float, float]] = None
    velocity: float = 0.0


class JointStabilizer:
    """
    Lock stationary joints to suppress detection noise.

    Calls must arrive in increasing time order for one video position; the
    history is private frame-sequential state.
    """

    def __init__(
        self,
        config: Optional[StabilizationConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize joint stabilizer.

        Args:
            config: Stabilization tuning
            clock: Wall-clock source in seconds (injectable for tests)
        """
        self.config = config or StabilizationConfig()
        self._clock = clock
        self._histories: Dict[JointKey, _JointHistory] = {}
        self._last_call: Optional[float] = None

    @property
    def adaptive_threshold(self) -> float:
        """Stationary threshold (px/frame); higher strength locks more joints."""
        return self.config.velocity_threshold * (1 - self.config.strength * 0.8)

    @property
    def smoothing_factor(self) -> float:
        """Fraction of the raw motion let through while releasing a lock."""
        return 1 - self.config.strength * 0.9

    @property
    def lock_strength(self) -> float:
        return min(1.0, self.config.strength * 1.5)

    def stabilize(self, poses: List[PoseResult], now: Optional[float] = None) -> List[PoseResult]:
        """
        De-noise the poses of one frame.

        Args:
            poses: Poses of the current frame
            now: Call time in seconds; read from the clock when omitted

        Returns:
            Stabilized poses (the input list itself when disabled)
        """
        cfg = self.config
        if not cfg.enabled or cfg.strength == 0 or not poses:
            return poses

        now = self._clock() if now is None else now
        if self._last_call is not None and now - self._last_call > cfg.stale_after_s:
            # Source was paused or seeked: old positions would create stale locks.
            self._histories.clear()
        self._last_call = now

        out = []
        for p, pose in enumerate(poses):
            updates = {}
            for j, kp in enumerate(pose.keypoints):
                key = (p, j)
                if not kp.is_valid(cfg.min_confidence):
                    # Pass through unmodified and forget the joint's history.
                    self._forget(key)
                    continue
                updates[j] = kp.moved_to(*self._stabilize_joint(key, kp.x, kp.y))
            out.append(pose.with_keypoints(updates))
        return out

    def _forget(self, key: JointKey) -> None:
        history = self._histories.get(key)
        if history is not None:
            history.positions.clear()
            history.locked = None
            history.velocity = 0.0

    def _stabilize_joint(self, key: JointKey, x: float, y: float) -> Tuple[float, float]:
        history = self._histories.get(key)
        if history is None:
            history = _JointHistory(positions=deque(maxlen=max(1, self.config.history_length)))
            self._histories[key] = history

        history.positions.append((x, y))
        if len(history.positions) >= 2:
            pts = np.asarray(history.positions, dtype=np.float64)
            history.velocity = float(np.linalg.norm(np.diff(pts, axis=0), axis=1).mean())

        threshold = self.adaptive_threshold
        if history.velocity < threshold:
            if history.locked is None:
                mean = np.mean(np.asarray(history.positions, dtype=np.float64), axis=0)
                history.locked = (float(mean[0]), float(mean[1]))
            lx, ly = history.locked
            s = self.lock_strength
            return x + (lx - x) * s, y + (ly - y) * s

        if history.locked is None:
            return x, y

        # Moving again: ease out of the lock, then release once clearly fast.
        lx, ly = history.locked
        f = self.smoothing_factor
        sx, sy = lx + (x - lx) * f, ly + (y - ly) * f
        history.locked = (sx, sy)
        if history.velocity > threshold * 2:
            history.locked = None
        return sx, sy

    def joint_velocities(self) -> Dict[JointKey, float]:
        """Current average velocity per (pose index, joint index)."""
        return {key: h.velocity for key, h in self._histories.items()}

    def reset(self):
        """Reset stabilizer state."""
        self._histories.clear()
        self._last_call = None
