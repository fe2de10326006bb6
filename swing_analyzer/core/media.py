"""Collaborator interfaces driven by the extraction controller.

`MediaSource` is the seekable control surface of a video; `PoseProvider`
is the opaque per-frame pose capability. Both are asynchronous so the
controller can await seek acknowledgments and inference without blocking
the event loop.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from .types import PoseResult


class MediaSource(ABC):
    """A seekable video that reports its duration and current position."""

    @property
    @abstractmethod
    def duration(self) -> float:
        """Length in seconds; 0 or NaN when unknown."""

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Current media position in seconds."""

    @abstractmethod
    def seek(self, time_s: float) -> None:
        """Start moving to `time_s`; completion is signalled by `wait_for_seek`."""

    @abstractmethod
    async def wait_for_seek(self) -> None:
        """Return once the last seek has completed."""

    @abstractmethod
    async def play(self) -> None:
        """Start playback. May raise `PlaybackError` if playback is refused."""

    @abstractmethod
    def pause(self) -> None:
        ...

    @abstractmethod
    def current_image(self) -> Optional[np.ndarray]:
        """Visual content at the current position (BGR image) or None."""

    # -- optional precise presentation signal -------------------------

    @property
    def supports_frame_callback(self) -> bool:
        """True when `next_presented_frame` delivers exact media times."""
        return False

    async def next_presented_frame(self) -> float:
        """Wait for the next presented frame and return its media time."""
        raise NotImplementedError(f"{type(self).__name__} has no per-frame signal")


class PoseProvider(ABC):
    """Pose estimator as seen by extraction."""

    @property
    @abstractmethod
    def model_id(self) -> str:
        ...

    @property
    @abstractmethod
    def smoothing_enabled(self) -> bool:
        ...

    @abstractmethod
    def set_smoothing(self, enabled: bool) -> None:
        """Turn any temporal smoothing inside the estimator on or off."""

    @abstractmethod
    async def estimate(self, image: np.ndarray) -> List[PoseResult]:
        """Detect every person in `image`."""
