"""Frame-accurate pose extraction.

The controller walks a media source one frame at a time: seek to
``i / fps``, wait for the seek to land, run the estimator on what is on
screen, and store the result under frame index ``i``. Two strategies
determine the frame rate:

- ``PresentedFrameStrategy`` plays the source briefly and measures the
  interval between presented frames (preferred, exact).
- ``SeekFallbackStrategy`` trusts a caller-supplied estimate when the source
  has no per-frame signal.

The finished map is only published when the run completes. An abort keeps
the partial map on the result for inspection but never publishes it.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

from ..config.settings import ExtractionConfig
from ..errors import ExtractionAborted, MediaSourceError, PlaybackError, SwingAnalyzerError
from .media import MediaSource, PoseProvider
from .types import PoseMap, PoseResult, frame_index_for_time

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


def snap_fps(measured: float, common: Sequence[float]) -> float:
    """Snap a measured frame rate to the nearest common rate."""
    if not common:
        return float(measured)
    return float(min(common, key=lambda c: abs(c - measured)))


async def _await_seek(source: MediaSource, timeout_s: float) -> bool:
    """Wait for seek completion; False when the acknowledgment never came."""
    try:
        await asyncio.wait_for(source.wait_for_seek(), timeout_s)
        return True
    except asyncio.TimeoutError:
        return False


# =====================================================================
# Frame-rate strategies
# =====================================================================

class FrameRateStrategy(ABC):
    """How the frame rate is determined and how long seeks may take."""

    name = "base"

    @abstractmethod
    def seek_timeout(self, config: ExtractionConfig) -> float:
        ...

    @abstractmethod
    async def detect_fps(self, source: MediaSource, config: ExtractionConfig) -> float:
        """Frame rate of `source`. Never raises; falls back to `config.default_fps`."""


class PresentedFrameStrategy(FrameRateStrategy):
    """Measure fps from exact presented-frame media times."""

    name = "presented-frame"

    def seek_timeout(self, config: ExtractionConfig) -> float:
        return config.seek_timeout_s

    async def detect_fps(self, source: MediaSource, config: ExtractionConfig) -> float:
        try:
            fps = await asyncio.wait_for(self._measure(source, config), config.fps_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Frame rate measurement timed out, using %.1f fps", config.default_fps)
            return config.default_fps
        except (PlaybackError, NotImplementedError) as exc:
            logger.warning("Frame rate measurement failed (%s), using %.1f fps", exc, config.default_fps)
            return config.default_fps
        finally:
            source.pause()
        return fps

    async def _measure(self, source: MediaSource, config: ExtractionConfig) -> float:
        source.seek(0.0)
        await _await_seek(source, config.seek_timeout_s)
        await source.play()

        times = []
        while len(times) < config.fps_sample_frames:
            times.append(await source.next_presented_frame())

        span = times[-1] - times[0]
        if len(times) < 2 or span <= 0:
            logger.warning("Degenerate frame timing, using %.1f fps", config.default_fps)
            return config.default_fps
        # N samples span N - 1 frame intervals (see "Frame-rate measurement" in
        # DESIGN.md); N / span would snap a 24 fps clip to 25.
        measured = (len(times) - 1) / span
        fps = snap_fps(measured, config.common_fps)
        logger.info("Measured %.2f fps, snapped to %.0f", measured, fps)
        return fps


class SeekFallbackStrategy(FrameRateStrategy):
    """No per-frame signal: use the caller's estimate and a longer seek timeout."""

    name = "seek-fallback"

    def __init__(self, fps_estimate: Optional[float] = None):
        self.fps_estimate = fps_estimate

    def seek_timeout(self, config: ExtractionConfig) -> float:
        return config.fallback_seek_timeout_s

    async def detect_fps(self, source: MediaSource, config: ExtractionConfig) -> float:
        if self.fps_estimate and self.fps_estimate > 0:
            return float(self.fps_estimate)
        return config.default_fps


def select_strategy(source: MediaSource, fps_estimate: Optional[float] = None) -> FrameRateStrategy:
    """Prefer the precise strategy whenever the source supports it."""
    if source.supports_frame_callback:
        return PresentedFrameStrategy()
    return SeekFallbackStrategy(fps_estimate)


# =====================================================================
# Result
# =====================================================================

def _freeze(pose_map: Mapping[int, Sequence[PoseResult]]) -> Mapping[int, Tuple[PoseResult, ...]]:
    return MappingProxyType({i: tuple(pose_map[i]) for i in sorted(pose_map)})


@dataclass(frozen=True)
class ExtractionResult:
    """Outcome of one extraction run (or of loading a persisted map)."""

    pose_map: Optional[Mapping[int, Tuple[PoseResult, ...]]]
    fps: float
    model_id: str
    aborted: bool = False
    # Frames done before an abort; never published.
    partial_pose_map: Optional[Mapping[int, Tuple[PoseResult, ...]]] = None
    frames_processed: int = 0
    frame_count: int = 0
    strategy: str = ""

    @property
    def ok(self) -> bool:
        return self.pose_map is not None and not self.aborted

    def poses_at(self, time_s: float) -> Tuple[PoseResult, ...]:
        """Poses of the frame displayed at `time_s` (empty if unknown)."""
        if self.pose_map is None or self.fps <= 0:
            return ()
        return tuple(self.pose_map.get(frame_index_for_time(time_s, self.fps), ()))


# =====================================================================
# Controller
# =====================================================================

class ExtractionController:
    """Drives one media source through a pose estimator, frame by frame.

    Args:
        source: Seekable media source (may be attached later via `source`)
        estimator: Pose capability; its smoothing is disabled during a run
        config: Extraction tuning
        strategy: Frame-rate strategy; chosen from the source when omitted
        on_progress: Called with the completion percentage after each frame
    """

    def __init__(
        self,
        source: Optional[MediaSource],
        estimator: PoseProvider,
        config: Optional[ExtractionConfig] = None,
        strategy: Optional[FrameRateStrategy] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.source = source
        self.estimator = estimator
        self.config = config or ExtractionConfig()
        self.strategy = strategy
        self.on_progress = on_progress

        # Set from any thread; checked at the top of every loop iteration.
        self._abort = threading.Event()
        self._running = False
        self._progress = 0.0
        self._result: Optional[ExtractionResult] = None

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def result(self) -> Optional[ExtractionResult]:
        """Last published result; None until a run completes."""
        return self._result

    def cancel(self) -> None:
        self._abort.set()

    def reset(self) -> None:
        """Forget the published result (e.g. the video changed)."""
        self._result = None
        self._set_progress(0.0)

    def _set_progress(self, percent: float) -> None:
        self._progress = percent
        if self.on_progress is not None:
            self.on_progress(percent)

    def load_external(
        self,
        pose_map: PoseMap,
        fps: float,
        model_id: str = "external",
    ) -> ExtractionResult:
        """Publish a previously persisted pose map without re-extracting."""
        if fps <= 0:
            raise ValueError("fps must be positive")
        frozen = _freeze(pose_map)
        self._result = ExtractionResult(
            pose_map=frozen,
            fps=float(fps),
            model_id=model_id,
            frames_processed=len(frozen),
            frame_count=len(frozen),
            strategy="external",
        )
        self._set_progress(100.0)
        return self._result

    async def extract(self, fps: Optional[float] = None) -> ExtractionResult:
        """Extract poses for every frame of the source.

        Args:
            fps: Known frame rate; measured (or estimated) when None

        Returns:
            The run's ExtractionResult. Aborted runs return `aborted=True`
            and leave the previously published result untouched.
        """
        source = self.source
        if source is None:
            raise MediaSourceError("No media source attached")
        if self._running:
            raise SwingAnalyzerError("Extraction is already running")
        duration = source.duration
        if not duration or math.isnan(duration) or duration <= 0:
            raise MediaSourceError("Media source has no known duration")

        strategy = self.strategy or select_strategy(source, fps)
        logger.info("Extracting with %s strategy", strategy.name)

        self._abort.clear()
        self._running = True
        self._set_progress(0.0)
        start_position = source.current_time
        smoothing_was_enabled = self.estimator.smoothing_enabled
        model_id = self.estimator.model_id

        pose_map: Dict[int, Tuple[PoseResult, ...]] = {}
        total = 0
        try:
            if smoothing_was_enabled:
                self.estimator.set_smoothing(False)
                await asyncio.sleep(self.config.smoothing_settle_s)

            if fps is None or fps <= 0:
                fps = await strategy.detect_fps(source, self.config)
            logger.info("Frame rate: %.2f fps", fps)

            total = int(math.floor(duration * fps + 1e-6))
            await self._run_loop(source, strategy, fps, total, pose_map)
        except ExtractionAborted:
            logger.info("Extraction aborted after %d/%d frames", len(pose_map), total)
            return ExtractionResult(
                pose_map=None,
                fps=float(fps or 0.0),
                model_id=model_id,
                aborted=True,
                partial_pose_map=_freeze(pose_map),
                frames_processed=len(pose_map),
                frame_count=total,
                strategy=strategy.name,
            )
        finally:
            if smoothing_was_enabled:
                self.estimator.set_smoothing(True)
            source.pause()
            source.seek(start_position)
            self._running = False

        self._result = ExtractionResult(
            pose_map=_freeze(pose_map),
            fps=float(fps),
            model_id=model_id,
            frames_processed=len(pose_map),
            frame_count=total,
            strategy=strategy.name,
        )
        logger.info("Extracted %d frames", len(pose_map))
        return self._result

    async def _run_loop(
        self,
        source: MediaSource,
        strategy: FrameRateStrategy,
        fps: float,
        total: int,
        pose_map: Dict[int, Tuple[PoseResult, ...]],
    ) -> None:
        seek_timeout = strategy.seek_timeout(self.config)
        yield_every = max(1, self.config.yield_every)
        next_log = 10

        for i in range(total):
            if self._abort.is_set():
                raise ExtractionAborted(f"Aborted at frame {i}")

            pose_map[i] = await self._process_frame(source, i, i / fps, seek_timeout)

            percent = 100.0 * (i + 1) / total
            self._set_progress(percent)
            if percent >= next_log:
                logger.debug("Extraction %.0f%% (%d/%d)", percent, i + 1, total)
                next_log += 10

            if (i + 1) % yield_every == 0:
                await asyncio.sleep(0)

    async def _process_frame(
        self, source: MediaSource, frame_index: int, time_s: float, seek_timeout: float
    ) -> Tuple[PoseResult, ...]:
        """Seek, grab and estimate one frame. Any failure becomes a gap."""
        try:
            source.seek(time_s)
            if not await _await_seek(source, seek_timeout):
                logger.debug("Seek to frame %d not acknowledged, proceeding", frame_index)
            image = source.current_image()
            if image is None:
                logger.warning("No image at frame %d, recording a gap", frame_index)
                return ()
            return tuple(await self.estimator.estimate(image))
        except ExtractionAborted:
            raise
        except Exception as exc:
            logger.warning("Frame %d failed (%s: %s), recording a gap", frame_index, type(exc).__name__, exc)
            return ()
