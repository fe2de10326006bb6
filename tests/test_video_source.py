"""OpenCV media source against a small generated video file."""

import asyncio

import numpy as np
import pytest

cv2 = pytest.importorskip("cv2")

from swing_analyzer.config.settings import ExtractionConfig
from swing_analyzer.core.extraction import ExtractionController
from swing_analyzer.core.media import PoseProvider
from swing_analyzer.core.types import Keypoint, PoseResult
from swing_analyzer.core.video_processor import VideoMediaSource, rotate_frame
from swing_analyzer.errors import MediaSourceError

N_FRAMES = 12
FPS = 25.0


@pytest.fixture
def video_path(tmp_path):
    path = tmp_path / "clip.avi"
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), FPS, (64, 48))
    if not writer.isOpened():
        pytest.skip("no MJPG encoder available")
    for i in range(N_FRAMES):
        writer.write(np.full((48, 64, 3), i * 20, dtype=np.uint8))
    writer.release()
    return path


class BrightnessEstimator(PoseProvider):
    """Reports the frame's mean brightness as the x of every keypoint."""

    model_id = "brightness"
    smoothing_enabled = False

    def set_smoothing(self, enabled):
        pass

    async def estimate(self, image):
        level = float(image.mean())
        return [PoseResult(keypoints=tuple(Keypoint(level, 0.0, 1.0) for _ in range(17)))]


def test_missing_file():
    with pytest.raises(MediaSourceError):
        VideoMediaSource("does/not/exist.mp4")


def test_rotate_frame():
    frame = np.zeros((2, 3, 3), dtype=np.uint8)
    assert rotate_frame(frame, 90).shape == (3, 2, 3)
    assert rotate_frame(frame, 180).shape == (2, 3, 3)


def test_seek_shows_requested_frame(video_path):
    with VideoMediaSource(str(video_path), auto_rotate=False) as source:
        assert source.duration == pytest.approx(N_FRAMES / FPS)
        source.seek(5 / FPS)
        assert source.current_time == pytest.approx(5 / FPS)
        assert abs(float(source.current_image().mean()) - 100.0) < 10.0


def test_extract_from_video(video_path):
    with VideoMediaSource(str(video_path), auto_rotate=False) as source:
        controller = ExtractionController(source, BrightnessEstimator(), ExtractionConfig(smoothing_settle_s=0.0))
        result = asyncio.run(controller.extract())
        assert source.current_time == 0.0

    assert result.ok
    assert result.fps in ExtractionConfig().common_fps
    assert len(result.pose_map) == result.frame_count > 0
    levels = [result.pose_map[i][0].keypoint(0).x for i in sorted(result.pose_map)]
    assert levels == sorted(levels)
