"""OpenCV-backed media source with automatic rotation correction.

Frames are always handed out upright, whatever rotation the container
metadata declares, so keypoints extracted from them need no further fixing.
"""

import json
import logging
import subprocess
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from ..errors import MediaSourceError, PlaybackError
from .media import MediaSource
from .types import frame_index_for_time

logger = logging.getLogger(__name__)


def get_video_rotation(video_path: str) -> int:
    """Read the rotation angle from the video metadata with ffprobe.

    Returns:
        Rotation in degrees (0, 90, 180, 270); 0 when ffprobe is unavailable.
    """
    try:
        cmd = [
            'ffprobe', '-v', 'quiet',
            '-print_format', 'json',
            '-show_streams',
            '-select_streams', 'v:0',
            video_path
        ]
        result = subprocess.run(cmd, capture_output=True, text=True)
        if result.returncode == 0:
            streams = json.loads(result.stdout).get('streams', [])
            if streams:
                for sd in streams[0].get('side_data_list', []):
                    if 'rotation' in sd:
                        return int(sd['rotation']) % 360
                tags = streams[0].get('tags', {})
                if 'rotate' in tags:
                    return int(tags['rotate']) % 360
    except (FileNotFoundError, json.JSONDecodeError, subprocess.SubprocessError):
        logger.debug("ffprobe unavailable, assuming no rotation for %s", video_path)
    return 0


def rotate_frame(frame: np.ndarray, rotation: int) -> np.ndarray:
    """Rotate a frame by a multiple of 90 degrees."""
    rotation = rotation % 360
    if rotation == 90:
        return cv2.rotate(frame, cv2.ROTATE_90_COUNTERCLOCKWISE)
    elif rotation == 180:
        return cv2.rotate(frame, cv2.ROTATE_180)
    elif rotation == 270:
        return cv2.rotate(frame, cv2.ROTATE_90_CLOCKWISE)
    return frame


class VideoMediaSource(MediaSource):
    """A video file driven through `cv2.VideoCapture`.

    Seeking is by frame index and completes synchronously, so
    `wait_for_seek` returns at once. During playback every decoded frame is
    reported through `next_presented_frame` with its container timestamp.
    """

    def __init__(self, video_path: str, auto_rotate: bool = True):
        self.video_path = Path(video_path)
        if not self.video_path.exists():
            raise MediaSourceError(f"Video file not found: {video_path}")

        self.cap = cv2.VideoCapture(str(self.video_path))
        if not self.cap.isOpened():
            raise MediaSourceError(f"Cannot open video: {video_path}")

        self.native_fps = float(self.cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self.total_frames = int(self.cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        self.rotation = get_video_rotation(str(video_path)) if auto_rotate else 0

        self._position = 0.0
        self._image: Optional[np.ndarray] = None
        self._playing = False

    def close(self):
        if self.cap is not None:
            self.cap.release()
            self.cap = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _read(self) -> bool:
        ret, frame = self.cap.read()
        if not ret:
            return False
        self._image = rotate_frame(frame, self.rotation) if self.rotation else frame
        return True

    # -- MediaSource ----------------------------------------------------

    @property
    def duration(self) -> float:
        if self.native_fps <= 0:
            return 0.0
        return self.total_frames / self.native_fps

    @property
    def current_time(self) -> float:
        return self._position

    def seek(self, time_s: float) -> None:
        self._playing = False
        if self.native_fps > 0:
            idx = frame_index_for_time(time_s, self.native_fps)
            self.cap.set(cv2.CAP_PROP_POS_FRAMES, idx)
        else:
            self.cap.set(cv2.CAP_PROP_POS_MSEC, max(0.0, time_s) * 1000.0)
        if not self._read():
            self._image = None
        self._position = max(0.0, float(time_s))

    async def wait_for_seek(self) -> None:
        return None

    async def play(self) -> None:
        if self.cap is None:
            raise PlaybackError("Video has been closed")
        self._playing = True

    def pause(self) -> None:
        self._playing = False

    def current_image(self) -> Optional[np.ndarray]:
        return self._image

    @property
    def supports_frame_callback(self) -> bool:
        return True

    async def next_presented_frame(self) -> float:
        if not self._playing:
            raise PlaybackError("Video is not playing")
        if not self._read():
            self._playing = False
            raise PlaybackError("End of stream")
        # After a read, POS_MSEC is the timestamp of the decoded frame.
        self._position = float(self.cap.get(cv2.CAP_PROP_POS_MSEC)) / 1000.0
        return self._position

    @property
    def info(self) -> dict:
        return {
            "path": str(self.video_path),
            "rotation": self.rotation,
            "fps": self.native_fps,
            "total_frames": self.total_frames,
            "duration": self.duration,
        }
