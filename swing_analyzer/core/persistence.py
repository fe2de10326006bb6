"""Save and reload an extraction (pose map, frame rate, model id) as JSON."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence, Tuple, Union

from ..config.keypoints import topology_for_size
from ..errors import PoseMapFormatError
from .types import PoseResult

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


def dump_pose_map(
    pose_map: Mapping[int, Sequence[PoseResult]],
    fps: float,
    model_id: str,
) -> Dict[str, Any]:
    """JSON-ready representation of an extraction."""
    topology = None
    for poses in pose_map.values():
        if poses:
            try:
                topology = topology_for_size(len(poses[0])).name
            except ValueError:
                pass
            break
    return {
        "version": FORMAT_VERSION,
        "model": model_id,
        "fps": float(fps),
        "topology": topology,
        "frames": {
            str(i): [p.to_dict() for p in pose_map[i]] for i in sorted(pose_map)
        },
    }


def parse_pose_map(data: Mapping[str, Any]) -> Tuple[Dict[int, Tuple[PoseResult, ...]], float, str]:
    """Inverse of `dump_pose_map`.

    Raises:
        PoseMapFormatError: unknown version or malformed content
    """
    try:
        version = data.get("version")
        if version != FORMAT_VERSION:
            raise PoseMapFormatError(f"Unsupported pose map version: {version!r}")
        fps = float(data["fps"])
        if fps <= 0:
            raise PoseMapFormatError(f"Invalid frame rate: {fps}")
        model_id = str(data.get("model") or "unknown")
        pose_map = {
            int(i): tuple(PoseResult.from_dict(p) for p in poses)
            for i, poses in data["frames"].items()
        }
    except PoseMapFormatError:
        raise
    except (AttributeError, KeyError, IndexError, TypeError, ValueError) as exc:
        raise PoseMapFormatError(f"Malformed pose map: {exc}") from exc
    return pose_map, fps, model_id


def save_pose_map(
    path: Union[str, Path],
    pose_map: Mapping[int, Sequence[PoseResult]],
    fps: float,
    model_id: str,
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(dump_pose_map(pose_map, fps, model_id), f)
    logger.info("Saved %d frames to %s", len(pose_map), path)
    return path


def load_pose_map(path: Union[str, Path]) -> Tuple[Dict[int, Tuple[PoseResult, ...]], float, str]:
    """Load `(pose_map, fps, model_id)` written by `save_pose_map`."""
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as exc:
            raise PoseMapFormatError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise PoseMapFormatError(f"{path} does not contain a pose map")
    return parse_pose_map(data)

