import json

import pytest

from swing_analyzer.core.persistence import (
    FORMAT_VERSION,
    dump_pose_map,
    load_pose_map,
    parse_pose_map,
    save_pose_map,
)
from swing_analyzer.core.types import Keypoint, PoseResult
from swing_analyzer.errors import PoseMapFormatError


def _pose(offset=0.0, n=17):
    kps = tuple(Keypoint(offset + j, 2.0 * j, 0.8) for j in range(n))
    return PoseResult(keypoints=kps, bbox=(0.0, 0.0, 50.0, 100.0), track_id=3, score=0.9)


def test_save_and_load(tmp_path):
    pose_map = {0: [_pose()], 1: [], 2: [_pose(5.0), _pose(100.0)]}
    path = save_pose_map(tmp_path / "out" / "poses.json", pose_map, 29.97, "yolo11m-pose")
    loaded, fps, model_id = load_pose_map(path)
    assert fps == 29.97
    assert model_id == "yolo11m-pose"
    assert sorted(loaded) == [0, 1, 2]
    assert loaded[1] == ()
    assert loaded[2][1] == _pose(100.0)


def test_missing_scores_survive():
    pose = PoseResult(keypoints=(Keypoint(1.0, 2.0),) * 17)
    loaded, _, _ = parse_pose_map(json.loads(json.dumps(dump_pose_map({0: [pose]}, 30.0, "m"))))
    assert loaded[0][0].keypoint(0).score is None


def test_topology_recorded():
    assert dump_pose_map({0: [], 1: [_pose(n=33)]}, 30.0, "blazepose")["topology"] == "blazepose33"
    assert dump_pose_map({0: []}, 30.0, "m")["topology"] is None


def test_rejects_other_version():
    data = dump_pose_map({0: [_pose()]}, 30.0, "m")
    data["version"] = FORMAT_VERSION + 1
    with pytest.raises(PoseMapFormatError):
        parse_pose_map(data)


@pytest.mark.parametrize("mutate", [
    lambda d: d.pop("fps"),
    lambda d: d.update(fps=0),
    lambda d: d.update(frames={"x": []}),
    lambda d: d.update(frames={"0": [{"bbox": None}]}),
])
def test_rejects_malformed(mutate):
    data = dump_pose_map({0: [_pose()]}, 30.0, "m")
    mutate(data)
    with pytest.raises(PoseMapFormatError):
        parse_pose_map(data)


def test_load_rejects_non_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(PoseMapFormatError):
        load_pose_map(path)
