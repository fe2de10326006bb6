import json

import numpy as np
import pytest

from swing_analyzer.core.persistence import save_pose_map
from swing_analyzer.core.types import PoseResult
from swing_analyzer.main import build_parser, main

BASE = np.array([
    [200, 50], [195, 45], [205, 45], [190, 50], [210, 50],
    [170, 100], [230, 100],
    [150, 150], [250, 150],
    [140, 200], [260, 200],
    [180, 200], [220, 200],
    [175, 280], [225, 280],
    [170, 360], [230, 360],
], dtype=np.float64)


@pytest.fixture
def poses_file(tmp_path):
    """Thirty frames at 30 fps with one outward right-wrist swing at frame 13."""
    steps = {11: 2.0, 12: 6.0, 13: 10.0, 14: 6.0, 15: 2.0}
    pose_map = {}
    offset = 0.0
    for i in range(30):
        offset += steps.get(i, 0.0)
        kp = BASE.copy()
        kp[10, 0] += offset
        pose_map[i] = [PoseResult.from_arrays(kp, np.ones(17))]
    return save_pose_map(tmp_path / "poses.json", pose_map, 30.0, "yolo11m-pose")


def test_parser_options_after_subcommand():
    args = build_parser().parse_args(["detect", "poses.json", "--config", "cfg.json", "-v", "--json"])
    assert args.command == "detect"
    assert args.config == "cfg.json"
    assert args.verbose and args.json

    args = build_parser().parse_args(["extract", "in.mp4", "-o", "out.json", "--fps", "60"])
    assert args.fps == 60.0
    assert args.model == "yolo11m-pose.pt"


def test_detect_prints_swings(poses_file, capsys):
    main(["detect", str(poses_file)])
    out = capsys.readouterr().out
    assert "Detected 1 swing(s)" in out
    assert "frame 13" in out


def test_detect_json(poses_file, capsys):
    main(["detect", str(poses_file), "--json"])
    data = json.loads(capsys.readouterr().out)
    assert data["total_swings"] == 1
    assert data["swings"][0]["dominant_side"] == "right"
    assert data["velocity_data"][0]["velocity"] is None


def test_detect_with_config(poses_file, tmp_path, capsys):
    cfg = tmp_path / "cfg.json"
    cfg.write_text(json.dumps({"swing": {"min_radial_velocity": 100.0}}), encoding="utf-8")
    main(["detect", str(poses_file), "--config", str(cfg)])
    assert "Detected 0 swing(s)" in capsys.readouterr().out


def test_detect_plot(poses_file, tmp_path):
    out = tmp_path / "charts" / "velocity.png"
    main(["detect", str(poses_file), "--plot", str(out)])
    assert out.exists()


def test_history_writes_charts(poses_file, tmp_path, capsys):
    plot_dir = tmp_path / "history"
    main(["history", str(poses_file), "--plot-dir", str(plot_dir)])
    assert "Replayed 30 frames" in capsys.readouterr().out
    assert (plot_dir / "segments.png").exists()
    assert (plot_dir / "angles.png").exists()
    assert (plot_dir / "acceleration.png").exists()


def test_missing_file_exits_1(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main(["detect", str(tmp_path / "missing.json")])
    assert exc.value.code == 1
    assert "Error" in capsys.readouterr().err


def test_too_few_frames_exits_1(tmp_path):
    path = save_pose_map(tmp_path / "one.json", {0: [PoseResult.from_arrays(BASE, np.ones(17))]}, 30.0, "m")
    with pytest.raises(SystemExit) as exc:
        main(["detect", str(path)])
    assert exc.value.code == 1


def test_unknown_config_key_exits_1(poses_file, tmp_path):
    cfg = tmp_path / "cfg.json"
    cfg.write_text(json.dumps({"swing": {"bogus": 1}}), encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        main(["detect", str(poses_file), "--config", str(cfg)])
    assert exc.value.code == 1


def test_non_mapping_config_section_exits_1(poses_file, tmp_path):
    cfg = tmp_path / "cfg.json"
    cfg.write_text(json.dumps({"swing": 5}), encoding="utf-8")
    with pytest.raises(SystemExit) as exc:
        main(["detect", str(poses_file), "--config", str(cfg)])
    assert exc.value.code == 1
