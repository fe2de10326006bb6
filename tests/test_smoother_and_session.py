import numpy as np
import pytest

from swing_analyzer.analysis.session import PoseAnalysisSession
from swing_analyzer.config.keypoints import COCO_17
from swing_analyzer.config.settings import AnalyzerConfig
from swing_analyzer.core.smoother import KeypointSmoother
from swing_analyzer.core.types import Keypoint, PoseResult, StabilityState

NOSE = COCO_17.index("nose")
RW = COCO_17.index("right_wrist")
LE = COCO_17.index("left_elbow")
LS = COCO_17.index("left_shoulder")
LW = COCO_17.index("left_wrist")


def _make_standing_pose(dx=0.0, conf=1.0, track_id=None):
    kp = np.array([
        [200, 50], [195, 45], [205, 45], [190, 50], [210, 50],
        [170, 100], [230, 100],
        [150, 150], [250, 150],
        [140, 200], [260, 200],
        [180, 200], [220, 200],
        [175, 280], [225, 280],
        [170, 360], [230, 360],
    ], dtype=np.float64)
    kp[:, 0] += dx
    return PoseResult.from_arrays(kp, np.full(17, conf), track_id=track_id)


class TestKeypointSmoother:
    def test_first_frame_unchanged(self):
        pose = _make_standing_pose()
        assert KeypointSmoother().smooth([pose]) == [pose]

    def test_fast_joints_smoothed_less(self):
        smoother = KeypointSmoother(smoothing_factor=0.5)
        smoother.smooth([_make_standing_pose()])
        (out,) = smoother.smooth([_make_standing_pose(dx=10.0)])
        assert out.keypoint(NOSE).x == pytest.approx(205.0)
        assert out.keypoint(RW).x == pytest.approx(260.0 + 10.0 * 0.8)

    def test_low_confidence_keeps_previous(self):
        smoother = KeypointSmoother()
        smoother.smooth([_make_standing_pose()])
        (out,) = smoother.smooth([_make_standing_pose(dx=10.0, conf=0.1)])
        assert out.keypoint(NOSE).x == pytest.approx(200.0)

    def test_state_per_track(self):
        smoother = KeypointSmoother(smoothing_factor=0.5)
        smoother.smooth([_make_standing_pose(track_id=1), _make_standing_pose(dx=100.0, track_id=2)])
        out = smoother.smooth([_make_standing_pose(dx=100.0, track_id=2)])
        assert out[0].keypoint(NOSE).x == pytest.approx(300.0)
        smoother.reset()
        assert smoother.smooth([_make_standing_pose(dx=50.0)])[0].keypoint(NOSE).x == 250.0


class TestPoseAnalysisSession:
    def test_pipeline_records_primary_person(self):
        session = PoseAnalysisSession(AnalyzerConfig())
        for i in range(3):
            analysis = session.process_frame([_make_standing_pose()], i, i / 30, now=i / 30)
        assert analysis.state is StabilityState.NORMAL
        assert len(analysis.poses) == 1
        assert len(session.history.segment_history("Left Forearm")) == 3

    def test_corrupted_frame_flagged_in_history(self):
        session = PoseAnalysisSession()
        session.process_frame([_make_standing_pose()], 0, 0.0, now=0.0)
        pose = _make_standing_pose()
        sh, el, wr = pose.keypoint(LS), pose.keypoint(LE), pose.keypoint(LW)
        # Left upper arm 60 % longer.
        ex, ey = sh.x + (el.x - sh.x) * 1.6, sh.y + (el.y - sh.y) * 1.6
        bad = pose.with_keypoints({
            LE: el.moved_to(ex, ey),
            LW: wr.moved_to(ex + wr.x - el.x, ey + wr.y - el.y),
        })
        analysis = session.process_frame([bad], 1, 1 / 30, now=1 / 30)
        assert analysis.state is StabilityState.RECOVERY
        assert session.history.segment_history("Left Upper Arm")[-1].is_corrupted

    def test_reset(self):
        session = PoseAnalysisSession()
        session.process_frame([_make_standing_pose()], 0, 0.0, now=0.0)
        session.reset()
        assert session.history.segment_history("Shoulders") == []
        assert session.filter.state is StabilityState.NORMAL
        assert session.stabilizer.joint_velocities() == {}

    def test_empty_frame(self):
        analysis = PoseAnalysisSession().process_frame([], 0, 0.0, now=0.0)
        assert analysis.poses == [] and analysis.stability == []
        assert analysis.state is StabilityState.NORMAL
