"""Banana-frame detection and recovery on synthetic poses."""

from dataclasses import replace

import numpy as np
import pytest

from swing_analyzer.analysis.stability_filter import PoseStabilityFilter, body_proportions, detect_corruption
from swing_analyzer.config.keypoints import COCO_17
from swing_analyzer.config.settings import StabilityConfig
from swing_analyzer.core.types import Keypoint, PoseResult, StabilityState

LS, RS = COCO_17.index("left_shoulder"), COCO_17.index("right_shoulder")
LE, RE = COCO_17.index("left_elbow"), COCO_17.index("right_elbow")
LW, RW = COCO_17.index("left_wrist"), COCO_17.index("right_wrist")


def _make_standing_pose():
    """Standing person, left and right mirrored about x = 200."""
    kp = np.array([
        [200, 50], [195, 45], [205, 45], [190, 50], [210, 50],
        [170, 100], [230, 100],   # shoulders
        [150, 150], [250, 150],   # elbows
        [140, 200], [260, 200],   # wrists
        [180, 200], [220, 200],   # hips
        [175, 280], [225, 280],   # knees
        [170, 360], [230, 360],   # ankles
    ], dtype=np.float64)
    return PoseResult.from_arrays(kp, np.ones(17))


def _stretched_left_upper_arm(pose, factor=1.4):
    """Left upper arm `factor` times longer; forearm shape unchanged."""
    sh = pose.keypoint(LS)
    el = pose.keypoint(LE)
    wr = pose.keypoint(LW)
    ex = sh.x + (el.x - sh.x) * factor
    ey = sh.y + (el.y - sh.y) * factor
    return pose.with_keypoints({
        LE: el.moved_to(ex, ey),
        LW: wr.moved_to(ex + (wr.x - el.x), ey + (wr.y - el.y)),
    })


def _grown_left_forearm(pose, factor):
    """Left forearm `factor` times longer along its own direction."""
    el = pose.keypoint(LE)
    wr = pose.keypoint(LW)
    return pose.with_keypoints({
        LW: wr.moved_to(el.x + (wr.x - el.x) * factor, el.y + (wr.y - el.y) * factor),
    })


def _transposed(pose):
    """Swap x and y: a reflection, so lengths and angles survive."""
    kp = np.array([[k.x, k.y] for k in pose.keypoints])
    return PoseResult.from_arrays(kp[:, ::-1], np.ones(len(kp)))


def _xy(pose, idx):
    kp = pose.keypoint(idx)
    return kp.x, kp.y


class TestDetectCorruption:
    def test_no_reference_is_clean(self):
        assert not detect_corruption(_make_standing_pose(), None).is_corrupted

    def test_segment_jump(self):
        ref = _make_standing_pose()
        report = detect_corruption(_stretched_left_upper_arm(ref), ref)
        assert report.corrupted_limbs == {"left_arm"}
        assert not report.torso_corrupted
        assert any("Left Upper Arm" in r for r in report.reasons)

    def test_small_change_within_bounds(self):
        ref = _make_standing_pose()
        report = detect_corruption(_stretched_left_upper_arm(ref, 1.2), ref)
        assert not report.is_corrupted

    def test_angle_flip(self):
        ref = _make_standing_pose()
        el = ref.keypoint(LE)
        forearm = np.hypot(10, 50)
        # Same forearm length, pointing sideways: elbow angle drops by ~57 deg.
        flipped = ref.with_keypoints({LW: el.moved_to(el.x - forearm, el.y)})
        report = detect_corruption(flipped, ref)
        assert report.corrupted_limbs == {"left_arm"}
        assert any("Left Elbow" in r for r in report.reasons)

    def test_short_reference_segment_ignored(self):
        ref = _make_standing_pose()
        cfg = StabilityConfig(min_segment_length=100.0)
        assert not detect_corruption(_stretched_left_upper_arm(ref), ref, COCO_17, cfg).is_corrupted

    def test_torso_segment(self):
        ref = _make_standing_pose()
        cfg = StabilityConfig(max_angle_change=180.0)
        wide = ref.with_keypoints({RS: ref.keypoint(RS).moved_to(260, 100)})
        report = detect_corruption(wide, ref, COCO_17, cfg)
        assert report.torso_corrupted

    def test_low_similarity(self):
        ref = _make_standing_pose()
        flipped = _transposed(ref)
        report = detect_corruption(flipped, ref)
        assert not report.is_corrupted
        assert report.similarity == pytest.approx(0.835, abs=1e-3)

        report = detect_corruption(flipped, ref, COCO_17, StabilityConfig(similarity_threshold=0.9))
        assert report.pose_mismatch
        assert report.is_corrupted
        assert not report.corrupted_limbs
        assert any("similarity" in r for r in report.reasons)

    def test_proportions_against_baseline(self):
        standing = _make_standing_pose()
        baseline = body_proportions(standing)
        ref = _grown_left_forearm(standing, 1.3)
        grown = _grown_left_forearm(standing, 1.5)
        assert not detect_corruption(grown, ref).is_corrupted

        report = detect_corruption(grown, ref, COCO_17, StabilityConfig(), baseline)
        assert report.corrupted_limbs == {"left_arm"}
        assert report.proportions_deviated
        assert not report.torso_corrupted

    def test_body_proportions(self):
        props = body_proportions(_make_standing_pose())
        assert props.shoulder_width == pytest.approx(60.0)
        assert props.hip_width == pytest.approx(40.0)
        assert props.limb_ratios["left_arm"] == pytest.approx(np.hypot(10, 50) / np.hypot(20, 50))
        assert props.limb_ratios["left_leg"] == pytest.approx(1.0)
        assert props.torso_ratio == pytest.approx(np.hypot(10, 100) / 60.0)
        no_shoulders = _make_standing_pose().with_keypoints({LS: Keypoint(0.0, 0.0, 0.0)})
        assert body_proportions(no_shoulders) is None


class TestStateMachine:
    def test_round_trip_mirror_then_normal(self):
        filt = PoseStabilityFilter(StabilityConfig(n_recovery=4))
        standing = _make_standing_pose()

        first = filt.process_pose(standing)
        assert first.state is StabilityState.NORMAL
        assert not first.is_corrupted

        result = filt.process_pose(_stretched_left_upper_arm(standing))
        assert result.is_corrupted
        assert result.state is StabilityState.RECOVERY
        assert filt.state is StabilityState.RECOVERY
        # Left arm rebuilt from the mirrored right arm, right arm untouched.
        assert _xy(result.pose, LE) == pytest.approx((150.0, 150.0))
        assert _xy(result.pose, LW) == pytest.approx((140.0, 200.0))
        assert _xy(result.pose, RE) == _xy(standing, RE)
        assert _xy(result.pose, RW) == _xy(standing, RW)
        assert set(result.recovered_joints) == {"left_elbow", "left_wrist"}

        states = [filt.process_pose(standing).state for _ in range(4)]
        assert states == [StabilityState.RECOVERY] * 3 + [StabilityState.NORMAL]
        assert filt.stable_count == 4

    def test_single_clean_frame_leaves_recovery(self):
        cfg = replace(StabilityConfig(), n_recovery=1)
        filt = PoseStabilityFilter(cfg)
        standing = _make_standing_pose()
        filt.process_pose(standing)
        filt.process_pose(_stretched_left_upper_arm(standing))
        assert filt.process_pose(standing).state is StabilityState.NORMAL

    def test_corruption_resets_counter(self):
        filt = PoseStabilityFilter(StabilityConfig(n_recovery=3))
        standing = _make_standing_pose()
        filt.process_pose(standing)
        filt.process_pose(_stretched_left_upper_arm(standing))
        filt.process_pose(standing)
        assert filt.stable_count == 1
        filt.process_pose(_stretched_left_upper_arm(standing))
        assert filt.stable_count == 0
        assert filt.state is StabilityState.RECOVERY

    def test_both_arms_corrupted_holds_last_accepted(self):
        filt = PoseStabilityFilter()
        standing = _make_standing_pose()
        filt.process_pose(standing)
        bad = _stretched_left_upper_arm(standing)
        rs, re, rw = bad.keypoint(RS), bad.keypoint(RE), bad.keypoint(RW)
        bad = bad.with_keypoints({
            RE: re.moved_to(rs.x + (re.x - rs.x) * 1.5, rs.y + (re.y - rs.y) * 1.5),
            RW: rw.moved_to(rw.x + 10, rw.y + 25),
        })
        result = filt.process_pose(bad)
        assert result.state is StabilityState.RECOVERY
        for idx in (LE, LW, RE, RW):
            assert _xy(result.pose, idx) == _xy(standing, idx)

    def test_simulation_extrapolates(self):
        cfg = StabilityConfig(enable_mirror_recovery=False, enable_simulation=True, simulation_decay=0.5)
        filt = PoseStabilityFilter(cfg)
        standing = _make_standing_pose()
        moved = standing.with_keypoints({LW: standing.keypoint(LW).moved_to(142, 200)})
        filt.process_pose(standing)
        filt.process_pose(moved)
        result = filt.process_pose(_stretched_left_upper_arm(moved))
        # Wrist kept moving +2 px/frame in x, halved by the decay.
        assert _xy(result.pose, LW) == pytest.approx((143.0, 200.0))
        assert _xy(result.pose, LE) == pytest.approx((150.0, 150.0))

    def test_people_are_independent(self):
        filt = PoseStabilityFilter()
        standing = _make_standing_pose()
        filt.process([standing, standing])
        results = filt.process([standing, _stretched_left_upper_arm(standing)])
        assert results[0].state is StabilityState.NORMAL
        assert results[1].state is StabilityState.RECOVERY
        assert filt.state_of(1) is StabilityState.RECOVERY
        filt.reset()
        assert filt.state is StabilityState.NORMAL

    def test_similarity_against_last_accepted(self):
        filt = PoseStabilityFilter()
        standing = _make_standing_pose()
        assert filt.process_pose(standing).similarity is None
        assert filt.process_pose(standing).similarity == pytest.approx(1.0)
        no_tracking = PoseStabilityFilter(StabilityConfig(track_similarity=False))
        no_tracking.process_pose(standing)
        assert no_tracking.process_pose(standing).similarity is None


    def test_gradual_growth_caught_by_baseline(self):
        standing = _make_standing_pose()
        # 15 % per frame stays inside the 25 % per-frame bound.
        frames = [standing] * 3 + [_grown_left_forearm(standing, 1.15 ** k) for k in (1, 2, 3)]

        filt = PoseStabilityFilter()
        results = [filt.process_pose(f) for f in frames]
        assert [r.is_corrupted for r in results] == [False] * 5 + [True]
        last = results[-1]
        assert last.state is StabilityState.RECOVERY
        assert any("left_arm proportions" in r for r in last.reasons)
        # Rebuilt from the mirrored right arm.
        assert _xy(last.pose, LW) == pytest.approx((140.0, 200.0))

        no_baseline = PoseStabilityFilter(StabilityConfig(baseline_frames=0))
        assert not any(no_baseline.process_pose(f).is_corrupted for f in frames)

    def test_dissimilar_pose_holds_last_accepted(self):
        filt = PoseStabilityFilter(StabilityConfig(similarity_threshold=0.9))
        standing = _make_standing_pose()
        filt.process_pose(standing)
        result = filt.process_pose(_transposed(standing))
        assert result.is_corrupted
        assert result.state is StabilityState.RECOVERY
        assert [_xy(result.pose, i) for i in range(17)] == [_xy(standing, i) for i in range(17)]


class TestMirrorOnly:
    def test_repairs_without_state_machine(self):
        filt = PoseStabilityFilter(StabilityConfig(mirror_only_mode=True))
        standing = _make_standing_pose()
        filt.process_pose(standing)
        result = filt.process_pose(_stretched_left_upper_arm(standing))
        assert result.is_corrupted
        assert result.state is StabilityState.NORMAL
        assert result.stable_count == 0
        assert _xy(result.pose, LE) == pytest.approx((150.0, 150.0))
        assert filt.state is StabilityState.NORMAL


class TestJointLoss:
    def test_lost_joint_mirrored(self):
        filt = PoseStabilityFilter()
        standing = _make_standing_pose()
        filt.process_pose(standing)
        lost = standing.with_keypoints({LW: Keypoint(0.0, 0.0, 0.05)})
        result = filt.process_pose(lost)
        assert _xy(result.pose, LW) == pytest.approx((140.0, 200.0))
        assert result.pose.keypoint(LW).score == pytest.approx(1.0)
        assert "left_wrist" in result.recovered_joints

    def test_lost_joint_held_and_capped(self):
        cfg = StabilityConfig(max_recovered_frames=2)
        filt = PoseStabilityFilter(cfg)
        standing = _make_standing_pose()
        filt.process_pose(standing)
        # Both wrists lost: nothing to mirror from.
        lost = standing.with_keypoints({
            LW: Keypoint(0.0, 0.0, 0.0),
            RW: Keypoint(0.0, 0.0, 0.0),
        })
        first = filt.process_pose(lost)
        assert _xy(first.pose, LW) == (140.0, 200.0)
        assert first.pose.keypoint(LW).score == cfg.recovered_score
        second = filt.process_pose(lost)
        assert second.pose.keypoint(LW).score == cfg.recovered_score
        third = filt.process_pose(lost)
        assert third.pose.keypoint(LW).score == 0.0

    def test_disabled(self):
        filt = PoseStabilityFilter(StabilityConfig(recover_lost_joints=False))
        standing = _make_standing_pose()
        filt.process_pose(standing)
        lost = standing.with_keypoints({LW: Keypoint(0.0, 0.0, 0.0)})
        assert filt.process_pose(lost).pose.keypoint(LW).score == 0.0
