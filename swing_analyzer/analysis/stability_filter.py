"""Pose stability filter ("banana frame" detection and recovery).

Pose models occasionally emit a single geometrically impossible frame: a
forearm that doubles in length, an elbow that flips 60 degrees. Each frame
is compared with the last accepted frame of the same person using relative
metrics (segment length ratios, joint angle deltas and the cosine
similarity of the whole pose), so the check works at any distance from the
camera. Once a few frames have been accepted, the person's body proportions
are frozen as a baseline; slow drift that never trips the per-frame bounds
is caught when a proportion strays more than `ratio_tolerance` from it.

State machine per tracked person::

    NORMAL --corrupted--> RECOVERY --n_recovery clean frames--> NORMAL

Recovery touches the failing limb only. The preferred repair mirrors the
contralateral limb when that limb passed the same checks; otherwise the
limb is extrapolated from the last two accepted frames (when simulation is
enabled) or held at its last accepted position.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

import numpy as np

from ..config.keypoints import (
    CONTRALATERAL_LIMB,
    CORE_JOINTS,
    COCO_17,
    LIMB_GROUPS,
    STABILITY_ANGLES,
    STABILITY_SEGMENTS,
    Topology,
    limb_of,
)
from ..config.settings import StabilityConfig
from ..core.types import Keypoint, PoseResult, StabilityState
from .pose_utils import body_center, cosine_similarity, distance, joint_angle, joint_xy, segment_length

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CorruptionReport:
    """Which parts of a pose failed the frame-to-frame bounds check."""

    corrupted_limbs: FrozenSet[str] = frozenset()
    torso_corrupted: bool = False
    # Whole pose too dissimilar to the reference to attribute to one limb
    pose_mismatch: bool = False
    # Some limb or torso proportion strayed from the baseline
    proportions_deviated: bool = False
    similarity: Optional[float] = None
    reasons: Tuple[str, ...] = ()

    @property
    def is_corrupted(self) -> bool:
        return bool(self.corrupted_limbs) or self.torso_corrupted or self.pose_mismatch


@dataclass(frozen=True)
class StabilityResult:
    pose: PoseResult
    state: StabilityState
    is_corrupted: bool
    stable_count: int
    similarity: Optional[float] = None
    recovered_joints: Tuple[str, ...] = ()
    reasons: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BodyProportions:
    """Scale-free body proportions of one pose.

    Attributes:
        shoulder_width: Shoulder-to-shoulder distance (px)
        hip_width: Hip-to-hip distance (px); 0.8 x shoulder width when the
            hips are missing
        limb_ratios: Limb -> distal / proximal segment length (forearm over
            upper arm, shin over thigh); 1.0 when either segment is missing
        torso_ratio: Mean shoulder-to-hip length over shoulder width
    """

    shoulder_width: float
    hip_width: float
    limb_ratios: Mapping[str, float]
    torso_ratio: float


def _span(pose: PoseResult, topology: Topology, a: str, b: str, min_conf: float) -> Optional[float]:
    pa = joint_xy(pose, topology, a, min_conf)
    pb = joint_xy(pose, topology, b, min_conf)
    if pa is None or pb is None:
        return None
    return distance(pa, pb)


def body_proportions(
    pose: PoseResult, topology: Topology = COCO_17, min_conf: float = 0.3
) -> Optional[BodyProportions]:
    """Measure `pose`; None without both shoulders to normalise by."""
    shoulders = _span(pose, topology, "left_shoulder", "right_shoulder", min_conf)
    if not shoulders or shoulders < 1.0:
        return None
    hips = _span(pose, topology, "left_hip", "right_hip", min_conf)

    ratios = {}
    for limb, (root, mid, end) in LIMB_GROUPS.items():
        proximal = _span(pose, topology, root, mid, min_conf)
        distal = _span(pose, topology, mid, end, min_conf)
        ratios[limb] = distal / proximal if proximal and distal else 1.0

    sides = [
        s for s in (
            _span(pose, topology, "left_shoulder", "left_hip", min_conf),
            _span(pose, topology, "right_shoulder", "right_hip", min_conf),
        ) if s
    ]
    torso = float(np.mean(sides)) if sides else shoulders
    return BodyProportions(
        shoulder_width=shoulders,
        hip_width=hips or shoulders * 0.8,
        limb_ratios=ratios,
        torso_ratio=torso / shoulders,
    )


def _shares_valid_joint(a: PoseResult, b: PoseResult, min_conf: float) -> bool:
    return any(ka.is_valid(min_conf) and kb.is_valid(min_conf) for ka, kb in zip(a.keypoints, b.keypoints))


def detect_corruption(
    pose: PoseResult,
    reference: Optional[PoseResult],
    topology: Topology = COCO_17,
    config: Optional[StabilityConfig] = None,
    baseline: Optional[BodyProportions] = None,
) -> CorruptionReport:
    """Compare `pose` against the last accepted `reference` of the same person.

    A segment is compared only when both frames measure it and the reference
    length exceeds `min_segment_length`; an angle only when all three joints
    are valid in both frames. Cosine similarity is checked when the two
    poses share a valid joint, and proportions only once a `baseline` exists.
    """
    config = config or StabilityConfig()
    if reference is None:
        return CorruptionReport()

    min_conf = config.min_confidence
    limbs = set()
    torso = False
    reasons = []

    bound = 1.0 + config.max_segment_change
    for seg in STABILITY_SEGMENTS:
        cur = segment_length(pose, topology, seg, min_conf)
        prev = segment_length(reference, topology, seg, min_conf)
        if cur is None or prev is None or prev <= config.min_segment_length:
            continue
        ratio = cur / prev
        if ratio > bound or ratio < 1.0 / bound:
            reasons.append(f"{seg.name} length changed {(ratio - 1) * 100:+.0f}%")
            limb = limb_of(seg.joint1, seg.joint2)
            if limb is None:
                torso = True
            else:
                limbs.add(limb)

    for angle in STABILITY_ANGLES:
        cur = joint_angle(pose, topology, angle, min_conf)
        prev = joint_angle(reference, topology, angle, min_conf)
        if cur is None or prev is None:
            continue
        delta = abs(cur - prev)
        if delta > config.max_angle_change:
            reasons.append(f"{angle.name} angle changed {delta:.0f} deg")
            limbs.add(limb_of(angle.joint1, angle.vertex, angle.joint3))

    similarity = None
    mismatch = False
    if _shares_valid_joint(pose, reference, min_conf):
        similarity = cosine_similarity(pose, reference, min_conf)
        if similarity < config.similarity_threshold:
            mismatch = True
            reasons.append(f"similarity {similarity:.2f} below {config.similarity_threshold:.2f}")

    deviated = False
    current = body_proportions(pose, topology, min_conf) if baseline is not None else None
    if current is not None:
        tol = config.ratio_tolerance
        for limb, ratio in current.limb_ratios.items():
            if abs(ratio - baseline.limb_ratios[limb]) > tol:
                reasons.append(f"{limb} proportions {ratio:.2f} vs baseline {baseline.limb_ratios[limb]:.2f}")
                limbs.add(limb)
                deviated = True
        torso_changes = (
            abs(current.torso_ratio - baseline.torso_ratio),
            abs(current.shoulder_width - baseline.shoulder_width) / baseline.shoulder_width,
            abs(current.hip_width - baseline.hip_width) / baseline.hip_width,
        )
        if any(change > tol for change in torso_changes):
            reasons.append("torso proportions deviated from baseline")
            torso = True
            deviated = True

    return CorruptionReport(
        corrupted_limbs=frozenset(limbs),
        torso_corrupted=torso,
        pose_mismatch=mismatch,
        proportions_deviated=deviated,
        similarity=similarity,
        reasons=tuple(reasons),
    )


@dataclass
class _PersonState:
    state: StabilityState = StabilityState.NORMAL
    stable_count: int = 0
    # Last two accepted (output) poses
    reference: Optional[PoseResult] = None
    prev_reference: Optional[PoseResult] = None
    # Joint index -> last keypoint seen above the confidence floor
    last_good: Dict[int, Keypoint] = field(default_factory=dict)
    # Joint index -> consecutive frames it has been filled in
    recovered_frames: Dict[int, int] = field(default_factory=dict)
    accepted_frames: int = 0
    baseline: Optional[BodyProportions] = None


class PoseStabilityFilter:
    """Detect and repair corrupted pose frames, one person index at a time.

    Calls for one person must arrive in increasing frame order.
    """

    def __init__(self, config: Optional[StabilityConfig] = None, topology: Topology = COCO_17):
        self.config = config or StabilityConfig()
        self.topology = topology
        self._people: Dict[int, _PersonState] = {}

    # -- observability ----------------------------------------------------

    @property
    def state(self) -> StabilityState:
        """RECOVERY if any tracked person is recovering."""
        if any(p.state is StabilityState.RECOVERY for p in self._people.values()):
            return StabilityState.RECOVERY
        return StabilityState.NORMAL

    @property
    def stable_count(self) -> int:
        """Consecutive clean frames of the primary person."""
        person = self._people.get(0)
        return person.stable_count if person else 0

    def state_of(self, pose_index: int) -> StabilityState:
        person = self._people.get(pose_index)
        return person.state if person else StabilityState.NORMAL

    def reset(self):
        """Forget all people (video changed or filtering toggled)."""
        self._people.clear()

    # -- processing -------------------------------------------------------

    def process(self, poses: List[PoseResult]) -> List[StabilityResult]:
        return [self.process_pose(pose, i) for i, pose in enumerate(poses)]

    def process_pose(self, pose: PoseResult, pose_index: int = 0) -> StabilityResult:
        cfg = self.config
        person = self._people.setdefault(pose_index, _PersonState())

        recovered: Dict[int, Keypoint] = {}
        if cfg.recover_lost_joints:
            recovered = self._recover_lost_joints(pose, person)
        self._remember_good(pose, person)
        working = pose.with_keypoints(recovered)

        report = detect_corruption(working, person.reference, self.topology, cfg, person.baseline)
        similarity = report.similarity if cfg.track_similarity else None

        if cfg.mirror_only_mode:
            repairs: Dict[int, Keypoint] = {}
            if report.is_corrupted:
                repairs = self._mirror_limbs(working, report.corrupted_limbs)
            out = working.with_keypoints(repairs)
            person.state = StabilityState.NORMAL
            person.stable_count = 0
            self._accept(person, out)
            return StabilityResult(
                pose=out,
                state=StabilityState.NORMAL,
                is_corrupted=report.is_corrupted,
                stable_count=0,
                similarity=similarity,
                recovered_joints=self._names(recovered, repairs),
                reasons=report.reasons,
            )

        repairs = {}
        if report.is_corrupted:
            if person.state is StabilityState.NORMAL:
                logger.debug("Person %d: NORMAL -> RECOVERY (%s)", pose_index, "; ".join(report.reasons))
            person.state = StabilityState.RECOVERY
            person.stable_count = 0
            repairs = self._repair(working, report, person)
        else:
            person.stable_count += 1
            if person.state is StabilityState.RECOVERY and person.stable_count >= cfg.n_recovery:
                logger.debug("Person %d: RECOVERY -> NORMAL after %d clean frames",
                             pose_index, person.stable_count)
                person.state = StabilityState.NORMAL

        out = working.with_keypoints(repairs)
        self._accept(person, out)
        return StabilityResult(
            pose=out,
            state=person.state,
            is_corrupted=report.is_corrupted,
            stable_count=person.stable_count,
            similarity=similarity,
            recovered_joints=self._names(recovered, repairs),
            reasons=report.reasons,
        )

    # -- internals --------------------------------------------------------

    def _accept(self, person: _PersonState, pose: PoseResult) -> None:
        person.prev_reference = person.reference
        person.reference = pose
        person.accepted_frames += 1
        frames = self.config.baseline_frames
        if person.baseline is None and frames > 0 and person.accepted_frames >= frames:
            person.baseline = body_proportions(pose, self.topology, self.config.min_confidence)

    def _names(self, *updates: Dict[int, Keypoint]) -> Tuple[str, ...]:
        idxs = sorted({i for u in updates for i in u})
        return tuple(self.topology.joint_name(i) or str(i) for i in idxs)

    def _remember_good(self, pose: PoseResult, person: _PersonState) -> None:
        min_conf = self.config.min_confidence
        for i, kp in enumerate(pose.keypoints):
            if kp.is_valid(min_conf):
                person.last_good[i] = kp
                person.recovered_frames.pop(i, None)

    def _recover_lost_joints(self, pose: PoseResult, person: _PersonState) -> Dict[int, Keypoint]:
        """Fill joints that dropped below the floor but were valid last frame."""
        cfg = self.config
        if person.reference is None:
            return {}
        updates = {}
        for i, kp in enumerate(pose.keypoints):
            if kp.is_valid(cfg.min_confidence):
                continue
            prev = person.reference.keypoint(i)
            if prev is None or not prev.is_valid(cfg.min_confidence):
                continue
            count = person.recovered_frames.get(i, 0)
            if count >= cfg.max_recovered_frames:
                continue

            name = self.topology.joint_name(i)
            limb = limb_of(name) if name else None
            fixed = None
            if limb is not None and cfg.enable_mirror_recovery:
                source = CONTRALATERAL_LIMB[limb]
                if self._limb_valid(pose, source):
                    fixed = self._mirror_joint(pose, limb, name)
            if fixed is None and i in person.last_good:
                last = person.last_good[i]
                fixed = Keypoint(last.x, last.y, cfg.recovered_score)
            if fixed is not None:
                updates[i] = fixed
                person.recovered_frames[i] = count + 1
        return updates

    def _limb_valid(self, pose: PoseResult, limb: str) -> bool:
        return all(
            joint_xy(pose, self.topology, j, self.config.min_confidence) is not None
            for j in LIMB_GROUPS[limb]
        )

    def _mirror_joint(self, pose: PoseResult, limb: str, joint: str) -> Optional[Keypoint]:
        """Estimate `joint` of `limb` by reflecting the contralateral limb.

        The source joint's offset from its limb root is reflected in x and
        re-attached at this limb's root. Without a valid root the source
        joint is reflected across the body-center vertical axis instead.
        """
        topo = self.topology
        min_conf = self.config.min_confidence
        source_limb = CONTRALATERAL_LIMB[limb]
        pos = LIMB_GROUPS[limb].index(joint)
        source_joint = LIMB_GROUPS[source_limb][pos]

        src = pose.keypoint(topo.index(source_joint))
        if src is None or not src.is_valid(min_conf):
            return None

        target_root = joint_xy(pose, topo, LIMB_GROUPS[limb][0], min_conf)
        source_root = joint_xy(pose, topo, LIMB_GROUPS[source_limb][0], min_conf)
        if pos > 0 and target_root is not None and source_root is not None:
            dx = src.x - source_root[0]
            dy = src.y - source_root[1]
            return Keypoint(float(target_root[0] - dx), float(target_root[1] + dy), src.score)

        center = body_center(pose, topo, min_conf)
        if center is None:
            return None
        return Keypoint(float(2 * center[0] - src.x), src.y, src.score)

    def _mirror_limbs(self, pose: PoseResult, limbs) -> Dict[int, Keypoint]:
        """Mirror every failing limb whose counterpart passed the checks."""
        updates = {}
        for limb in limbs:
            if CONTRALATERAL_LIMB[limb] in limbs:
                continue
            updates.update(self._mirrored_limb(pose, limb))
        return updates

    def _mirrored_limb(self, pose: PoseResult, limb: str) -> Dict[int, Keypoint]:
        if not self._limb_valid(pose, CONTRALATERAL_LIMB[limb]):
            return {}
        updates = {}
        for joint in LIMB_GROUPS[limb][1:]:
            kp = self._mirror_joint(pose, limb, joint)
            if kp is None:
                return {}
            updates[self.topology.index(joint)] = kp
        return updates

    def _repair(self, pose: PoseResult, report: CorruptionReport, person: _PersonState) -> Dict[int, Keypoint]:
        cfg = self.config
        updates: Dict[int, Keypoint] = {}
        for limb in sorted(report.corrupted_limbs):
            mirrored = {}
            if cfg.enable_mirror_recovery and CONTRALATERAL_LIMB[limb] not in report.corrupted_limbs:
                mirrored = self._mirrored_limb(pose, limb)
            if mirrored:
                updates.update(mirrored)
            else:
                updates.update(self._from_history(LIMB_GROUPS[limb][1:], person))
        if report.torso_corrupted:
            updates.update(self._from_history(CORE_JOINTS, person))
        if report.pose_mismatch:
            updates.update(self._from_history(self.topology.keypoints.values(), person))
        return updates

    def _from_history(self, joints, person: _PersonState) -> Dict[int, Keypoint]:
        """Extrapolate (simulation on) or hold joints at the last accepted pose."""
        cfg = self.config
        ref = person.reference
        if ref is None:
            return {}
        prev = person.prev_reference
        updates = {}
        for joint in joints:
            idx = self.topology.index(joint)
            kp = ref.keypoint(idx)
            if kp is None or not kp.is_valid(cfg.min_confidence):
                continue
            before = prev.keypoint(idx) if (cfg.enable_simulation and prev is not None) else None
            if before is not None and before.is_valid(cfg.min_confidence):
                velocity = (np.array([kp.x, kp.y]) - np.array([before.x, before.y])) * cfg.simulation_decay
                updates[idx] = kp.moved_to(kp.x + velocity[0], kp.y + velocity[1])
            else:
                updates[idx] = kp
        return updates
