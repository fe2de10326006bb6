"""Keypoint topologies and body-part definitions.

Two skeletons are supported:
- COCO 17 keypoints (MoveNet, YOLO pose)
- BlazePose 33 keypoints

Segments, angles and limb groups are declared by joint *name* so the same
tables work for either topology; `Topology.index()` resolves a name to the
keypoint index of a concrete skeleton.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple


# COCO 17 keypoints
COCO_KEYPOINTS = {
    0: "nose",
    1: "left_eye",
    2: "right_eye",
    3: "left_ear",
    4: "right_ear",
    5: "left_shoulder",
    6: "right_shoulder",
    7: "left_elbow",
    8: "right_elbow",
    9: "left_wrist",
    10: "right_wrist",
    11: "left_hip",
    12: "right_hip",
    13: "left_knee",
    14: "right_knee",
    15: "left_ankle",
    16: "right_ankle",
}

# BlazePose 33 keypoints
BLAZEPOSE_KEYPOINTS = {
    0: "nose",
    1: "left_eye_inner",
    2: "left_eye",
    3: "left_eye_outer",
    4: "right_eye_inner",
    5: "right_eye",
    6: "right_eye_outer",
    7: "left_ear",
    8: "right_ear",
    9: "mouth_left",
    10: "mouth_right",
    11: "left_shoulder",
    12: "right_shoulder",
    13: "left_elbow",
    14: "right_elbow",
    15: "left_wrist",
    16: "right_wrist",
    17: "left_pinky",
    18: "right_pinky",
    19: "left_index",
    20: "right_index",
    21: "left_thumb",
    22: "right_thumb",
    23: "left_hip",
    24: "right_hip",
    25: "left_knee",
    26: "right_knee",
    27: "left_ankle",
    28: "right_ankle",
    29: "left_heel",
    30: "right_heel",
    31: "left_foot_index",
    32: "right_foot_index",
}


@dataclass(frozen=True)
class Topology:
    """A concrete skeleton: keypoint index -> joint name."""

    name: str
    keypoints: Dict[int, str]

    @property
    def num_keypoints(self) -> int:
        return len(self.keypoints)

    def index(self, joint: str) -> int:
        for idx, name in self.keypoints.items():
            if name == joint:
                return idx
        raise KeyError(f"{joint!r} is not a joint of the {self.name} topology")

    def joint_name(self, idx: int) -> Optional[str]:
        return self.keypoints.get(idx)

    def __hash__(self) -> int:
        return hash(self.name)


COCO_17 = Topology("coco17", COCO_KEYPOINTS)
BLAZEPOSE_33 = Topology("blazepose33", BLAZEPOSE_KEYPOINTS)

TOPOLOGIES = {
    COCO_17.name: COCO_17,
    BLAZEPOSE_33.name: BLAZEPOSE_33,
    # Model aliases
    "movenet": COCO_17,
    "yolo": COCO_17,
    "blazepose": BLAZEPOSE_33,
}


def get_topology(name: str) -> Topology:
    """Look up a topology by name or model alias (case-insensitive)."""
    try:
        return TOPOLOGIES[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown topology {name!r}; expected one of {sorted(TOPOLOGIES)}"
        ) from None


def topology_for_size(num_keypoints: int) -> Topology:
    """Pick the topology matching a keypoint count (17 or 33)."""
    for topo in (COCO_17, BLAZEPOSE_33):
        if topo.num_keypoints == num_keypoints:
            return topo
    raise ValueError(f"No topology with {num_keypoints} keypoints")


# ---------------------------------------------------------------------------
# Segment and angle definitions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SegmentDefinition:
    """Body segment between two joints."""

    name: str
    joint1: str  # parent
    joint2: str  # child
    category: str  # "arm", "leg" or "torso"


@dataclass(frozen=True)
class AngleDefinition:
    """Joint angle defined by three joints; `vertex` is the middle one."""

    name: str
    joint1: str
    vertex: str
    joint3: str


BODY_SEGMENTS: Tuple[SegmentDefinition, ...] = (
    # Arms
    SegmentDefinition("Left Upper Arm", "left_shoulder", "left_elbow", "arm"),
    SegmentDefinition("Left Forearm", "left_elbow", "left_wrist", "arm"),
    SegmentDefinition("Right Upper Arm", "right_shoulder", "right_elbow", "arm"),
    SegmentDefinition("Right Forearm", "right_elbow", "right_wrist", "arm"),
    # Legs
    SegmentDefinition("Left Thigh", "left_hip", "left_knee", "leg"),
    SegmentDefinition("Left Shin", "left_knee", "left_ankle", "leg"),
    SegmentDefinition("Right Thigh", "right_hip", "right_knee", "leg"),
    SegmentDefinition("Right Shin", "right_knee", "right_ankle", "leg"),
    # Torso
    SegmentDefinition("Shoulders", "left_shoulder", "right_shoulder", "torso"),
    SegmentDefinition("Hips", "left_hip", "right_hip", "torso"),
    SegmentDefinition("Left Torso", "left_shoulder", "left_hip", "torso"),
    SegmentDefinition("Right Torso", "right_shoulder", "right_hip", "torso"),
)

JOINT_ANGLES: Tuple[AngleDefinition, ...] = (
    AngleDefinition("Left Elbow", "left_shoulder", "left_elbow", "left_wrist"),
    AngleDefinition("Right Elbow", "right_shoulder", "right_elbow", "right_wrist"),
    AngleDefinition("Left Shoulder", "left_elbow", "left_shoulder", "left_hip"),
    AngleDefinition("Right Shoulder", "right_elbow", "right_shoulder", "right_hip"),
    AngleDefinition("Left Knee", "left_hip", "left_knee", "left_ankle"),
    AngleDefinition("Right Knee", "right_hip", "right_knee", "right_ankle"),
    AngleDefinition("Left Hip", "left_shoulder", "left_hip", "left_knee"),
    AngleDefinition("Right Hip", "right_shoulder", "right_hip", "right_knee"),
)

_SEGMENTS_BY_NAME = {s.name: s for s in BODY_SEGMENTS}
_ANGLES_BY_NAME = {a.name: a for a in JOINT_ANGLES}

# Segments and angles compared frame-to-frame by the stability filter.
# Torso sides are left out: they barely change and hide limb glitches.
STABILITY_SEGMENTS: Tuple[SegmentDefinition, ...] = tuple(
    _SEGMENTS_BY_NAME[n]
    for n in (
        "Left Upper Arm", "Left Forearm", "Right Upper Arm", "Right Forearm",
        "Left Thigh", "Left Shin", "Right Thigh", "Right Shin",
        "Shoulders", "Hips",
    )
)
STABILITY_ANGLES: Tuple[AngleDefinition, ...] = tuple(
    _ANGLES_BY_NAME[n] for n in ("Left Elbow", "Right Elbow", "Left Knee", "Right Knee")
)


# ---------------------------------------------------------------------------
# Limbs and mirroring
# ---------------------------------------------------------------------------

# Root joint first; the remaining joints are the ones moved by recovery.
LIMB_GROUPS: Dict[str, Tuple[str, ...]] = {
    "left_arm": ("left_shoulder", "left_elbow", "left_wrist"),
    "right_arm": ("right_shoulder", "right_elbow", "right_wrist"),
    "left_leg": ("left_hip", "left_knee", "left_ankle"),
    "right_leg": ("right_hip", "right_knee", "right_ankle"),
}

CONTRALATERAL_LIMB = {
    "left_arm": "right_arm",
    "right_arm": "left_arm",
    "left_leg": "right_leg",
    "right_leg": "left_leg",
}

# Core joints averaged into the body-center anchor.
CORE_JOINTS: Tuple[str, ...] = ("left_shoulder", "right_shoulder", "left_hip", "right_hip")

# Limb endpoints used for swing detection.
SWING_ENDPOINTS: Tuple[str, str] = ("left_wrist", "right_wrist")

TRACKABLE_JOINTS: Tuple[Tuple[str, str], ...] = (
    ("Nose", "nose"),
    ("Left Shoulder", "left_shoulder"),
    ("Right Shoulder", "right_shoulder"),
    ("Left Elbow", "left_elbow"),
    ("Right Elbow", "right_elbow"),
    ("Left Wrist", "left_wrist"),
    ("Right Wrist", "right_wrist"),
    ("Left Hip", "left_hip"),
    ("Right Hip", "right_hip"),
    ("Left Knee", "left_knee"),
    ("Right Knee", "right_knee"),
    ("Left Ankle", "left_ankle"),
    ("Right Ankle", "right_ankle"),
)


def limb_of(*joints: str) -> Optional[str]:
    """Return the limb containing all given joints, or None (cross-body / torso)."""
    for limb, members in LIMB_GROUPS.items():
        if all(j in members for j in joints):
            return limb
    return None
