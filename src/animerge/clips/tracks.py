"""
Keyframe tracks and root-motion removal.

A track is one node's keyframed position, rotation or scale curve. Values are
stored flattened: a POSITION track with N keys holds 3*N floats.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple

from ..errors import InvalidTrackError


# Node-name fragments that identify a skeleton's root/hip joint
ROOT_NODE_HINTS = ("hips", "root", "pelvis")

# Clips shorter than this (seconds) are held as a single frame
STATIC_POSE_THRESHOLD = 0.01


class PropertyKind(Enum):
    POSITION = "position"
    ROTATION = "rotation"
    SCALE = "scale"

    @property
    def stride(self) -> int:
        # Rotations are quaternions (x, y, z, w)
        return 4 if self is PropertyKind.ROTATION else 3


@dataclass
class Track:
    """Keyframe curve for one property of one node"""
    target_node_id: str
    property_kind: PropertyKind
    keyframe_times: List[float] = field(default_factory=list)
    keyframe_values: List[float] = field(default_factory=list)

    def __post_init__(self):
        expected = len(self.keyframe_times) * self.property_kind.stride
        if len(self.keyframe_values) != expected:
            raise InvalidTrackError(
                f"{self.property_kind.value} track has {len(self.keyframe_values)} values "
                f"for {len(self.keyframe_times)} keys (expected {expected})",
                asset=self.target_node_id,
            )

    @property
    def name(self) -> str:
        return f"{self.target_node_id}.{self.property_kind.value}"

    @property
    def key_count(self) -> int:
        return len(self.keyframe_times)

    def sample(self, index: int) -> Tuple[float, ...]:
        """Value tuple at keyframe ``index``"""
        stride = self.property_kind.stride
        return tuple(self.keyframe_values[index * stride:(index + 1) * stride])

    def clone(self) -> "Track":
        return Track(
            self.target_node_id,
            self.property_kind,
            list(self.keyframe_times),
            list(self.keyframe_values),
        )


@dataclass
class Clip:
    """A named, timed set of tracks. ``uid`` follows the clip through clones."""
    name: str
    tracks: List[Track] = field(default_factory=list)
    duration: float = 0.0
    uid: str = field(default_factory=lambda: uuid.uuid4().hex, compare=False)

    @property
    def is_static_pose(self) -> bool:
        return self.duration < STATIC_POSE_THRESHOLD

    def clone(self) -> "Clip":
        return Clip(self.name, [t.clone() for t in self.tracks], self.duration, uid=self.uid)


def is_root_position_track(track: Track) -> bool:
    """True for POSITION tracks on a node whose name looks like the root/hips"""
    if track.property_kind is not PropertyKind.POSITION:
        return False
    node = track.target_node_id.lower()
    return any(hint in node for hint in ROOT_NODE_HINTS)


def remove_root_motion(track: Track) -> Track:
    """
    Clamp a root position track's horizontal motion to its first key.

    Every key becomes (x0, y, z0): vertical motion such as jumps and crouches
    is kept, X/Z translation is removed. Tracks that are not root position
    tracks, or have no keys, are returned as-is. The input is never modified.

    Args:
        track: Any track

    Returns:
        A new Track for root position tracks, otherwise ``track`` itself
    """
    if not is_root_position_track(track) or not track.keyframe_times:
        return track

    values = list(track.keyframe_values)
    x0, z0 = values[0], values[2]
    for i in range(0, len(values), 3):
        values[i] = x0
        values[i + 2] = z0

    return Track(track.target_node_id, track.property_kind, list(track.keyframe_times), values)
