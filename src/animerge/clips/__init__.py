"""
Animation clips: tracks, root-motion removal, playback and the clip registry.
"""

from .tracks import (
    Clip,
    PropertyKind,
    Track,
    ROOT_NODE_HINTS,
    STATIC_POSE_THRESHOLD,
    is_root_position_track,
    remove_root_motion,
)
from .processor import (
    ClipClass,
    ClipPlayer,
    LoopMode,
    PlaybackState,
    apply_root_motion_removal,
    classify_clip,
)
from .registry import ClipRegistry

__all__ = [
    # Data
    'Clip',
    'Track',
    'PropertyKind',
    'ROOT_NODE_HINTS',
    'STATIC_POSE_THRESHOLD',
    # Root motion
    'is_root_position_track',
    'remove_root_motion',
    'apply_root_motion_removal',
    # Classification and playback
    'ClipClass',
    'classify_clip',
    'ClipPlayer',
    'LoopMode',
    'PlaybackState',
    # Registry
    'ClipRegistry',
]
