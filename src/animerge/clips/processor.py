"""
Clip Processor

Whole-clip operations: static-pose classification, root-motion removal across
every track, and the playback state machine used to preview a clip.

Playback states:
    STOPPED -> PLAYING -> LOOPING        (animated clip, loop enabled)
                       -> CLAMPED_AT_END (static pose, or loop disabled)
"""

import logging
from enum import Enum
from typing import Optional

from .tracks import Clip, remove_root_motion

logger = logging.getLogger(__name__)


# Playback speed limits
MIN_TIME_SCALE = 0.1
MAX_TIME_SCALE = 5.0


class ClipClass(Enum):
    STATIC_POSE = "static_pose"
    ANIMATED = "animated"


def classify_clip(clip: Clip) -> ClipClass:
    """Static pose when the clip lasts under 0.01s"""
    return ClipClass.STATIC_POSE if clip.is_static_pose else ClipClass.ANIMATED


def apply_root_motion_removal(clip: Clip) -> Clip:
    """
    Return a clone of ``clip`` with root motion removed from its root track.

    Static poses go through the same path; their single key already equals
    its own first key so nothing changes.
    """
    processed = clip.clone()
    processed.tracks = [remove_root_motion(track) for track in processed.tracks]
    return processed


class PlaybackState(Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    LOOPING = "looping"
    CLAMPED_AT_END = "clamped_at_end"


class LoopMode(Enum):
    REPEAT = "repeat"
    ONCE = "once"


class ClipPlayer:
    """
    Preview playback of one clip at a time.

    The player never owns clip data; it holds a reference to whichever clip
    the registry currently exposes and is restarted when that data is swapped.
    It has no clock of its own: the caller moves it with advance() and seek()
    (Session.step_preview, exposed as the preview_clip tool).
    """

    def __init__(self, looping: bool = True, time_scale: float = 1.0):
        self.looping = looping
        self.clip: Optional[Clip] = None
        self.state = PlaybackState.STOPPED
        self.time = 0.0
        self.paused = False
        self._time_scale = 1.0
        self.time_scale = time_scale

    @property
    def time_scale(self) -> float:
        return self._time_scale

    @time_scale.setter
    def time_scale(self, value: float):
        self._time_scale = min(max(float(value), MIN_TIME_SCALE), MAX_TIME_SCALE)

    @property
    def loop_mode(self) -> LoopMode:
        """Effective loop mode; static poses always play once"""
        if self.clip is not None and self.clip.is_static_pose:
            return LoopMode.ONCE
        return LoopMode.REPEAT if self.looping else LoopMode.ONCE

    @property
    def is_active(self) -> bool:
        return self.clip is not None and self.state is not PlaybackState.STOPPED

    def play(self, clip: Clip):
        """Start ``clip`` from time zero"""
        self.clip = clip
        self.time = 0.0
        self.paused = False
        self.state = PlaybackState.PLAYING
        logger.debug(f"Playing '{clip.name}' ({self.loop_mode.value})")

    def restart(self, clip: Clip):
        """Swap in new data for the current clip and rewind, keeping pause state"""
        paused = self.paused
        self.play(clip)
        self.paused = paused

    def stop(self):
        self.clip = None
        self.time = 0.0
        self.paused = False
        self.state = PlaybackState.STOPPED

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def advance(self, delta: float) -> PlaybackState:
        """
        Step playback by ``delta`` seconds of wall time.

        Static poses clamp on their first frame. Animated clips wrap when
        looping, otherwise clamp at the clip's end.
        """
        if self.clip is None or self.state is PlaybackState.STOPPED or self.paused:
            return self.state
        if self.state is PlaybackState.CLAMPED_AT_END:
            return self.state

        if self.clip.is_static_pose:
            self.time = 0.0
            self.state = PlaybackState.CLAMPED_AT_END
            return self.state

        duration = self.clip.duration
        self.time += delta * self.time_scale

        if self.time >= duration:
            if self.loop_mode is LoopMode.REPEAT:
                self.time %= duration
                self.state = PlaybackState.LOOPING
            else:
                self.time = duration
                self.state = PlaybackState.CLAMPED_AT_END
        return self.state

    def seek(self, percent: float):
        """Jump to a position given as a percentage of the clip's duration"""
        if self.clip is None:
            return
        percent = min(max(percent, 0.0), 100.0)
        self.time = percent / 100.0 * self.clip.duration
        # Moving back from the end of a play-once clip resumes it
        if (self.state is PlaybackState.CLAMPED_AT_END and not self.clip.is_static_pose
                and self.time < self.clip.duration):
            self.state = PlaybackState.PLAYING

    def progress(self) -> float:
        """Playback position as a percentage; static poses report 100"""
        if self.clip is None:
            return 0.0
        if self.clip.is_static_pose:
            return 100.0
        return min(self.time / self.clip.duration * 100.0, 100.0)
