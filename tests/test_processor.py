import pytest

from animerge.clips import (
    Clip,
    ClipClass,
    ClipPlayer,
    LoopMode,
    PlaybackState,
    PropertyKind,
    Track,
    apply_root_motion_removal,
    classify_clip,
)


def walk_clip(duration=1.0):
    return Clip("Walk", [
        Track("Hips", PropertyKind.POSITION, [0.0, duration], [0, 1, 0, 3, 1, 4]),
        Track("Spine", PropertyKind.ROTATION, [0.0, duration], [0, 0, 0, 1, 0, 0, 0, 1]),
    ], duration)


class TestClassification:
    def test_short_clip_is_static_pose(self):
        assert classify_clip(Clip("TPose", duration=0.005)) is ClipClass.STATIC_POSE

    def test_longer_clip_is_animated(self):
        assert classify_clip(Clip("Blink", duration=0.011)) is ClipClass.ANIMATED

    def test_zero_duration_is_static_pose(self):
        assert Clip("TPose", duration=0.0).is_static_pose


class TestApplyRootMotionRemoval:
    def test_returns_processed_clone(self):
        clip = walk_clip()
        processed = apply_root_motion_removal(clip)

        assert processed is not clip
        assert processed.uid == clip.uid
        assert processed.tracks[0].keyframe_values == [0, 1, 0, 0, 1, 0]
        assert clip.tracks[0].keyframe_values == [0, 1, 0, 3, 1, 4]

    def test_rotation_tracks_unchanged(self):
        clip = walk_clip()
        processed = apply_root_motion_removal(clip)
        assert processed.tracks[1] == clip.tracks[1]


class TestClipPlayer:
    def test_starts_stopped(self):
        player = ClipPlayer()
        assert player.state is PlaybackState.STOPPED
        assert player.progress() == 0.0

    def test_animated_clip_loops(self):
        player = ClipPlayer()
        player.play(walk_clip(1.0))
        assert player.state is PlaybackState.PLAYING

        assert player.advance(0.6) is PlaybackState.PLAYING
        assert player.advance(0.6) is PlaybackState.LOOPING
        assert player.time == pytest.approx(0.2)

    def test_no_loop_clamps_at_end(self):
        player = ClipPlayer(looping=False)
        player.play(walk_clip(1.0))
        assert player.advance(2.0) is PlaybackState.CLAMPED_AT_END
        assert player.time == 1.0
        assert player.progress() == 100.0

    def test_static_pose_always_clamps(self):
        player = ClipPlayer(looping=True)
        player.play(Clip("TPose", duration=0.0))
        assert player.loop_mode is LoopMode.ONCE
        assert player.advance(0.1) is PlaybackState.CLAMPED_AT_END
        assert player.time == 0.0
        assert player.progress() == 100.0

    @pytest.mark.parametrize("requested,applied", [(0.0, 0.1), (1.5, 1.5), (10.0, 5.0)])
    def test_time_scale_clamped(self, requested, applied):
        assert ClipPlayer(time_scale=requested).time_scale == applied

    def test_time_scale_applies(self):
        player = ClipPlayer(time_scale=2.0)
        player.play(walk_clip(1.0))
        player.advance(0.25)
        assert player.progress() == pytest.approx(50.0)

    def test_paused_player_does_not_advance(self):
        player = ClipPlayer()
        player.play(walk_clip(1.0))
        player.pause()
        player.advance(0.5)
        assert player.time == 0.0
        player.resume()
        player.advance(0.5)
        assert player.time == pytest.approx(0.5)

    def test_seek(self):
        player = ClipPlayer()
        player.play(walk_clip(2.0))
        player.seek(25)
        assert player.time == pytest.approx(0.5)
        player.seek(150)
        assert player.time == pytest.approx(2.0)

    def test_seek_back_after_clamp_resumes(self):
        player = ClipPlayer(looping=False)
        player.play(walk_clip(1.0))
        assert player.advance(2.0) is PlaybackState.CLAMPED_AT_END

        player.seek(50)

        assert player.state is PlaybackState.PLAYING
        assert player.advance(0.25) is PlaybackState.PLAYING
        assert player.time == pytest.approx(0.75)

    def test_seek_to_end_stays_clamped(self):
        player = ClipPlayer(looping=False)
        player.play(walk_clip(1.0))
        player.advance(2.0)
        player.seek(100)
        assert player.state is PlaybackState.CLAMPED_AT_END

    def test_restart_keeps_pause(self):
        player = ClipPlayer()
        player.play(walk_clip())
        player.advance(0.3)
        player.pause()
        replacement = walk_clip()
        player.restart(replacement)
        assert player.clip is replacement
        assert player.time == 0.0
        assert player.paused

    def test_stop(self):
        player = ClipPlayer()
        player.play(walk_clip())
        player.stop()
        assert player.clip is None
        assert not player.is_active
