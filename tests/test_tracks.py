import pytest

from animerge.clips import Clip, PropertyKind, Track, is_root_position_track, remove_root_motion
from animerge.errors import InvalidTrackError


def hips_track():
    return Track(
        "mixamorig:Hips",
        PropertyKind.POSITION,
        [0.0, 0.5, 1.0],
        [1.0, 2.0, 3.0,
         4.0, 2.5, 6.0,
         7.0, 1.5, 9.0],
    )


class TestTrack:
    def test_value_count_must_match_stride(self):
        with pytest.raises(InvalidTrackError):
            Track("Hips", PropertyKind.POSITION, [0.0, 1.0], [0.0, 0.0, 0.0])

    def test_rotation_stride_is_four(self):
        track = Track("Spine", PropertyKind.ROTATION, [0.0], [0.0, 0.0, 0.0, 1.0])
        assert track.sample(0) == (0.0, 0.0, 0.0, 1.0)

    def test_invalid_track_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            Track("Spine", PropertyKind.ROTATION, [0.0], [0.0, 0.0, 0.0])

    def test_clone_is_independent(self):
        track = hips_track()
        copy = track.clone()
        copy.keyframe_values[0] = 100.0
        assert track.keyframe_values[0] == 1.0


class TestRootMotionRemoval:
    def test_horizontal_motion_pinned_to_first_key(self):
        result = remove_root_motion(hips_track())
        for i in range(result.key_count):
            x, y, z = result.sample(i)
            assert x == 1.0
            assert z == 3.0

    def test_vertical_motion_kept(self):
        track = hips_track()
        result = remove_root_motion(track)
        assert [result.sample(i)[1] for i in range(3)] == [2.0, 2.5, 1.5]

    def test_input_not_modified(self):
        track = hips_track()
        before = list(track.keyframe_values)
        remove_root_motion(track)
        assert track.keyframe_values == before

    def test_idempotent(self):
        once = remove_root_motion(hips_track())
        twice = remove_root_motion(once)
        assert twice == once

    @pytest.mark.parametrize("kind,values", [
        (PropertyKind.ROTATION, [0.0, 0.0, 0.0, 1.0, 0.0, 0.7, 0.0, 0.7]),
        (PropertyKind.SCALE, [1.0, 1.0, 1.0, 2.0, 2.0, 2.0]),
    ])
    def test_non_position_tracks_pass_through(self, kind, values):
        track = Track("Hips", kind, [0.0, 1.0], values)
        assert remove_root_motion(track) is track

    def test_non_root_position_track_passes_through(self):
        track = Track("LeftHand", PropertyKind.POSITION, [0.0, 1.0], [0, 0, 0, 1, 1, 1])
        assert remove_root_motion(track) is track

    @pytest.mark.parametrize("node", ["Hips", "mixamorig:Hips", "Root", "pelvis_jnt"])
    def test_root_node_names(self, node):
        assert is_root_position_track(Track(node, PropertyKind.POSITION))

    def test_empty_track(self):
        track = Track("Hips", PropertyKind.POSITION)
        assert remove_root_motion(track) is track


class TestClip:
    def test_clone_keeps_uid(self):
        clip = Clip("Walk", [hips_track()], 1.0)
        assert clip.clone().uid == clip.uid

    def test_equality_ignores_uid(self):
        clip = Clip("Walk", [hips_track()], 1.0)
        assert Clip("Walk", [hips_track()], 1.0) == clip
