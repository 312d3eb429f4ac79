from animerge.pipeline import validate_glb
from animerge.pipeline.validator import Severity

from conftest import make_model_glb, write_glb


def minimal(**extra):
    gltf = {"asset": {"version": "2.0"}, "scenes": [{"nodes": [0]}], "nodes": [{"name": "Hips"}]}
    gltf.update(extra)
    return gltf


class TestGlbValidator:
    def test_fixture_model_is_valid(self):
        report = validate_glb(make_model_glb(), "hero.glb")
        assert report.valid
        assert report.stats["animations"] == 1
        assert report.stats["generator"] == "fixture"

    def test_bad_magic(self):
        report = validate_glb(b"nope" + b"\x00" * 20, "x.glb")
        assert not report.valid
        assert report.issues[0].category == "format"

    def test_unparseable(self):
        report = validate_glb(b"glTF\x01\x00\x00\x00", "x.glb")
        assert not report.valid
        assert report.issues[0].category == "parse"

    def test_wrong_version(self):
        report = validate_glb(write_glb(minimal(asset={"version": "1.0"})))
        assert any(i.category == "version" for i in report.issues)

    def test_bad_node_reference(self):
        report = validate_glb(write_glb(minimal(scenes=[{"nodes": [3]}])))
        assert not report.valid
        assert report.issues[0].path == "scenes[0].nodes[0]"

    def test_animation_input_needs_bounds(self):
        gltf = minimal(
            accessors=[
                {"componentType": 5126, "count": 2, "type": "SCALAR"},
                {"componentType": 5126, "count": 2, "type": "VEC3"},
            ],
            animations=[{
                "name": "Walk",
                "channels": [{"sampler": 0, "target": {"node": 0, "path": "translation"}}],
                "samplers": [{"input": 0, "output": 1}],
            }],
        )
        report = validate_glb(write_glb(gltf))
        assert not report.valid
        assert any("min and max" in i.message for i in report.issues)

    def test_key_count_mismatch(self):
        gltf = minimal(
            accessors=[
                {"componentType": 5126, "count": 2, "type": "SCALAR", "min": [0], "max": [1]},
                {"componentType": 5126, "count": 3, "type": "VEC3"},
            ],
            animations=[{
                "name": "Walk",
                "channels": [{"sampler": 0, "target": {"node": 0, "path": "translation"}}],
                "samplers": [{"input": 0, "output": 1}],
            }],
        )
        report = validate_glb(write_glb(gltf))
        assert any("2 keys but 3 output values" in i.message for i in report.issues)

    def test_non_pbr_material_is_a_warning(self):
        report = validate_glb(write_glb(minimal(materials=[{"name": "Old"}])))
        assert report.valid
        assert report.issues[0].severity is Severity.WARNING

    def test_summary_and_json(self):
        report = validate_glb(write_glb(minimal(scenes=[{"nodes": [3]}])), "bad.glb")
        assert "INVALID" in report.summary()
        assert '"valid": false' in report.to_json()
