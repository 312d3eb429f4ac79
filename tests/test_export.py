import pytest

from animerge.clips import Clip
from animerge.errors import EncodeError
from animerge.materials import ColorSpace, MaterialDescriptor, MaterialKind, TextureSlotBinder, decode_image
from animerge.pipeline import (
    ExportCoordinator,
    ExportScene,
    LoadedFileHandle,
    TargetModel,
    WriteResult,
    WriteStatus,
    export_filename,
)

from conftest import make_png, write_glb


VALID_GLB = write_glb({"asset": {"version": "2.0"}, "scenes": [{"nodes": []}]})


class FakeEncoder:
    def __init__(self, data=VALID_GLB, error=None):
        self.data = data
        self.error = error
        self.warnings = ["encoder note"]
        self.scenes = []

    def encode(self, scene):
        self.scenes.append(scene)
        if self.error:
            raise self.error
        return self.data


class FakeProvider:
    def __init__(self, status=WriteStatus.SUCCESS):
        self.status = status
        self.written = []

    def list_loaded(self, paths):
        return []

    def write(self, data, suggested_name):
        self.written.append((suggested_name, data))
        return WriteResult(self.status, path=f"/out/{suggested_name}", reason=None)


def make_scene(clips=None, materials=None):
    model = TargetModel("Hero", LoadedFileHandle("Hero.fbx", b""), b"")
    return ExportScene(model, clips if clips is not None else [Clip("Idle", duration=1.0)], materials or [])


class TestExportFilename:
    @pytest.mark.parametrize("source,override,expected", [
        ("Hero.fbx", None, "Hero.glb"),
        ("Hero.fbx", "merged", "merged.glb"),
        ("Hero.fbx", "merged.GLB", "merged.glb"),
        ("Hero.fbx", "merged.gltf", "merged.glb"),
        ("Hero.fbx", "   ", "Hero.glb"),
        (None, None, "model.glb"),
        ("Hero.fbx", "../../etc/merged", "merged.glb"),
    ])
    def test_names(self, source, override, expected):
        assert export_filename(source, override) == expected


class TestExportCoordinator:
    def test_success(self):
        encoder, provider = FakeEncoder(), FakeProvider()
        report = ExportCoordinator(encoder, provider).export(make_scene())

        assert report.success
        assert report.filename == "Hero.glb"
        assert provider.written == [("Hero.glb", VALID_GLB)]
        assert report.size_bytes == len(VALID_GLB)
        assert report.warnings == ["encoder note"]
        assert [c["name"] for c in report.clips] == ["Idle"]
        assert "SUCCESS" in report.summary()

    def test_encode_error_surfaces_unchanged(self):
        error = EncodeError("boom", asset="Hero")
        provider = FakeProvider()
        with pytest.raises(EncodeError) as exc:
            ExportCoordinator(FakeEncoder(error=error), provider).export(make_scene())
        assert exc.value is error
        assert provider.written == []

    def test_invalid_output_not_written(self):
        provider = FakeProvider()
        with pytest.raises(EncodeError):
            ExportCoordinator(FakeEncoder(data=b"garbage"), provider).export(make_scene())
        assert provider.written == []

    def test_cancelled(self):
        report = ExportCoordinator(FakeEncoder(), FakeProvider(WriteStatus.CANCELLED)).export(make_scene())
        assert not report.success
        assert report.status is WriteStatus.CANCELLED
        assert "Export cancelled" in report.warnings

    def test_failure(self):
        report = ExportCoordinator(FakeEncoder(), FakeProvider(WriteStatus.FAILURE)).export(make_scene())
        assert not report.success
        assert report.errors == ["Write failed"]
        assert report.to_dict()["status"] == "failure"

    def test_unnamed_clip_rejected(self):
        encoder = FakeEncoder()
        with pytest.raises(EncodeError):
            ExportCoordinator(encoder, FakeProvider()).export(make_scene(clips=[Clip("", duration=1.0)]))
        assert encoder.scenes == []

    def test_non_pbr_material_rejected(self):
        material = MaterialDescriptor("Old", kind=MaterialKind.LEGACY_LIT)
        with pytest.raises(EncodeError) as exc:
            ExportCoordinator(FakeEncoder(), FakeProvider()).export(make_scene(materials=[material]))
        assert "Old" in str(exc.value)

    def test_wrong_color_space_rejected(self):
        material = MaterialDescriptor("Body")
        albedo = decode_image(make_png(), "albedo.png")
        TextureSlotBinder().bind_separate(material, "baseColor", albedo)
        albedo.color_space = ColorSpace.LINEAR

        with pytest.raises(EncodeError):
            ExportCoordinator(FakeEncoder(), FakeProvider()).export(make_scene(materials=[material]))
