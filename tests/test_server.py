import asyncio
import json
from types import SimpleNamespace

import pytest

from animerge import server
from animerge.pipeline import GltfCodec, LocalFileProvider, Session

from conftest import make_model_glb, make_png


@pytest.fixture
def ctx(tmp_path):
    codec = GltfCodec()
    session = Session(decoder=codec, encoder=codec, provider=LocalFileProvider(str(tmp_path / "out")))
    return SimpleNamespace(request_context=SimpleNamespace(lifespan_context={"session": session}))


@pytest.fixture
def files(tmp_path):
    paths = {}
    for name, animation in (("Hero.glb", "Idle"), ("Run.glb", "mixamo.com")):
        path = tmp_path / name
        path.write_bytes(make_model_glb(animation_name=animation))
        paths[name] = str(path)
    path = tmp_path / "albedo.png"
    path.write_bytes(make_png())
    paths["albedo.png"] = str(path)
    return paths


class TestTools:
    def test_merge_workflow(self, ctx, files, tmp_path):
        loaded = json.loads(asyncio.run(server.load_model(ctx, files["Hero.glb"])))
        assert loaded["clips"] == ["Idle"]

        added = json.loads(asyncio.run(server.add_animations(ctx, [files["Run.glb"], str(tmp_path / "missing.glb")])))
        assert [r["success"] for r in added] == [False, True]

        clips = json.loads(server.list_clips(ctx))
        assert clips["model"] == "Hero"
        assert [c["name"] for c in clips["clips"]] == ["Idle", "Run"]

        assert "renamed to: Sprint" in server.rename_clip(ctx, 1, "Sprint")
        assert "on for 2" in server.set_in_place(ctx, True)
        assert "into baseColor as sRGB" in asyncio.run(server.load_texture(ctx, "baseColor", files["albedo.png"]))

        summary = server.export_glb(ctx)
        assert "SUCCESS" in summary
        assert (tmp_path / "out" / "Hero.glb").exists()

    def test_errors_returned_as_text(self, ctx, files):
        asyncio.run(server.load_model(ctx, files["Hero.glb"]))
        assert server.rename_clip(ctx, 7, "Nope").startswith("Error renaming clip:")
        assert asyncio.run(server.load_texture(ctx, "albedo", files["albedo.png"])).startswith("Error loading texture:")
        assert asyncio.run(server.load_model(ctx, "/no/such/file.glb")).startswith("Error loading model:")

    def test_export_without_model(self, ctx):
        assert server.export_glb(ctx).startswith("Error exporting:")

    def test_play_clip(self, ctx, files):
        asyncio.run(server.load_model(ctx, files["Hero.glb"]))
        state = json.loads(server.play_clip(ctx, 0, loop=False, speed=9.0))
        assert state == {
            "clip": "Idle",
            "state": "playing",
            "loop_mode": "once",
            "speed": 5.0,
            "paused": False,
            "progress": 0.0,
        }

    def test_preview_clip_steps_player(self, ctx, files):
        asyncio.run(server.load_model(ctx, files["Hero.glb"]))
        assert server.preview_clip(ctx, seconds=0.1).startswith("Error stepping preview:")

        server.play_clip(ctx, 0, loop=False)
        state = json.loads(server.preview_clip(ctx, seconds=2.0))
        assert (state["state"], state["progress"]) == ("clamped_at_end", 100.0)

        state = json.loads(server.preview_clip(ctx, seek_percent=40))
        assert state["state"] == "playing"
        assert state["progress"] == pytest.approx(40.0)

    def test_prompt_lists_slots(self):
        text = server.merge_workflow()
        assert "occlusion" in text
        assert "FBX" in text
