import io
import struct

import pytest
from PIL import Image, PngImagePlugin

from animerge.errors import ImageDecodeError, InvalidSlotError
from animerge.materials import ColorSpace, decode_image, slot_color_space

from conftest import make_png


class TestDecodeImage:
    def test_png(self, png_bytes):
        ref = decode_image(png_bytes, "albedo.png")
        assert ref.mime_type == "image/png"
        assert (ref.width, ref.height) == (4, 4)
        assert ref.image_data == png_bytes
        assert ref.ref_count == 0

    def test_jpeg(self):
        out = io.BytesIO()
        Image.new("RGB", (8, 2), (0, 128, 255)).save(out, format="JPEG")
        ref = decode_image(out.getvalue(), "rough.jpg")
        assert ref.mime_type == "image/jpeg"
        assert (ref.width, ref.height) == (8, 2)

    def test_garbage_raises_with_asset_name(self):
        with pytest.raises(ImageDecodeError) as exc:
            decode_image(b"definitely not an image", "broken.png")
        assert "broken.png" in str(exc.value)

    def test_truncated_png(self, png_bytes):
        with pytest.raises(ImageDecodeError):
            decode_image(png_bytes[:30], "cut.png")

    def test_linear_gamma_reported(self):
        info = PngImagePlugin.PngInfo()
        info.add(b"gAMA", struct.pack(">I", 100000))
        out = io.BytesIO()
        Image.new("RGB", (2, 2)).save(out, format="PNG", pnginfo=info)
        ref = decode_image(out.getvalue(), "normal.png")
        assert ref.native_color_space is ColorSpace.LINEAR


class TestSlots:
    @pytest.mark.parametrize("slot", ["baseColor", "emissive"])
    def test_color_slots_are_srgb(self, slot):
        assert slot_color_space(slot) is ColorSpace.SRGB

    @pytest.mark.parametrize("slot", ["normal", "metallic", "roughness", "occlusion"])
    def test_data_slots_are_linear(self, slot):
        assert slot_color_space(slot) is ColorSpace.LINEAR

    def test_unknown_slot(self):
        with pytest.raises(InvalidSlotError) as exc:
            slot_color_space("specular")
        assert "specular" in str(exc.value)


class TestRefCounting:
    def test_release_last_binding_disposes(self):
        ref = decode_image(make_png(), "orm.png")
        ref.acquire("occlusion")
        ref.acquire("roughness")

        assert not ref.release("occlusion")
        assert ref.shared_by == frozenset({"roughness"})
        assert ref.release("roughness")
        assert ref.disposed
        assert ref.image_data == b""

    def test_release_unbound_slot_is_noop(self):
        ref = decode_image(make_png(), "a.png")
        assert not ref.release("normal")
        assert not ref.disposed

    def test_hold_keeps_buffer_alive(self):
        ref = decode_image(make_png(), "a.png")
        ref.hold()
        ref.acquire("normal")
        ref.release("normal")
        assert not ref.disposed
        assert ref.drop()
        assert ref.disposed

    def test_disposed_ref_cannot_be_acquired(self):
        ref = decode_image(make_png(), "a.png")
        ref.dispose()
        with pytest.raises(ValueError):
            ref.acquire("normal")
        with pytest.raises(ValueError):
            ref.hold()
