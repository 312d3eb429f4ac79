import pytest

from animerge.errors import MaterialClassificationError
from animerge.materials import (
    ColorSpace,
    MaterialKind,
    SourceMaterial,
    classify_material,
    decode_image,
    is_conversion_candidate,
    normalize_material,
)

from conftest import make_png


def image(name="img.png"):
    return decode_image(make_png(), name)


class TestClassifier:
    @pytest.mark.parametrize("flags,kind", [
        ({"flat_color_only": True}, MaterialKind.LEGACY_UNLIT),
        ({"diffuse_lighting": True}, MaterialKind.LEGACY_LIT),
        ({"metallic_roughness": True}, MaterialKind.STANDARD_PBR),
        ({}, MaterialKind.LEGACY_UNLIT),
    ])
    def test_kinds(self, flags, kind):
        assert classify_material(SourceMaterial("m", **flags)) is kind

    def test_conflicting_flags(self):
        with pytest.raises(MaterialClassificationError) as exc:
            classify_material(SourceMaterial("Body", diffuse_lighting=True, metallic_roughness=True))
        assert "Body" in str(exc.value)

    def test_conversion_candidates(self):
        assert is_conversion_candidate(MaterialKind.LEGACY_LIT)
        assert is_conversion_candidate(MaterialKind.LEGACY_UNLIT)
        assert not is_conversion_candidate(MaterialKind.STANDARD_PBR)


class TestNormalizer:
    def test_legacy_lit_gets_defaults(self):
        source = SourceMaterial(
            "Cloth",
            diffuse_lighting=True,
            base_color=(0.2, 0.4, 0.6, 0.5),
            transparent=True,
            opacity=0.5,
        )
        descriptor = normalize_material(source)

        assert descriptor.kind is MaterialKind.STANDARD_PBR
        assert descriptor.source_kind is MaterialKind.LEGACY_LIT
        assert descriptor.converted
        assert descriptor.base_color == (0.2, 0.4, 0.6, 0.5)
        assert descriptor.transparent
        assert descriptor.opacity == 0.5
        assert descriptor.metalness == 0.0
        assert descriptor.roughness == 1.0

    def test_pbr_keeps_authored_factors(self):
        descriptor = normalize_material(
            SourceMaterial("Metal", metallic_roughness=True, metalness=0.9, roughness=0.2)
        )
        assert not descriptor.converted
        assert (descriptor.metalness, descriptor.roughness) == (0.9, 0.2)

    def test_pbr_missing_factors_get_defaults(self):
        descriptor = normalize_material(SourceMaterial("Bare", metallic_roughness=True))
        assert (descriptor.metalness, descriptor.roughness) == (0.0, 1.0)

    def test_unlit_base_color_map_forced_srgb(self):
        albedo = image("albedo.png")
        albedo.color_space = ColorSpace.LINEAR
        descriptor = normalize_material(SourceMaterial("Flat", flat_color_only=True, base_color_map=albedo))

        assert descriptor.maps["baseColor"] is albedo
        assert albedo.color_space is ColorSpace.SRGB
        assert albedo.shared_by == frozenset({"baseColor"})

    def test_emissive_map_forced_srgb_with_white_factor(self):
        glow = image("glow.png")
        descriptor = normalize_material(SourceMaterial("Glow", diffuse_lighting=True, emissive_map=glow))
        assert glow.color_space is ColorSpace.SRGB
        assert descriptor.emissive == (1.0, 1.0, 1.0)

    def test_emissive_factor_carried(self):
        descriptor = normalize_material(
            SourceMaterial("Lamp", metallic_roughness=True, emissive=(0.5, 0.25, 0.0))
        )
        assert descriptor.emissive == (0.5, 0.25, 0.0)

    def test_data_maps_carried_linear(self):
        normal = image("normal.png")
        normal.color_space = ColorSpace.SRGB
        metal_rough = image("mr.png")
        source = SourceMaterial(
            "Armor",
            metallic_roughness=True,
            data_maps={"normal": normal, "metallic": metal_rough, "roughness": metal_rough},
        )
        descriptor = normalize_material(source)

        assert descriptor.maps["normal"] is normal
        assert normal.color_space is ColorSpace.LINEAR
        assert descriptor.maps["metallic"] is descriptor.maps["roughness"]
        assert metal_rough.shared_by == frozenset({"metallic", "roughness"})
        assert (descriptor.metalness, descriptor.roughness) == (1.0, 1.0)

    def test_image_used_as_color_not_bound_as_data(self):
        shared = image("shared.png")
        descriptor = normalize_material(SourceMaterial(
            "Odd", metallic_roughness=True, base_color_map=shared, data_maps={"normal": shared},
        ))
        assert descriptor.maps["normal"] is None
        assert shared.color_space is ColorSpace.SRGB

    def test_image_shared_across_materials_copied_per_color_space(self):
        shared = image("shared.png")
        armor = normalize_material(SourceMaterial("Armor", metallic_roughness=True, data_maps={"normal": shared}))
        skin = normalize_material(SourceMaterial("Skin", metallic_roughness=True, base_color_map=shared))

        assert armor.maps["normal"] is shared
        assert shared.color_space is ColorSpace.LINEAR
        albedo = skin.maps["baseColor"]
        assert albedo is not shared
        assert albedo.color_space is ColorSpace.SRGB
        assert albedo.image_data == shared.image_data
        assert albedo.shared_by == frozenset({"baseColor"})

    def test_conflicting_flags_raise(self):
        with pytest.raises(MaterialClassificationError):
            normalize_material(SourceMaterial("Bad", flat_color_only=True, diffuse_lighting=True))

    def test_to_dict(self):
        descriptor = normalize_material(SourceMaterial("Cloth", diffuse_lighting=True))
        data = descriptor.to_dict()
        assert data["kind"] == "standard_pbr"
        assert data["source_kind"] == "legacy_lit"
        assert set(data["maps"]) == {"baseColor", "normal", "metallic", "roughness", "occlusion", "emissive"}
