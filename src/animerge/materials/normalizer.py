"""
PBR Normalizer

Converts any classified source material into one canonical metallic-roughness
MaterialDescriptor. Base color and emissive images are always tagged sRGB,
whatever kind of material they came from.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .classifier import RGBA, WHITE, MaterialKind, SourceMaterial, classify_material, is_conversion_candidate
from .textures import (
    SLOT_BASE_COLOR,
    SLOT_EMISSIVE,
    SLOT_METALLIC,
    SLOT_NORMAL,
    SLOT_OCCLUSION,
    SLOT_ROUGHNESS,
    SLOTS,
    ColorSpace,
    MapSet,
    TextureRef,
    empty_map_set,
    slot_color_space,
)

logger = logging.getLogger(__name__)


# Fully non-metallic, fully rough: plausible for untextured legacy materials
DEFAULT_METALNESS = 0.0
DEFAULT_ROUGHNESS = 1.0

BLACK_RGB = (0.0, 0.0, 0.0)

# Slots a source may already carry linear images for
DATA_SLOTS = (SLOT_NORMAL, SLOT_OCCLUSION, SLOT_METALLIC, SLOT_ROUGHNESS)


@dataclass
class MaterialDescriptor:
    """Canonical PBR material handed to the encoder"""
    name: str
    kind: MaterialKind = MaterialKind.STANDARD_PBR
    base_color: RGBA = WHITE
    transparent: bool = False
    opacity: float = 1.0
    maps: MapSet = field(default_factory=empty_map_set)

    metalness: float = DEFAULT_METALNESS
    roughness: float = DEFAULT_ROUGHNESS
    emissive: Tuple[float, float, float] = BLACK_RGB
    occlusion_strength: float = 1.0
    normal_scale: float = 1.0

    # Kind of the material this was normalized from
    source_kind: Optional[MaterialKind] = None

    @property
    def converted(self) -> bool:
        return self.source_kind is not None and is_conversion_candidate(self.source_kind)

    def bound_textures(self) -> Dict[str, TextureRef]:
        return {slot: ref for slot, ref in self.maps.items() if ref is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "source_kind": self.source_kind.value if self.source_kind else None,
            "base_color": list(self.base_color),
            "transparent": self.transparent,
            "opacity": self.opacity,
            "metalness": self.metalness,
            "roughness": self.roughness,
            "emissive": list(self.emissive),
            "occlusion_strength": self.occlusion_strength,
            "normal_scale": self.normal_scale,
            "maps": {
                slot: (
                    {
                        "name": ref.name,
                        "color_space": ref.color_space.value,
                        "shared_by": sorted(ref.shared_by),
                    }
                    if ref is not None else None
                )
                for slot, ref in ((s, self.maps[s]) for s in SLOTS)
            },
        }


def _tagged(ref: Optional[TextureRef], space: ColorSpace) -> Optional[TextureRef]:
    """
    ``ref`` tagged ``space``. An image another material already binds in the
    other color space is copied, so each TextureRef keeps one color space.
    """
    if ref is None:
        return None
    if any(slot_color_space(slot) is not space for slot in ref.shared_by):
        logger.info(f"Image '{ref.name}' is bound as both color and data; using a {space.value} copy")
        ref = TextureRef(
            image_data=ref.image_data,
            color_space=space,
            name=ref.name,
            mime_type=ref.mime_type,
            width=ref.width,
            height=ref.height,
            native_color_space=ref.native_color_space,
        )
    elif ref.color_space is not space:
        logger.debug(f"Retagging '{ref.name}' as {space.value}")
        ref.color_space = space
    return ref


def normalize_material(source: SourceMaterial) -> MaterialDescriptor:
    """
    Produce the canonical PBR descriptor for ``source``.

    - Base color, transparency and opacity are preserved.
    - Existing base color and emissive images are carried over as sRGB.
    - Other images the source already has (normal, occlusion, metallic,
      roughness) are carried over as linear.
    - Legacy materials, and PBR materials missing metalness/roughness, get
      metalness 0 and roughness 1.

    Raises:
        MaterialClassificationError: If the source reports conflicting flags
    """
    kind = classify_material(source)

    if kind is MaterialKind.STANDARD_PBR:
        metalness = DEFAULT_METALNESS if source.metalness is None else source.metalness
        roughness = DEFAULT_ROUGHNESS if source.roughness is None else source.roughness
    else:
        metalness, roughness = DEFAULT_METALNESS, DEFAULT_ROUGHNESS

    descriptor = MaterialDescriptor(
        name=source.name,
        base_color=tuple(source.base_color),
        transparent=bool(source.transparent),
        opacity=1.0 if source.opacity is None else float(source.opacity),
        metalness=metalness,
        roughness=roughness,
        source_kind=kind,
    )

    carried = {
        SLOT_BASE_COLOR: _tagged(source.base_color_map, ColorSpace.SRGB),
        SLOT_EMISSIVE: _tagged(source.emissive_map, ColorSpace.SRGB),
    }
    color_refs = [ref for ref in (source.base_color_map, source.emissive_map) if ref is not None]
    # One linear ref per source image, so a metallicRoughness map stays shared
    linear: Dict[int, TextureRef] = {}
    for slot, ref in source.data_maps.items():
        if slot not in DATA_SLOTS or ref is None:
            continue
        if any(ref is color for color in color_refs):
            logger.warning(f"'{source.name}': image '{ref.name}' is already used as color, not binding it to {slot}")
            continue
        if id(ref) not in linear:
            linear[id(ref)] = _tagged(ref, ColorSpace.LINEAR)
        carried[slot] = linear[id(ref)]

    for slot, ref in carried.items():
        if ref is not None:
            ref.acquire(slot)
            descriptor.maps[slot] = ref

    descriptor.emissive = tuple(source.emissive)
    if descriptor.maps[SLOT_EMISSIVE] is not None:
        descriptor.emissive = (1.0, 1.0, 1.0)
    # An untextured factor default would zero out a carried map
    if descriptor.maps[SLOT_METALLIC] is not None and source.metalness is None:
        descriptor.metalness = 1.0
    if descriptor.maps[SLOT_ROUGHNESS] is not None and source.roughness is None:
        descriptor.roughness = 1.0

    if is_conversion_candidate(kind):
        logger.info(f"Converted material '{source.name}' from {kind.value} to PBR")
    return descriptor
