"""
Materials: classification, PBR normalization and texture slot binding.
"""

from .textures import (
    ColorSpace,
    TextureRef,
    MapSet,
    SLOTS,
    ORM_SLOTS,
    ORM_CHANNELS,
    SLOT_BASE_COLOR,
    SLOT_NORMAL,
    SLOT_METALLIC,
    SLOT_ROUGHNESS,
    SLOT_OCCLUSION,
    SLOT_EMISSIVE,
    decode_image,
    empty_map_set,
    slot_color_space,
)
from .classifier import MaterialKind, SourceMaterial, classify_material, is_conversion_candidate
from .normalizer import MaterialDescriptor, normalize_material
from .binder import TextureMode, TextureSet, TextureSlotBinder, is_packed

__all__ = [
    # Textures
    'ColorSpace',
    'TextureRef',
    'MapSet',
    'SLOTS',
    'ORM_SLOTS',
    'ORM_CHANNELS',
    'SLOT_BASE_COLOR',
    'SLOT_NORMAL',
    'SLOT_METALLIC',
    'SLOT_ROUGHNESS',
    'SLOT_OCCLUSION',
    'SLOT_EMISSIVE',
    'decode_image',
    'empty_map_set',
    'slot_color_space',
    # Classification
    'MaterialKind',
    'SourceMaterial',
    'classify_material',
    'is_conversion_candidate',
    # Normalization
    'MaterialDescriptor',
    'normalize_material',
    # Binding
    'TextureMode',
    'TextureSet',
    'TextureSlotBinder',
    'is_packed',
]
