"""
Material Classifier

Turns the capability flags a decoder reports for a material into a single
MaterialKind, once, so the rest of the pipeline never inspects flags again.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from ..errors import MaterialClassificationError
from .textures import TextureRef


RGBA = Tuple[float, float, float, float]

WHITE: RGBA = (1.0, 1.0, 1.0, 1.0)


class MaterialKind(Enum):
    LEGACY_UNLIT = "legacy_unlit"    # flat color only
    LEGACY_LIT = "legacy_lit"        # diffuse/specular lighting model
    STANDARD_PBR = "standard_pbr"    # metallic-roughness


@dataclass
class SourceMaterial:
    """Material as reported by the source decoder"""
    name: str
    flat_color_only: bool = False
    diffuse_lighting: bool = False
    metallic_roughness: bool = False

    base_color: RGBA = WHITE
    transparent: bool = False
    opacity: float = 1.0

    # Only meaningful for metallic-roughness sources; None when not authored
    metalness: Optional[float] = None
    roughness: Optional[float] = None

    emissive: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    base_color_map: Optional[TextureRef] = None
    emissive_map: Optional[TextureRef] = None

    # Normal/occlusion/metallic/roughness images already on the source, by slot
    data_maps: Dict[str, TextureRef] = field(default_factory=dict)


def classify_material(material: SourceMaterial) -> MaterialKind:
    """
    Classify a source material by its shading capability.

    A material with no capability flag set is treated as flat-colored.

    Raises:
        MaterialClassificationError: If more than one flag is set
    """
    flags = [
        (material.flat_color_only, MaterialKind.LEGACY_UNLIT),
        (material.diffuse_lighting, MaterialKind.LEGACY_LIT),
        (material.metallic_roughness, MaterialKind.STANDARD_PBR),
    ]
    kinds = [kind for flag, kind in flags if flag]

    if len(kinds) > 1:
        raise MaterialClassificationError(
            f"Conflicting shading capabilities: {', '.join(k.value for k in kinds)}",
            asset=material.name,
        )
    return kinds[0] if kinds else MaterialKind.LEGACY_UNLIT


def is_conversion_candidate(kind: MaterialKind) -> bool:
    """Anything not already metallic-roughness gets converted"""
    return kind is not MaterialKind.STANDARD_PBR
