"""
Texture references and PBR slot definitions.

A TextureRef wraps one decoded image buffer. It can be bound to several
material slots at once (a packed ORM image backs occlusion, roughness and
metallic), so it counts its bindings and only drops the buffer when the last
one is released.
"""

import io
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional

from PIL import Image, UnidentifiedImageError

from ..errors import ImageDecodeError, InvalidSlotError

logger = logging.getLogger(__name__)


class ColorSpace(Enum):
    SRGB = "sRGB"
    LINEAR = "linear"


# Canonical PBR slots
SLOT_BASE_COLOR = "baseColor"
SLOT_NORMAL = "normal"
SLOT_METALLIC = "metallic"
SLOT_ROUGHNESS = "roughness"
SLOT_OCCLUSION = "occlusion"
SLOT_EMISSIVE = "emissive"

SLOTS = (
    SLOT_BASE_COLOR,
    SLOT_NORMAL,
    SLOT_METALLIC,
    SLOT_ROUGHNESS,
    SLOT_OCCLUSION,
    SLOT_EMISSIVE,
)

# Slots fed by one packed ORM image (R=occlusion, G=roughness, B=metallic)
ORM_SLOTS = (SLOT_OCCLUSION, SLOT_ROUGHNESS, SLOT_METALLIC)
ORM_CHANNELS = {SLOT_OCCLUSION: "R", SLOT_ROUGHNESS: "G", SLOT_METALLIC: "B"}

# Perceptual color slots; everything else holds linear data
SRGB_SLOTS = frozenset({SLOT_BASE_COLOR, SLOT_EMISSIVE})


def slot_color_space(slot: str) -> ColorSpace:
    """Authoritative color space for a slot"""
    check_slot(slot)
    return ColorSpace.SRGB if slot in SRGB_SLOTS else ColorSpace.LINEAR


def check_slot(slot: str):
    if slot not in SLOTS:
        raise InvalidSlotError(f"Unknown texture slot '{slot}'. Valid slots: {', '.join(SLOTS)}")


@dataclass(eq=False)
class TextureRef:
    """A decoded image plus the slots currently referencing it"""
    image_data: bytes
    color_space: ColorSpace = ColorSpace.LINEAR
    name: str = ""
    mime_type: Optional[str] = None
    width: int = 0
    height: int = 0

    # Color space the file itself claims, if any. Informational only.
    native_color_space: Optional[ColorSpace] = None

    _bindings: Counter = field(default_factory=Counter, repr=False)
    _holds: int = field(default=0, repr=False)
    _disposed: bool = field(default=False, repr=False)

    @property
    def shared_by(self) -> FrozenSet[str]:
        return frozenset(slot for slot, count in self._bindings.items() if count > 0)

    @property
    def ref_count(self) -> int:
        return sum(self._bindings.values()) + self._holds

    def hold(self):
        """Keep the buffer alive without binding it to a slot"""
        if self._disposed:
            raise ValueError(f"Texture '{self.name}' has already been released")
        self._holds += 1

    def drop(self) -> bool:
        """Undo one ``hold``; frees the buffer if nothing else uses it"""
        if self._holds <= 0:
            return False
        self._holds -= 1
        if self.ref_count == 0:
            self.dispose()
            return True
        return False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def acquire(self, slot: str):
        if self._disposed:
            raise ValueError(f"Texture '{self.name}' has already been released")
        self._bindings[slot] += 1

    def release(self, slot: str) -> bool:
        """
        Drop one binding from ``slot``.

        Returns:
            True if that was the last binding and the buffer was freed
        """
        if self._bindings[slot] <= 0:
            return False
        self._bindings[slot] -= 1
        if self._bindings[slot] == 0:
            del self._bindings[slot]
        if self.ref_count == 0:
            self.dispose()
            return True
        return False

    def dispose(self):
        """Free the image buffer regardless of remaining bindings"""
        if self._disposed:
            return
        self._bindings.clear()
        self._holds = 0
        self.image_data = b""
        self._disposed = True
        logger.debug(f"Released texture '{self.name}'")


MapSet = Dict[str, Optional[TextureRef]]


def empty_map_set() -> MapSet:
    return {slot: None for slot in SLOTS}


def _native_color_space(info: Dict) -> Optional[ColorSpace]:
    # PNG sRGB/iCCP chunks mark color data; gAMA of 1.0 marks linear data
    if "srgb" in info or "icc_profile" in info:
        return ColorSpace.SRGB
    gamma = info.get("gamma")
    if gamma is not None:
        return ColorSpace.LINEAR if abs(float(gamma) - 1.0) < 0.01 else ColorSpace.SRGB
    return None


def decode_image(data: bytes, name: str = "") -> TextureRef:
    """
    Decode image bytes into an unbound TextureRef.

    The image is fully verified so truncated or corrupt files fail here rather
    than later in the encoder.

    Args:
        data: Raw file contents (PNG, JPEG, ...)
        name: File name, used in errors

    Returns:
        TextureRef holding the original bytes

    Raises:
        ImageDecodeError: If Pillow cannot read the bytes
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            width, height = img.size
            mime_type = Image.MIME.get(img.format)
            native = _native_color_space(img.info)
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise ImageDecodeError(f"Failed to decode image: {e}", asset=name) from e

    logger.info(f"Decoded texture '{name}' ({width}x{height}, {mime_type})")
    return TextureRef(
        image_data=bytes(data),
        name=name,
        mime_type=mime_type,
        width=width,
        height=height,
        native_color_space=native,
    )
