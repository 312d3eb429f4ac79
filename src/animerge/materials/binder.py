"""
Texture Slot Binder

Wires texture images into a MaterialDescriptor's PBR slots.

Two mutually exclusive input modes:
- separate: one image per slot
- packed: one ORM image whose R/G/B channels feed occlusion/roughness/metallic.
  The same TextureRef instance sits in all three slots; consumers read only
  their channel from it.

Every binding is applied as one commit: all slot names and color spaces are
checked first, new refs are acquired, the map is updated, and only then are
the replaced refs released. A failed call leaves the descriptor untouched.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional

from ..errors import TextureBindingError
from .normalizer import DEFAULT_METALNESS, DEFAULT_ROUGHNESS, BLACK_RGB, MaterialDescriptor
from .textures import (
    ORM_SLOTS,
    SLOT_BASE_COLOR,
    SLOT_EMISSIVE,
    SLOT_METALLIC,
    SLOT_NORMAL,
    SLOT_OCCLUSION,
    SLOT_ROUGHNESS,
    SLOTS,
    TextureRef,
    check_slot,
    slot_color_space,
)

logger = logging.getLogger(__name__)


class TextureMode(Enum):
    SEPARATE = "separate"
    PACKED = "packed"


@dataclass
class TextureSet:
    """User-supplied textures waiting to be applied to every material"""
    mode: TextureMode = TextureMode.SEPARATE
    separate: Dict[str, Optional[TextureRef]] = field(default_factory=lambda: {slot: None for slot in SLOTS})
    packed: Optional[TextureRef] = None

    def refs(self):
        seen = [ref for ref in self.separate.values() if ref is not None]
        if self.packed is not None:
            seen.append(self.packed)
        return seen


def is_packed(descriptor: MaterialDescriptor) -> bool:
    """True when all three ORM slots hold the same image"""
    first = descriptor.maps[SLOT_OCCLUSION]
    return first is not None and all(descriptor.maps[slot] is first for slot in ORM_SLOTS)


class TextureSlotBinder:
    """Applies texture bindings to material descriptors"""

    def bind_separate(self, descriptor: MaterialDescriptor, slot: str, ref: TextureRef):
        """
        Bind ``ref`` to one slot. Its color space becomes the slot's (sRGB for
        base color/emissive, linear otherwise).

        Raises:
            InvalidSlotError: Unknown slot name
            TextureBindingError: ``slot`` is an ORM slot of a packed material;
                use bind_separate_set to leave packed mode
        """
        check_slot(slot)
        if slot in ORM_SLOTS and is_packed(descriptor) and descriptor.maps[slot] is not ref:
            raise TextureBindingError(
                f"'{slot}' is fed by a packed ORM texture; rebind occlusion, roughness "
                f"and metallic together",
                asset=descriptor.name,
            )
        self._commit(descriptor, {slot: ref})

    def bind_packed(self, descriptor: MaterialDescriptor, ref: TextureRef):
        """Bind one ORM image to occlusion, roughness and metallic at once"""
        self._commit(descriptor, {slot: ref for slot in ORM_SLOTS})
        logger.info(f"Packed ORM texture '{ref.name}' bound to '{descriptor.name}'")

    def bind_separate_set(self, descriptor: MaterialDescriptor, refs: Mapping[str, Optional[TextureRef]]):
        """
        Rebind all three ORM slots in one step. Slots missing from ``refs`` are
        cleared. Used to switch a material from packed to separate mode.
        """
        for slot in refs:
            check_slot(slot)
            if slot not in ORM_SLOTS:
                raise TextureBindingError(f"'{slot}' is not an ORM slot", asset=descriptor.name)
        self._commit(descriptor, {slot: refs.get(slot) for slot in ORM_SLOTS})

    def unbind(self, descriptor: MaterialDescriptor, slot: str):
        check_slot(slot)
        if slot in ORM_SLOTS and is_packed(descriptor):
            raise TextureBindingError(
                f"'{slot}' is fed by a packed ORM texture; rebind occlusion, roughness "
                f"and metallic together",
                asset=descriptor.name,
            )
        self._commit(descriptor, {slot: None})

    def apply_texture_set(self, descriptor: MaterialDescriptor, texture_set: TextureSet):
        """
        Apply a whole TextureSet to one descriptor in a single commit.

        Slots with no pending texture keep what they have. A packed material
        switches to separate maps (all three ORM slots at once) when it was
        packed by this set's packed texture, or when separate ORM maps are
        pending.
        """
        updates: Dict[str, Optional[TextureRef]] = {}
        for slot in (SLOT_BASE_COLOR, SLOT_NORMAL, SLOT_EMISSIVE):
            if texture_set.separate.get(slot) is not None:
                updates[slot] = texture_set.separate[slot]

        pending_orm = any(texture_set.separate.get(slot) is not None for slot in ORM_SLOTS)
        if texture_set.mode is TextureMode.PACKED:
            if texture_set.packed is not None:
                updates.update({slot: texture_set.packed for slot in ORM_SLOTS})
        elif is_packed(descriptor):
            packed_by_set = texture_set.packed is not None and descriptor.maps[SLOT_OCCLUSION] is texture_set.packed
            if packed_by_set or pending_orm:
                updates.update({slot: texture_set.separate.get(slot) for slot in ORM_SLOTS})
        else:
            for slot in ORM_SLOTS:
                if texture_set.separate.get(slot) is not None:
                    updates[slot] = texture_set.separate[slot]

        if updates:
            self._commit(descriptor, updates)

    def release_all(self, descriptor: MaterialDescriptor):
        """Drop every binding, freeing buffers no other slot still uses"""
        self._commit(descriptor, {slot: None for slot in SLOTS})

    def _commit(self, descriptor: MaterialDescriptor, updates: Dict[str, Optional[TextureRef]]):
        for slot in updates:
            check_slot(slot)

        # A single image cannot be both color and data
        wanted: Dict[int, set] = {}
        for slot, ref in updates.items():
            if ref is None:
                continue
            if ref.disposed:
                raise TextureBindingError(f"Texture '{ref.name}' has already been released", asset=descriptor.name)
            spaces = wanted.setdefault(id(ref), set())
            spaces.add(slot_color_space(slot))
            spaces.update(slot_color_space(s) for s in ref.shared_by if s not in updates)
            if len(spaces) > 1:
                raise TextureBindingError(
                    f"Texture '{ref.name}' cannot serve both color and data slots",
                    asset=descriptor.name,
                )

        previous = {slot: descriptor.maps[slot] for slot in updates}

        for slot, ref in updates.items():
            if ref is not None:
                ref.color_space = slot_color_space(slot)
                ref.acquire(slot)
            descriptor.maps[slot] = ref

        for slot, old in previous.items():
            if old is not None:
                old.release(slot)

        self._apply_factors(descriptor, updates)

    @staticmethod
    def _apply_factors(descriptor: MaterialDescriptor, updates: Dict[str, Optional[TextureRef]]):
        # glTF multiplies maps by their factors, so a bound map needs a factor of 1
        if SLOT_METALLIC in updates:
            descriptor.metalness = 1.0 if updates[SLOT_METALLIC] is not None else DEFAULT_METALNESS
        if SLOT_ROUGHNESS in updates:
            descriptor.roughness = 1.0 if updates[SLOT_ROUGHNESS] is not None else DEFAULT_ROUGHNESS
        if SLOT_OCCLUSION in updates and updates[SLOT_OCCLUSION] is not None:
            descriptor.occlusion_strength = 1.0
        if SLOT_NORMAL in updates and updates[SLOT_NORMAL] is not None:
            descriptor.normal_scale = 1.0
        if SLOT_EMISSIVE in updates:
            descriptor.emissive = (1.0, 1.0, 1.0) if updates[SLOT_EMISSIVE] is not None else BLACK_RGB
